# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Templates shipped with the platform.

Used when a metahub has no stored template version.
"""

from typing import Any

from src.domains.templates.manifest import TemplateManifest, validate_template_manifest

_DASHBOARD_WIDGETS: dict[str, list[dict[str, Any]]] = {
    "dashboard": [
        {"zone": "left", "widgetKey": "brandSelector", "sortOrder": 1},
        {"zone": "left", "widgetKey": "menuWidget", "sortOrder": 2},
        {"zone": "left", "widgetKey": "userProfile", "sortOrder": 3},
        {"zone": "top", "widgetKey": "header", "sortOrder": 1},
        {"zone": "top", "widgetKey": "breadcrumbs", "sortOrder": 2},
        {"zone": "top", "widgetKey": "search", "sortOrder": 3},
        {"zone": "center", "widgetKey": "overviewCards", "sortOrder": 1},
        {"zone": "center", "widgetKey": "detailsTable", "sortOrder": 2},
        {"zone": "bottom", "widgetKey": "footer", "sortOrder": 1},
    ],
}

BASIC_TEMPLATE: dict[str, Any] = {
    "codename": "basic",
    "version": "1.0.0",
    "minStructureVersion": 3,
    "name": {"en": "Basic"},
    "description": {"en": "Dashboard layout and general settings"},
    "seed": {
        "layouts": [
            {
                "codename": "dashboard",
                "templateKey": "dashboard",
                "name": {"en": "Dashboard"},
                "description": {"en": "Default dashboard"},
                "isDefault": True,
                "sortOrder": 0,
            }
        ],
        "layoutZoneWidgets": _DASHBOARD_WIDGETS,
        "settings": [
            {"key": "general.language", "value": "en"},
            {"key": "general.timezone", "value": "UTC"},
            {"key": "general.dateFormat", "value": "YYYY-MM-DD"},
        ],
        "entities": [],
    },
}

EMPTY_TEMPLATE: dict[str, Any] = {
    "codename": "empty",
    "version": "1.0.0",
    "minStructureVersion": 1,
    "name": {"en": "Empty"},
    "seed": {},
}

BUILTIN_TEMPLATES: dict[str, dict[str, Any]] = {
    BASIC_TEMPLATE["codename"]: BASIC_TEMPLATE,
    EMPTY_TEMPLATE["codename"]: EMPTY_TEMPLATE,
}


def get_builtin_manifest(codename: str) -> TemplateManifest:
    """Validated manifest of a built-in template.

    Raises:
        KeyError: If no built-in template has this codename.
    """
    return validate_template_manifest(BUILTIN_TEMPLATES[codename])
