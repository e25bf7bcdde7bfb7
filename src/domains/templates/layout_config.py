# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Derived dashboard layout config.

The dashboard renders optional sections only when a widget for them is
placed in some zone. The stored layout config mirrors that as a flat map of
boolean flags, recomputed from the active widgets of a layout.
"""

from collections.abc import Iterable

# widget_key -> config flag
WIDGET_FLAGS: dict[str, str] = {
    "brandSelector": "showBrandSelector",
    "header": "showHeader",
    "breadcrumbs": "showBreadcrumbs",
    "search": "showSearch",
    "datePicker": "showDatePicker",
    "optionsMenu": "showOptionsMenu",
    "menuWidget": "showMenu",
    "userProfile": "showUserProfile",
    "infoCard": "showInfoCard",
    "overviewCards": "showOverviewCards",
    "sessionsChart": "showSessionsChart",
    "pageViewsChart": "showPageViewsChart",
    "detailsTitle": "showDetailsTitle",
    "detailsTable": "showDetailsTable",
    "detailsSidePanel": "showDetailsSidePanel",
    "footer": "showFooter",
}

SIDE_MENU_ZONES = frozenset({"left"})
SIDE_MENU_FLAG = "showSideMenu"
RIGHT_DRAWER_ZONES = frozenset({"right"})
RIGHT_DRAWER_FLAG = "showRightDrawer"


def build_dashboard_layout_config(widgets: Iterable[tuple[str, str]]) -> dict[str, bool]:
    """Compute layout flags from (widget_key, zone) pairs.

    Unknown widget keys are ignored; every known flag is present in the
    result.
    """
    config = {flag: False for flag in WIDGET_FLAGS.values()}
    config[SIDE_MENU_FLAG] = False
    config[RIGHT_DRAWER_FLAG] = False

    for widget_key, zone in widgets:
        flag = WIDGET_FLAGS.get(widget_key)
        if flag is not None:
            config[flag] = True
        if zone in SIDE_MENU_ZONES:
            config[SIDE_MENU_FLAG] = True
        if zone in RIGHT_DRAWER_ZONES:
            config[RIGHT_DRAWER_FLAG] = True

    return config
