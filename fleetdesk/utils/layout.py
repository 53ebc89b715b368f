from __future__ import annotations

from flask import render_template, g

from fleetdesk.constants.permissions import ROLES
from fleetdesk.utils.permissions import filter_nav_items


# Single menu definition (new page = one line here)
NAV_ITEMS = [
    {"key": "dashboard", "label": "Dashboard", "endpoint": "main.dashboard", "path": "/dashboard"},
    {"key": "fleet", "label": "Fleet", "endpoint": "fleet.vehicles_page", "path": "/fleet"},
    {"key": "maintenance", "label": "Maintenance", "endpoint": "maintenance.service_notes_page", "path": "/maintenance"},
    {"key": "inventory", "label": "Inventory", "endpoint": "parts.parts_page", "path": "/inventory"},
    {"key": "inspections", "label": "Yard control", "endpoint": "inspections.inspections_page", "path": "/inspections"},
    {"key": "suppliers", "label": "Suppliers", "endpoint": "suppliers.suppliers_page", "path": "/suppliers"},
    {"key": "purchases", "label": "Purchases", "endpoint": "purchase_orders.purchase_orders_page", "path": "/purchases"},
    {"key": "statistics", "label": "Statistics", "endpoint": "statistics.statistics_page", "path": "/statistics"},
]


def format_money(value) -> str:
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        amount = 0.0
    return f"$ {amount:,.2f}"


def build_app_layout_context(active_page: str) -> dict:
    """
    Everything layouts/app_base.html needs:
      - app_user_display / app_role_display
      - nav_items (already filtered for the current role) / active_page
    """
    user = getattr(g, "user", None) or {}

    return {
        "app_user_display": user.get("name") or user.get("email") or "—",
        "app_role_display": ROLES.get(user.get("role") or "", user.get("role") or "—"),
        "nav_items": filter_nav_items(NAV_ITEMS, user),
        "active_page": active_page,
        "current_user": user,
    }


def render_internal_page(template_name: str, active_page: str, **ctx):
    layout = build_app_layout_context(active_page)
    layout.update(ctx)
    return render_template(template_name, **layout)


def register_template_helpers(app) -> None:
    app.add_template_filter(format_money, "money")
