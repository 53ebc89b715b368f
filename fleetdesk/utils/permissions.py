# fleetdesk/utils/permissions.py

from __future__ import annotations

import logging
from functools import wraps

from flask import request, redirect, url_for, flash, jsonify, g

from fleetdesk.constants.permissions import (
    ROLE_PERMISSIONS,
    DRIVER_ALLOWED_ROUTES,
    PUBLIC_ROUTES,
    AUTHENTICATED_ROUTES,
    WILDCARD,
)
from fleetdesk.utils.auth import is_logged_in

logger = logging.getLogger(__name__)

DRIVER_ROLE = "Driver"
ADMIN_ROLE = "Admin"


def normalize_path(path: str | None) -> str:
    """
    /fleet/12?tab=a#top -> /fleet/12
    /fleet/             -> /fleet
    """
    if not path:
        return ""
    clean = path.split("?")[0].split("#")[0]
    return clean.rstrip("/")


def base_path(path: str | None) -> str:
    # only the first level counts: /fleet/123 -> /fleet
    normalized = normalize_path(path)
    segments = normalized.split("/")
    first = segments[1] if len(segments) > 1 else ""
    return "/" + first


def has_permission(role: str | None, path: str | None) -> bool:
    if not path:
        return False

    permissions = ROLE_PERMISSIONS.get(role or "")
    if not permissions:
        return False

    if WILDCARD in permissions:
        return True

    target = base_path(path)
    return any(normalize_path(p) == target for p in permissions)


def driver_allowed_paths() -> list[str]:
    return [r["path"] for r in DRIVER_ALLOWED_ROUTES]


def is_public_route(path: str | None) -> bool:
    normalized = normalize_path(path) or "/"
    if normalized.startswith("/static"):
        return True
    return normalized in [normalize_path(p) for p in PUBLIC_ROUTES]


def is_authenticated_route(path: str | None) -> bool:
    # "/" matches only itself; other entries also cover their sub-paths (/profile/password)
    normalized = normalize_path(path) or "/"
    for p in AUTHENTICATED_ROUTES:
        route = normalize_path(p) or "/"
        if normalized == route:
            return True
        if route != "/" and normalized.startswith(route + "/"):
            return True
    return False


def can_access(user: dict | None, path: str | None) -> bool:
    if is_public_route(path):
        return True
    if not user:
        return False

    if is_authenticated_route(path):
        return True

    if user.get("role") == DRIVER_ROLE:
        return base_path(path) in driver_allowed_paths()

    return has_permission(user.get("role"), path)


def _is_api_request() -> bool:
    if "/api/" in request.path:
        return True
    if request.is_json:
        return True
    accept = (request.headers.get("Accept") or "").lower()
    return "application/json" in accept


def _deny(reason: str, status: int):
    if _is_api_request():
        return jsonify({"ok": False, "error": "forbidden", "reason": reason}), status
    return redirect(url_for("main.unauthorized", reason=reason))


def route_required(view_func):
    """
    Auth gate for every non-public page:
    - no session        -> login page (?next=path)
    - inactive employee -> /unauthorized?reason=inactive
    - role cannot open the path -> /unauthorized (403 JSON for API calls)
    """
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        user = getattr(g, "user", None)

        if not is_logged_in() or not user:
            if _is_api_request():
                return jsonify({"ok": False, "error": "unauthenticated"}), 401
            return redirect(url_for("auth.login_page", next=request.path))

        if user.get("active") is False:
            return _deny("inactive", 403)

        if not can_access(user, request.path):
            logger.warning(
                "Permission denied: role=%s path=%s base=%s",
                user.get("role"),
                request.path,
                base_path(request.path),
            )
            if not _is_api_request():
                flash("Access denied.", "error")
            return _deny("insufficient_permissions", 403)

        return view_func(*args, **kwargs)
    return wrapper


def filter_nav_items(nav_items: list[dict], user: dict | None) -> list[dict]:
    """
    Keep menu entries the user may open. Each item carries a 'path'.
    Drivers: fixed list. Admin: everything. Others: route table.
    """
    if not user:
        return []

    role = user.get("role")
    if role == DRIVER_ROLE:
        allowed = driver_allowed_paths()
        return [item for item in nav_items if item.get("path") in allowed]

    if role == ADMIN_ROLE:
        return list(nav_items)

    return [item for item in nav_items if has_permission(role, item.get("path"))]


def employee_has_module(employee: dict | None, module: str) -> bool:
    # per-employee module flags, e.g. {"purchases": True}
    if not employee:
        return False
    perms = employee.get("permissions")
    return isinstance(perms, dict) and bool(perms.get(module))
