from __future__ import annotations


# =========================================================
# 1) ROLES
# =========================================================
ROLES: dict[str, str] = {
    "Admin": "Administrator",
    "Manager": "Manager",
    "Mechanic": "Mechanic",
    "Inspector": "Yard inspector",
    "FineAdmin": "Fines administrator",
    "Sales": "Sales",
    "User": "User",
    "Driver": "Driver",
}

WILDCARD = "*"


# =========================================================
# 2) ROUTE TABLE
#    role -> base paths (first URL segment) the role may open.
#    Driver is listed for completeness but the auth gate uses
#    DRIVER_ALLOWED_ROUTES for drivers instead.
# =========================================================
ROLE_PERMISSIONS: dict[str, list[str]] = {
    "Admin": [WILDCARD],
    "Manager": [WILDCARD],
    "Mechanic": ["/maintenance", "/fleet", "/inspections", "/fuel"],
    "Inspector": ["/inspections", "/fleet", "/fuel"],
    "FineAdmin": ["/fines", "/fleet", "/fuel"],
    "Sales": ["/contracts", "/fleet", "/customers", "/fuel"],
    "User": ["/dashboard", "/fuel"],
    "Driver": [
        "/dashboard",
        "/fleet",
        "/inspections",
        "/billing",
        "/fines",
        "/fuel",
        "/records",
    ],
}

# fixed allow-list for drivers (also drives their navigation)
DRIVER_ALLOWED_ROUTES: list[dict[str, str]] = [
    {"path": "/dashboard", "label": "Dashboard"},
    {"path": "/fleet", "label": "Fleet"},
    {"path": "/inspections", "label": "Inspections"},
    {"path": "/billing", "label": "Billing"},
    {"path": "/fines", "label": "Fines"},
    {"path": "/fuel", "label": "Fuel"},
    {"path": "/records", "label": "Records"},
]

# no session needed
PUBLIC_ROUTES: list[str] = [
    "/auth/login",
    "/unauthorized",
]

# any active, logged-in employee
AUTHENTICATED_ROUTES: list[str] = [
    "/",
    "/profile",
    "/auth/logout",
]


def role_keys() -> list[str]:
    return list(ROLES.keys())
