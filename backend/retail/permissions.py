# Overview: Static role -> permission table, built once at import and read-only afterwards.

from __future__ import annotations

from types import MappingProxyType


class Role:
    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"
    EMPLOYEE = "employee"


ROLES = frozenset({Role.ADMIN, Role.MANAGER, Role.CASHIER, Role.EMPLOYEE})


# Each permission is defined as: (code, description)
PERMISSION_DEFINITIONS = (
    ("VIEW_PRODUCTS", "View product catalog"),
    ("MANAGE_PRODUCTS", "Create, edit and discontinue products"),
    ("VIEW_INVENTORY", "View stock levels and movements"),
    ("ADJUST_INVENTORY", "Record stock adjustments and reorder levels"),
    ("RESERVE_INVENTORY", "Reserve, release and confirm reserved stock"),
    ("VIEW_SALES", "View sales"),
    ("PROCESS_SALES", "Create, edit and complete sales"),
    ("CANCEL_SALES", "Cancel pending sales"),
    ("VIEW_SUBSCRIPTION", "View subscription and usage"),
    ("MANAGE_SUBSCRIPTION", "Change plan and subscription status"),
    ("VIEW_AUDIT", "View audit events"),
    ("MANAGE_INVOICES", "Record invoice payments and cancel invoices"),
)

PERMISSION_CODES = frozenset(code for code, _ in PERMISSION_DEFINITIONS)

_VIEW = {"VIEW_PRODUCTS", "VIEW_INVENTORY", "VIEW_SALES"}
_SELL = {"PROCESS_SALES", "RESERVE_INVENTORY"}
_MANAGE = {
    "MANAGE_PRODUCTS",
    "ADJUST_INVENTORY",
    "CANCEL_SALES",
    "VIEW_SUBSCRIPTION",
    "VIEW_AUDIT",
    "MANAGE_INVOICES",
}

ROLE_PERMISSIONS = MappingProxyType({
    Role.ADMIN: frozenset(PERMISSION_CODES),
    Role.MANAGER: frozenset(_VIEW | _SELL | _MANAGE),
    Role.CASHIER: frozenset(_VIEW | _SELL),
    Role.EMPLOYEE: frozenset(_VIEW),
})


def permissions_for(role: str | None) -> frozenset:
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(role: str | None, permission_code: str) -> bool:
    if permission_code not in PERMISSION_CODES:
        raise ValueError(f"Unknown permission code: {permission_code}")
    return permission_code in permissions_for(role)

