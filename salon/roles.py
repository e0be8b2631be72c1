"""User roles and their display labels"""

from typing import Optional

ADMIN = "admin"
RECEPTION = "reception"
STAFF = "staff"
CASHIER = "cashier"
APPOINTMENTS_ONLY = "appointments_only"

USER_ROLES = (ADMIN, RECEPTION, STAFF, CASHIER, APPOINTMENTS_ONLY)
DEFAULT_USER_ROLE = APPOINTMENTS_ONLY

ROLE_LABELS = {
    ADMIN: "Administrator",
    STAFF: "Staff",
    CASHIER: "Cashier",
    APPOINTMENTS_ONLY: "Appointments only",
}


def is_user_role(role: Optional[str]) -> bool:
    return bool(role) and role in USER_ROLES


def normalize_role(role: Optional[str]) -> str:
    if is_user_role(role):
        return role
    return DEFAULT_USER_ROLE


def role_label(role: Optional[str]) -> str:
    # Anything unrecognised reads as reception
    return ROLE_LABELS.get(role, "Reception")


def is_admin_role(role: Optional[str]) -> bool:
    return role == ADMIN


def is_staff_role(role: Optional[str]) -> bool:
    return role == STAFF
