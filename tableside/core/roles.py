"""Roles and the paths each role lands on.

ROLE_HOME_PATHS is the only role-to-path mapping in the package. The
public-only guard, the post-sign-in redirect and the catch-all route all
read it through `home_path_for`.
"""
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Who the current actor is."""
    ANONYMOUS = "anonymous"
    CUSTOMER = "customer"
    STAFF = "staff"
    RESTAURANT_OWNER = "restaurant_owner"
    SUPER_ADMIN = "super_admin"


SIGN_IN_PATH = "/auth"
UNAUTHORIZED_PATH = "/unauthorized"
LANDING_PATH = "/"

ROLE_HOME_PATHS: Dict[Role, str] = {
    Role.CUSTOMER: "/",
    Role.STAFF: "/staff",
    Role.RESTAURANT_OWNER: "/dashboard",
    Role.SUPER_ADMIN: "/admin",
}


def home_path_for(role: Role) -> str:
    """Return the landing path for an authenticated role."""
    try:
        return ROLE_HOME_PATHS[role]
    except KeyError:
        raise ValueError(f"Role {role.value!r} has no home path") from None


def parse_role(value: Any) -> Optional[Role]:
    """
    Interpret a stored role value.

    Returns None for missing values, for anything that is not one of the
    known roles, and for "anonymous" (never a valid stored role).
    """
    if isinstance(value, Role):
        role = value
    elif isinstance(value, str):
        try:
            role = Role(value.strip().lower())
        except ValueError:
            return None
    else:
        return None

    if role is Role.ANONYMOUS:
        return None
    return role
