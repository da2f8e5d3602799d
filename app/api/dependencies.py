from typing import Optional
from fastapi import Header

from app.logic.actor import Actor
from app.logic.constants import UserRole
from app.logic.exceptions import AuthenticationError

KNOWN_ROLES = {role.value for role in UserRole}


def _parse_id(value: Optional[str], header: str) -> int:
    if value is None or not value.strip():
        raise AuthenticationError(f"Missing {header} header")
    try:
        parsed = int(value)
    except ValueError:
        raise AuthenticationError(f"Header {header} must be an integer")
    if parsed <= 0:
        raise AuthenticationError(f"Header {header} must be positive")
    return parsed


def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_company_id: Optional[str] = Header(None),
) -> Actor:
    """Identity of the caller as established by the upstream authentication layer"""
    role = (x_user_role or "").strip().lower()
    if role not in KNOWN_ROLES:
        raise AuthenticationError("Missing or unknown X-User-Role header")
    return Actor(
        user_id=_parse_id(x_user_id, "X-User-Id"),
        role=role,
        company_id=_parse_id(x_company_id, "X-Company-Id"),
    )
