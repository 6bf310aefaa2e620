from enum import Enum
from typing import Optional
from uuid import UUID

from fastapi import Header
from pydantic import BaseModel, ConfigDict

from .errors import Forbidden, Unauthorized


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "superAdmin"


ADMIN_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)


class Principal(BaseModel):
    """Authenticated caller resolved by the identity provider."""

    user_id: UUID
    role: Role = Role.USER

    model_config = ConfigDict(frozen=True)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def require_admin(principal: Principal) -> Principal:
    if not principal.is_admin:
        raise Forbidden("Administrator role required")
    return principal


def get_principal(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Principal:
    """Read the principal forwarded by the authenticating gateway."""
    if not x_user_id:
        raise Unauthorized("Authentication required")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise Unauthorized("Invalid principal id")
    try:
        role = Role(x_user_role or Role.USER.value)
    except ValueError:
        raise Forbidden(f"Unknown role {x_user_role!r}")
    return Principal(user_id=user_id, role=role)


def require_super_admin(principal: Principal) -> Principal:
    if principal.role != Role.SUPER_ADMIN:
        raise Forbidden("Super admin role required")
    return principal
