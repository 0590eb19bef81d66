"""Principal, credential and cached-profile models."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from tableside.core.roles import Role


class Credential(BaseModel):
    """What the auth backend hands back for a signed-in user."""
    user_id: str
    email: Optional[str] = None
    access_token: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> Optional[str]:
        return self.user_metadata.get("full_name") or self.user_metadata.get("name") or None


class Principal(BaseModel):
    """The resolved identity and role of the current actor."""
    model_config = {"frozen": True}

    id: Optional[str] = None
    role: Role = Role.ANONYMOUS
    display_name: Optional[str] = None
    email: Optional[str] = None
    restaurant_id: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.id is not None and self.role != Role.ANONYMOUS


class CachedProfile(BaseModel):
    """Profile persisted locally between app loads."""
    user_id: str
    role: Role
    email: Optional[str] = None
    full_name: Optional[str] = None
    restaurant_id: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "CachedProfile":
        return cls(
            user_id=principal.id,
            role=principal.role,
            email=principal.email,
            full_name=principal.display_name,
            restaurant_id=principal.restaurant_id,
        )
