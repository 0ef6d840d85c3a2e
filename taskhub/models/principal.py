"""Principal (authenticated user identity) model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Principal roles."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"


class Principal(BaseModel):
    """
    An authenticated identity as seen by the real-time core.

    The record is owned by the persistence layer; the core only reads it and
    updates the presence fields.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: Role = Role.MEMBER
    is_active: bool = True
    is_online: bool = False
    last_seen_at: datetime | None = None
    password_hash: str | None = Field(default=None, exclude=True, repr=False)

    @property
    def display_name(self) -> str:
        return self.first_name or self.username

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def public_dict(self) -> dict:
        """Serializable view without credentials."""
        return self.model_dump(mode="json")
