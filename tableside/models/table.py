"""Table and occupancy-session models."""
import re
from enum import Enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from tableside.models.base import SupabaseRecord, utc_now


class ReservationStatus(str, Enum):
    """Derived table status; never written to the backend."""
    AVAILABLE = "available"
    RESERVED = "reserved"


class SessionStatus(str, Enum):
    """Occupancy session lifecycle."""
    ACTIVE = "active"
    COMPLETED = "completed"


class Table(SupabaseRecord):
    """Physical seating unit belonging to one restaurant."""

    id: str
    restaurant_id: str
    table_number: str
    capacity: int = 4
    location: Optional[str] = None
    is_active: bool = True


class OccupancySession(SupabaseRecord):
    """
    One seated party's stay at a table.

    Not to be confused with the authentication session. A session is active
    until it is released; releasing keeps the row for history and analytics.
    """

    id: str
    table_id: str
    restaurant_id: str
    staff_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    session_token: Optional[str] = None
    created_by_staff: bool = False
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None

    @field_validator("started_at", "ended_at")
    @classmethod
    def assume_utc(cls, v):
        """Columns without an offset are stored in UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE and self.ended_at is None

    @property
    def duration_minutes(self) -> Optional[float]:
        """Length of a completed session in minutes, None while it is still open."""
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds() / 60


class TableView(BaseModel):
    """A table together with its derived status and, when reserved, the active session."""
    table: Table
    reservation_status: ReservationStatus
    current_session: Optional[OccupancySession] = None

    @property
    def id(self) -> str:
        return self.table.id

    @property
    def table_number(self) -> str:
        return self.table.table_number

    @property
    def reserved_at(self) -> Optional[datetime]:
        return self.current_session.started_at if self.current_session else None

    @property
    def is_available(self) -> bool:
        return self.reservation_status == ReservationStatus.AVAILABLE


class CustomerInfo(BaseModel):
    """Contact details for the party being seated."""
    name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=255)

    @field_validator("name", "phone", "email", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Treat whitespace-only values as absent."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        """Validate email format if provided."""
        if v and "@" not in v:
            raise ValueError("Invalid email format")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        """Allow digits with common separators and a leading plus."""
        if v and not re.match(r"^\+?[0-9\s\-()]+$", v):
            raise ValueError("Phone number can only contain digits, spaces, hyphens and parentheses")
        return v
