"""Base model for Supabase records."""
from typing import Any, Dict, Mapping, Type, TypeVar
from datetime import datetime, timezone
import uuid

from pydantic import BaseModel, ConfigDict

RecordT = TypeVar("RecordT", bound="SupabaseRecord")


def utc_now() -> datetime:
    """Timezone-aware current time, the format every timestamp column uses."""
    return datetime.now(timezone.utc)


class SupabaseRecord(BaseModel):
    """
    Base model for rows read from and written to Supabase collections.

    Unknown columns are ignored so that joined or newly added columns do not
    break parsing.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)

    @classmethod
    def from_record(cls: Type[RecordT], data: Mapping[str, Any]) -> RecordT:
        """Create model instance from a row dictionary."""
        return cls.model_validate(dict(data))

    def to_record(self) -> Dict[str, Any]:
        """Convert model to a Supabase-compatible dictionary (ISO timestamps, plain enums)."""
        return self.model_dump(mode="json")

    @staticmethod
    def generate_uuid() -> str:
        """Generate a UUID string."""
        return str(uuid.uuid4())
