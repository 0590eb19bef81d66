"""The backend data service boundary.

Every component of the core talks to the hosted backend through this
interface only. Filters are column equality; a `None` value matches SQL NULL.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

from tableside.core.exceptions import TransientError
from tableside.models.principal import Credential

logger = logging.getLogger(__name__)

T = TypeVar("T")

Record = Dict[str, Any]
Filters = Mapping[str, Any]


class Collections:
    """Collection names used by the core."""
    TABLES = "tables"
    SESSIONS = "sessions"
    USERS = "users"
    ORDERS = "orders"


@dataclass(frozen=True)
class RecordChange:
    """A row change pushed by the realtime channel."""
    event_type: str  # INSERT, UPDATE or DELETE
    collection: str
    record: Record = field(default_factory=dict)
    old_record: Record = field(default_factory=dict)
    commit_timestamp: Optional[datetime] = None


ChangeHandler = Callable[[RecordChange], None]


class Subscription(ABC):
    """Handle for a live change feed. `unsubscribe` may be called any number of times."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once the feed stopped delivering."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivery and release the underlying channel."""


class BackendDataService(ABC):
    """Query, write, subscribe and authenticate against the hosted backend."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        gte: Optional[Filters] = None,
    ) -> List[Record]:
        """
        Return rows matching all filters.

        `gte` holds inclusive lower bounds (column >= value), applied server-side.
        """

    @abstractmethod
    async def insert(self, collection: str, record: Record) -> Record:
        """Insert one row and return it as stored. Unique violations raise ConflictError."""

    @abstractmethod
    async def update(self, collection: str, filters: Filters, patch: Record) -> Record:
        """Patch the rows matching filters and return the first one. NotFoundError when none matched."""

    @abstractmethod
    async def delete(self, collection: str, filters: Filters) -> None:
        """Delete the rows matching filters."""

    @abstractmethod
    async def subscribe_to_changes(
        self,
        collection: str,
        filters: Filters,
        on_change: ChangeHandler,
    ) -> Subscription:
        """Start delivering row changes for rows matching filters; returns after the handshake."""

    @abstractmethod
    async def broadcast(self, channel: str, event: str, payload: Record) -> None:
        """Send an ephemeral broadcast message on a named channel."""

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> Credential:
        """Exchange email and password for a credential. Bad credentials raise AuthError."""

    @abstractmethod
    async def get_current_credential(self) -> Optional[Credential]:
        """Return the persisted credential, or None when nobody is signed in."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Drop the persisted credential on the backend side."""

    @abstractmethod
    async def update_user_metadata(self, data: Record) -> None:
        """Merge data into the signed-in user's metadata."""


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await a backend call with an upper bound.

    Raises:
        TransientError: If the call does not complete within `timeout` seconds
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Backend call timed out after {timeout}s: {operation}")
        raise TransientError(
            f"Backend did not respond in time ({operation})",
            details={"operation": operation, "timeout": timeout},
        ) from None
