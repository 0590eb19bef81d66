"""Shared fixtures: an in-memory backend that behaves like the Supabase one."""
import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import pytest

from tableside.core.backend import (
    BackendDataService,
    ChangeHandler,
    Filters,
    Record,
    RecordChange,
    Subscription,
)
from tableside.core.exceptions import AuthError, ConflictError, NotFoundError
from tableside.core.roles import Role
from tableside.models.principal import Credential, Principal
from tableside.services.auth.session_resolver import ResolverSnapshot, ResolverStatus
from tableside.services.tables import TableReservationManager


def _matches(row: Mapping[str, Any], filters: Optional[Filters]) -> bool:
    return all(row.get(column) == value for column, value in (filters or {}).items())


def _at_least(row: Mapping[str, Any], bounds: Optional[Filters]) -> bool:
    for column, bound in (bounds or {}).items():
        value = row.get(column)
        if value is None:
            return False
        if isinstance(bound, datetime) and isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value < bound:
            return False
    return True


class FakeSubscription(Subscription):
    def __init__(self, backend: "InMemoryDataService", collection: str, filters: Filters, handler: ChangeHandler):
        self.backend = backend
        self.collection = collection
        self.filters = dict(filters)
        self.handler = handler
        self.unsubscribe_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        if self._closed:
            return
        self._closed = True
        self.backend.subscriptions.remove(self)


class InMemoryDataService(BackendDataService):
    """
    Backend fake.

    Every call yields to the event loop first, so concurrent operations
    interleave the way network calls do. Like the real schema, the sessions
    collection accepts at most one active session per table.
    """

    def __init__(self):
        self.rows: Dict[str, List[Record]] = defaultdict(list)
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, Exception] = {}
        self.broadcasts: List[Tuple[str, str, Record]] = []
        self.subscriptions: List[FakeSubscription] = []
        self.metadata_updates: List[Record] = []
        self.current: Optional[Credential] = None
        # Server-side row cap, like PostgREST max-rows
        self.max_rows: Optional[int] = None
        self._accounts: Dict[str, Tuple[str, Credential]] = {}

    # Test helpers

    def seed(self, collection: str, *rows: Record) -> None:
        self.rows[collection].extend(dict(row) for row in rows)

    def count(self, method: str, collection: Optional[str] = None) -> int:
        return sum(1 for m, c in self.calls if m == method and (collection is None or c == collection))

    def add_account(self, email: str, password: str, user_id: str, **metadata: Any) -> Credential:
        credential = Credential(user_id=user_id, email=email, access_token=f"token-{user_id}", user_metadata=metadata)
        self._accounts[email] = (password, credential)
        return credential

    def emit(
        self,
        collection: str,
        event_type: str,
        record: Record,
        old_record: Optional[Record] = None,
        commit_timestamp: Optional[datetime] = None,
    ) -> None:
        change = RecordChange(
            event_type=event_type,
            collection=collection,
            record=dict(record),
            old_record=dict(old_record or {}),
            commit_timestamp=commit_timestamp,
        )
        for subscription in list(self.subscriptions):
            if subscription.collection == collection and _matches(record, subscription.filters):
                subscription.handler(change)

    async def _enter(self, method: str, collection: Optional[str] = None) -> None:
        self.calls.append((method, collection))
        await asyncio.sleep(self.delays.get(method, 0))
        if method in self.failures:
            raise self.failures[method]

    # BackendDataService

    async def query(self, collection, filters=None, *, order_by=None, descending=False, limit=None, gte=None):
        await self._enter("query", collection)
        rows = [dict(row) for row in self.rows[collection] if _matches(row, filters) and _at_least(row, gte)]
        if order_by:
            rows.sort(key=lambda row: str(row.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if self.max_rows is not None:
            rows = rows[:self.max_rows]
        return rows

    async def insert(self, collection, record):
        await self._enter("insert", collection)
        if collection == "sessions" and record.get("status") == "active" and record.get("ended_at") is None:
            for row in self.rows[collection]:
                if row["table_id"] == record["table_id"] and row.get("status") == "active" and row.get("ended_at") is None:
                    raise ConflictError("duplicate key value violates unique constraint", details={"code": "23505"})
        self.rows[collection].append(dict(record))
        return dict(record)

    async def update(self, collection, filters, patch):
        await self._enter("update", collection)
        matched = [row for row in self.rows[collection] if _matches(row, filters)]
        if not matched:
            raise NotFoundError(f"No {collection} row matched")
        for row in matched:
            row.update(patch)
        return dict(matched[0])

    async def delete(self, collection, filters):
        await self._enter("delete", collection)
        self.rows[collection] = [row for row in self.rows[collection] if not _matches(row, filters)]

    async def subscribe_to_changes(self, collection, filters, on_change):
        await self._enter("subscribe_to_changes", collection)
        subscription = FakeSubscription(self, collection, filters, on_change)
        self.subscriptions.append(subscription)
        return subscription

    async def broadcast(self, channel, event, payload):
        await self._enter("broadcast")
        self.broadcasts.append((channel, event, payload))

    async def authenticate(self, email, password):
        await self._enter("authenticate")
        account = self._accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError("Invalid login credentials")
        self.current = account[1]
        return account[1]

    async def get_current_credential(self):
        # Read before yielding: the answer reflects the moment of the request
        credential = self.current
        await self._enter("get_current_credential")
        return credential

    async def sign_out(self):
        await self._enter("sign_out")
        self.current = None

    async def update_user_metadata(self, data):
        await self._enter("update_user_metadata")
        self.metadata_updates.append(dict(data))
        if self.current is not None:
            merged = {**self.current.user_metadata, **data}
            self.current = self.current.model_copy(update={"user_metadata": merged})


def snapshot_for(role: Role, user_id: str = "user-1") -> ResolverSnapshot:
    """A resolved snapshot for the given role (anonymous when role is ANONYMOUS)."""
    if role == Role.ANONYMOUS:
        return ResolverSnapshot(ResolverStatus.RESOLVED, Principal.anonymous())
    return ResolverSnapshot(ResolverStatus.RESOLVED, Principal(id=user_id, role=role))


@pytest.fixture
def backend() -> InMemoryDataService:
    return InMemoryDataService()


@pytest.fixture
def restaurant_backend(backend: InMemoryDataService) -> InMemoryDataService:
    """Restaurant R1 with tables T1, T2 and an inactive T3; restaurant R2 with T9."""
    backend.seed(
        "tables",
        {"id": "T1", "restaurant_id": "R1", "table_number": "1", "capacity": 4, "is_active": True},
        {"id": "T2", "restaurant_id": "R1", "table_number": "2", "capacity": 2, "is_active": True},
        {"id": "T3", "restaurant_id": "R1", "table_number": "3", "capacity": 6, "is_active": False},
        {"id": "T9", "restaurant_id": "R2", "table_number": "1", "capacity": 4, "is_active": True},
    )
    return backend


@pytest.fixture
def manager(restaurant_backend: InMemoryDataService) -> TableReservationManager:
    return TableReservationManager(restaurant_backend, timeout=1.0)


@pytest.fixture
def resolved_as() -> Callable[..., ResolverSnapshot]:
    return snapshot_for
