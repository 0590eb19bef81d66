"""BackendDataService over the async supabase-py client."""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import httpx
from pydantic import TypeAdapter, ValidationError as SchemaValidationError
from realtime import RealtimeSubscribeStates
from supabase import AsyncClient, AuthApiError, AuthRetryableError, PostgrestAPIError
from supabase import AuthError as SupabaseAuthError

from tableside.config.settings import settings
from tableside.core.backend import (
    BackendDataService,
    ChangeHandler,
    Filters,
    Record,
    RecordChange,
    Subscription,
    with_timeout,
)
from tableside.core.exceptions import (
    AuthError,
    ConflictError,
    NotFoundError,
    TablesideError,
    TransientError,
)
from tableside.models.principal import Credential

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
_timestamp = TypeAdapter(Optional[datetime])


def map_postgrest_error(error: PostgrestAPIError, operation: str) -> TablesideError:
    """Translate a PostgREST failure into the core's error types."""
    details = {"operation": operation, "code": error.code, "hint": error.hint}
    if error.code == UNIQUE_VIOLATION:
        return ConflictError(error.message or "unique constraint violated", details=details)
    return TransientError(f"Database error during {operation}: {error.message}", details=details)


def map_auth_error(error: SupabaseAuthError, operation: str) -> TablesideError:
    """Rejected credentials become AuthError; server-side trouble is retryable."""
    status = getattr(error, "status", None)
    details = {"operation": operation, "status": status, "code": getattr(error, "code", None)}
    if isinstance(error, AuthRetryableError):
        return TransientError(f"Auth service unavailable during {operation}", details=details)
    if isinstance(error, AuthApiError) and status is not None and status >= 500:
        return TransientError(f"Auth service error during {operation}: {error.message}", details=details)
    return AuthError(error.message or "authentication failed", details=details)


def parse_timestamp(value: Any) -> Optional[datetime]:
    try:
        return _timestamp.validate_python(value)
    except SchemaValidationError:
        logger.debug(f"Unparseable commit timestamp {value!r}")
        return None


def change_from_payload(collection: str, payload: Mapping[str, Any]) -> RecordChange:
    """Normalize a realtime postgres_changes payload."""
    data = payload.get("data", payload)
    return RecordChange(
        event_type=str(data.get("type") or data.get("eventType") or "").upper(),
        collection=data.get("table") or collection,
        record=dict(data.get("record") or data.get("new") or {}),
        old_record=dict(data.get("old_record") or data.get("old") or {}),
        commit_timestamp=parse_timestamp(data.get("commit_timestamp")),
    )


def matches_filters(record: Mapping[str, Any], filters: Filters) -> bool:
    return all(record.get(column) == value for column, value in filters.items())


def server_filter(filters: Filters) -> Optional[str]:
    """Realtime accepts one equality filter; the first non-null one is pushed to the server."""
    for column, value in filters.items():
        if value is not None:
            return f"{column}=eq.{value}"
    return None


class SupabaseSubscription(Subscription):
    """A realtime channel; removing it twice is harmless."""

    def __init__(self, client: AsyncClient, channel, topic: str):
        self.client = client
        self.channel = channel
        self.topic = topic
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.client.remove_channel(self.channel)
        except Exception as e:
            # The channel is unusable locally either way
            logger.warning(f"Failed to remove realtime channel {self.topic}: {e}", extra={"channel": self.topic})
        else:
            logger.debug(f"Realtime channel {self.topic} removed", extra={"channel": self.topic})


class SupabaseDataService(BackendDataService):
    """
    Supabase implementation of the backend boundary.

    Uses the anon-key client, so every row access runs under the signed-in
    user's row-level-security policies.
    """

    def __init__(self, client: AsyncClient, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT_SECONDS

    # Data

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
        builder = self._apply_filters(self.client.table(collection).select("*"), filters or {})
        for column, value in (gte or {}).items():
            builder = builder.gte(column, value.isoformat() if isinstance(value, datetime) else value)
        if order_by:
            builder = builder.order(order_by, desc=descending)
        if limit is not None:
            builder = builder.limit(limit)
        response = await self._execute(builder, f"query {collection}")
        return list(response.data or [])

    async def insert(self, collection: str, record: Record) -> Record:
        response = await self._execute(self.client.table(collection).insert(record), f"insert into {collection}")
        if not response.data:
            raise TransientError(f"Insert into {collection} returned no row", details={"collection": collection})
        return response.data[0]

    async def update(self, collection: str, filters: Filters, patch: Record) -> Record:
        builder = self._apply_filters(self.client.table(collection).update(patch), filters)
        response = await self._execute(builder, f"update {collection}")
        if not response.data:
            raise NotFoundError(f"No {collection} row matched", details={"collection": collection, "filters": dict(filters)})
        return response.data[0]

    async def delete(self, collection: str, filters: Filters) -> None:
        builder = self._apply_filters(self.client.table(collection).delete(), filters)
        await self._execute(builder, f"delete from {collection}")

    # Realtime

    async def subscribe_to_changes(self, collection: str, filters: Filters, on_change: ChangeHandler) -> Subscription:
        topic = f"{collection}-{uuid.uuid4().hex[:12]}"
        channel = self.client.channel(topic)

        def on_payload(payload: Dict[str, Any]) -> None:
            change = change_from_payload(collection, payload)
            if not matches_filters(change.record or change.old_record, filters):
                return
            try:
                on_change(change)
            except Exception:
                logger.exception(f"Change handler failed on {topic}", extra={"channel": topic})

        channel.on_postgres_changes(
            "*",
            callback=on_payload,
            table=collection,
            schema="public",
            filter=server_filter(filters),
        )
        await self._join(channel, topic)
        logger.info(f"Subscribed to {collection} changes", extra={"channel": topic})
        return SupabaseSubscription(self.client, channel, topic)

    async def broadcast(self, channel: str, event: str, payload: Record) -> None:
        realtime_channel = self.client.channel(channel)
        subscription = SupabaseSubscription(self.client, realtime_channel, channel)
        try:
            await self._join(realtime_channel, channel)
            await with_timeout(realtime_channel.send_broadcast(event, payload), self.timeout, f"broadcast {event}")
        finally:
            await subscription.unsubscribe()

    # Auth

    async def authenticate(self, email: str, password: str) -> Credential:
        try:
            response = await self.client.auth.sign_in_with_password({"email": email, "password": password})
        except SupabaseAuthError as e:
            raise map_auth_error(e, "sign in") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Auth request failed: {e}", details={"operation": "sign in"}) from e

        if response.user is None:
            raise AuthError("authentication failed", details={"operation": "sign in"})
        access_token = response.session.access_token if response.session else None
        return self._credential(response.user, access_token)

    async def get_current_credential(self) -> Optional[Credential]:
        try:
            session = await self.client.auth.get_session()
        except SupabaseAuthError as e:
            raise map_auth_error(e, "get session") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Session request failed: {e}", details={"operation": "get session"}) from e

        if session is None or session.user is None:
            return None
        return self._credential(session.user, session.access_token)

    async def sign_out(self) -> None:
        try:
            await self.client.auth.sign_out()
        except SupabaseAuthError as e:
            raise map_auth_error(e, "sign out") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Sign out request failed: {e}", details={"operation": "sign out"}) from e

    async def update_user_metadata(self, data: Record) -> None:
        try:
            await self.client.auth.update_user({"data": data})
        except SupabaseAuthError as e:
            raise map_auth_error(e, "update user") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Update user request failed: {e}", details={"operation": "update user"}) from e

    # Internal helpers

    @staticmethod
    def _apply_filters(builder, filters: Filters):
        for column, value in filters.items():
            if value is None:
                builder = builder.is_(column, "null")
            else:
                builder = builder.eq(column, value)
        return builder

    @staticmethod
    def _credential(user, access_token: Optional[str]) -> Credential:
        return Credential(
            user_id=str(user.id),
            email=user.email,
            access_token=access_token,
            user_metadata=dict(user.user_metadata or {}),
        )

    async def _execute(self, builder, operation: str):
        try:
            return await builder.execute()
        except PostgrestAPIError as e:
            logger.warning(f"PostgREST error during {operation}: {e.code} {e.message}")
            raise map_postgrest_error(e, operation) from e
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error during {operation}: {e}")
            raise TransientError(f"Backend request failed during {operation}", details={"operation": operation}) from e

    async def _join(self, channel, topic: str) -> None:
        """Subscribe a channel and wait until the server confirms it."""
        joined = asyncio.get_running_loop().create_future()

        def on_status(status: RealtimeSubscribeStates, error: Optional[Exception] = None) -> None:
            if joined.done():
                if status != RealtimeSubscribeStates.SUBSCRIBED:
                    logger.warning(f"Realtime channel {topic} is now {status}", extra={"channel": topic})
                return
            if status == RealtimeSubscribeStates.SUBSCRIBED:
                joined.set_result(None)
            else:
                joined.set_exception(
                    TransientError(f"Realtime channel {topic} failed: {status}", details={"error": str(error) if error else None})
                )

        try:
            await channel.subscribe(on_status)
            await with_timeout(joined, self.timeout, f"join channel {topic}")
        except (TablesideError, asyncio.CancelledError):
            await self.client.remove_channel(channel)
            raise
        except Exception as e:
            await self.client.remove_channel(channel)
            raise TransientError(f"Could not join realtime channel {topic}: {e}", details={"channel": topic}) from e
