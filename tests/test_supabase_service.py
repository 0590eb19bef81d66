from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from realtime import RealtimeSubscribeStates
from supabase import AuthApiError, AuthRetryableError, PostgrestAPIError

from tableside.core.exceptions import AuthError, ConflictError, NotFoundError, TransientError
from tableside.services.backend import SupabaseDataService
from tableside.services.backend.supabase_service import change_from_payload, server_filter


class FakeQuery:
    """Records the builder chain of a PostgREST request."""

    def __init__(self, data=None, error=None):
        self.data = data if data is not None else []
        self.error = error
        self.calls = []

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        return self

    def select(self, *args, **kwargs):
        return self._record("select", *args, **kwargs)

    def insert(self, *args, **kwargs):
        return self._record("insert", *args, **kwargs)

    def update(self, *args, **kwargs):
        return self._record("update", *args, **kwargs)

    def delete(self, *args, **kwargs):
        return self._record("delete", *args, **kwargs)

    def eq(self, *args, **kwargs):
        return self._record("eq", *args, **kwargs)

    def is_(self, *args, **kwargs):
        return self._record("is_", *args, **kwargs)

    def gte(self, *args, **kwargs):
        return self._record("gte", *args, **kwargs)

    def order(self, *args, **kwargs):
        return self._record("order", *args, **kwargs)

    def limit(self, *args, **kwargs):
        return self._record("limit", *args, **kwargs)

    async def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.data)


class FakeChannel:
    def __init__(self, join_status=RealtimeSubscribeStates.SUBSCRIBED):
        self.join_status = join_status
        self.postgres_callback = None
        self.postgres_options = {}
        self.sent = []

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.postgres_callback = callback
        self.postgres_options = {"event": event, "table": table, "schema": schema, "filter": filter}
        return self

    async def subscribe(self, callback=None):
        callback(self.join_status, None)
        return self

    async def send_broadcast(self, event, data):
        self.sent.append((event, data))


def make_client(query=None, channel=None):
    client = MagicMock()
    client.table.return_value = query or FakeQuery()
    client.channel.return_value = channel or FakeChannel()
    client.remove_channel = AsyncMock()
    client.auth = MagicMock()
    return client


class TestData:
    async def test_query_builds_filters(self):
        query = FakeQuery(data=[{"id": "s1"}])
        service = SupabaseDataService(make_client(query), timeout=1.0)

        rows = await service.query(
            "sessions", {"table_id": "T1", "ended_at": None}, order_by="started_at", descending=True, limit=5
        )

        assert rows == [{"id": "s1"}]
        assert query.calls == [
            ("select", ("*",), {}),
            ("eq", ("table_id", "T1"), {}),
            ("is_", ("ended_at", "null"), {}),
            ("order", ("started_at",), {"desc": True}),
            ("limit", (5,), {}),
        ]

    async def test_query_sends_lower_bounds(self):
        query = FakeQuery()
        service = SupabaseDataService(make_client(query), timeout=1.0)
        since = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        await service.query("sessions", {"restaurant_id": "R1"}, gte={"started_at": since})

        assert query.calls == [
            ("select", ("*",), {}),
            ("eq", ("restaurant_id", "R1"), {}),
            ("gte", ("started_at", "2024-05-01T12:00:00+00:00"), {}),
        ]

    async def test_unique_violation_is_conflict(self):
        error = PostgrestAPIError({"code": "23505", "message": "duplicate key value", "details": "", "hint": ""})
        service = SupabaseDataService(make_client(FakeQuery(error=error)), timeout=1.0)

        with pytest.raises(ConflictError):
            await service.insert("sessions", {"id": "s1"})

    async def test_other_database_errors_are_transient(self):
        error = PostgrestAPIError({"code": "42501", "message": "permission denied", "details": "", "hint": ""})
        service = SupabaseDataService(make_client(FakeQuery(error=error)), timeout=1.0)

        with pytest.raises(TransientError):
            await service.query("tables")

    async def test_network_errors_are_transient(self):
        query = FakeQuery(error=httpx.ConnectError("connection refused"))
        service = SupabaseDataService(make_client(query), timeout=1.0)

        with pytest.raises(TransientError):
            await service.query("tables")

    async def test_update_without_match_is_not_found(self):
        service = SupabaseDataService(make_client(FakeQuery(data=[])), timeout=1.0)

        with pytest.raises(NotFoundError):
            await service.update("sessions", {"id": "s1"}, {"status": "completed"})


class TestRealtime:
    async def test_subscribe_filters_and_normalizes(self):
        channel = FakeChannel()
        client = make_client(channel=channel)
        service = SupabaseDataService(client, timeout=1.0)
        changes = []

        subscription = await service.subscribe_to_changes("orders", {"session_id": "CS1"}, changes.append)
        channel.postgres_callback({
            "data": {
                "type": "UPDATE",
                "table": "orders",
                "commit_timestamp": "2024-05-01T18:30:00Z",
                "record": {"id": "O1", "session_id": "CS1", "status": "ready"},
                "old_record": {"id": "O1"},
            }
        })
        channel.postgres_callback({"data": {"type": "UPDATE", "record": {"id": "O2", "session_id": "CS2"}}})

        assert channel.postgres_options["filter"] == "session_id=eq.CS1"
        assert len(changes) == 1
        assert changes[0].event_type == "UPDATE"
        assert changes[0].record["status"] == "ready"
        assert changes[0].commit_timestamp == datetime(2024, 5, 1, 18, 30, tzinfo=timezone.utc)

        await subscription.unsubscribe()
        await subscription.unsubscribe()
        client.remove_channel.assert_awaited_once_with(channel)

    async def test_failed_join_is_transient_and_cleans_up(self):
        channel = FakeChannel(join_status=RealtimeSubscribeStates.CHANNEL_ERROR)
        client = make_client(channel=channel)
        service = SupabaseDataService(client, timeout=1.0)

        with pytest.raises(TransientError):
            await service.subscribe_to_changes("orders", {"session_id": "CS1"}, lambda change: None)
        client.remove_channel.assert_awaited_with(channel)

    async def test_broadcast_sends_and_leaves_channel(self):
        channel = FakeChannel()
        client = make_client(channel=channel)
        service = SupabaseDataService(client, timeout=1.0)

        await service.broadcast("restaurant-R1", "table_update", {"table_id": "T1"})

        client.channel.assert_called_once_with("restaurant-R1")
        assert channel.sent == [("table_update", {"table_id": "T1"})]
        client.remove_channel.assert_awaited_once_with(channel)

    def test_server_filter_skips_nulls(self):
        assert server_filter({"ended_at": None, "table_id": "T1"}) == "table_id=eq.T1"
        assert server_filter({"ended_at": None}) is None

    def test_flat_payload_accepted(self):
        change = change_from_payload("orders", {"eventType": "INSERT", "new": {"id": "O1"}})

        assert change.event_type == "INSERT"
        assert change.collection == "orders"
        assert change.record == {"id": "O1"}
        assert change.commit_timestamp is None


class TestAuth:
    async def test_authenticate_returns_credential(self):
        client = make_client()
        client.auth.sign_in_with_password = AsyncMock(return_value=SimpleNamespace(
            user=SimpleNamespace(id="u1", email="sam@example.com", user_metadata={"role": "staff"}),
            session=SimpleNamespace(access_token="token"),
        ))
        service = SupabaseDataService(client, timeout=1.0)

        credential = await service.authenticate("sam@example.com", "secret")

        assert credential.user_id == "u1"
        assert credential.user_metadata == {"role": "staff"}
        assert credential.access_token == "token"
        client.auth.sign_in_with_password.assert_awaited_once_with({"email": "sam@example.com", "password": "secret"})

    async def test_invalid_credentials_are_auth_error(self):
        client = make_client()
        client.auth.sign_in_with_password = AsyncMock(
            side_effect=AuthApiError("Invalid login credentials", 400, "invalid_credentials")
        )
        service = SupabaseDataService(client, timeout=1.0)

        with pytest.raises(AuthError):
            await service.authenticate("sam@example.com", "wrong")

    async def test_retryable_auth_failure_is_transient(self):
        client = make_client()
        client.auth.sign_in_with_password = AsyncMock(side_effect=AuthRetryableError("gateway timeout", 504))
        service = SupabaseDataService(client, timeout=1.0)

        with pytest.raises(TransientError):
            await service.authenticate("sam@example.com", "secret")

    async def test_no_session_means_no_credential(self):
        client = make_client()
        client.auth.get_session = AsyncMock(return_value=None)
        service = SupabaseDataService(client, timeout=1.0)

        assert await service.get_current_credential() is None

    async def test_update_user_metadata(self):
        client = make_client()
        client.auth.update_user = AsyncMock()
        service = SupabaseDataService(client, timeout=1.0)

        await service.update_user_metadata({"role": "staff"})

        client.auth.update_user.assert_awaited_once_with({"data": {"role": "staff"}})
