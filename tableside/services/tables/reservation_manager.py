"""Staff table reservation lifecycle.

A table's reservation status is never stored. It is derived from whether an
active occupancy session references the table, so opening a session is the
only way to reserve a table and closing it is the only way to free one.
"""
import logging
from datetime import timedelta
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as SchemaValidationError

from tableside.config.settings import settings
from tableside.core.backend import BackendDataService, Collections, with_timeout
from tableside.core.exceptions import ConflictError, NotFoundError, TablesideError, ValidationError
from tableside.models.base import utc_now
from tableside.models.table import (
    CustomerInfo,
    OccupancySession,
    ReservationStatus,
    SessionStatus,
    Table,
    TableView,
)
from tableside.services.tables.analytics import TableAnalytics, summarize_sessions

logger = logging.getLogger(__name__)

CustomerInput = Union[CustomerInfo, Mapping[str, Any], None]

TABLE_ALREADY_RESERVED = "table already reserved"
NO_ACTIVE_SESSION = "no active session for this table"


def active_session_for(table: Table, sessions: Iterable[OccupancySession]) -> Optional[OccupancySession]:
    """Return the active session referencing the table, if any."""
    for session in sessions:
        if session.table_id == table.id and session.is_active:
            return session
    return None


def derive_status(table: Table, sessions: Iterable[OccupancySession]) -> ReservationStatus:
    """The one place that decides whether a table is reserved."""
    if active_session_for(table, sessions) is not None:
        return ReservationStatus.RESERVED
    return ReservationStatus.AVAILABLE


def build_table_view(table: Table, sessions: Iterable[OccupancySession]) -> TableView:
    sessions = list(sessions)
    return TableView(
        table=table,
        reservation_status=derive_status(table, sessions),
        current_session=active_session_for(table, sessions),
    )


class TableReservationManager:
    """Enumerate a restaurant's tables and move them between available and reserved."""

    def __init__(self, backend: BackendDataService, timeout: Optional[float] = None):
        self.backend = backend
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT_SECONDS

    async def list_tables(self, restaurant_id: str) -> List[TableView]:
        """
        List the restaurant's active tables with their derived status.

        Partitioning into available and reserved is left to the caller.
        """
        table_rows = await self._call(
            self.backend.query(
                Collections.TABLES,
                {"restaurant_id": restaurant_id, "is_active": True},
                order_by="table_number",
            ),
            "list tables",
        )
        session_rows = await self._call(
            self.backend.query(
                Collections.SESSIONS,
                {"restaurant_id": restaurant_id, "status": SessionStatus.ACTIVE.value, "ended_at": None},
            ),
            "list active sessions",
        )
        sessions = [OccupancySession.from_record(row) for row in session_rows]
        return [build_table_view(Table.from_record(row), sessions) for row in table_rows]

    async def get_table(self, table_id: str) -> TableView:
        """Get one table with its current reservation info."""
        rows = await self._call(
            self.backend.query(Collections.TABLES, {"id": table_id}),
            "get table",
        )
        if not rows:
            raise NotFoundError("table not found", details={"table_id": table_id})

        table = Table.from_record(rows[0])
        active = await self._find_active_session(table_id)
        return build_table_view(table, [active] if active else [])

    async def reserve_table(
        self,
        table_id: str,
        restaurant_id: str,
        staff_id: str,
        customer: CustomerInput,
    ) -> OccupancySession:
        """
        Seat a walk-in party at a table on behalf of a staff member.

        Args:
            table_id: Table to reserve
            restaurant_id: Restaurant the table belongs to
            staff_id: Staff member opening the session
            customer: Party contact details; name is required

        Returns:
            The created occupancy session

        Raises:
            ValidationError: Missing or malformed customer details (nothing is written)
            NotFoundError: The table does not exist in this restaurant
            ConflictError: The table already has an active session
            TransientError: The backend failed or timed out
        """
        info = self._validate_customer(customer)
        if not info.name:
            raise ValidationError("customer name is required", details={"field": "name"})
        if not staff_id or not str(staff_id).strip():
            raise ValidationError("staff id is required", details={"field": "staff_id"})

        started_at = utc_now()
        session_token = f"staff_{staff_id}_{int(started_at.timestamp() * 1000)}"
        return await self._open_session(
            table_id,
            restaurant_id,
            info,
            staff_id=staff_id,
            session_token=session_token,
            created_by_staff=True,
        )

    async def reserve_table_by_customer(
        self,
        table_id: str,
        restaurant_id: str,
        session_token: str,
        customer: CustomerInput = None,
    ) -> OccupancySession:
        """Claim a table for a customer who scanned its QR code. Contact details are optional."""
        info = self._validate_customer(customer)
        if not session_token or not session_token.strip():
            raise ValidationError("session token is required", details={"field": "session_token"})

        return await self._open_session(
            table_id,
            restaurant_id,
            info,
            staff_id=None,
            session_token=session_token.strip(),
            created_by_staff=False,
        )

    async def release_table(self, table_id: str, session_id: str) -> None:
        """
        Close the table's active session; the table becomes available as a consequence.

        Releasing an already closed session is an error, not a no-op.

        Raises:
            NotFoundError: session_id is not the active session of table_id
            TransientError: The backend failed or timed out
        """
        active_filter = {
            "id": session_id,
            "table_id": table_id,
            "status": SessionStatus.ACTIVE.value,
            "ended_at": None,
        }
        rows = await self._call(
            self.backend.query(Collections.SESSIONS, active_filter),
            "find session to release",
        )
        if not rows:
            raise NotFoundError(NO_ACTIVE_SESSION, details={"table_id": table_id, "session_id": session_id})
        session = OccupancySession.from_record(rows[0])

        try:
            await self._call(
                self.backend.update(
                    Collections.SESSIONS,
                    active_filter,
                    {"status": SessionStatus.COMPLETED.value, "ended_at": utc_now().isoformat()},
                ),
                "close session",
            )
        except NotFoundError:
            # Closed by someone else between the read and the write
            raise NotFoundError(
                NO_ACTIVE_SESSION, details={"table_id": table_id, "session_id": session_id}
            ) from None

        logger.info(
            f"Released table {table_id} (session {session_id})",
            extra={"restaurant_id": session.restaurant_id, "table_id": table_id, "session_id": session_id},
        )
        await self._notify_status_change(session.restaurant_id, table_id, ReservationStatus.AVAILABLE)

    async def table_history(self, table_id: str, limit: Optional[int] = None) -> List[OccupancySession]:
        """Most recent sessions of a table, newest first."""
        rows = await self._call(
            self.backend.query(
                Collections.SESSIONS,
                {"table_id": table_id},
                order_by="started_at",
                descending=True,
                limit=limit or settings.TABLE_HISTORY_LIMIT,
            ),
            "table history",
        )
        return [OccupancySession.from_record(row) for row in rows]

    async def table_analytics(self, restaurant_id: str, days: Optional[int] = None) -> TableAnalytics:
        """Reservation statistics for the last `days` days."""
        days = days or settings.ANALYTICS_WINDOW_DAYS
        since = utc_now() - timedelta(days=days)

        session_rows = await self._call(
            self.backend.query(Collections.SESSIONS, {"restaurant_id": restaurant_id}, gte={"started_at": since}),
            "analytics sessions",
        )
        table_rows = await self._call(
            self.backend.query(Collections.TABLES, {"restaurant_id": restaurant_id}),
            "analytics tables",
        )

        sessions = [OccupancySession.from_record(row) for row in session_rows]
        table_numbers = {row["id"]: str(row.get("table_number")) for row in table_rows}
        return summarize_sessions(sessions, table_numbers)

    # Internal helpers

    async def _open_session(
        self,
        table_id: str,
        restaurant_id: str,
        info: CustomerInfo,
        *,
        staff_id: Optional[str],
        session_token: str,
        created_by_staff: bool,
    ) -> OccupancySession:
        rows = await self._call(
            self.backend.query(
                Collections.TABLES,
                {"id": table_id, "restaurant_id": restaurant_id, "is_active": True},
            ),
            "load table",
        )
        if not rows:
            raise NotFoundError(
                "table not found", details={"table_id": table_id, "restaurant_id": restaurant_id}
            )

        # Re-check against the backend right before writing; a cached table list may be stale
        existing = await self._find_active_session(table_id)
        if existing is not None:
            logger.info(
                f"Table {table_id} already reserved by session {existing.id}",
                extra={"restaurant_id": restaurant_id, "table_id": table_id},
            )
            raise ConflictError(
                TABLE_ALREADY_RESERVED,
                details={"table_id": table_id, "session_id": existing.id},
            )

        session = OccupancySession(
            id=OccupancySession.generate_uuid(),
            table_id=table_id,
            restaurant_id=restaurant_id,
            staff_id=staff_id,
            customer_name=info.name,
            customer_phone=info.phone,
            customer_email=info.email,
            session_token=session_token,
            created_by_staff=created_by_staff,
        )

        try:
            stored = await self._call(
                self.backend.insert(Collections.SESSIONS, session.to_record()),
                "create session",
            )
        except ConflictError as exc:
            # The storage layer allows one active session per table
            logger.info(
                f"Concurrent reservation of table {table_id} rejected by backend",
                extra={"restaurant_id": restaurant_id, "table_id": table_id},
            )
            raise ConflictError(TABLE_ALREADY_RESERVED, details={"table_id": table_id}) from exc

        created = OccupancySession.from_record(stored)
        logger.info(
            f"Reserved table {table_id} for {created.customer_name or 'customer'}",
            extra={"restaurant_id": restaurant_id, "table_id": table_id, "session_id": created.id},
        )
        await self._notify_status_change(
            restaurant_id,
            table_id,
            ReservationStatus.RESERVED,
            reserved_by="staff" if created_by_staff else "customer",
            staff_id=staff_id,
        )
        return created

    async def _find_active_session(self, table_id: str) -> Optional[OccupancySession]:
        rows = await self._call(
            self.backend.query(
                Collections.SESSIONS,
                {"table_id": table_id, "status": SessionStatus.ACTIVE.value, "ended_at": None},
            ),
            "check table availability",
        )
        return OccupancySession.from_record(rows[0]) if rows else None

    async def _notify_status_change(
        self,
        restaurant_id: str,
        table_id: str,
        status: ReservationStatus,
        reserved_by: Optional[str] = None,
        staff_id: Optional[str] = None,
    ) -> None:
        """Tell restaurant dashboards about the change. The reservation already happened either way."""
        payload = {
            "type": "table_status_change",
            "table_id": table_id,
            "status": status.value,
            "reserved_by": reserved_by,
            "staff_id": staff_id,
            "timestamp": utc_now().isoformat(),
        }
        try:
            await self._call(
                self.backend.broadcast(f"restaurant-{restaurant_id}", "table_update", payload),
                "broadcast table status",
            )
        except TablesideError as e:
            logger.warning(
                f"Table status notification failed: {e.message}",
                extra={"restaurant_id": restaurant_id, "table_id": table_id},
            )

    @staticmethod
    def _validate_customer(customer: CustomerInput) -> CustomerInfo:
        if isinstance(customer, CustomerInfo):
            return customer
        try:
            return CustomerInfo.model_validate(dict(customer or {}))
        except SchemaValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(
                f"Invalid customer details: {first.get('msg')}",
                details={"field": field, "errors": e.errors(include_url=False)},
            ) from None

    async def _call(self, awaitable, operation: str):
        return await with_timeout(awaitable, self.timeout, operation)
