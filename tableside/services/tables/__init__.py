from tableside.services.tables.analytics import TableAnalytics, summarize_sessions
from tableside.services.tables.reservation_manager import (
    TableReservationManager,
    active_session_for,
    build_table_view,
    derive_status,
)

__all__ = [
    "TableAnalytics",
    "summarize_sessions",
    "TableReservationManager",
    "active_session_for",
    "build_table_view",
    "derive_status",
]
