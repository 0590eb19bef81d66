"""Table reservation analytics."""
from collections import Counter
from typing import Dict, Iterable, List

from pydantic import BaseModel, Field

from tableside.models.table import OccupancySession


class TableCount(BaseModel):
    table: str
    count: int


class HourCount(BaseModel):
    hour: int
    count: int


class TableAnalytics(BaseModel):
    """Reservation statistics for one restaurant over a time window."""
    total_reservations: int = 0
    customer_reservations: int = 0
    staff_assisted_reservations: int = 0
    average_session_duration: int = Field(0, description="Average completed session length, minutes")
    most_popular_tables: List[TableCount] = Field(default_factory=list)
    peak_hours: List[HourCount] = Field(default_factory=list)


def average_session_duration(sessions: Iterable[OccupancySession]) -> int:
    durations = [s.duration_minutes for s in sessions if s.duration_minutes is not None]
    if not durations:
        return 0
    return round(sum(durations) / len(durations))


def most_popular_tables(
    sessions: Iterable[OccupancySession],
    table_numbers: Dict[str, str],
    top: int = 5,
) -> List[TableCount]:
    counts = Counter(
        table_numbers[s.table_id] for s in sessions if s.table_id in table_numbers
    )
    return [TableCount(table=table, count=count) for table, count in counts.most_common(top)]


def peak_hours(sessions: Iterable[OccupancySession], top: int = 3) -> List[HourCount]:
    # Hours are bucketed in the timezone the timestamps were stored with (UTC from Supabase)
    counts = Counter(s.started_at.hour for s in sessions)
    return [HourCount(hour=hour, count=count) for hour, count in counts.most_common(top)]


def summarize_sessions(
    sessions: Iterable[OccupancySession],
    table_numbers: Dict[str, str],
) -> TableAnalytics:
    """Build analytics from the sessions of one restaurant (already filtered to the window)."""
    sessions = list(sessions)
    staff_assisted = sum(1 for s in sessions if s.created_by_staff)
    return TableAnalytics(
        total_reservations=len(sessions),
        customer_reservations=len(sessions) - staff_assisted,
        staff_assisted_reservations=staff_assisted,
        average_session_duration=average_session_duration(sessions),
        most_popular_tables=most_popular_tables(sessions, table_numbers),
        peak_hours=peak_hours(sessions),
    )
