"""
Record models package.

This file makes it easy to import all models at once.
"""

from .base import SupabaseRecord
from .order import OrderStatus, OrderStatusEvent
from .principal import CachedProfile, Credential, Principal
from .table import (
    CustomerInfo,
    OccupancySession,
    ReservationStatus,
    SessionStatus,
    Table,
    TableView,
)

__all__ = [
    "SupabaseRecord",
    "OrderStatus",
    "OrderStatusEvent",
    "CachedProfile",
    "Credential",
    "Principal",
    "CustomerInfo",
    "OccupancySession",
    "ReservationStatus",
    "SessionStatus",
    "Table",
    "TableView",
]
