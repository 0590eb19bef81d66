"""Order status notifications surfaced to customers."""
from enum import Enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


STATUS_MESSAGES = {
    OrderStatus.PENDING: "Order received",
    OrderStatus.PREPARING: "Order preparation started",
    OrderStatus.READY: "Order is ready for pickup",
    OrderStatus.DELIVERED: "Order has been delivered",
    OrderStatus.CANCELLED: "Order has been cancelled",
}


class OrderStatusEvent(BaseModel):
    """One status change of one order. Ephemeral: shown once, then dropped."""
    model_config = {"frozen": True}

    order_id: str
    order_number: Optional[str] = None
    new_status: OrderStatus
    occurred_at: datetime

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.new_status]
