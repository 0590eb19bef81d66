"""Realtime order status updates for a customer's dining session."""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from pydantic import ValidationError as SchemaValidationError

from tableside.config.settings import settings
from tableside.core.backend import (
    BackendDataService,
    Collections,
    RecordChange,
    Subscription,
    with_timeout,
)
from tableside.core.exceptions import ValidationError
from tableside.models.base import utc_now
from tableside.models.order import OrderStatus, OrderStatusEvent

logger = logging.getLogger(__name__)

OrderEventCallback = Callable[[OrderStatusEvent], None]

STATUS_EVENTS = ("INSERT", "UPDATE")


def order_event_from_change(change: RecordChange) -> Optional[OrderStatusEvent]:
    """
    Turn a row change on `orders` into a status event.

    Returns None for deletes, rows without an id, and statuses customers
    are not shown.
    """
    if change.event_type not in STATUS_EVENTS:
        return None

    record = change.record
    order_id = record.get("id")
    if not order_id:
        logger.warning("Ignoring order change without an id")
        return None

    try:
        status = OrderStatus(record.get("status"))
    except ValueError:
        logger.info(f"Skipping order {order_id} update with unknown status {record.get('status')!r}")
        return None

    order_number = record.get("order_number")
    try:
        return OrderStatusEvent(
            order_id=str(order_id),
            order_number=str(order_number) if order_number is not None else None,
            new_status=status,
            occurred_at=change.commit_timestamp or record.get("updated_at") or utc_now(),
        )
    except SchemaValidationError as e:
        logger.warning(f"Skipping malformed order change for {order_id}: {e}")
        return None


class OrderSubscription(Subscription):
    """Stops delivery as soon as it is unsubscribed, however often that happens."""

    def __init__(self, customer_session_id: str):
        self.customer_session_id = customer_session_id
        self._inner: Optional[Subscription] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, inner: Subscription) -> None:
        self._inner = inner

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._inner is not None:
            await self._inner.unsubscribe()
        logger.info("Order feed closed", extra={"session_id": self.customer_session_id})


class CustomerOrderFeed:
    """Surface order status changes for one customer session, in the order the backend sends them."""

    def __init__(self, backend: BackendDataService, timeout: Optional[float] = None):
        self.backend = backend
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT_SECONDS

    async def subscribe(self, customer_session_id: str, on_event: OrderEventCallback) -> Subscription:
        """
        Start delivering status events for the session's orders.

        Returns once the realtime channel is established. Duplicate events
        from the backend are passed through unchanged.

        Raises:
            ValidationError: Blank session id
            TransientError: The channel could not be established in time
        """
        if not customer_session_id or not str(customer_session_id).strip():
            raise ValidationError("customer session id is required", details={"field": "customer_session_id"})

        subscription = OrderSubscription(customer_session_id)

        def handle_change(change: RecordChange) -> None:
            if subscription.closed:
                return
            event = order_event_from_change(change)
            if event is None:
                return
            try:
                on_event(event)
            except Exception:
                logger.exception(
                    f"Order event handler failed for order {event.order_id}",
                    extra={"session_id": customer_session_id},
                )

        inner = await with_timeout(
            self.backend.subscribe_to_changes(
                Collections.ORDERS, {"session_id": customer_session_id}, handle_change
            ),
            self.timeout,
            "subscribe to order updates",
        )
        subscription.attach(inner)
        logger.info("Order feed opened", extra={"session_id": customer_session_id})
        return subscription

    @asynccontextmanager
    async def watch(self, customer_session_id: str, on_event: OrderEventCallback) -> AsyncIterator[Subscription]:
        """Subscribe for the duration of an `async with` block."""
        subscription = await self.subscribe(customer_session_id, on_event)
        try:
            yield subscription
        finally:
            await subscription.unsubscribe()
