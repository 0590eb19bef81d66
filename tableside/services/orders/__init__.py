from tableside.services.orders.order_feed import CustomerOrderFeed, OrderSubscription, order_event_from_change

__all__ = ["CustomerOrderFeed", "OrderSubscription", "order_event_from_change"]
