"""
Subscriber orders and subscription claims.

An order is funded by its owner, verified by an administrator and then
collects verified subscribers until it reaches its target.
"""

from .models import Order, OrderStatus, SubmissionStatus, Subscription
from .service import OrderService, build_order, subscriber_target_for
from .subscriptions import SubscriptionService

__all__ = [
    "Order",
    "OrderStatus",
    "SubmissionStatus",
    "Subscription",
    "OrderService",
    "SubscriptionService",
    "build_order",
    "subscriber_target_for",
]
