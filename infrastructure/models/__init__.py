"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel
from .access_grant import AccessGrantModel
from .cart import CartItemModel
from .booking import EventBookingModel
from .notification import NotificationJobModel
from .deferred_event import DeferredWebhookEventModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "AccessGrantModel",
    "CartItemModel",
    "EventBookingModel",
    "NotificationJobModel",
    "DeferredWebhookEventModel",
]
