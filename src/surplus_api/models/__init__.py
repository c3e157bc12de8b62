"""SQLAlchemy models package."""

# Import all models
from .consumer import Consumer  # noqa: F401
from .notification import Notification, NotificationTypeEnum, RecipientTypeEnum  # noqa: F401
from .offer import Offer, OfferStatusEnum  # noqa: F401
from .order import (  # noqa: F401
    HOLDING_STATUSES,
    Order,
    OrderStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
)
from .order_state_event import (  # noqa: F401
    OrderStateActorTypeEnum,
    OrderStateEvent,
    OrderStateEventTypeEnum,
)
from .payment_notification import PaymentNotificationRecord, PaymentNotificationStatusEnum  # noqa: F401
from .restaurant import Restaurant  # noqa: F401
from .review import Review  # noqa: F401
from .transaction import Transaction, TransactionStatusEnum  # noqa: F401
