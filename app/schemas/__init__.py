"""Schema package exports."""
from .checkout import (
    CheckoutCreate,
    CheckoutLineItem,
    CheckoutRead,
    CheckoutSessionStatusRead,
    SessionOrderStatus,
)
from .identity import (
    ExternalLoginCreate,
    ExternalLoginRead,
    MigrateGuestRead,
    MigrateGuestRequest,
    SessionTokenRead,
)
from .order import OrderItemRead, OrderRead, OrderStatusUpdate
from .webhook import WebhookAck
