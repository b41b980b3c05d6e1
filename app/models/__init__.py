"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .catalog import Product, Vendor
from .consultation import Consultation
from .identity import AuthSession, Identity
from .order import Order, OrderItem, OrderStatus
from .processed_event import ProcessedEvent, ProcessingStatus

__all__ = [
    "AuditLog",
    "AuthSession",
    "Base",
    "Consultation",
    "Identity",
    "Order",
    "OrderItem",
    "OrderStatus",
    "ProcessedEvent",
    "ProcessingStatus",
    "Product",
    "Vendor",
]
