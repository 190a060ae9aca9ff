# Database models
from app.models.order import Order, OrderItem, OrderStatus, PaymentStatus, EscrowStatus
from app.models.promo_code import PromoCode, PromoDiscountType
from app.models.location import VendorLocation, Address
from app.models.audit_log import AuditLog

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "EscrowStatus",
    "PromoCode",
    "PromoDiscountType",
    "VendorLocation",
    "Address",
    "AuditLog",
]
