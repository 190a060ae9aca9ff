"""
订单模型
"""
import enum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Float, ForeignKey, JSON, Enum as SQLEnum, event,
)
from sqlalchemy.orm import relationship, validates

from app.core.database import Base


class OrderStatus(str, enum.Enum):
    """订单状态（前向链顺序即声明顺序，CANCELLED 为终态，不在前向链中）"""
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PROCESSING = "processing"
    READY_FOR_PICKUP = "ready_for_pickup"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """支付状态"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class EscrowStatus(str, enum.Enum):
    """担保资金状态"""
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


def _enum_values(enum_cls):
    # 落库存枚举值（pending_payment），与既有消费方保持一致
    return [m.value for m in enum_cls]


# 创建后不可修改的金额字段
_FROZEN_AMOUNT_FIELDS = ("subtotal", "shipping_fee", "total")


class Order(Base):
    """订单表"""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(
        SQLEnum(OrderStatus, values_callable=_enum_values, native_enum=False, length=32),
        nullable=False,
        default=OrderStatus.PENDING_PAYMENT,
        index=True,
    )
    payment_status = Column(
        SQLEnum(PaymentStatus, values_callable=_enum_values, native_enum=False, length=16),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    escrow_status = Column(
        SQLEnum(EscrowStatus, values_callable=_enum_values, native_enum=False, length=16),
        nullable=True,
        index=True,
    )
    payment_reference = Column(String(100), nullable=True, index=True)
    subtotal = Column(Integer, nullable=False)
    shipping_fee = Column(Integer, nullable=False)
    total = Column(Integer, nullable=False)
    shipping_address = Column(JSON, nullable=False)  # 下单时的地址快照
    shipping_distance_km = Column(Float, nullable=True)
    promo_code = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    tracking_updates = Column(JSON, nullable=False, default=list)  # [{status, message, timestamp}]
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    auto_release_at = Column(DateTime(timezone=True), nullable=True, index=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    # 乐观锁：UPDATE 带 version 条件，并发写入时败者抛 StaleDataError
    __mapper_args__ = {"version_id_col": version}

    # 关系
    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    @validates(*_FROZEN_AMOUNT_FIELDS)
    def _validate_frozen_amount(self, key, value):
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError(f"订单金额字段 {key} 创建后不可修改")
        if value is None or int(value) < 0:
            raise ValueError(f"订单金额字段 {key} 必须为非负整数")
        return int(value)

    @property
    def vendor_ids(self) -> list[str]:
        """订单涉及的商户（去重，保持首次出现顺序）"""
        seen = []
        for item in self.items or []:
            if item.vendor_id not in seen:
                seen.append(item.vendor_id)
        return seen


class OrderItem(Base):
    """订单明细表：下单时的商品快照，写入后不可修改"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    vendor_id = Column(String(64), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    variant_name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")


@event.listens_for(OrderItem, "before_update")
def _reject_order_item_update(mapper, connection, target):
    """订单明细是历史快照，商品改价改名不能回写到已有订单"""
    raise ValueError(f"订单明细 {target.id} 为只读快照，不允许修改")
