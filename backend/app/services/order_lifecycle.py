"""
订单生命周期状态机

前向链：pending_payment → payment_confirmed → processing → ready_for_pickup → shipped
        → out_for_delivery → delivered → completed
终态 cancelled 不在前向链中，只能从 pending_payment / processing 进入。

本模块只修改内存中的订单对象并返回通知事件，不做 I/O；持久化、并发控制与通知投递由 order_service 负责。
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from app.core.clock import as_utc
from app.core.config import settings
from app.core.errors import (
    AlreadyConfirmed,
    InvalidState,
    InvalidTransition,
    PaymentRequired,
)
from app.models.order import EscrowStatus, OrderStatus, PaymentStatus
from app.services.settlement_clock import is_release_eligible

FORWARD_CHAIN = (
    OrderStatus.PENDING_PAYMENT,
    OrderStatus.PAYMENT_CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
)
_CHAIN_INDEX = {status: i for i, status in enumerate(FORWARD_CHAIN)}

CANCELLABLE_FROM = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class ActorRole(str, enum.Enum):
    """操作方"""
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"
    SYSTEM = "system"  # 支付回调等内部流程


@dataclass(frozen=True)
class NotificationTemplate:
    """状态通知模板；message / tracking 可使用 {order_ref} {amount} 占位"""
    title: str
    message: str
    tracking: str = ""
    type: str = "order"
    category: str = "order"


# 状态 → 通知模板。除 pending_payment（订单创建时的初始状态）外每个状态都必须有模板
STATUS_NOTIFICATIONS = {
    OrderStatus.PAYMENT_CONFIRMED: NotificationTemplate(
        title="支付成功",
        message="您的付款 {amount} 已收到，订单 #{order_ref} 正在处理中。",
        tracking="付款已确认，资金由平台托管",
        type="success",
        category="payment",
    ),
    OrderStatus.PROCESSING: NotificationTemplate(
        title="订单处理中",
        message="商家正在为订单 #{order_ref} 备货。",
        tracking="商家正在备货",
    ),
    OrderStatus.READY_FOR_PICKUP: NotificationTemplate(
        title="订单待揽收",
        message="订单 #{order_ref} 已打包完成，等待物流揽收。",
        tracking="包裹已打包，等待揽收",
    ),
    OrderStatus.SHIPPED: NotificationTemplate(
        title="订单已发货",
        message="订单 #{order_ref} 已发货，正在运输途中。",
        tracking="包裹已发出",
    ),
    OrderStatus.OUT_FOR_DELIVERY: NotificationTemplate(
        title="订单派送中",
        message="订单 #{order_ref} 正在派送，请保持电话畅通。",
        tracking="包裹派送中",
    ),
    OrderStatus.DELIVERED: NotificationTemplate(
        title="订单已送达",
        message="订单 #{order_ref} 已送达。确认收货后货款将结算给商家，{days} 天后将自动确认。",
        tracking="包裹已送达",
        type="success",
    ),
    OrderStatus.COMPLETED: NotificationTemplate(
        title="订单已完成",
        message="订单 #{order_ref} 已完成，感谢您的购买！",
        tracking="订单已完成",
        type="success",
    ),
    OrderStatus.CANCELLED: NotificationTemplate(
        title="订单已取消",
        message="订单 #{order_ref} 已取消。如已付款，款项将原路退回。",
        tracking="订单已取消",
        type="warning",
    ),
}

# 支付确认后发给每个商户的新订单通知，只含该商户自己的商品与小计
VENDOR_NEW_ORDER = NotificationTemplate(
    title="新订单",
    message="您有一笔新订单 #{order_ref}：{items}，合计 {amount}。请尽快备货。",
)


@dataclass(frozen=True)
class LifecycleEvent:
    """订单事件产生的通知，发给客户或相关商户"""
    order_id: str
    user_id: str
    status: OrderStatus
    title: str
    message: str
    type: str
    category: str
    action_url: str
    metadata: dict = field(default_factory=dict)


def chain_index(status: OrderStatus) -> Optional[int]:
    """前向链中的位置；cancelled 返回 None"""
    return _CHAIN_INDEX.get(OrderStatus(status))


def _render(text: str, order) -> str:
    return text.format(
        order_ref=str(order.id)[:8],
        amount=f"{settings.CURRENCY_SYMBOL}{int(order.total or 0):,}",
        days=settings.ESCROW_AUTO_RELEASE_DAYS,
    )


def build_event(order, status: OrderStatus, actor_role: ActorRole) -> LifecycleEvent:
    """按状态模板生成通知事件"""
    template = STATUS_NOTIFICATIONS[status]
    return LifecycleEvent(
        order_id=order.id,
        user_id=order.user_id,
        status=status,
        title=template.title,
        message=_render(template.message, order),
        type=template.type,
        category=template.category,
        action_url=f"/orders/{order.id}",
        metadata={
            "order_id": order.id,
            "status": status.value,
            "actor_role": ActorRole(actor_role).value,
        },
    )


def build_vendor_events(order) -> list[LifecycleEvent]:
    """按商户分组生成新订单通知，每个商户一条"""
    grouped = {}
    for item in order.items or []:
        grouped.setdefault(item.vendor_id, []).append(item)

    events = []
    for vendor_id, items in grouped.items():
        vendor_total = sum(int(item.total_price) for item in items)
        names = "、".join(item.product_name for item in items[:2])
        if len(items) > 2:
            names = f"{names} 等 {len(items)} 件商品"
        events.append(
            LifecycleEvent(
                order_id=order.id,
                user_id=vendor_id,
                status=OrderStatus.PAYMENT_CONFIRMED,
                title=VENDOR_NEW_ORDER.title,
                message=VENDOR_NEW_ORDER.message.format(
                    order_ref=str(order.id)[:8],
                    items=names,
                    amount=f"{settings.CURRENCY_SYMBOL}{vendor_total:,}",
                ),
                type=VENDOR_NEW_ORDER.type,
                category=VENDOR_NEW_ORDER.category,
                action_url="/vendor/orders",
                metadata={
                    "order_id": order.id,
                    "status": OrderStatus.PAYMENT_CONFIRMED.value,
                    "actor_role": ActorRole.SYSTEM.value,
                    "vendor_total": vendor_total,
                    "item_count": len(items),
                },
            )
        )
    return events


def _last_tracking_time(order) -> Optional[datetime]:
    updates = order.tracking_updates or []
    if not updates:
        return None
    return as_utc(datetime.fromisoformat(updates[-1]["timestamp"]))


def append_tracking(order, status: OrderStatus, message: str, now: datetime) -> datetime:
    """
    追加一条物流轨迹并返回其时间戳。
    轨迹只增不改；新时间戳不早于上一条（时钟回拨时与上一条对齐）。
    """
    timestamp = as_utc(now)
    last = _last_tracking_time(order)
    if last is not None and timestamp < last:
        timestamp = last
    entry = {"status": OrderStatus(status).value, "message": message, "timestamp": timestamp.isoformat()}
    # 重新赋值列表，ORM 才能感知 JSON 列变更
    order.tracking_updates = [*(order.tracking_updates or []), entry]
    return timestamp


def _check_transition(order, target: OrderStatus) -> None:
    current = OrderStatus(order.status)

    if current in TERMINAL_STATUSES:
        raise InvalidTransition(current.value, target.value, "订单已结束")

    if target == OrderStatus.CANCELLED:
        if current not in CANCELLABLE_FROM:
            raise InvalidTransition(current.value, target.value, "仅待支付或处理中的订单可以取消")
        return

    if current == OrderStatus.PENDING_PAYMENT:
        # 唯一出口是支付核验成功（confirm_payment）
        raise PaymentRequired(order.id, target.value)

    if chain_index(target) <= chain_index(current):
        raise InvalidTransition(current.value, target.value, "状态只能向后推进")


def advance(
    order,
    target_status: OrderStatus,
    message: Optional[str],
    actor_role: ActorRole,
    now: datetime,
) -> LifecycleEvent:
    """
    推进订单状态（商家 / 管理员）。

    可跳过中间状态向后推进，不可回退；进入 delivered 时设置自动放款时间（已设置则保持不变）。
    返回待投递的通知事件。
    """
    target = OrderStatus(target_status)
    actor = ActorRole(actor_role)
    if actor == ActorRole.CUSTOMER:
        raise InvalidTransition(OrderStatus(order.status).value, target.value, "客户不能变更订单状态")

    _check_transition(order, target)

    template = STATUS_NOTIFICATIONS[target]
    timestamp = append_tracking(order, target, (message or "").strip() or template.tracking, now)
    order.status = target
    order.updated_at = timestamp

    if target == OrderStatus.DELIVERED and order.auto_release_at is None:
        order.auto_release_at = timestamp + timedelta(days=settings.ESCROW_AUTO_RELEASE_DAYS)

    if target == OrderStatus.CANCELLED and order.escrow_status == EscrowStatus.HELD:
        order.escrow_status = EscrowStatus.REFUNDED

    return build_event(order, target, actor)


def confirm_payment(order, reference: Optional[str], now: datetime) -> Optional[LifecycleEvent]:
    """
    支付核验成功后的唯一出口：pending_payment → payment_confirmed，资金进入托管。
    已支付的订单直接返回 None（重复回调/重复核验不重复记轨迹、不重复通知）。
    """
    if order.payment_status == PaymentStatus.PAID:
        return None
    current = OrderStatus(order.status)
    if current != OrderStatus.PENDING_PAYMENT:
        raise InvalidTransition(current.value, OrderStatus.PAYMENT_CONFIRMED.value, "订单已不在待支付状态")

    template = STATUS_NOTIFICATIONS[OrderStatus.PAYMENT_CONFIRMED]
    timestamp = append_tracking(order, OrderStatus.PAYMENT_CONFIRMED, template.tracking, now)
    order.payment_status = PaymentStatus.PAID
    order.escrow_status = EscrowStatus.HELD
    order.status = OrderStatus.PAYMENT_CONFIRMED
    if reference:
        order.payment_reference = reference
    order.updated_at = timestamp
    return build_event(order, OrderStatus.PAYMENT_CONFIRMED, ActorRole.SYSTEM)


def mark_payment_failed(order, now: datetime) -> bool:
    """核验结果为失败时标记支付失败；订单仍停留在待支付，可再次发起支付。返回是否有变更"""
    if order.payment_status != PaymentStatus.PENDING:
        return False
    if OrderStatus(order.status) != OrderStatus.PENDING_PAYMENT:
        return False
    order.payment_status = PaymentStatus.FAILED
    order.updated_at = as_utc(now)
    return True


def release_escrow(order, now: datetime) -> bool:
    """托管资金满足放款条件时标记为已放款（记账用），返回是否有变更"""
    if order.escrow_status != EscrowStatus.HELD:
        return False
    if not is_release_eligible(order, now):
        return False
    order.escrow_status = EscrowStatus.RELEASED
    order.updated_at = as_utc(now)
    return True


def confirm_delivery(order, now: datetime) -> LifecycleEvent:
    """
    客户确认收货：记录确认时间、立即放款并完结订单，不再等待自动放款窗口。
    已确认过抛 AlreadyConfirmed；未送达抛 InvalidState。
    """
    if order.confirmed_at is not None:
        raise AlreadyConfirmed(order.id)
    current = OrderStatus(order.status)
    if current != OrderStatus.DELIVERED:
        raise InvalidState(f"订单当前状态为 {current.value}，送达后才能确认收货")
    timestamp = append_tracking(order, OrderStatus.COMPLETED, "客户已确认收货", now)
    order.status = OrderStatus.COMPLETED
    order.confirmed_at = timestamp
    order.escrow_status = EscrowStatus.RELEASED
    order.updated_at = timestamp
    return build_event(order, OrderStatus.COMPLETED, ActorRole.CUSTOMER)
