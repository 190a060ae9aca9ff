"""
订单服务：下单、支付确认、状态推进、确认收货

状态机规则在 order_lifecycle 中；这里负责加载/持久化、并发冲突检测与通知投递。
同一订单的并发写入通过版本号串行化：UPDATE 以 (id, version) 为条件，败者得到 Conflict。
"""
import logging
import uuid
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import utcnow
from app.core.errors import Conflict, DistanceUnavailable, OrderNotFound
from app.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from app.schemas.order import CheckoutRequest
from app.schemas.shipping import ShippingQuote
from app.services import order_lifecycle, promo_service, shipping_pricer
from app.services.distance_resolver import GeoPoint, resolve_for_checkout
from app.services.notification_service import NotificationDispatcher, dispatch_event
from app.services.order_lifecycle import ActorRole

logger = logging.getLogger(__name__)


class OrderService:
    """订单服务类"""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock

    async def get_order(self, order_id: str) -> Order:
        """获取订单，不存在抛 OrderNotFound"""
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if not order:
            raise OrderNotFound(order_id)
        return order

    async def list_orders(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[OrderStatus] = None,
    ) -> Tuple[List[Order], int]:
        """客户的订单列表（按创建时间倒序）"""
        stmt = select(Order).where(Order.user_id == user_id)
        count_stmt = select(func.count()).select_from(Order).where(Order.user_id == user_id)
        if status:
            stmt = stmt.where(Order.status == status)
            count_stmt = count_stmt.where(Order.status == status)
        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(Order.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def list_vendor_orders(
        self,
        vendor_id: str,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Order], int]:
        """包含该商户商品的订单"""
        order_ids = select(OrderItem.order_id).where(OrderItem.vendor_id == vendor_id).distinct()
        stmt = select(Order).where(Order.id.in_(order_ids))
        count_stmt = select(func.count()).select_from(Order).where(Order.id.in_(order_ids))
        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(Order.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def quote_for_checkout(
        self,
        data: CheckoutRequest,
        subtotal: int,
        location_repo,
        promo_repo,
        user_id: Optional[str] = None,
    ) -> Tuple[ShippingQuote, Optional[str]]:
        """
        按下单请求计算运费，返回 (报价, 生效的优惠码)。
        address_id 只解析属于 user_id 的地址，他人地址视为无坐标。
        """
        now = self.clock()
        address = data.shipping_address
        delivery = GeoPoint(address.latitude, address.longitude)
        if not delivery.has_coordinates and data.address_id is not None:
            try:
                delivery = await location_repo.address_coordinates(data.address_id, user_id=user_id)
            except DistanceUnavailable as e:
                logger.warning("获取收货地址坐标失败，使用默认运费: %s", e)
                delivery = None

        vendor_ids = list(dict.fromkeys(line.vendor_id for line in data.items))
        distance_km = await resolve_for_checkout(location_repo, delivery, vendor_ids)

        promo = None
        if data.promo_code and data.promo_code.strip():
            promo = await promo_service.validate(data.promo_code, now, promo_repo)

        quote = shipping_pricer.quote(distance_km, subtotal, promo, now=now)
        return quote, (promo.code if promo else None)

    async def create_order(
        self,
        user_id: str,
        data: CheckoutRequest,
        location_repo,
        promo_repo,
    ) -> Tuple[Order, ShippingQuote]:
        """
        下单：计算小计与运费，生成待支付订单与明细快照。
        订单金额在此刻固化，之后不再随报价变化。
        """
        subtotal = sum(line.unit_price * line.quantity for line in data.items)
        quote, promo_code = await self.quote_for_checkout(
            data, subtotal, location_repo, promo_repo, user_id=user_id
        )
        now = self.clock()

        order = Order(
            id=str(uuid.uuid4()),
            user_id=user_id,
            status=OrderStatus.PENDING_PAYMENT,
            payment_status=PaymentStatus.PENDING,
            escrow_status=None,
            subtotal=subtotal,
            shipping_fee=quote.final_fee,
            total=subtotal + quote.final_fee,
            shipping_address=data.shipping_address.model_dump(),
            shipping_distance_km=quote.distance_km,
            promo_code=promo_code,
            notes=data.notes,
            tracking_updates=[],
            created_at=now,
            updated_at=now,
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                vendor_id=line.vendor_id,
                product_name=line.product_name,
                variant_name=line.variant_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.unit_price * line.quantity,
            )
            for line in data.items
        ]
        self.db.add(order)
        await self.db.commit()
        logger.info(
            "订单已创建 order_id=%s user_id=%s subtotal=%s shipping_fee=%s total=%s",
            order.id, user_id, order.subtotal, order.shipping_fee, order.total,
        )
        return order, quote

    async def advance(
        self,
        order_id: str,
        target_status: OrderStatus,
        message: Optional[str],
        actor_role: ActorRole,
        expected_version: Optional[int] = None,
    ) -> Order:
        """推进订单状态并投递通知"""
        order = await self.get_order(order_id)
        if expected_version is not None and order.version != expected_version:
            raise Conflict(order_id)
        event = order_lifecycle.advance(order, target_status, message, actor_role, self.clock())
        await self._commit(order_id)
        logger.info("订单状态变更 order_id=%s status=%s actor=%s", order_id, order.status.value, actor_role)
        dispatch_event(self.dispatcher, event)
        return order

    async def confirm_delivery(self, order_id: str) -> Order:
        """客户确认收货：立即放款并完结订单"""
        order = await self.get_order(order_id)
        event = order_lifecycle.confirm_delivery(order, self.clock())
        await self._commit(order_id)
        logger.info("订单已确认收货并完结 order_id=%s", order_id)
        dispatch_event(self.dispatcher, event)
        return order

    async def find_by_payment_reference(self, reference: str) -> Optional[Order]:
        """按支付流水号查找订单"""
        result = await self.db.execute(select(Order).where(Order.payment_reference == reference))
        return result.scalars().first()

    async def record_payment_reference(self, order_id: str, reference: str) -> Order:
        """记录支付网关流水号（发起支付时）"""
        order = await self.get_order(order_id)
        order.payment_reference = reference
        order.updated_at = self.clock()
        await self._commit(order_id)
        return order

    async def apply_payment_result(
        self,
        order_id: str,
        reference: Optional[str],
        paid: bool,
    ) -> Tuple[Order, bool]:
        """
        应用支付核验结果，返回 (订单, 本次是否产生了变更)。
        支付成功是订单离开 pending_payment 的唯一途径；重复核验幂等。
        """
        order = await self.get_order(order_id)
        now = self.clock()
        if paid:
            event = order_lifecycle.confirm_payment(order, reference, now)
            if event is None:
                logger.info("订单已支付，跳过重复确认 order_id=%s", order_id)
                return order, False
            vendor_events = order_lifecycle.build_vendor_events(order)
            await self._commit(order_id)
            logger.info("支付已确认 order_id=%s reference=%s", order_id, reference)
            dispatch_event(self.dispatcher, event)
            for vendor_event in vendor_events:
                dispatch_event(self.dispatcher, vendor_event)
            return order, True

        changed = order_lifecycle.mark_payment_failed(order, now)
        if changed:
            await self._commit(order_id)
            logger.info("支付失败 order_id=%s reference=%s", order_id, reference)
        return order, changed

    async def _commit(self, order_id: str) -> None:
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning("订单并发写冲突 order_id=%s: %s", order_id, e)
            raise Conflict(order_id) from e
