"""
支付相关API：发起支付、核验支付、网关回调

订单离开待支付状态的唯一途径是网关核验成功；回调只作为触发信号，到账以再次核验的结果为准。
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import InvalidState
from app.models.order import Order, OrderStatus, PaymentStatus
from app.schemas.auth import Principal, PrincipalRole
from app.schemas.order import OrderResponse
from app.schemas.payment import (
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)
from app.api.v1.auth import get_current_principal
from app.api.deps import audit_context, get_notification_dispatcher, get_payment_gateway
from app.services.audit_service import log_order_action
from app.services.notification_service import NotificationDispatcher
from app.services.order_service import OrderService
from app.services.payment_service import PaystackGateway, PaymentVerifyResult, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter()

REFERENCE_PREFIX = "ORD-"


def order_id_from_reference(reference: str) -> Optional[str]:
    """从 ORD-{订单id}-{毫秒时间戳} 格式的流水号中解析订单 id"""
    if not reference or not reference.startswith(REFERENCE_PREFIX):
        return None
    order_id, _, suffix = reference[len(REFERENCE_PREFIX):].rpartition("-")
    if not order_id or not suffix.isdigit():
        return None
    return order_id


def _ensure_owner(order: Order, principal: Principal) -> None:
    if principal.role != PrincipalRole.ADMIN and order.user_id != principal.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"订单不存在: {order.id}")


async def _resolve_order_id(
    order_service: OrderService,
    result: PaymentVerifyResult,
    claimed_order_id: Optional[str] = None,
) -> str:
    """
    以网关核验结果确定交易所属订单。
    交易元数据、流水号、已登记流水号的订单与请求方声称的订单必须一致，否则抛 InvalidState。
    """
    from_reference = order_id_from_reference(result.reference)
    if result.order_id and from_reference and result.order_id != from_reference:
        raise InvalidState(f"支付流水 {result.reference} 的订单信息不一致")
    order_id = result.order_id or from_reference

    recorded = await order_service.find_by_payment_reference(result.reference)
    if recorded is not None:
        if order_id and recorded.id != order_id:
            raise InvalidState(f"支付流水 {result.reference} 已登记在其他订单上")
        order_id = recorded.id

    if not order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="无法从支付流水中确定订单")
    if claimed_order_id and claimed_order_id != order_id:
        raise InvalidState(f"支付流水 {result.reference} 不属于订单 {claimed_order_id}")
    return order_id


async def _apply_verification(
    order_service: OrderService,
    order: Order,
    result: PaymentVerifyResult,
) -> tuple[Order, bool]:
    """应用核验结果；到账金额不足订单总额时按未支付处理"""
    paid = result.paid
    if paid and result.amount < order.total:
        logger.warning(
            "支付金额不足 order_id=%s reference=%s amount=%s total=%s",
            order.id, result.reference, result.amount, order.total,
        )
        paid = False
    return await order_service.apply_payment_result(order.id, result.reference, paid)


@router.post("/initialize", response_model=PaymentInitResponse)
async def initialize_payment(
    data: PaymentInitRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    gateway: PaystackGateway = Depends(get_payment_gateway),
):
    """为待支付订单发起支付"""
    order_service = OrderService(db)
    order = await order_service.get_order(data.order_id)
    _ensure_owner(order, principal)
    if order.status != OrderStatus.PENDING_PAYMENT or order.payment_status == PaymentStatus.PAID:
        raise InvalidState(f"订单当前状态为 {order.status.value}，无需支付")
    if not principal.email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="账号缺少邮箱，无法发起支付")

    result = await gateway.initiate(
        order.id,
        order.total,
        principal.email,
        data.callback_url or settings.PAYMENT_CALLBACK_URL or None,
    )
    await order_service.record_payment_reference(order.id, result.reference)
    await log_order_action(
        db, principal.id, principal.role.value, "initialize_payment", order.id,
        {"reference": result.reference, "amount": order.total},
        **audit_context(request),
    )
    return PaymentInitResponse(
        authorization_url=result.authorization_url,
        reference=result.reference,
        access_code=result.access_code,
    )


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    data: PaymentVerifyRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    gateway: PaystackGateway = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """支付完成跳回后核验交易；重复核验幂等"""
    result = await gateway.verify(data.reference)
    order_service = OrderService(db, dispatcher=dispatcher)
    order_id = await _resolve_order_id(order_service, result, data.order_id)
    order = await order_service.get_order(order_id)
    _ensure_owner(order, principal)
    already_paid = order.payment_status == PaymentStatus.PAID

    order, changed = await _apply_verification(order_service, order, result)
    response = PaymentVerifyResponse(
        paid=order.payment_status == PaymentStatus.PAID,
        status="already_processed" if already_paid else result.status,
        amount=result.amount,
        reference=result.reference,
        order=OrderResponse.model_validate(order),
    )
    if changed:
        await log_order_action(
            db, principal.id, principal.role.value, "verify_payment", order.id,
            {"reference": result.reference, "status": result.status},
            **audit_context(request),
        )
    return response


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaystackGateway = Depends(get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """网关回调：必须带有效签名；charge.success 事件再向网关核验后才更新订单"""
    body = await request.body()
    signature = request.headers.get("x-paystack-signature")
    if not verify_webhook_signature(body, signature, gateway.secret_key):
        logger.warning("支付回调签名无效")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="签名无效")

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="回调内容无法解析")

    event_type = event.get("event")
    logger.info("收到支付回调 event=%s", event_type)
    if event_type != "charge.success":
        return {"status": "ignored"}

    payload = event.get("data") or {}
    reference = payload.get("reference")
    metadata = payload.get("metadata") or {}
    order_id = (metadata.get("order_id") if isinstance(metadata, dict) else None) or order_id_from_reference(reference)
    if not reference or not order_id:
        logger.warning("支付回调缺少流水号或订单 id reference=%s", reference)
        return {"status": "ignored"}

    result = await gateway.verify(reference)
    order_service = OrderService(db, dispatcher=dispatcher)
    try:
        order_id = await _resolve_order_id(order_service, result, order_id)
    except InvalidState as e:
        logger.warning("支付回调订单不匹配 reference=%s: %s", reference, e)
        return {"status": "ignored"}
    order = await order_service.get_order(order_id)
    order, changed = await _apply_verification(order_service, order, result)
    return {"status": "processed" if changed else "unchanged", "order_id": order.id}
