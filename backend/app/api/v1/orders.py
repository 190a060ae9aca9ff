"""
订单相关API
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.order import Order, OrderStatus
from app.schemas.auth import Principal, PrincipalRole
from app.schemas.order import (
    CheckoutRequest,
    CheckoutResponse,
    OrderListResponse,
    OrderResponse,
    SettlementResponse,
    StatusUpdateRequest,
)
from app.api.v1.auth import get_current_principal, require_roles
from app.api.deps import audit_context, get_notification_dispatcher, require_checkout_rate_limit
from app.services.audit_service import log_order_action
from app.services.location_service import SqlLocationRepository
from app.services.notification_service import NotificationDispatcher
from app.services.order_lifecycle import ActorRole
from app.services.order_service import OrderService
from app.services.promo_service import SqlPromoCodeRepository
from app.services.settlement_clock import settlement_snapshot

logger = logging.getLogger(__name__)

router = APIRouter()


def _can_view(order: Order, principal: Principal) -> bool:
    if principal.role == PrincipalRole.ADMIN:
        return True
    if principal.role == PrincipalRole.VENDOR:
        return principal.id in order.vendor_ids
    return order.user_id == principal.id


def _ensure_can_view(order: Order, principal: Principal) -> None:
    # 无权查看与不存在返回同样的 404，不暴露订单是否存在
    if not _can_view(order, principal):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"订单不存在: {order.id}")


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    data: CheckoutRequest,
    request: Request,
    principal: Principal = Depends(require_checkout_rate_limit),
    db: AsyncSession = Depends(get_db),
):
    """下单：生成待支付订单，金额与运费在此刻固化"""
    if principal.role != PrincipalRole.CUSTOMER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="仅客户可以下单")
    order_service = OrderService(db)
    order, quote = await order_service.create_order(
        principal.id,
        data,
        SqlLocationRepository(db),
        SqlPromoCodeRepository(db),
    )
    response = CheckoutResponse(order=OrderResponse.model_validate(order), shipping=quote)
    await log_order_action(
        db, principal.id, principal.role.value, "checkout", order.id,
        {"total": order.total, "shipping_fee": order.shipping_fee, "promo_code": order.promo_code},
        **audit_context(request),
    )
    return response


@router.get("", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status_filter: OrderStatus | None = Query(None, alias="status", description="按订单状态筛选"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """当前客户的订单列表"""
    order_service = OrderService(db)
    orders, total = await order_service.list_orders(principal.id, page, page_size, status_filter)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/vendor", response_model=OrderListResponse)
async def list_vendor_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_roles(PrincipalRole.VENDOR)),
    db: AsyncSession = Depends(get_db),
):
    """商户视角：包含本店商品的订单"""
    order_service = OrderService(db)
    orders, total = await order_service.list_vendor_orders(principal.id, page, page_size)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """订单详情"""
    order = await OrderService(db).get_order(order_id)
    _ensure_can_view(order, principal)
    return order


@router.post("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    data: StatusUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_roles(PrincipalRole.VENDOR, PrincipalRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """推进订单状态（商家仅能操作包含本店商品的订单）"""
    order_service = OrderService(db, dispatcher=dispatcher)
    order = await order_service.get_order(order_id)
    _ensure_can_view(order, principal)
    previous = order.status
    order = await order_service.advance(
        order_id,
        data.status,
        data.message,
        ActorRole(principal.role.value),
        expected_version=data.expected_version,
    )
    response = OrderResponse.model_validate(order)
    await log_order_action(
        db, principal.id, principal.role.value, "update_order_status", order_id,
        {"from": previous.value, "to": order.status.value},
        **audit_context(request),
    )
    return response


@router.post("/{order_id}/confirm-delivery", response_model=OrderResponse)
async def confirm_delivery(
    order_id: str,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """客户确认收货：货款立即结算给商户，订单完结"""
    order_service = OrderService(db, dispatcher=dispatcher)
    order = await order_service.get_order(order_id)
    _ensure_can_view(order, principal)
    if order.user_id != principal.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="仅下单客户可以确认收货")
    order = await order_service.confirm_delivery(order_id)
    response = OrderResponse.model_validate(order)
    await log_order_action(
        db, principal.id, principal.role.value, "confirm_delivery", order_id,
        **audit_context(request),
    )
    return response


@router.get("/{order_id}/settlement", response_model=SettlementResponse)
async def get_settlement(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """放款状态：是否可结算给商户及原因"""
    order_service = OrderService(db)
    order = await order_service.get_order(order_id)
    _ensure_can_view(order, principal)
    snapshot = settlement_snapshot(order, order_service.clock())
    return SettlementResponse(order_id=order.id, escrow_status=order.escrow_status, **snapshot)
