"""
通用依赖：客户端 IP、限流、外部协作方
"""
from fastapi import Depends, HTTPException, Request

from app.schemas.auth import Principal
from app.api.v1.auth import get_current_principal
from app.services.notification_service import CeleryNotificationDispatcher, NotificationDispatcher
from app.services.payment_service import PaystackGateway
from app.services.rate_limit_service import (
    check_and_incr_checkout,
    check_and_incr_promo_attempts,
)


def get_client_ip(request: Request) -> str | None:
    """优先取反向代理透传的 X-Forwarded-For 首个地址"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def audit_context(request: Request) -> dict:
    """审计记录附带的请求来源"""
    return {"ip": get_client_ip(request), "request_id": getattr(request.state, "request_id", None)}


async def require_checkout_rate_limit(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """下单限流：超出每日下单次数返回 429。"""
    allowed, n, limit = check_and_incr_checkout(principal.id)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"每日下单次数已达上限（{limit}），请明日再试",
        )
    return principal


async def require_promo_rate_limit(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """优惠码校验限流：超出每分钟次数返回 429。"""
    allowed, n, limit = check_and_incr_promo_attempts(principal.id)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"优惠码校验过于频繁，请稍后再试（每分钟上限 {limit}）",
        )
    return principal


def get_notification_dispatcher() -> NotificationDispatcher:
    return CeleryNotificationDispatcher()


def get_payment_gateway() -> PaystackGateway:
    return PaystackGateway()
