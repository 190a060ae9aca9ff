"""
运费相关API：运费预览、优惠码校验、档位说明
"""
import logging
import math

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.database import get_db
from app.schemas.auth import Principal
from app.schemas.shipping import (
    DiscountTiersResponse,
    DistanceTierItem,
    PromoCodeResponse,
    PromoValidateRequest,
    QuoteRequest,
    QuoteResponse,
    ValueDiscountItem,
)
from app.api.v1.auth import get_current_principal
from app.api.deps import require_promo_rate_limit
from app.services import promo_service, shipping_pricer
from app.services.distance_resolver import GeoPoint, resolve_for_checkout
from app.services.location_service import SqlLocationRepository
from app.services.promo_service import SqlPromoCodeRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/quote", response_model=QuoteResponse)
async def quote_shipping(
    data: QuoteRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """运费预览（结算页展示用，不落库；下单时会重新计算）"""
    now = utcnow()
    location_repo = SqlLocationRepository(db)
    delivery = None
    if data.delivery is not None:
        delivery = GeoPoint(data.delivery.latitude, data.delivery.longitude)
    elif data.address_id is not None:
        try:
            address = await location_repo.get_address(data.address_id)
        except SQLAlchemyError as e:
            logger.warning("查询收货地址失败，使用默认运费: %s", e)
            address = None
        # 只使用本人的地址
        if address is not None and address.user_id == principal.id:
            delivery = GeoPoint(address.latitude, address.longitude, ref=str(address.id))

    vendor_ids = list(dict.fromkeys(data.vendor_ids))
    distance_km = await resolve_for_checkout(location_repo, delivery, vendor_ids)

    promo = None
    if data.promo_code and data.promo_code.strip():
        promo = await promo_service.validate(data.promo_code, now, SqlPromoCodeRepository(db))

    return QuoteResponse(
        quote=shipping_pricer.quote(distance_km, data.subtotal, promo, now=now),
        next_tier=shipping_pricer.get_next_discount_tier(data.subtotal),
    )


@router.post("/promo-codes/validate", response_model=PromoCodeResponse)
async def validate_promo_code(
    data: PromoValidateRequest,
    principal: Principal = Depends(require_promo_rate_limit),
    db: AsyncSession = Depends(get_db),
):
    """校验优惠码；无效时返回 400 及原因（not_found / expired / empty）"""
    promo = await promo_service.validate(data.code, utcnow(), SqlPromoCodeRepository(db))
    return PromoCodeResponse(
        code=promo.code,
        discount_type=promo.discount_type.value,
        discount_value=promo.discount_value,
        description=promo.description,
        expires_at=promo.expires_at,
    )


@router.get("/discount-tiers", response_model=DiscountTiersResponse)
async def get_discount_tiers():
    """运费距离档位与金额减免档位"""
    return DiscountTiersResponse(
        distance_tiers=[
            DistanceTierItem(max_km=None if math.isinf(max_km) else max_km, fee=fee)
            for max_km, fee in shipping_pricer.DISTANCE_TIERS
        ],
        value_discounts=[
            ValueDiscountItem(min_value=min_value, discount=discount)
            for min_value, discount in shipping_pricer.VALUE_DISCOUNTS
        ],
        default_fee=shipping_pricer.DEFAULT_SHIPPING_FEE,
        min_fee=shipping_pricer.MIN_SHIPPING_FEE,
        max_fee=shipping_pricer.MAX_SHIPPING_FEE,
    )
