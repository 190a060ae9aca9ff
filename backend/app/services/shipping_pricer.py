"""
运费计算：按距离分档定价，按订单金额分档减免，优惠码覆盖金额减免（两者不叠加）

金额均为整数（无小数货币单位），四舍五入只作用于减免金额，不作用于基础运费。
"""
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from app.core.clock import as_utc
from app.models.promo_code import PromoDiscountType
from app.schemas.shipping import ShippingQuote, NextDiscountTier

# 距离分档（km 上限, 运费），按上限升序，首个上限 >= 距离的档位生效
DISTANCE_TIERS = (
    (5, 1500),
    (10, 2000),
    (20, 2800),
    (50, 4000),
    (100, 5500),
    (200, 7000),
    (300, 8500),
    (math.inf, 10000),
)

# 订单金额减免分档（最低金额, 减免比例），按门槛降序，首个门槛 <= 小计的档位生效
VALUE_DISCOUNTS = (
    (500000, 0.70),
    (200000, 0.50),
    (100000, 0.35),
    (50000, 0.20),
    (0, 0.0),
)

# 无法计算距离时的默认运费
DEFAULT_SHIPPING_FEE = 5000

# 展示用运费区间
MIN_SHIPPING_FEE = DISTANCE_TIERS[0][1]
MAX_SHIPPING_FEE = DISTANCE_TIERS[-1][1]


def get_base_fee_by_distance(distance_km: float) -> int:
    """按距离取基础运费"""
    for max_km, fee in DISTANCE_TIERS:
        if distance_km <= max_km:
            return fee
    return DISTANCE_TIERS[-1][1]


def get_discount_by_value(subtotal: int) -> float:
    """按订单小计取运费减免比例"""
    for min_value, discount in VALUE_DISCOUNTS:
        if subtotal >= min_value:
            return discount
    return 0.0


def get_next_discount_tier(subtotal: int) -> Optional[NextDiscountTier]:
    """下一档减免；已在最高档返回 None"""
    for min_value, discount in sorted(VALUE_DISCOUNTS):
        if min_value > subtotal:
            return NextDiscountTier(
                next_threshold=min_value,
                next_discount=discount,
                amount_needed=min_value - subtotal,
            )
    return None


def get_discount_tier_description(subtotal: int) -> Optional[str]:
    """当前减免档位描述，如 "70% off shipping"；无减免返回 None"""
    discount = get_discount_by_value(subtotal)
    if discount == 0:
        return None
    return f"{round(discount * 100)}% off shipping"


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _promo_applicable(promo, now: Optional[datetime]) -> bool:
    if promo is None:
        return False
    if getattr(promo, "is_active", True) is False:
        return False
    expires_at = as_utc(getattr(promo, "expires_at", None))
    if now is not None and expires_at is not None and expires_at < as_utc(now):
        return False
    return True


def _promo_fraction(promo) -> Decimal:
    if PromoDiscountType(promo.discount_type) == PromoDiscountType.FREE:
        return Decimal(1)
    fraction = Decimal(int(promo.discount_value or 0)) / Decimal(100)
    return min(max(fraction, Decimal(0)), Decimal(1))


def _promo_description(promo) -> str:
    description = getattr(promo, "description", None)
    if description:
        return description
    if PromoDiscountType(promo.discount_type) == PromoDiscountType.FREE:
        return "Free shipping"
    return f"{int(promo.discount_value or 0)}% off shipping"


def quote(
    distance_km: Optional[float],
    subtotal: int,
    promo=None,
    now: Optional[datetime] = None,
) -> ShippingQuote:
    """
    计算运费报价。

    promo 需已通过 promo_service.validate 校验；传入 now 时会再次排除已停用/已过期的优惠码，
    不可用的优惠码等同于未提供，回退到金额分档减免。
    """
    if distance_km is not None:
        base_fee = get_base_fee_by_distance(distance_km)
    else:
        base_fee = DEFAULT_SHIPPING_FEE

    if _promo_applicable(promo, now):
        fraction = _promo_fraction(promo)
        discount_amount = _round_half_up(Decimal(base_fee) * fraction)
        return ShippingQuote(
            base_fee=base_fee,
            discount_fraction=float(fraction),
            discount_amount=discount_amount,
            final_fee=base_fee - discount_amount,
            distance_km=distance_km,
            distance_known=distance_km is not None,
            promo_applied=True,
            promo_description=_promo_description(promo),
        )

    discount = get_discount_by_value(subtotal)
    # 比例经十进制字符串参与运算，.5 进位不受二进制误差影响
    discount_amount = _round_half_up(Decimal(base_fee) * Decimal(str(discount)))
    return ShippingQuote(
        base_fee=base_fee,
        discount_fraction=discount,
        discount_amount=discount_amount,
        final_fee=base_fee - discount_amount,
        distance_km=distance_km,
        distance_known=distance_km is not None,
        promo_applied=False,
        discount_description=get_discount_tier_description(subtotal),
    )
