"""
优惠码校验

优惠码可重复使用直至过期，校验成功不做核销。
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc
from app.core.errors import PromoInvalid
from app.models.promo_code import PromoCode


def normalize_code(code: Optional[str]) -> str:
    """去空白、转大写"""
    return (code or "").strip().upper()


class SqlPromoCodeRepository:
    """基于数据库的优惠码仓库（只读）"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup(self, code: str) -> Optional[PromoCode]:
        """按码查询（大小写不敏感）"""
        result = await self.db.execute(
            select(PromoCode).where(func.upper(PromoCode.code) == normalize_code(code))
        )
        return result.scalar_one_or_none()


async def validate(code: Optional[str], now: datetime, repository) -> PromoCode:
    """
    校验优惠码，返回可用的优惠码。

    - 空白输入: PromoInvalid(empty)
    - 不存在或未启用: PromoInvalid(not_found)
    - 已过期: PromoInvalid(expired)
    """
    normalized = normalize_code(code)
    if not normalized:
        raise PromoInvalid(PromoInvalid.EMPTY)
    promo = await repository.lookup(normalized)
    if promo is None or not promo.is_active:
        raise PromoInvalid(PromoInvalid.NOT_FOUND, normalized)
    expires_at = as_utc(promo.expires_at)
    if expires_at is not None and expires_at < as_utc(now):
        raise PromoInvalid(PromoInvalid.EXPIRED, normalized)
    return promo
