"""
位置仓库：从只读表读取商户发货地与收货地址坐标
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DistanceUnavailable
from app.models.location import Address, VendorLocation
from app.services.distance_resolver import GeoPoint

logger = logging.getLogger(__name__)


class SqlLocationRepository:
    """基于数据库的位置仓库"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def vendor_coordinates(self, vendor_ids: list[str]) -> list[GeoPoint]:
        """商户坐标；未登记的商户按无坐标返回"""
        try:
            result = await self.db.execute(
                select(VendorLocation).where(VendorLocation.vendor_id.in_(vendor_ids))
            )
            rows = {row.vendor_id: row for row in result.scalars().all()}
        except SQLAlchemyError as e:
            raise DistanceUnavailable(f"商户坐标查询失败: {e}") from e
        points = []
        for vendor_id in vendor_ids:
            row = rows.get(vendor_id)
            points.append(
                GeoPoint(
                    latitude=row.latitude if row else None,
                    longitude=row.longitude if row else None,
                    ref=vendor_id,
                )
            )
        return points

    async def address_coordinates(self, address_id: int, user_id: Optional[str] = None) -> GeoPoint:
        """收货地址坐标；给出 user_id 时只认该用户自己的地址"""
        try:
            address = await self.get_address(address_id, user_id=user_id)
        except SQLAlchemyError as e:
            raise DistanceUnavailable(f"地址坐标查询失败: {e}") from e
        if not address:
            if user_id is not None:
                logger.warning("地址不存在或不属于当前用户 address_id=%s user_id=%s", address_id, user_id)
            return GeoPoint(ref=str(address_id))
        return GeoPoint(latitude=address.latitude, longitude=address.longitude, ref=str(address_id))

    async def get_address(self, address_id: int, user_id: Optional[str] = None) -> Optional[Address]:
        """获取地址"""
        stmt = select(Address).where(Address.id == address_id)
        if user_id is not None:
            stmt = stmt.where(Address.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
