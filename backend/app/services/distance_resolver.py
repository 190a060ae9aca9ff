"""
配送距离：收货点到各商户发货地的球面距离（Haversine），多商户订单取最远一段
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from app.core.errors import DistanceUnavailable

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPoint:
    """坐标点，经纬度可能缺失"""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    ref: Optional[str] = None  # 商户 id 或地址 id，便于日志定位

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """两点间大圆距离（km）"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def resolve(delivery: Optional[GeoPoint], vendors: Iterable[GeoPoint]) -> Optional[float]:
    """
    计算收货点到最远商户的距离。

    收货点无坐标、或所有商户都无坐标时返回 None，由调用方回退默认运费。
    每个商户独立发货到同一地址，运费按最远一段覆盖。
    """
    if delivery is None or not delivery.has_coordinates:
        return None
    distances = [
        haversine_km(delivery.latitude, delivery.longitude, v.latitude, v.longitude)
        for v in vendors
        if v.has_coordinates
    ]
    if not distances:
        return None
    return max(distances)


async def resolve_for_checkout(
    location_repo,
    delivery: Optional[GeoPoint],
    vendor_ids: list[str],
) -> Optional[float]:
    """
    下单/预览时的距离解析：从位置仓库取商户坐标后计算。
    位置服务不可用时记录日志并返回 None，不向用户暴露错误。
    """
    if delivery is None or not delivery.has_coordinates or not vendor_ids:
        return None
    try:
        vendors = await location_repo.vendor_coordinates(vendor_ids)
    except DistanceUnavailable as e:
        logger.warning("获取商户坐标失败，使用默认运费: %s", e)
        return None
    distance = resolve(delivery, vendors)
    if distance is None:
        logger.info("商户均无坐标，使用默认运费 vendor_ids=%s", vendor_ids)
    return distance
