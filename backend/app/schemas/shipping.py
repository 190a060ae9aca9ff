"""
运费相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class ShippingQuote(BaseModel):
    """运费报价（预览用，可反复计算；下单时的结果才会固化到订单）"""
    base_fee: int
    discount_fraction: float
    discount_amount: int
    final_fee: int
    distance_km: Optional[float] = None
    distance_known: bool
    promo_applied: bool = False
    promo_description: Optional[str] = None
    discount_description: Optional[str] = None


class NextDiscountTier(BaseModel):
    """下一档满减信息（用于“再买 N 享运费 X 折”提示）"""
    next_threshold: int
    next_discount: float
    amount_needed: int


class GeoPointIn(BaseModel):
    """坐标"""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class QuoteRequest(BaseModel):
    """运费预览请求：收货点可直接给坐标，或给地址 id 由位置服务查询"""
    subtotal: int = Field(..., ge=0)
    vendor_ids: List[str] = []
    address_id: Optional[int] = None
    delivery: Optional[GeoPointIn] = None
    promo_code: Optional[str] = None


class QuoteResponse(BaseModel):
    """运费预览响应"""
    quote: ShippingQuote
    next_tier: Optional[NextDiscountTier] = None


class PromoValidateRequest(BaseModel):
    """优惠码校验请求"""
    code: str


class PromoCodeResponse(BaseModel):
    """优惠码响应"""
    code: str
    discount_type: str
    discount_value: int
    description: Optional[str] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DistanceTierItem(BaseModel):
    max_km: Optional[float] = None  # None 表示无上限
    fee: int


class ValueDiscountItem(BaseModel):
    min_value: int
    discount: float


class DiscountTiersResponse(BaseModel):
    """运费档位配置"""
    distance_tiers: List[DistanceTierItem]
    value_discounts: List[ValueDiscountItem]
    default_fee: int
    min_fee: int
    max_fee: int
