"""
订单相关Schema
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from app.models.order import OrderStatus, PaymentStatus, EscrowStatus
from app.schemas.shipping import ShippingQuote


class ShippingAddress(BaseModel):
    """收货地址快照"""
    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=20)
    street_address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    landmark: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class CartLine(BaseModel):
    """购物车行（由商品目录服务给出的价格快照）"""
    product_id: str
    vendor_id: str
    product_name: str
    variant_name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., ge=0)


class CheckoutRequest(BaseModel):
    """下单请求"""
    items: List[CartLine] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    address_id: Optional[int] = None  # 地址快照无坐标时，用于向位置服务查询
    promo_code: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)


class TrackingUpdate(BaseModel):
    """物流轨迹"""
    status: OrderStatus
    message: str
    timestamp: datetime


class OrderItemResponse(BaseModel):
    """订单明细响应"""
    id: int
    product_id: str
    vendor_id: str
    product_name: str
    variant_name: Optional[str] = None
    quantity: int
    unit_price: int
    total_price: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """订单响应"""
    id: str
    user_id: str
    status: OrderStatus
    payment_status: PaymentStatus
    escrow_status: Optional[EscrowStatus] = None
    payment_reference: Optional[str] = None
    subtotal: int
    shipping_fee: int
    total: int
    shipping_address: ShippingAddress
    shipping_distance_km: Optional[float] = None
    promo_code: Optional[str] = None
    notes: Optional[str] = None
    tracking_updates: List[TrackingUpdate] = []
    confirmed_at: Optional[datetime] = None
    auto_release_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class CheckoutResponse(BaseModel):
    """下单响应：订单 + 下单时固化的运费报价"""
    order: OrderResponse
    shipping: ShippingQuote


class OrderListResponse(BaseModel):
    """订单列表响应"""
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


class StatusUpdateRequest(BaseModel):
    """订单状态变更请求（商家 / 管理员）"""
    status: OrderStatus
    message: Optional[str] = Field(None, max_length=500)
    expected_version: Optional[int] = None  # 传入时先做版本校验，不一致直接返回冲突


class SettlementResponse(BaseModel):
    """放款状态"""
    order_id: str
    escrow_status: Optional[EscrowStatus] = None
    eligible: bool
    reason: str
    auto_release_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    remaining_seconds: Optional[int] = None
