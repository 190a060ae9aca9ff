"""
支付相关Schema
"""
from pydantic import BaseModel
from typing import Optional

from app.schemas.order import OrderResponse


class PaymentInitRequest(BaseModel):
    """发起支付请求"""
    order_id: str
    callback_url: Optional[str] = None  # 不传时使用 PAYMENT_CALLBACK_URL


class PaymentInitResponse(BaseModel):
    """发起支付响应：前端跳转 authorization_url 完成付款"""
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


class PaymentVerifyRequest(BaseModel):
    """支付核验请求"""
    reference: str
    order_id: Optional[str] = None  # 不传时从网关交易元数据 / 流水号中解析；传入时须与交易所属订单一致


class PaymentVerifyResponse(BaseModel):
    """支付核验响应"""
    paid: bool
    status: str  # 网关交易状态；重复核验已支付订单时为 already_processed
    amount: int
    reference: str
    order: OrderResponse
