"""
支付网关适配（Paystack 兼容接口）：发起支付、核验交易、校验回调签名

金额以最小货币单位提交（×100）。核验成功是订单离开待支付状态的唯一触发条件。
"""
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import settings
from app.core.errors import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentInitResult:
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


@dataclass(frozen=True)
class PaymentVerifyResult:
    paid: bool
    status: str
    reference: str
    amount: int  # 主货币单位
    order_id: Optional[str] = None


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """校验回调签名：HMAC-SHA512(原始请求体, 网关密钥) 的十六进制"""
    secret = secret if secret is not None else settings.PAYSTACK_SECRET_KEY
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackGateway:
    """Paystack HTTP 客户端"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYSTACK_TIMEOUT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.secret_key:
            raise PaymentGatewayError("支付网关密钥未配置")
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.secret_key}"},
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        async with self._client() as client:
            try:
                resp = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                logger.warning("支付网关请求失败 %s %s: %s", method, path, e)
                raise PaymentGatewayError(f"支付网关请求失败: {e}") from e
        try:
            payload = resp.json()
        except ValueError as e:
            raise PaymentGatewayError(f"支付网关响应无法解析（HTTP {resp.status_code}）") from e
        if resp.status_code >= 400 or not payload.get("status"):
            message = payload.get("message") or f"HTTP {resp.status_code}"
            logger.warning("支付网关返回失败 %s %s: %s", method, path, message)
            raise PaymentGatewayError(f"支付网关返回失败: {message}")
        return payload.get("data") or {}

    async def initiate(
        self,
        order_id: str,
        amount: int,
        email: str,
        callback_url: Optional[str] = None,
    ) -> PaymentInitResult:
        """发起支付，返回收银台地址"""
        reference = f"ORD-{order_id}-{int(time.time() * 1000)}"
        data = await self._request(
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": int(amount) * 100,
                "reference": reference,
                "callback_url": callback_url,
                "metadata": {
                    "order_id": order_id,
                    "custom_fields": [
                        {"display_name": "Order ID", "variable_name": "order_id", "value": order_id}
                    ],
                },
            },
        )
        logger.info("支付已发起 order_id=%s reference=%s", order_id, data.get("reference", reference))
        return PaymentInitResult(
            authorization_url=data["authorization_url"],
            reference=data.get("reference", reference),
            access_code=data.get("access_code"),
        )

    async def verify(self, reference: str) -> PaymentVerifyResult:
        """核验交易"""
        data = await self._request("GET", f"/transaction/verify/{reference}")
        status = data.get("status", "")
        metadata = data.get("metadata") or {}
        return PaymentVerifyResult(
            paid=status == "success",
            status=status,
            reference=data.get("reference", reference),
            amount=int(data.get("amount", 0)) // 100,
            order_id=metadata.get("order_id") if isinstance(metadata, dict) else None,
        )
