"""Pytest fixtures for the order pipeline tests."""

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

# 应用配置在导入时读取环境变量，必须先于 app.* 导入
_TEST_DIR = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/api.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["NOTIFICATION_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"
os.environ["LOG_FILE"] = f"{_TEST_DIR}/app.log"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database import Base
from app.core.errors import DistanceUnavailable, PaymentGatewayError
from app import models  # noqa: F401
from app.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from app.models.promo_code import PromoCode, PromoDiscountType
from app.schemas.order import CartLine, CheckoutRequest, ShippingAddress
from app.services.distance_resolver import GeoPoint
from app.services.payment_service import PaymentInitResult, PaymentVerifyResult

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

LAGOS = (6.5244, 3.3792)
IKEJA = (6.6018, 3.3515)
IBADAN = (7.3775, 3.9470)


class FrozenClock:
    """可手动拨动的时钟"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now


class RecordingDispatcher:
    """记录投递内容的通知投递方；fail=True 时模拟通知服务故障"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def notify(self, user_id, title, message, category, action_url=None, metadata=None):
        if self.fail:
            raise RuntimeError("notification service down")
        self.sent.append(
            {
                "user_id": user_id,
                "title": title,
                "message": message,
                "category": category,
                "action_url": action_url,
                "metadata": metadata or {},
            }
        )


class FakePromoRepository:
    def __init__(self, *promos):
        self.codes = {p.code.upper(): p for p in promos}
        self.lookups = []

    async def lookup(self, code):
        self.lookups.append(code)
        return self.codes.get(code.upper())


class FakeLocationRepository:
    def __init__(self, vendors=None, addresses=None, address_owners=None, fail=False):
        self.vendors = vendors or {}
        self.addresses = addresses or {}
        self.address_owners = address_owners or {}
        self.fail = fail

    async def vendor_coordinates(self, vendor_ids):
        if self.fail:
            raise DistanceUnavailable("location service down")
        points = []
        for vendor_id in vendor_ids:
            lat, lon = self.vendors.get(vendor_id, (None, None))
            points.append(GeoPoint(lat, lon, ref=vendor_id))
        return points

    async def address_coordinates(self, address_id, user_id=None):
        if self.fail:
            raise DistanceUnavailable("location service down")
        owner = self.address_owners.get(address_id)
        if user_id is not None and owner is not None and owner != user_id:
            return GeoPoint(ref=str(address_id))
        lat, lon = self.addresses.get(address_id, (None, None))
        return GeoPoint(lat, lon, ref=str(address_id))


class FakeGateway:
    """内存支付网关：settle() 登记一笔交易，verify() 按流水号返回"""

    secret_key = "sk_test_secret"

    def __init__(self):
        self.transactions = {}
        self.initiated = []

    async def initiate(self, order_id, amount, email, callback_url=None):
        reference = f"ORD-{order_id}-1772355600000"
        self.initiated.append(
            {"order_id": order_id, "amount": amount, "email": email, "callback_url": callback_url}
        )
        return PaymentInitResult(
            authorization_url=f"https://checkout.example.test/{reference}",
            reference=reference,
            access_code="ac_test",
        )

    async def verify(self, reference):
        if reference not in self.transactions:
            raise PaymentGatewayError("支付网关返回失败: Transaction reference not found")
        return self.transactions[reference]

    def settle(self, reference, order_id, amount, status="success"):
        self.transactions[reference] = PaymentVerifyResult(
            paid=status == "success",
            status=status,
            reference=reference,
            amount=amount,
            order_id=order_id,
        )


def make_promo(code="FREESHIP", discount_type=PromoDiscountType.FREE, discount_value=0,
               is_active=True, expires_at=None, description=None):
    return PromoCode(
        code=code,
        discount_type=discount_type,
        discount_value=discount_value,
        is_active=is_active,
        expires_at=expires_at,
        description=description,
    )


def make_address(latitude=None, longitude=None):
    return ShippingAddress(
        full_name="Ada Obi",
        phone="+2348012345678",
        street_address="12 Admiralty Way",
        city="Lagos",
        state="Lagos",
        latitude=latitude,
        longitude=longitude,
    )


def make_checkout(lines=None, delivery=None, promo_code=None, address_id=None, notes=None):
    if lines is None:
        lines = [
            CartLine(product_id="p-1", vendor_id="v-1", product_name="Ankara Tote", quantity=2, unit_price=15000),
            CartLine(product_id="p-2", vendor_id="v-2", product_name="Shea Butter", quantity=1, unit_price=8000),
        ]
    lat, lon = delivery if delivery else (None, None)
    return CheckoutRequest(
        items=lines,
        shipping_address=make_address(lat, lon),
        address_id=address_id,
        promo_code=promo_code,
        notes=notes,
    )


def make_order(status=OrderStatus.PENDING_PAYMENT, payment_status=PaymentStatus.PENDING,
               order_id="0d6f5a7e-1c1b-4a53-9a55-0f0e3f4c2b10", user_id="cust-1",
               subtotal=38000, shipping_fee=1500, vendor_ids=("v-1",), **overrides):
    """内存中的订单（不落库），用于状态机的纯函数测试"""
    order = Order(
        id=order_id,
        user_id=user_id,
        status=status,
        payment_status=payment_status,
        escrow_status=overrides.pop("escrow_status", None),
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        total=subtotal + shipping_fee,
        shipping_address=make_address().model_dump(),
        tracking_updates=overrides.pop("tracking_updates", []),
        confirmed_at=overrides.pop("confirmed_at", None),
        auto_release_at=overrides.pop("auto_release_at", None),
        created_at=T0,
        updated_at=T0,
        **overrides,
    )
    order.items = [
        OrderItem(
            product_id=f"p-{i}",
            vendor_id=vendor_id,
            product_name=f"Item {i}",
            quantity=1,
            unit_price=subtotal // len(vendor_ids),
            total_price=subtotal // len(vendor_ids),
        )
        for i, vendor_id in enumerate(vendor_ids)
    ]
    return order


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path}/orders.db"


@pytest.fixture
def session_factory(db_url):
    """独立 SQLite 文件库；NullPool 保证连接不跨 asyncio.run 复用"""
    engine = create_async_engine(db_url, poolclass=NullPool)

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    asyncio.run(engine.dispose())
