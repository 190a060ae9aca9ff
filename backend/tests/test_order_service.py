"""Tests for OrderService against a SQLite database."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.clock import as_utc
from app.core.errors import AlreadyConfirmed, Conflict, InvalidState, OrderNotFound, PaymentRequired, PromoInvalid
from app.models.location import Address, VendorLocation
from app.models.order import EscrowStatus, Order, OrderStatus, PaymentStatus
from app.models.promo_code import PromoDiscountType
from app.schemas.order import CartLine
from app.services.location_service import SqlLocationRepository
from app.services.order_lifecycle import ActorRole
from app.services.order_service import OrderService

from conftest import (
    IBADAN,
    IKEJA,
    LAGOS,
    T0,
    FakeLocationRepository,
    FakePromoRepository,
    RecordingDispatcher,
    make_checkout,
    make_promo,
)

VENDORS = {"v-1": IKEJA, "v-2": IBADAN}


async def _create(session_factory, clock, user_id="cust-1", **checkout_kwargs):
    checkout_kwargs.setdefault("delivery", LAGOS)
    async with session_factory() as db:
        order, _ = await OrderService(db, clock=clock).create_order(
            user_id,
            make_checkout(**checkout_kwargs),
            FakeLocationRepository(vendors=VENDORS),
            FakePromoRepository(make_promo("FREESHIP")),
        )
        return order.id


async def _pay(session_factory, clock, order_id, dispatcher=None):
    async with session_factory() as db:
        await OrderService(db, dispatcher=dispatcher, clock=clock).apply_payment_result(
            order_id, f"ORD-{order_id}-1", True
        )


async def _load(session_factory, order_id):
    async with session_factory() as db:
        return await OrderService(db).get_order(order_id)


class TestCreateOrder:
    def test_totals_frozen_at_creation(self, session_factory, clock):
        async def scenario():
            async with session_factory() as db:
                order, quote = await OrderService(db, clock=clock).create_order(
                    "cust-1",
                    make_checkout(delivery=LAGOS, notes="Gate code 1234"),
                    FakeLocationRepository(vendors=VENDORS),
                    FakePromoRepository(),
                )
            return quote, await _load(session_factory, order.id)

        quote, order = asyncio.run(scenario())
        # 最远商户（伊巴丹）约 114km，落在 ≤200km 档
        assert quote.base_fee == 7000
        assert quote.final_fee == 7000
        assert order.subtotal == 38000
        assert order.shipping_fee == 7000
        assert order.total == order.subtotal + order.shipping_fee
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.payment_status == PaymentStatus.PENDING
        assert order.escrow_status is None
        assert order.tracking_updates == []
        assert order.version == 1
        assert order.notes == "Gate code 1234"
        assert order.shipping_distance_km == pytest.approx(quote.distance_km)
        assert [(i.vendor_id, i.total_price) for i in order.items] == [("v-1", 30000), ("v-2", 8000)]
        assert order.vendor_ids == ["v-1", "v-2"]

    def test_promo_applied_at_checkout(self, session_factory, clock):
        async def scenario():
            order_id = await _create(session_factory, clock, promo_code=" freeship ")
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.shipping_fee == 0
        assert order.total == order.subtotal
        assert order.promo_code == "FREESHIP"

    def test_invalid_promo_rejects_checkout(self, session_factory, clock):
        async def scenario():
            with pytest.raises(PromoInvalid) as exc:
                await _create(session_factory, clock, promo_code="BOGUS")
            async with session_factory() as db:
                count = (await db.execute(select(func.count()).select_from(Order))).scalar()
            return exc.value, count

        err, count = asyncio.run(scenario())
        assert err.reason == PromoInvalid.NOT_FOUND
        assert count == 0

    def test_location_outage_uses_default_fee(self, session_factory, clock):
        async def scenario():
            async with session_factory() as db:
                return await OrderService(db, clock=clock).create_order(
                    "cust-1",
                    make_checkout(delivery=LAGOS),
                    FakeLocationRepository(fail=True),
                    FakePromoRepository(),
                )

        order, quote = asyncio.run(scenario())
        assert quote.distance_known is False
        assert order.shipping_fee == 5000

    def test_address_id_used_when_snapshot_has_no_coordinates(self, session_factory, clock):
        async def scenario():
            async with session_factory() as db:
                return await OrderService(db, clock=clock).create_order(
                    "cust-1",
                    make_checkout(delivery=None, address_id=7),
                    FakeLocationRepository(vendors={"v-1": IKEJA, "v-2": IKEJA}, addresses={7: LAGOS}),
                    FakePromoRepository(),
                )

        order, quote = asyncio.run(scenario())
        # 拉各斯岛到伊凯贾约 9km，落在 ≤10km 档
        assert quote.base_fee == 2000
        assert order.shipping_fee == 2000

    def test_foreign_address_id_is_ignored(self, session_factory, clock):
        async def scenario():
            async with session_factory() as db:
                return await OrderService(db, clock=clock).create_order(
                    "cust-1",
                    make_checkout(delivery=None, address_id=7),
                    FakeLocationRepository(
                        vendors={"v-1": IKEJA, "v-2": IKEJA},
                        addresses={7: LAGOS},
                        address_owners={7: "cust-2"},
                    ),
                    FakePromoRepository(),
                )

        order, quote = asyncio.run(scenario())
        assert quote.distance_known is False
        assert order.shipping_fee == 5000

    def test_sql_repository_checks_address_owner(self, session_factory, clock):
        async def scenario():
            async with session_factory() as db:
                db.add_all([
                    VendorLocation(vendor_id="v-1", latitude=IKEJA[0], longitude=IKEJA[1]),
                    VendorLocation(vendor_id="v-2", latitude=IKEJA[0], longitude=IKEJA[1]),
                    Address(
                        id=7, user_id="cust-2", full_name="Bola", phone="08000000000",
                        street_address="1 Marina", city="Lagos", state="Lagos",
                        latitude=LAGOS[0], longitude=LAGOS[1],
                    ),
                ])
                await db.commit()
                repo = SqlLocationRepository(db)
                service = OrderService(db, clock=clock)
                _, foreign = await service.create_order(
                    "cust-1", make_checkout(delivery=None, address_id=7), repo, FakePromoRepository()
                )
                _, own = await service.create_order(
                    "cust-2", make_checkout(delivery=None, address_id=7), repo, FakePromoRepository()
                )
                return foreign, own

        foreign, own = asyncio.run(scenario())
        assert foreign.distance_known is False
        assert foreign.final_fee == 5000
        assert own.distance_known is True
        assert own.base_fee == 2000

    def test_value_discount_for_large_cart(self, session_factory, clock):
        lines = [CartLine(product_id="tv", vendor_id="v-1", product_name="TV", quantity=1, unit_price=650000)]

        async def scenario():
            order_id = await _create(session_factory, clock, lines=lines)
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        # 伊凯贾 ≤10km 档 2000，满 500000 减 70%
        assert order.shipping_fee == 600
        assert order.total == 650600


class TestImmutability:
    def test_total_cannot_change(self, session_factory, clock):
        async def scenario():
            order_id = await _create(session_factory, clock)
            async with session_factory() as db:
                order = await OrderService(db).get_order(order_id)
                with pytest.raises(ValueError):
                    order.total = order.total + 1
                with pytest.raises(ValueError):
                    order.shipping_fee = 0
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.total == order.subtotal + order.shipping_fee

    def test_items_cannot_be_updated(self, session_factory, clock):
        async def scenario():
            order_id = await _create(session_factory, clock)
            async with session_factory() as db:
                order = await OrderService(db).get_order(order_id)
                order.items[0].unit_price = 1
                with pytest.raises(ValueError):
                    await db.commit()
                await db.rollback()
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.items[0].unit_price == 15000


class TestPayment:
    def test_verified_payment_confirms_order(self, session_factory, clock, dispatcher):
        async def scenario():
            order_id = await _create(session_factory, clock)
            await _pay(session_factory, clock, order_id, dispatcher)
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.status == OrderStatus.PAYMENT_CONFIRMED
        assert order.payment_status == PaymentStatus.PAID
        assert order.escrow_status == EscrowStatus.HELD
        assert order.payment_reference == f"ORD-{order.id}-1"
        assert order.version == 2
        assert dispatcher.sent[0]["category"] == "payment"
        assert dispatcher.sent[0]["user_id"] == "cust-1"
        vendor_sends = {s["user_id"]: s for s in dispatcher.sent[1:]}
        assert set(vendor_sends) == {"v-1", "v-2"}
        assert vendor_sends["v-1"]["metadata"]["vendor_total"] == 30000
        assert vendor_sends["v-2"]["metadata"]["vendor_total"] == 8000
        assert vendor_sends["v-2"]["action_url"] == "/vendor/orders"

    def test_repeated_verification_is_idempotent(self, session_factory, clock, dispatcher):
        async def scenario():
            order_id = await _create(session_factory, clock)
            await _pay(session_factory, clock, order_id, dispatcher)
            async with session_factory() as db:
                _, changed = await OrderService(db, dispatcher=dispatcher, clock=clock).apply_payment_result(
                    order_id, f"ORD-{order_id}-2", True
                )
            return changed, await _load(session_factory, order_id)

        changed, order = asyncio.run(scenario())
        assert changed is False
        assert len(order.tracking_updates) == 1
        # 客户一条加两个商户各一条，重复核验不再发送
        assert len(dispatcher.sent) == 3

    def test_failed_payment(self, session_factory, clock, dispatcher):
        async def scenario():
            order_id = await _create(session_factory, clock)
            async with session_factory() as db:
                _, changed = await OrderService(db, dispatcher=dispatcher, clock=clock).apply_payment_result(
                    order_id, "ORD-x-1", False
                )
            return changed, await _load(session_factory, order_id)

        changed, order = asyncio.run(scenario())
        assert changed is True
        assert order.payment_status == PaymentStatus.FAILED
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert dispatcher.sent == []

    def test_record_payment_reference(self, session_factory, clock):
        async def scenario():
            order_id = await _create(session_factory, clock)
            async with session_factory() as db:
                await OrderService(db, clock=clock).record_payment_reference(order_id, "ORD-abc-123")
            return await _load(session_factory, order_id)

        assert asyncio.run(scenario()).payment_reference == "ORD-abc-123"


class TestAdvance:
    def test_unpaid_order_cannot_advance(self, session_factory, clock):
        async def scenario():
            order_id = await _create(session_factory, clock)
            async with session_factory() as db:
                with pytest.raises(PaymentRequired):
                    await OrderService(db, clock=clock).advance(
                        order_id, OrderStatus.PROCESSING, None, ActorRole.VENDOR
                    )
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert order.version == 1

    def test_advance_persists_and_notifies(self, session_factory, clock, dispatcher):
        async def scenario():
            order_id = await _create(session_factory, clock)
            await _pay(session_factory, clock, order_id)
            clock.advance(timedelta(days=1))
            async with session_factory() as db:
                await OrderService(db, dispatcher=dispatcher, clock=clock).advance(
                    order_id, OrderStatus.DELIVERED, "Left with reception", ActorRole.VENDOR
                )
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.status == OrderStatus.DELIVERED
        assert as_utc(order.auto_release_at) == T0 + timedelta(days=8)
        assert order.tracking_updates[-1]["message"] == "Left with reception"
        assert len(dispatcher.sent) == 1
        assert dispatcher.sent[0]["metadata"]["status"] == "delivered"

    def test_notification_failure_does_not_roll_back(self, session_factory, clock):
        async def scenario():
            order_id = await _create(session_factory, clock)
            await _pay(session_factory, clock, order_id)
            async with session_factory() as db:
                await OrderService(db, dispatcher=RecordingDispatcher(fail=True), clock=clock).advance(
                    order_id, OrderStatus.PROCESSING, None, ActorRole.VENDOR
                )
            return await _load(session_factory, order_id)

        assert asyncio.run(scenario()).status == OrderStatus.PROCESSING

    def test_expected_version_mismatch(self, session_factory, clock):
        async def scenario():
            order_id = await _create(session_factory, clock)
            await _pay(session_factory, clock, order_id)
            async with session_factory() as db:
                with pytest.raises(Conflict):
                    await OrderService(db, clock=clock).advance(
                        order_id, OrderStatus.PROCESSING, None, ActorRole.VENDOR, expected_version=1
                    )
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.status == OrderStatus.PAYMENT_CONFIRMED

    def test_concurrent_advance_one_winner(self, session_factory, clock, dispatcher):
        async def scenario():
            order_id = await _create(session_factory, clock)
            await _pay(session_factory, clock, order_id)
            async with session_factory() as db1, session_factory() as db2:
                first = OrderService(db1, dispatcher=dispatcher, clock=clock)
                second = OrderService(db2, dispatcher=dispatcher, clock=clock)
                # 两个请求先后读到同一版本，第二个会话持有旧副本
                winner = await first.get_order(order_id)
                stale = await second.get_order(order_id)
                assert winner.version == stale.version == 2
                await first.advance(order_id, OrderStatus.PROCESSING, None, ActorRole.VENDOR)
                with pytest.raises(Conflict):
                    await second.advance(order_id, OrderStatus.SHIPPED, None, ActorRole.ADMIN)
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert order.status == OrderStatus.PROCESSING
        assert [u["status"] for u in order.tracking_updates] == ["payment_confirmed", "processing"]
        assert len(dispatcher.sent) == 1

    def test_missing_order(self, session_factory, clock):
        async def scenario():
            async with session_factory() as db:
                await OrderService(db, clock=clock).advance(
                    "does-not-exist", OrderStatus.PROCESSING, None, ActorRole.ADMIN
                )

        with pytest.raises(OrderNotFound):
            asyncio.run(scenario())


class TestConfirmDelivery:
    def test_confirm_then_reconfirm(self, session_factory, clock, dispatcher):
        async def scenario():
            order_id = await _create(session_factory, clock)
            await _pay(session_factory, clock, order_id)
            async with session_factory() as db:
                svc = OrderService(db, dispatcher=dispatcher, clock=clock)
                with pytest.raises(InvalidState):
                    await svc.confirm_delivery(order_id)
                await svc.advance(order_id, OrderStatus.DELIVERED, None, ActorRole.VENDOR)
                clock.advance(timedelta(hours=2))
                await svc.confirm_delivery(order_id)
                with pytest.raises(AlreadyConfirmed):
                    await svc.confirm_delivery(order_id)
            return await _load(session_factory, order_id)

        order = asyncio.run(scenario())
        assert as_utc(order.confirmed_at) == T0 + timedelta(hours=2)
        assert order.escrow_status == EscrowStatus.RELEASED
        assert order.status == OrderStatus.COMPLETED
        assert order.tracking_updates[-1]["status"] == "completed"
        assert [s["metadata"]["status"] for s in dispatcher.sent] == ["delivered", "completed"]
        assert dispatcher.sent[-1]["user_id"] == "cust-1"


class TestListing:
    def test_customer_and_vendor_views(self, session_factory, clock):
        only_v2 = [CartLine(product_id="p-9", vendor_id="v-2", product_name="Soap", quantity=3, unit_price=1200)]

        async def scenario():
            await _create(session_factory, clock, user_id="cust-1")
            clock.advance(timedelta(minutes=1))
            await _create(session_factory, clock, user_id="cust-1", lines=only_v2)
            clock.advance(timedelta(minutes=1))
            await _create(session_factory, clock, user_id="cust-2", lines=only_v2)
            async with session_factory() as db:
                svc = OrderService(db)
                mine = await svc.list_orders("cust-1")
                paid = await svc.list_orders("cust-1", status=OrderStatus.PAYMENT_CONFIRMED)
                v1 = await svc.list_vendor_orders("v-1")
                v2 = await svc.list_vendor_orders("v-2", page=1, page_size=2)
            return mine, paid, v1, v2

        (mine, mine_total), (paid, paid_total), (v1, v1_total), (v2, v2_total) = asyncio.run(scenario())
        assert mine_total == 2
        assert mine[0].subtotal == 3600  # 最新的在前
        assert paid_total == 0 and paid == []
        assert v1_total == 1
        assert v2_total == 3
        assert len(v2) == 2
