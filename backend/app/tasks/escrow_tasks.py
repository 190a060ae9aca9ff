"""
担保资金记账任务：把已满足放款条件的订单 escrow_status 从 held 同步为 released

放款判定始终由 settlement_clock 按订单时间戳实时计算，本任务只让财务视图读到一致的标记，
任务延迟或未运行都不影响判定结果。
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.celery_app import celery_app
from app.core.clock import utcnow
from app.core.database import create_async_engine_and_session_for_celery
from app.models.order import EscrowStatus, Order
from app.services import order_lifecycle

logger = logging.getLogger(__name__)


def _run_async(coro):
    """在同步上下文中运行异步协程（Celery 任务内使用）"""
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def sync_released_escrows(db: AsyncSession, now: datetime) -> Dict[str, Any]:
    """逐单更新，单个订单并发冲突时跳过，下次再同步"""
    result = await db.execute(
        select(Order.id).where(
            Order.escrow_status == EscrowStatus.HELD,
            or_(Order.confirmed_at.isnot(None), Order.auto_release_at.isnot(None)),
        )
    )
    candidate_ids = list(result.scalars().all())
    released, skipped = [], []
    for order_id in candidate_ids:
        order = await db.get(Order, order_id)
        if order is None or not order_lifecycle.release_escrow(order, now):
            continue
        try:
            await db.commit()
            released.append(order_id)
        except StaleDataError:
            await db.rollback()
            skipped.append(order_id)
            logger.info("放款同步跳过（订单已被修改） order_id=%s", order_id)
    if released:
        logger.info("放款状态已同步 %s 单", len(released))
    return {"checked": len(candidate_ids), "released": released, "skipped": skipped}


@celery_app.task(bind=True, name="escrow.sync_released")
def sync_released_escrows_task(self) -> Dict[str, Any]:
    """定时：同步可放款订单的 escrow_status"""
    async def _run():
        engine, session_factory = create_async_engine_and_session_for_celery()
        try:
            async with session_factory() as db:
                return await sync_released_escrows(db, utcnow())
        finally:
            await engine.dispose()

    try:
        return _run_async(_run())
    except Exception as e:
        logger.exception("sync_released_escrows_task failed: %s", e)
        raise
