"""
订单审计：谁在何时对哪笔订单做了什么

写入失败只记日志，不影响已提交的订单变更。
"""
import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def log_order_action(
    db: AsyncSession,
    actor_id: str,
    actor_role: str,
    action: str,
    order_id: str,
    detail: Optional[dict[str, Any]] = None,
    ip: Optional[str] = None,
    request_id: Optional[str] = None,
) -> None:
    """写入一条订单审计记录（AUDIT_LOG_ENABLED 关闭时跳过）"""
    if not settings.AUDIT_LOG_ENABLED:
        return
    db.add(
        AuditLog(
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            order_id=order_id,
            detail=detail,
            ip=ip,
            request_id=request_id,
        )
    )
    try:
        await db.commit()
    except SQLAlchemyError as e:
        logger.warning("审计日志写入失败 action=%s order_id=%s: %s", action, order_id, e)
        await db.rollback()


async def list_order_actions(
    db: AsyncSession,
    actor_id: Optional[str] = None,
    action: Optional[str] = None,
    order_id: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[AuditLog], int]:
    """按操作人 / 操作类型 / 订单筛选，最新的在前"""
    conditions = []
    if actor_id is not None:
        conditions.append(AuditLog.actor_id == actor_id)
    if action:
        conditions.append(AuditLog.action == action)
    if order_id:
        conditions.append(AuditLog.order_id == order_id)

    total = (await db.execute(select(func.count()).select_from(AuditLog).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total
