"""
健康检查：数据库、Redis（限流计数与 Celery broker）
"""
import logging
import time
from typing import Tuple

import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings

logger = logging.getLogger(__name__)


async def check_db() -> Tuple[bool, str]:
    from app.core.database import engine

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("健康检查：数据库不可用: %s", e)
        return False, str(e)
    return True, f"ok ({engine.dialect.name})"


def check_redis() -> Tuple[bool, str]:
    """Redis 不可用时限流放行、通知无法入队，服务降级但仍可下单"""
    if not settings.REDIS_URL.strip():
        return False, "REDIS_URL 未配置"
    from app.services.rate_limit_service import _get_redis

    client = _get_redis()
    if client is None:
        return False, "Redis 客户端未初始化"
    started = time.perf_counter()
    try:
        client.ping()
    except redis.RedisError as e:
        logger.warning("健康检查：Redis 不可用: %s", e)
        return False, str(e)
    return True, f"ok ({(time.perf_counter() - started) * 1000:.1f}ms)"
