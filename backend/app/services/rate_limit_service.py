"""
限流：按用户限制每日下单次数、每分钟优惠码校验次数，使用 Redis 计数
"""
import time
import logging
from datetime import datetime, timezone

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def _get_redis():
    """获取 Redis 客户端（懒加载）"""
    global _redis_client
    if _redis_client is None:
        try:
            _redis_client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
        except (redis.RedisError, ValueError) as e:
            logger.warning("Redis 连接失败，限流将不生效: %s", e)
    return _redis_client


def _incr_window(key: str, ttl: int, limit: int) -> tuple[bool, int, int]:
    """窗口计数 +1，返回 (是否允许, 当前计数, 上限)。Redis 不可用时放行。"""
    r = _get_redis()
    if not r:
        return True, 0, limit
    try:
        n = r.incr(key)
        if n == 1:
            r.expire(key, ttl)
        return (n <= limit, n, limit)
    except redis.RedisError as e:
        logger.warning("限流 Redis 操作失败: %s", e)
        return True, 0, limit


def check_and_incr_checkout(user_id: str) -> tuple[bool, int, int]:
    """
    检查并增加当日下单计数。返回 (是否允许, 当前计数, 每日上限)。
    若未启用限流或 Redis 不可用，返回 (True, 0, limit)。
    """
    limit = getattr(settings, "RATE_LIMIT_CHECKOUT_PER_DAY", 50)
    if not getattr(settings, "RATE_LIMIT_ENABLED", True):
        return True, 0, limit
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return _incr_window(f"rate:checkout:user:{user_id}:day:{day}", 86400 * 2, limit)


def check_and_incr_promo_attempts(user_id: str) -> tuple[bool, int, int]:
    """检查并增加当前分钟的优惠码校验次数。返回 (是否允许, 当前计数, 每分钟上限)。"""
    limit = getattr(settings, "RATE_LIMIT_PROMO_PER_MINUTE", 10)
    if not getattr(settings, "RATE_LIMIT_ENABLED", True):
        return True, 0, limit
    minute = int(time.time()) // 60
    return _incr_window(f"rate:promo:user:{user_id}:min:{minute}", 120, limit)
