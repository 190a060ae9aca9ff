"""
放款判定：客户确认收货，或妥投后自动放款时间已到，订单货款即可结算给商户。

纯函数，无内部状态；自动放款窗口是订单上的时间戳，每次读取时重新判定，不依赖定时器。
"""
from datetime import datetime, timedelta
from typing import Optional

from app.core.clock import as_utc

REASON_CONFIRMED = "confirmed"
REASON_AUTO_RELEASE = "auto_release"
REASON_PENDING = "pending"
REASON_NOT_DELIVERED = "not_delivered"


def is_release_eligible(order, now: datetime) -> bool:
    """已确认收货，或当前时间已过自动放款时间"""
    if order.confirmed_at is not None:
        return True
    auto_release_at = as_utc(order.auto_release_at)
    return auto_release_at is not None and as_utc(now) >= auto_release_at


def settlement_snapshot(order, now: datetime) -> dict:
    """放款状态快照（接口展示用）"""
    auto_release_at = as_utc(order.auto_release_at)
    confirmed_at = as_utc(order.confirmed_at)
    remaining: Optional[timedelta] = None
    if confirmed_at is not None:
        reason = REASON_CONFIRMED
    elif auto_release_at is None:
        reason = REASON_NOT_DELIVERED
    elif as_utc(now) >= auto_release_at:
        reason = REASON_AUTO_RELEASE
    else:
        reason = REASON_PENDING
        remaining = auto_release_at - as_utc(now)
    return {
        "eligible": reason in (REASON_CONFIRMED, REASON_AUTO_RELEASE),
        "reason": reason,
        "auto_release_at": auto_release_at,
        "confirmed_at": confirmed_at,
        "remaining_seconds": int(remaining.total_seconds()) if remaining is not None else None,
    }
