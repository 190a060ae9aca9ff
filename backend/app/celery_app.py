"""
Celery 应用：通知投递与放款状态同步

  celery -A app.celery_app worker -Q notifications,escrow
  celery -A app.celery_app beat
"""
from urllib.parse import parse_qsl, urlencode, urlparse

from celery import Celery

from app.core.config import settings


def _redis_url(url: str) -> str:
    """rediss:// 地址补齐 ssl_cert_reqs，否则 Celery 的 Redis 后端拒绝连接"""
    parsed = urlparse(url or "")
    if parsed.scheme != "rediss":
        return url
    query = dict(parse_qsl(parsed.query))
    query.setdefault("ssl_cert_reqs", "CERT_NONE")
    return parsed._replace(query=urlencode(query)).geturl()


celery_app = Celery(
    "marketplace_orders",
    broker=_redis_url(settings.CELERY_BROKER_URL or settings.REDIS_URL),
    backend=_redis_url(settings.CELERY_RESULT_BACKEND or settings.REDIS_URL),
    include=["app.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_concurrency=2,
    task_default_queue="escrow",
    task_routes={
        "notifications.*": {"queue": "notifications"},
        "escrow.*": {"queue": "escrow"},
    },
    # 通知投递失败要重试，worker 崩溃时消息不能丢
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    # 放款同步只做记账，判定始终以订单时间戳为准
    beat_schedule={
        "escrow-sync-released": {
            "task": "escrow.sync_released",
            "schedule": float(settings.ESCROW_SWEEP_INTERVAL_SECONDS),
        },
    },
)
