"""
通知投递任务：把订单事件 POST 给外部通知服务
"""
import logging
from typing import Any, Dict

import httpx

from app.celery_app import celery_app
from app.core.config import settings

logger = logging.getLogger(__name__)


def post_notification(payload: Dict[str, Any], transport: httpx.BaseTransport = None) -> bool:
    """同步投递一条通知，返回是否投递成功。未配置 NOTIFICATION_WEBHOOK_URL 时仅记录日志。"""
    url = settings.NOTIFICATION_WEBHOOK_URL
    if not url:
        logger.info("未配置通知服务地址，跳过投递 user_id=%s title=%s", payload.get("user_id"), payload.get("title"))
        return False
    with httpx.Client(timeout=settings.NOTIFICATION_TIMEOUT, transport=transport) as client:
        resp = client.post(url, json=payload)
        resp.raise_for_status()
    return True


@celery_app.task(bind=True, name="notifications.deliver", max_retries=3, default_retry_delay=30)
def deliver_notification_task(self, payload: Dict[str, Any]) -> bool:
    """异步：投递通知，网络错误重试，最终失败只记录日志"""
    try:
        return post_notification(payload)
    except httpx.HTTPError as e:
        if self.request.retries < self.max_retries:
            raise self.retry(exc=e)
        logger.warning("通知投递最终失败 user_id=%s: %s", payload.get("user_id"), e)
        return False
