"""
通知投递：订单事件交给外部通知服务（邮件/推送/短信由对方负责）

投递是“发出即忘”：任何失败只记录日志，不影响已经提交的状态变更。
"""
import logging
from typing import Any, Optional, Protocol

from app.core.config import settings
from app.services.order_lifecycle import LifecycleEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """通知投递接口"""

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        category: str,
        action_url: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class CeleryNotificationDispatcher:
    """通过 Celery 任务异步投递到 NOTIFICATION_WEBHOOK_URL"""

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        category: str,
        action_url: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        if not getattr(settings, "NOTIFICATION_ENABLED", True):
            return
        from app.tasks.notification_tasks import deliver_notification_task

        deliver_notification_task.delay(
            {
                "user_id": user_id,
                "title": title,
                "message": message,
                "category": category,
                "action_url": action_url,
                "metadata": metadata or {},
            }
        )


def dispatch_event(dispatcher: Optional[NotificationDispatcher], event: Optional[LifecycleEvent]) -> bool:
    """投递一条生命周期事件，返回是否成功交付给投递方"""
    if dispatcher is None or event is None:
        return False
    try:
        dispatcher.notify(
            user_id=event.user_id,
            title=event.title,
            message=event.message,
            category=event.category,
            action_url=event.action_url,
            metadata={**event.metadata, "type": event.type},
        )
        return True
    except Exception as e:
        logger.warning("通知投递失败 order_id=%s status=%s: %s", event.order_id, event.status.value, e)
        return False
