"""
Celery 任务模块：通知投递、担保资金状态同步
"""
from app.tasks.notification_tasks import deliver_notification_task
from app.tasks.escrow_tasks import sync_released_escrows_task

__all__ = [
    "deliver_notification_task",
    "sync_released_escrows_task",
]
