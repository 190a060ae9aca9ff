"""审计日志 Schema"""
from datetime import datetime
from typing import Any, Optional, List
from pydantic import BaseModel


class AuditLogItem(BaseModel):
    id: int
    actor_id: str
    actor_role: str
    action: str
    order_id: str
    detail: Optional[dict[str, Any]] = None
    ip: Optional[str] = None
    request_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogListResponse(BaseModel):
    items: List[AuditLogItem]
    total: int
    page: int
    page_size: int
