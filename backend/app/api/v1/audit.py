"""订单审计日志 API"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.audit import AuditLogItem, AuditLogListResponse
from app.schemas.auth import Principal, PrincipalRole
from app.api.v1.auth import get_current_principal
from app.services.audit_service import list_order_actions

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    action: Optional[str] = Query(None, description="按操作类型筛选"),
    order_id: Optional[str] = Query(None, description="按订单筛选"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """管理员查看全部记录，其他角色只看自己的操作"""
    actor_id = None if principal.role == PrincipalRole.ADMIN else principal.id
    items, total = await list_order_actions(db, actor_id, action, order_id, page, page_size)
    return AuditLogListResponse(
        items=[AuditLogItem.model_validate(x) for x in items],
        total=total,
        page=page,
        page_size=page_size,
    )
