"""
订单操作审计：下单、发起/核验支付、状态变更、确认收货
"""
from sqlalchemy import JSON, Column, DateTime, Integer, String

from app.core.clock import utcnow
from app.core.database import Base


class AuditLog(Base):
    """订单审计日志表"""
    __tablename__ = "order_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String(64), nullable=False, index=True)
    actor_role = Column(String(16), nullable=False)  # customer / vendor / admin
    action = Column(String(64), nullable=False, index=True)
    order_id = Column(String(36), nullable=False, index=True)
    detail = Column(JSON, nullable=True)
    ip = Column(String(64), nullable=True)
    request_id = Column(String(64), nullable=True, index=True)  # 与 X-Request-ID 一致
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
