"""
优惠码模型（由运营后台维护，本服务只读）
"""
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SQLEnum

from app.core.database import Base


class PromoDiscountType(str, enum.Enum):
    """优惠方式：free=免运费，percentage=运费按百分比减免"""
    FREE = "free"
    PERCENTAGE = "percentage"


class PromoCode(Base):
    """优惠码表"""
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    discount_type = Column(
        SQLEnum(
            PromoDiscountType,
            values_callable=lambda e: [m.value for m in e],
            native_enum=False,
            length=16,
        ),
        nullable=False,
    )
    discount_value = Column(Integer, nullable=False, default=0)  # percentage 时为百分数
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
