"""
位置模型：商户发货地与用户收货地址（由外部资料服务维护，本服务只读）
"""
from sqlalchemy import Column, Integer, String, Float

from app.core.database import Base


class VendorLocation(Base):
    """商户发货地坐标"""
    __tablename__ = "vendor_locations"

    vendor_id = Column(String(64), primary_key=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)


class Address(Base):
    """用户收货地址"""
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    full_name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=False)
    street_address = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    landmark = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
