"""
认证相关Schema
"""
import enum
from typing import Optional

from pydantic import BaseModel


class PrincipalRole(str, enum.Enum):
    """令牌中的角色声明"""
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


class Principal(BaseModel):
    """当前请求方（由身份服务签发的 JWT 解析得到）"""
    id: str
    role: PrincipalRole = PrincipalRole.CUSTOMER
    email: Optional[str] = None
