"""
认证服务：校验身份服务签发的访问令牌

本服务不管理账号与密码，只信任以共享密钥签名的 JWT。
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from pydantic import ValidationError

from app.core.config import settings
from app.schemas.auth import Principal


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """创建访问令牌（联调、测试用；线上由身份服务签发）"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Principal:
    """解析令牌，失败抛 ValueError"""
    credentials_exception = ValueError("无效的认证凭据")
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise credentials_exception
    subject = payload.get("sub")
    if subject is None:
        raise credentials_exception
    try:
        return Principal(
            id=str(subject),
            role=payload.get("role") or "customer",
            email=payload.get("email"),
        )
    except ValidationError:
        raise credentials_exception
