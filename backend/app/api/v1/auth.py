"""
认证相关API
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.core.config import settings
from app.schemas.auth import Principal, PrincipalRole
from app.services.auth_service import decode_access_token

router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token")


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    """获取当前请求方"""
    try:
        return decode_access_token(token)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_roles(*roles: PrincipalRole):
    """按角色放行，其余返回 403"""
    async def _checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="无权执行该操作")
        return principal
    return _checker


@router.get("/me", response_model=Principal)
async def get_me(principal: Principal = Depends(get_current_principal)):
    """获取当前请求方信息"""
    return principal
