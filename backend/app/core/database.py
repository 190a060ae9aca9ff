"""
数据库连接：异步引擎、会话工厂与 FastAPI 依赖
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

Base = declarative_base()

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db():
    """请求级数据库会话，请求结束自动关闭"""
    async with AsyncSessionLocal() as session:
        yield session


def create_async_engine_and_session_for_celery(url: str | None = None):
    """
    为 Celery 任务创建独立的 engine/session_factory。
    任务在各自的事件循环中运行，不能复用全局 engine（连接绑定在创建它的 loop 上）。
    """
    task_engine = create_async_engine(url or settings.DATABASE_URL, echo=False, future=True)
    session_factory = async_sessionmaker(
        task_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return task_engine, session_factory
