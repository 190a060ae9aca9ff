"""
订单服务入口：中间件、统一错误响应、路由注册、健康检查
"""
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.database import Base, engine
from app.core.errors import OrderPipelineError, PromoInvalid
from app.core.health import check_db, check_redis
from app.core.logging import setup_logging
from app.api.v1 import api_router
from app import models  # noqa: F401  注册全部表到 Base.metadata

logger = logging.getLogger(__name__)

SERVICE_NAME = "marketplace-orders"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s 启动，自动放款窗口 %s 天", SERVICE_NAME, settings.ESCROW_AUTO_RELEASE_DAYS)

    yield

    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="多商户电商订单流水线：运费计算、订单状态机、担保放款",
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """透传或生成 X-Request-ID，审计日志与错误响应都带上它"""
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


def _error_json(request: Request, status_code: int, detail: str, headers=None, **extra) -> JSONResponse:
    """统一错误格式 {detail, code?, request_id, ...}"""
    body = {"detail": detail}
    body.update({k: v for k, v in extra.items() if v is not None})
    rid = getattr(request.state, "request_id", None)
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(OrderPipelineError)
async def order_pipeline_exception_handler(request: Request, exc: OrderPipelineError):
    logger.info("业务异常 %s: %s", exc.code, exc.message)
    # 优惠码错误附带原因 not_found / expired / empty
    reason = exc.reason if isinstance(exc, PromoInvalid) else None
    return _error_json(request, exc.status_code, exc.message, code=exc.code, reason=reason)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_json(request, exc.status_code, detail, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errs = exc.errors()
    detail = errs[0].get("msg", "请求参数校验失败") if errs else "请求参数校验失败"
    # ctx 中可能含异常对象，无法序列化
    errors = [{k: v for k, v in e.items() if k != "ctx"} for e in errs]
    return _error_json(request, 422, detail, errors=errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("未捕获异常 request_id=%s: %s", getattr(request.state, "request_id", None), exc)
    return _error_json(request, 500, "服务器内部错误")


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME, "version": SERVICE_VERSION, "docs": "/docs"}


@app.get("/health")
async def health_check():
    """依赖连通状态；任一依赖不可用时为 degraded"""
    db_ok, db_msg = await check_db()
    redis_ok, redis_msg = check_redis()
    return {
        "status": "healthy" if db_ok and redis_ok else "degraded",
        "service": SERVICE_NAME,
        "dependencies": {
            "database": {"ok": db_ok, "message": db_msg},
            "redis": {"ok": redis_ok, "message": redis_msg},
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
