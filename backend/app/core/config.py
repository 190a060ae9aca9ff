"""
应用配置：从环境变量读取配置
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从项目根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API配置
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "多商户商城订单服务"
    CORS_ORIGINS: List[str] = ["*"]  # CORS允许的源

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./marketplace.db"

    # Redis配置（限流计数、Celery broker）
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery配置（不填则与 REDIS_URL 一致，只维护一份 Redis 地址即可）
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # 身份令牌：由外部身份服务签发，本服务只做校验
    JWT_SECRET_KEY: str = "your-jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"

    # 支付网关（Paystack 兼容接口）
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_TIMEOUT: float = 15.0
    PAYMENT_CALLBACK_URL: str = ""  # 为空时使用网关后台配置的回跳地址

    # 通知投递：事件经 Celery 投递到外部通知服务
    NOTIFICATION_ENABLED: bool = True
    NOTIFICATION_WEBHOOK_URL: str = ""
    NOTIFICATION_TIMEOUT: float = 10.0

    # 担保交易：妥投后自动放款窗口
    ESCROW_AUTO_RELEASE_DAYS: int = 7
    ESCROW_SWEEP_INTERVAL_SECONDS: int = 900  # 放款状态同步任务间隔（仅记账，不影响判定）

    # 金额展示
    CURRENCY_SYMBOL: str = "₦"

    # 限流（按用户）
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_CHECKOUT_PER_DAY: int = 50  # 每日下单次数上限
    RATE_LIMIT_PROMO_PER_MINUTE: int = 10  # 每分钟优惠码校验次数上限，防止枚举

    # 操作审计：是否记录下单、支付、状态变更等操作到 order_audit_logs 表
    AUDIT_LOG_ENABLED: bool = True

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "app.log"


# 创建全局配置实例
settings = Settings()
