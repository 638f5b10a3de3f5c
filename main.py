"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from api.dependencies import reset_webhook_components
from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import webhooks as webhook_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.database import create_tables
from infrastructure.external.cache import current_redis_client, init_redis_client, shutdown_redis_client


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )

    if settings.redis.url:
        try:
            await init_redis_client()
        except RedisError as exc:
            # 幂等与限流退化为进程内存储，仅适用于单实例
            logger.critical("redis_init_failed_using_local_stores", error=str(exc))
    else:
        logger.warning("redis_not_configured_using_local_stores")

    if not payment_settings.webhook.signing_secrets:
        logger.warning("webhook_signing_secret_missing", message="All webhook deliveries will be rejected")

    reset_webhook_components()
    yield

    # 关闭时的清理工作
    if current_redis_client() is not None:
        await shutdown_redis_client()
    reset_webhook_components()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Payment webhook ingestion and order fulfillment",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 2. Request ID中间件（最先执行，为后续中间件提供request_id与client_ip）
app.add_middleware(RequestIDMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由：网关回调地址为 /webhooks/payment，同时保留版本化前缀
app.include_router(webhook_routes.router)
app.include_router(webhook_routes.router, prefix="/api/v1")


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    redis = current_redis_client()
    redis_ok = await redis.health_check() if redis is not None else None
    return success_response(data={"status": "healthy", "redis": redis_ok}, message="ok")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
