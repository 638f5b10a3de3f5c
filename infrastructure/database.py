"""
数据库配置和连接管理
"""
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return str(url.set(drivername=driver_map[drivername]))


def _enable_sqlite_write_lock(engine: AsyncEngine) -> None:
    """
    SQLite 没有行锁，SELECT ... FOR UPDATE 会被忽略。

    关闭 pysqlite 自带的事务管理，改为每个事务以 BEGIN IMMEDIATE 开始，
    直接获取数据库写锁，使并发的订单状态检查串行化。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, *, echo: Optional[bool] = None) -> AsyncEngine:
    """按 URL 创建异步引擎；SQLite 自动启用写锁事务。"""
    async_url = _build_async_url(database_url)
    new_engine = create_async_engine(
        async_url,
        echo=settings.database.echo if echo is None else echo,
        pool_pre_ping=not async_url.startswith("sqlite"),
    )
    if make_url(async_url).get_backend_name() == "sqlite":
        _enable_sqlite_write_lock(new_engine)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine = build_engine(settings.database.url)

# 创建异步会话工厂
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: Optional[AsyncEngine] = None):
    """
    创建所有表

    根据models中定义的所有模型创建对应的数据库表
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

