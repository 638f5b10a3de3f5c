"""
统一的Redis客户端实现 - 幂等键、计数器与滑动窗口所需的原子操作

与通用缓存不同，这里的调用方需要区分"键不存在"和"Redis 不可用"，
因此 RedisError 记录日志后继续向上抛出，由各存储适配器决定 fail-open 策略。
"""
from __future__ import annotations

import asyncio
import socket
import time
import uuid
from typing import Any, Callable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class CacheMetrics:
    """Redis 操作指标统计"""

    def __init__(self):
        self.errors = 0
        self.total_ops = 0
        self.operation_times: list[float] = []

    @property
    def avg_operation_time(self) -> float:
        if not self.operation_times:
            return 0.0
        return sum(self.operation_times) / len(self.operation_times)

    def record_operation_time(self, duration: float):
        self.total_ops += 1
        self.operation_times.append(duration)
        # 只保留最近1000次操作的时间
        if len(self.operation_times) > 1000:
            self.operation_times = self.operation_times[-1000:]


class RedisClient:
    """
    Redis客户端封装

    特性:
    - 命名空间隔离
    - 原子的 SET NX EX / INCR+EXPIRE / 有序集合滑动窗口
    - 性能指标统计
    """

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "",
        enable_metrics: bool = True,
    ):
        self._client = client
        self._namespace = namespace.strip(":")
        self._metrics = CacheMetrics() if enable_metrics else None

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def _execute_with_metrics(self, operation: Callable, *args, **kwargs) -> Any:
        """带指标统计的操作执行；失败时记录后重新抛出"""
        start_time = time.monotonic()
        try:
            return await operation(*args, **kwargs)
        except RedisError:
            if self._metrics is not None:
                self._metrics.errors += 1
            raise
        finally:
            if self._metrics is not None:
                self._metrics.record_operation_time(time.monotonic() - start_time)

    async def get(self, key: str) -> Optional[str]:
        formatted_key = self._format_key(key)
        try:
            return await self._execute_with_metrics(self._client.get, formatted_key)
        except RedisError as e:
            logger.error("redis_get_failed", key=formatted_key, error=str(e))
            raise

    async def set(
        self,
        key: str,
        value: str,
        ttl: Optional[int] = None,
        nx: bool = False,  # 仅当key不存在时设置
    ) -> bool:
        """设置字符串值；nx=True 时返回 False 表示键已存在"""
        formatted_key = self._format_key(key)
        expire = ttl if ttl is not None else settings.redis.default_ttl
        try:
            result = await self._execute_with_metrics(
                self._client.set,
                formatted_key,
                value,
                ex=expire if expire and expire > 0 else None,
                nx=nx,
            )
            return bool(result)
        except RedisError as e:
            logger.error("redis_set_failed", key=formatted_key, error=str(e))
            raise

    async def exists(self, key: str) -> bool:
        formatted_key = self._format_key(key)
        try:
            return bool(await self._execute_with_metrics(self._client.exists, formatted_key))
        except RedisError as e:
            logger.error("redis_exists_failed", key=formatted_key, error=str(e))
            raise

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        formatted = [self._format_key(k) for k in keys]
        try:
            return await self._execute_with_metrics(self._client.delete, *formatted)
        except RedisError as e:
            logger.error("redis_delete_failed", keys=formatted, error=str(e))
            raise

    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """自增计数器；INCRBY 与 EXPIRE 在同一事务中执行"""
        formatted_key = self._format_key(key)
        expire = ttl if ttl is not None else settings.redis.default_ttl
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incrby(formatted_key, amount)
                if expire and expire > 0:
                    pipe.expire(formatted_key, expire)
                results = await self._execute_with_metrics(pipe.execute)
            return int(results[0])
        except RedisError as e:
            logger.error("redis_incr_failed", key=formatted_key, error=str(e))
            raise

    async def sliding_window_hit(
        self,
        key: str,
        window_seconds: int,
        limit: int,
        now: Optional[float] = None,
    ) -> tuple[bool, int, float]:
        """
        有序集合滑动窗口：清理过期标记、记录本次请求并计数。

        Returns:
            (是否放行, 窗口内计数, 窗口内最早标记的时间戳)
        """
        formatted_key = self._format_key(key)
        now = time.time() if now is None else now
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(formatted_key, 0, now - window_seconds)
                pipe.zadd(formatted_key, {member: now})
                pipe.zcard(formatted_key)
                pipe.zrange(formatted_key, 0, 0, withscores=True)
                pipe.expire(formatted_key, window_seconds + 1)
                results = await self._execute_with_metrics(pipe.execute)
            count = int(results[2])
            oldest = results[3]
            oldest_ts = float(oldest[0][1]) if oldest else now
            if count > limit:
                # 被拒绝的请求不占用窗口配额
                await self._execute_with_metrics(self._client.zrem, formatted_key, member)
                return False, count - 1, oldest_ts
            return True, count, oldest_ts
        except RedisError as e:
            logger.error("redis_sliding_window_failed", key=formatted_key, error=str(e))
            raise

    async def health_check(self) -> bool:
        """健康检查"""
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False

    @property
    def metrics(self) -> Optional[CacheMetrics]:
        return self._metrics

    @property
    def client(self) -> aioredis.Redis:
        """获取原始Redis客户端（谨慎使用）"""
        return self._client


# ============= 全局实例管理 =============

_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


def _keepalive_options() -> dict:
    # 构建跨平台 keepalive 选项（若可用）
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        return {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    return {}


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """
    初始化全局Redis客户端

    Args:
        namespace: 命名空间，默认取 REDIS__NAMESPACE
        **kwargs: 其他Redis连接参数
    """
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
            **kwargs
        )
        try:
            await client.ping()
        except RedisError as e:
            logger.error("redis_init_failed", error=str(e))
            await client.aclose()
            raise

        _redis_client = client
        _cache_instance = RedisClient(client=client, namespace=namespace or settings.redis.namespace)
        logger.info("redis_initialized", namespace=namespace or settings.redis.namespace)
        return _cache_instance


def current_redis_client() -> Optional[RedisClient]:
    """返回已初始化的全局实例（未初始化时为 None）"""
    return _cache_instance


async def shutdown_redis_client() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("redis_closed")
        except RedisError as e:
            logger.error("redis_close_failed", error=str(e))
        finally:
            _redis_client = None
            _cache_instance = None


__all__ = [
    "RedisClient",
    "CacheMetrics",
    "init_redis_client",
    "current_redis_client",
    "shutdown_redis_client",
]
