"""
API依赖项 - webhook 管线的组合根
"""
from typing import Optional

from fastapi import Depends

from application.services.webhook_service import PaymentWebhookService
from infrastructure.database import AsyncSessionLocal
from infrastructure.external.cache import current_redis_client
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from infrastructure.wiring import WebhookComponents, build_webhook_components

_components: Optional[WebhookComponents] = None


def get_webhook_components() -> WebhookComponents:
    """进程内单例：共享同一组 Redis/内存存储与任务分发器"""
    global _components
    if _components is None:
        dispatcher = TaskDispatcher()
        _components = build_webhook_components(
            session_factory=AsyncSessionLocal,
            queue=dispatcher,
            scheduler=dispatcher,
            redis=current_redis_client(),
        )
    return _components


def reset_webhook_components() -> None:
    """Redis 初始化或关闭后重建组件"""
    global _components
    _components = None


async def get_webhook_service(
    components: WebhookComponents = Depends(get_webhook_components),
) -> PaymentWebhookService:
    return components.service
