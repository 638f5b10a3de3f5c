"""
Request ID 中间件

生成或透传追踪ID，解析客户端来源地址（限流按来源计数），并通过
contextvars 传递给日志系统。
"""
import uuid
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings


def resolve_client_ip(request: Request, trust_forwarded: bool) -> str:
    """
    客户端地址。

    X-Forwarded-For / X-Real-IP 可被伪造，只有部署在受信任代理之后
    （TRUST_FORWARDED_HEADERS=true）才采用，否则直接使用连接地址。
    """
    if trust_forwarded:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


class RequestIDMiddleware(BaseHTTPMiddleware):

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp, trust_forwarded: Optional[bool] = None):
        super().__init__(app)
        self.trust_forwarded = settings.TRUST_FORWARDED_HEADERS if trust_forwarded is None else trust_forwarded

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = resolve_client_ip(request, self.trust_forwarded)

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        # 绑定到structlog上下文
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

