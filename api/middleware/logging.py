"""
请求/响应日志中间件

Webhook bodies carry customer data, so bodies are only logged when enabled
and always with personal fields masked. Signature headers are never logged.
"""
import json
import time
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """记录请求开始/结束、状态码与耗时，并写入 X-Process-Time 响应头"""

    # 跳过日志的路径
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # 网关事件中的个人信息与凭据字段
    SENSITIVE_FIELDS = {
        "email", "customer_email", "customer_details", "phone", "name",
        "address", "billing_details", "shipping", "client_secret", "secret",
        "api_key", "token",
    }

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        request_info = await self._get_request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - start_time,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True
            )
            # 重新抛出异常，让异常处理器处理
            raise

        duration = time.perf_counter() - start_time
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _get_request_info(self, request: Request) -> dict:
        info: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
        }
        if request.query_params:
            info["query_params"] = dict(request.query_params)

        content_length = request.headers.get("content-length")
        if content_length:
            info["content_length"] = int(content_length) if content_length.isdigit() else content_length

        if request.method == "POST" and self._should_log_body():
            body = await self._extract_and_sanitize_body(request)
            if body is not None:
                info["body"] = body

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self) -> bool:
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _extract_and_sanitize_body(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None
        snippet = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        if "application/json" not in request.headers.get("content-type", "").lower():
            return {"bytes": len(body)}
        try:
            parsed = json.loads(snippet)
        except ValueError:
            # 截断后的 JSON 无法解析，只记录长度
            return {"bytes": len(body), "truncated": len(body) > self.max_body_log_bytes}
        return self._sanitize_data(parsed)

    def _sanitize_data(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: ("***" if k.lower() in self.SENSITIVE_FIELDS else self._sanitize_data(v)) for k, v in data.items()}
        if isinstance(data, list):
            return [self._sanitize_data(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict):
        status_code = response.status_code
        log_data = {"status_code": status_code, "duration": round(duration, 4), **request_info}
        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
