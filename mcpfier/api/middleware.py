"""模块说明：HTTP 中间件链（访问日志、请求分析）。

顺序（由外到内）：访问日志 -> 请求分析 -> 认证 -> 路由 / MCP 端点。
两层都包住完整的内层链路，所以记录的耗时包含认证、调度与后端执行。
"""

from __future__ import annotations

import logging
import time
from datetime import datetime

import anyio
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from mcpfier.api.analytics import Analytics, HTTPEvent

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("mcpfier.access")


class ResponseRecorder:
    """包装 ASGI send，记录状态码和响应字节数。"""

    def __init__(self, send: Send):
        self._send = send
        self.status_code = 200
        self.size = 0
        self.started = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status_code = message["status"]
            self.started = True
        elif message["type"] == "http.response.body":
            self.size += len(message.get("body", b""))
        await self._send(message)


def client_ip(scope: Scope, headers: Headers) -> str:
    """优先取代理转发的地址；X-Forwarded-For 是代理链，第一项为原始客户端。"""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip
    client = scope.get("client")
    return client[0] if client else "-"


def _request_uri(scope: Scope) -> str:
    path = scope.get("path", "")
    query = scope.get("query_string", b"")
    return f"{path}?{query.decode('latin-1')}" if query else path


class AccessLogMiddleware:
    """每个请求输出一行访问日志（Common Log Format 加扩展字段）。

    格式：IP - - [时间] "METHOD /path HTTP/1.1" status size "User-Agent" 耗时ms 认证方式
    认证方式只给出类别标签，不会输出凭证本身。
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.monotonic()
        started_at = datetime.now().astimezone()
        recorder = ResponseRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        except Exception:
            if not recorder.started:
                recorder.status_code = 500
            raise
        finally:
            headers = Headers(scope=scope)
            duration_ms = int((time.monotonic() - start) * 1000)
            access_logger.info(
                '%s - - [%s] "%s %s HTTP/%s" %d %d "%s" %dms %s',
                client_ip(scope, headers),
                started_at.strftime("%d/%b/%Y:%H:%M:%S %z"),
                scope.get("method", "-"),
                _request_uri(scope),
                scope.get("http_version", "1.1"),
                recorder.status_code,
                recorder.size,
                headers.get("user-agent") or "-",
                duration_ms,
                _auth_label(headers),
            )


def _auth_label(headers: Headers) -> str:
    if headers.get("x-api-key"):
        return "api_key"
    authorization = headers.get("authorization") or ""
    if authorization.startswith("Bearer "):
        return "bearer"
    if authorization.startswith("ApiKey "):
        return "api_key"
    return "-"


def classify_auth(headers: Headers, status_code: int) -> tuple[str, bool]:
    """按请求头与状态码判断认证方式及是否成功。

    与认证闸门各自独立判断：有认证头且状态码 < 400 视为认证成功。
    """
    method = "none"
    if headers.get("x-api-key"):
        method = "api_key"
    else:
        authorization = headers.get("authorization") or ""
        if authorization.startswith("Bearer "):
            method = "bearer"
        elif authorization.startswith("ApiKey "):
            method = "api_key"

    success = method != "none" and status_code < 400
    return method, success


class AnalyticsMiddleware:
    """每个 HTTP 请求记录一条 HTTPEvent。"""

    def __init__(self, app: ASGIApp, analytics: Analytics):
        self.app = app
        self.analytics = analytics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.monotonic()
        recorder = ResponseRecorder(send)
        try:
            await self.app(scope, receive, recorder)
        except Exception:
            if not recorder.started:
                recorder.status_code = 500
            raise
        finally:
            headers = Headers(scope=scope)
            auth_method, auth_success = classify_auth(headers, recorder.status_code)
            event = HTTPEvent(
                session_id=headers.get("x-session-id") or "",
                method=scope.get("method", ""),
                path=scope.get("path", ""),
                status_code=recorder.status_code,
                duration=time.monotonic() - start,
                client_ip=client_ip(scope, headers),
                user_agent=headers.get("user-agent") or "",
                auth_method=auth_method,
                auth_success=auth_success,
                response_size=recorder.size,
            )
            # sqlite 写入可能等锁，放到工作线程执行；客户端断开后仍要记录
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(self.analytics.record_http_event, event)
