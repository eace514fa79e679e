"""webhook 执行器。

把命令描述的出站 HTTP 调用发出去：
1. 构造请求（方法、请求体、Content-Type、User-Agent）
2. 注入认证（bearer / api_key / basic）
3. 按命令 timeout 覆盖默认超时
4. 按重试策略循环尝试，退避等待可被取消
5. 成功返回响应体文本；失败抛 BackendError，并带上最后一次响应体
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Callable

import requests
from requests.structures import CaseInsensitiveDict

from mcpfier import __version__
from mcpfier.api.config import Command, WebhookAuth, WebhookSpec
from mcpfier.errors import BackendError, ConfigError, ExecutionCancelled
from mcpfier.worker.context import ExecutionContext
from .base import Executor, command_timeout
from .retry import RetrySchedule, RetryState

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_AGENT = f"mcpfier/{__version__}"

_CONTENT_TYPES = {
    "json": "application/json",
    "xml": "application/xml",
    "form": "application/x-www-form-urlencoded",
}


def prepare_body(body: str, body_format: str) -> bytes:
    """按 body_format 校验并编码请求体。

    json 做语法校验；xml / form / text 原样透传。
    """
    fmt = (body_format or "").lower()
    if fmt == "json":
        try:
            json.loads(body)
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid JSON: {e}") from e
    elif fmt not in ("xml", "form", "text", ""):
        raise ConfigError(f"unsupported body format: {body_format}")
    return body.encode("utf-8")


def build_headers(spec: WebhookSpec) -> CaseInsensitiveDict:
    """Content-Type 由 body_format 推导，自定义 header 可以覆盖。"""
    headers: CaseInsensitiveDict = CaseInsensitiveDict()
    if spec.body:
        headers["Content-Type"] = _CONTENT_TYPES.get((spec.body_format or "").lower(), "text/plain")
    for key, value in spec.headers.items():
        headers[key] = value
    if "User-Agent" not in headers:
        headers["User-Agent"] = USER_AGENT
    return headers


def apply_auth(headers: CaseInsensitiveDict, auth: WebhookAuth | None) -> None:
    """注入认证头。缺少必填字段时在发出任何请求前抛 ConfigError。"""
    if auth is None:
        return

    kind = auth.type.lower()
    if kind == "bearer":
        if not auth.token:
            raise ConfigError("bearer token is required")
        headers["Authorization"] = f"Bearer {auth.token}"
    elif kind == "api_key":
        if not auth.key:
            raise ConfigError("API key is required")
        headers[auth.header or "X-API-Key"] = auth.key
    elif kind == "basic":
        if not auth.user or not auth.password:
            raise ConfigError("username and password are required for basic auth")
        credentials = base64.b64encode(f"{auth.user}:{auth.password}".encode("utf-8")).decode("ascii")
        headers["Authorization"] = f"Basic {credentials}"
    elif kind == "oauth":
        raise ConfigError("OAuth authentication not yet implemented")
    else:
        raise ConfigError(f"unsupported authentication type: {auth.type}")


class WebhookExecutor(Executor):
    """执行 webhook / API 调用的执行器。"""

    kind = "webhook"

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        """初始化 webhook 执行器。

        Args:
            timeout: 默认单次请求超时（秒），命令的 timeout 可以覆盖
            session_factory: 每次调用新建会话，取消时关闭该会话
        """
        self.timeout = timeout
        self.session_factory = session_factory

    def run(self, ctx: ExecutionContext, command: Command) -> str:
        spec = command.webhook
        if spec is None:
            raise ConfigError(f"command '{command.name}' has no webhook configuration")

        method = (spec.method or "GET").upper()
        # 请求体只编码一次，每次尝试都从这份字节重新构造请求
        body = prepare_body(spec.body, spec.body_format) if spec.body else None
        headers = build_headers(spec)
        apply_auth(headers, spec.auth)

        timeout = command_timeout(command) or self.timeout
        schedule = RetrySchedule.from_policy(spec.retry)

        with self.session_factory() as session:
            unregister = ctx.on_cancel(session.close)
            try:
                response, state = self._send(ctx, session, method, spec.url, headers, body, timeout, schedule)
            finally:
                unregister()

        if response is None:
            raise BackendError(
                f"request failed after {state.attempts_made} attempts: {state.last_error}",
                output=state.last_body or "",
                status_code=state.last_status,
            )

        text = response.text
        if response.status_code >= 400:
            raise BackendError(
                f"HTTP {response.status_code} {response.reason}".rstrip(),
                output=text,
                status_code=response.status_code,
            )
        return text

    def _send(
        self,
        ctx: ExecutionContext,
        session: requests.Session,
        method: str,
        url: str,
        headers: CaseInsensitiveDict,
        body: bytes | None,
        timeout: float,
        schedule: RetrySchedule,
    ) -> tuple[requests.Response | None, RetryState]:
        """重试循环。返回终态响应（状态码不可重试），或在耗尽时返回 None。"""
        state = RetryState(schedule)

        while True:
            ctx.raise_if_done()
            attempt_timeout = timeout
            remaining = ctx.remaining()
            if remaining is not None:
                attempt_timeout = min(attempt_timeout, remaining)

            try:
                response = session.request(method, url, headers=dict(headers), data=body, timeout=attempt_timeout)
            except requests.RequestException as e:
                if ctx.cancelled:
                    raise ExecutionCancelled("execution cancelled") from e
                state.record_error(e)
            else:
                if not schedule.is_retryable_status(response.status_code):
                    return response, state
                state.record_status(response.status_code, response.reason or "", response.text)
                response.close()

            delay = state.next_delay()
            if delay is None:
                return None, state

            logger.warning(
                "Webhook %s %s attempt %d/%d failed (%s), retrying in %.2fs",
                method, url, state.attempt, schedule.attempts, state.last_error, delay,
            )
            if ctx.wait(delay):
                ctx.raise_if_done(output=state.last_body or "")
