"""模块说明：认证闸门与 HTTP 认证中间件。

闸门只用于 HTTP 传输；STDIO 的信任边界是宿主进程，不做认证。
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from mcpfier.api.config import AuthConfig
from mcpfier.errors import AuthError, ConfigError, PermissionDenied
from .keys import APIKeyTable, AuthContext, PermissionSet, extract_credential

logger = logging.getLogger(__name__)

# 不需要认证的路径
PUBLIC_PATHS = frozenset({"/health", "/mcpfier/analytics", "/metrics"})


class AuthGate:
    """API Key 认证 + 工具级权限检查。"""

    def __init__(self, enabled: bool, table: APIKeyTable):
        self.enabled = enabled
        self.table = table

    @classmethod
    def from_config(cls, config: AuthConfig) -> "AuthGate":
        if config.enabled and config.mode != "simple":
            raise ConfigError(f"unsupported authentication mode: {config.mode}")
        return cls(config.enabled, APIKeyTable(config.simple.api_keys))

    def authenticate(self, headers: Mapping[str, str]) -> AuthContext:
        """校验请求头中的凭证。

        Raises:
            AuthError: 缺少或无效的 API Key
        """
        raw = extract_credential(headers)
        if not raw:
            raise AuthError("missing API key")

        key = self.table.lookup(raw)
        if key is None:
            raise AuthError("invalid API key")

        return AuthContext(
            user_id=key.name,
            client_name=key.name,
            permissions=PermissionSet(key.permissions),
            method="api_key",
        )

    def authorize(self, auth: AuthContext | None, tool: str) -> None:
        """工具级权限检查；闸门关闭时直接放行。

        Raises:
            AuthError: 没有认证上下文
            PermissionDenied: 权限集合不包含该工具
        """
        if not self.enabled:
            return
        if auth is None:
            raise AuthError("Authentication required")
        if not auth.has_permission(tool):
            logger.warning("Permission denied: '%s' -> tool '%s'", auth.user_id, tool)
            raise PermissionDenied(tool)


class AuthMiddleware(BaseHTTPMiddleware):
    """HTTP 认证中间件。

    认证通过后把 AuthContext 放到 request.state.auth_context，
    MCP 工具处理函数从请求上下文中取回它做权限检查。
    """

    def __init__(self, app, gate: AuthGate):
        super().__init__(app)
        self.gate = gate

    async def dispatch(self, request: Request, call_next):
        if not self.gate.enabled or request.url.path in PUBLIC_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        try:
            request.state.auth_context = self.gate.authenticate(request.headers)
        except AuthError as e:
            logger.info("Rejected %s %s: %s", request.method, request.url.path, e)
            return PlainTextResponse("Authentication required", status_code=401)

        return await call_next(request)


def add_auth_middleware(app: FastAPI, gate: AuthGate) -> None:
    app.add_middleware(AuthMiddleware, gate=gate)
    logger.info("Authentication: %s", "enabled (simple mode)" if gate.enabled else "disabled")
