"""模块说明：服务装配与传输入口。

- ``Services``：按配置一次性构造注册表、分析、调度器和认证闸门
- ``create_mcp_server``：每个命令注册为一个 MCP 工具
- ``create_http_app``：FastAPI 应用，组合中间件链、内置路由与 Streamable HTTP 端点
- ``run_stdio`` / ``run_http``：两种传输的阻塞式入口
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI
from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from starlette.middleware.cors import CORSMiddleware

from mcpfier import __version__
from mcpfier.api.analytics import Analytics, open_analytics
from mcpfier.api.auth import AuthContext, AuthGate
from mcpfier.api.auth.gate import add_auth_middleware
from mcpfier.api.config import AppConfig
from mcpfier.api.middleware import AccessLogMiddleware, AnalyticsMiddleware
from mcpfier.api.routes import analytics as analytics_routes
from mcpfier.api.routes import health, metrics
from mcpfier.api.tools.registry import CommandRegistry
from mcpfier.api.tools.service import ToolService
from mcpfier.worker.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"


@dataclass
class Services:
    """一次进程生命周期内共享的核心对象。"""

    config: AppConfig
    registry: CommandRegistry
    analytics: Analytics
    dispatcher: Dispatcher
    gate: AuthGate

    @classmethod
    def from_config(cls, config: AppConfig, analytics: Analytics | None = None) -> "Services":
        """按配置构造全部核心对象。

        Raises:
            ConfigError: 命令重名、API Key 重复或不支持的认证模式
        """
        registry = CommandRegistry(config.commands)
        analytics = analytics if analytics is not None else open_analytics(config.analytics)
        return cls(
            config=config,
            registry=registry,
            analytics=analytics,
            dispatcher=Dispatcher(analytics=analytics),
            gate=AuthGate.from_config(config.server.http.auth),
        )

    def tool_service(self, http: bool) -> ToolService:
        # STDIO 的信任边界是宿主进程，不挂认证闸门
        return ToolService(self.registry, self.dispatcher, self.gate if http else None)

    def close(self) -> None:
        self.analytics.close()


def _auth_from(ctx: Context) -> AuthContext | None:
    """取出认证中间件挂在请求上的 AuthContext；STDIO 下没有 HTTP 请求。"""
    try:
        request = ctx.request_context.request
    except ValueError:
        return None
    state = getattr(request, "state", None)
    if state is None:
        return None
    return getattr(state, "auth_context", None)


def _make_handler(service: ToolService, name: str):
    async def call_tool(ctx: Context) -> str:
        result = await service.acall(name, auth=_auth_from(ctx))
        if result.is_error:
            raise ToolError(result.text)
        return result.text

    call_tool.__name__ = f"call_{name.replace('-', '_')}"
    return call_tool


def create_mcp_server(services: Services, http: bool = False, host: str | None = None) -> FastMCP:
    """构造 FastMCP 服务并为每个命令注册一个无参工具。

    host 决定 Streamable HTTP 端点的 Host 头校验：监听本机地址时只接受本机 Host。
    """
    http_config = services.config.server.http
    mcp = FastMCP(
        name="mcpfier",
        instructions="Configured commands exposed as MCP tools",
        host=host or http_config.host,
        port=http_config.port,
        stateless_http=True,
        streamable_http_path=MCP_PATH,
    )

    service = services.tool_service(http=http)
    for command in services.registry.values():
        mcp.add_tool(
            _make_handler(service, command.name),
            name=command.name,
            description=command.get_description(),
        )
    logger.info("Registered %d tools", len(services.registry))
    return mcp


def create_http_app(services: Services, host: str | None = None) -> FastAPI:
    """HTTP 应用。

    中间件由外到内：访问日志 -> 请求分析 -> (CORS) -> 认证 -> 路由 / MCP。
    Starlette 中后添加的中间件在外层，所以下面按相反顺序添加。
    """
    mcp = create_mcp_server(services, http=True, host=host)
    mcp_app = mcp.streamable_http_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with mcp.session_manager.run():
            logger.info("MCP endpoint ready at %s", MCP_PATH)
            yield
        services.close()

    app = FastAPI(title="mcpfier", version=__version__, lifespan=lifespan)
    app.state.services = services

    app.include_router(health.router)
    app.include_router(analytics_routes.router)
    app.include_router(metrics.router, tags=["metrics"])
    app.mount("/", mcp_app)

    add_auth_middleware(app, services.gate)

    cors = services.config.server.http.cors
    if cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors.allowed_origins,
            allow_methods=cors.allowed_methods,
            allow_headers=cors.allowed_headers,
        )

    app.add_middleware(AnalyticsMiddleware, analytics=services.analytics)
    app.add_middleware(AccessLogMiddleware)
    return app


def run_stdio(services: Services) -> None:
    """STDIO 传输：阻塞直到宿主关闭标准输入。"""
    mcp = create_mcp_server(services, http=False)
    logger.info("Serving %d tools over STDIO", len(services.registry))
    try:
        mcp.run(transport="stdio")
    finally:
        services.close()


def run_http(services: Services, host: str | None = None, port: int | None = None) -> None:
    http_config = services.config.server.http
    host = host or http_config.host
    port = port or http_config.port
    app = create_http_app(services, host=host)
    logger.info("Serving MCP over HTTP at http://%s:%d%s", host, port, MCP_PATH)
    # 访问日志由 AccessLogMiddleware 输出
    uvicorn.run(app, host=host, port=port, access_log=False)
