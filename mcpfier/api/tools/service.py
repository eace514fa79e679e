"""模块说明：工具调用服务。

一次工具调用到达后的完整处理：权限检查 -> 调度执行 -> 结果整形。
所有可预期的失败都转换为失败结果返回，而不是让协议层崩溃。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import anyio

from mcpfier.api.auth import AuthContext, AuthGate
from mcpfier.api.tools.registry import CommandRegistry
from mcpfier.errors import AuthError, CommandNotFound, MCPFierError
from mcpfier.worker.context import ExecutionContext
from mcpfier.worker.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """工具调用结果。"""
    text: str
    is_error: bool = False


class ToolService:
    """把工具调用转交给调度器。

    Args:
        registry: 命令注册表
        dispatcher: 执行调度器
        gate: 认证闸门；STDIO 传输传 None
    """

    def __init__(self, registry: CommandRegistry, dispatcher: Dispatcher, gate: AuthGate | None = None):
        self.registry = registry
        self.dispatcher = dispatcher
        self.gate = gate

    def call(self, name: str, ctx: ExecutionContext | None = None, auth: AuthContext | None = None) -> ToolResult:
        ctx = ctx or ExecutionContext(auth=auth)
        auth = auth if auth is not None else ctx.auth

        if self.gate is not None:
            try:
                self.gate.authorize(auth, name)
            except AuthError as e:
                return ToolResult(str(e), is_error=True)

        try:
            output = self.dispatcher.execute_by_name(ctx, self.registry, name)
        except CommandNotFound as e:
            return ToolResult(str(e), is_error=True)
        except MCPFierError as e:
            output = getattr(e, "output", "") or ""
            return ToolResult(f"Command execution failed: {e}\nOutput: {output}", is_error=True)

        return ToolResult(output)

    async def acall(self, name: str, auth: AuthContext | None = None) -> ToolResult:
        """异步入口：在工作线程中执行，异步任务被取消时同步取消执行上下文。"""
        ctx = ExecutionContext(auth=auth)
        try:
            return await anyio.to_thread.run_sync(self.call, name, ctx, auth, abandon_on_cancel=True)
        except anyio.get_cancelled_exc_class():
            logger.info("Tool call '%s' cancelled by caller", name)
            ctx.cancel()
            raise
