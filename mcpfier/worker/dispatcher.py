"""执行调度：为命令选择后端、执行，并记录分析事件。

流程：
1. 按命令类型选择后端（webhook > container > local）
2. 在调用方的执行上下文中运行
3. 不论成败都记录且只记录一条 CommandEvent
4. 原样返回后端结果（或原样抛出后端异常）
"""

from __future__ import annotations

import logging
import time

from mcpfier.api.analytics import Analytics, CommandEvent, NoOpAnalytics
from mcpfier.api.config import Command
from mcpfier.api.tools.registry import CommandRegistry
from mcpfier.worker.context import ExecutionContext
from mcpfier.worker.executors import ContainerExecutor, Executor, LocalExecutor, WebhookExecutor

logger = logging.getLogger(__name__)

WEBHOOK = "webhook"
CONTAINER = "container"
LOCAL = "local"


def select_backend(command: Command) -> str:
    """后端选择：确定且完备，每个命令恰好对应一种后端。"""
    if command.webhook is not None:
        return WEBHOOK
    if command.container:
        return CONTAINER
    return LOCAL


class Dispatcher:
    """命令执行调度器。"""

    def __init__(
        self,
        analytics: Analytics | None = None,
        local: LocalExecutor | None = None,
        container: ContainerExecutor | None = None,
        webhook: WebhookExecutor | None = None,
    ):
        self.analytics = analytics or NoOpAnalytics()
        local = local or LocalExecutor()
        self.backends: dict[str, Executor] = {
            LOCAL: local,
            CONTAINER: container or ContainerExecutor(local=local),
            WEBHOOK: webhook or WebhookExecutor(),
        }

    def execute(self, ctx: ExecutionContext, command: Command) -> str:
        """执行命令并记录分析事件。

        Returns:
            后端输出文本

        Raises:
            MCPFierError: 后端失败时原样抛出（BackendError 带着已采集的输出）
        """
        kind = select_backend(command)
        backend = self.backends[kind]
        logger.info("Executing '%s' with %s backend", command.name, kind)

        start = time.monotonic()
        output = ""
        error: Exception | None = None
        try:
            output = backend.run(ctx, command)
            return output
        except Exception as e:
            error = e
            output = getattr(e, "output", "") or ""
            logger.warning("Command '%s' failed: %s", command.name, e)
            raise
        finally:
            self.analytics.record_command(
                CommandEvent(
                    session_id=ctx.session_id,
                    command_name=command.name,
                    duration=time.monotonic() - start,
                    success=error is None,
                    output_size=len(output.encode("utf-8")),
                    execution_mode=kind,
                    error=str(error) if error is not None else "",
                )
            )

    def execute_by_name(self, ctx: ExecutionContext, registry: CommandRegistry, name: str) -> str:
        """按名称执行。命令不存在时抛 CommandNotFound，且不记录事件。"""
        command = registry.get_command(name)
        return self.execute(ctx, command)
