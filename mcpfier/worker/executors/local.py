"""本地执行器。

直接在当前主机上以子进程执行命令。
"""

from __future__ import annotations

import os

from mcpfier.api.config import Command
from mcpfier.worker.context import ExecutionContext
from .base import Executor, command_timeout, run_process


class LocalExecutor(Executor):
    """在主机上直接执行命令的执行器。

    参数向量为 [script, *args]；命令的 env 覆盖在当前进程环境变量之上。
    """

    kind = "local"

    def run(self, ctx: ExecutionContext, command: Command) -> str:
        argv = [command.script, *command.args]
        env = os.environ.copy()
        env.update(command.env)
        return run_process(ctx.with_timeout(command_timeout(command)), argv, env)
