"""容器执行器。

在一次性容器中执行命令（docker run --rm），未指定镜像时退回本地执行。
"""

from __future__ import annotations

import logging
import shutil

from mcpfier.api.config import Command
from mcpfier.errors import BackendError
from mcpfier.worker.context import ExecutionContext
from .base import Executor, command_timeout, run_process
from .local import LocalExecutor

logger = logging.getLogger(__name__)


class ContainerExecutor(Executor):
    """在容器中执行命令的执行器。

    注意：这里只负责拼装并调用容器运行时，不做任何资源限制或沙箱加固；
    镜像的拉取与构建也不在这里处理。
    """

    kind = "container"

    def __init__(self, runtime: str = "docker", local: LocalExecutor | None = None):
        """初始化容器执行器。

        Args:
            runtime: 容器运行时可执行文件名
            local: 未指定镜像时使用的本地执行器
        """
        self.runtime = runtime
        self.local = local or LocalExecutor()

    def build_argv(self, command: Command) -> list[str]:
        """拼装容器运行时的调用参数。"""
        argv = [self.runtime, "run", "--rm"]
        for key, value in command.env.items():
            argv += ["-e", f"{key}={value}"]
        argv.append(command.container)
        argv.append(command.script)
        argv += command.args
        return argv

    def run(self, ctx: ExecutionContext, command: Command) -> str:
        if not command.container:
            return self.local.run(ctx, command)

        if shutil.which(self.runtime) is None:
            raise BackendError(f"container runtime '{self.runtime}' not available: executable not found in PATH")

        argv = self.build_argv(command)
        logger.debug("Running container command: %s", argv)
        return run_process(ctx.with_timeout(command_timeout(command)), argv)
