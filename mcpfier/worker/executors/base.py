"""执行器基类。

定义所有执行器的统一接口，以及本地/容器两种后端共用的子进程执行逻辑。
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod

from mcpfier.api.config import Command
from mcpfier.errors import BackendError, ExecutionCancelled, ExecutionTimeout
from mcpfier.utils.durations import try_parse_duration
from mcpfier.worker.context import ExecutionContext

logger = logging.getLogger(__name__)

# 轮询子进程时检查取消信号的间隔（秒）
POLL_INTERVAL = 0.1


class Executor(ABC):
    """工具执行器基类。

    所有执行器（local、container、webhook）都应继承此类并实现 run 方法。
    """

    kind: str = ""

    @abstractmethod
    def run(self, ctx: ExecutionContext, command: Command) -> str:
        """执行命令。

        Args:
            ctx: 执行上下文（取消信号、截止时间）
            command: 要执行的命令

        Returns:
            输出文本

        Raises:
            BackendError: 执行失败时，异常上带着已采集的输出
            ConfigError: 命令配置不合法时（在任何执行动作之前）
        """
        ...


def command_timeout(command: Command) -> float | None:
    """命令配置的超时（秒），未配置、无法解析或不为正数时返回 None。"""
    timeout = try_parse_duration(command.timeout)
    if timeout is None or timeout <= 0:
        return None
    return timeout


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


def run_process(ctx: ExecutionContext, argv: list[str], env: dict[str, str] | None = None) -> str:
    """执行子进程，合并采集 stdout/stderr。

    不论退出码如何都保留输出；非零退出、启动失败、取消、超时都以
    BackendError 的形式抛出，异常上带着已采集到的部分输出。
    """
    try:
        proc = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            env=env,
        )
    except OSError as e:
        raise BackendError(f"failed to start '{argv[0]}': {e}") from e

    while True:
        try:
            # communicate 超时后重试不会丢失已读到的输出
            out, _ = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if not ctx.done:
                continue
            proc.kill()
            out, _ = proc.communicate()
            output = _decode(out)
            if ctx.cancelled:
                logger.info("Killed '%s' after cancellation", argv[0])
                raise ExecutionCancelled("execution cancelled", output=output)
            logger.warning("Killed '%s' after timeout", argv[0])
            raise ExecutionTimeout("command timed out", output=output, exit_code=124)

    output = _decode(out)
    if proc.returncode != 0:
        raise BackendError(f"exit status {proc.returncode}", output=output, exit_code=proc.returncode)
    return output
