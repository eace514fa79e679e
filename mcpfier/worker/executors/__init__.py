"""执行后端：local（主机子进程）、container（容器）、webhook（出站 HTTP）。"""

from .base import Executor
from .local import LocalExecutor
from .container import ContainerExecutor
from .webhook import WebhookExecutor

__all__ = ["Executor", "LocalExecutor", "ContainerExecutor", "WebhookExecutor"]
