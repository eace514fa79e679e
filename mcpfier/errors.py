"""错误分类。

执行链路上所有可预期的失败都归到这里的某个类别，
调用方（工具服务、CLI、HTTP 路由）按类别决定是报错退出还是返回失败结果。
"""

from __future__ import annotations


class MCPFierError(Exception):
    """所有 mcpfier 错误的基类。"""


class ConfigError(MCPFierError):
    """配置格式错误或缺少必填字段。启动阶段遇到时应直接退出。"""


class CommandNotFound(MCPFierError):
    """按名称找不到命令。"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"command '{name}' not found")


class BackendError(MCPFierError):
    """后端执行失败。

    无论失败原因是什么，都带上已经采集到的输出（或上游响应体），
    方便调用方排查。

    Attributes:
        output: 已采集的输出文本
        exit_code: 子进程退出码（仅本地/容器后端）
        status_code: 最后一次 HTTP 状态码（仅 webhook 后端）
    """

    def __init__(
        self,
        message: str,
        output: str = "",
        exit_code: int | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.output = output
        self.exit_code = exit_code
        self.status_code = status_code


class ExecutionCancelled(BackendError):
    """调用方取消了执行。"""


class ExecutionTimeout(BackendError):
    """执行超过了命令配置的超时时间。"""


class AuthError(MCPFierError):
    """缺少凭证或凭证无效。"""


class PermissionDenied(AuthError):
    """凭证有效，但无权调用该工具。"""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Permission denied for tool '{tool}'")


class AnalyticsError(MCPFierError):
    """分析存储不可用。只记录日志，永远不向上传播到执行链路。"""
