"""分析接口、事件与统计模型。

事件一旦创建即不可变；统计不落库，每次按时间窗口现算。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CommandEvent:
    """一次命令执行。duration 单位为秒。"""
    command_name: str
    duration: float
    success: bool
    execution_mode: str
    session_id: str = ""
    output_size: int = 0
    error: str = ""
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class HTTPEvent:
    """一次 HTTP 请求。duration 单位为秒。"""
    method: str
    path: str
    status_code: int
    duration: float
    session_id: str = ""
    client_ip: str = ""
    user_agent: str = ""
    auth_method: str = "none"
    auth_success: bool = False
    response_size: int = 0
    timestamp: datetime = field(default_factory=utcnow)


class CommandSummary(BaseModel):
    name: str
    count: int
    success_rate: float
    avg_duration_ms: int


class UsageStats(BaseModel):
    total_commands: int = 0
    success_rate: float = 0.0
    top_commands: list[CommandSummary] = Field(default_factory=list)
    errors_last_24h: int = 0
    avg_duration_ms: int = 0


class PathSummary(BaseModel):
    path: str
    count: int
    success_rate: float
    avg_duration_ms: int


class HTTPStats(BaseModel):
    total_requests: int = 0
    success_rate: float = 0.0
    auth_success_rate: float = 0.0
    avg_duration_ms: int = 0
    errors_last_24h: int = 0
    auth_errors_last_24h: int = 0
    top_paths: list[PathSummary] = Field(default_factory=list)


class WebhookSummary(BaseModel):
    name: str
    count: int
    success_rate: float
    avg_latency_ms: int


class WebhookStats(BaseModel):
    total_calls: int = 0
    success_rate: float = 0.0
    avg_latency_ms: int = 0
    errors_last_24h: int = 0
    top_webhooks: list[WebhookSummary] = Field(default_factory=list)
    error_breakdown: dict[str, int] = Field(default_factory=dict)


class Analytics(ABC):
    """分析记录器接口。

    record_* 永远不抛异常：存储故障只记录日志，不影响触发它的执行或请求。
    """

    @abstractmethod
    def record_command(self, event: CommandEvent) -> None:
        ...

    @abstractmethod
    def record_http_event(self, event: HTTPEvent) -> None:
        ...

    @abstractmethod
    def get_stats(self, days: int) -> UsageStats:
        ...

    @abstractmethod
    def get_http_stats(self, days: int) -> HTTPStats:
        ...

    @abstractmethod
    def get_webhook_stats(self, days: int) -> WebhookStats:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class NoOpAnalytics(Analytics):
    """分析关闭或存储初始化失败时使用的空实现。"""

    def record_command(self, event: CommandEvent) -> None:
        pass

    def record_http_event(self, event: HTTPEvent) -> None:
        pass

    def get_stats(self, days: int) -> UsageStats:
        return UsageStats()

    def get_http_stats(self, days: int) -> HTTPStats:
        return HTTPStats()

    def get_webhook_stats(self, days: int) -> WebhookStats:
        return WebhookStats()

    def close(self) -> None:
        pass
