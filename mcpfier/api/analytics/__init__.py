"""执行与请求分析：只追加的事件日志 + 读取时聚合。"""

from .base import (
    Analytics,
    CommandEvent,
    CommandSummary,
    HTTPEvent,
    HTTPStats,
    NoOpAnalytics,
    PathSummary,
    UsageStats,
    WebhookStats,
    WebhookSummary,
)
from .factory import open_analytics

__all__ = [
    "Analytics",
    "CommandEvent",
    "CommandSummary",
    "HTTPEvent",
    "HTTPStats",
    "NoOpAnalytics",
    "PathSummary",
    "UsageStats",
    "WebhookStats",
    "WebhookSummary",
    "open_analytics",
]
