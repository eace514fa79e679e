"""模块说明：Prometheus 指标输出。

指标在每次抓取时从分析存储现算（最近 7 天窗口）；分析关闭时全部为 0。
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from mcpfier.api.analytics import Analytics, HTTPStats, UsageStats
from mcpfier.errors import AnalyticsError

logger = logging.getLogger(__name__)

router = APIRouter()

WINDOW_DAYS = 7

registry = CollectorRegistry()

commands_total = Gauge(
    "mcpfier_commands_total",
    "Number of command executions in the window",
    registry=registry,
)
command_success_rate = Gauge(
    "mcpfier_command_success_rate",
    "Command success rate (percent)",
    registry=registry,
)
command_duration_avg = Gauge(
    "mcpfier_command_duration_ms_avg",
    "Average command duration in milliseconds",
    registry=registry,
)
command_uses = Gauge(
    "mcpfier_command_uses",
    "Executions per command (top commands)",
    ["command"],
    registry=registry,
)
http_requests_total = Gauge(
    "mcpfier_http_requests_total",
    "Number of HTTP requests in the window",
    registry=registry,
)


def _refresh_metrics(analytics: Analytics) -> None:
    try:
        usage = analytics.get_stats(WINDOW_DAYS)
        http = analytics.get_http_stats(WINDOW_DAYS)
    except AnalyticsError as e:
        logger.warning("Failed to read analytics for metrics: %s", e)
        usage, http = UsageStats(), HTTPStats()

    commands_total.set(usage.total_commands)
    command_success_rate.set(usage.success_rate)
    command_duration_avg.set(usage.avg_duration_ms)
    command_uses.clear()
    for summary in usage.top_commands:
        command_uses.labels(command=summary.name).set(summary.count)
    http_requests_total.set(http.total_requests)


@router.get("/metrics")
def metrics(request: Request) -> Response:
    _refresh_metrics(request.app.state.services.analytics)
    payload = generate_latest(registry)
    return Response(payload, media_type=CONTENT_TYPE_LATEST)
