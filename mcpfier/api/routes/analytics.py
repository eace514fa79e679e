"""模块说明：分析看板（HTML）。

统计读取失败时记录日志并按空统计渲染，看板本身不会报错。
"""

from __future__ import annotations

import logging
from datetime import datetime
from html import escape
from typing import Callable, TypeVar

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from mcpfier.api.analytics import HTTPStats, UsageStats, WebhookStats
from mcpfier.errors import AnalyticsError

logger = logging.getLogger(__name__)

router = APIRouter()

WINDOW_DAYS = 7

T = TypeVar("T")

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<meta http-equiv="refresh" content="30">
<title>MCPFier Analytics</title>
<style>
body {{ font-family: sans-serif; background: #f3f4f6; margin: 0; padding: 2rem; color: #1f2937; }}
.cards {{ display: flex; flex-wrap: wrap; gap: 1rem; margin-bottom: 2rem; }}
.card {{ background: #fff; border-radius: 8px; padding: 1rem 1.5rem; box-shadow: 0 1px 3px rgba(0,0,0,.1); }}
.card .label {{ font-size: .85rem; color: #6b7280; }}
.card .value {{ font-size: 1.5rem; font-weight: bold; }}
section {{ background: #fff; border-radius: 8px; padding: 1rem 1.5rem; margin-bottom: 2rem; }}
table {{ width: 100%; border-collapse: collapse; }}
th, td {{ text-align: left; padding: .4rem .8rem; border-bottom: 1px solid #e5e7eb; }}
footer {{ text-align: center; color: #6b7280; font-size: .85rem; }}
</style>
</head>
<body>
<h1>MCPFier Analytics Dashboard</h1>
<div class="cards">
{cards}
</div>
<section>
<h3>Last 24h Errors</h3>
<p>HTTP Errors: <b>{http_errors}</b> &middot; Auth Errors: <b>{auth_errors}</b> &middot; Command Errors: <b>{command_errors}</b></p>
</section>
{webhooks}
<section>
<h3>Popular MCP Tools (Last {days} days)</h3>
{tools_table}
</section>
<section>
<h3>Popular HTTP Endpoints (Last {days} days)</h3>
{paths_table}
</section>
<footer>Auto-refreshes every 30 seconds &middot; Last updated: {updated}</footer>
</body>
</html>
"""


def _card(label: str, value: str) -> str:
    return f'<div class="card"><div class="label">{escape(label)}</div><div class="value">{escape(value)}</div></div>'


def _table(headers: list[str], rows: list[tuple]) -> str:
    head = "".join(f"<th>{escape(h)}</th>" for h in headers)
    body = "".join(
        "<tr>" + "".join(f"<td>{escape(str(cell))}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


def _webhook_section(stats: WebhookStats) -> str:
    title = f"<h3>Upstream API/Webhook Metrics (Last {WINDOW_DAYS} days)</h3>"
    if stats.total_calls == 0:
        return f"<section>{title}<p>No webhook/API calls recorded yet.</p></section>"

    parts = [
        title,
        '<div class="cards">',
        _card("Total API Calls", str(stats.total_calls)),
        _card("Success Rate", f"{stats.success_rate:.1f}%"),
        _card("Avg Latency", f"{stats.avg_latency_ms}ms"),
        _card("Errors (24h)", str(stats.errors_last_24h)),
        "</div>",
    ]
    if stats.top_webhooks:
        parts.append(
            _table(
                ["API Endpoint", "Calls", "Success Rate", "Avg Latency"],
                [(w.name, w.count, f"{w.success_rate:.1f}%", f"{w.avg_latency_ms}ms") for w in stats.top_webhooks],
            )
        )
    if stats.error_breakdown:
        parts.append("<h4>Recent Error Types (Last 24h)</h4>")
        parts.append(_table(["Type", "Count"], sorted(stats.error_breakdown.items())))
    return "<section>" + "".join(parts) + "</section>"


def _safe(read: Callable[[int], T], empty: Callable[[], T], what: str) -> T:
    try:
        return read(WINDOW_DAYS)
    except AnalyticsError as e:
        logger.warning("Failed to get %s stats: %s", what, e)
        return empty()


def render_dashboard(usage: UsageStats, http: HTTPStats, webhooks: WebhookStats) -> str:
    cards = "\n".join([
        _card("Total HTTP Requests", str(http.total_requests)),
        _card("Success Rate", f"{http.success_rate:.1f}%"),
        _card("Auth Success Rate", f"{http.auth_success_rate:.1f}%"),
        _card("Avg HTTP Request Time", f"{http.avg_duration_ms}ms"),
        _card("Avg MCP Tool Time", f"{usage.avg_duration_ms}ms"),
    ])
    return _PAGE.format(
        cards=cards,
        http_errors=http.errors_last_24h,
        auth_errors=http.auth_errors_last_24h,
        command_errors=usage.errors_last_24h,
        webhooks=_webhook_section(webhooks),
        days=WINDOW_DAYS,
        tools_table=_table(
            ["Tool", "Uses", "Success Rate", "Avg Duration"],
            [(c.name, c.count, f"{c.success_rate:.1f}%", f"{c.avg_duration_ms}ms") for c in usage.top_commands],
        ),
        paths_table=_table(
            ["Path", "Requests", "Success Rate", "Avg Duration"],
            [(p.path, p.count, f"{p.success_rate:.1f}%", f"{p.avg_duration_ms}ms") for p in http.top_paths],
        ),
        updated=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    )


@router.get("/mcpfier/analytics", response_class=HTMLResponse)
def analytics_dashboard(request: Request) -> HTMLResponse:
    analytics = request.app.state.services.analytics
    http = _safe(analytics.get_http_stats, HTTPStats, "HTTP")
    usage = _safe(analytics.get_stats, UsageStats, "command")
    webhooks = _safe(analytics.get_webhook_stats, WebhookStats, "webhook")
    return HTMLResponse(render_dashboard(usage, http, webhooks))
