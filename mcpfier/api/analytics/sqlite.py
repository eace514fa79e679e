"""模块说明：基于 SQLite 的分析存储。

事件表只追加；统计在读取时按时间窗口聚合。
每次操作独立打开连接，并发写入依赖 SQLite 自身的锁（busy timeout）。
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from mcpfier.errors import AnalyticsError
from .base import (
    Analytics,
    CommandEvent,
    CommandSummary,
    HTTPEvent,
    HTTPStats,
    PathSummary,
    UsageStats,
    WebhookStats,
    WebhookSummary,
    utcnow,
)

logger = logging.getLogger(__name__)

TOP_N = 10
_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA = """
CREATE TABLE IF NOT EXISTS command_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    session_id TEXT,
    command_name TEXT NOT NULL,
    duration_ms REAL NOT NULL,
    success INTEGER NOT NULL,
    error_message TEXT,
    output_size INTEGER,
    execution_mode TEXT
);
CREATE INDEX IF NOT EXISTS idx_command_events_timestamp ON command_events(timestamp);
CREATE INDEX IF NOT EXISTS idx_command_events_command ON command_events(command_name);

CREATE TABLE IF NOT EXISTS http_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    session_id TEXT,
    method TEXT NOT NULL,
    path TEXT NOT NULL,
    status_code INTEGER NOT NULL,
    duration_ms REAL NOT NULL,
    client_ip TEXT,
    user_agent TEXT,
    auth_method TEXT,
    auth_success INTEGER NOT NULL,
    response_size INTEGER
);
CREATE INDEX IF NOT EXISTS idx_http_events_timestamp ON http_events(timestamp);
CREATE INDEX IF NOT EXISTS idx_http_events_path ON http_events(path);
"""

_HTTP_STATUS = re.compile(r"\bHTTP (\d{3})\b")


def classify_error(message: str) -> str:
    """按错误文本把 webhook 失败归类。"""
    m = _HTTP_STATUS.search(message or "")
    if m:
        code = int(m.group(1))
        if 400 <= code < 500:
            return "client_error"
        if code >= 500:
            return "server_error"

    lowered = (message or "").lower()
    if "timeout" in lowered or "timed out" in lowered or "deadline" in lowered:
        return "timeout"
    if any(s in lowered for s in ("connection", "refused", "no such host", "name resolution", "unreachable")):
        return "connection"
    return "other"


def resolve_path(path: str) -> Path:
    """展开 ~ 并转为绝对路径；父目录必须已存在。"""
    resolved = Path(path).expanduser().resolve()
    if not resolved.parent.is_dir():
        raise AnalyticsError(f"directory does not exist: {resolved.parent}")
    return resolved


def _ts(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(_TS_FORMAT)


class SQLiteAnalytics(Analytics):
    """持久化的分析记录器。"""

    def __init__(self, db_path: str, clock: Callable[[], datetime] = utcnow):
        """打开（必要时创建）分析数据库。

        Args:
            db_path: 数据库文件路径，支持 ~
            clock: 当前时间来源，统计窗口以此为准

        Raises:
            AnalyticsError: 路径不可用或建表失败
        """
        self.path = resolve_path(db_path)
        self.clock = clock
        self._closed = False
        try:
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.executescript(SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise AnalyticsError(f"failed to initialize analytics database {self.path}: {e}") from e

    @contextmanager
    def _connect(self):
        """获取数据库连接的上下文管理器"""
        conn = sqlite3.connect(str(self.path), timeout=5.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # ==================== 写入 ====================

    def record_command(self, event: CommandEvent) -> None:
        if self._closed:
            return
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO command_events(
                           timestamp, session_id, command_name, duration_ms, success,
                           error_message, output_size, execution_mode
                       ) VALUES(?,?,?,?,?,?,?,?)""",
                    (
                        _ts(event.timestamp),
                        event.session_id,
                        event.command_name,
                        event.duration * 1000.0,
                        1 if event.success else 0,
                        event.error,
                        event.output_size,
                        event.execution_mode,
                    ),
                )
                conn.commit()
        except Exception as e:
            logger.warning("Analytics recording failed for command '%s': %s", event.command_name, e)

    def record_http_event(self, event: HTTPEvent) -> None:
        if self._closed:
            return
        try:
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO http_events(
                           timestamp, session_id, method, path, status_code, duration_ms,
                           client_ip, user_agent, auth_method, auth_success, response_size
                       ) VALUES(?,?,?,?,?,?,?,?,?,?,?)""",
                    (
                        _ts(event.timestamp),
                        event.session_id,
                        event.method,
                        event.path,
                        event.status_code,
                        event.duration * 1000.0,
                        event.client_ip,
                        event.user_agent,
                        event.auth_method,
                        1 if event.auth_success else 0,
                        event.response_size,
                    ),
                )
                conn.commit()
        except Exception as e:
            logger.warning("Analytics recording failed for %s %s: %s", event.method, event.path, e)

    # ==================== 聚合 ====================

    def _cutoffs(self, days: int) -> tuple[str, str]:
        now = self.clock()
        return _ts(now - timedelta(days=days)), _ts(now - timedelta(hours=24))

    def _query(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        if self._closed:
            raise AnalyticsError("analytics store is closed")
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise AnalyticsError(f"analytics query failed: {e}") from e

    def get_stats(self, days: int) -> UsageStats:
        return self._command_stats(days, webhook_only=False)

    def get_webhook_stats(self, days: int) -> WebhookStats:
        usage = self._command_stats(days, webhook_only=True)
        window, since_24h = self._cutoffs(days)

        rows = self._query(
            """SELECT error_message FROM command_events
               WHERE execution_mode = 'webhook' AND success = 0
                 AND timestamp > ? AND timestamp > ?""",
            (window, since_24h),
        )
        breakdown: dict[str, int] = {}
        for row in rows:
            bucket = classify_error(row["error_message"] or "")
            breakdown[bucket] = breakdown.get(bucket, 0) + 1

        return WebhookStats(
            total_calls=usage.total_commands,
            success_rate=usage.success_rate,
            avg_latency_ms=usage.avg_duration_ms,
            errors_last_24h=usage.errors_last_24h,
            top_webhooks=[
                WebhookSummary(
                    name=c.name,
                    count=c.count,
                    success_rate=c.success_rate,
                    avg_latency_ms=c.avg_duration_ms,
                )
                for c in usage.top_commands
            ],
            error_breakdown=breakdown,
        )

    def _command_stats(self, days: int, webhook_only: bool) -> UsageStats:
        window, since_24h = self._cutoffs(days)
        where = "timestamp > ?"
        if webhook_only:
            where += " AND execution_mode = 'webhook'"

        row = self._query(
            f"""SELECT
                   COUNT(*) AS total,
                   COALESCE(AVG(success) * 100.0, 0) AS success_rate,
                   COALESCE(AVG(duration_ms), 0) AS avg_duration,
                   COALESCE(SUM(CASE WHEN timestamp > ? AND success = 0 THEN 1 ELSE 0 END), 0) AS errors_24h
               FROM command_events
               WHERE {where}""",
            (since_24h, window),
        )[0]

        top = self._query(
            f"""SELECT
                   command_name AS name,
                   COUNT(*) AS count,
                   AVG(success) * 100.0 AS success_rate,
                   AVG(duration_ms) AS avg_duration
               FROM command_events
               WHERE {where}
               GROUP BY command_name
               ORDER BY count DESC, command_name ASC
               LIMIT ?""",
            (window, TOP_N),
        )

        return UsageStats(
            total_commands=row["total"],
            success_rate=float(row["success_rate"]),
            avg_duration_ms=int(row["avg_duration"]),
            errors_last_24h=row["errors_24h"],
            top_commands=[
                CommandSummary(
                    name=r["name"],
                    count=r["count"],
                    success_rate=float(r["success_rate"]),
                    avg_duration_ms=int(r["avg_duration"]),
                )
                for r in top
            ],
        )

    def get_http_stats(self, days: int) -> HTTPStats:
        window, since_24h = self._cutoffs(days)

        row = self._query(
            """SELECT
                   COUNT(*) AS total,
                   COALESCE(AVG(CASE WHEN status_code < 400 THEN 1.0 ELSE 0.0 END) * 100.0, 0) AS success_rate,
                   COALESCE(AVG(CASE WHEN auth_method != 'none' THEN auth_success END) * 100.0, 0) AS auth_success_rate,
                   COALESCE(AVG(duration_ms), 0) AS avg_duration,
                   COALESCE(SUM(CASE WHEN timestamp > ? AND status_code >= 400 THEN 1 ELSE 0 END), 0) AS errors_24h,
                   COALESCE(SUM(CASE WHEN timestamp > ? AND auth_method != 'none' AND auth_success = 0
                                     THEN 1 ELSE 0 END), 0) AS auth_errors_24h
               FROM http_events
               WHERE timestamp > ?""",
            (since_24h, since_24h, window),
        )[0]

        top = self._query(
            """SELECT
                   path,
                   COUNT(*) AS count,
                   AVG(CASE WHEN status_code < 400 THEN 1.0 ELSE 0.0 END) * 100.0 AS success_rate,
                   AVG(duration_ms) AS avg_duration
               FROM http_events
               WHERE timestamp > ?
               GROUP BY path
               ORDER BY count DESC, path ASC
               LIMIT ?""",
            (window, TOP_N),
        )

        return HTTPStats(
            total_requests=row["total"],
            success_rate=float(row["success_rate"]),
            auth_success_rate=float(row["auth_success_rate"]),
            avg_duration_ms=int(row["avg_duration"]),
            errors_last_24h=row["errors_24h"],
            auth_errors_last_24h=row["auth_errors_24h"],
            top_paths=[
                PathSummary(
                    path=r["path"],
                    count=r["count"],
                    success_rate=float(r["success_rate"]),
                    avg_duration_ms=int(r["avg_duration"]),
                )
                for r in top
            ],
        )

    def close(self) -> None:
        self._closed = True
