"""webhook 重试状态机。

按尝试序号（从 0 开始）显式推进：
- 重试判定：传输层异常，或状态码落在可重试集合内
- 退避：exponential = base * 2^attempt，linear = base * (attempt+1)，fixed = base
- 最后一次尝试之后不再等待
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from mcpfier.api.config import RetryPolicy
from mcpfier.utils.durations import try_parse_duration

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_RETRY_STATUS_CODES = frozenset({429, 502, 503, 504})


class BackoffKind(str, Enum):
    """退避方式"""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"

    @classmethod
    def parse(cls, value: str | None) -> "BackoffKind":
        try:
            return cls((value or "").lower())
        except ValueError:
            # 未知写法按指数退避处理
            return cls.EXPONENTIAL


@dataclass(frozen=True)
class RetrySchedule:
    """重试计划（由 RetryPolicy 归一化而来）。"""
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay: float = DEFAULT_BASE_DELAY
    status_codes: frozenset[int] = DEFAULT_RETRY_STATUS_CODES

    @classmethod
    def from_policy(cls, policy: RetryPolicy | None) -> "RetrySchedule":
        if policy is None:
            return cls()
        delay = try_parse_duration(policy.delay)
        return cls(
            max_retries=policy.max_retries,
            backoff=BackoffKind.parse(policy.backoff),
            base_delay=delay if delay is not None and delay >= 0 else DEFAULT_BASE_DELAY,
            status_codes=frozenset(policy.status_codes) or DEFAULT_RETRY_STATUS_CODES,
        )

    @property
    def attempts(self) -> int:
        """总尝试次数"""
        return self.max_retries + 1

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.status_codes

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次尝试（从 0 开始）失败后的等待秒数。"""
        if self.backoff is BackoffKind.LINEAR:
            return self.base_delay * (attempt + 1)
        if self.backoff is BackoffKind.FIXED:
            return self.base_delay
        return self.base_delay * (2 ** attempt)


@dataclass
class RetryState:
    """一次 webhook 调用的重试进度。"""
    schedule: RetrySchedule
    attempt: int = 0
    last_error: str = ""
    last_status: int | None = None
    last_body: str | None = None
    delays: list[float] = field(default_factory=list)

    @property
    def attempts_made(self) -> int:
        return self.attempt + 1

    def record_error(self, error: Exception) -> None:
        self.last_error = str(error)
        self.last_status = None

    def record_status(self, status_code: int, reason: str, body: str) -> None:
        self.last_error = f"HTTP {status_code} {reason}".rstrip()
        self.last_status = status_code
        self.last_body = body

    def next_delay(self) -> float | None:
        """当前尝试失败后调用。

        Returns:
            还有下一次尝试时返回等待秒数（并推进 attempt），否则 None
        """
        if self.attempt >= self.schedule.max_retries:
            return None
        delay = self.schedule.delay_for(self.attempt)
        self.delays.append(delay)
        self.attempt += 1
        return delay
