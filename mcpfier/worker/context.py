"""执行上下文：取消信号 + 截止时间。

后端在子进程 I/O、网络请求和重试退避上阻塞，调用方通过同一个
ExecutionContext 随时取消：取消后子进程被杀掉、HTTP 会话被关闭、
退避等待立即返回。
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from typing import Callable

from mcpfier.errors import ExecutionCancelled, ExecutionTimeout

logger = logging.getLogger(__name__)


class ExecutionContext:
    """一次工具调用的取消范围。

    Attributes:
        session_id: 会话 ID，写入分析事件
        auth: 调用方的 AuthContext（STDIO 下为 None）
    """

    def __init__(
        self,
        timeout: float | None = None,
        session_id: str | None = None,
        auth=None,
    ):
        self.session_id = session_id or secrets.token_hex(8)
        self.auth = auth
        self._cancelled = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._parent: ExecutionContext | None = None

    # ---------- 状态 ----------

    @property
    def cancelled(self) -> bool:
        if self._parent is not None and self._parent.cancelled:
            return True
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """距离截止时间还剩多少秒；没有截止时间返回 None。"""
        deadlines = []
        ctx: ExecutionContext | None = self
        while ctx is not None:
            if ctx._deadline is not None:
                deadlines.append(ctx._deadline)
            ctx = ctx._parent
        if not deadlines:
            return None
        return min(deadlines) - time.monotonic()

    # ---------- 控制 ----------

    def cancel(self) -> None:
        """取消执行并触发所有已注册的回调。"""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks = list(self._callbacks)
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception("Cancel callback failed")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """注册取消回调，返回用于注销的函数。已取消时立即执行。"""
        if self._parent is not None:
            unregister_parent = self._parent.on_cancel(callback)
        else:
            unregister_parent = None

        with self._lock:
            already = self._cancelled.is_set()
            if not already:
                self._callbacks.append(callback)
        if already:
            callback()

        def unregister() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
            if unregister_parent is not None:
                unregister_parent()

        return unregister

    def with_timeout(self, timeout: float | None) -> "ExecutionContext":
        """派生一个截止时间更紧的子上下文，父上下文的取消会传递下来。"""
        if timeout is None:
            return self
        child = ExecutionContext(timeout=timeout, session_id=self.session_id, auth=self.auth)
        child._parent = self
        return child

    def wait(self, seconds: float) -> bool:
        """可取消的定时等待。

        Returns:
            True 表示等待期间被取消或到达截止时间，False 表示正常等满
        """
        end = time.monotonic() + max(seconds, 0.0)
        while True:
            if self.done:
                return True
            now = time.monotonic()
            if now >= end:
                return False
            step = end - now
            remaining = self.remaining()
            if remaining is not None:
                step = min(step, max(remaining, 0.0))
            # 父上下文的取消不会唤醒本上下文的 Event，分片等待
            if self._parent is not None:
                step = min(step, 0.05)
            self._cancelled.wait(step)

    def raise_if_done(self, output: str = "") -> None:
        """已取消或超时时抛出对应异常。"""
        if self.cancelled:
            raise ExecutionCancelled("execution cancelled", output=output)
        if self.expired:
            raise ExecutionTimeout("execution timed out", output=output)
