"""
测试夹具：本地脚本化 HTTP 服务、记录退避的执行上下文
"""

import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from mcpfier.worker.context import ExecutionContext


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: object
    body: bytes


class ScriptedServer:
    """按顺序返回预设响应；响应用完后一直重复最后一个。"""

    def __init__(self, httpd: ThreadingHTTPServer):
        self.httpd = httpd
        self.lock = threading.Lock()
        self.responses: list[tuple[int, str]] = [(200, "ok")]
        self.requests: list[RecordedRequest] = []

    @property
    def url(self) -> str:
        host, port = self.httpd.server_address[:2]
        return f"http://{host}:{port}/hook"

    def respond(self, *responses: tuple[int, str]) -> None:
        self.responses = list(responses)

    def next_response(self, request: RecordedRequest) -> tuple[int, str]:
        with self.lock:
            self.requests.append(request)
            index = min(len(self.requests), len(self.responses)) - 1
            return self.responses[index]


class _Handler(BaseHTTPRequestHandler):

    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        status, payload = self.server.scripted.next_response(
            RecordedRequest(self.command, self.path, self.headers, body)
        )
        data = payload.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = _handle

    def log_message(self, format, *args):
        pass


@pytest.fixture
def webhook_server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    scripted = ScriptedServer(httpd)
    httpd.scripted = scripted
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield scripted
    httpd.shutdown()
    httpd.server_close()


class RecordingContext(ExecutionContext):
    """wait() 只记录退避时长，不真正睡眠。

    cancel_on_wait=True 时在第一次退避等待中触发取消。
    """

    def __init__(self, *args, cancel_on_wait: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.delays: list[float] = []
        self.cancel_on_wait = cancel_on_wait

    def wait(self, seconds: float) -> bool:
        self.delays.append(seconds)
        if self.cancel_on_wait:
            self.cancel()
        return self.done


@pytest.fixture
def recording_ctx():
    return RecordingContext()
