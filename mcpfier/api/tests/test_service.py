"""
测试工具调用服务：权限检查、结果整形、异步入口与 MCP 工具注册
"""

from types import SimpleNamespace

import anyio
import pytest
from mcp.server.fastmcp.exceptions import ToolError

from mcpfier.worker.dispatcher import Dispatcher
from ..analytics import NoOpAnalytics
from ..auth import APIKeyTable, AuthGate
from ..config import APIKey, AppConfig, Command
from ..server import Services, _make_handler, create_mcp_server
from ..tools.registry import CommandRegistry
from ..tools.service import ToolService

COMMANDS = [
    Command(name="echo-test", script="echo", args=["hi"], description="Say hi"),
    Command(name="list-files", script="ls"),
    Command(name="broken", script="sh", args=["-c", "echo partial; exit 3"]),
]


class RecordingAnalytics(NoOpAnalytics):
    def __init__(self):
        self.commands = []

    def record_command(self, event):
        self.commands.append(event)


@pytest.fixture
def analytics():
    return RecordingAnalytics()


@pytest.fixture
def gate():
    keys = [APIKey(key="k-echo", name="echo-only", permissions=["echo-test"])]
    return AuthGate(True, APIKeyTable(keys))


def _service(analytics, gate=None):
    return ToolService(CommandRegistry(COMMANDS), Dispatcher(analytics=analytics), gate)


def test_successful_call(analytics):
    result = _service(analytics).call("echo-test")
    assert result.text == "hi\n"
    assert result.is_error is False
    assert len(analytics.commands) == 1


def test_unknown_command(analytics):
    result = _service(analytics).call("nope")
    assert result.is_error
    assert result.text == "command 'nope' not found"
    assert analytics.commands == []


def test_backend_failure_includes_output(analytics):
    result = _service(analytics).call("broken")
    assert result.is_error
    assert result.text == "Command execution failed: exit status 3\nOutput: partial\n"
    assert analytics.commands[0].success is False


def test_permission_denied_does_not_execute(analytics, gate):
    auth = gate.authenticate({"x-api-key": "k-echo"})
    service = _service(analytics, gate)

    assert service.call("echo-test", auth=auth).text == "hi\n"

    denied = service.call("list-files", auth=auth)
    assert denied.is_error
    assert denied.text == "Permission denied for tool 'list-files'"
    assert [e.command_name for e in analytics.commands] == ["echo-test"]


def test_enabled_gate_requires_auth(analytics, gate):
    result = _service(analytics, gate).call("echo-test")
    assert result.is_error
    assert result.text == "Authentication required"


def test_acall_runs_in_worker_thread(analytics):
    result = anyio.run(_service(analytics).acall, "echo-test")
    assert result.text == "hi\n"


class _NoRequestContext:
    @property
    def request_context(self):
        raise ValueError("Context is not available outside of a request")


def _http_ctx(auth):
    request = SimpleNamespace(state=SimpleNamespace(auth_context=auth))
    return SimpleNamespace(request_context=SimpleNamespace(request=request))


def test_handler_returns_output(analytics):
    handler = _make_handler(_service(analytics), "echo-test")
    assert anyio.run(handler, _NoRequestContext()) == "hi\n"


def test_handler_raises_tool_error(analytics):
    handler = _make_handler(_service(analytics), "broken")
    with pytest.raises(ToolError, match="exit status 3"):
        anyio.run(handler, _NoRequestContext())


def test_handler_uses_auth_from_request_state(analytics, gate):
    auth = gate.authenticate({"x-api-key": "k-echo"})
    service = _service(analytics, gate)

    assert anyio.run(_make_handler(service, "echo-test"), _http_ctx(auth)) == "hi\n"
    with pytest.raises(ToolError, match="Permission denied"):
        anyio.run(_make_handler(service, "list-files"), _http_ctx(auth))


def test_mcp_server_registers_every_command():
    services = Services.from_config(AppConfig(commands=COMMANDS), analytics=NoOpAnalytics())
    mcp = create_mcp_server(services)

    tools = anyio.run(mcp.list_tools)

    assert sorted(t.name for t in tools) == ["broken", "echo-test", "list-files"]
    descriptions = {t.name: t.description for t in tools}
    assert descriptions["echo-test"] == "Say hi"
    assert descriptions["list-files"] == "Execute list-files with configured arguments"
