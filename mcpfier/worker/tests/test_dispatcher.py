"""
测试执行调度：后端选择、每次执行恰好一条分析事件
"""

import pytest

from mcpfier.api.analytics import NoOpAnalytics
from mcpfier.api.config import Command, WebhookSpec
from mcpfier.api.tools.registry import CommandRegistry
from mcpfier.errors import BackendError, CommandNotFound
from ..context import ExecutionContext
from ..dispatcher import CONTAINER, LOCAL, WEBHOOK, Dispatcher, select_backend
from ..executors import Executor


class RecordingAnalytics(NoOpAnalytics):
    def __init__(self):
        self.commands = []

    def record_command(self, event):
        self.commands.append(event)


class StubExecutor(Executor):
    def __init__(self, kind, output="", error=None):
        self.kind = kind
        self.output = output
        self.error = error
        self.calls = []

    def run(self, ctx, command):
        self.calls.append(command.name)
        if self.error is not None:
            raise self.error
        return self.output


LOCAL_CMD = Command(name="echo-test", script="echo", args=["hi"])
CONTAINER_CMD = Command(name="in-box", script="ls", container="alpine")
WEBHOOK_CMD = Command(name="hook", webhook=WebhookSpec(url="http://example.invalid"))


@pytest.fixture
def stubs():
    return {
        LOCAL: StubExecutor(LOCAL, output="local-out"),
        CONTAINER: StubExecutor(CONTAINER, output="container-out"),
        WEBHOOK: StubExecutor(WEBHOOK, output="webhook-out"),
    }


@pytest.fixture
def analytics():
    return RecordingAnalytics()


@pytest.fixture
def dispatcher(stubs, analytics):
    return Dispatcher(analytics=analytics, local=stubs[LOCAL], container=stubs[CONTAINER], webhook=stubs[WEBHOOK])


def test_select_backend():
    assert select_backend(LOCAL_CMD) == LOCAL
    assert select_backend(CONTAINER_CMD) == CONTAINER
    assert select_backend(WEBHOOK_CMD) == WEBHOOK


@pytest.mark.parametrize(
    "command, kind",
    [(LOCAL_CMD, LOCAL), (CONTAINER_CMD, CONTAINER), (WEBHOOK_CMD, WEBHOOK)],
)
def test_routes_to_selected_backend(dispatcher, stubs, command, kind):
    assert dispatcher.execute(ExecutionContext(), command) == f"{kind}-out"
    assert stubs[kind].calls == [command.name]
    assert all(not s.calls for k, s in stubs.items() if k != kind)


def test_success_records_one_event(dispatcher, analytics):
    ctx = ExecutionContext(session_id="sess-1")
    dispatcher.execute(ctx, LOCAL_CMD)

    assert len(analytics.commands) == 1
    event = analytics.commands[0]
    assert event.command_name == "echo-test"
    assert event.success is True
    assert event.execution_mode == LOCAL
    assert event.session_id == "sess-1"
    assert event.output_size == len("local-out")
    assert event.error == ""
    assert event.duration >= 0


def test_failure_records_one_event_and_reraises(dispatcher, stubs, analytics):
    stubs[WEBHOOK].error = BackendError("HTTP 500 Internal Server Error", output="oops")

    with pytest.raises(BackendError) as exc:
        dispatcher.execute(ExecutionContext(), WEBHOOK_CMD)

    assert exc.value.output == "oops"
    assert len(analytics.commands) == 1
    event = analytics.commands[0]
    assert event.success is False
    assert event.execution_mode == WEBHOOK
    assert event.error == "HTTP 500 Internal Server Error"
    assert event.output_size == len("oops")


def test_output_size_counts_bytes(dispatcher, stubs, analytics):
    stubs[LOCAL].output = "héllo"
    dispatcher.execute(ExecutionContext(), LOCAL_CMD)
    assert analytics.commands[0].output_size == 6


def test_unknown_command_records_nothing(dispatcher, analytics):
    registry = CommandRegistry([LOCAL_CMD])

    with pytest.raises(CommandNotFound, match="command 'nope' not found"):
        dispatcher.execute_by_name(ExecutionContext(), registry, "nope")

    assert analytics.commands == []


def test_execute_by_name(dispatcher, analytics):
    registry = CommandRegistry([LOCAL_CMD, WEBHOOK_CMD])
    assert dispatcher.execute_by_name(ExecutionContext(), registry, "hook") == "webhook-out"
    assert [e.command_name for e in analytics.commands] == ["hook"]


def test_real_local_backend_end_to_end(analytics):
    output = Dispatcher(analytics=analytics).execute(ExecutionContext(), LOCAL_CMD)
    assert output == "hi\n"
    assert analytics.commands[0].output_size == 3
