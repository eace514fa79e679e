"""
测试 webhook 执行器：重试次数、退避序列、认证头与错误携带的响应体
"""

import base64
import json
import socket

import pytest

from mcpfier.api.config import Command, RetryPolicy, WebhookAuth, WebhookSpec
from mcpfier.errors import BackendError, ConfigError, ExecutionCancelled
from ..executors.webhook import USER_AGENT, WebhookExecutor, build_headers, prepare_body
from .conftest import RecordingContext


def _hook(url, **kwargs):
    return Command(name="hook", webhook=WebhookSpec(url=url, **kwargs))


def test_always_503_exhausts_with_exponential_backoff(webhook_server, recording_ctx):
    """持续 503：恰好 4 次尝试，退避 1s/2s/4s，最终错误带 503"""
    webhook_server.respond((503, "unavailable"))
    cmd = _hook(webhook_server.url, retry=RetryPolicy(max_retries=3, backoff="exponential", delay="1s"))

    with pytest.raises(BackendError) as exc:
        WebhookExecutor().run(recording_ctx, cmd)

    assert len(webhook_server.requests) == 4
    assert recording_ctx.delays == [1.0, 2.0, 4.0]
    assert exc.value.status_code == 503
    assert "503" in str(exc.value)
    assert "after 4 attempts" in str(exc.value)
    assert exc.value.output == "unavailable"


def test_recovers_after_transient_failures(webhook_server, recording_ctx):
    """失败两次后成功：3 次尝试，返回成功响应体"""
    webhook_server.respond((502, "bad gateway"), (429, "slow down"), (200, "done"))
    cmd = _hook(webhook_server.url, retry=RetryPolicy(backoff="linear", delay="100ms"))

    output = WebhookExecutor().run(recording_ctx, cmd)

    assert output == "done"
    assert len(webhook_server.requests) == 3
    assert recording_ctx.delays == pytest.approx([0.1, 0.2])


def test_default_policy_retries_three_times(webhook_server, recording_ctx):
    webhook_server.respond((504, "timeout"))

    with pytest.raises(BackendError):
        WebhookExecutor().run(recording_ctx, _hook(webhook_server.url))

    assert len(webhook_server.requests) == 4


def test_zero_retries_means_single_attempt(webhook_server, recording_ctx):
    webhook_server.respond((503, "unavailable"))
    cmd = _hook(webhook_server.url, retry=RetryPolicy(max_retries=0))

    with pytest.raises(BackendError):
        WebhookExecutor().run(recording_ctx, cmd)

    assert len(webhook_server.requests) == 1
    assert recording_ctx.delays == []


@pytest.mark.parametrize("timeout", ["-1s", "0s"])
def test_non_positive_timeout_falls_back_to_default(webhook_server, recording_ctx, timeout):
    """非正数超时按未配置处理，使用默认的单次请求超时"""
    webhook_server.respond((200, "ok"))
    cmd = Command(name="hook", timeout=timeout, webhook=WebhookSpec(url=webhook_server.url))

    assert WebhookExecutor().run(recording_ctx, cmd) == "ok"
    assert len(webhook_server.requests) == 1


def test_non_retryable_status_returns_body_in_error(webhook_server, recording_ctx):
    """404 不在可重试集合内：只请求一次，错误输出为响应体"""
    webhook_server.respond((404, "no such thing"))

    with pytest.raises(BackendError) as exc:
        WebhookExecutor().run(recording_ctx, _hook(webhook_server.url))

    assert len(webhook_server.requests) == 1
    assert str(exc.value) == "HTTP 404 Not Found"
    assert exc.value.output == "no such thing"
    assert exc.value.status_code == 404


def test_custom_status_codes_replace_defaults(webhook_server, recording_ctx):
    webhook_server.respond((500, "boom"), (200, "ok"))
    cmd = _hook(webhook_server.url, retry=RetryPolicy(status_codes=[500], backoff="fixed", delay="2s"))

    assert WebhookExecutor().run(recording_ctx, cmd) == "ok"
    assert recording_ctx.delays == [2.0]


def test_body_is_resent_on_every_attempt(webhook_server, recording_ctx):
    webhook_server.respond((503, ""), (503, ""), (201, "created"))
    payload = '{"event": "deploy", "id": 7}'
    cmd = _hook(webhook_server.url, method="post", body=payload, body_format="json")

    assert WebhookExecutor().run(recording_ctx, cmd) == "created"

    assert len(webhook_server.requests) == 3
    for request in webhook_server.requests:
        assert request.method == "POST"
        assert json.loads(request.body) == {"event": "deploy", "id": 7}
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == USER_AGENT


def test_invalid_json_body_fails_before_any_request(webhook_server, recording_ctx):
    cmd = _hook(webhook_server.url, method="POST", body="{not json", body_format="json")

    with pytest.raises(ConfigError, match="invalid JSON"):
        WebhookExecutor().run(recording_ctx, cmd)

    assert webhook_server.requests == []


@pytest.mark.parametrize(
    "auth, header, expected",
    [
        (WebhookAuth(type="bearer", token="tok"), "Authorization", "Bearer tok"),
        (WebhookAuth(type="api_key", key="k1"), "X-API-Key", "k1"),
        (WebhookAuth(type="api_key", key="k2", header="X-Custom-Key"), "X-Custom-Key", "k2"),
        (
            WebhookAuth(type="basic", user="alice", password="s3cret"),
            "Authorization",
            "Basic " + base64.b64encode(b"alice:s3cret").decode("ascii"),
        ),
    ],
)
def test_auth_headers(webhook_server, recording_ctx, auth, header, expected):
    WebhookExecutor().run(recording_ctx, _hook(webhook_server.url, auth=auth))

    assert webhook_server.requests[0].headers[header] == expected


@pytest.mark.parametrize(
    "auth, message",
    [
        (WebhookAuth(type="oauth"), "OAuth"),
        (WebhookAuth(type="kerberos"), "unsupported authentication type"),
        (WebhookAuth(type="bearer"), "bearer token is required"),
    ],
)
def test_auth_config_errors(webhook_server, recording_ctx, auth, message):
    with pytest.raises(ConfigError, match=message):
        WebhookExecutor().run(recording_ctx, _hook(webhook_server.url, auth=auth))

    assert webhook_server.requests == []


def test_connection_errors_are_retried():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    ctx = RecordingContext()
    cmd = _hook(f"http://127.0.0.1:{port}/", retry=RetryPolicy(max_retries=2, backoff="fixed", delay="10ms"))

    with pytest.raises(BackendError) as exc:
        WebhookExecutor(timeout=2.0).run(ctx, cmd)

    assert "request failed after 3 attempts" in str(exc.value)
    assert exc.value.status_code is None
    assert ctx.delays == pytest.approx([0.01, 0.01])


def test_cancel_during_backoff_stops_retrying(webhook_server):
    webhook_server.respond((503, "unavailable"))
    ctx = RecordingContext(cancel_on_wait=True)

    with pytest.raises(ExecutionCancelled) as exc:
        WebhookExecutor().run(ctx, _hook(webhook_server.url))

    assert len(webhook_server.requests) == 1
    assert exc.value.output == "unavailable"


def test_prepare_body_formats():
    assert prepare_body("<a/>", "xml") == b"<a/>"
    assert prepare_body("a=1&b=2", "form") == b"a=1&b=2"
    with pytest.raises(ConfigError, match="unsupported body format: yaml"):
        prepare_body("a: 1", "yaml")


def test_custom_headers_override_content_type():
    spec = WebhookSpec(
        url="http://example.invalid",
        body="<a/>",
        body_format="xml",
        headers={"content-type": "text/xml", "User-Agent": "custom"},
    )

    headers = build_headers(spec)

    assert headers["Content-Type"] == "text/xml"
    assert headers["User-Agent"] == "custom"
