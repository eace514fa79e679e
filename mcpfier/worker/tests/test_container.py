"""
测试容器执行器：参数拼装、无镜像退回本地、运行时缺失
"""

import os
import stat

import pytest

from mcpfier.api.config import Command
from mcpfier.errors import BackendError
from ..context import ExecutionContext
from ..executors import ContainerExecutor, LocalExecutor


def test_build_argv():
    cmd = Command(
        name="py",
        script="python",
        args=["-c", "print(1)"],
        env={"A": "1", "B": "two"},
        container="python:3.12-slim",
    )

    argv = ContainerExecutor().build_argv(cmd)

    assert argv == [
        "docker", "run", "--rm",
        "-e", "A=1",
        "-e", "B=two",
        "python:3.12-slim",
        "python", "-c", "print(1)",
    ]


def test_build_argv_custom_runtime():
    cmd = Command(name="ls", script="ls", container="alpine")
    assert ContainerExecutor(runtime="podman").build_argv(cmd) == ["podman", "run", "--rm", "alpine", "ls"]


def test_without_image_behaves_like_local():
    cmd = Command(name="echo-test", script="echo", args=["hi"])
    ctx = ExecutionContext()

    assert ContainerExecutor().run(ctx, cmd) == LocalExecutor().run(ctx, cmd) == "hi\n"


def test_missing_runtime():
    cmd = Command(name="ls", script="ls", container="alpine")

    with pytest.raises(BackendError, match="container runtime 'no-such-runtime-xyz' not available"):
        ContainerExecutor(runtime="no-such-runtime-xyz").run(ExecutionContext(), cmd)


def test_runtime_receives_argv(tmp_path):
    """用一个打印参数的假运行时验证实际传递的参数"""
    runtime = tmp_path / "fake-docker"
    runtime.write_text('#!/bin/sh\nfor a in "$@"; do echo "$a"; done\n')
    runtime.chmod(runtime.stat().st_mode | stat.S_IXUSR)

    cmd = Command(name="ls", script="ls", args=["-la"], env={"K": "V"}, container="alpine")
    output = ContainerExecutor(runtime=str(runtime)).run(ExecutionContext(), cmd)

    assert output.splitlines() == ["run", "--rm", "-e", "K=V", "alpine", "ls", "-la"]
    assert os.access(runtime, os.X_OK)
