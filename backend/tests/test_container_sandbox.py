"""GradeFoundry - Container Sandbox 集成测试

在真实容器中运行生成的测试套件。
需在 Docker/Podman 可用的环境下运行（首次运行会构建运行镜像）。
"""
import subprocess

import pytest

from gradefoundry.execution.container_sandbox import (
    _detect_container_runtime,
    is_container_mode_available,
)
from gradefoundry.execution.runner import SandboxExecutor
from gradefoundry.governance.policy_loader import SandboxPolicy
from gradefoundry.models.run_schemas import TestStatus
from gradefoundry.models.testsuite_schemas import TestFile

from pipeline_fakes import HEALTH_TEST_CONTENT


def _daemon_ready() -> bool:
    if not is_container_mode_available():
        return False
    try:
        proc = subprocess.run(
            [_detect_container_runtime(), "info"], capture_output=True, timeout=15
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return proc.returncode == 0


# 检查容器运行时是否可用
CONTAINER_READY = _daemon_ready()

pytestmark = [
    pytest.mark.docker,
    pytest.mark.skipif(not CONTAINER_READY, reason="需要 Docker 或 Podman 环境"),
]

HEALTH_APP = '''import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

STATUS = {status}


class Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path != "/health":
            self.send_response(404)
            self.end_headers()
            return
        body = json.dumps({{"status": "ok"}}).encode()
        self.send_response(STATUS)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


def create_server(port=8000):
    server = HTTPServer(("127.0.0.1", port), Handler)
    threading.Thread(target=server.serve_forever, daemon=True).start()
    return server
'''

HEALTH_FILE = TestFile(filename="test_health.py", content=HEALTH_TEST_CONTENT, requirement_ids=["REQ-001"])

NETWORK_TEST = '''import socket


# @requirement REQ-001
def test_can_reach_internet():
    socket.create_connection(("1.1.1.1", 80), timeout=2).close()
'''


def _submission(tmp_path, status):
    path = tmp_path / "submission"
    path.mkdir()
    (path / "app.py").write_text(HEALTH_APP.format(status=status), encoding="utf-8")
    return path


@pytest.fixture
def real_executor(tmp_path):
    work_dir = tmp_path / "real-work"
    work_dir.mkdir()
    return SandboxExecutor(policy=SandboxPolicy(timeout_s=120), work_dir=str(work_dir))


class TestContainerSandbox:
    """Container Sandbox 集成测试"""

    @pytest.mark.asyncio
    async def test_passing_health_endpoint(self, tmp_path, real_executor):
        """正确实现的 /health 通过"""
        result = await real_executor.run([HEALTH_FILE], _submission(tmp_path, 200), "python", "pytest")

        assert result.success is True
        assert result.summary.passed == 1
        assert result.test_results[0].requirement_ids == ["REQ-001"]
        assert result.test_results[0].test_name.endswith("test_health_returns_ok")
        assert list((tmp_path / "real-work").iterdir()) == []

    @pytest.mark.asyncio
    async def test_failing_health_endpoint(self, tmp_path, real_executor):
        """返回 500 的实现被判定失败"""
        result = await real_executor.run([HEALTH_FILE], _submission(tmp_path, 500), "python", "pytest")

        assert result.success is False
        assert result.summary.passed == 0
        assert result.test_results[0].status in (TestStatus.FAIL, TestStatus.ERROR)

    @pytest.mark.asyncio
    async def test_network_isolation(self, tmp_path, real_executor):
        """测试禁网 (--network none)：对外连接必须失败"""
        network_file = TestFile(filename="test_network.py", content=NETWORK_TEST, requirement_ids=["REQ-001"])

        result = await real_executor.run([network_file], _submission(tmp_path, 200), "python", "pytest")

        assert result.summary.passed == 0
        assert all(r.status != TestStatus.PASS for r in result.test_results)

    @pytest.mark.asyncio
    async def test_runaway_test_is_stopped(self, tmp_path, real_executor):
        """超时的测试不会计为通过"""
        sleepy = TestFile(
            filename="test_sleepy.py",
            content="import time\n\n\n# @requirement REQ-001\ndef test_forever():\n    time.sleep(600)\n",
            requirement_ids=["REQ-001"],
        )

        result = await real_executor.run(
            [sleepy], _submission(tmp_path, 200), "python", "pytest", timeout=5
        )

        assert result.success is False
        assert result.summary.passed == 0
        assert list((tmp_path / "real-work").iterdir()) == []
