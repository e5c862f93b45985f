"""GradeFoundry - Sandbox Executor Tests

使用替身后端验证：测试文件写入、结果解析、降级结果以及每条退出路径上的临时目录清理。
"""
import asyncio

import pytest

from gradefoundry.core.errors import ExecutionError, ExecutionTimeout, SandboxUnavailable
from gradefoundry.execution.runner import SandboxExecutor, write_test_files
from gradefoundry.governance.policy_loader import SandboxPolicy
from gradefoundry.models.run_schemas import TestStatus
from gradefoundry.models.testsuite_schemas import TestFile

from pipeline_fakes import (
    HEALTH_FAIL_JUNIT,
    HEALTH_FAIL_STDOUT,
    HEALTH_PASS_STDOUT,
    HEALTH_TEST_CONTENT,
    FakeBackend,
)

HEALTH_FILE = TestFile(filename="test_health.py", content=HEALTH_TEST_CONTENT, requirement_ids=["REQ-001"])


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir(exist_ok=True)
    return path


def _executor(backend, work_dir, **policy):
    return SandboxExecutor(backend=backend, policy=SandboxPolicy(**policy), work_dir=str(work_dir))


def _leftovers(work_dir):
    return list(work_dir.iterdir())


class TestWriteTestFiles:

    def test_writes_nested_files(self, tmp_path):
        files = [
            TestFile(filename="test_a.py", content="a"),
            TestFile(filename="api/test_b.py", content="b"),
        ]

        write_test_files(tmp_path, files)

        assert (tmp_path / "test_a.py").read_text() == "a"
        assert (tmp_path / "api" / "test_b.py").read_text() == "b"

    def test_rejects_escape(self, tmp_path):
        with pytest.raises(ExecutionError):
            write_test_files(tmp_path / "tests", [TestFile(filename="../evil.py", content="x")])


class TestSandboxExecutor:

    @pytest.mark.asyncio
    async def test_passing_run(self, work_dir, submission_dir):
        backend = FakeBackend(stdout=HEALTH_PASS_STDOUT, exit_code=0, peak_memory_mb=42.5)

        result = await _executor(backend, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert result.success is True
        assert result.summary.total == 1
        assert result.summary.passed == 1
        assert result.test_results[0].requirement_ids == ["REQ-001"]
        assert result.metadata.exit_code == 0
        assert result.metadata.timed_out is False
        assert result.metadata.image == "fake-runner-python-pytest:latest"
        assert result.metadata.container_id == "gf-sandbox-fake"
        assert result.metadata.image_hash == "abc123def456"
        assert result.metadata.resource_usage.memory_mb == 42.5
        assert result.execution_time_ms >= 0
        assert backend.environments == [("python", "pytest")]
        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_writes_tests_and_framework_config(self, work_dir, submission_dir):
        backend = FakeBackend(stdout=HEALTH_PASS_STDOUT)

        await _executor(backend, work_dir, timeout_s=17).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert backend.written_files["test_health.py"] == HEALTH_TEST_CONTENT
        assert "timeout = 17" in backend.written_files["pytest.ini"]
        assert backend.cmd[:3] == ["python", "-m", "pytest"]
        assert backend.env_vars["PYTHONPATH"] == "/submission"
        assert backend.config.timeout_s == 17
        assert backend.config.network_disabled is True
        # 运行结束后目录已删除
        assert not backend.tests_path.exists()

    @pytest.mark.asyncio
    async def test_limits_override_policy(self, work_dir, submission_dir):
        backend = FakeBackend(stdout=HEALTH_PASS_STDOUT)

        await _executor(backend, work_dir).run(
            [HEALTH_FILE], submission_dir, "python", "pytest",
            timeout=5, memory_limit="256M", cpu_limit=0.5,
        )

        assert backend.config.timeout_s == 5
        assert backend.config.memory_limit == "256m"
        assert backend.config.cpus == 0.5

    @pytest.mark.asyncio
    async def test_failing_run_uses_junit(self, work_dir, submission_dir):
        backend = FakeBackend(stdout=HEALTH_FAIL_STDOUT, exit_code=1, junit_xml=HEALTH_FAIL_JUNIT)

        result = await _executor(backend, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert result.success is False
        assert result.summary.failed == 1
        failed = result.test_results[0]
        assert failed.status == TestStatus.FAIL
        assert failed.duration_ms == 42
        assert failed.error_message == "assert 500 == 200"
        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_partial_pass_counts_as_success(self, work_dir, submission_dir):
        stdout = (
            "test_health.py::test_health_returns_ok PASSED\n"
            "test_health.py::test_health_rejects_post FAILED\n"
        )
        backend = FakeBackend(stdout=stdout, exit_code=1)

        result = await _executor(backend, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert result.success is True
        assert result.summary.passed == 1
        assert result.summary.failed == 1

    @pytest.mark.asyncio
    async def test_timeout_produces_timeout_results(self, work_dir, submission_dir):
        backend = FakeBackend(exit_code=-9, killed_by_timeout=True, stderr="Container killed by timeout (3s)")

        result = await _executor(backend, work_dir, timeout_s=3).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert result.success is False
        assert result.metadata.timed_out is True
        assert result.summary.timeouts == 1
        assert result.test_results[0].status == TestStatus.TIMEOUT
        assert result.test_results[0].requirement_ids == ["REQ-001"]
        assert "3s" in result.metadata.error
        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_backend_raising_timeout_produces_timeout_results(self, work_dir, submission_dir):
        """后端直接抛出 ExecutionTimeout（而非返回 killed_by_timeout）"""
        backend = FakeBackend(raise_on_execute=ExecutionTimeout("runtime gave up after 3s"))

        result = await _executor(backend, work_dir, timeout_s=3).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert result.success is False
        assert result.metadata.timed_out is True
        assert result.metadata.exit_code == -1
        assert result.test_results[0].status == TestStatus.TIMEOUT
        assert result.test_results[0].requirement_ids == ["REQ-001"]
        assert "3s" in result.metadata.error
        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_backend_crash_produces_error_results(self, work_dir, submission_dir):
        backend = FakeBackend(raise_on_execute=RuntimeError("container exploded"))

        result = await _executor(backend, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert result.success is False
        assert result.summary.errors == 1
        assert result.test_results[0].status == TestStatus.ERROR
        assert "container exploded" in result.test_results[0].error_message
        assert result.metadata.exit_code == -1
        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_missing_submission_produces_error_results(self, work_dir, tmp_path):
        backend = FakeBackend(stdout=HEALTH_PASS_STDOUT)

        result = await _executor(backend, work_dir).run(
            [HEALTH_FILE], tmp_path / "does-not-exist", "python", "pytest"
        )

        assert result.summary.errors == 1
        assert "does not exist" in result.metadata.error
        assert backend.cmd is None
        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_unavailable_backend_raises(self, work_dir, submission_dir):
        backend = FakeBackend(unavailable=True)

        with pytest.raises(SandboxUnavailable):
            await _executor(backend, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_unavailable_during_execute_propagates(self, work_dir, submission_dir):
        backend = FakeBackend(raise_on_execute=SandboxUnavailable("daemon went away"))

        with pytest.raises(SandboxUnavailable):
            await _executor(backend, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest")

        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_cancellation_cleans_up(self, work_dir, submission_dir):
        backend = FakeBackend(delay=30)
        task = asyncio.create_task(
            _executor(backend, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest")
        )
        while backend.tests_path is None:
            await asyncio.sleep(0.01)
        assert _leftovers(work_dir) != []

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_runs_do_not_share_directories(self, work_dir, submission_dir):
        first = FakeBackend(stdout=HEALTH_PASS_STDOUT)
        second = FakeBackend(stdout=HEALTH_PASS_STDOUT)

        await asyncio.gather(
            _executor(first, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest"),
            _executor(second, work_dir).run([HEALTH_FILE], submission_dir, "python", "pytest"),
        )

        assert first.tests_path != second.tests_path
        assert _leftovers(work_dir) == []

    @pytest.mark.asyncio
    async def test_vitest_config_written(self, work_dir, submission_dir):
        ts_file = TestFile(
            filename="health.test.ts",
            content="import { it, expect } from 'vitest';\n// @requirement REQ-001\nit('works', () => expect(1).toBe(1));\n",
            requirement_ids=["REQ-001"],
        )
        backend = FakeBackend(stdout=" ✓ health.test.ts > works 1ms\n")

        result = await _executor(backend, work_dir, timeout_s=12).run([ts_file], submission_dir, "typescript", "vitest")

        assert "testTimeout: 12000" in backend.written_files["vitest.config.mjs"]
        assert result.summary.passed == 1
        assert result.test_results[0].test_name == "health.test.ts > works"
