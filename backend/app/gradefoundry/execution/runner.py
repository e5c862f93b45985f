"""GradeFoundry - Sandbox Executor

在隔离环境中用生成的测试文件运行提交代码，返回结构化的 SandboxResult。

- 隔离后端不可达 → 抛出 SandboxUnavailable（调用方把 Test Run 置为 failed）
- 沙箱内超时/崩溃 → 降级为 timeout/error 结果，不抛出
- 每次运行独立临时目录，任何退出路径（含取消）都会清理
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional, Protocol

from gradefoundry.core.config import settings
from gradefoundry.core.errors import ExecutionError, ExecutionTimeout, SandboxUnavailable
from gradefoundry.execution.container_sandbox import (
    ContainerBackend,
    ContainerSandboxConfig,
    ContainerSandboxResult,
)
from gradefoundry.execution.junit_parser import parse_junit_xml
from gradefoundry.execution.output_parser import parse_test_output, results_for_files
from gradefoundry.governance.policy_loader import SandboxPolicy, get_policy
from gradefoundry.models.run_schemas import (
    ResourceUsage,
    SandboxMetadata,
    SandboxResult,
    SandboxSummary,
    TestResult,
    TestStatus,
)
from gradefoundry.models.testsuite_schemas import TestFile
from gradefoundry.services.generation.frameworks import JUNIT_FILENAME, get_framework
from gradefoundry.services.generation.hygiene import is_safe_filename

logger = logging.getLogger(__name__)


class SandboxBackend(Protocol):
    """隔离后端的窄接口"""

    async def ensure_environment(self, language: str, framework: str) -> str:
        ...

    async def execute(
        self,
        cmd: list[str],
        *,
        config: ContainerSandboxConfig,
        submission_path: Path,
        tests_path: Path,
        output_path: Path,
        env_vars: Optional[dict[str, str]] = None,
    ) -> ContainerSandboxResult:
        ...


def write_test_files(tests_dir: Path, test_files: list[TestFile]) -> None:
    """写入测试文件；拒绝逃逸出测试目录的文件名"""
    root = tests_dir.resolve()
    for tf in test_files:
        if not is_safe_filename(tf.filename):
            raise ExecutionError(f"Unsafe test filename: {tf.filename!r}")
        target = (root / tf.filename).resolve()
        if root not in target.parents:
            raise ExecutionError(f"Unsafe test filename: {tf.filename!r}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(tf.content, encoding="utf-8")


class SandboxExecutor:
    """沙箱执行器"""

    def __init__(
        self,
        backend: Optional[SandboxBackend] = None,
        policy: Optional[SandboxPolicy] = None,
        work_dir: Optional[str] = None,
    ):
        self.policy = policy or get_policy().sandbox
        self.backend = backend or ContainerBackend(image_prefix=self.policy.image_prefix)
        self.work_dir = work_dir if work_dir is not None else settings.WORK_DIR

    async def run(
        self,
        test_files: list[TestFile],
        submission_path: str | Path,
        language: str,
        framework: str,
        timeout: Optional[int] = None,
        memory_limit: Optional[str] = None,
        cpu_limit: Optional[float] = None,
    ) -> SandboxResult:
        """
        执行测试
        
        Args:
            test_files: 生成的测试文件
            submission_path: 提交代码目录（只读）
            language: 语言
            framework: 测试框架
            timeout: 墙钟超时（秒），默认取策略
            memory_limit: 内存限制（如 "512m"），默认取策略
            cpu_limit: CPU 核数，默认取策略
        
        Raises:
            SandboxUnavailable: 隔离后端不可达
        """
        start_time = time.monotonic()
        submission = Path(submission_path)
        spec = get_framework(framework)
        timeout_s = timeout or self.policy.timeout_s
        image = await self.backend.ensure_environment(language, spec.name)
        config = ContainerSandboxConfig(
            image=image,
            timeout_s=timeout_s,
            memory_limit=(memory_limit or self.policy.memory_limit).lower(),
            cpus=cpu_limit or self.policy.cpus,
            pids_limit=self.policy.pids_limit,
            network_disabled=self.policy.network_disabled,
        )

        run_dir = Path(tempfile.mkdtemp(prefix="gf-run-", dir=self.work_dir))
        logger.info(f"Sandbox run started dir={run_dir} image={image} files={len(test_files)}")
        try:
            tests_dir = run_dir / "tests"
            output_dir = run_dir / "output"
            tests_dir.mkdir()
            output_dir.mkdir()
            output_dir.chmod(0o777)

            outcome: Optional[ContainerSandboxResult] = None
            try:
                if not submission.is_dir():
                    raise ExecutionError(f"Submission path does not exist: {submission}")
                write_test_files(tests_dir, test_files)
                for filename, content in spec.render_config_files(timeout_s).items():
                    (tests_dir / filename).write_text(content, encoding="utf-8")

                outcome = await self.backend.execute(
                    list(spec.command),
                    config=config,
                    submission_path=submission,
                    tests_path=tests_dir,
                    output_path=output_dir,
                    env_vars=dict(spec.env),
                )
                if outcome.killed_by_timeout:
                    raise ExecutionTimeout(f"Test execution exceeded {timeout_s}s and was killed")

            except ExecutionTimeout as e:
                logger.warning(str(e))
                return self._degraded(
                    test_files, TestStatus.TIMEOUT, str(e), start_time,
                    image=image, outcome=outcome, timed_out=True,
                )
            except (SandboxUnavailable, asyncio.CancelledError):
                raise
            except Exception as e:
                logger.exception("Sandbox execution crashed")
                return self._degraded(
                    test_files, TestStatus.ERROR, f"{type(e).__name__}: {e}", start_time,
                    image=image, outcome=None, timed_out=False,
                )

            junit = parse_junit_xml(output_dir / JUNIT_FILENAME)
            results = parse_test_output(
                outcome.stdout,
                outcome.stderr,
                outcome.exit_code,
                spec,
                test_files,
                junit=junit,
            )
            return self._build_result(results, start_time, image=image, outcome=outcome)

        finally:
            shutil.rmtree(run_dir, ignore_errors=True)
            logger.info(f"Sandbox run dir removed: {run_dir}")

    def _degraded(
        self,
        test_files: list[TestFile],
        status: TestStatus,
        message: str,
        start_time: float,
        *,
        image: str,
        outcome: Optional[ContainerSandboxResult],
        timed_out: bool,
    ) -> SandboxResult:
        results = results_for_files(
            test_files,
            status,
            message,
            stdout=outcome.stdout if outcome else "",
            stderr=outcome.stderr if outcome else "",
        )
        return self._build_result(
            results, start_time, image=image, outcome=outcome, timed_out=timed_out, error=message,
        )

    @staticmethod
    def _build_result(
        results: list[TestResult],
        start_time: float,
        *,
        image: str,
        outcome: Optional[ContainerSandboxResult],
        timed_out: bool = False,
        error: Optional[str] = None,
    ) -> SandboxResult:
        exit_code = outcome.exit_code if outcome else -1
        resource_usage = None
        if outcome is not None and outcome.peak_memory_mb is not None:
            resource_usage = ResourceUsage(memory_mb=outcome.peak_memory_mb)

        summary = SandboxSummary.from_results(results)
        success = not timed_out and (
            exit_code == 0 or any(r.status == TestStatus.PASS for r in results)
        )
        return SandboxResult(
            success=success,
            test_results=results,
            summary=summary,
            execution_time_ms=int((time.monotonic() - start_time) * 1000),
            metadata=SandboxMetadata(
                container_id=outcome.container_id if outcome else None,
                image=image,
                image_hash=outcome.image_hash if outcome else None,
                exit_code=exit_code,
                timed_out=timed_out,
                error=error,
                resource_usage=resource_usage,
            ),
        )
