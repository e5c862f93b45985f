"""GradeFoundry - Test Run Schemas

沙箱执行结果、评分结果与 Test Run 聚合根的 Pydantic 数据模型
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from gradefoundry.core.errors import InvalidRunTransition
from gradefoundry.models.run_status import TestRunStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


# ============================================================
# Sandbox Result
# ============================================================

class TestStatus(str, Enum):
    """单个测试结果状态"""
    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    TIMEOUT = "timeout"


class TestResult(BaseModel):
    """单个测试的执行结果"""
    __test__ = False
    model_config = ConfigDict(frozen=True)

    test_name: str
    requirement_ids: list[str] = Field(default_factory=list)
    status: TestStatus
    duration_ms: int = Field(default=0, ge=0)
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None


class SandboxSummary(BaseModel):
    """执行统计摘要"""
    model_config = ConfigDict(frozen=True)

    total: int = 0
    passed: int = 0
    failed: int = 0
    errors: int = 0
    timeouts: int = 0

    @classmethod
    def from_results(cls, results: list[TestResult]) -> "SandboxSummary":
        return cls(
            total=len(results),
            passed=sum(1 for r in results if r.status == TestStatus.PASS),
            failed=sum(1 for r in results if r.status == TestStatus.FAIL),
            errors=sum(1 for r in results if r.status == TestStatus.ERROR),
            timeouts=sum(1 for r in results if r.status == TestStatus.TIMEOUT),
        )


class ResourceUsage(BaseModel):
    """资源使用采样"""
    model_config = ConfigDict(frozen=True)

    memory_mb: Optional[float] = None
    cpu_percent: Optional[float] = None


class SandboxMetadata(BaseModel):
    """执行元数据"""
    model_config = ConfigDict(frozen=True)

    container_id: Optional[str] = None
    image: Optional[str] = None
    image_hash: Optional[str] = None
    exit_code: int
    timed_out: bool = False
    error: Optional[str] = None
    resource_usage: Optional[ResourceUsage] = None


class SandboxResult(BaseModel):
    """一次沙箱执行的完整结果（每次运行产生，不复用）"""
    model_config = ConfigDict(frozen=True)

    success: bool
    test_results: list[TestResult] = Field(default_factory=list)
    summary: SandboxSummary
    execution_time_ms: int = Field(default=0, ge=0)
    metadata: SandboxMetadata


# ============================================================
# Scores
# ============================================================

class RequirementStatus(str, Enum):
    """需求判定状态"""
    PASS = "pass"
    FAIL = "fail"
    PARTIAL = "partial"
    UNTESTED = "untested"


class RequirementScore(BaseModel):
    """单个需求的得分"""
    model_config = ConfigDict(frozen=True)

    requirement_id: str
    status: RequirementStatus
    passing_tests: int = Field(ge=0)
    total_tests: int = Field(ge=0)
    failing_tests: list[TestResult] = Field(default_factory=list)
    weight: int = Field(ge=1, le=10)


class TypeBreakdown(BaseModel):
    """按需求类型统计"""
    passed: int = 0
    total: int = 0


class OverallScore(BaseModel):
    """整体得分"""
    model_config = ConfigDict(frozen=True)

    requirements_met: int
    total_requirements: int
    percentage: float = Field(ge=0, le=100)
    weighted_score: float = Field(ge=0, le=100)
    confidence_score: Optional[float] = Field(default=None, ge=0, le=100)
    breakdown: dict[str, TypeBreakdown]


class FailureAnalysis(BaseModel):
    """失败分析与建议"""
    requirement_id: str
    requirement_description: str
    failing_tests: list[TestResult]
    suggestions: list[str]


# ============================================================
# Test Run（聚合根，追加写）
# ============================================================

class ExecutionMetadata(BaseModel):
    """Test Run 执行元数据"""
    model_config = ConfigDict(frozen=True)

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None

    @field_serializer("started_at", "completed_at")
    def serialize_dt(self, dt: datetime | None, _info):
        return _iso(dt)


class TestRun(BaseModel):
    """Test Run 值对象

    每次状态迁移返回一个新的实例（revision + 1），旧实例保持不变；
    持久化层按 revision 追加写入，从不原地修改。
    """
    __test__ = False
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    revision: int = Field(default=1, ge=1)
    submission_id: str
    test_suite_id: UUID
    status: TestRunStatus = TestRunStatus.PENDING
    results: Optional[SandboxResult] = None
    requirement_scores: Optional[list[RequirementScore]] = None
    overall_score: Optional[OverallScore] = None
    execution_metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)

    def _transition(self, target: TestRunStatus, **updates) -> "TestRun":
        if not self.status.can_transition_to(target):
            raise InvalidRunTransition(self.status.value, target.value)
        return self.model_copy(
            update={"status": target, "revision": self.revision + 1, **updates}
        )

    def start(self) -> "TestRun":
        """pending → running"""
        return self._transition(
            TestRunStatus.RUNNING,
            execution_metadata=ExecutionMetadata(started_at=_utcnow()),
        )

    def complete(
        self,
        results: SandboxResult,
        requirement_scores: list[RequirementScore],
        overall_score: OverallScore,
    ) -> "TestRun":
        """running → completed（唯一写入结果的迁移）"""
        started_at = self.execution_metadata.started_at
        return self._transition(
            TestRunStatus.COMPLETED,
            results=results,
            requirement_scores=requirement_scores,
            overall_score=overall_score,
            execution_metadata=ExecutionMetadata(
                started_at=started_at,
                completed_at=_utcnow(),
                duration_ms=results.execution_time_ms,
            ),
        )

    def fail(self, error: str) -> "TestRun":
        """pending/running → failed"""
        started_at = self.execution_metadata.started_at
        completed_at = _utcnow()
        duration_ms = None
        if started_at is not None:
            duration_ms = max(0, int((completed_at - started_at).total_seconds() * 1000))
        return self._transition(
            TestRunStatus.FAILED,
            execution_metadata=ExecutionMetadata(
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=duration_ms,
                error=error,
            ),
        )


# ============================================================
# Request / Response Schemas
# ============================================================

class RunTestsRequest(BaseModel):
    """启动测试执行请求"""
    test_suite_id: UUID
    submission_path: str = Field(..., min_length=1)


class RunTestsResponse(BaseModel):
    """启动测试执行响应"""
    test_run_id: UUID
    status: TestRunStatus
    message: str = "Test execution started"
