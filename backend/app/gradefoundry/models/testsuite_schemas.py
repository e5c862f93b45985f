"""GradeFoundry - Test Suite Schemas

生成测试套件相关的 Pydantic 数据模型
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class HygieneStatus(str, Enum):
    """测试代码卫生检查状态"""
    VALID = "valid"
    REPAIRED = "repaired"
    FAILED = "failed"


class TestFile(BaseModel):
    """生成的单个测试文件"""
    __test__ = False  # 防止被 pytest 收集
    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    requirement_ids: list[str] = Field(default_factory=list)


class RunnerConfig(BaseModel):
    """测试运行配置"""
    model_config = ConfigDict(frozen=True, extra="allow")

    framework: str
    dependencies: list[str] = Field(default_factory=list)
    timeout: int = Field(default=30, ge=1, description="秒")


class SuiteMetadata(BaseModel):
    """测试套件元数据"""
    model_config = ConfigDict(frozen=True)

    generating_model: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    hygiene_status: HygieneStatus
    hygiene_errors: Optional[list[str]] = None

    @field_serializer("generated_at")
    def serialize_dt(self, dt: datetime, _info):
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat().replace("+00:00", "Z")


class GeneratedTestSuite(BaseModel):
    """生成的测试套件：持久化后不可变，重新生成会产生新实例"""
    __test__ = False
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    requirement_spec_id: Optional[UUID] = None
    language: str = Field(..., min_length=1)
    framework: str = Field(..., min_length=1)
    test_files: list[TestFile] = Field(..., min_length=1)
    runner_config: RunnerConfig
    metadata: SuiteMetadata


# ============================================================
# Request / Response Schemas
# ============================================================

class TestSuiteGenerateRequest(BaseModel):
    """生成测试套件请求"""
    __test__ = False

    requirement_spec_id: Optional[UUID] = None
    language: Optional[str] = None
    framework: Optional[str] = None
    submission_path: Optional[str] = None


class TestFileSummary(BaseModel):
    __test__ = False

    filename: str
    requirement_ids: list[str]


class TestSuiteSummaryResponse(BaseModel):
    """测试套件摘要响应（不含源码）"""
    __test__ = False

    test_suite_id: UUID
    requirement_spec_id: Optional[UUID] = None
    language: str
    framework: str
    test_files: list[TestFileSummary]
    metadata: dict[str, Any]
