"""GradeFoundry - Database Models

SQLAlchemy 数据模型定义。

RequirementSpec / TestSuite 插入后不可变；TestRun 以 revision 追加写入，
当前状态为 revision 最大的一行，任何行都不会被更新或删除。
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID

from gradefoundry.database.config import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectPrompt(Base):
    """项目 prompt（上游输入）"""
    __tablename__ = "prompts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RequirementSpecRecord(Base):
    """需求规格"""
    __tablename__ = "requirement_specs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    prompt_id = Column(UUID(as_uuid=True), ForeignKey("prompts.id"), nullable=True, index=True)
    requirements = Column(JSON, nullable=False, default=list)
    constraints = Column(JSON, nullable=False, default=list)
    edge_cases = Column(JSON, nullable=False, default=list)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)


class TestSuiteRecord(Base):
    """生成的测试套件（重新生成插入新行）"""
    __test__ = False
    __tablename__ = "test_suites"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    requirement_spec_id = Column(
        UUID(as_uuid=True), ForeignKey("requirement_specs.id"), nullable=True, index=True
    )
    language = Column(String(50), nullable=False)
    framework = Column(String(50), nullable=False)
    test_files = Column(JSON, nullable=False, default=list)
    runner_config = Column(JSON, nullable=False, default=dict)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TestRunRecord(Base):
    """Test Run 的一个 revision（追加写）"""
    __test__ = False
    __tablename__ = "test_runs"
    __table_args__ = (UniqueConstraint("run_id", "revision", name="uq_test_runs_run_revision"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    revision = Column(Integer, nullable=False)
    submission_id = Column(String(255), nullable=False, index=True)
    test_suite_id = Column(UUID(as_uuid=True), ForeignKey("test_suites.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    results = Column(JSON, nullable=True)
    requirement_scores = Column(JSON, nullable=True)
    overall_score = Column(JSON, nullable=True)
    execution_metadata = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<TestRunRecord run={self.run_id} rev={self.revision} status={self.status}>"
