"""GradeFoundry - Requirement Schemas

需求规格相关的 Pydantic 数据模型
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

REQUIREMENT_ID_PATTERN = r"^REQ-\d{3}$"
DEFAULT_REQUIREMENT_WEIGHT = 5


class RequirementType(str, Enum):
    """需求类型"""
    FUNCTIONAL = "functional"
    NONFUNCTIONAL = "nonfunctional"
    IO = "io"
    CONSTRAINT = "constraint"


class ValidationStatus(str, Enum):
    """规格校验状态"""
    VALID = "valid"
    REPAIRED = "repaired"
    PARTIAL = "partial"


class Requirement(BaseModel):
    """原子需求：可独立判定 pass/fail"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=REQUIREMENT_ID_PATTERN, description="REQ-### 格式")
    type: RequirementType
    description: str = Field(..., min_length=10)
    acceptance_criteria: list[str] = Field(..., min_length=1)
    weight: int = Field(default=DEFAULT_REQUIREMENT_WEIGHT, ge=1, le=10)
    testable: bool = Field(default=True)

    @field_validator("weight", mode="before")
    @classmethod
    def _default_weight(cls, v):
        # 生成器可能返回 null 或 0
        return v or DEFAULT_REQUIREMENT_WEIGHT

    @field_validator("acceptance_criteria")
    @classmethod
    def _non_empty_criteria(cls, v: list[str]) -> list[str]:
        cleaned = [c.strip() for c in v if c and c.strip()]
        if not cleaned:
            raise ValueError("At least one acceptance criterion required")
        return cleaned


class Constraint(BaseModel):
    """非功能/环境约束：记录但不单独判定"""
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1)
    description: str = Field(..., min_length=5)


class SpecMetadata(BaseModel):
    """规格元数据"""
    model_config = ConfigDict(frozen=True)

    generating_model: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    validation_status: ValidationStatus = ValidationStatus.VALID
    validation_notes: Optional[str] = None
    attempts: int = Field(default=1, ge=1)

    @field_serializer("generated_at")
    def serialize_dt(self, dt: datetime, _info):
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat().replace("+00:00", "Z")


class RequirementSpec(BaseModel):
    """需求规格：一个 prompt 对应一次创建，之后不可变"""
    model_config = ConfigDict(frozen=True)

    requirements: list[Requirement] = Field(..., min_length=1)
    constraints: list[Constraint] = Field(default_factory=list)
    edge_cases: list[str] = Field(default_factory=list)
    metadata: SpecMetadata

    def requirement_ids(self) -> list[str]:
        return [r.id for r in self.requirements]

    def get(self, requirement_id: str) -> Optional[Requirement]:
        for req in self.requirements:
            if req.id == requirement_id:
                return req
        return None


# ============================================================
# Request / Response Schemas
# ============================================================

class PromptCreate(BaseModel):
    """创建项目 prompt 请求"""
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)


class PromptResponse(BaseModel):
    """项目 prompt 响应"""
    id: UUID
    title: str
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RequirementSpecResponse(BaseModel):
    """需求规格响应"""
    requirement_spec_id: UUID
    prompt_id: Optional[UUID] = None
    spec: RequirementSpec
    attempts: int
    repaired: bool
