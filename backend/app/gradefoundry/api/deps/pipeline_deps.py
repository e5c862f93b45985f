"""GradeFoundry - 流水线依赖

提供生成模型、沙箱执行器和 PipelineService 的依赖注入（测试可通过 dependency_overrides 替换）
"""
from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from gradefoundry.core.errors import (
    AIServiceError,
    ArtifactNotFound,
    ExtractionFailed,
    GenerationParseError,
    GradeFoundryError,
    SchemaValidationError,
)
from gradefoundry.database.config import get_db
from gradefoundry.execution.runner import SandboxExecutor
from gradefoundry.services.ai_service import AIService, TextGenerator
from gradefoundry.services.pipeline_service import PipelineService


def get_text_generator() -> TextGenerator:
    """默认使用 OpenAI 兼容的 AIService"""
    return AIService()


def get_sandbox_executor() -> SandboxExecutor:
    """默认使用容器后端"""
    return SandboxExecutor()


def get_pipeline_service(
    db: Session = Depends(get_db),
    text_generator: TextGenerator = Depends(get_text_generator),
) -> PipelineService:
    return PipelineService(db, text_generator=text_generator)


def to_http_error(e: GradeFoundryError) -> HTTPException:
    """流水线异常 → HTTP 错误"""
    if isinstance(e, ArtifactNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (ExtractionFailed, AIServiceError, GenerationParseError, SchemaValidationError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
