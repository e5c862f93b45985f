"""GradeFoundry - Prompt API Routes

项目 prompt、需求提取与测试套件生成 API 路由
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from gradefoundry.api.deps.pipeline_deps import get_pipeline_service, to_http_error
from gradefoundry.core.errors import GradeFoundryError
from gradefoundry.models.requirement_schemas import (
    PromptCreate,
    PromptResponse,
    RequirementSpecResponse,
)
from gradefoundry.models.testsuite_schemas import (
    TestFileSummary,
    TestSuiteGenerateRequest,
    TestSuiteSummaryResponse,
)
from gradefoundry.services.pipeline_service import PipelineService

router = APIRouter(prefix="/prompts", tags=["prompts"])


@router.post("", response_model=PromptResponse, status_code=201)
def create_prompt(
    req: PromptCreate,
    service: PipelineService = Depends(get_pipeline_service),
):
    """创建项目 prompt"""
    return service.create_prompt(req.title, req.content)


@router.get("/{prompt_id}", response_model=PromptResponse)
def get_prompt(
    prompt_id: UUID,
    service: PipelineService = Depends(get_pipeline_service),
):
    """获取项目 prompt"""
    try:
        return service.get_prompt(prompt_id)
    except GradeFoundryError as e:
        raise to_http_error(e)


@router.post("/{prompt_id}/requirements", response_model=RequirementSpecResponse)
async def extract_requirements(
    prompt_id: UUID,
    service: PipelineService = Depends(get_pipeline_service),
):
    """从 prompt 提取需求规格"""
    try:
        record, result = await service.extract_requirements(prompt_id)
    except GradeFoundryError as e:
        raise to_http_error(e)

    return RequirementSpecResponse(
        requirement_spec_id=record.id,
        prompt_id=record.prompt_id,
        spec=result.spec,
        attempts=result.attempts,
        repaired=result.repaired,
    )


@router.post("/{prompt_id}/testsuite", response_model=TestSuiteSummaryResponse)
async def generate_test_suite(
    prompt_id: UUID,
    req: Optional[TestSuiteGenerateRequest] = None,
    service: PipelineService = Depends(get_pipeline_service),
):
    """为 prompt 的需求规格生成测试套件（默认使用最新规格）"""
    req = req or TestSuiteGenerateRequest()
    if req.submission_path is not None and not req.submission_path.strip():
        raise HTTPException(status_code=400, detail="submission_path must not be empty")

    try:
        record, suite = await service.generate_test_suite(
            prompt_id,
            requirement_spec_id=req.requirement_spec_id,
            language=req.language,
            framework=req.framework,
            submission_path=req.submission_path,
        )
    except GradeFoundryError as e:
        raise to_http_error(e)

    return TestSuiteSummaryResponse(
        test_suite_id=record.id,
        requirement_spec_id=record.requirement_spec_id,
        language=suite.language,
        framework=suite.framework,
        test_files=[
            TestFileSummary(filename=tf.filename, requirement_ids=tf.requirement_ids)
            for tf in suite.test_files
        ],
        metadata=suite.metadata.model_dump(mode="json"),
    )
