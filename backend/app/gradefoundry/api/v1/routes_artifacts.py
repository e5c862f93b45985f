"""GradeFoundry - Artifact API Routes

按 ID 读取已持久化的需求规格与测试套件
"""
from uuid import UUID

from fastapi import APIRouter, Depends

from gradefoundry.api.deps.pipeline_deps import get_pipeline_service, to_http_error
from gradefoundry.core.errors import GradeFoundryError
from gradefoundry.models.requirement_schemas import RequirementSpecResponse
from gradefoundry.models.testsuite_schemas import GeneratedTestSuite
from gradefoundry.services.pipeline_service import PipelineService

router = APIRouter(tags=["artifacts"])


@router.get("/requirement-specs/{spec_id}", response_model=RequirementSpecResponse)
def get_requirement_spec(
    spec_id: UUID,
    service: PipelineService = Depends(get_pipeline_service),
):
    """获取需求规格"""
    try:
        record, spec = service.get_requirement_spec(spec_id)
    except GradeFoundryError as e:
        raise to_http_error(e)

    return RequirementSpecResponse(
        requirement_spec_id=record.id,
        prompt_id=record.prompt_id,
        spec=spec,
        attempts=record.attempts,
        repaired=record.attempts > 1,
    )


@router.get("/test-suites/{suite_id}", response_model=GeneratedTestSuite)
def get_test_suite(
    suite_id: UUID,
    service: PipelineService = Depends(get_pipeline_service),
):
    """获取完整测试套件（含源码）"""
    try:
        return service.get_test_suite(suite_id)
    except GradeFoundryError as e:
        raise to_http_error(e)
