"""GradeFoundry - Test Run API Routes

启动沙箱执行（后台任务）并查询 Test Run 状态、历史和失败分析
"""
import logging
from pathlib import Path
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from gradefoundry.api.deps.pipeline_deps import (
    get_pipeline_service,
    get_sandbox_executor,
    to_http_error,
)
from gradefoundry.core.errors import GradeFoundryError
from gradefoundry.database.config import get_session_factory
from gradefoundry.execution.runner import SandboxExecutor
from gradefoundry.models.run_schemas import (
    FailureAnalysis,
    RunTestsRequest,
    RunTestsResponse,
    TestRun,
)
from gradefoundry.services.pipeline_service import PipelineService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["test-runs"])


async def execute_test_run_task(
    run: TestRun,
    submission_path: str,
    session_factory,
    executor: SandboxExecutor,
) -> None:
    """后台执行（独立数据库会话）"""
    db = session_factory()
    try:
        await PipelineService(db, executor=executor).execute_test_run(run, submission_path)
    finally:
        db.close()


@router.post("/submissions/{submission_id}/run-tests", response_model=RunTestsResponse, status_code=202)
def run_tests(
    submission_id: str,
    req: RunTestsRequest,
    background_tasks: BackgroundTasks,
    service: PipelineService = Depends(get_pipeline_service),
    executor: SandboxExecutor = Depends(get_sandbox_executor),
    session_factory=Depends(get_session_factory),
):
    """启动测试执行，立即返回 pending 的 Test Run"""
    if not Path(req.submission_path).is_dir():
        raise HTTPException(status_code=400, detail=f"Submission path not found: {req.submission_path}")

    try:
        run = service.create_test_run(submission_id, req.test_suite_id)
    except GradeFoundryError as e:
        raise to_http_error(e)

    background_tasks.add_task(
        execute_test_run_task, run, req.submission_path, session_factory, executor
    )
    logger.info(f"Test run {run.id} queued for submission {submission_id}")
    return RunTestsResponse(test_run_id=run.id, status=run.status)


@router.get("/test-runs/{run_id}", response_model=TestRun)
def get_test_run(
    run_id: UUID,
    service: PipelineService = Depends(get_pipeline_service),
):
    """获取 Test Run 当前状态（最新 revision）"""
    try:
        return service.get_test_run(run_id)
    except GradeFoundryError as e:
        raise to_http_error(e)


@router.get("/test-runs/{run_id}/history", response_model=list[TestRun])
def get_test_run_history(
    run_id: UUID,
    service: PipelineService = Depends(get_pipeline_service),
):
    """获取 Test Run 全部 revision"""
    try:
        return service.get_test_run_history(run_id)
    except GradeFoundryError as e:
        raise to_http_error(e)


@router.get("/test-runs/{run_id}/failure-analysis", response_model=list[FailureAnalysis])
def get_failure_analysis(
    run_id: UUID,
    service: PipelineService = Depends(get_pipeline_service),
):
    """失败需求分析与建议"""
    try:
        return service.failure_analysis(run_id)
    except GradeFoundryError as e:
        raise to_http_error(e)
