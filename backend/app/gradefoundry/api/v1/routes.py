from fastapi import APIRouter

from gradefoundry.api.v1.routes_prompts import router as prompts_router
from gradefoundry.api.v1.routes_artifacts import router as artifacts_router
from gradefoundry.api.v1.routes_test_runs import router as test_runs_router

# v1 统一入口：所有 v1 API 都从 /api/v1 开始
router = APIRouter(prefix="/api/v1")

router.include_router(prompts_router)
router.include_router(artifacts_router)
router.include_router(test_runs_router)
