"""GradeFoundry - Pipeline Service

Drives the grading pipeline against the durable store:
prompt → requirement spec → test suite → test run (execute + score).

Design decisions:
- Dependency injection: DB required, text generator / sandbox executor / policy optional (testable)
- Every artifact is addressed by its own UUID so stages can be re-invoked independently
- Test runs are append-only: each transition inserts a new revision row
- execute_test_run always ends in a terminal revision (completed or failed), including on cancellation
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from gradefoundry.core.errors import ArtifactNotFound
from gradefoundry.database.models import (
    ProjectPrompt,
    RequirementSpecRecord,
    TestRunRecord,
    TestSuiteRecord,
)
from gradefoundry.execution.runner import SandboxExecutor
from gradefoundry.governance.policy_loader import PolicyConfig, get_policy
from gradefoundry.models.requirement_schemas import RequirementSpec
from gradefoundry.models.run_schemas import (
    FailureAnalysis,
    OverallScore,
    RequirementScore,
    SandboxResult,
    TestRun,
)
from gradefoundry.models.testsuite_schemas import GeneratedTestSuite
from gradefoundry.services.ai_service import TextGenerator
from gradefoundry.services.analysis.language import compute_language_breakdown
from gradefoundry.services.generation.generator import TestSuiteGenerator
from gradefoundry.services.requirements.extractor import (
    ExtractionResult,
    RequirementExtractor,
    post_process_requirements,
)
from gradefoundry.services.scoring.calculator import (
    generate_failure_analysis,
    score_confidence,
    score_overall,
    score_requirements,
)

logger = logging.getLogger(__name__)


# ============================================================
# Record <-> domain mapping
# ============================================================

def spec_from_record(record: RequirementSpecRecord) -> RequirementSpec:
    return RequirementSpec.model_validate({
        "requirements": record.requirements,
        "constraints": record.constraints,
        "edge_cases": record.edge_cases,
        "metadata": record.metadata_,
    })


def suite_from_record(record: TestSuiteRecord) -> GeneratedTestSuite:
    return GeneratedTestSuite.model_validate({
        "id": record.id,
        "requirement_spec_id": record.requirement_spec_id,
        "language": record.language,
        "framework": record.framework,
        "test_files": record.test_files,
        "runner_config": record.runner_config,
        "metadata": record.metadata_,
    })


def run_from_record(record: TestRunRecord) -> TestRun:
    return TestRun.model_validate({
        "id": record.run_id,
        "revision": record.revision,
        "submission_id": record.submission_id,
        "test_suite_id": record.test_suite_id,
        "status": record.status,
        "results": record.results,
        "requirement_scores": record.requirement_scores,
        "overall_score": record.overall_score,
        "execution_metadata": record.execution_metadata or {},
    })


def run_to_record(run: TestRun) -> TestRunRecord:
    data = run.model_dump(mode="json")
    return TestRunRecord(
        run_id=run.id,
        revision=run.revision,
        submission_id=run.submission_id,
        test_suite_id=run.test_suite_id,
        status=run.status.value,
        results=data["results"],
        requirement_scores=data["requirement_scores"],
        overall_score=data["overall_score"],
        execution_metadata=data["execution_metadata"],
    )


# ============================================================
# Scoring step (shared by the DB pipeline and the CLI)
# ============================================================

def score_run(
    results: SandboxResult,
    spec: RequirementSpec,
    suite: GeneratedTestSuite,
    policy: PolicyConfig,
) -> tuple[list[RequirementScore], OverallScore]:
    """Score a sandbox result against its spec; fills in confidence_score."""
    scores = score_requirements(
        results.test_results, spec.requirements, pass_threshold=policy.scoring.pass_threshold
    )
    overall = score_overall(scores, spec.requirements, partial_credit=policy.scoring.partial_credit)
    overall = overall.model_copy(update={"confidence_score": score_confidence(scores, suite)})
    return scores, overall


@dataclass(frozen=True)
class GradeReport:
    """Result of a full, store-free pipeline run (used by the CLI)."""
    extraction: ExtractionResult
    suite: GeneratedTestSuite
    results: SandboxResult
    requirement_scores: list[RequirementScore]
    overall_score: OverallScore


async def grade_submission(
    prompt: str,
    submission_path: str | Path,
    *,
    generator: TextGenerator,
    executor: Optional[SandboxExecutor] = None,
    policy: Optional[PolicyConfig] = None,
    language: Optional[str] = None,
    framework: Optional[str] = None,
) -> GradeReport:
    """Run extraction → generation → execution → scoring without persistence."""
    policy = policy or get_policy()
    executor = executor or SandboxExecutor(policy=policy.sandbox)

    extraction = await RequirementExtractor(generator, policy.extraction).extract(prompt)
    spec = post_process_requirements(extraction.spec)
    extraction = ExtractionResult(spec=spec, attempts=extraction.attempts, repaired=extraction.repaired)

    suite = await TestSuiteGenerator(generator, policy.generation).generate(
        spec,
        language,
        framework,
        language_breakdown=compute_language_breakdown(submission_path) if language is None else None,
    )
    results = await executor.run(suite.test_files, submission_path, suite.language, suite.framework)
    scores, overall = score_run(results, spec, suite, policy)
    return GradeReport(
        extraction=extraction,
        suite=suite,
        results=results,
        requirement_scores=scores,
        overall_score=overall,
    )


# ============================================================
# Service
# ============================================================

class PipelineService:
    """Pipeline service backed by the SQLAlchemy store.

    Dependency injection:
    - db: Required
    - text_generator: Optional (required for extraction/generation)
    - executor: Optional (default: SandboxExecutor with the container backend)
    - policy_loader: Optional (default: loads from file)
    """

    def __init__(
        self,
        db: Session,
        *,
        text_generator: Optional[TextGenerator] = None,
        executor: Optional[SandboxExecutor] = None,
        policy_loader: Optional[Callable[[], PolicyConfig]] = None,
    ):
        self._db = db
        self._text_generator = text_generator
        self._executor = executor
        self._policy_loader = policy_loader or get_policy

    @property
    def policy(self) -> PolicyConfig:
        return self._policy_loader()

    @property
    def text_generator(self) -> TextGenerator:
        if self._text_generator is None:
            raise RuntimeError("PipelineService requires a text generator for this operation")
        return self._text_generator

    @property
    def executor(self) -> SandboxExecutor:
        if self._executor is None:
            self._executor = SandboxExecutor(policy=self.policy.sandbox)
        return self._executor

    # ---------------- prompts ----------------

    def create_prompt(self, title: str, content: str) -> ProjectPrompt:
        prompt = ProjectPrompt(title=title, content=content)
        self._db.add(prompt)
        self._db.commit()
        self._db.refresh(prompt)
        return prompt

    def get_prompt(self, prompt_id: UUID) -> ProjectPrompt:
        prompt = self._db.query(ProjectPrompt).filter(ProjectPrompt.id == prompt_id).first()
        if prompt is None:
            raise ArtifactNotFound("Prompt", prompt_id)
        return prompt

    # ---------------- requirement specs ----------------

    async def extract_requirements(self, prompt_id: UUID) -> tuple[RequirementSpecRecord, ExtractionResult]:
        """Extract, post-process and persist a requirement spec for a prompt.

        Raises:
            ArtifactNotFound: unknown prompt
            ExtractionFailed: all attempts exhausted (nothing is persisted)
        """
        prompt = self.get_prompt(prompt_id)
        extractor = RequirementExtractor(self.text_generator, self.policy.extraction)
        result = await extractor.extract(prompt.content)
        spec = post_process_requirements(result.spec)

        data = spec.model_dump(mode="json")
        record = RequirementSpecRecord(
            prompt_id=prompt.id,
            requirements=data["requirements"],
            constraints=data["constraints"],
            edge_cases=data["edge_cases"],
            metadata_=data["metadata"],
            attempts=result.attempts,
        )
        self._db.add(record)
        self._db.commit()
        self._db.refresh(record)
        logger.info(f"Requirement spec {record.id} stored for prompt {prompt.id} ({len(spec.requirements)} requirements)")
        return record, ExtractionResult(spec=spec, attempts=result.attempts, repaired=result.repaired)

    def get_requirement_spec(self, spec_id: UUID) -> tuple[RequirementSpecRecord, RequirementSpec]:
        record = self._db.query(RequirementSpecRecord).filter(RequirementSpecRecord.id == spec_id).first()
        if record is None:
            raise ArtifactNotFound("Requirement spec", spec_id)
        return record, spec_from_record(record)

    def latest_spec_for_prompt(self, prompt_id: UUID) -> tuple[RequirementSpecRecord, RequirementSpec]:
        self.get_prompt(prompt_id)
        record = (
            self._db.query(RequirementSpecRecord)
            .filter(RequirementSpecRecord.prompt_id == prompt_id)
            .order_by(RequirementSpecRecord.created_at.desc())
            .first()
        )
        if record is None:
            raise ArtifactNotFound("Requirement spec for prompt", prompt_id)
        return record, spec_from_record(record)

    # ---------------- test suites ----------------

    async def generate_test_suite(
        self,
        prompt_id: UUID,
        *,
        requirement_spec_id: Optional[UUID] = None,
        language: Optional[str] = None,
        framework: Optional[str] = None,
        submission_path: Optional[str] = None,
    ) -> tuple[TestSuiteRecord, GeneratedTestSuite]:
        """Generate and persist a new test suite (regeneration inserts a new row)."""
        if requirement_spec_id is not None:
            spec_record, spec = self.get_requirement_spec(requirement_spec_id)
            if spec_record.prompt_id is not None and spec_record.prompt_id != prompt_id:
                raise ArtifactNotFound("Requirement spec for prompt", requirement_spec_id)
        else:
            spec_record, spec = self.latest_spec_for_prompt(prompt_id)

        breakdown = None
        if language is None and submission_path:
            breakdown = compute_language_breakdown(submission_path)

        generator = TestSuiteGenerator(self.text_generator, self.policy.generation)
        suite = await generator.generate(
            spec,
            language,
            framework,
            requirement_spec_id=spec_record.id,
            language_breakdown=breakdown,
        )

        data = suite.model_dump(mode="json")
        record = TestSuiteRecord(
            id=suite.id,
            requirement_spec_id=spec_record.id,
            language=suite.language,
            framework=suite.framework,
            test_files=data["test_files"],
            runner_config=data["runner_config"],
            metadata_=data["metadata"],
        )
        self._db.add(record)
        self._db.commit()
        self._db.refresh(record)
        logger.info(f"Test suite {record.id} stored ({len(suite.test_files)} files, hygiene={suite.metadata.hygiene_status.value})")
        return record, suite

    def get_test_suite(self, suite_id: UUID) -> GeneratedTestSuite:
        record = self._db.query(TestSuiteRecord).filter(TestSuiteRecord.id == suite_id).first()
        if record is None:
            raise ArtifactNotFound("Test suite", suite_id)
        return suite_from_record(record)

    # ---------------- test runs ----------------

    def _append(self, run: TestRun) -> TestRun:
        self._db.add(run_to_record(run))
        try:
            self._db.commit()
        except Exception:
            # 未提交的修订随回滚丢弃，会话可继续写入 failed 修订
            self._db.rollback()
            raise
        logger.info(f"Test run {run.id} rev={run.revision} status={run.status.value}")
        return run

    def create_test_run(self, submission_id: str, test_suite_id: UUID) -> TestRun:
        """Create a pending test run (revision 1)."""
        self.get_test_suite(test_suite_id)
        return self._append(TestRun(submission_id=submission_id, test_suite_id=test_suite_id))

    async def execute_test_run(self, run: TestRun, submission_path: str | Path) -> TestRun:
        """pending → running → completed|failed. Never leaves the run in running."""
        current = run
        try:
            suite = self.get_test_suite(run.test_suite_id)
            if suite.requirement_spec_id is None:
                raise ArtifactNotFound("Requirement spec for suite", suite.id)
            _, spec = self.get_requirement_spec(suite.requirement_spec_id)

            current = self._append(current.start())
            results = await self.executor.run(
                suite.test_files,
                submission_path,
                suite.language,
                suite.framework,
            )
            scores, overall = score_run(results, spec, suite, self.policy)
            return self._append(current.complete(results, scores, overall))

        except asyncio.CancelledError:
            self._db.rollback()
            self._append(current.fail("Test run cancelled"))
            raise
        except Exception as e:
            logger.exception(f"Test run {run.id} failed")
            self._db.rollback()
            return self._append(current.fail(f"{type(e).__name__}: {e}"))

    def get_test_run(self, run_id: UUID) -> TestRun:
        """Current state: the highest revision."""
        record = (
            self._db.query(TestRunRecord)
            .filter(TestRunRecord.run_id == run_id)
            .order_by(TestRunRecord.revision.desc())
            .first()
        )
        if record is None:
            raise ArtifactNotFound("Test run", run_id)
        return run_from_record(record)

    def get_test_run_history(self, run_id: UUID) -> list[TestRun]:
        records = (
            self._db.query(TestRunRecord)
            .filter(TestRunRecord.run_id == run_id)
            .order_by(TestRunRecord.revision.asc())
            .all()
        )
        if not records:
            raise ArtifactNotFound("Test run", run_id)
        return [run_from_record(r) for r in records]

    def failure_analysis(self, run_id: UUID) -> list[FailureAnalysis]:
        run = self.get_test_run(run_id)
        if not run.requirement_scores:
            return []
        suite = self.get_test_suite(run.test_suite_id)
        if suite.requirement_spec_id is None:
            return []
        _, spec = self.get_requirement_spec(suite.requirement_spec_id)
        return generate_failure_analysis(run.requirement_scores, spec.requirements)
