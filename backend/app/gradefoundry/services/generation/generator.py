"""GradeFoundry - Test Suite Generator

RequirementSpec → GeneratedTestSuite

流程:
1. 推断语言/框架（未显式给出时）
2. 以 JSON 模式生成测试文件 + runner_config，解析并做结构校验
3. 卫生检查；不通过则发起且仅发起一次修复请求
4. 修复结果无条件接受：通过 → repaired，仍不通过 → failed（执行照常进行）
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional
from uuid import UUID

from pydantic import ValidationError

from gradefoundry.governance.policy_loader import GenerationPolicy, get_policy
from gradefoundry.models.requirement_schemas import RequirementSpec
from gradefoundry.models.testsuite_schemas import (
    GeneratedTestSuite,
    HygieneStatus,
    RunnerConfig,
    SuiteMetadata,
    TestFile,
)
from gradefoundry.schemas import parse_generated_json, validate_test_suite_payload
from gradefoundry.services.ai_service import AIResponse, TextGenerator
from gradefoundry.services.analysis.language import detect_language
from gradefoundry.services.generation.frameworks import select_test_framework
from gradefoundry.services.generation.hygiene import (
    HygieneReport,
    is_safe_filename,
    resolve_requirement_ids,
    run_test_hygiene,
)
from gradefoundry.services.generation.prompts import (
    TEST_GENERATION_SYSTEM_PROMPT,
    build_test_generation_prompt,
    build_test_repair_prompt,
)

logger = logging.getLogger(__name__)


class TestSuiteGenerator:
    """测试套件生成器"""

    __test__ = False

    def __init__(
        self,
        generator: TextGenerator,
        policy: Optional[GenerationPolicy] = None,
    ):
        self.generator = generator
        self.policy = policy or get_policy().generation

    async def generate(
        self,
        spec: RequirementSpec,
        language: Optional[str] = None,
        framework: Optional[str] = None,
        *,
        requirement_spec_id: Optional[UUID] = None,
        language_breakdown: Optional[Mapping[str, int]] = None,
        timeout: Optional[int] = None,
    ) -> GeneratedTestSuite:
        """
        生成测试套件
        
        Args:
            spec: 需求规格
            language: 目标语言（缺省时由 language_breakdown 推断）
            framework: 测试框架（缺省时按语言映射）
            requirement_spec_id: 父规格 ID
            language_breakdown: 提交代码的语言行数统计
            timeout: 覆盖 runner_config.timeout（秒）
        
        Raises:
            GenerationParseError / SchemaValidationError: 首次生成结果不可用
            AIServiceError: 首次生成调用失败
        """
        language = (language or detect_language(language_breakdown or {})).lower()
        framework = (framework or select_test_framework(language)).lower()
        known_ids = spec.requirement_ids()

        response = await self.generator.call(
            build_test_generation_prompt(spec, language, framework),
            TEST_GENERATION_SYSTEM_PROMPT,
            self.policy.max_tokens,
            json_mode=True,
        )
        test_files, raw_runner_config = self._parse(response)
        test_files = self._map_requirements(test_files, known_ids)
        logger.info(f"测试生成完成 files={len(test_files)} language={language} framework={framework}")

        report = self._hygiene(test_files, language, known_ids)
        status = HygieneStatus.VALID
        errors: list[str] = []

        if not report.valid:
            status = HygieneStatus.FAILED
            errors = report.errors
            if self.policy.repair_attempts > 0:
                repaired = await self._repair(test_files, report.errors, language, framework, known_ids)
                if repaired is not None:
                    test_files, repaired_config = repaired
                    raw_runner_config = {**raw_runner_config, **repaired_config}
                    repaired_report = self._hygiene(test_files, language, known_ids)
                    if repaired_report.valid:
                        status = HygieneStatus.REPAIRED
                        errors = []
                    else:
                        errors = repaired_report.errors

        test_files, dropped = self._drop_unusable(test_files)
        if dropped:
            errors = errors + [f"Test file {name} excluded from the suite" for name in dropped]

        runner_config = self._runner_config(raw_runner_config, framework, timeout)
        logger.info(f"测试套件 hygiene_status={status.value} violations={len(errors)}")

        return GeneratedTestSuite(
            requirement_spec_id=requirement_spec_id,
            language=language,
            framework=framework,
            test_files=test_files,
            runner_config=runner_config,
            metadata=SuiteMetadata(
                generating_model=response.model,
                hygiene_status=status,
                hygiene_errors=errors or None,
            ),
        )

    # ================== 内部步骤 ==================

    @staticmethod
    def _parse(response: AIResponse) -> tuple[list[TestFile], dict[str, Any]]:
        payload = parse_generated_json(response.content)
        return validate_test_suite_payload(payload)

    @staticmethod
    def _map_requirements(test_files: list[TestFile], known_ids: list[str]) -> list[TestFile]:
        """规范化每个文件的 requirement_ids：只保留规格内的 ID，字段为空时取源码标记"""
        return [
            tf.model_copy(update={"requirement_ids": resolve_requirement_ids(tf, known_ids)})
            for tf in test_files
        ]

    def _hygiene(self, test_files: list[TestFile], language: str, known_ids: list[str]) -> HygieneReport:
        return run_test_hygiene(
            test_files,
            language,
            min_content_length=self.policy.min_content_length,
            known_ids=known_ids,
        )

    async def _repair(
        self,
        test_files: list[TestFile],
        errors: list[str],
        language: str,
        framework: str,
        known_ids: list[str],
    ) -> Optional[tuple[list[TestFile], dict[str, Any]]]:
        """唯一一次修复请求；失败时返回 None（沿用原始文件）"""
        logger.info(f"发起测试修复请求 violations={len(errors)}")
        try:
            response = await self.generator.call(
                build_test_repair_prompt(test_files, errors, language, framework),
                TEST_GENERATION_SYSTEM_PROMPT,
                self.policy.max_tokens,
                json_mode=True,
            )
            repaired_files, runner_config = self._parse(response)
        except Exception as e:
            logger.warning(f"测试修复失败，沿用原始测试文件: {type(e).__name__}: {e}")
            return None
        return self._map_requirements(repaired_files, known_ids), runner_config

    @staticmethod
    def _drop_unusable(test_files: list[TestFile]) -> tuple[list[TestFile], list[str]]:
        """剔除没有需求映射或文件名不安全的文件；若会剔除全部文件则原样保留"""
        mapped = [tf for tf in test_files if tf.requirement_ids and is_safe_filename(tf.filename)]
        if not mapped or len(mapped) == len(test_files):
            return test_files, []
        dropped = [tf.filename for tf in test_files if tf not in mapped]
        logger.warning(f"剔除不可用的测试文件: {dropped}")
        return mapped, dropped

    def _runner_config(
        self,
        raw: dict[str, Any],
        framework: str,
        timeout: Optional[int],
    ) -> RunnerConfig:
        data = dict(raw)
        data["framework"] = framework
        data["timeout"] = timeout or raw.get("timeout") or self.policy.default_timeout_s
        deps = raw.get("dependencies")
        data["dependencies"] = [str(d) for d in deps] if isinstance(deps, list) else []
        try:
            return RunnerConfig.model_validate(data)
        except ValidationError as e:
            logger.warning(f"runner_config 无效，使用默认值: {e.error_count()} error(s)")
            return RunnerConfig(
                framework=framework,
                dependencies=data["dependencies"],
                timeout=timeout or self.policy.default_timeout_s,
            )


__all__ = [
    "TestSuiteGenerator",
    "detect_language",
    "select_test_framework",
    "build_test_generation_prompt",
]
