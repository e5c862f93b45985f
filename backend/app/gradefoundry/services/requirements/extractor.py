"""GradeFoundry - Requirement Extractor

把自由文本 prompt 转换为经过校验的 RequirementSpec。

流程:
1. 规范化 prompt（去首尾空白、折叠空白与多余空行）
2. 以 JSON 模式调用生成模型
3. 剥离代码围栏 → 解析 JSON → Schema 校验
4. 校验失败则带着错误信息和格式提醒重试，直到用尽尝试次数
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from gradefoundry.core.errors import ExtractionFailed
from gradefoundry.governance.policy_loader import ExtractionPolicy, get_policy
from gradefoundry.models.requirement_schemas import (
    DEFAULT_REQUIREMENT_WEIGHT,
    RequirementSpec,
    SpecMetadata,
    ValidationStatus,
)
from gradefoundry.schemas import parse_generated_json, validate_requirement_spec
from gradefoundry.services.ai_service import TextGenerator
from gradefoundry.services.requirements.prompts import (
    REQUIREMENTS_EXTRACTION_SYSTEM_PROMPT,
    build_extraction_prompt,
    build_extraction_repair_prompt,
)

logger = logging.getLogger(__name__)

_INLINE_WS_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class ExtractionResult:
    """提取结果"""
    spec: RequirementSpec
    attempts: int
    repaired: bool


def normalize_prompt(prompt: str) -> str:
    """规范化 prompt：折叠行内空白，最多保留一个空行"""
    text = prompt.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_INLINE_WS_RE.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def post_process_requirements(spec: RequirementSpec) -> RequirementSpec:
    """后处理（纯函数）：去重 → 补默认权重 → 重新顺序编号

    按折叠空白、小写后的 description 去重，保留首次出现；
    编号在去重之后分配，保证 REQ-001..REQ-n 无空洞。
    """
    seen: set[str] = set()
    kept = []
    for req in spec.requirements:
        key = " ".join(req.description.split()).lower()
        if key in seen:
            continue
        seen.add(key)
        kept.append(req)

    requirements = [
        req.model_copy(update={
            "id": f"REQ-{index:03d}",
            "weight": req.weight or DEFAULT_REQUIREMENT_WEIGHT,
        })
        for index, req in enumerate(kept, start=1)
    ]
    return spec.model_copy(update={"requirements": requirements})


class RequirementExtractor:
    """需求提取器"""

    def __init__(
        self,
        generator: TextGenerator,
        policy: Optional[ExtractionPolicy] = None,
    ):
        self.generator = generator
        self.policy = policy or get_policy().extraction

    async def extract(self, prompt: str) -> ExtractionResult:
        """
        提取需求规格
        
        Raises:
            ExtractionFailed: 所有尝试均失败（不返回部分结果）
        """
        normalized = normalize_prompt(prompt)
        max_attempts = self.policy.max_attempts
        user_prompt = build_extraction_prompt(normalized)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = await self.generator.call(
                    user_prompt,
                    REQUIREMENTS_EXTRACTION_SYSTEM_PROMPT,
                    self.policy.max_tokens,
                    json_mode=True,
                )
                payload = parse_generated_json(response.content)
                repaired = attempt > 1
                metadata = SpecMetadata(
                    generating_model=response.model,
                    validation_status=ValidationStatus.REPAIRED if repaired else ValidationStatus.VALID,
                    validation_notes=f"Repaired after {attempt - 1} attempt(s)" if repaired else None,
                    attempts=attempt,
                )
                spec = validate_requirement_spec(payload, metadata)
                logger.info(
                    f"需求提取成功 attempt={attempt} requirements={len(spec.requirements)}"
                )
                return ExtractionResult(spec=spec, attempts=attempt, repaired=repaired)

            except Exception as e:
                last_error = e
                logger.warning(
                    f"需求提取失败 (尝试 {attempt}/{max_attempts}): {type(e).__name__}: {e}"
                )
                user_prompt = build_extraction_repair_prompt(normalized, str(e))

        raise ExtractionFailed(max_attempts, last_error)
