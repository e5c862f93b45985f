"""GradeFoundry - Schema Definitions

生成结果的结构校验（Schema Validator），包括：
- Requirement Spec Schema v1
- Test Suite Schema v1
- JSON Schema 校验工具 + Pydantic 类型化

生成模型的输出一律视为不可信输入：先剥离代码围栏、解析 JSON，
再用 JSON Schema 收集全部结构错误，最后用 Pydantic 做类型化。
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft7Validator
from pydantic import ValidationError

from gradefoundry.core.errors import GenerationParseError, SchemaValidationError
from gradefoundry.models.requirement_schemas import RequirementSpec, SpecMetadata
from gradefoundry.models.testsuite_schemas import TestFile

logger = logging.getLogger(__name__)

# Schema 文件路径
SCHEMAS_DIR = Path(__file__).parent
REQUIREMENT_SPEC_SCHEMA_V1 = "requirement_spec.v1.schema.json"
TEST_SUITE_SCHEMA_V1 = "test_suite.v1.schema.json"

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```$", re.DOTALL)


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict[str, Any]:
    """加载 JSON Schema 文件"""
    with open(SCHEMAS_DIR / name, "r", encoding="utf-8") as f:
        return json.load(f)


def strip_code_fences(text: str) -> str:
    """剥离包裹在外层的 markdown 代码围栏（```json ... ```）"""
    content = text.strip()
    if not content.startswith("```"):
        return content

    match = _FENCE_RE.match(content)
    if match:
        return match.group(1).strip()

    # 未闭合的围栏：去掉首行
    first_newline = content.find("\n")
    if first_newline == -1:
        return ""
    return content[first_newline + 1:].rstrip("`").strip()


def parse_generated_json(text: str) -> dict[str, Any]:
    """解析生成模型返回的 JSON 对象

    Raises:
        GenerationParseError: 不是合法 JSON 或顶层不是对象
    """
    content = strip_code_fences(text)
    if not content:
        raise GenerationParseError("Generator returned empty content")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise GenerationParseError(f"Generator returned malformed JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerationParseError(
            f"Expected a JSON object at top level, got {type(data).__name__}"
        )
    return data


def validate_payload_silent(payload: Any, schema_name: str) -> tuple[bool, list[str]]:
    """静默校验 payload，返回校验结果和全部错误列表

    Returns:
        (是否通过, 错误信息列表)
    """
    validator = Draft7Validator(load_schema(schema_name))
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.absolute_path))
    messages = [_format_error(e.message, list(e.absolute_path)) for e in errors]
    return (not messages), messages


def validate_payload(payload: Any, schema_name: str) -> None:
    """校验 payload 是否符合 schema

    Raises:
        SchemaValidationError: 校验失败时抛出（包含全部错误）
    """
    valid, errors = validate_payload_silent(payload, schema_name)
    if not valid:
        raise SchemaValidationError(errors)


def validate_requirement_spec(payload: dict[str, Any], metadata: SpecMetadata) -> RequirementSpec:
    """校验并类型化生成的需求规格

    生成内容中的 metadata 会被调用方提供的 metadata 覆盖。

    Raises:
        SchemaValidationError: 结构或类型校验失败
    """
    validate_payload(payload, REQUIREMENT_SPEC_SCHEMA_V1)
    data = {
        "requirements": payload["requirements"],
        "constraints": payload.get("constraints") or [],
        "edge_cases": payload.get("edge_cases") or [],
        "metadata": metadata,
    }
    try:
        return RequirementSpec.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(_pydantic_errors(e)) from e


def validate_test_suite_payload(payload: dict[str, Any]) -> tuple[list[TestFile], dict[str, Any]]:
    """校验并类型化生成的测试套件

    Returns:
        (测试文件列表, runner_config 原始字典)

    Raises:
        SchemaValidationError: 结构或类型校验失败
    """
    validate_payload(payload, TEST_SUITE_SCHEMA_V1)
    try:
        files = [
            TestFile(
                filename=tf["filename"],
                content=tf["content"],
                requirement_ids=list(tf.get("requirement_ids") or []),
            )
            for tf in payload["test_files"]
        ]
    except ValidationError as e:
        raise SchemaValidationError(_pydantic_errors(e)) from e
    return files, dict(payload.get("runner_config") or {})


def _format_error(message: str, path: list[Any]) -> str:
    if not path:
        return message
    return f"{message} at {'.'.join(str(p) for p in path)}"


def _pydantic_errors(e: ValidationError) -> list[str]:
    return [_format_error(err["msg"], list(err["loc"])) for err in e.errors()]


__all__ = [
    "REQUIREMENT_SPEC_SCHEMA_V1",
    "TEST_SUITE_SCHEMA_V1",
    "load_schema",
    "parse_generated_json",
    "strip_code_fences",
    "validate_payload",
    "validate_payload_silent",
    "validate_requirement_spec",
    "validate_test_suite_payload",
]
