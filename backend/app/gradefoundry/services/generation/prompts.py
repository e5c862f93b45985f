"""GradeFoundry - Test Generation Prompts

测试生成与修复提示词
"""
from __future__ import annotations

import json

from gradefoundry.models.requirement_schemas import RequirementSpec
from gradefoundry.models.testsuite_schemas import TestFile

TEST_GENERATION_SYSTEM_PROMPT = """You are an expert test engineer. Generate comprehensive, executable test code.

Your task is to generate real, runnable test code that validates requirements.

You MUST output ONLY valid JSON matching this exact shape:
{
  "test_files": [
    {
      "filename": "test_feature.py",
      "content": "actual test code here with imports",
      "requirement_ids": ["REQ-001", "REQ-002"]
    }
  ],
  "runner_config": {
    "framework": "pytest",
    "dependencies": ["pytest", "requests"],
    "timeout": 30
  }
}

Rules:
1. Generate real, runnable test code (not pseudocode)
2. Include happy path, boundary, negative, and edge case tests
3. Each test function must include a comment: # @requirement REQ-XXX
4. Tests must be deterministic (no random values, stable mocks)
5. Use appropriate assertions and descriptive test names
6. Include all necessary imports and setup code
7. Tests run with the submission directory as the working directory and on the import path, without network access

Framework-specific guidelines:
- Python: use pytest with fixtures, @pytest.mark.parametrize for edge cases
- JavaScript/TypeScript: use vitest with describe/it blocks, importing from 'vitest'

Output ONLY the JSON object, no markdown, no code blocks, no explanations."""


def _bullets(lines: list[str]) -> str:
    return "\n".join(lines) if lines else "- (none)"


def build_test_generation_prompt(spec: RequirementSpec, language: str, framework: str) -> str:
    """枚举全部需求、约束和边界情况构造生成提示词"""
    requirements = _bullets([
        f"- {req.id}: {req.description} ({req.type.value})"
        + "".join(f"\n    * {c}" for c in req.acceptance_criteria)
        for req in spec.requirements
    ])
    constraints = _bullets([f"- {c.type}: {c.description}" for c in spec.constraints])
    edge_cases = _bullets([f"- {ec}" for ec in spec.edge_cases])

    return f"""Generate test suite for the following requirements:

Language: {language}
Framework: {framework}

Requirements:
{requirements}

Constraints:
{constraints}

Edge Cases to Test:
{edge_cases}

Generate comprehensive tests covering:
1. Happy path scenarios
2. Boundary conditions
3. Negative/error cases
4. Edge cases listed above

Ensure each test maps to at least one requirement ID."""


def build_test_repair_prompt(
    test_files: list[TestFile],
    errors: list[str],
    language: str,
    framework: str,
) -> str:
    """附带原始测试文件与全部违规项的修复提示词"""
    files_json = json.dumps(
        [tf.model_dump() for tf in test_files], indent=2, ensure_ascii=False
    )
    error_lines = "\n".join(f"- {e}" for e in errors)
    return f"""The following test files have errors. Please fix them:

Errors:
{error_lines}

Test Files:
{files_json}

Language: {language}
Framework: {framework}

Return corrected test files in the same JSON shape (test_files + runner_config). Every file must reference at least one requirement ID."""
