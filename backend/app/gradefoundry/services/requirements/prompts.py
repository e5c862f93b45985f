"""GradeFoundry - Requirement Extraction Prompts

需求提取提示词
"""
from __future__ import annotations

REQUIREMENTS_EXTRACTION_SYSTEM_PROMPT = """You are an expert at analyzing project requirements and converting them into structured, testable specifications.

Your task is to extract atomic requirements from a project prompt. Each requirement must be:
1. Clear and unambiguous
2. Independently testable (pass/fail)
3. Mapped to a specific type (functional, nonfunctional, io, constraint)

You MUST output ONLY valid JSON matching this exact shape:
{
  "requirements": [
    {
      "id": "REQ-001",
      "type": "functional|nonfunctional|io|constraint",
      "description": "Clear requirement statement",
      "acceptance_criteria": ["Criterion 1", "Criterion 2"],
      "weight": 5,
      "testable": true
    }
  ],
  "constraints": [
    {"type": "performance", "description": "Response time < 100ms"},
    {"type": "library", "description": "Must use Flask"}
  ],
  "edge_cases": ["Empty input", "Invalid format", "Boundary values"],
  "metadata": {
    "validation_notes": "any clarifications"
  }
}

Guidelines:
- Split ambiguous requirements into multiple atomic requirements
- Assign weights based on importance (1=minor, 10=critical)
- Ensure each requirement has at least one acceptance criterion
- Include edge cases that should be tested
- Mark constraints separately from functional requirements
- Use sequential IDs: REQ-001, REQ-002, etc.

Output ONLY the JSON object, no markdown, no code blocks, no explanations."""


def build_extraction_prompt(project_prompt: str) -> str:
    return (
        "Extract structured requirements from this project prompt:\n\n"
        f"{project_prompt}\n\n"
        "Follow the schema exactly. Ensure all requirement IDs follow the REQ-XXX format."
    )


def build_extraction_repair_prompt(project_prompt: str, error: str) -> str:
    """上一次提取失败后的增强提示词（附带错误信息与格式提醒）"""
    return (
        f"The previous requirement extraction failed with error: {error}\n\n"
        "Original prompt:\n"
        f"{project_prompt}\n\n"
        "Please extract requirements again, ensuring:\n"
        "1. All requirement IDs follow REQ-XXX format (REQ-001, REQ-002, etc.)\n"
        "2. All fields are present and valid (non-empty description and acceptance_criteria)\n"
        "3. JSON is properly formatted\n"
        "4. At least one requirement is included"
    )
