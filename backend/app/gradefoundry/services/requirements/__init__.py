"""GradeFoundry - Requirement Extraction

需求提取：prompt → RequirementSpec
"""
from gradefoundry.services.requirements.extractor import (
    ExtractionResult,
    RequirementExtractor,
    normalize_prompt,
    post_process_requirements,
)

__all__ = [
    "ExtractionResult",
    "RequirementExtractor",
    "normalize_prompt",
    "post_process_requirements",
]
