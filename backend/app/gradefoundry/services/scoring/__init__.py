"""GradeFoundry - Scoring"""
from gradefoundry.services.scoring.calculator import (
    generate_failure_analysis,
    score_confidence,
    score_overall,
    score_requirements,
)

__all__ = [
    "generate_failure_analysis",
    "score_confidence",
    "score_overall",
    "score_requirements",
]
