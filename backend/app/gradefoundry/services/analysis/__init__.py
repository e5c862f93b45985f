"""GradeFoundry - Submission Analysis"""
from gradefoundry.services.analysis.language import (
    compute_language_breakdown,
    detect_language,
)

__all__ = ["compute_language_breakdown", "detect_language"]
