"""Core package"""
from gradefoundry.core.config import settings, Settings
from gradefoundry.core.errors import (
    AIServiceError,
    ArtifactNotFound,
    ExecutionError,
    ExecutionTimeout,
    ExtractionFailed,
    GenerationParseError,
    GradeFoundryError,
    InvalidRunTransition,
    SandboxUnavailable,
    SchemaValidationError,
)

__all__ = [
    "settings",
    "Settings",
    "AIServiceError",
    "ArtifactNotFound",
    "ExecutionError",
    "ExecutionTimeout",
    "ExtractionFailed",
    "GenerationParseError",
    "GradeFoundryError",
    "InvalidRunTransition",
    "SandboxUnavailable",
    "SchemaValidationError",
]
