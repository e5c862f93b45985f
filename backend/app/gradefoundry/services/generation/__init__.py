"""GradeFoundry - Test Suite Generation"""
from gradefoundry.services.generation.frameworks import get_framework, select_test_framework
from gradefoundry.services.generation.generator import TestSuiteGenerator
from gradefoundry.services.generation.hygiene import (
    HygieneReport,
    extract_requirement_ids_from_test,
    run_test_hygiene,
)

__all__ = [
    "HygieneReport",
    "TestSuiteGenerator",
    "extract_requirement_ids_from_test",
    "get_framework",
    "run_test_hygiene",
    "select_test_framework",
]
