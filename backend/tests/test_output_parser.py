"""GradeFoundry - Test Output Parser Tests

测试输出 → TestResult，以及测试到需求 ID 的映射。
"""
from gradefoundry.execution.junit_parser import parse_junit_xml_content
from gradefoundry.execution.output_parser import (
    SUITE_RESULT_NAME,
    find_test_file,
    map_requirement_ids,
    parse_test_output,
    requirement_ids_from_name,
    results_for_files,
    synthesize_suite_result,
)
from gradefoundry.models.run_schemas import TestStatus
from gradefoundry.models.testsuite_schemas import TestFile
from gradefoundry.services.generation.frameworks import PYTEST, VITEST

from pipeline_fakes import HEALTH_FAIL_JUNIT, HEALTH_FAIL_STDOUT, HEALTH_PASS_STDOUT, HEALTH_TEST_CONTENT

MATH_TESTS = '''import pytest
from calc import add, divide


# @requirement REQ-001
def test_add():
    assert add(1, 2) == 3


# @requirement REQ-002
def test_divide_by_zero():
    with pytest.raises(ZeroDivisionError):
        divide(1, 0)


def test_req_003_negative_numbers():
    assert add(-1, -2) == -3


def test_unmarked():
    assert add(0, 0) == 0
'''

MATH_FILE = TestFile(filename="test_calc.py", content=MATH_TESTS, requirement_ids=["REQ-001", "REQ-002"])

VITEST_TESTS = """import { describe, it, expect } from 'vitest';
import { add } from '/submission/calc.js';

describe('add', () => {
  // @requirement REQ-001
  it('adds two numbers', () => {
    expect(add(1, 2)).toBe(3);
  });

  // @requirement REQ-002
  it('handles negatives', () => {
    expect(add(-1, -1)).toBe(-2);
  });
});
"""

VITEST_FILE = TestFile(filename="calc.test.js", content=VITEST_TESTS, requirement_ids=["REQ-001", "REQ-002"])


class TestRequirementMapping:

    def test_ids_from_name(self):
        assert requirement_ids_from_name("test_req_003_negative") == ["REQ-003"]
        assert requirement_ids_from_name("test_REQ-001_and_req002") == ["REQ-001", "REQ-002"]
        assert requirement_ids_from_name("test_plain") == []

    def test_name_takes_precedence(self):
        assert map_requirement_ids("test_req_003_negative_numbers", MATH_FILE, PYTEST) == ["REQ-003"]

    def test_marker_in_block(self):
        assert map_requirement_ids("test_divide_by_zero", MATH_FILE, PYTEST) == ["REQ-002"]
        assert map_requirement_ids("TestCalc::test_add", MATH_FILE, PYTEST) == ["REQ-001"]

    def test_parametrized_name(self):
        assert map_requirement_ids("test_add[1-2]", MATH_FILE, PYTEST) == ["REQ-001"]

    def test_falls_back_to_file_ids(self):
        assert map_requirement_ids("test_unmarked", MATH_FILE, PYTEST) == ["REQ-001", "REQ-002"]

    def test_js_block(self):
        assert map_requirement_ids("add > handles negatives", VITEST_FILE, VITEST) == ["REQ-002"]
        assert map_requirement_ids("add > adds two numbers", VITEST_FILE, VITEST) == ["REQ-001"]

    def test_no_file(self):
        assert map_requirement_ids("test_whatever", None, PYTEST) == []

    def test_find_test_file(self):
        files = [MATH_FILE, VITEST_FILE]
        assert find_test_file(files, "test_calc.py") is MATH_FILE
        assert find_test_file(files, "/tests/test_calc.py") is MATH_FILE
        assert find_test_file(files, "test_calc.TestCalc") is MATH_FILE
        assert find_test_file(files, "other.py") is None


class TestParsePytestOutput:

    def test_passing_output(self):
        tf = TestFile(filename="test_health.py", content=HEALTH_TEST_CONTENT, requirement_ids=["REQ-001"])

        results = parse_test_output(HEALTH_PASS_STDOUT, "", 0, PYTEST, [tf])

        assert len(results) == 1
        result = results[0]
        assert result.test_name == "test_health.py::test_health_returns_ok"
        assert result.status == TestStatus.PASS
        assert result.requirement_ids == ["REQ-001"]
        assert result.stdout is None
        assert result.error_message is None

    def test_failing_output_with_junit(self):
        tf = TestFile(filename="test_health.py", content=HEALTH_TEST_CONTENT, requirement_ids=["REQ-001"])
        junit = parse_junit_xml_content(HEALTH_FAIL_JUNIT)

        results = parse_test_output(HEALTH_FAIL_STDOUT, "", 1, PYTEST, [tf], junit=junit)

        assert len(results) == 1
        result = results[0]
        assert result.status == TestStatus.FAIL
        assert result.duration_ms == 42
        assert result.error_message == "assert 500 == 200"
        assert "assert 500 == 200" in result.stack_trace
        assert "FAILURES" in result.stdout

    def test_mixed_statuses_and_skips(self):
        stdout = (
            "test_calc.py::test_add PASSED                 [ 20%]\n"
            "test_calc.py::test_divide_by_zero FAILED      [ 40%]\n"
            "test_calc.py::test_req_003_negative_numbers ERROR [ 60%]\n"
            "test_calc.py::test_unmarked SKIPPED (not ready) [ 80%]\n"
            "test_calc.py::test_add[2-3] XFAIL             [100%]\n"
            "ERROR test_calc.py::test_req_003_negative_numbers - fixture missing\n"
        )

        results = parse_test_output(stdout, "", 1, PYTEST, [MATH_FILE])

        assert [(r.test_name, r.status) for r in results] == [
            ("test_calc.py::test_add", TestStatus.PASS),
            ("test_calc.py::test_divide_by_zero", TestStatus.FAIL),
            ("test_calc.py::test_req_003_negative_numbers", TestStatus.ERROR),
        ]
        assert results[1].requirement_ids == ["REQ-002"]
        assert results[1].error_message == "Test failed"
        assert results[2].requirement_ids == ["REQ-003"]
        assert results[2].error_message == "Test error"

    def test_junit_used_when_stdout_unrecognised(self):
        junit = parse_junit_xml_content(HEALTH_FAIL_JUNIT)
        tf = TestFile(filename="test_health.py", content=HEALTH_TEST_CONTENT, requirement_ids=["REQ-001"])

        results = parse_test_output("garbled output", "", 1, PYTEST, [tf], junit=junit)

        assert len(results) == 1
        assert results[0].test_name == "test_health::test_health_returns_ok"
        assert results[0].status == TestStatus.FAIL
        assert results[0].requirement_ids == ["REQ-001"]
        assert results[0].duration_ms == 42

    def test_synthesized_result_when_nothing_recognised(self):
        results = parse_test_output("no tests ran", "ImportError: app", 2, PYTEST, [MATH_FILE])

        assert len(results) == 1
        assert results[0].test_name == SUITE_RESULT_NAME
        assert results[0].status == TestStatus.FAIL
        assert results[0].requirement_ids == ["REQ-001", "REQ-002"]
        assert results[0].stderr == "ImportError: app"
        assert results[0].error_message == "Test execution failed (exit code 2)"


class TestParseVitestOutput:

    def test_verbose_reporter(self):
        stdout = (
            " RUN  v1.6.0 /tests\n\n"
            " ✓ calc.test.js > add > adds two numbers 2ms\n"
            " × calc.test.js > add > handles negatives 3ms\n"
            "   → expected -3 to be -2\n"
            " ↓ calc.test.js > add > skipped one\n\n"
            " Test Files  1 failed (1)\n"
        )

        results = parse_test_output(stdout, "", 1, VITEST, [VITEST_FILE])

        assert [(r.test_name, r.status) for r in results] == [
            ("calc.test.js > add > adds two numbers", TestStatus.PASS),
            ("calc.test.js > add > handles negatives", TestStatus.FAIL),
        ]
        assert results[0].requirement_ids == ["REQ-001"]
        assert results[1].requirement_ids == ["REQ-002"]


class TestDegradedResults:

    def test_synthesize_pass_on_exit_zero(self):
        result = synthesize_suite_result("ok", "", 0, [MATH_FILE])

        assert result.status == TestStatus.PASS
        assert result.error_message is None

    def test_results_for_files(self):
        results = results_for_files(
            [MATH_FILE, VITEST_FILE], TestStatus.TIMEOUT, "Test execution exceeded 5s and was killed",
        )

        assert [r.test_name for r in results] == ["test_calc.py", "calc.test.js"]
        assert all(r.status == TestStatus.TIMEOUT for r in results)
        assert results[0].requirement_ids == ["REQ-001", "REQ-002"]

    def test_results_for_no_files(self):
        results = results_for_files([], TestStatus.ERROR, "boom")

        assert len(results) == 1
        assert results[0].test_name == SUITE_RESULT_NAME
        assert results[0].status == TestStatus.ERROR

    def test_long_output_truncated(self):
        result = synthesize_suite_result("x" * 20_000, "", 1, [MATH_FILE])

        assert len(result.stdout) < 20_000
        assert result.stdout.endswith("[truncated]")
