"""GradeFoundry - Test Output Parser

把容器内测试进程的输出转换为 TestResult 列表，并把每个测试映射回需求 ID。

来源优先级:
1. 框架相应的输出行模式（如 `test_x.py::test_y PASSED`）
2. JUnit XML 中的 <testcase>（输出不可识别时）
3. 都没有时按退出码合成一个代表整次运行的结果

需求映射顺序: 测试名中的 ID → 测试函数体/紧邻注释中的标记 → 测试文件的 requirement_ids
"""
from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath
from typing import Optional

from gradefoundry.execution.junit_parser import JUnitCase
from gradefoundry.models.run_schemas import TestResult, TestStatus
from gradefoundry.models.testsuite_schemas import TestFile
from gradefoundry.services.generation.frameworks import FrameworkSpec
from gradefoundry.services.generation.hygiene import extract_requirement_ids_from_test

logger = logging.getLogger(__name__)

SUITE_RESULT_NAME = "test_suite"
MAX_CAPTURED_OUTPUT = 10_000

_NAME_REQUIREMENT_RE = re.compile(r"REQ[-_]?(\d{3})", re.IGNORECASE)
_JS_TEST_CALL_RE = re.compile(r"\b(?:it|test)(?:\.\w+)?\s*\(")
_JUNIT_STATUS = {
    "passed": TestStatus.PASS,
    "failure": TestStatus.FAIL,
    "error": TestStatus.ERROR,
    "skipped": None,
}


def _truncate(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    if len(text) <= MAX_CAPTURED_OUTPUT:
        return text
    return text[:MAX_CAPTURED_OUTPUT] + "\n... [truncated]"


def requirement_ids_from_name(test_name: str) -> list[str]:
    """测试名中的需求 ID（test_req_001_x / REQ-001）"""
    ids: list[str] = []
    for match in _NAME_REQUIREMENT_RE.finditer(test_name):
        req_id = f"REQ-{match.group(1)}"
        if req_id not in ids:
            ids.append(req_id)
    return ids


def find_test_file(test_files: list[TestFile], file_hint: str) -> Optional[TestFile]:
    """按输出中的文件路径或 JUnit classname 找到对应的测试文件"""
    if not file_hint:
        return None
    hint = file_hint.replace("\\", "/").lstrip("./")
    for tf in test_files:
        name = tf.filename.lstrip("./")
        if name == hint or hint.endswith("/" + name) or name.endswith("/" + hint):
            return tf
    # JUnit classname: 点分模块路径（pytest）
    modules = hint.split(".")
    for tf in test_files:
        stem = PurePosixPath(tf.filename).stem
        if stem in modules:
            return tf
    return None


def _leading_comments(lines: list[str], index: int) -> list[str]:
    """紧邻在 index 之前的注释/装饰器行"""
    collected: list[str] = []
    i = index - 1
    while i >= 0:
        stripped = lines[i].strip()
        if stripped.startswith(("#", "//", "@", "/*", "*")):
            collected.insert(0, lines[i])
            i -= 1
        else:
            break
    return collected


def _python_test_block(content: str, test_name: str) -> Optional[str]:
    func = test_name.split("::")[-1].split("[")[0]
    lines = content.splitlines()
    def_re = re.compile(rf"^(?P<indent>[ \t]*)(?:async\s+)?def\s+{re.escape(func)}\s*\(")
    for i, line in enumerate(lines):
        match = def_re.match(line)
        if not match:
            continue
        indent = len(match.group("indent"))
        block = _leading_comments(lines, i) + [line]
        for body_line in lines[i + 1:]:
            if body_line.strip() and len(body_line) - len(body_line.lstrip()) <= indent:
                break
            block.append(body_line)
        return "\n".join(block)
    return None


def _js_test_block(content: str, test_name: str) -> Optional[str]:
    title = test_name.split(" > ")[-1].strip()
    title_re = re.compile(
        r"\b(?:it|test)(?:\.\w+)?\s*\(\s*(['\"`])" + re.escape(title) + r"\1"
    )
    match = title_re.search(content)
    if not match:
        return None
    next_call = _JS_TEST_CALL_RE.search(content, match.end())
    end = next_call.start() if next_call else len(content)
    line_start = content.rfind("\n", 0, match.start()) + 1
    lines = content[:line_start].splitlines()
    preceding = _leading_comments(lines, len(lines))
    body = content[line_start:end].splitlines()
    # 末尾的注释属于下一个测试
    while body and (not body[-1].strip() or body[-1].strip().startswith(("//", "/*", "*"))):
        body.pop()
    return "\n".join(preceding + body)


def map_requirement_ids(
    test_name: str,
    test_file: Optional[TestFile],
    framework: FrameworkSpec,
) -> list[str]:
    ids = requirement_ids_from_name(test_name)
    if ids:
        return ids
    if test_file is None:
        return []
    if framework.base_language == "python":
        block = _python_test_block(test_file.content, test_name)
    else:
        block = _js_test_block(test_file.content, test_name)
    if block:
        ids = extract_requirement_ids_from_test(block)
        if ids:
            return ids
    return list(test_file.requirement_ids)


def _find_case(cases: list[JUnitCase], file_hint: str, leaf: str) -> Optional[JUnitCase]:
    stem = PurePosixPath(file_hint).name.split(".")[0] if file_hint else ""
    for case in cases:
        if case["name"] != leaf:
            continue
        classname = case["classname"]
        if not stem or stem in classname.replace("/", ".").split(".") or file_hint in classname:
            return case
    return None


def _junit_leaf(test_name: str, framework: FrameworkSpec) -> str:
    # pytest: file.py::Class::test_x → test_x；vitest 的 JUnit name 保留 describe 链
    if framework.name == "pytest":
        return test_name.split("::")[-1]
    return test_name


def parse_test_output(
    stdout: str,
    stderr: str,
    exit_code: int,
    framework: FrameworkSpec,
    test_files: list[TestFile],
    junit: Optional[list[JUnitCase]] = None,
) -> list[TestResult]:
    """解析测试输出为 TestResult 列表（skipped 被丢弃）"""
    cases = junit or []
    results = _parse_stdout(stdout, stderr, framework, test_files, cases)
    if not results and cases:
        results = _parse_junit_cases(cases, stdout, stderr, framework, test_files)
    if not results:
        results = [synthesize_suite_result(stdout, stderr, exit_code, test_files)]
        logger.info(f"未识别到逐条测试结果，按退出码 {exit_code} 合成 {SUITE_RESULT_NAME}")
    return results


def _parse_stdout(
    stdout: str,
    stderr: str,
    framework: FrameworkSpec,
    test_files: list[TestFile],
    cases: list[JUnitCase],
) -> list[TestResult]:
    if framework.result_pattern is None:
        return []

    results: list[TestResult] = []
    seen: set[str] = set()
    for match in framework.result_pattern.finditer(stdout):
        status = framework.status_map.get(match.group("status"))
        if status is None:
            continue
        file_hint = match.group("file")
        name = match.group("name").strip()
        test_name = f"{file_hint}{framework.name_separator}{name}"
        # pytest 对 setup 错误会同时输出 FAILED/ERROR 两行
        if test_name in seen:
            continue
        seen.add(test_name)

        test_file = find_test_file(test_files, file_hint)
        case = _find_case(cases, file_hint, _junit_leaf(name, framework))
        passed = status == TestStatus.PASS
        results.append(TestResult(
            test_name=test_name,
            requirement_ids=map_requirement_ids(name, test_file, framework),
            status=status,
            duration_ms=case["time_ms"] if case else 0,
            stdout=None if passed else _truncate(stdout),
            stderr=None if passed else _truncate(stderr),
            error_message=None if passed else _error_message(case, status),
            stack_trace=None if passed or case is None else case["details"],
        ))
    return results


def _parse_junit_cases(
    cases: list[JUnitCase],
    stdout: str,
    stderr: str,
    framework: FrameworkSpec,
    test_files: list[TestFile],
) -> list[TestResult]:
    results: list[TestResult] = []
    for case in cases:
        status = _JUNIT_STATUS.get(case["outcome"])
        if status is None:
            continue
        file_hint = case["file"] or case["classname"]
        test_file = find_test_file(test_files, file_hint)
        passed = status == TestStatus.PASS
        results.append(TestResult(
            test_name=f"{case['classname']}{framework.name_separator}{case['name']}",
            requirement_ids=map_requirement_ids(case["name"], test_file, framework),
            status=status,
            duration_ms=case["time_ms"],
            stdout=None if passed else _truncate(stdout),
            stderr=None if passed else _truncate(stderr),
            error_message=None if passed else _error_message(case, status),
            stack_trace=None if passed else case["details"],
        ))
    return results


def _error_message(case: Optional[JUnitCase], status: TestStatus) -> str:
    if case and case["message"]:
        return case["message"]
    return f"Test {'failed' if status == TestStatus.FAIL else status.value}"


def _all_requirement_ids(test_files: list[TestFile]) -> list[str]:
    ids: list[str] = []
    for tf in test_files:
        for req_id in tf.requirement_ids:
            if req_id not in ids:
                ids.append(req_id)
    return ids


def synthesize_suite_result(
    stdout: str,
    stderr: str,
    exit_code: int,
    test_files: list[TestFile],
) -> TestResult:
    """合成代表整次运行的单个结果（退出码 0 → pass，否则 fail）"""
    passed = exit_code == 0
    return TestResult(
        test_name=SUITE_RESULT_NAME,
        requirement_ids=_all_requirement_ids(test_files),
        status=TestStatus.PASS if passed else TestStatus.FAIL,
        duration_ms=0,
        stdout=_truncate(stdout),
        stderr=_truncate(stderr),
        error_message=None if passed else f"Test execution failed (exit code {exit_code})",
    )


def results_for_files(
    test_files: list[TestFile],
    status: TestStatus,
    message: str,
    *,
    stdout: str = "",
    stderr: str = "",
    duration_ms: int = 0,
) -> list[TestResult]:
    """为每个测试文件生成一个降级结果（超时/执行错误）"""
    if not test_files:
        return [TestResult(
            test_name=SUITE_RESULT_NAME,
            status=status,
            duration_ms=duration_ms,
            error_message=message,
        )]
    return [
        TestResult(
            test_name=tf.filename,
            requirement_ids=list(tf.requirement_ids),
            status=status,
            duration_ms=duration_ms,
            stdout=_truncate(stdout),
            stderr=_truncate(stderr),
            error_message=message,
        )
        for tf in test_files
    ]
