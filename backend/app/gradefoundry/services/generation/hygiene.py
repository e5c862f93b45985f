"""GradeFoundry - Test Hygiene Check

生成测试代码的静态卫生检查（不调用生成模型）:
(a) 每个测试文件至少映射一个需求 ID（显式字段或源码内标记）
(b) 语言相应的结构标记（import/require 语句 + 可识别的测试声明）
(c) 最小内容长度
另外拒绝不安全的文件名（绝对路径、路径穿越）。
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable, Optional

from gradefoundry.models.testsuite_schemas import TestFile

logger = logging.getLogger(__name__)

_REQUIREMENT_MARKER_RE = re.compile(r"@requirement\s+(REQ-\d{3})", re.IGNORECASE)
_REQUIREMENT_TOKEN_RE = re.compile(r"\bREQ-\d{3}\b", re.IGNORECASE)


@dataclass(frozen=True)
class LanguageMarkers:
    import_pattern: re.Pattern
    test_pattern: re.Pattern
    import_hint: str
    test_hint: str


LANGUAGE_MARKERS: dict[str, LanguageMarkers] = {
    "python": LanguageMarkers(
        import_pattern=re.compile(r"^\s*(?:import|from)\s+\w", re.MULTILINE),
        test_pattern=re.compile(r"^\s*(?:async\s+)?def\s+test_\w*\s*\(", re.MULTILINE),
        import_hint="missing import statement",
        test_hint="has no test functions (def test_*)",
    ),
    "javascript": LanguageMarkers(
        import_pattern=re.compile(r"^\s*import\s|\brequire\s*\(", re.MULTILINE),
        test_pattern=re.compile(r"\b(?:it|test)(?:\.\w+)?\s*\("),
        import_hint="missing import/require statement",
        test_hint="has no test cases (it/test)",
    ),
}
LANGUAGE_MARKERS["typescript"] = LANGUAGE_MARKERS["javascript"]


@dataclass
class HygieneReport:
    """卫生检查报告"""
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def extract_requirement_ids_from_test(content: str) -> list[str]:
    """从测试源码中提取需求 ID（@requirement 标记优先，其次裸 REQ-### 标记），保序去重"""
    ids: list[str] = []
    for pattern in (_REQUIREMENT_MARKER_RE, _REQUIREMENT_TOKEN_RE):
        for match in pattern.finditer(content):
            req_id = (match.group(1) if match.groups() else match.group(0)).upper()
            if req_id not in ids:
                ids.append(req_id)
    return ids


def resolve_requirement_ids(
    test_file: TestFile,
    known_ids: Optional[Iterable[str]] = None,
) -> list[str]:
    """确定测试文件映射的需求 ID

    显式字段优先；为空时回落到源码标记。给定 known_ids 时过滤掉规格外的 ID。
    """
    known = set(known_ids) if known_ids is not None else None

    def keep(ids: Iterable[str]) -> list[str]:
        result: list[str] = []
        for req_id in ids:
            req_id = req_id.strip().upper()
            if known is not None and req_id not in known:
                continue
            if req_id not in result:
                result.append(req_id)
        return result

    explicit = keep(test_file.requirement_ids)
    if explicit:
        return explicit
    return keep(extract_requirement_ids_from_test(test_file.content))


def is_safe_filename(filename: str) -> bool:
    """文件名必须是不含 .. 的相对路径"""
    if not filename or "\\" in filename:
        return False
    path = PurePosixPath(filename)
    return not path.is_absolute() and ".." not in path.parts


def run_test_hygiene(
    test_files: list[TestFile],
    language: str,
    *,
    min_content_length: int = 50,
    known_ids: Optional[Iterable[str]] = None,
) -> HygieneReport:
    """执行卫生检查，收集全部违规项"""
    report = HygieneReport()
    known = list(known_ids) if known_ids is not None else None
    markers = LANGUAGE_MARKERS.get(language.lower())

    for tf in test_files:
        name = tf.filename

        if not is_safe_filename(name):
            report.errors.append(f"Test file {name} has an unsafe filename")

        if not resolve_requirement_ids(tf, known):
            report.errors.append(f"Test file {name} has no requirement IDs mapped")

        if markers is not None:
            if not markers.import_pattern.search(tf.content):
                report.errors.append(f"Test file {name} {markers.import_hint}")
            if not markers.test_pattern.search(tf.content):
                report.errors.append(f"Test file {name} {markers.test_hint}")

        if len(tf.content) < min_content_length:
            report.errors.append(f"Test file {name} seems too short to be valid")

    if report.errors:
        logger.info(f"Hygiene check found {len(report.errors)} violation(s) in {len(test_files)} file(s)")
    return report
