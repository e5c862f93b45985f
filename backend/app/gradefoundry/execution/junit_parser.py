"""GradeFoundry - JUnit XML Parser

解析测试框架写入 /output 的 JUnit XML 报告，提取逐用例结果与耗时。

支持格式：
- 单 <testsuite> 格式
- 多 <testsuites> 包装格式
- pytest / vitest 生成的 JUnit XML

报告缺失、截断或无法解析时返回空列表，由调用方回退到标准输出解析。
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, TypedDict

logger = logging.getLogger(__name__)


class JUnitCase(TypedDict):
    """单个 <testcase>"""
    classname: str
    name: str
    file: Optional[str]
    time_ms: int
    outcome: str  # passed | failure | error | skipped
    message: Optional[str]
    details: Optional[str]


def parse_junit_xml(path: Path | str) -> list[JUnitCase]:
    """解析 JUnit XML 文件"""
    path = Path(path)

    if not path.exists():
        logger.debug(f"JUnit XML file not found: {path}")
        return []

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to read JUnit XML {path}: {e}")
        return []
    return parse_junit_xml_content(content)


def parse_junit_xml_content(content: str) -> list[JUnitCase]:
    """解析 JUnit XML 内容字符串"""
    if not content.strip():
        return []

    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        logger.warning(f"JUnit XML parse error, ignoring report: {e}")
        return []

    cases: list[JUnitCase] = []
    for elem in root.iter("testcase"):
        outcome = "passed"
        message = None
        details = None
        for tag in ("failure", "error", "skipped"):
            child = elem.find(tag)
            if child is not None:
                outcome = tag
                message = child.get("message")
                details = (child.text or "").strip() or None
                break
        cases.append(JUnitCase(
            classname=elem.get("classname", ""),
            name=elem.get("name", ""),
            file=elem.get("file"),
            time_ms=_time_ms(elem.get("time")),
            outcome=outcome,
            message=message,
            details=details,
        ))
    return cases


def _time_ms(value: Optional[str]) -> int:
    """秒 → 毫秒；缺失或非法返回 0"""
    if value is None:
        return 0
    try:
        return int(round(max(0.0, float(value)) * 1000))
    except ValueError:
        return 0
