"""GradeFoundry - Language Breakdown

按文件扩展名统计提交代码各语言的行数，并推断实现语言。
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Union

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "python"

EXTENSION_LANGUAGES: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".swift": "swift",
}

# 平局时的优先顺序
TIE_BREAK_ORDER = ("python", "typescript", "javascript")

SKIP_DIRS = frozenset({
    ".git", ".hg", ".svn",
    "node_modules", "vendor", "bower_components",
    "__pycache__", ".venv", "venv", "env", ".tox", ".mypy_cache", ".pytest_cache",
    "dist", "build", ".next", "out", "target", "coverage",
})


def _count_lines(path: Path) -> int:
    try:
        with open(path, "rb") as f:
            return sum(1 for _ in f)
    except OSError as e:
        logger.debug(f"跳过无法读取的文件 {path}: {e}")
        return 0


def compute_language_breakdown(path: Union[str, Path]) -> dict[str, int]:
    """统计目录下各语言的源代码行数

    跳过版本控制、依赖和构建产物目录。
    """
    root = Path(path)
    breakdown: dict[str, int] = {}
    if not root.is_dir():
        logger.warning(f"提交目录不存在: {root}")
        return breakdown

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
        for filename in filenames:
            language = EXTENSION_LANGUAGES.get(Path(filename).suffix.lower())
            if language is None:
                continue
            lines = _count_lines(Path(dirpath) / filename)
            if lines:
                breakdown[language] = breakdown.get(language, 0) + lines

    return breakdown


def detect_language(breakdown: Mapping[str, int]) -> str:
    """推断实现语言：行数最多者胜出，平局按 python > typescript > javascript"""
    counts = {lang: n for lang, n in breakdown.items() if n > 0}
    if not counts:
        return DEFAULT_LANGUAGE

    def rank(lang: str) -> tuple[int, int]:
        try:
            preference = len(TIE_BREAK_ORDER) - TIE_BREAK_ORDER.index(lang)
        except ValueError:
            preference = 0
        return counts[lang], preference

    return max(sorted(counts), key=rank)
