"""GradeFoundry - Test Framework Table

语言 → 测试框架映射，以及每个框架的运行环境描述：
Dockerfile、容器内命令、写入测试目录的配置文件、输出解析模式。

容器内目录约定:
- /submission  提交代码（只读）
- /tests       生成的测试文件（只读）
- /output      可写输出目录（JUnit XML）
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from gradefoundry.models.run_schemas import TestStatus

SUBMISSION_MOUNT = "/submission"
TESTS_MOUNT = "/tests"
OUTPUT_MOUNT = "/output"
JUNIT_FILENAME = "junit.xml"

DEFAULT_FRAMEWORK = "pytest"


@dataclass(frozen=True)
class FrameworkSpec:
    """测试框架运行描述"""
    name: str
    base_language: str
    dockerfile: str
    command: tuple[str, ...]
    config_templates: dict[str, str] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    # 输出行模式，需包含 file / name / status 三个命名分组
    result_pattern: Optional[re.Pattern] = None
    # status 分组取值 → 结果状态；None 表示丢弃（如 skipped）
    status_map: dict[str, Optional[TestStatus]] = field(default_factory=dict)
    name_separator: str = "::"

    def render_config_files(self, timeout_s: int) -> dict[str, str]:
        """渲染写入测试目录的配置文件"""
        return {
            filename: template.format(timeout=timeout_s, timeout_ms=timeout_s * 1000)
            for filename, template in self.config_templates.items()
        }


PYTEST = FrameworkSpec(
    name="pytest",
    base_language="python",
    dockerfile="""FROM python:3.11-slim
RUN pip install --no-cache-dir pytest pytest-timeout hypothesis requests httpx
WORKDIR /submission
""",
    command=(
        "python", "-m", "pytest", TESTS_MOUNT,
        "-v", "--tb=short",
        "-p", "no:cacheprovider",
        f"--rootdir={TESTS_MOUNT}",
        "-c", f"{TESTS_MOUNT}/pytest.ini",
        f"--junitxml={OUTPUT_MOUNT}/{JUNIT_FILENAME}",
    ),
    config_templates={
        "pytest.ini": "[pytest]\ntimeout = {timeout}\ntimeout_method = thread\n",
    },
    dependencies=("pytest", "pytest-timeout"),
    env={
        "PYTHONPATH": SUBMISSION_MOUNT,
        "PYTHONUNBUFFERED": "1",
        "PYTHONDONTWRITEBYTECODE": "1",
    },
    # 例: test_health.py::test_returns_ok PASSED [100%]
    result_pattern=re.compile(
        r"^(?P<file>[\w./-]+\.py)::(?P<name>\S+)\s+(?P<status>PASSED|FAILED|ERROR|SKIPPED|XFAIL|XPASS)\b",
        re.MULTILINE,
    ),
    status_map={
        "PASSED": TestStatus.PASS,
        "FAILED": TestStatus.FAIL,
        "ERROR": TestStatus.ERROR,
        "SKIPPED": None,
        "XFAIL": None,
        "XPASS": None,
    },
    name_separator="::",
)

VITEST = FrameworkSpec(
    name="vitest",
    base_language="javascript",
    dockerfile="""FROM node:20-slim
WORKDIR /
RUN npm install --no-save --no-package-lock vitest@1
WORKDIR /submission
""",
    command=(
        "/node_modules/.bin/vitest", "run",
        "--root", TESTS_MOUNT,
        "--config", f"{TESTS_MOUNT}/vitest.config.mjs",
        "--reporter=verbose",
        "--reporter=junit",
        f"--outputFile.junit={OUTPUT_MOUNT}/{JUNIT_FILENAME}",
    ),
    config_templates={
        "vitest.config.mjs": (
            "export default {{\n"
            "  cacheDir: '/tmp/.vite',\n"
            "  test: {{ testTimeout: {timeout_ms}, watch: false }},\n"
            "}};\n"
        ),
    },
    dependencies=("vitest",),
    env={"CI": "true", "NODE_PATH": "/node_modules"},
    # 例: ✓ health.test.ts > GET /health > returns ok 3ms
    result_pattern=re.compile(
        r"^\s*(?P<status>[✓√×✗↓])\s+(?P<file>\S+\.(?:test|spec)\.[cm]?[jt]sx?)\s+>\s+"
        r"(?P<name>.+?)(?:\s+\d+(?:\.\d+)?\s*ms)?\s*$",
        re.MULTILINE,
    ),
    status_map={
        "✓": TestStatus.PASS,
        "√": TestStatus.PASS,
        "×": TestStatus.FAIL,
        "✗": TestStatus.FAIL,
        "↓": None,
    },
    name_separator=" > ",
)

FRAMEWORKS: dict[str, FrameworkSpec] = {
    PYTEST.name: PYTEST,
    VITEST.name: VITEST,
}

LANGUAGE_FRAMEWORKS: dict[str, str] = {
    "python": "pytest",
    "javascript": "vitest",
    "typescript": "vitest",
}


def select_test_framework(language: str) -> str:
    """语言 → 测试框架（未知语言回落到 pytest）"""
    return LANGUAGE_FRAMEWORKS.get(language.lower(), DEFAULT_FRAMEWORK)


def get_framework(name: str) -> FrameworkSpec:
    """按名称获取框架描述（未知框架回落到 pytest）"""
    return FRAMEWORKS.get(name.lower(), FRAMEWORKS[DEFAULT_FRAMEWORK])
