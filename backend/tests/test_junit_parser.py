"""Tests for JUnit XML Parser

验证 JUnit XML 逐用例解析（结果、耗时、失败信息）。
"""

from pathlib import Path

from gradefoundry.execution.junit_parser import (
    parse_junit_xml,
    parse_junit_xml_content,
)


class TestParseJunitCases:
    """逐用例解析测试"""

    def test_pytest_format(self):
        """pytest 实际生成的格式"""
        content = '''<?xml version="1.0" encoding="utf-8"?>
<testsuites>
    <testsuite name="pytest" errors="1" failures="1" skipped="1" tests="4" time="0.051"
               timestamp="2024-01-01T00:00:00.000000" hostname="localhost">
        <testcase classname="test_sample" name="test_passing" time="0.012"/>
        <testcase classname="test_sample" name="test_failing" time="0.020">
            <failure message="assert 1 == 2">def test_failing():
&gt;       assert 1 == 2
E       assert 1 == 2</failure>
        </testcase>
        <testcase classname="test_sample.TestClass" name="test_broken" time="0.001">
            <error message="fixture 'db' not found"/>
        </testcase>
        <testcase classname="test_sample" name="test_skipped" time="0.000">
            <skipped message="not ready"/>
        </testcase>
    </testsuite>
</testsuites>'''

        cases = {c["name"]: c for c in parse_junit_xml_content(content)}

        assert len(cases) == 4
        assert cases["test_passing"]["outcome"] == "passed"
        assert cases["test_passing"]["time_ms"] == 12
        assert cases["test_passing"]["message"] is None

        assert cases["test_failing"]["outcome"] == "failure"
        assert cases["test_failing"]["message"] == "assert 1 == 2"
        assert "E       assert 1 == 2" in cases["test_failing"]["details"]

        assert cases["test_broken"]["outcome"] == "error"
        assert cases["test_broken"]["classname"] == "test_sample.TestClass"
        assert cases["test_broken"]["details"] is None

        assert cases["test_skipped"]["outcome"] == "skipped"

    def test_vitest_format(self):
        """vitest junit reporter 的格式（name 保留 describe 链）"""
        content = '''<?xml version="1.0" encoding="UTF-8" ?>
<testsuites name="vitest tests" tests="2" failures="1" errors="0" time="0.31">
    <testsuite name="health.test.ts" timestamp="2024-01-01T00:00:00" hostname="box" tests="2" failures="1" errors="0" skipped="0" time="0.31">
        <testcase classname="health.test.ts" name="GET /health &gt; returns ok" time="0.004">
        </testcase>
        <testcase classname="health.test.ts" name="GET /health &gt; rejects POST" time="0.0123">
            <failure message="expected 200 to be 405" type="AssertionError">AssertionError: expected 200 to be 405</failure>
        </testcase>
    </testsuite>
</testsuites>'''

        cases = parse_junit_xml_content(content)

        assert [c["name"] for c in cases] == ["GET /health > returns ok", "GET /health > rejects POST"]
        assert cases[0]["time_ms"] == 4
        assert cases[1]["time_ms"] == 12
        assert cases[1]["outcome"] == "failure"
        assert cases[1]["message"] == "expected 200 to be 405"

    def test_single_testsuite_root(self):
        content = '<testsuite tests="1"><testcase classname="t" name="test_x" file="t.py" time="0.5"/></testsuite>'

        cases = parse_junit_xml_content(content)

        assert cases[0]["file"] == "t.py"
        assert cases[0]["time_ms"] == 500

    def test_negative_or_invalid_time(self):
        content = (
            '<testsuite tests="2">'
            '<testcase classname="t" name="test_x" time="-1"/>'
            '<testcase classname="t" name="test_y" time="abc"/>'
            '<testcase classname="t" name="test_z"/>'
            '</testsuite>'
        )

        cases = parse_junit_xml_content(content)

        assert [c["time_ms"] for c in cases] == [0, 0, 0]


class TestUnusableReports:
    """无法使用的报告返回空列表"""

    def test_empty_content(self):
        assert parse_junit_xml_content("") == []

    def test_truncated_xml(self):
        """容器被杀时报告可能只写了一半"""
        content = '<testsuite tests="5" failures="2"><testcase name="test_a"'

        assert parse_junit_xml_content(content) == []

    def test_parse_from_file(self, tmp_path: Path):
        path = tmp_path / "junit.xml"
        path.write_text(
            '<?xml version="1.0" encoding="utf-8"?>\n'
            '<testsuite tests="1"><testcase classname="t" name="test_a" time="0.123"/></testsuite>',
            encoding="utf-8",
        )

        cases = parse_junit_xml(path)

        assert [c["name"] for c in cases] == ["test_a"]
        assert cases[0]["time_ms"] == 123

    def test_nonexistent_file(self):
        assert parse_junit_xml(Path("/nonexistent/junit.xml")) == []
