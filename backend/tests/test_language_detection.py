"""GradeFoundry - Language Breakdown Tests"""
from gradefoundry.services.analysis import compute_language_breakdown, detect_language
from gradefoundry.services.generation.frameworks import get_framework, select_test_framework


def _write(path, lines: int):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("x = 1\n" * lines, encoding="utf-8")


class TestComputeLanguageBreakdown:

    def test_counts_lines_per_language(self, tmp_path):
        _write(tmp_path / "app.py", 10)
        _write(tmp_path / "pkg" / "util.py", 5)
        _write(tmp_path / "web" / "index.ts", 7)
        _write(tmp_path / "README.md", 100)

        assert compute_language_breakdown(tmp_path) == {"python": 15, "typescript": 7}

    def test_skips_dependency_dirs(self, tmp_path):
        _write(tmp_path / "index.js", 3)
        _write(tmp_path / "node_modules" / "lib" / "huge.js", 5000)
        _write(tmp_path / ".venv" / "site.py", 5000)

        assert compute_language_breakdown(tmp_path) == {"javascript": 3}

    def test_missing_directory(self, tmp_path):
        assert compute_language_breakdown(tmp_path / "missing") == {}


class TestDetectLanguage:

    def test_most_lines_wins(self):
        assert detect_language({"python": 10, "javascript": 400}) == "javascript"

    def test_empty_defaults_to_python(self):
        assert detect_language({}) == "python"
        assert detect_language({"go": 0}) == "python"

    def test_tie_prefers_python(self):
        assert detect_language({"javascript": 50, "python": 50, "typescript": 50}) == "python"

    def test_tie_prefers_typescript_over_javascript(self):
        assert detect_language({"javascript": 50, "typescript": 50}) == "typescript"

    def test_unranked_language(self):
        assert detect_language({"go": 80, "python": 20}) == "go"


class TestSelectTestFramework:

    def test_known_languages(self):
        assert select_test_framework("python") == "pytest"
        assert select_test_framework("TypeScript") == "vitest"
        assert select_test_framework("javascript") == "vitest"

    def test_unknown_language_defaults_to_pytest(self):
        assert select_test_framework("cobol") == "pytest"
        assert get_framework("unknown").name == "pytest"
