"""GradeFoundry - CLI Tests

extract / generate / run / grade 命令（生成模型与沙箱后端替换为替身）。
"""
import copy
import json
from unittest.mock import patch

from typer.testing import CliRunner

from gradefoundry.cli import app
from gradefoundry.execution.runner import SandboxExecutor

from pipeline_fakes import (
    HEALTH_PASS_STDOUT,
    HEALTH_PROMPT,
    HEALTH_SPEC_PAYLOAD,
    HEALTH_SUITE_PAYLOAD,
    FakeBackend,
    ScriptedGenerator,
)

runner = CliRunner()


def _fake_executor_factory(work_dir, backend):
    def factory(policy=None, **_):
        return SandboxExecutor(backend=backend, policy=policy, work_dir=str(work_dir))
    return factory


def _write_prompt(tmp_path):
    path = tmp_path / "prompt.txt"
    path.write_text(HEALTH_PROMPT, encoding="utf-8")
    return path


def test_extract_writes_spec(tmp_path):
    prompt_file = _write_prompt(tmp_path)
    out = tmp_path / "spec.json"
    generator = ScriptedGenerator([copy.deepcopy(HEALTH_SPEC_PAYLOAD)])

    with patch("gradefoundry.services.ai_service.AIService", return_value=generator):
        result = runner.invoke(app, ["extract", str(prompt_file), "--out", str(out)])

    assert result.exit_code == 0, result.output
    spec = json.loads(out.read_text(encoding="utf-8"))
    assert spec["requirements"][0]["id"] == "REQ-001"
    assert spec["metadata"]["generating_model"] == "fake-model"


def test_extract_missing_prompt_file(tmp_path):
    result = runner.invoke(app, ["extract", str(tmp_path / "missing.txt")])

    assert result.exit_code == 1
    assert "file not found" in result.output


def test_extract_failure_exit_code(tmp_path):
    prompt_file = _write_prompt(tmp_path)
    generator = ScriptedGenerator(["bad", "bad", "bad"])

    with patch("gradefoundry.services.ai_service.AIService", return_value=generator):
        result = runner.invoke(app, ["extract", str(prompt_file)])

    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_generate_and_run(tmp_path, submission_dir):
    spec_file = tmp_path / "spec.json"
    suite_file = tmp_path / "suite.json"
    scores_file = tmp_path / "scores.json"
    generator = ScriptedGenerator([copy.deepcopy(HEALTH_SPEC_PAYLOAD), copy.deepcopy(HEALTH_SUITE_PAYLOAD)])
    work_dir = tmp_path / "cli-work"
    work_dir.mkdir()
    backend = FakeBackend(stdout=HEALTH_PASS_STDOUT)

    with patch("gradefoundry.services.ai_service.AIService", return_value=generator):
        assert runner.invoke(app, ["extract", str(_write_prompt(tmp_path)), "--out", str(spec_file)]).exit_code == 0
        result = runner.invoke(app, [
            "generate", str(spec_file), "--submission", str(submission_dir), "--out", str(suite_file),
        ])
    assert result.exit_code == 0, result.output
    suite = json.loads(suite_file.read_text(encoding="utf-8"))
    assert suite["language"] == "python"
    assert suite["framework"] == "pytest"

    with patch("gradefoundry.execution.runner.SandboxExecutor", _fake_executor_factory(work_dir, backend)):
        result = runner.invoke(app, [
            "run", str(suite_file), str(spec_file), str(submission_dir), "--out", str(scores_file),
        ])

    assert result.exit_code == 0, result.output
    assert "REQ-001" in result.output
    report = json.loads(scores_file.read_text(encoding="utf-8"))
    assert report["overall_score"]["percentage"] == 100.0
    assert report["requirement_scores"][0]["status"] == "pass"
    assert backend.environments == [("python", "pytest")]


def test_grade_whole_pipeline(tmp_path, submission_dir):
    out = tmp_path / "grade.json"
    generator = ScriptedGenerator([copy.deepcopy(HEALTH_SPEC_PAYLOAD), copy.deepcopy(HEALTH_SUITE_PAYLOAD)])
    work_dir = tmp_path / "cli-work"
    work_dir.mkdir()
    factory = _fake_executor_factory(work_dir, FakeBackend(stdout=HEALTH_PASS_STDOUT))

    with patch("gradefoundry.services.ai_service.AIService", return_value=generator), \
            patch("gradefoundry.services.pipeline_service.SandboxExecutor", factory):
        result = runner.invoke(app, ["grade", str(_write_prompt(tmp_path)), str(submission_dir), "--out", str(out)])

    assert result.exit_code == 0, result.output
    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["requirement_spec"]["requirements"][0]["id"] == "REQ-001"
    assert report["test_suite"]["test_files"][0]["filename"] == "test_health.py"
    assert report["overall_score"]["requirements_met"] == 1
    assert list(work_dir.iterdir()) == []


def test_grade_missing_submission(tmp_path):
    result = runner.invoke(app, ["grade", str(_write_prompt(tmp_path)), str(tmp_path / "nope")])

    assert result.exit_code == 1
    assert "submission dir not found" in result.output
