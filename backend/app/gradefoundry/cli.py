from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional, NoReturn

import typer
from rich import print
from rich.console import Console
from rich.table import Table

from gradefoundry.core.errors import GradeFoundryError
from gradefoundry.governance.policy_loader import get_policy
from gradefoundry.logging_config import setup_logging
from gradefoundry.models.requirement_schemas import RequirementSpec
from gradefoundry.models.run_schemas import OverallScore, RequirementScore
from gradefoundry.models.testsuite_schemas import GeneratedTestSuite

app = typer.Typer(add_completion=False, help="GradeFoundry CLI")


# ============================================================
# 小工具：日志
# ============================================================
def _info(msg: str) -> None:
    print(f"[cyan][GF][/cyan] {msg}")


def _ok(msg: str) -> None:
    print(f"[green][GF][OK][/green] {msg}")


def _fail(msg: str, code: int = 1) -> NoReturn:
    """统一失败出口：打印 FAIL 信息并抛出 typer.Exit(code)"""
    print(f"[red][GF][FAIL][/red] {msg}")
    raise typer.Exit(code)


def _read_text(path: Path) -> str:
    if not path.exists():
        _fail(f"file not found: {path}")
    return path.read_text(encoding="utf-8")


def _read_json(path: Path) -> Any:
    try:
        return json.loads(_read_text(path))
    except json.JSONDecodeError as e:
        _fail(f"invalid JSON in {path}: {e}")


def _write_json_file(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")


def _emit(obj: Any, out: Optional[Path]) -> None:
    if out is None:
        Console().print_json(data=obj)
    else:
        _write_json_file(out, obj)
        _ok(f"wrote {out}")


def _print_scores(scores: list[RequirementScore], overall: OverallScore) -> None:
    table = Table(title="Requirement scores")
    table.add_column("Requirement")
    table.add_column("Status")
    table.add_column("Passing", justify="right")
    table.add_column("Weight", justify="right")
    colors = {"pass": "green", "partial": "yellow", "fail": "red", "untested": "dim"}
    for s in scores:
        color = colors.get(s.status.value, "white")
        table.add_row(
            s.requirement_id,
            f"[{color}]{s.status.value}[/{color}]",
            f"{s.passing_tests}/{s.total_tests}",
            str(s.weight),
        )
    Console().print(table)
    _info(
        f"requirements met {overall.requirements_met}/{overall.total_requirements} | "
        f"percentage {overall.percentage} | weighted {overall.weighted_score} | "
        f"confidence {overall.confidence_score}"
    )


# ============================================================
# 命令
# ============================================================
@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show pipeline logs")):
    """GradeFoundry CLI"""
    # CLI 只输出到终端，默认仅显示 WARNING 以上
    setup_logging(level="DEBUG" if verbose else "WARNING", to_file=False)


@app.command()
def serve(host: str = "127.0.0.1", port: int = 8000, reload: bool = False):
    """Run FastAPI server."""
    import uvicorn

    uvicorn.run("gradefoundry.main:app", host=host, port=port, reload=reload)


@app.command("init-db")
def init_db_command():
    """Create database tables."""
    from gradefoundry.database.config import DATABASE_URL, init_db

    init_db()
    _ok(f"tables created ({DATABASE_URL})")


@app.command()
def extract(
    prompt_file: Path = typer.Argument(..., help="Project prompt (text file)"),
    out: Optional[Path] = typer.Option(None, help="Output JSON file"),
):
    """Extract a requirement spec from a project prompt."""
    from gradefoundry.services.ai_service import AIService
    from gradefoundry.services.requirements import RequirementExtractor, post_process_requirements

    prompt = _read_text(prompt_file)
    try:
        result = asyncio.run(RequirementExtractor(AIService(), get_policy().extraction).extract(prompt))
    except GradeFoundryError as e:
        _fail(str(e))

    spec = post_process_requirements(result.spec)
    _info(f"{len(spec.requirements)} requirement(s), attempts={result.attempts}, repaired={result.repaired}")
    _emit(spec.model_dump(mode="json"), out)


@app.command()
def generate(
    spec_json: Path = typer.Argument(..., help="Requirement spec JSON (output of `extract`)"),
    language: Optional[str] = typer.Option(None, help="Target language"),
    framework: Optional[str] = typer.Option(None, help="Test framework"),
    submission: Optional[Path] = typer.Option(None, help="Submission dir used to infer the language"),
    out: Optional[Path] = typer.Option(None, help="Output JSON file"),
):
    """Generate a test suite from a requirement spec."""
    from gradefoundry.services.ai_service import AIService
    from gradefoundry.services.analysis import compute_language_breakdown
    from gradefoundry.services.generation import TestSuiteGenerator

    spec = RequirementSpec.model_validate(_read_json(spec_json))
    breakdown = compute_language_breakdown(submission) if submission and not language else None
    try:
        suite = asyncio.run(
            TestSuiteGenerator(AIService(), get_policy().generation).generate(
                spec, language, framework, language_breakdown=breakdown
            )
        )
    except GradeFoundryError as e:
        _fail(str(e))

    _info(f"{len(suite.test_files)} file(s), {suite.language}/{suite.framework}, hygiene={suite.metadata.hygiene_status.value}")
    _emit(suite.model_dump(mode="json"), out)


@app.command()
def run(
    suite_json: Path = typer.Argument(..., help="Test suite JSON (output of `generate`)"),
    spec_json: Path = typer.Argument(..., help="Requirement spec JSON"),
    submission_dir: Path = typer.Argument(..., help="Submission directory (mounted read-only)"),
    out: Optional[Path] = typer.Option(None, help="Output JSON file"),
):
    """Execute a test suite in the sandbox and score it."""
    from gradefoundry.execution.runner import SandboxExecutor
    from gradefoundry.services.pipeline_service import score_run

    suite = GeneratedTestSuite.model_validate(_read_json(suite_json))
    spec = RequirementSpec.model_validate(_read_json(spec_json))
    policy = get_policy()
    try:
        results = asyncio.run(
            SandboxExecutor(policy=policy.sandbox).run(
                suite.test_files, submission_dir, suite.language, suite.framework
            )
        )
    except GradeFoundryError as e:
        _fail(str(e))

    scores, overall = score_run(results, spec, suite, policy)
    _print_scores(scores, overall)
    if out is not None:
        _write_json_file(out, {
            "results": results.model_dump(mode="json"),
            "requirement_scores": [s.model_dump(mode="json") for s in scores],
            "overall_score": overall.model_dump(mode="json"),
        })
        _ok(f"wrote {out}")


@app.command()
def grade(
    prompt_file: Path = typer.Argument(..., help="Project prompt (text file)"),
    submission_dir: Path = typer.Argument(..., help="Submission directory"),
    language: Optional[str] = typer.Option(None, help="Target language"),
    framework: Optional[str] = typer.Option(None, help="Test framework"),
    out: Optional[Path] = typer.Option(None, help="Output JSON file"),
):
    """Run the whole pipeline (no database) and print a score table."""
    from gradefoundry.services.ai_service import AIService
    from gradefoundry.services.pipeline_service import grade_submission

    prompt = _read_text(prompt_file)
    if not submission_dir.is_dir():
        _fail(f"submission dir not found: {submission_dir}")

    try:
        report = asyncio.run(grade_submission(
            prompt, submission_dir, generator=AIService(), language=language, framework=framework,
        ))
    except GradeFoundryError as e:
        _fail(str(e))

    _print_scores(report.requirement_scores, report.overall_score)
    if out is not None:
        _write_json_file(out, {
            "requirement_spec": report.extraction.spec.model_dump(mode="json"),
            "test_suite": report.suite.model_dump(mode="json"),
            "results": report.results.model_dump(mode="json"),
            "requirement_scores": [s.model_dump(mode="json") for s in report.requirement_scores],
            "overall_score": report.overall_score.model_dump(mode="json"),
        })
        _ok(f"wrote {out}")


if __name__ == "__main__":
    app()
