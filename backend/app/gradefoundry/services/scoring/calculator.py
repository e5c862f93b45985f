"""GradeFoundry - Scoring Calculator

纯函数：测试结果 → 需求得分 → 整体得分 / 置信度。无 I/O，不调用生成模型。
"""
from __future__ import annotations

import logging
from typing import Sequence

from gradefoundry.models.requirement_schemas import Requirement, RequirementType
from gradefoundry.models.run_schemas import (
    FailureAnalysis,
    OverallScore,
    RequirementScore,
    RequirementStatus,
    TestResult,
    TestStatus,
    TypeBreakdown,
)
from gradefoundry.models.testsuite_schemas import GeneratedTestSuite

logger = logging.getLogger(__name__)

DEFAULT_PARTIAL_CREDIT = 0.5

# 置信度启发式参数
CONFIDENCE_BASE = 50
MULTI_TEST_BONUS = 2
MULTI_TEST_BONUS_CAP = 20
NEGATIVE_TEST_BONUS = 15
PROPERTY_TEST_BONUS = 10
SINGLE_TEST_PENALTY = 20
SINGLE_TEST_RATIO_LIMIT = 0.3
UNTESTED_PENALTY = 15

NEGATIVE_TEST_MARKERS = ("negative", "error", "invalid", "boundary")
PROPERTY_TEST_MARKERS = ("hypothesis", "@given", "property")


def score_requirements(
    results: Sequence[TestResult],
    requirements: Sequence[Requirement],
    pass_threshold: float = 1.0,
) -> list[RequirementScore]:
    """计算每个需求的状态

    - 没有关联测试 → untested
    - 通过率 ≥ 阈值 → pass
    - 有通过但低于阈值 → partial
    - 全部未通过 → fail
    """
    known = {req.id for req in requirements}
    for result in results:
        orphan = [rid for rid in result.requirement_ids if rid not in known]
        if orphan:
            logger.debug(f"测试 {result.test_name} 引用了规格外的需求 {orphan}，评分时忽略")

    scores: list[RequirementScore] = []
    for req in requirements:
        relevant = [r for r in results if req.id in r.requirement_ids]
        passing = sum(1 for r in relevant if r.status == TestStatus.PASS)
        total = len(relevant)

        if total == 0:
            status = RequirementStatus.UNTESTED
        elif passing / total >= pass_threshold:
            status = RequirementStatus.PASS
        elif passing > 0:
            status = RequirementStatus.PARTIAL
        else:
            status = RequirementStatus.FAIL

        scores.append(RequirementScore(
            requirement_id=req.id,
            status=status,
            passing_tests=passing,
            total_tests=total,
            failing_tests=[r for r in relevant if r.status != TestStatus.PASS],
            weight=req.weight,
        ))
    return scores


def score_overall(
    scores: Sequence[RequirementScore],
    requirements: Sequence[Requirement],
    partial_credit: float = DEFAULT_PARTIAL_CREDIT,
) -> OverallScore:
    """整体得分（confidence_score 留空，由 score_confidence 单独计算）"""
    total_requirements = len(requirements)
    passed = sum(1 for s in scores if s.status == RequirementStatus.PASS)
    percentage = passed / total_requirements * 100 if total_requirements else 0.0

    total_weight = 0.0
    weighted_sum = 0.0
    for s in scores:
        total_weight += s.weight
        if s.status == RequirementStatus.PASS:
            weighted_sum += s.weight
        elif s.status == RequirementStatus.PARTIAL:
            weighted_sum += s.weight * partial_credit
    weighted = weighted_sum / total_weight * 100 if total_weight else 0.0

    by_id = {s.requirement_id: s for s in scores}
    breakdown = {t.value: TypeBreakdown() for t in RequirementType}
    for req in requirements:
        bucket = breakdown[req.type.value]
        bucket.total += 1
        score = by_id.get(req.id)
        if score is not None and score.status == RequirementStatus.PASS:
            bucket.passed += 1

    return OverallScore(
        requirements_met=passed,
        total_requirements=total_requirements,
        percentage=_clamp_percent(percentage),
        weighted_score=_clamp_percent(weighted),
        breakdown=breakdown,
    )


def score_confidence(scores: Sequence[RequirementScore], suite: GeneratedTestSuite) -> float:
    """置信度（0-100 的启发式信号，不是统计置信区间）"""
    confidence = CONFIDENCE_BASE

    multi = sum(1 for s in scores if s.total_tests >= 2)
    confidence += min(multi * MULTI_TEST_BONUS, MULTI_TEST_BONUS_CAP)

    contents = [tf.content for tf in suite.test_files]
    if any(marker in content.lower() for content in contents for marker in NEGATIVE_TEST_MARKERS):
        confidence += NEGATIVE_TEST_BONUS
    if any(marker in content for content in contents for marker in PROPERTY_TEST_MARKERS):
        confidence += PROPERTY_TEST_BONUS

    if scores:
        single = sum(1 for s in scores if s.total_tests == 1)
        if single / len(scores) > SINGLE_TEST_RATIO_LIMIT:
            confidence -= SINGLE_TEST_PENALTY

    if any(s.status == RequirementStatus.UNTESTED for s in scores):
        confidence -= UNTESTED_PENALTY

    return float(max(0, min(100, round(confidence))))


def generate_failure_analysis(
    scores: Sequence[RequirementScore],
    requirements: Sequence[Requirement],
) -> list[FailureAnalysis]:
    """对 fail/partial 需求给出失败测试与建议"""
    by_id = {req.id: req for req in requirements}
    analysis: list[FailureAnalysis] = []

    for score in scores:
        if score.status not in (RequirementStatus.FAIL, RequirementStatus.PARTIAL):
            continue
        requirement = by_id.get(score.requirement_id)
        suggestions: list[str] = []

        for test in score.failing_tests:
            if test.status == TestStatus.ERROR:
                suggestions.append(f'Test "{test.test_name}" errored: {test.error_message or "Unknown error"}')
            elif test.status == TestStatus.TIMEOUT:
                suggestions.append(f'Test "{test.test_name}" timed out - check for infinite loops or slow operations')
            elif test.error_message:
                suggestions.append(f'Test "{test.test_name}" failed: {test.error_message}')

        if requirement is not None:
            if requirement.type == RequirementType.IO:
                suggestions.append("Check input/output format and data validation")
            elif requirement.type == RequirementType.CONSTRAINT:
                suggestions.append("Verify that constraints are properly enforced")
            elif requirement.type == RequirementType.NONFUNCTIONAL:
                suggestions.append("Check performance, security, or other non-functional aspects")

        analysis.append(FailureAnalysis(
            requirement_id=score.requirement_id,
            requirement_description=requirement.description if requirement else "Unknown requirement",
            failing_tests=list(score.failing_tests),
            suggestions=list(dict.fromkeys(suggestions)),
        ))
    return analysis


def _clamp_percent(value: float) -> float:
    return round(min(100.0, max(0.0, value)), 2)
