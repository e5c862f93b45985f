"""GradeFoundry - Governance Layer

治理层：评分策略配置（提取/生成/沙箱/评分的阈值与限制）。
"""

from gradefoundry.governance.policy_loader import (
    ExtractionPolicy,
    GenerationPolicy,
    PolicyConfig,
    SandboxPolicy,
    ScoringPolicy,
    clear_policy_cache,
    get_policy,
    load_policy,
)

__all__ = [
    "ExtractionPolicy",
    "GenerationPolicy",
    "PolicyConfig",
    "SandboxPolicy",
    "ScoringPolicy",
    "clear_policy_cache",
    "get_policy",
    "load_policy",
]
