"""GradeFoundry - Policy Loader (评分策略配置)

加载和验证评分策略配置文件 (policy_config.yaml)。

Features:
- Pydantic schema 验证
- YAML 加载
- 默认值回退
- 环境变量路径覆盖
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# 默认策略文件路径（相对于此模块）
DEFAULT_POLICY_PATH = Path(__file__).parent / "policy_config.yaml"

# 环境变量覆盖
ENV_POLICY_PATH = "GF_POLICY_PATH"

_MEMORY_LIMIT_RE = re.compile(r"^\d+[kmg]?$", re.IGNORECASE)


class ExtractionPolicy(BaseModel):
    """需求提取策略"""
    max_attempts: int = Field(default=3, ge=1, le=10, description="最大提取尝试次数")
    max_tokens: int = Field(default=4000, ge=256, description="提取调用的 token 上限")


class GenerationPolicy(BaseModel):
    """测试生成策略"""
    max_tokens: int = Field(default=8000, ge=256, description="生成调用的 token 上限")
    repair_attempts: int = Field(default=1, ge=0, le=1, description="hygiene 修复次数（至多 1 次）")
    min_content_length: int = Field(default=50, ge=1, description="测试文件最小长度")
    default_timeout_s: int = Field(default=30, ge=1, description="runner_config 默认超时（秒）")


class SandboxPolicy(BaseModel):
    """沙箱策略配置 (容器隔离)

    默认值与 execution/container_sandbox.py 中的 ContainerSandboxConfig 对齐。
    """
    timeout_s: int = Field(default=60, ge=1, description="硬超时（秒）")
    memory_limit: str = Field(default="512m", description="内存硬限制（docker 格式，如 512m）")
    cpus: float = Field(default=1.0, ge=0.1, description="CPU 核数限制")
    pids_limit: int = Field(default=128, ge=10, description="进程数限制")
    network_disabled: bool = Field(default=True, description="禁用网络")
    image_prefix: str = Field(default="gradefoundry-runner", description="运行镜像 tag 前缀")

    @field_validator("memory_limit")
    @classmethod
    def _check_memory_limit(cls, v: str) -> str:
        if not _MEMORY_LIMIT_RE.match(v):
            raise ValueError(f"Invalid memory limit: {v!r}")
        return v.lower()


class ScoringPolicy(BaseModel):
    """评分策略"""
    pass_threshold: float = Field(default=1.0, gt=0.0, le=1.0, description="需求判定为 pass 的通过率阈值")
    partial_credit: float = Field(default=0.5, ge=0.0, le=1.0, description="partial 状态的加权得分比例")


class PolicyConfig(BaseModel):
    """策略配置主模型"""
    version: str = Field(default="1.0", description="配置版本")
    extraction: ExtractionPolicy = Field(default_factory=ExtractionPolicy)
    generation: GenerationPolicy = Field(default_factory=GenerationPolicy)
    sandbox: SandboxPolicy = Field(default_factory=SandboxPolicy)
    scoring: ScoringPolicy = Field(default_factory=ScoringPolicy)


def load_policy(path: Optional[Path] = None) -> PolicyConfig:
    """加载策略配置

    优先级:
    1. 显式传入的 path
    2. 环境变量 GF_POLICY_PATH
    3. 默认路径 (governance/policy_config.yaml)
    4. 内置默认值

    Args:
        path: 策略文件路径（可选）

    Returns:
        PolicyConfig: 策略配置对象
    """
    if path is None:
        env_path = os.environ.get(ENV_POLICY_PATH)
        if env_path:
            path = Path(env_path)
        else:
            path = DEFAULT_POLICY_PATH

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
            config = PolicyConfig.model_validate(data or {})
            logger.info(f"Policy loaded from {path}")
            return config
        except Exception as e:
            logger.warning(f"Failed to load policy from {path}: {e}, using defaults")
            return PolicyConfig()
    else:
        logger.info(f"Policy file not found at {path}, using defaults")
        return PolicyConfig()


# 全局缓存（单例模式）
_cached_policy: Optional[PolicyConfig] = None


def get_policy(force_reload: bool = False) -> PolicyConfig:
    """获取策略配置（带缓存）

    Args:
        force_reload: 是否强制重新加载

    Returns:
        PolicyConfig: 策略配置对象
    """
    global _cached_policy
    if _cached_policy is None or force_reload:
        _cached_policy = load_policy()
    return _cached_policy


def clear_policy_cache() -> None:
    """清除策略缓存（用于测试）"""
    global _cached_policy
    _cached_policy = None
