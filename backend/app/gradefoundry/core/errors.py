"""GradeFoundry - Error Taxonomy

流水线各阶段的异常定义。

传播策略：
- 有明确降级输出的阶段失败（hygiene 失败、沙箱内崩溃/超时）在阶段内吸收并记录到 metadata
- 无降级输出的失败（提取重试耗尽、沙箱后端不可用）作为异常抛出，由调用方持久化为 failed
"""

from __future__ import annotations


class GradeFoundryError(Exception):
    """所有流水线错误的基类"""
    pass


class SchemaValidationError(GradeFoundryError):
    """结构校验失败"""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors) if errors else "Schema validation failed")


class GenerationParseError(GradeFoundryError):
    """生成模型返回的内容无法解析为预期 JSON"""
    pass


class ExtractionFailed(GradeFoundryError):
    """需求提取在所有尝试后仍失败"""

    def __init__(self, attempts: int, last_error: Exception | None):
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error else "Unknown error"
        super().__init__(f"Failed to extract requirements after {attempts} attempts: {detail}")


class AIServiceError(GradeFoundryError):
    """AI 服务错误"""
    pass


class SandboxUnavailable(GradeFoundryError):
    """隔离后端（docker/podman）不可用"""
    pass


class ExecutionTimeout(GradeFoundryError):
    """沙箱执行超时（在执行器内部转换为 timeout 结果）"""
    pass


class ExecutionError(GradeFoundryError):
    """沙箱执行期间的运行时错误（在执行器内部转换为 error 结果）"""
    pass


class InvalidRunTransition(GradeFoundryError):
    """Test Run 状态迁移不合法"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid test run transition: {current} -> {target}")


class ArtifactNotFound(GradeFoundryError):
    """持久化产物（prompt / spec / suite / run）不存在"""

    def __init__(self, kind: str, artifact_id: object):
        self.kind = kind
        self.artifact_id = artifact_id
        super().__init__(f"{kind} not found: {artifact_id}")
