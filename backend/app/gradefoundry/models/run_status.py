"""Test Run 状态枚举定义

状态单调迁移，只有终态写入 results/requirement_scores/overall_score。
"""

from enum import Enum


class TestRunStatus(str, Enum):
    """Test Run 状态枚举
    
    状态流转:
        PENDING → RUNNING → COMPLETED
                        ↓
                     FAILED (异常终止)
    
    说明:
        - PENDING: 已创建，等待执行
        - RUNNING: 正在沙箱中执行
        - COMPLETED: 执行完成且已评分（沙箱内测试失败/超时也属于 COMPLETED）
        - FAILED: 流水线异常终止（如沙箱后端不可用）
    """
    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    
    @classmethod
    def terminal_states(cls) -> set[str]:
        """终态集合"""
        return {cls.COMPLETED.value, cls.FAILED.value}
    
    @classmethod
    def active_states(cls) -> set[str]:
        """进行中状态集合"""
        return {cls.PENDING.value, cls.RUNNING.value}
    
    def is_terminal(self) -> bool:
        """是否为终态"""
        return self.value in self.terminal_states()

    def can_transition_to(self, target: "TestRunStatus") -> bool:
        """是否允许迁移到目标状态"""
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[TestRunStatus, frozenset[TestRunStatus]] = {
    TestRunStatus.PENDING: frozenset({TestRunStatus.RUNNING, TestRunStatus.FAILED}),
    TestRunStatus.RUNNING: frozenset({TestRunStatus.COMPLETED, TestRunStatus.FAILED}),
    TestRunStatus.COMPLETED: frozenset(),
    TestRunStatus.FAILED: frozenset(),
}


__all__ = [
    "TestRunStatus",
]
