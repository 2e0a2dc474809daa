"""模拟引擎异常。

校验失败以 ValidationResult / TradeResult 返回，不会抛出这些异常；
它们只用于引擎内部把处理失败转换为惩罚结果。
"""

from __future__ import annotations


class SimulationError(Exception):
    """模拟引擎异常基类。"""


class EventProcessingError(SimulationError):
    """事件无法处理（已失活、已解决或状态不一致）。"""


class ChoiceRequirementError(SimulationError):
    """玩家选择的前置条件或资源成本不满足。"""

    def __init__(self, choice_id: str, reasons: list[str]):
        self.choice_id = choice_id
        self.reasons = reasons
        super().__init__(f"选择 {choice_id} 不满足条件: {'; '.join(reasons)}")


class TradeError(SimulationError):
    """贸易前置条件不满足。"""


class ContentGenerationError(SimulationError):
    """内容生成协作方调用失败或超时。"""
