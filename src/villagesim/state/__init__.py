"""Tick 流水线状态。"""

from villagesim.state.tick_state import TickState

__all__ = ["TickState"]
