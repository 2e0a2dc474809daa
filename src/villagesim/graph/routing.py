"""条件路由逻辑。"""

from __future__ import annotations

from villagesim.state.tick_state import TickState


def route_after_scheduled(state: TickState) -> str:
    """到期事件处理完后：开启事件时生成随机事件，否则直接持久化。"""
    if state.get("events_enabled", True):
        return "random_events"
    return "persist"
