"""LangGraph tick 流水线。"""

from villagesim.graph.tick_graph import advance_calendar, build_tick_graph, compile_tick_graph

__all__ = [
    "advance_calendar",
    "build_tick_graph",
    "compile_tick_graph",
]
