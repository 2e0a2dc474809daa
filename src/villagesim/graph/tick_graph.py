"""Tick 流水线（LangGraph）。

seasonal -> update -> production -> chains -> crisis_detect -> scheduled
  -> [random_events] -> persist

每个节点接收当前村庄快照，返回新的村庄快照；节点之间不共享可变对象。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from langgraph.graph import END, START, StateGraph

from villagesim.config.settings import SimulationConfig
from villagesim.engine.event_engine import VillageEventManager
from villagesim.engine.resource_manager import ResourceManager
from villagesim.graph.routing import route_after_scheduled
from villagesim.models.village import SeasonInfo, Village
from villagesim.state.tick_state import TickState
from villagesim.storage.store import KeyValueStore, village_key

logger = logging.getLogger(__name__)

SEASON_ORDER = ("spring", "summer", "autumn", "winter")


def advance_calendar(season: SeasonInfo, days: int) -> tuple[SeasonInfo, bool]:
    """推进季节日历，返回 (新日历, 是否换季)。"""
    current, day, changed = season.current, season.day + days, False
    while day > season.total_days:
        day -= season.total_days
        current = SEASON_ORDER[(SEASON_ORDER.index(current) + 1) % len(SEASON_ORDER)]
        changed = True
    return season.model_copy(update={"current": current, "day": day}), changed


def elapsed_days(previous: datetime, now: datetime) -> int:
    """两次 tick 之间跨过的日历日数。不足一天的 tick 在跨过午夜时才推进日历。"""
    return max(0, (now.date() - previous.date()).days)


# ────────────────────────────────────────────
# 节点
# ────────────────────────────────────────────


def _create_seasonal_node(
    resources: ResourceManager, events: VillageEventManager, config: SimulationConfig
):
    """推进日历并重算季节/天气修正。换季时为新季节排期季节性事件。"""

    def seasonal_node(state: TickState) -> dict[str, Any]:
        village: Village = state["village"]
        now = state["now"]
        days = elapsed_days(village.updated_at, now)

        season, changed = advance_calendar(village.season, days)
        updated = village.model_copy(update={"age": village.age + days, "season": season})

        if config.enable_seasons:
            weather = village.weather if config.enable_weather else None
            updated = updated.model_copy(
                update={
                    "resources": resources.manage_seasonal_effects(
                        village.resources, season.current, weather
                    )
                }
            )
        if changed:
            logger.info("%s 进入 %s", village.name, season.current)
            events.schedule_seasonal_events(updated, season.current, now)

        return {"village": updated, "season_changed": changed}

    return seasonal_node


def _create_update_node(resources: ResourceManager):
    def update_node(state: TickState) -> dict[str, Any]:
        village: Village = state["village"]
        updated = resources.update_resources(village.resources, state["delta_hours"], state["now"])
        return {"village": village.model_copy(update={"resources": updated})}

    return update_node


def _create_production_node(resources: ResourceManager):
    """建筑生产与矿藏开采。"""

    def production_node(state: TickState) -> dict[str, Any]:
        village: Village = state["village"]
        now = state["now"]
        report = resources.process_production(village, now, days=state["delta_hours"] / 24)
        updates = report.updates
        updated = resources.apply_resource_updates(village, updates, report.deposits, now)
        return {"village": updated, "resource_updates": updates}

    return production_node


def _create_chains_node(resources: ResourceManager, config: SimulationConfig):
    def chains_node(state: TickState) -> dict[str, Any]:
        if not config.enable_production_chains:
            return {}
        village: Village = state["village"]
        now = state["now"]
        updates = resources.process_production_chains(
            village, village.season.current, now, days=state["delta_hours"] / 24
        )
        if not updates:
            return {}
        return {
            "village": resources.apply_resource_updates(village, updates, now=now),
            "resource_updates": updates,
        }

    return chains_node


def _create_crisis_node(resources: ResourceManager):
    def crisis_node(state: TickState) -> dict[str, Any]:
        return {"crises": resources.detect_resource_crises(state["village"])}

    return crisis_node


def _create_scheduled_node(events: VillageEventManager):
    """激活到期的排期事件，应用到期的延迟效果。"""

    def scheduled_node(state: TickState) -> dict[str, Any]:
        village: Village = state["village"]
        now = state["now"]
        released = events.release_due_events(village, now)
        return {"village": events.apply_due_effects(village, now), "released_events": released}

    return scheduled_node


def _create_random_events_node(events: VillageEventManager):
    def random_events_node(state: TickState) -> dict[str, Any]:
        return {"new_events": events.generate_random_events(state["village"], state["now"])}

    return random_events_node


def _create_persist_node(store: KeyValueStore):
    def persist_node(state: TickState) -> dict[str, Any]:
        village: Village = state["village"].model_copy(update={"updated_at": state["now"]})
        store.set(village_key(village.id), village.model_dump(mode="json"))
        return {"village": village}

    return persist_node


# ────────────────────────────────────────────
# 图构建
# ────────────────────────────────────────────


def build_tick_graph(
    resources: ResourceManager,
    events: VillageEventManager,
    store: KeyValueStore,
    config: SimulationConfig | None = None,
) -> StateGraph:
    """构建 tick 流水线（未编译）。"""
    config = config or SimulationConfig()

    workflow = StateGraph(TickState)
    workflow.add_node("seasonal", _create_seasonal_node(resources, events, config))
    workflow.add_node("update", _create_update_node(resources))
    workflow.add_node("production", _create_production_node(resources))
    workflow.add_node("chains", _create_chains_node(resources, config))
    workflow.add_node("crisis_detect", _create_crisis_node(resources))
    workflow.add_node("scheduled", _create_scheduled_node(events))
    workflow.add_node("random_events", _create_random_events_node(events))
    workflow.add_node("persist", _create_persist_node(store))

    workflow.add_edge(START, "seasonal")
    workflow.add_edge("seasonal", "update")
    workflow.add_edge("update", "production")
    workflow.add_edge("production", "chains")
    workflow.add_edge("chains", "crisis_detect")
    workflow.add_edge("crisis_detect", "scheduled")
    workflow.add_conditional_edges(
        "scheduled", route_after_scheduled, {"random_events": "random_events", "persist": "persist"}
    )
    workflow.add_edge("random_events", "persist")
    workflow.add_edge("persist", END)
    return workflow


def compile_tick_graph(
    resources: ResourceManager,
    events: VillageEventManager,
    store: KeyValueStore,
    config: SimulationConfig | None = None,
):
    """构建并编译 tick 流水线。"""
    return build_tick_graph(resources, events, store, config).compile()
