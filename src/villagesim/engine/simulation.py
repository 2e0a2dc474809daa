"""模拟协调器。

负责村庄的创建、加载与保存，并把 tick / 事件处理 / 玩家选择 / 贸易
串行化到每个村庄一把的锁里。模拟时钟取村庄的 updated_at，每个 tick 推进 tick_hours。
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from villagesim.config.settings import SimulationConfig
from villagesim.content.generator import ContentGenerator
from villagesim.engine.errors import SimulationError
from villagesim.engine.event_engine import VillageEventManager
from villagesim.engine.locks import VillageLockRegistry
from villagesim.engine.resource_manager import ResourceManager
from villagesim.graph.tick_graph import compile_tick_graph
from villagesim.models.economy import ResourceCrisis, TradeResult
from villagesim.models.event import ChoiceResult, EventResult, GameEvent
from villagesim.models.resource import ResourceUpdate
from villagesim.models.village import (
    SeasonInfo,
    Village,
    VillageConfig,
    VillageEconomy,
    VillagePopulation,
)
from villagesim.storage.store import KeyValueStore, village_key

logger = logging.getLogger(__name__)


class TickReport(BaseModel):
    """一次 tick 的汇总。"""

    village: Village
    resource_updates: list[ResourceUpdate] = Field(default_factory=list)
    crises: list[ResourceCrisis] = Field(default_factory=list)
    released_events: list[GameEvent] = Field(default_factory=list)
    new_events: list[GameEvent] = Field(default_factory=list)
    season_changed: bool = False


def build_population(total: int) -> VillagePopulation:
    """按固定比例拆分初始人口：儿童 25%，老人 15%，其余为成人，成人 80% 就业。"""
    children = int(total * 0.25)
    elderly = int(total * 0.15)
    adults = total - children - elderly
    employed = int(adults * 0.8)
    skilled = int(adults * 0.3)
    return VillagePopulation(
        total=total,
        children=children,
        adults=adults,
        elderly=elderly,
        employed=employed,
        unemployed=adults - employed,
        skilled=skilled,
        unskilled=adults - skilled,
    )


class VillageSimulation:
    """参考协调器：ResourceManager + VillageEventManager + tick 流水线 + 存储。"""

    def __init__(
        self,
        store: KeyValueStore,
        content: ContentGenerator | None = None,
        config: SimulationConfig | None = None,
        rng: random.Random | None = None,
        locks: VillageLockRegistry | None = None,
    ):
        self.store = store
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random(self.config.rng_seed)
        self.resources = ResourceManager()
        self.events = VillageEventManager(
            store, content=content, resource_manager=self.resources, rng=self.rng, config=self.config
        )
        self.locks = locks or VillageLockRegistry()
        self._graph = compile_tick_graph(self.resources, self.events, store, self.config)

    # ── 村庄存取 ──

    def create_village(self, config: VillageConfig, now: datetime | None = None) -> Village:
        now = now or datetime.now()
        with self.locks.hold(config.id):
            if self.store.get(village_key(config.id)) is not None:
                raise SimulationError(f"村庄 {config.id} 已存在")
            village = Village(
                id=config.id,
                name=config.name,
                size=config.starting_size,
                buildings=[b.model_copy(deep=True) for b in config.buildings],
                natural_resources=[n.model_copy(deep=True) for n in config.natural_resources],
                population=build_population(config.starting_population),
                resources=self.resources.initialize_resources(config, now),
                economy=VillageEconomy(treasury=config.starting_treasury),
                trade_routes=[r.model_copy(deep=True) for r in config.trade_routes],
                market_prices=dict(config.market_prices),
                season=SeasonInfo(current=config.season, total_days=config.season_length),
                personality=config.personality,
                updated_at=now,
            )
            self.save_village(village)
            self.events.schedule_seasonal_events(village, now=now)
        logger.info("创建村庄 %s (%s)，人口 %d", village.name, village.id, village.population.total)
        return village

    def load_village(self, village_id: str) -> Village:
        data = self.store.get(village_key(village_id))
        if data is None:
            raise SimulationError(f"村庄 {village_id} 不存在")
        return Village.model_validate(data)

    def save_village(self, village: Village) -> None:
        self.store.set(village_key(village.id), village.model_dump(mode="json"))

    # ── 时间推进 ──

    def tick(self, village_id: str, now: datetime | None = None) -> TickReport:
        """推进一个 tick。now 缺省时取村庄时钟 + tick_hours。"""
        with self.locks.hold(village_id):
            village = self.load_village(village_id)
            now = now or village.updated_at + timedelta(hours=self.config.tick_hours)
            result = self._graph.invoke(
                {
                    "village": village,
                    "now": now,
                    "delta_hours": self.config.tick_hours,
                    "events_enabled": self.config.enable_events,
                }
            )
        report = TickReport(
            village=result["village"],
            resource_updates=result.get("resource_updates", []),
            crises=result.get("crises", []),
            released_events=result.get("released_events", []),
            new_events=result.get("new_events", []),
            season_changed=result.get("season_changed", False),
        )
        logger.debug(
            "%s tick 完成: %d 条资源变动, %d 个危机, %d 个新事件",
            village_id,
            len(report.resource_updates),
            len(report.crises),
            len(report.new_events),
        )
        return report

    def run(self, village_id: str, ticks: int) -> list[TickReport]:
        return [self.tick(village_id) for _ in range(ticks)]

    # ── 事件与选择 ──

    def _find_event(self, village_id: str, event_id: str) -> GameEvent:
        for event in self.events.get_active_events(village_id):
            if event.id == event_id:
                return event
        raise SimulationError(f"村庄 {village_id} 没有活跃事件 {event_id}")

    def process_event(self, village_id: str, event_id: str, now: datetime | None = None) -> EventResult:
        with self.locks.hold(village_id):
            village = self.load_village(village_id)
            event = self._find_event(village_id, event_id)
            result = self.events.process_event(event, village, now or village.updated_at)
            self.save_village(result.village)
        return result

    def resolve_choice(
        self, village_id: str, event_id: str, choice_id: str, now: datetime | None = None
    ) -> ChoiceResult:
        with self.locks.hold(village_id):
            village = self.load_village(village_id)
            event = self._find_event(village_id, event_id)
            choice = next((c for c in event.player_choices if c.id == choice_id), None)
            if choice is None:
                raise SimulationError(f"事件 {event_id} 没有选项 {choice_id}")
            result = self.events.handle_player_choices(event, choice, village, now or village.updated_at)
            self.save_village(result.village)
        return result

    # ── 贸易 ──

    def execute_trade(self, village_id: str, route_id: str, now: datetime | None = None) -> TradeResult:
        with self.locks.hold(village_id):
            village = self.load_village(village_id)
            result = self.resources.execute_trade(route_id, village, now or village.updated_at)
            if result.success and result.village is not None:
                self.save_village(result.village)
        return result

    def close(self) -> None:
        if self.events.content is not None:
            self.events.content.close()
