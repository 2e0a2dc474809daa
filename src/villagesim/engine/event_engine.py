"""村庄事件管理器。

事件生命周期：candidate → active → resolved（终态，写入历史）→ 可能派生 chained 候选。
管理器本身不保存状态：活跃事件、历史、排期与延迟效果都放在键值存储里，
所有随机抽样都通过注入的 random.Random 完成。
"""

from __future__ import annotations

import logging
import random
import re
import uuid
from datetime import datetime, timedelta
from typing import Any, get_args

from pydantic import ValidationError

from villagesim.catalog import events as catalog
from villagesim.config.settings import SimulationConfig
from villagesim.content.generator import ContentGenerator
from villagesim.content.parsing import parse_event_payload
from villagesim.engine.errors import ChoiceRequirementError, EventProcessingError
from villagesim.engine.resource_manager import ResourceManager
from villagesim.models.event import (
    ChainReaction,
    ChoiceResult,
    DelayedEffect,
    EventEffect,
    EventOutcome,
    EventResult,
    EventSeverity,
    EventType,
    GameEvent,
    HistoricalEvent,
    ImpactAssessment,
    NarrativeContext,
    OutcomeDescriptions,
    PendingEffect,
    PlayerChoice,
    RecurrencePattern,
    ScheduledEvent,
    VillageStateChanges,
)
from villagesim.models.resource import ResourceCost, ResourceType, Transaction
from villagesim.models.village import Village
from villagesim.storage.store import (
    KeyValueStore,
    active_events_key,
    delayed_effects_key,
    history_key,
    scheduled_key,
)

logger = logging.getLogger(__name__)

_PERCENT_FIELDS = ("happiness", "stability", "prosperity", "defense")
_EVENT_TYPES = set(get_args(EventType))
_SEVERITIES = set(get_args(EventSeverity))


# ──────────────────────────────────────────
# 条件判定
# ──────────────────────────────────────────

_CONDITION_RE = re.compile(
    r"^\s*(?P<attr>[a-z_]+(?::[a-z_]+)?)\s*(?P<op>>=|<=|==|!=|>|<)\s*(?P<value>[A-Za-z0-9_.\-]+)\s*$"
)


def evaluate_condition(value: float, operator: str, threshold: float) -> bool:
    """比较数值与阈值。"""
    match operator:
        case "gte" | ">=":
            return value >= threshold
        case "lte" | "<=":
            return value <= threshold
        case "gt" | ">":
            return value > threshold
        case "lt" | "<":
            return value < threshold
        case "eq" | "==":
            return abs(value - threshold) < 1e-6
        case "ne" | "!=":
            return abs(value - threshold) >= 1e-6
        case _:
            return False


def get_village_attribute(village: Village, attribute: str) -> float:
    """读取条件里引用的村庄属性。

    支持 happiness / stability / prosperity / defense / population / treasury，
    以及 "resource:<type>" 格式的库存。

    Raises:
        KeyError: 属性不存在时。
    """
    if attribute.startswith("resource:"):
        stock = village.resources.resources.get(ResourceType(attribute[9:]))
        return stock.current if stock else 0.0
    if attribute in _PERCENT_FIELDS:
        return getattr(village, attribute)
    if attribute == "population":
        return float(village.population.total)
    if attribute == "treasury":
        return village.economy.treasury
    raise KeyError(attribute)


def evaluate_condition_string(condition: str, village: Village) -> bool:
    """判定 "<属性> <运算符> <值>" 形式的条件。无法解析的条件一律视为不满足。"""
    match = _CONDITION_RE.match(condition)
    if not match:
        logger.warning("无法解析条件 %r，视为不满足", condition)
        return False
    attr, op, raw = match.group("attr"), match.group("op"), match.group("value")

    if attr == "season":
        if op not in ("==", "!="):
            logger.warning("季节条件只支持 == / != : %r", condition)
            return False
        return (village.season.current == raw) == (op == "==")

    try:
        value = get_village_attribute(village, attr)
        threshold = float(raw)
    except (KeyError, ValueError):
        logger.warning("条件 %r 引用了未知属性或非数值阈值，视为不满足", condition)
        return False
    return evaluate_condition(value, op, threshold)


# ──────────────────────────────────────────
# 独立辅助函数
# ──────────────────────────────────────────


def calculate_crisis_level(active_events: list[GameEvent]) -> float:
    """按严重程度累加活跃事件的危机权重，截断到 [0, 100]。"""
    level = sum(catalog.SEVERITY_CRISIS_WEIGHTS.get(e.severity, 0) for e in active_events)
    return max(0.0, min(100.0, float(level)))


def get_emergency_response_options(event: GameEvent, village: Village) -> list[PlayerChoice]:
    """危机事件的通用应急选项：拨出金库的 10%（金库为空时 50 金）稳定局势。"""
    treasury = village.economy.treasury
    amount = float(int(treasury * 0.1)) if treasury else 50.0
    return [
        PlayerChoice(
            id="emergency_resources",
            name="Emergency Resource Allocation",
            description="Allocate emergency resources to address the crisis immediately.",
            resource_cost=[ResourceCost(resource=ResourceType.GOLD, amount=amount)],
            time_cost=1,
            immediate_effects=[
                EventEffect(
                    type="stability", modifier=15, duration=3, description="Emergency response boost"
                )
            ],
            success_chance=80,
            critical_success_chance=15,
            failure_consequences=[
                EventEffect(
                    type="stability", modifier=-5, duration=2, description="Wasted emergency resources"
                )
            ],
            outcome_descriptions=OutcomeDescriptions(
                success="Emergency resources were deployed effectively, stabilizing the situation.",
                failure="The emergency response was poorly coordinated, wasting valuable resources.",
            ),
        )
    ]


def convert_response_to_choice(response: dict[str, Any]) -> PlayerChoice:
    """把生成内容里的 response 字典转成 PlayerChoice。"""
    name = str(response.get("name") or "Respond")
    success_chance = max(0.0, min(100.0, float(response.get("success_chance", 70))))
    costs = [ResourceCost.model_validate(c) for c in response.get("cost", [])]
    effects = [EventEffect.model_validate(e) for e in response.get("effects", [])]
    return PlayerChoice(
        id=str(response.get("id") or uuid.uuid4().hex[:8]),
        name=name,
        description=str(response.get("description", "")),
        resource_cost=costs,
        time_cost=response.get("implementation_time"),
        immediate_effects=effects,
        success_chance=success_chance,
        critical_success_chance=min(20.0, success_chance * 0.2),
        outcome_descriptions=OutcomeDescriptions(
            success=f"Successfully {name.lower()}",
            failure=f"Failed to {name.lower()}",
        ),
    )


def personality_summary(village: Village) -> str:
    personality = village.personality
    if personality is None:
        return "pragmatic and adaptable"

    def tier(value: float, high: str, low: str, mid: str) -> str:
        if value > 70:
            return high
        if value < 30:
            return low
        return mid

    return ", ".join(
        [
            tier(personality.conservatism, "traditional", "progressive", "balanced"),
            tier(personality.cooperation, "cooperative", "individualistic", "moderate"),
            tier(personality.ambition, "ambitious", "content", "steady"),
        ]
    )


def determine_tone(severity: str) -> str:
    match severity:
        case "catastrophic":
            return "urgent"
        case "beneficial":
            return "celebratory"
        case "minor":
            return "lighthearted"
        case _:
            return "serious"


def calculate_event_severity(village: Village) -> EventSeverity:
    """根据稳定度与幸福度给生成上下文一个期望的严重程度。"""
    if village.stability < 25:
        return "major"
    if village.stability < 50 or village.happiness < 40:
        return "moderate"
    if village.happiness >= 75 and village.stability >= 60:
        return "beneficial"
    return "minor"


# ──────────────────────────────────────────
# 事件管理器
# ──────────────────────────────────────────


class VillageEventManager:
    """事件的生成、处理、连锁、玩家选择与排期。"""

    def __init__(
        self,
        store: KeyValueStore,
        content: ContentGenerator | None = None,
        resource_manager: ResourceManager | None = None,
        rng: random.Random | None = None,
        config: SimulationConfig | None = None,
    ):
        self.store = store
        self.content = content
        self.resources = resource_manager or ResourceManager()
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random(self.config.rng_seed)

    # ── 存储读写 ──

    def get_active_events(self, village_id: str) -> list[GameEvent]:
        data = self.store.get(active_events_key(village_id)) or {}
        return [GameEvent.model_validate(v) for v in data.values()]

    def _save_active(self, village_id: str, add: list[GameEvent], remove: list[str]) -> None:
        data = self.store.get(active_events_key(village_id)) or {}
        for event_id in remove:
            data.pop(event_id, None)
        for event in add:
            data[event.id] = event.model_dump(mode="json")
        self.store.set(active_events_key(village_id), data)

    def get_event_history(self, village_id: str) -> list[HistoricalEvent]:
        data = self.store.get(history_key(village_id)) or []
        return [HistoricalEvent.model_validate(h) for h in data]

    def get_scheduled_events(self, village_id: str) -> list[ScheduledEvent]:
        data = self.store.get(scheduled_key(village_id)) or []
        return [ScheduledEvent.model_validate(s) for s in data]

    def _save_scheduled(self, village_id: str, scheduled: list[ScheduledEvent]) -> None:
        self.store.set(scheduled_key(village_id), [s.model_dump(mode="json") for s in scheduled])

    def get_pending_effects(self, village_id: str) -> list[PendingEffect]:
        data = self.store.get(delayed_effects_key(village_id)) or []
        return [PendingEffect.model_validate(p) for p in data]

    def _save_pending(self, village_id: str, pending: list[PendingEffect]) -> None:
        self.store.set(delayed_effects_key(village_id), [p.model_dump(mode="json") for p in pending])

    # ── 随机事件生成 ──

    def calculate_base_event_chance(self, village: Village) -> float:
        chance = catalog.BASE_EVENT_CHANCE * catalog.SIZE_EVENT_MULTIPLIERS.get(village.size, 1.0)
        if village.population.total > 200:
            chance *= 1.1
        if village.population.total > 500:
            chance *= 1.2
        if village.stability < 30:
            chance *= 1.5
        elif village.stability < 60:
            chance *= 1.2
        if village.happiness > 80:
            chance *= 1.3
        return min(catalog.MAX_EVENT_CHANCE, chance)

    def category_weight(self, category: str, village: Village) -> float:
        data = catalog.EVENT_CATEGORIES[category]
        weight = data.base_weight
        match category:
            case "NATURAL":
                tier = village.season.current
            case "SOCIAL":
                total = village.population.total
                tier = "low" if total < 50 else "high" if total > 200 else "medium"
            case "ECONOMIC":
                p = village.prosperity
                tier = "poor" if p < 30 else "wealthy" if p > 70 else "modest"
            case "CRISIS":
                s = village.stability
                tier = "unstable" if s < 30 else "very_stable" if s > 70 else "stable"
            case _:
                tier = "medium"
        return weight * data.modifiers.get(tier, 1.0)

    def _weighted_choice(self, items: list[str], weights: list[float]) -> str:
        roll = self.rng.random() * sum(weights)
        for item, weight in zip(items, weights):
            if roll < weight:
                return item
            roll -= weight
        return items[-1]

    def select_event_category(self, village: Village) -> str:
        names = list(catalog.EVENT_CATEGORIES)
        return self._weighted_choice(names, [self.category_weight(n, village) for n in names])

    def select_event_type(self, category: str) -> str:
        types = catalog.EVENT_CATEGORIES[category].types
        return self._weighted_choice(types, [1.0] * len(types))

    def generate_random_events(self, village: Village, now: datetime | None = None) -> list[GameEvent]:
        """每个 tick 至多生成一个事件。

        触发后一定会产出事件：协作方失败、超时或返回无法使用的内容时换用兜底模板。
        """
        now = now or datetime.now()
        if self.rng.random() >= self.calculate_base_event_chance(village):
            return []

        category = self.select_event_category(village)
        kind = self.select_event_type(category)
        event = None

        if self.content is not None:
            result = self.content.generate("events", self.build_generation_context(village, category, kind))
            if result.success:
                try:
                    event = self._event_from_payload(
                        parse_event_payload(result.content), village, category, kind, now
                    )
                except (ValidationError, ValueError, TypeError) as e:
                    logger.warning("生成的事件内容无法使用 (%s)，改用兜底事件", e)
            else:
                logger.warning("事件生成失败 (%s)，改用兜底事件", result.error)

        if event is None:
            event = self.generate_fallback_event(category, kind, village, now)

        self._save_active(village.id, [event], [])
        logger.info("%s 发生事件: %s [%s/%s]", village.name, event.name, category, kind)
        return [event]

    def build_generation_context(self, village: Village, category: str, kind: str) -> dict[str, Any]:
        stocks = village.resources.resources
        return {
            "village_state": {
                "name": village.name,
                "size": village.size,
                "population": village.population.total,
                "happiness": village.happiness,
                "stability": village.stability,
                "prosperity": village.prosperity,
                "resources": {
                    r.value: round(stocks[r].current, 1) if r in stocks else 0
                    for r in (ResourceType.FOOD, ResourceType.WOOD, ResourceType.STONE, ResourceType.GOLD)
                },
                "age": village.age,
            },
            "season": village.season.current,
            "weather": village.weather.current,
            "event_category": category,
            "event_type": kind,
            "severity": calculate_event_severity(village),
            "previous_events": self._recent_event_names(village.id),
            "village_personality": personality_summary(village),
            "cultural_context": village.personality.model_dump() if village.personality else {},
        }

    def _recent_event_names(self, village_id: str) -> list[str]:
        window = self.config.recent_event_window
        if window <= 0:
            return []
        return [h.name for h in self.get_event_history(village_id)[-window:]]

    def _event_from_payload(
        self, payload: dict[str, Any], village: Village, category: str, kind: str, now: datetime
    ) -> GameEvent:
        event_type = payload.get("type")
        if event_type not in _EVENT_TYPES:
            event_type = catalog.event_type_for(category, kind)
        severity = payload.get("severity")
        if severity not in _SEVERITIES:
            severity = calculate_event_severity(village)

        effects: list[EventEffect] = []
        for raw in payload.get("effects") or []:
            try:
                effects.append(EventEffect.model_validate(raw))
            except ValidationError:
                logger.debug("忽略无法解析的效果: %r", raw)
        choices: list[PlayerChoice] = []
        for raw in payload.get("responses") or []:
            try:
                choices.append(convert_response_to_choice(raw))
            except (ValidationError, ValueError, TypeError, AttributeError):
                logger.debug("忽略无法解析的应对: %r", raw)

        return self._new_event(
            village,
            category,
            kind,
            now,
            name=str(payload.get("name") or f"{category.title()} Event"),
            description=str(payload.get("description") or catalog.FALLBACK_DESCRIPTION)[:500],
            event_type=event_type,
            severity=severity,
            duration=float(payload.get("duration") or 1),
            effects=effects,
            choices=choices,
            generated_by_ai=True,
        )

    def generate_fallback_event(
        self, category: str, kind: str, village: Village, now: datetime | None = None
    ) -> GameEvent:
        """按大类取确定性的兜底事件。"""
        now = now or datetime.now()
        template = catalog.FALLBACK_EVENTS.get(category, catalog.FALLBACK_EVENTS["SOCIAL"])
        return self._new_event(
            village,
            category,
            kind,
            now,
            name=template.name,
            description=template.description,
            event_type=catalog.event_type_for(category, kind),
            severity=template.severity,
            duration=max((e.duration for e in template.effects), default=1.0),
            effects=[e.model_copy() for e in template.effects],
            choices=[],
            generated_by_ai=False,
        )

    def _new_event(
        self,
        village: Village,
        category: str,
        kind: str,
        now: datetime,
        *,
        name: str,
        description: str,
        event_type: EventType,
        severity: EventSeverity,
        duration: float,
        effects: list[EventEffect],
        choices: list[PlayerChoice],
        generated_by_ai: bool,
        parent_event_id: str | None = None,
    ) -> GameEvent:
        if category == "CRISIS" and not choices:
            choices = get_emergency_response_options(GameEvent(id="", name=name, type=event_type), village)
        return GameEvent(
            id=uuid.uuid4().hex,
            name=name,
            type=event_type,
            category=category,
            event_kind=kind,
            severity=severity,
            description=description,
            start_date=now,
            duration=duration,
            effects=effects,
            generated_by_ai=generated_by_ai,
            probability=self.calculate_event_probability(event_type, village),
            chain_reactions=[r.model_copy() for r in catalog.DEFAULT_CHAIN_REACTIONS.get(kind, [])],
            player_choices=choices,
            parent_event_id=parent_event_id,
            narrative_context=NarrativeContext(
                tone=determine_tone(severity),
                themes=[category.lower()],
                previous_events=self._recent_event_names(village.id),
                village_personality=personality_summary(village),
            ),
        )

    # ── 概率 ──

    def calculate_event_probability(self, event_type: str, village: Village) -> float:
        """基础 10%，乘以类型修正与村庄状态修正，截断到 [1, 95]。"""
        probability = catalog.BASE_EVENT_PROBABILITY
        probability *= self._type_modifier(event_type, village)
        probability *= self._village_state_modifier(village)
        return max(catalog.MIN_EVENT_PROBABILITY, min(catalog.MAX_EVENT_PROBABILITY, probability))

    @staticmethod
    def _type_modifier(event_type: str, village: Village) -> float:
        match event_type:
            case "natural":
                modifier = {"winter": 1.3, "summer": 1.1}.get(village.season.current, 1.0)
                if village.weather.current in ("stormy", "extreme"):
                    modifier *= 1.5
                return modifier
            case "social":
                if village.happiness > 80:
                    return 1.3
                return 1.4 if village.happiness < 30 else 1.0
            case "economic":
                if village.prosperity < 30:
                    return 1.5
                return 1.2 if village.prosperity > 70 else 1.0
            case "military":
                if village.defense < 30:
                    return 1.8
                return 1.2 if village.defense < 60 else 0.8
            case "cultural":
                culture = village.resources.resources.get(ResourceType.CULTURE)
                return 1.3 if culture and culture.utilization > 0.5 else 1.0
            case _:
                return 1.0

    @staticmethod
    def _village_state_modifier(village: Village) -> float:
        modifier = catalog.SIZE_EVENT_MULTIPLIERS.get(village.size, 1.0)
        if village.stability < 30:
            modifier *= 1.5
        elif village.stability < 60:
            modifier *= 1.2
        return modifier

    # ── 效果应用 ──

    def apply_event_effects(
        self, effects: list[EventEffect], village: Village, now: datetime | None = None
    ) -> tuple[Village, VillageStateChanges]:
        """把效果应用到村庄副本上，返回 (新村庄, 实际变化)。百分比字段截断到 [0, 100]。"""
        now = now or datetime.now()
        updated = village.model_copy(deep=True)
        changes = VillageStateChanges()

        for effect in effects:
            match effect.type:
                case "happiness" | "stability" | "prosperity" | "defense":
                    before = getattr(updated, effect.type)
                    after = max(0.0, min(100.0, before + effect.modifier))
                    setattr(updated, effect.type, after)
                    field = f"{effect.type}_change"
                    setattr(changes, field, getattr(changes, field) + after - before)
                case "population":
                    delta = int(round(effect.modifier))
                    before = updated.population.total
                    updated.population.total = max(0, before + delta)
                    updated.population.adults = max(0, updated.population.adults + delta)
                    changes.population_change += updated.population.total - before
                case "resource":
                    self._apply_resource_effect(effect, updated, changes, now)
                case "building":
                    for building in updated.buildings:
                        if effect.target in (building.id, building.type):
                            building.efficiency = max(
                                0.0, min(100.0, building.efficiency + effect.modifier)
                            )
                            changes.building_effects.setdefault(building.id, []).append(effect)

        updated.resources.used_capacity = sum(s.current for s in updated.resources.resources.values())
        updated.updated_at = now
        return updated, changes

    @staticmethod
    def _apply_resource_effect(
        effect: EventEffect, village: Village, changes: VillageStateChanges, now: datetime
    ) -> None:
        try:
            resource = ResourceType(effect.target)
        except ValueError:
            logger.warning("资源效果指向未知资源 %r，已忽略", effect.target)
            return
        if resource == ResourceType.GOLD:
            # 金币记在国库里
            before = village.economy.treasury
            village.economy.treasury = max(0.0, before + effect.modifier)
            changes.resource_changes[resource] = (
                changes.resource_changes.get(resource, 0.0) + village.economy.treasury - before
            )
            return
        stock = village.resources.resources.get(resource)
        if stock is None:
            return
        before = stock.current
        stock.current = max(0.0, min(stock.maximum, before + effect.modifier))
        stock.reserved = min(stock.reserved, stock.current)
        stock.last_updated = now
        changes.resource_changes[resource] = (
            changes.resource_changes.get(resource, 0.0) + stock.current - before
        )

    @staticmethod
    def _penalize(village: Village, happiness: float, stability: float, now: datetime) -> Village:
        updated = village.model_copy(deep=True)
        updated.happiness = max(0.0, min(100.0, updated.happiness + happiness))
        updated.stability = max(0.0, min(100.0, updated.stability + stability))
        updated.updated_at = now
        return updated

    # ── 事件处理 ──

    def process_event(self, event: GameEvent, village: Village, now: datetime | None = None) -> EventResult:
        """解决一个活跃事件：应用效果、派生连锁、写入历史、排期延迟效果。

        处理失败时返回带 -5 幸福 / -2 稳定惩罚的结果，输入村庄保持不变。
        """
        now = now or datetime.now()
        try:
            if not event.is_active or event.is_resolved:
                raise EventProcessingError(f"Event {event.id} cannot be processed in current village state")

            updated, changes = self.apply_event_effects(event.effects, village, now)
            outcome = EventOutcome(
                success=True,
                description="The event unfolded as expected.",
                resource_changes=changes.resource_changes,
                population_change=changes.population_change,
                happiness_change=changes.happiness_change,
                stability_change=changes.stability_change,
            )
            resolved = self._resolve(event, now)
            chain_events = self._roll_chain_reactions(resolved, updated, now)
            resolved.child_event_ids.extend(c.id for c in chain_events)
            narrative = self._narrate(resolved, outcome, updated)

            self._commit_resolution(village.id, resolved, outcome, changes, chain_events, now)
            self._schedule_effects(village.id, resolved.id, event.delayed_effects, now)
        except Exception as e:
            logger.error("处理事件 %s 失败: %s", event.id, e)
            penalized = self._penalize(village, -5, -2, now)
            return EventResult(
                success=False,
                event=event,
                outcome=EventOutcome(
                    success=False,
                    description=f"Event processing failed: {e}",
                    unexpected_consequences=["Event processing error occurred"],
                    happiness_change=-5,
                    stability_change=-2,
                ),
                village_changes=VillageStateChanges(happiness_change=-5, stability_change=-2),
                narrative_text=catalog.PROCESS_FAILURE_NARRATIVE,
                village=penalized,
            )

        logger.info("%s 事件已解决: %s（连锁 %d 个）", village.name, resolved.name, len(chain_events))
        return EventResult(
            success=True,
            event=resolved,
            outcome=outcome,
            chain_events=chain_events,
            village_changes=changes,
            narrative_text=narrative,
            village=updated,
        )

    @staticmethod
    def _resolve(event: GameEvent, now: datetime, chosen: str | None = None) -> GameEvent:
        resolved = event.model_copy(deep=True)
        resolved.is_active = False
        resolved.is_resolved = True
        resolved.end_date = now
        if chosen is not None:
            resolved.chosen_response = chosen
        return resolved

    def _narrate(self, event: GameEvent, outcome: EventOutcome, village: Village) -> str:
        if self.content is not None:
            result = self.content.generate(
                "narrative",
                {
                    "village": village.name,
                    "event": event.name,
                    "description": event.description,
                    "outcome": outcome.description,
                    "success": outcome.success,
                },
            )
            if result.success:
                return result.content[:500]
        verb = "concluded successfully" if outcome.success else "had mixed results"
        return f"The {event.name.lower()} {verb} in {village.name}."

    def _commit_resolution(
        self,
        village_id: str,
        resolved: GameEvent,
        outcome: EventOutcome,
        changes: VillageStateChanges,
        chain_events: list[GameEvent],
        now: datetime,
    ) -> None:
        """所有可能失败的步骤完成后一次性写入：历史、活跃事件、延迟连锁的排期。"""
        immediate = [c for c in chain_events if c.start_date <= now]
        self._record_history(village_id, resolved, outcome, changes)
        self._save_active(village_id, immediate, [resolved.id])
        self._save_delayed_children(village_id, [c for c in chain_events if c.start_date > now])

    def _record_history(
        self, village_id: str, event: GameEvent, outcome: EventOutcome, changes: VillageStateChanges
    ) -> None:
        history = self.store.get(history_key(village_id)) or []
        entry = HistoricalEvent(
            event_id=event.id,
            name=event.name,
            type=event.type,
            severity=event.severity,
            date=event.start_date,
            duration=event.duration,
            outcome=outcome,
            consequences=[outcome.description, *outcome.unexpected_consequences],
            short_term_impact=self._impact(changes, "short"),
            long_term_impact=self._impact(changes, "long"),
            parent_event_id=event.parent_event_id,
            child_event_ids=list(event.child_event_ids),
        )
        history.append(entry.model_dump(mode="json"))
        self.store.set(history_key(village_id), history[-self.config.history_limit :])

    @staticmethod
    def _impact(changes: VillageStateChanges, timeframe: str) -> ImpactAssessment:
        # 长期影响按短期变化的一半估计
        factor = 1.0 if timeframe == "short" else 0.5
        cultural = sum(
            amount
            for resource, amount in changes.resource_changes.items()
            if resource in (ResourceType.CULTURE, ResourceType.FAITH, ResourceType.ART)
        )
        return ImpactAssessment(
            economic=changes.prosperity_change * factor,
            social=changes.happiness_change * factor,
            political=changes.stability_change * factor,
            cultural=cultural * factor,
            description=f"{'Immediate' if timeframe == 'short' else 'Long-term'} effects on the village.",
        )

    # ── 连锁 ──

    def create_event_chains(
        self, trigger: GameEvent, village: Village, now: datetime | None = None
    ) -> list[GameEvent]:
        """逐条抽样触发事件的连锁反应，并把 delay > 0 的派生事件写入排期。

        到期的排期由 release_due_events 激活。
        """
        now = now or datetime.now()
        children = self._roll_chain_reactions(trigger, village, now)
        self._save_delayed_children(village.id, [c for c in children if c.start_date > now])
        return children

    def _roll_chain_reactions(
        self, trigger: GameEvent, village: Village, now: datetime
    ) -> list[GameEvent]:
        # 每条反应先按 probability 独立抽样，再判定附加条件；两关都通过才派生。不写存储。
        children: list[GameEvent] = []
        for reaction in trigger.chain_reactions:
            if self.rng.random() * 100 >= reaction.probability:
                continue
            if reaction.condition and not evaluate_condition_string(reaction.condition, village):
                logger.debug("连锁 %s 的条件 %r 不满足", reaction.event_type, reaction.condition)
                continue
            children.append(self._chained_event(reaction, trigger, village, now))
        return children

    def _save_delayed_children(self, village_id: str, children: list[GameEvent]) -> None:
        if not children:
            return
        delayed = [
            ScheduledEvent(
                event_id=child.id,
                scheduled_date=child.start_date,
                event_type=child.type,
                event_kind=child.event_kind,
                name=child.name,
                description=child.description,
                parent_event_id=child.parent_event_id,
                pending_event=child,
            )
            for child in children
        ]
        self._save_scheduled(village_id, self.get_scheduled_events(village_id) + delayed)

    def _chained_event(
        self, reaction: ChainReaction, parent: GameEvent, village: Village, now: datetime
    ) -> GameEvent:
        kind = reaction.event_type
        category = catalog.category_for_kind(kind)
        template = catalog.FALLBACK_EVENTS.get(category, catalog.FALLBACK_EVENTS["SOCIAL"])
        severity: EventSeverity = "major" if category == "CRISIS" else template.severity
        child = self._new_event(
            village,
            category,
            kind,
            now + timedelta(days=reaction.delay),
            name=kind.replace("_", " ").title(),
            description=reaction.description or f"In the wake of {parent.name}, {kind.replace('_', ' ')} follows.",
            event_type=catalog.event_type_for(category, kind),
            severity=severity,
            duration=1.0,
            effects=[e.model_copy() for e in template.effects],
            choices=[],
            generated_by_ai=False,
            parent_event_id=parent.id,
        )
        return child

    # ── 玩家选择 ──

    def check_choice_requirements(self, choice: PlayerChoice, village: Village) -> list[str]:
        """返回不满足的原因列表；空列表表示可以执行。"""
        reasons: list[str] = []
        resource_lines: list[ResourceCost] = []

        for req in choice.requirements:
            match req.type:
                case "resource":
                    try:
                        resource_lines.append(
                            ResourceCost(resource=ResourceType(req.target), amount=req.amount or 0)
                        )
                    except ValueError:
                        reasons.append(f"Unknown resource requirement: {req.target}")
                case "building":
                    level = req.level or 1
                    if not any(
                        req.target in (b.id, b.type) and b.level >= level for b in village.buildings
                    ):
                        reasons.append(f"Requires building {req.target} (level {level})")
                case "population":
                    needed = req.amount or 0
                    if village.population.total < needed:
                        reasons.append(f"Requires population of {needed:g}")
                case "skill":
                    if village.population.skilled < (req.amount or req.level or 0):
                        reasons.append(f"Requires skilled workers for {req.target}")
                case "technology":
                    if req.target not in village.technologies:
                        reasons.append(f"Requires technology {req.target}")

        gold = sum(c.amount for c in choice.resource_cost if c.resource == ResourceType.GOLD)
        if gold > village.economy.treasury:
            reasons.append(f"Insufficient gold: need {gold:g}, have {village.economy.treasury:g} in treasury")
        resource_lines += [c for c in choice.resource_cost if c.resource != ResourceType.GOLD]

        if resource_lines:
            validation = self.resources.validate_transaction(
                Transaction(
                    id=f"choice:{choice.id}",
                    type="consumption",
                    resources=resource_lines,
                    description=choice.name,
                ),
                village.resources,
            )
            reasons.extend(validation.errors)
        return reasons

    def _pay_choice_costs(self, choice: PlayerChoice, village: Village) -> Village:
        """金币从金库扣除，其余资源从库存扣除。"""
        updated = village.model_copy(deep=True)
        gold = sum(c.amount for c in choice.resource_cost if c.resource == ResourceType.GOLD)
        updated.economy.treasury -= gold
        others = [c for c in choice.resource_cost if c.resource != ResourceType.GOLD]
        if others:
            updated.resources = self.resources.apply_costs(updated.resources, others)
        return updated

    def handle_player_choices(
        self,
        event: GameEvent,
        choice: PlayerChoice,
        village: Village,
        now: datetime | None = None,
    ) -> ChoiceResult:
        """结算玩家选择。

        一次掷骰 r∈[0,100)：r < 暴击率 → 暴击（效果 ×1.5）；r < 成功率 → 成功；否则失败。
        事件已结算或条件不满足时不扣费、不结算事件，只施加 -5 幸福 / -2 稳定惩罚。
        """
        now = now or datetime.now()
        try:
            if not event.is_active or event.is_resolved:
                raise ChoiceRequirementError(choice.id, [f"Event {event.id} is no longer active"])
            reasons = self.check_choice_requirements(choice, village)
            if reasons:
                raise ChoiceRequirementError(choice.id, reasons)

            working = self._pay_choice_costs(choice, village)
            roll = self.rng.random() * 100
            critical = roll < choice.critical_success_chance
            success = critical or roll < choice.success_chance

            if critical:
                effects = [
                    e.model_copy(update={"modifier": e.modifier * catalog.CRITICAL_EFFECT_MULTIPLIER})
                    for e in choice.immediate_effects
                ]
                description = (
                    choice.outcome_descriptions.critical_success or choice.outcome_descriptions.success
                )
            elif success:
                effects = list(choice.immediate_effects)
                description = choice.outcome_descriptions.success
            else:
                effects = list(choice.failure_consequences)
                description = choice.outcome_descriptions.failure

            working, changes = self.apply_event_effects(effects, working, now)
            outcome = EventOutcome(
                success=success,
                critical=critical,
                description=description,
                unexpected_consequences=[] if success else [f"{choice.name} did not go as planned"],
                resource_changes=changes.resource_changes,
                population_change=changes.population_change,
                happiness_change=changes.happiness_change,
                stability_change=changes.stability_change,
            )

            resolved = self._resolve(event, now, chosen=choice.id)
            children = [
                self._chained_event(ChainReaction(event_type=kind, probability=100), resolved, working, now)
                for kind in choice.chain_events
            ]
            resolved.child_event_ids.extend(c.id for c in children)

            self._commit_resolution(village.id, resolved, outcome, changes, children, now)
            if success:
                self._schedule_effects(village.id, resolved.id, choice.delayed_effects, now)
        except ChoiceRequirementError as e:
            logger.info("选择 %s 无法执行: %s", choice.id, "; ".join(e.reasons))
            return ChoiceResult(
                outcome=EventOutcome(
                    success=False,
                    description=catalog.CHOICE_REQUIREMENT_FAILURE,
                    unexpected_consequences=["Player choice requirements not met", *e.reasons],
                    happiness_change=-5,
                    stability_change=-2,
                ),
                event=event,
                village=self._penalize(village, -5, -2, now),
            )
        except Exception as e:
            logger.error("结算选择 %s 失败: %s", choice.id, e)
            return ChoiceResult(
                outcome=EventOutcome(
                    success=False,
                    description=catalog.CHOICE_UNEXPECTED_FAILURE,
                    unexpected_consequences=["System error during choice processing"],
                    happiness_change=-3,
                    stability_change=-1,
                ),
                event=event,
                village=self._penalize(village, -3, -1, now),
            )

        logger.info(
            "%s 选择 %s: %s (roll=%.1f)",
            village.name,
            choice.name,
            "critical" if critical else "success" if success else "failure",
            roll,
        )
        return ChoiceResult(outcome=outcome, event=resolved, village=working, chain_events=children, roll=roll)

    # ── 延迟效果 ──

    def _schedule_effects(
        self, village_id: str, source_id: str, effects: list[DelayedEffect], now: datetime
    ) -> None:
        if not effects:
            return
        pending = self.get_pending_effects(village_id)
        pending += [
            PendingEffect(source_id=source_id, due_date=now + timedelta(days=e.delay), effect=e)
            for e in effects
        ]
        self._save_pending(village_id, pending)

    def apply_due_effects(self, village: Village, now: datetime | None = None) -> Village:
        """应用已到期的延迟效果，未到期的保留。条件不满足的到期效果直接丢弃。"""
        now = now or datetime.now()
        pending = self.get_pending_effects(village.id)
        if not pending:
            return village
        due = [p for p in pending if p.due_date <= now]
        if not due:
            return village

        effects: list[EventEffect] = []
        for item in due:
            if item.effect.condition and not evaluate_condition_string(item.effect.condition, village):
                logger.debug("延迟效果 %s 条件不满足，丢弃", item.effect.description)
                continue
            effects.append(EventEffect.model_validate(item.effect.model_dump(exclude={"delay", "condition"})))
        updated, _ = self.apply_event_effects(effects, village, now)
        self._save_pending(village.id, [p for p in pending if p.due_date > now])
        logger.info("%s 应用了 %d 个延迟效果", village.name, len(effects))
        return updated

    # ── 排期 ──

    def schedule_seasonal_events(
        self, village: Village, season: str | None = None, now: datetime | None = None
    ) -> list[ScheduledEvent]:
        """为指定季节排期季节性事件（季节循环）。同一天同类型的事件不会重复排期。"""
        now = now or datetime.now()
        season = season or village.season.current
        info = village.season
        if season == info.current:
            season_start = now - timedelta(days=info.day - 1)
        else:
            season_start = now + timedelta(days=info.total_days - info.day + 1)

        existing = self.get_scheduled_events(village.id)
        taken = {(s.event_kind, s.scheduled_date.date()) for s in existing}
        created: list[ScheduledEvent] = []
        for template in catalog.SEASONAL_EVENTS.get(season, []):
            date = season_start + timedelta(days=template.day_offset - 1)
            if (template.kind, date.date()) in taken:
                continue
            created.append(
                ScheduledEvent(
                    event_id=uuid.uuid4().hex,
                    scheduled_date=date,
                    event_type="cultural",
                    event_kind=template.kind,
                    name=template.name,
                    description=template.description,
                    is_recurring=True,
                    recurrence_pattern=RecurrencePattern(
                        type="seasonal", interval=1, conditions=[f"season:{season}"]
                    ),
                )
            )
        if created:
            self._save_scheduled(village.id, existing + created)
            logger.info("%s 排期了 %d 个 %s 季节事件", village.name, len(created), season)
        return created

    def release_due_events(self, village: Village, now: datetime | None = None) -> list[GameEvent]:
        """把到期的排期事件转为活跃事件。

        延迟连锁事件激活后从排期中移除；季节循环事件激活后顺延一年。
        """
        now = now or datetime.now()
        scheduled = self.get_scheduled_events(village.id)
        released: list[GameEvent] = []
        remaining: list[ScheduledEvent] = []
        year = timedelta(days=village.season.total_days * 4)

        for item in scheduled:
            if item.scheduled_date > now:
                remaining.append(item)
                continue
            if item.pending_event is not None:
                event = item.pending_event.model_copy(deep=True)
                event.start_date = now
                released.append(event)
            else:
                released.append(self._seasonal_event(item, village, now))
            if item.is_recurring:
                remaining.append(item.model_copy(update={"scheduled_date": item.scheduled_date + year}))

        if released:
            self._save_scheduled(village.id, remaining)
            self._save_active(village.id, released, [])
            logger.info("%s 到期激活 %d 个排期事件", village.name, len(released))
        return released

    def _seasonal_event(self, item: ScheduledEvent, village: Village, now: datetime) -> GameEvent:
        return GameEvent(
            id=uuid.uuid4().hex,
            name=item.name,
            type=item.event_type,
            category="SOCIAL",
            event_kind=item.event_kind,
            severity="beneficial",
            description=item.description,
            start_date=now,
            effects=[EventEffect(type="happiness", modifier=4, duration=1, description=item.name)],
            probability=self.calculate_event_probability(item.event_type, village),
            narrative_context=NarrativeContext(
                tone="celebratory",
                themes=["seasonal", village.season.current],
                village_personality=personality_summary(village),
            ),
        )
