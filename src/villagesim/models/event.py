"""村庄事件数据模型。

事件生命周期：candidate（加权候选）→ active（已实例化）→ resolved（终态，写入历史）
→ 可能派生出 chained 候选。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from villagesim.models.resource import ResourceCost, ResourceType
from villagesim.models.village import Village

EventType = Literal[
    "natural",
    "economic",
    "social",
    "military",
    "technological",
    "political",
    "cultural",
    "supernatural",
]
EventSeverity = Literal["minor", "moderate", "major", "catastrophic", "beneficial"]
EventTone = Literal["serious", "lighthearted", "mysterious", "urgent", "celebratory"]


class EventEffect(BaseModel):
    """作用于村庄聚合的单个效果。

    type 为 resource 时 target 是资源名，modifier 是增减数量；
    其余类型 modifier 是百分点（population 为人数）。
    """

    type: Literal[
        "resource", "population", "building", "happiness", "stability", "prosperity", "defense"
    ]
    target: str | None = None
    modifier: float
    duration: float = Field(default=1.0, description="天；-1 表示永久")
    description: str = ""


class DelayedEffect(EventEffect):
    delay: float = Field(ge=0.0, description="多少天后生效")
    condition: str | None = None


class EventRequirement(BaseModel):
    type: Literal["resource", "building", "population", "skill", "technology"]
    target: str
    amount: float | None = None
    level: int | None = None


class EventTrigger(BaseModel):
    type: Literal["resource", "population", "happiness", "season", "building", "time", "random"]
    condition: str
    threshold: float | None = None
    probability: float = Field(default=100.0, ge=0.0, le=100.0)


class ChainReaction(BaseModel):
    """连锁反应：触发事件解决后以 probability 概率派生新事件。"""

    event_type: str = Field(description="派生事件的具体类型，如 'famine'、'festival'")
    delay: float = Field(default=0.0, ge=0.0, description="延迟天数，0 表示立即")
    probability: float = Field(ge=0.0, le=100.0)
    condition: str | None = Field(
        default=None, description="附加条件，如 'happiness < 40'、'resource:food < 100'"
    )
    description: str = ""


class OutcomeDescriptions(BaseModel):
    success: str
    critical_success: str | None = None
    failure: str


class PlayerChoice(BaseModel):
    """事件上的一个可选应对。"""

    id: str
    name: str
    description: str = ""
    requirements: list[EventRequirement] = Field(default_factory=list)
    resource_cost: list[ResourceCost] = Field(default_factory=list)
    time_cost: float | None = None
    immediate_effects: list[EventEffect] = Field(default_factory=list)
    delayed_effects: list[DelayedEffect] = Field(default_factory=list)
    chain_events: list[str] = Field(default_factory=list, description="可能派生的事件类型")
    success_chance: float = Field(default=100.0, ge=0.0, le=100.0)
    critical_success_chance: float = Field(default=0.0, ge=0.0, le=100.0)
    failure_consequences: list[EventEffect] = Field(default_factory=list)
    flavor_text: str | None = None
    outcome_descriptions: OutcomeDescriptions


class NarrativeContext(BaseModel):
    tone: EventTone = "serious"
    themes: list[str] = Field(default_factory=list)
    previous_events: list[str] = Field(default_factory=list)
    village_personality: str = ""


class GameEvent(BaseModel):
    """村庄事件。"""

    id: str
    name: str
    type: EventType
    category: str = Field(default="SOCIAL", description="事件大类，如 NATURAL / CRISIS")
    event_kind: str = Field(default="", description="大类下的具体类型，如 'festival'")
    severity: EventSeverity = "moderate"
    description: str = ""
    start_date: datetime = Field(default_factory=datetime.now)
    duration: float = 1.0
    end_date: datetime | None = None
    effects: list[EventEffect] = Field(default_factory=list)
    delayed_effects: list[DelayedEffect] = Field(default_factory=list)
    chosen_response: str | None = None
    is_active: bool = True
    is_resolved: bool = False
    generated_by_ai: bool = False

    probability: float = Field(default=10.0, ge=0.0, le=100.0)
    trigger_conditions: list[EventTrigger] = Field(default_factory=list)
    chain_reactions: list[ChainReaction] = Field(default_factory=list)
    player_choices: list[PlayerChoice] = Field(default_factory=list)
    time_limit: float | None = Field(default=None, description="做出选择的秒数；None 表示不限")

    parent_event_id: str | None = None
    child_event_ids: list[str] = Field(default_factory=list)
    narrative_context: NarrativeContext | None = None


class EventOutcome(BaseModel):
    success: bool
    description: str
    critical: bool = False
    unexpected_consequences: list[str] = Field(default_factory=list)
    resource_changes: dict[ResourceType, float] = Field(default_factory=dict)
    population_change: float = 0.0
    happiness_change: float = 0.0
    stability_change: float = 0.0


class VillageStateChanges(BaseModel):
    resource_changes: dict[ResourceType, float] = Field(default_factory=dict)
    happiness_change: float = 0.0
    stability_change: float = 0.0
    prosperity_change: float = 0.0
    defense_change: float = 0.0
    population_change: float = 0.0
    building_effects: dict[str, list[EventEffect]] = Field(default_factory=dict)


class ImpactAssessment(BaseModel):
    economic: float = 0.0
    social: float = 0.0
    political: float = 0.0
    cultural: float = 0.0
    description: str = ""


class HistoricalEvent(BaseModel):
    """已解决事件的历史记录。持久化于 village:<id>:event_history。"""

    event_id: str
    name: str
    type: EventType
    severity: EventSeverity
    date: datetime
    duration: float
    outcome: EventOutcome
    consequences: list[str] = Field(default_factory=list)
    short_term_impact: ImpactAssessment
    long_term_impact: ImpactAssessment
    parent_event_id: str | None = None
    child_event_ids: list[str] = Field(default_factory=list)


class RecurrencePattern(BaseModel):
    type: Literal["daily", "weekly", "monthly", "seasonal", "annual"]
    interval: int = 1
    conditions: list[str] = Field(default_factory=list)


class ScheduledEvent(BaseModel):
    """排期事件：季节性事件或延迟的连锁事件。"""

    event_id: str
    scheduled_date: datetime
    event_type: EventType
    event_kind: str = ""
    name: str
    description: str = ""
    is_recurring: bool = False
    recurrence_pattern: RecurrencePattern | None = None
    parent_event_id: str | None = None
    pending_event: GameEvent | None = Field(
        default=None, description="延迟连锁事件的完整数据，到期后转为活跃事件"
    )


class PendingEffect(BaseModel):
    """排队等待生效的延迟效果。"""

    source_id: str
    due_date: datetime
    effect: DelayedEffect


class EventResult(BaseModel):
    success: bool
    event: GameEvent
    outcome: EventOutcome
    chain_events: list[GameEvent] = Field(default_factory=list)
    village_changes: VillageStateChanges = Field(default_factory=VillageStateChanges)
    narrative_text: str = ""
    village: Village


class ChoiceResult(BaseModel):
    """玩家选择的结算结果。"""

    outcome: EventOutcome
    event: GameEvent
    village: Village
    chain_events: list[GameEvent] = Field(default_factory=list)
    roll: float | None = None
