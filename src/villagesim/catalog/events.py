"""事件目录：事件大类权重、季节性事件表与兜底事件模板。"""

from __future__ import annotations

from pydantic import BaseModel, Field

from villagesim.models.event import ChainReaction, EventEffect, EventSeverity, EventType


class EventCategory(BaseModel):
    """事件大类。modifiers 是按村庄状态分档的权重乘数。"""

    name: str
    types: list[str]
    base_weight: float
    modifiers: dict[str, float] = Field(default_factory=dict)


EVENT_CATEGORIES: dict[str, EventCategory] = {
    "NATURAL": EventCategory(
        name="NATURAL",
        types=["weather", "disaster", "abundance", "seasonal_change"],
        base_weight=25,
        modifiers={"spring": 1.2, "summer": 1.0, "autumn": 0.8, "winter": 1.1},
    ),
    "SOCIAL": EventCategory(
        name="SOCIAL",
        types=["festival", "conflict", "migration", "marriage", "birth", "death"],
        base_weight=30,
        modifiers={"low": 0.7, "medium": 1.0, "high": 1.3},
    ),
    "ECONOMIC": EventCategory(
        name="ECONOMIC",
        types=["trade_opportunity", "market_crash", "discovery", "resource_depletion"],
        base_weight=20,
        modifiers={"poor": 1.5, "modest": 1.0, "wealthy": 0.8},
    ),
    "MAGICAL": EventCategory(
        name="MAGICAL",
        types=["mysterious_phenomena", "magical_discovery", "supernatural_visitor", "ancient_awakening"],
        base_weight=10,
        modifiers={"low": 0.5, "medium": 1.0, "high": 1.5},
    ),
    "CRISIS": EventCategory(
        name="CRISIS",
        types=["plague", "raid", "famine", "political_upheaval", "natural_disaster"],
        base_weight=15,
        modifiers={"unstable": 2.0, "stable": 1.0, "very_stable": 0.5},
    ),
}

CATEGORY_EVENT_TYPES: dict[str, EventType] = {
    "NATURAL": "natural",
    "SOCIAL": "social",
    "ECONOMIC": "economic",
    "MAGICAL": "supernatural",
    "CRISIS": "social",
}

# 具体类型到 EventType 的映射；未列出的按大类映射
KIND_EVENT_TYPES: dict[str, EventType] = {
    "festival": "cultural",
    "plague": "social",
    "raid": "military",
    "famine": "economic",
    "political_upheaval": "political",
    "natural_disaster": "natural",
    "discovery": "technological",
    "magical_discovery": "supernatural",
}


def event_type_for(category: str, kind: str) -> EventType:
    if kind in KIND_EVENT_TYPES:
        return KIND_EVENT_TYPES[kind]
    return CATEGORY_EVENT_TYPES.get(category, "social")


def category_for_kind(kind: str) -> str:
    """反查具体事件类型所属的大类，找不到时归为 SOCIAL。"""
    for name, category in EVENT_CATEGORIES.items():
        if kind in category.types:
            return name
    return "SOCIAL"


# 村庄规模对每 tick 事件概率的乘数
SIZE_EVENT_MULTIPLIERS: dict[str, float] = {
    "hamlet": 0.8,
    "village": 1.0,
    "town": 1.2,
    "city": 1.4,
}
BASE_EVENT_CHANCE = 0.15
MAX_EVENT_CHANCE = 0.8

BASE_EVENT_PROBABILITY = 10.0
MIN_EVENT_PROBABILITY = 1.0
MAX_EVENT_PROBABILITY = 95.0

# 危机等级权重
SEVERITY_CRISIS_WEIGHTS: dict[str, float] = {
    "catastrophic": 40,
    "major": 25,
    "moderate": 10,
    "minor": 2,
    "beneficial": -5,
}

CRITICAL_EFFECT_MULTIPLIER = 1.5

# ── 兜底事件模板 ──


class FallbackTemplate(BaseModel):
    name: str
    description: str
    severity: EventSeverity = "minor"
    effects: list[EventEffect] = Field(default_factory=list)


FALLBACK_EVENTS: dict[str, FallbackTemplate] = {
    "SOCIAL": FallbackTemplate(
        name="Village Gathering",
        description="The villagers come together for an impromptu gathering to discuss recent happenings.",
        severity="beneficial",
        effects=[EventEffect(type="happiness", modifier=5, duration=1, description="Community bonding")],
    ),
    "ECONOMIC": FallbackTemplate(
        name="Trade Opportunity",
        description="A traveling merchant offers to trade goods with the village.",
        severity="minor",
        effects=[
            EventEffect(
                type="resource", target="gold", modifier=10, duration=1, description="Trade opportunity"
            )
        ],
    ),
    "NATURAL": FallbackTemplate(
        name="Pleasant Weather",
        description="The weather has been particularly pleasant, lifting everyone's spirits.",
        severity="beneficial",
        effects=[EventEffect(type="happiness", modifier=3, duration=2, description="Good weather")],
    ),
    "MAGICAL": FallbackTemplate(
        name="Strange Lights",
        description="Faint lights dance above the old well at night. Nobody can explain them.",
        severity="minor",
        effects=[
            EventEffect(
                type="resource", target="culture", modifier=2, duration=1, description="New village legend"
            )
        ],
    ),
    "CRISIS": FallbackTemplate(
        name="Unsettling Rumors",
        description="Rumors of trouble on the roads make the villagers uneasy.",
        severity="moderate",
        effects=[EventEffect(type="stability", modifier=-3, duration=2, description="Growing unease")],
    ),
}

FALLBACK_DESCRIPTION = "Something interesting happens in the village."

# ── 季节性事件 ──


class SeasonalEventTemplate(BaseModel):
    kind: str
    name: str
    description: str
    day_offset: int = Field(description="从本季开始起的第几天")


SEASONAL_EVENTS: dict[str, list[SeasonalEventTemplate]] = {
    "spring": [
        SeasonalEventTemplate(
            kind="planting_festival",
            name="Planting Festival",
            description="Families bless the first seeds of the year in the fields.",
            day_offset=3,
        ),
        SeasonalEventTemplate(
            kind="market_fair",
            name="Spring Market Fair",
            description="Traders from nearby settlements set up stalls in the square.",
            day_offset=15,
        ),
    ],
    "summer": [
        SeasonalEventTemplate(
            kind="midsummer_festival",
            name="Midsummer Festival",
            description="Bonfires burn through the shortest night of the year.",
            day_offset=10,
        ),
        SeasonalEventTemplate(
            kind="harvest_preparation",
            name="Harvest Preparation",
            description="Barns are repaired and tools sharpened for the coming harvest.",
            day_offset=25,
        ),
    ],
    "autumn": [
        SeasonalEventTemplate(
            kind="harvest_festival",
            name="Harvest Festival",
            description="The whole village celebrates the gathered harvest.",
            day_offset=7,
        ),
        SeasonalEventTemplate(
            kind="remembrance_day",
            name="Day of Remembrance",
            description="Villagers honour those lost during the year.",
            day_offset=20,
        ),
    ],
    "winter": [
        SeasonalEventTemplate(
            kind="winter_solstice",
            name="Winter Solstice",
            description="Lanterns are lit to welcome the return of longer days.",
            day_offset=5,
        ),
        SeasonalEventTemplate(
            kind="hearth_gathering",
            name="Hearth Gathering",
            description="Neighbours share stories and food around the great hearth.",
            day_offset=18,
        ),
    ],
}

# ── 叙事文本 ──
PROCESS_FAILURE_NARRATIVE = (
    "The village experienced some confusion as strange circumstances unfolded, but life continues on."
)
CHOICE_REQUIREMENT_FAILURE = (
    "The chosen action cannot be taken due to insufficient resources or unmet requirements."
)
CHOICE_UNEXPECTED_FAILURE = "An unexpected complication arose while implementing your decision."

# ── 默认连锁反应（按具体事件类型）──
DEFAULT_CHAIN_REACTIONS: dict[str, list[ChainReaction]] = {
    "famine": [
        ChainReaction(
            event_type="migration",
            probability=30,
            condition="happiness < 40",
            description="Hungry families leave in search of food.",
        ),
        ChainReaction(
            event_type="plague",
            delay=3,
            probability=15,
            description="Weakened villagers fall ill.",
        ),
    ],
    "raid": [
        ChainReaction(
            event_type="conflict",
            probability=25,
            condition="stability < 50",
            description="Blame for the raid turns neighbours against each other.",
        ),
    ],
    "plague": [
        ChainReaction(
            event_type="death",
            delay=2,
            probability=40,
            description="The sickness claims its first victims.",
        ),
    ],
    "festival": [
        ChainReaction(
            event_type="marriage",
            delay=7,
            probability=20,
            condition="happiness > 60",
            description="A festival romance leads to a wedding.",
        ),
    ],
    "market_crash": [
        ChainReaction(
            event_type="migration",
            delay=2,
            probability=20,
            condition="prosperity < 40",
            description="Ruined merchants pack up and leave.",
        ),
    ],
}
