"""资源目录：容量、腐损、人口消耗系数、季节修正、生产链等静态表。"""

from __future__ import annotations

from pydantic import BaseModel, Field

from villagesim.models.resource import ResourceType

R = ResourceType

# 每日腐损率（负值 = 随时间升值）
SPOILAGE_RATES: dict[ResourceType, float] = {
    R.FOOD: 0.02,
    R.WATER: 0.001,
    R.WOOD: 0.0,
    R.STONE: 0.0,
    R.IRON: 0.0,
    R.GOLD: 0.0,
    R.LUMBER: 0.001,
    R.TOOLS: 0.0005,
    R.WEAPONS: 0.0005,
    R.CLOTH: 0.005,
    R.POTTERY: 0.0,
    R.BOOKS: 0.002,
    R.SPICES: 0.01,
    R.JEWELRY: 0.0,
    R.ART: 0.001,
    R.WINE: -0.001,
    R.SILK: 0.003,
    R.KNOWLEDGE: 0.0001,
    R.CULTURE: 0.0,
    R.FAITH: 0.0,
    R.INFLUENCE: 0.005,
}

# 100 人口时的基础存储容量，按 population/100 线性缩放
BASE_CAPACITY: dict[ResourceType, float] = {
    R.FOOD: 500,
    R.WATER: 1000,
    R.WOOD: 200,
    R.STONE: 300,
    R.IRON: 100,
    R.GOLD: 50,
    R.LUMBER: 150,
    R.TOOLS: 50,
    R.WEAPONS: 25,
    R.CLOTH: 100,
    R.POTTERY: 75,
    R.BOOKS: 30,
    R.SPICES: 20,
    R.JEWELRY: 10,
    R.ART: 15,
    R.WINE: 40,
    R.SILK: 25,
    R.KNOWLEDGE: 100,
    R.CULTURE: 50,
    R.FAITH: 75,
    R.INFLUENCE: 25,
}

# 初始日产量：(常数项, 每 100 人增量)
BASE_PRODUCTION: dict[ResourceType, tuple[float, float]] = {
    R.FOOD: (5.0, 2.0),
    R.WATER: (10.0, 3.0),
    R.WOOD: (3.0, 1.5),
    R.STONE: (1.0, 0.5),
    R.KNOWLEDGE: (0.5, 0.2),
    R.CULTURE: (0.3, 0.1),
}

# 初始人均日消耗
PER_CAPITA_CONSUMPTION: dict[ResourceType, float] = {
    R.FOOD: 2.0,
    R.WATER: 3.0,
    R.WOOD: 0.5,
}

# 地理条件对初始产量的修正
CLIMATE_MODIFIERS: dict[str, dict[ResourceType, float]] = {
    "temperate": {},
    "arid": {R.FOOD: 0.7, R.WATER: 0.6, R.STONE: 1.2},
    "cold": {R.FOOD: 0.8, R.WOOD: 1.2},
    "tropical": {R.FOOD: 1.2, R.WOOD: 1.3, R.STONE: 0.9},
}
WATER_ACCESS_MODIFIERS: dict[str, float] = {
    "riverside": 1.2,
    "lakeside": 1.1,
    "wells": 1.0,
    "coastal": 0.9,
    "dry": 0.6,
}

DEFAULT_QUALITY = 75.0
DEFAULT_EFFICIENCY = 0.8

# ── 人口消耗系数（人均日需求）──
DEMOGRAPHIC_CONSUMPTION: dict[str, dict[ResourceType, float]] = {
    "children": {R.FOOD: 1.5, R.WATER: 2.5, R.CLOTH: 0.1},
    "adults": {R.FOOD: 2.0, R.WATER: 3.0, R.WOOD: 0.3, R.TOOLS: 0.01, R.CLOTH: 0.05},
    "elderly": {R.FOOD: 1.8, R.WATER: 2.8, R.WOOD: 0.4},
}

# 生存必需品占总需求的比例
URGENT_NEED_RATIOS: dict[ResourceType, float] = {R.FOOD: 0.8, R.WATER: 0.9}

# ── 季节修正（作用于日产量）──
SEASONAL_MODIFIERS: dict[str, dict[ResourceType, float]] = {
    "spring": {R.FOOD: 1.2, R.WOOD: 1.1, R.WATER: 1.1},
    "summer": {R.FOOD: 1.3, R.STONE: 1.2, R.WATER: 0.9},
    "autumn": {R.FOOD: 1.1, R.WOOD: 1.2, R.WATER: 1.0},
    "winter": {R.FOOD: 0.7, R.WOOD: 0.8, R.STONE: 0.6, R.WATER: 0.8},
}
WEATHER_SENSITIVE: tuple[ResourceType, ...] = (R.FOOD, R.WOOD, R.STONE)
WINTER_HEATING_SURCHARGE = 0.5
SUMMER_WATER_SURCHARGE = 0.3

# ── 建筑 ──
CONDITION_MODIFIERS: dict[str, float] = {
    "perfect": 1.1,
    "good": 1.0,
    "fair": 0.9,
    "poor": 0.7,
    "dilapidated": 0.4,
    "ruins": 0.1,
}
DEFAULT_CONDITION_MODIFIER = 0.8
DEFAULT_WORKER_EFFICIENCY = 50.0
MIN_SHORTAGE_FACTOR = 0.1

# ── 贸易 ──
PRODUCTION_COSTS: dict[ResourceType, float] = {
    R.FOOD: 1,
    R.WOOD: 2,
    R.STONE: 3,
    R.IRON: 5,
    R.GOLD: 10,
    R.LUMBER: 3,
    R.TOOLS: 8,
    R.WEAPONS: 15,
    R.CLOTH: 4,
    R.POTTERY: 6,
}
DEFAULT_PRODUCTION_COST = 5.0
DEFAULT_MARKET_PRICE = 5.0
RISK_COST_FACTOR = 0.1


class ProductionChain(BaseModel):
    """加工链：在指定建筑中把原料转化为成品。"""

    id: str
    name: str
    inputs: list[tuple[ResourceType, float]]
    outputs: list[tuple[ResourceType, float]]
    building_type: str
    workers_required: int = Field(default=1, ge=0)
    time_required: float = Field(description="每批次耗时（小时）")
    efficiency: float = Field(ge=0.0, le=100.0)
    seasonal_modifiers: dict[str, float] = Field(default_factory=dict)


PRODUCTION_CHAINS: list[ProductionChain] = [
    ProductionChain(
        id="wood_to_lumber",
        name="Lumber Processing",
        inputs=[(R.WOOD, 2)],
        outputs=[(R.LUMBER, 1)],
        building_type="lumber_mill",
        workers_required=1,
        time_required=4,
        efficiency=85,
        seasonal_modifiers={"spring": 1.1, "summer": 1.2, "autumn": 1.0, "winter": 0.8},
    ),
    ProductionChain(
        id="iron_to_tools",
        name="Tool Making",
        inputs=[(R.IRON, 1), (R.WOOD, 1)],
        outputs=[(R.TOOLS, 1)],
        building_type="workshop",
        workers_required=2,
        time_required=8,
        efficiency=90,
        seasonal_modifiers={"spring": 1.0, "summer": 1.0, "autumn": 1.0, "winter": 1.0},
    ),
    ProductionChain(
        id="tools_to_weapons",
        name="Weapon Smithing",
        inputs=[(R.IRON, 2), (R.TOOLS, 1)],
        outputs=[(R.WEAPONS, 1)],
        building_type="workshop",
        workers_required=3,
        time_required=12,
        efficiency=80,
        seasonal_modifiers={"spring": 1.0, "summer": 1.0, "autumn": 1.0, "winter": 0.9},
    ),
]


def storage_capacity(resource: ResourceType, population: int) -> float:
    """按人口缩放后的存储上限（至少为 1）。"""
    return max(1.0, float(int(BASE_CAPACITY[resource] * population / 100)))
