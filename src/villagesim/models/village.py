"""村庄聚合根数据模型。

建筑、人口、经济、季节天气、贸易路线都挂在 Village 上，
ResourceState 是它的经济账本。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from villagesim.models.resource import ResourceState, ResourceType

VillageSize = Literal["hamlet", "village", "town", "city"]
SeasonType = Literal["spring", "summer", "autumn", "winter"]
BuildingCondition = Literal["perfect", "good", "fair", "poor", "dilapidated", "ruins"]
WeatherType = Literal["sunny", "cloudy", "rainy", "stormy", "snowy", "foggy", "windy", "extreme"]


# ────────────────────────────────────────────
# 建筑与生产
# ────────────────────────────────────────────


class ResourceProduction(BaseModel):
    resource: ResourceType
    amount_per_day: float = Field(ge=0.0)


class ResourceConsumption(BaseModel):
    resource: ResourceType
    amount_per_day: float = Field(ge=0.0)
    is_required: bool = Field(
        default=True, description="为 False 时缺料只降低效率，不阻断生产"
    )


class Worker(BaseModel):
    resident_id: str
    skill: float = Field(default=50.0, ge=0.0, le=100.0)
    efficiency: float = Field(default=50.0, ge=0.0, description="当前工作表现（百分比）")


class Building(BaseModel):
    """村庄建筑。efficiency 为 0-100 的基准效率。"""

    id: str
    name: str
    type: str = Field(description="建筑类型，如 farm / mine / lumber_mill / workshop / warehouse")
    condition: BuildingCondition = "good"
    efficiency: float = Field(default=100.0, ge=0.0, le=100.0)
    level: int = 1
    produces: list[ResourceProduction] = Field(default_factory=list)
    consumes: list[ResourceConsumption] = Field(default_factory=list)
    workers: list[Worker] = Field(default_factory=list)
    required_workers: int = 0
    max_workers: int = 0


class NaturalResource(BaseModel):
    """自然资源矿藏，通过指定建筑开采，每次开采后产量按 depletion_rate 衰减。"""

    id: str
    type: ResourceType
    current_yield: float = Field(ge=0.0)
    max_yield: float = Field(default=0.0, ge=0.0)
    depletion_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    regeneration_rate: float = Field(default=0.0, ge=0.0)
    required_building: str | None = None
    quality: float = Field(default=75.0, ge=0.0, le=100.0)


# ────────────────────────────────────────────
# 人口与经济
# ────────────────────────────────────────────


class VillagePopulation(BaseModel):
    total: int = Field(default=0, ge=0)
    children: int = Field(default=0, ge=0)
    adults: int = Field(default=0, ge=0)
    elderly: int = Field(default=0, ge=0)
    employed: int = Field(default=0, ge=0)
    unemployed: int = Field(default=0, ge=0)
    skilled: int = Field(default=0, ge=0)
    unskilled: int = Field(default=0, ge=0)
    birth_rate: float = Field(default=0.0, description="每千人出生数")
    death_rate: float = Field(default=0.0, description="每千人死亡数")


class VillageEconomy(BaseModel):
    treasury: float = Field(default=0.0, description="金库（金币）")
    monthly_income: float = 0.0
    monthly_expenses: float = 0.0


class TradeGood(BaseModel):
    resource: ResourceType
    quantity: float = Field(gt=0.0)
    price: float = Field(ge=0.0, description="单价")
    demand: float = Field(default=50.0, ge=0.0, le=100.0)


class TradeRoute(BaseModel):
    """贸易路线配置与统计。仅由 execute_trade 修改。"""

    id: str
    destination: str
    distance: float = 0.0
    exports: list[TradeGood] = Field(default_factory=list)
    imports: list[TradeGood] = Field(default_factory=list)
    cost: float = Field(default=0.0, ge=0.0, description="每趟金币成本")
    travel_time: float = Field(default=1.0, ge=0.0, description="单程天数")
    risk_level: float = Field(default=0.0, ge=0.0, le=100.0)
    is_active: bool = True
    last_trade: datetime | None = None
    trades_this_month: int = 0


# ────────────────────────────────────────────
# 环境
# ────────────────────────────────────────────


class WeatherEffect(BaseModel):
    type: Literal["production", "movement", "happiness", "health", "construction"]
    modifier: float = Field(description="百分比修正，如 -20 表示减产 20%")
    description: str = ""


class WeatherState(BaseModel):
    current: WeatherType = "sunny"
    temperature: float = 15.0
    effects: list[WeatherEffect] = Field(default_factory=list)


class SeasonInfo(BaseModel):
    current: SeasonType = "spring"
    day: int = Field(default=1, ge=1, description="本季第几天")
    total_days: int = Field(default=30, ge=1, description="本季总天数")


class VillagePersonality(BaseModel):
    conservatism: float = Field(default=50.0, ge=0.0, le=100.0)
    cooperation: float = Field(default=50.0, ge=0.0, le=100.0)
    ambition: float = Field(default=50.0, ge=0.0, le=100.0)


# ────────────────────────────────────────────
# 聚合根
# ────────────────────────────────────────────


class Village(BaseModel):
    """村庄聚合。持久化键为 village:<id>。"""

    id: str
    name: str
    size: VillageSize = "village"
    age: int = Field(default=0, ge=0, description="游戏天数")
    buildings: list[Building] = Field(default_factory=list)
    natural_resources: list[NaturalResource] = Field(default_factory=list)
    population: VillagePopulation = Field(default_factory=VillagePopulation)
    resources: ResourceState = Field(default_factory=ResourceState)
    economy: VillageEconomy = Field(default_factory=VillageEconomy)
    trade_routes: list[TradeRoute] = Field(default_factory=list)
    market_prices: dict[ResourceType, float] = Field(default_factory=dict)
    technologies: list[str] = Field(default_factory=list)

    happiness: float = Field(default=50.0, ge=0.0, le=100.0)
    stability: float = Field(default=50.0, ge=0.0, le=100.0)
    prosperity: float = Field(default=50.0, ge=0.0, le=100.0)
    defense: float = Field(default=50.0, ge=0.0, le=100.0)

    season: SeasonInfo = Field(default_factory=SeasonInfo)
    weather: WeatherState = Field(default_factory=WeatherState)
    personality: VillagePersonality | None = None

    updated_at: datetime = Field(default_factory=datetime.now)


class VillageConfig(BaseModel):
    """新建村庄的初始配置（通常从 YAML 加载）。"""

    id: str
    name: str
    starting_size: VillageSize = "village"
    starting_population: int = Field(default=100, ge=0)
    starting_resources: dict[ResourceType, float] = Field(default_factory=dict)
    starting_treasury: float = 100.0
    climate: str = Field(default="temperate", description="气候类型，影响初始产出")
    water_access: str = Field(default="riverside", description="取水条件，影响初始产出")
    season: SeasonType = "spring"
    season_length: int = Field(default=30, ge=1)
    buildings: list[Building] = Field(default_factory=list)
    natural_resources: list[NaturalResource] = Field(default_factory=list)
    trade_routes: list[TradeRoute] = Field(default_factory=list)
    market_prices: dict[ResourceType, float] = Field(default_factory=dict)
    personality: VillagePersonality | None = None
