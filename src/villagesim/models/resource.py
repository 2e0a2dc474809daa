"""资源系统数据模型。

村庄的经济账本：每种资源一份库存，外加日产量、日消耗、净流量与效率。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class ResourceType(str, Enum):
    """资源类型（封闭枚举，运行时不可扩展）。"""

    # 生存
    FOOD = "food"
    WATER = "water"
    # 原材料
    WOOD = "wood"
    STONE = "stone"
    IRON = "iron"
    # 加工品
    LUMBER = "lumber"
    TOOLS = "tools"
    WEAPONS = "weapons"
    CLOTH = "cloth"
    POTTERY = "pottery"
    BOOKS = "books"
    # 奢侈品
    SPICES = "spices"
    JEWELRY = "jewelry"
    ART = "art"
    WINE = "wine"
    SILK = "silk"
    # 货币
    GOLD = "gold"
    # 抽象资源
    KNOWLEDGE = "knowledge"
    CULTURE = "culture"
    FAITH = "faith"
    INFLUENCE = "influence"


class ResourceStock(BaseModel):
    """单个资源在单个村庄中的库存。

    每次更新结束时保证 0 <= current <= maximum；reserved <= current。
    spoilage_rate 为负表示升值（例如葡萄酒越陈越好）。
    """

    current: float = Field(default=0.0, ge=0.0, description="当前存量")
    maximum: float = Field(default=1.0, gt=0.0, description="存储上限")
    reserved: float = Field(default=0.0, ge=0.0, description="已预留给建造/项目的数量")
    quality: float = Field(default=75.0, ge=0.0, le=100.0, description="品质（0-100）")
    spoilage_rate: float = Field(default=0.0, description="每日腐损率（负值=升值）")
    storage_buildings: list[str] = Field(default_factory=list, description="存放该资源的建筑 ID")
    last_updated: datetime = Field(default_factory=datetime.now)

    @property
    def available(self) -> float:
        """可自由支配的数量（扣除预留）。"""
        return self.current - self.reserved

    @property
    def utilization(self) -> float:
        return self.current / self.maximum


class ResourceState(BaseModel):
    """村庄的资源快照。

    total_capacity / used_capacity 是派生值，必须等于各库存之和。
    base_production / base_consumption 记录未受季节、天气修正的基准流量，
    季节修正总是基于它们计算，避免逐 tick 复利叠加。
    """

    resources: dict[ResourceType, ResourceStock] = Field(default_factory=dict)
    total_capacity: float = Field(default=0.0)
    used_capacity: float = Field(default=0.0)
    daily_production: dict[ResourceType, float] = Field(default_factory=dict)
    daily_consumption: dict[ResourceType, float] = Field(default_factory=dict)
    net_flow: dict[ResourceType, float] = Field(default_factory=dict)
    efficiency: dict[ResourceType, float] = Field(
        default_factory=dict, description="生产效率乘数（0-1）"
    )
    base_production: dict[ResourceType, float] = Field(default_factory=dict)
    base_consumption: dict[ResourceType, float] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=datetime.now)

    def stock(self, resource: ResourceType) -> ResourceStock:
        return self.resources[resource]

    def consumption_of(self, resource: ResourceType) -> float:
        return self.daily_consumption.get(resource, 0.0)

    def production_of(self, resource: ResourceType) -> float:
        return self.daily_production.get(resource, 0.0)


class ResourceCost(BaseModel):
    """一条资源成本（或产出）。"""

    resource: ResourceType
    amount: float = Field(ge=0.0)
    quality: float | None = Field(default=None, description="要求的最低品质")


TransactionType = Literal["production", "consumption", "trade", "construction", "emergency"]


class Transaction(BaseModel):
    """一次原子的资源变动意图。提交前必须校验，校验不修改状态。"""

    id: str
    type: TransactionType
    resources: list[ResourceCost] = Field(default_factory=list)
    source: str | None = Field(default=None, description="来源建筑或实体 ID")
    target: str | None = Field(default=None, description="目标建筑或实体 ID")
    timestamp: datetime = Field(default_factory=datetime.now)
    description: str = ""


class ValidationResult(BaseModel):
    """事务校验结果。"""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class ResourceUpdate(BaseModel):
    """一次资源变动记录。"""

    resource: ResourceType
    previous_amount: float
    new_amount: float
    change: float
    reason: str
    efficiency: float = 1.0
    timestamp: datetime = Field(default_factory=datetime.now)


class DemographicBreakdown(BaseModel):
    children: dict[ResourceType, float] = Field(default_factory=dict)
    adults: dict[ResourceType, float] = Field(default_factory=dict)
    elderly: dict[ResourceType, float] = Field(default_factory=dict)


class ResourceDemand(BaseModel):
    """人口对资源需求的只读投影，按需重算，不持久化。"""

    total_demand: dict[ResourceType, float] = Field(default_factory=dict)
    demographic_breakdown: DemographicBreakdown = Field(default_factory=DemographicBreakdown)
    urgent_needs: list[ResourceCost] = Field(default_factory=list)
    luxury_wants: list[ResourceCost] = Field(default_factory=list)
    projected_growth: dict[ResourceType, float] = Field(default_factory=dict)
