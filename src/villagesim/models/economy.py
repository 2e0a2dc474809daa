"""危机、应急、优化与贸易的结果模型。

这些都是从 ResourceState / Village 派生出来的视图，不单独持久化。
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from villagesim.models.resource import ResourceCost, ResourceType, ResourceUpdate
from villagesim.models.village import NaturalResource, Village

CrisisSeverity = Literal["minor", "moderate", "major", "catastrophic"]
CrisisType = Literal["shortage", "quality_degradation", "storage_overflow"]
Priority = Literal["low", "medium", "high", "critical"]


# ────────────────────────────────────────────
# 危机
# ────────────────────────────────────────────


class CrisisImpact(BaseModel):
    population_happiness: float = 0.0
    population_health: float = 0.0
    economic_damage: float = 0.0
    building_efficiency: float = 0.0
    description: str = ""


class ResourceCrisis(BaseModel):
    """检测到的资源危机。每个 tick 重新计算，是视图而不是事实。"""

    type: CrisisType
    resource: ResourceType
    severity: CrisisSeverity
    current_amount: float
    daily_consumption: float
    days_until_depletion: float = Field(description="耗尽天数；无消耗时为 inf")
    impact: CrisisImpact = Field(default_factory=CrisisImpact)
    suggested_actions: list[str] = Field(default_factory=list)
    urgency: float = Field(ge=0.0, le=100.0)


class EmergencyAction(BaseModel):
    type: Literal[
        "rationing", "procurement", "production_boost", "quality_improvement", "storage_expansion"
    ]
    description: str
    cost: list[ResourceCost] = Field(default_factory=list)
    effectiveness: float = Field(ge=0.0, le=100.0)
    time_to_implement: float = Field(ge=0.0, description="天")
    requirements: list[str] = Field(default_factory=list)


class EmergencyOutcome(BaseModel):
    success_probability: float
    time_to_resolve: float
    residual_impact: float
    long_term_effects: list[str] = Field(default_factory=list)


class EmergencyResponse(BaseModel):
    crisis_id: str
    actions: list[EmergencyAction] = Field(default_factory=list)
    estimated_effectiveness: float
    implementation_time: float
    total_cost: list[ResourceCost] = Field(default_factory=list)
    expected_outcome: EmergencyOutcome


# ────────────────────────────────────────────
# 优化
# ────────────────────────────────────────────


class OptimizationRecommendation(BaseModel):
    type: Literal["build", "upgrade", "demolish", "reassign", "trade", "policy"]
    target: str
    description: str
    cost: list[ResourceCost] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    time_to_implement: float = 0.0
    confidence: float = Field(default=50.0, ge=0.0, le=100.0)


class OptimizationResult(BaseModel):
    recommendations: list[OptimizationRecommendation] = Field(default_factory=list)
    potential_savings: dict[ResourceType, float] = Field(default_factory=dict)
    efficiency_gains: dict[str, float] = Field(
        default_factory=dict, description="建筑 ID -> 可提升的效率"
    )
    implementation_cost: list[ResourceCost] = Field(default_factory=list)
    expected_roi: float = 0.0
    priority: Priority = "low"


# ────────────────────────────────────────────
# 生产
# ────────────────────────────────────────────


class ProductionReport(BaseModel):
    """一轮建筑生产的结果：变动记录 + 开采后的矿藏状态。"""

    updates: list[ResourceUpdate] = Field(default_factory=list)
    deposits: list[NaturalResource] = Field(default_factory=list)


# ────────────────────────────────────────────
# 贸易
# ────────────────────────────────────────────


class TradeOpportunity(BaseModel):
    route_id: str
    type: Literal["export", "import"]
    resource: ResourceType
    quantity: float
    expected_profit: float
    risk_level: float
    time_to_complete: float
    requirements: list[ResourceCost] = Field(default_factory=list)

    @property
    def score(self) -> float:
        """风险调整后的排序分数。"""
        return self.expected_profit / (1 + self.risk_level / 100)


class TradeResult(BaseModel):
    """贸易执行结果。失败时 village 为 None，调用方的村庄保持原样。"""

    success: bool
    error: str | None = None
    changes: list[ResourceUpdate] = Field(default_factory=list)
    profit: float = 0.0
    duration: float = 0.0
    village: Village | None = None
