"""Pydantic 数据模型。"""

from villagesim.models.economy import (
    CrisisImpact,
    EmergencyAction,
    EmergencyOutcome,
    EmergencyResponse,
    OptimizationRecommendation,
    OptimizationResult,
    ProductionReport,
    ResourceCrisis,
    TradeOpportunity,
    TradeResult,
)
from villagesim.models.event import (
    ChainReaction,
    ChoiceResult,
    DelayedEffect,
    EventEffect,
    EventOutcome,
    EventRequirement,
    EventResult,
    GameEvent,
    HistoricalEvent,
    ImpactAssessment,
    OutcomeDescriptions,
    PendingEffect,
    PlayerChoice,
    RecurrencePattern,
    ScheduledEvent,
    VillageStateChanges,
)
from villagesim.models.resource import (
    ResourceCost,
    ResourceDemand,
    ResourceState,
    ResourceStock,
    ResourceType,
    ResourceUpdate,
    Transaction,
    ValidationResult,
)
from villagesim.models.village import (
    Building,
    NaturalResource,
    ResourceConsumption,
    ResourceProduction,
    SeasonInfo,
    TradeGood,
    TradeRoute,
    Village,
    VillageConfig,
    VillageEconomy,
    VillagePersonality,
    VillagePopulation,
    WeatherEffect,
    WeatherState,
    Worker,
)

__all__ = [
    "Building",
    "ChainReaction",
    "ChoiceResult",
    "CrisisImpact",
    "DelayedEffect",
    "EmergencyAction",
    "EmergencyOutcome",
    "EmergencyResponse",
    "EventEffect",
    "EventOutcome",
    "EventRequirement",
    "EventResult",
    "GameEvent",
    "HistoricalEvent",
    "ImpactAssessment",
    "NaturalResource",
    "OptimizationRecommendation",
    "OptimizationResult",
    "OutcomeDescriptions",
    "PendingEffect",
    "PlayerChoice",
    "ProductionReport",
    "RecurrencePattern",
    "ResourceConsumption",
    "ResourceCost",
    "ResourceCrisis",
    "ResourceDemand",
    "ResourceProduction",
    "ResourceState",
    "ResourceStock",
    "ResourceType",
    "ResourceUpdate",
    "ScheduledEvent",
    "SeasonInfo",
    "TradeGood",
    "TradeOpportunity",
    "TradeResult",
    "TradeRoute",
    "Transaction",
    "ValidationResult",
    "Village",
    "VillageConfig",
    "VillageEconomy",
    "VillagePersonality",
    "VillagePopulation",
    "VillageStateChanges",
    "WeatherEffect",
    "WeatherState",
    "Worker",
]
