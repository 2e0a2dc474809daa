"""资源管理器：村庄经济账本上的全部纯函数。

所有方法都以模型为输入、返回新模型，不会就地修改调用方的
ResourceState / Village。唯一的随机源不在这里：资源逻辑是确定性的。
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import datetime

from villagesim.catalog import resources as catalog
from villagesim.catalog.resources import PRODUCTION_CHAINS, ProductionChain
from villagesim.engine.errors import TradeError
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
from villagesim.models.resource import (
    DemographicBreakdown,
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
    TradeRoute,
    Village,
    VillageConfig,
    VillagePopulation,
    WeatherEffect,
    WeatherState,
)

logger = logging.getLogger(__name__)

_SPENDING_TRANSACTIONS = {"consumption", "construction", "trade", "emergency"}

_SHORTAGE_URGENCY = {"catastrophic": 100.0, "major": 80.0, "moderate": 60.0, "minor": 40.0}
_SEVERITY_MULTIPLIER = {"catastrophic": 4, "major": 3, "moderate": 2, "minor": 1}


def _num(value: float) -> int | float:
    """把 20.0 显示成 20，其余保留两位小数。"""
    if float(value).is_integer():
        return int(value)
    return round(value, 2)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def aggregate_costs(costs: Iterable[ResourceCost]) -> list[ResourceCost]:
    """按资源类型合并成本，保持首次出现的顺序。"""
    totals: dict[ResourceType, float] = {}
    for cost in costs:
        totals[cost.resource] = totals.get(cost.resource, 0.0) + cost.amount
    return [ResourceCost(resource=r, amount=a) for r, a in totals.items()]


class ResourceManager:
    """资源系统：初始化、时间推进、事务校验、需求、季节、生产、危机、贸易与优化。"""

    # ──────────────────────────────────────────
    # 账本与时间推进
    # ──────────────────────────────────────────

    def initialize_resources(
        self, config: VillageConfig, now: datetime | None = None
    ) -> ResourceState:
        """按配置为每种资源建立库存，并计算初始日产量与日消耗。"""
        now = now or datetime.now()
        population = config.starting_population
        stocks: dict[ResourceType, ResourceStock] = {}
        for resource in ResourceType:
            maximum = catalog.storage_capacity(resource, population)
            current = _clamp(config.starting_resources.get(resource, 0.0), 0.0, maximum)
            stocks[resource] = ResourceStock(
                current=current,
                maximum=maximum,
                quality=catalog.DEFAULT_QUALITY,
                spoilage_rate=catalog.SPOILAGE_RATES[resource],
                last_updated=now,
            )

        production = self._initial_production(config)
        consumption = {
            resource: population * catalog.PER_CAPITA_CONSUMPTION.get(resource, 0.0)
            for resource in ResourceType
        }
        return ResourceState(
            resources=stocks,
            total_capacity=sum(s.maximum for s in stocks.values()),
            used_capacity=sum(s.current for s in stocks.values()),
            daily_production=production,
            daily_consumption=consumption,
            net_flow={r: production[r] - consumption[r] for r in ResourceType},
            efficiency={r: catalog.DEFAULT_EFFICIENCY for r in ResourceType},
            base_production=dict(production),
            base_consumption=dict(consumption),
            last_updated=now,
        )

    def _initial_production(self, config: VillageConfig) -> dict[ResourceType, float]:
        factor = config.starting_population / 100
        climate = catalog.CLIMATE_MODIFIERS.get(config.climate, {})
        water_access = catalog.WATER_ACCESS_MODIFIERS.get(config.water_access, 1.0)
        production: dict[ResourceType, float] = {}
        for resource in ResourceType:
            constant, per_hundred = catalog.BASE_PRODUCTION.get(resource, (0.0, 0.0))
            amount = (constant + per_hundred * factor) * climate.get(resource, 1.0)
            if resource == ResourceType.WATER:
                amount *= water_access
            production[resource] = amount
        return production

    def update_resources(
        self, state: ResourceState, delta_hours: float, now: datetime | None = None
    ) -> ResourceState:
        """推进 delta_hours 小时。

        new = current + 产量*f*效率 - 消耗*f - current*腐损率*f，再截断到 [0, maximum]。
        腐损率为负的资源（葡萄酒）会因此增加。
        """
        now = now or datetime.now()
        fraction = delta_hours / 24
        updated = state.model_copy(deep=True)
        for resource, stock in updated.resources.items():
            amount = stock.current
            amount += (
                state.production_of(resource) * fraction * state.efficiency.get(resource, 1.0)
            )
            amount -= state.consumption_of(resource) * fraction
            amount -= stock.current * stock.spoilage_rate * fraction
            stock.current = _clamp(amount, 0.0, stock.maximum)
            stock.reserved = min(stock.reserved, stock.current)
            stock.last_updated = now
        updated.used_capacity = sum(s.current for s in updated.resources.values())
        updated.last_updated = now
        return updated

    # ──────────────────────────────────────────
    # 事务校验
    # ──────────────────────────────────────────

    def validate_transaction(self, transaction: Transaction, state: ResourceState) -> ValidationResult:
        """校验事务是否可以提交。只读，不修改 state。"""
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        if transaction.type in _SPENDING_TRANSACTIONS:
            for cost in transaction.resources:
                stock = state.resources.get(cost.resource) or ResourceStock()
                available = stock.available
                name = cost.resource.value
                if available < cost.amount:
                    errors.append(
                        f"Insufficient {name}: need {_num(cost.amount)}, "
                        f"have {_num(available)} available"
                    )
                elif available < cost.amount * 1.2:
                    warnings.append(
                        f"Low {name}: transaction will use {_num(cost.amount)} "
                        f"of {_num(available)} available"
                    )
                if cost.quality is not None and stock.quality < cost.quality:
                    errors.append(
                        f"{name} quality too low: need {_num(cost.quality)}, have {_num(stock.quality)}"
                    )

        if transaction.type == "production":
            for produced in transaction.resources:
                stock = state.resources.get(produced.resource) or ResourceStock()
                free = stock.maximum - stock.current
                name = produced.resource.value
                if free < produced.amount:
                    errors.append(
                        f"Insufficient storage for {name}: need {_num(produced.amount)}, "
                        f"have {_num(free)} capacity"
                    )
                elif free < produced.amount * 1.2:
                    warnings.append(
                        f"Limited storage for {name}: production will use {_num(produced.amount)} "
                        f"of {_num(free)} capacity"
                    )

        if warnings:
            suggestions.extend(
                [
                    "Consider building additional storage facilities",
                    "Review resource production to increase supply",
                    "Consider trade opportunities to acquire needed resources",
                ]
            )
        elif errors:
            suggestions.append("Consider trade opportunities to acquire needed resources")

        return ValidationResult(
            is_valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions
        )

    def apply_costs(self, state: ResourceState, costs: Iterable[ResourceCost]) -> ResourceState:
        """扣除已校验过的成本，返回新状态。"""
        updated = state.model_copy(deep=True)
        for cost in costs:
            stock = updated.resources.get(cost.resource)
            if stock is None:
                continue
            stock.current = max(0.0, stock.current - cost.amount)
            stock.reserved = min(stock.reserved, stock.current)
        updated.used_capacity = sum(s.current for s in updated.resources.values())
        return updated

    # ──────────────────────────────────────────
    # 人口需求
    # ──────────────────────────────────────────

    def calculate_consumption(self, population: VillagePopulation) -> ResourceDemand:
        """按人口结构计算资源需求。"""
        breakdown = DemographicBreakdown(
            children=self._group_demand("children", population.children),
            adults=self._group_demand("adults", population.adults),
            elderly=self._group_demand("elderly", population.elderly),
        )
        total: dict[ResourceType, float] = {r: 0.0 for r in ResourceType}
        for group in (breakdown.children, breakdown.adults, breakdown.elderly):
            for resource, amount in group.items():
                total[resource] += amount

        urgent = [
            ResourceCost(resource=r, amount=total[r] * ratio)
            for r, ratio in catalog.URGENT_NEED_RATIOS.items()
        ]
        luxury = [
            ResourceCost(resource=ResourceType.ART, amount=population.total * 0.1),
            ResourceCost(resource=ResourceType.WINE, amount=population.adults * 0.2),
            ResourceCost(resource=ResourceType.JEWELRY, amount=population.total * 0.05),
            ResourceCost(resource=ResourceType.SILK, amount=population.adults * 0.1),
        ]
        growth_rate = (population.birth_rate - population.death_rate) / 1000
        return ResourceDemand(
            total_demand=total,
            demographic_breakdown=breakdown,
            urgent_needs=urgent,
            luxury_wants=luxury,
            projected_growth={r: amount * growth_rate for r, amount in total.items()},
        )

    @staticmethod
    def _group_demand(group: str, count: int) -> dict[ResourceType, float]:
        return {r: count * rate for r, rate in catalog.DEMOGRAPHIC_CONSUMPTION[group].items()}

    # ──────────────────────────────────────────
    # 季节与天气
    # ──────────────────────────────────────────

    def manage_seasonal_effects(
        self,
        state: ResourceState,
        season: str,
        weather: WeatherState | list[WeatherEffect] | None = None,
    ) -> ResourceState:
        """把季节、天气修正应用到日产量与日消耗，并重算净流量。

        修正总是从 base_production / base_consumption 出发，重复调用不会叠加。
        季节与天气是乘法组合；冬季取暖、夏季饮水附加消耗是加法。
        """
        updated = state.model_copy(deep=True)
        base_production = state.base_production or state.daily_production
        base_consumption = state.base_consumption or state.daily_consumption

        season_mods = catalog.SEASONAL_MODIFIERS.get(season, {})
        production = {
            r: amount * season_mods.get(r, 1.0) for r, amount in base_production.items()
        }

        effects = weather.effects if isinstance(weather, WeatherState) else (weather or [])
        for effect in effects:
            if effect.type != "production":
                continue
            factor = 1 + effect.modifier / 100
            for resource in catalog.WEATHER_SENSITIVE:
                if resource in production:
                    production[resource] *= factor

        consumption = dict(base_consumption)
        if season == "winter" and ResourceType.WOOD in consumption:
            consumption[ResourceType.WOOD] += (
                base_consumption[ResourceType.WOOD] * catalog.WINTER_HEATING_SURCHARGE
            )
        if season == "summer" and ResourceType.WATER in consumption:
            consumption[ResourceType.WATER] += (
                base_consumption[ResourceType.WATER] * catalog.SUMMER_WATER_SURCHARGE
            )

        updated.daily_production = production
        updated.daily_consumption = consumption
        updated.base_production = dict(base_production)
        updated.base_consumption = dict(base_consumption)
        updated.net_flow = {
            r: production.get(r, 0.0) - consumption.get(r, 0.0)
            for r in set(production) | set(consumption)
        }
        return updated

    # ──────────────────────────────────────────
    # 建筑生产
    # ──────────────────────────────────────────

    def calculate_building_efficiency(self, building: Building, village: Village) -> float:
        """建筑有效效率（0-100）。

        基准效率 × 建筑状况修正 × 平均工人效率/100，
        每种缺料的输入再乘以 max(0.1, 1 - 缺口比例)。
        """
        efficiency = building.efficiency
        efficiency *= catalog.CONDITION_MODIFIERS.get(
            building.condition, catalog.DEFAULT_CONDITION_MODIFIER
        )
        if building.workers:
            worker_eff = sum(w.efficiency for w in building.workers) / len(building.workers)
        else:
            worker_eff = catalog.DEFAULT_WORKER_EFFICIENCY
        efficiency *= worker_eff / 100

        for need in building.consumes:
            stock = village.resources.resources.get(need.resource)
            available = stock.current if stock else 0.0
            if need.amount_per_day > 0 and available < need.amount_per_day:
                shortage = (need.amount_per_day - available) / need.amount_per_day
                efficiency *= max(catalog.MIN_SHORTAGE_FACTOR, 1 - shortage)

        return _clamp(efficiency, 0.0, 100.0)

    def process_production(
        self, village: Village, now: datetime | None = None, days: float = 1.0
    ) -> ProductionReport:
        """计算 days 天（默认一天）的建筑产出与矿藏开采。

        同一资源的多次产出按顺序累积，previous_amount 是前一条记录之后的投影值。
        返回的 deposits 是开采后衰减过的矿藏副本，village 本身不变。
        """
        now = now or datetime.now()
        projected = {r: s.current for r, s in village.resources.resources.items()}
        updates: list[ResourceUpdate] = []

        for building in village.buildings:
            if not building.produces:
                continue
            if not self._has_required_inputs(building, village):
                logger.debug("%s 缺少必需原料，本轮停产", building.name)
                continue
            efficiency = self.calculate_building_efficiency(building, village)
            for output in building.produces:
                amount = output.amount_per_day * efficiency / 100 * days
                update = self._project(
                    projected,
                    village,
                    output.resource,
                    amount,
                    f"Production from {building.name} ({building.type})",
                    efficiency / 100,
                    now,
                )
                if update:
                    updates.append(update)

        deposits: list[NaturalResource] = []
        for deposit in village.natural_resources:
            deposit = deposit.model_copy(deep=True)
            extractor = next(
                (b for b in village.buildings if b.type == deposit.required_building), None
            )
            if extractor is not None:
                efficiency = self.calculate_building_efficiency(extractor, village)
                update = self._project(
                    projected,
                    village,
                    deposit.type,
                    deposit.current_yield * efficiency / 100 * days,
                    f"Natural resource extraction from {deposit.type.value} deposit",
                    efficiency / 100,
                    now,
                )
                if update:
                    updates.append(update)
                # 衰减按天复利，不随 tick 长短变化
                deposit.current_yield = max(
                    0.0, deposit.current_yield * (1 - deposit.depletion_rate) ** days
                )
            deposits.append(deposit)

        return ProductionReport(updates=updates, deposits=deposits)

    @staticmethod
    def _has_required_inputs(building: Building, village: Village) -> bool:
        for need in building.consumes:
            if not need.is_required:
                continue
            stock = village.resources.resources.get(need.resource)
            if stock is None or stock.current < need.amount_per_day:
                return False
        return True

    @staticmethod
    def _project(
        projected: dict[ResourceType, float],
        village: Village,
        resource: ResourceType,
        amount: float,
        reason: str,
        efficiency: float,
        now: datetime,
    ) -> ResourceUpdate | None:
        stock = village.resources.resources.get(resource)
        if stock is None:
            return None
        previous = projected[resource]
        new = _clamp(previous + amount, 0.0, stock.maximum)
        projected[resource] = new
        return ResourceUpdate(
            resource=resource,
            previous_amount=previous,
            new_amount=new,
            change=new - previous,
            reason=reason,
            efficiency=efficiency,
            timestamp=now,
        )

    def process_production_chains(
        self,
        village: Village,
        season: str | None = None,
        now: datetime | None = None,
        chains: list[ProductionChain] | None = None,
        days: float = 1.0,
    ) -> list[ResourceUpdate]:
        """运行 days 天（默认一天）的加工链。

        建筑存在且工人数足够时才运行；批次数受每日工时和可用原料双重限制。
        多条链共享原料时按目录顺序先到先得。
        """
        now = now or datetime.now()
        season = season or village.season.current
        projected = {r: s.current for r, s in village.resources.resources.items()}
        updates: list[ResourceUpdate] = []

        for chain in chains if chains is not None else PRODUCTION_CHAINS:
            building = next(
                (
                    b
                    for b in village.buildings
                    if b.type == chain.building_type and len(b.workers) >= chain.workers_required
                ),
                None,
            )
            if building is None:
                continue

            batches = 24 * days / chain.time_required
            for resource, amount in chain.inputs:
                batches = min(batches, projected.get(resource, 0.0) / amount)
            if batches <= 0:
                continue

            building_eff = self.calculate_building_efficiency(building, village) / 100
            yield_factor = (
                chain.efficiency / 100 * chain.seasonal_modifiers.get(season, 1.0) * building_eff
            )

            for resource, amount in chain.inputs:
                update = self._project(
                    projected,
                    village,
                    resource,
                    -amount * batches,
                    f"{chain.name} input at {building.name}",
                    yield_factor,
                    now,
                )
                if update:
                    updates.append(update)
            for resource, amount in chain.outputs:
                update = self._project(
                    projected,
                    village,
                    resource,
                    amount * batches * yield_factor,
                    f"{chain.name} at {building.name}",
                    yield_factor,
                    now,
                )
                if update:
                    updates.append(update)

        return updates

    def apply_resource_updates(
        self,
        village: Village,
        updates: Iterable[ResourceUpdate],
        deposits: list[NaturalResource] | None = None,
        now: datetime | None = None,
    ) -> Village:
        """把变动记录提交到村庄副本上（按 change 累加并截断）。"""
        now = now or datetime.now()
        updated = village.model_copy(deep=True)
        for update in updates:
            stock = updated.resources.resources.get(update.resource)
            if stock is None:
                continue
            stock.current = _clamp(stock.current + update.change, 0.0, stock.maximum)
            stock.reserved = min(stock.reserved, stock.current)
            stock.last_updated = now
        if deposits is not None:
            updated.natural_resources = [d.model_copy(deep=True) for d in deposits]
        updated.resources.used_capacity = sum(s.current for s in updated.resources.resources.values())
        updated.updated_at = now
        return updated

    # ──────────────────────────────────────────
    # 优化建议
    # ──────────────────────────────────────────

    def optimize_resource_distribution(self, village: Village) -> OptimizationResult:
        recommendations: list[OptimizationRecommendation] = []
        efficiency_gains: dict[str, float] = {}

        for building in village.buildings:
            efficiency = self.calculate_building_efficiency(building, village)
            if efficiency < 80:
                recommendations.append(self._suggest_building_optimization(building, efficiency))
                efficiency_gains[building.id] = 100 - efficiency

        state = village.resources
        if state.total_capacity > 0 and state.used_capacity / state.total_capacity > 0.9:
            recommendations.append(
                OptimizationRecommendation(
                    type="build",
                    target="warehouse",
                    description="Build additional storage to prevent resource loss",
                    cost=[
                        ResourceCost(resource=ResourceType.WOOD, amount=100),
                        ResourceCost(resource=ResourceType.STONE, amount=50),
                    ],
                    benefits=[
                        "Increase storage capacity",
                        "Reduce spoilage",
                        "Enable bulk production",
                    ],
                    time_to_implement=7,
                    confidence=95,
                )
            )

        # 假设 70% 的腐损可以避免；升值资源没有可节省的部分
        savings = {
            r: max(0.0, s.current * s.spoilage_rate * 0.7) for r, s in state.resources.items()
        }
        cost = aggregate_costs(c for rec in recommendations for c in rec.cost)
        total_cost = sum(c.amount for c in cost)
        roi = sum(savings.values()) / total_cost * 30 if total_cost > 0 else 0.0

        priority = "low"
        if roi > 10:
            priority = "high"
        elif roi > 5:
            priority = "medium"
        for resource, stock in state.resources.items():
            if stock.current < state.consumption_of(resource) * 3:
                priority = "critical"
                break

        return OptimizationResult(
            recommendations=recommendations,
            potential_savings=savings,
            efficiency_gains=efficiency_gains,
            implementation_cost=cost,
            expected_roi=roi,
            priority=priority,
        )

    @staticmethod
    def _suggest_building_optimization(
        building: Building, efficiency: float
    ) -> OptimizationRecommendation:
        if building.condition in ("poor", "dilapidated", "ruins"):
            return OptimizationRecommendation(
                type="upgrade",
                target=building.id,
                description=f"Repair {building.name} ({building.condition}) to restore efficiency",
                cost=[
                    ResourceCost(resource=ResourceType.WOOD, amount=20 * building.level),
                    ResourceCost(resource=ResourceType.STONE, amount=10 * building.level),
                ],
                benefits=[f"Efficiency from {efficiency:.0f}% towards 100%", "Longer building life"],
                time_to_implement=3,
                confidence=80,
            )
        if len(building.workers) < building.required_workers:
            return OptimizationRecommendation(
                type="reassign",
                target=building.id,
                description=(
                    f"Assign {building.required_workers - len(building.workers)} more workers "
                    f"to {building.name}"
                ),
                benefits=["Full staffing", "Higher output"],
                time_to_implement=1,
                confidence=85,
            )
        return OptimizationRecommendation(
            type="upgrade",
            target=building.id,
            description=f"Upgrade tools and equipment at {building.name}",
            cost=[
                ResourceCost(resource=ResourceType.LUMBER, amount=30),
                ResourceCost(resource=ResourceType.TOOLS, amount=5),
            ],
            benefits=[f"Efficiency from {efficiency:.0f}% towards 100%"],
            time_to_implement=5,
            confidence=70,
        )

    # ──────────────────────────────────────────
    # 危机检测与应急
    # ──────────────────────────────────────────

    def detect_resource_crises(self, village: Village) -> list[ResourceCrisis]:
        """检测短缺、品质退化与仓储溢出，按 urgency 降序返回。"""
        crises: list[ResourceCrisis] = []
        state = village.resources

        for resource, stock in state.resources.items():
            consumption = state.consumption_of(resource)
            if consumption <= 0:
                continue
            days = stock.current / consumption
            if days >= 7:
                continue
            severity = classify_shortage(days)
            crises.append(
                ResourceCrisis(
                    type="shortage",
                    resource=resource,
                    severity=severity,
                    current_amount=stock.current,
                    daily_consumption=consumption,
                    days_until_depletion=days,
                    impact=self._assess_shortage_impact(resource, severity, village),
                    suggested_actions=self._shortage_actions(resource, severity),
                    urgency=_SHORTAGE_URGENCY[severity],
                )
            )

        for resource, stock in state.resources.items():
            if stock.quality >= 30:
                continue
            penalty = (100 - stock.quality) / 100
            health = -15 if resource in (ResourceType.FOOD, ResourceType.WATER) else -5
            crises.append(
                ResourceCrisis(
                    type="quality_degradation",
                    resource=resource,
                    severity="major" if stock.quality < 10 else "moderate",
                    current_amount=stock.current,
                    daily_consumption=state.consumption_of(resource),
                    days_until_depletion=math.inf,
                    impact=CrisisImpact(
                        population_happiness=-10 * penalty,
                        population_health=health * penalty,
                        economic_damage=village.economy.monthly_income * 0.05 * penalty,
                        building_efficiency=-5 * penalty,
                        description=f"Poor quality {resource.value} affecting village well-being",
                    ),
                    suggested_actions=[
                        f"Improve {resource.value} storage conditions",
                        "Implement quality control measures",
                        f"Replace degraded {resource.value} stocks",
                        "Upgrade storage facilities",
                        "Train workers in proper handling",
                    ],
                    urgency=70 if stock.quality < 10 else 40,
                )
            )

        for resource, stock in state.resources.items():
            utilization = stock.utilization
            if utilization <= 0.95:
                continue
            overflow = utilization - 0.9
            crises.append(
                ResourceCrisis(
                    type="storage_overflow",
                    resource=resource,
                    severity="major" if utilization > 0.99 else "moderate",
                    current_amount=stock.current,
                    daily_consumption=state.consumption_of(resource),
                    days_until_depletion=math.inf,
                    impact=CrisisImpact(
                        population_happiness=-5 * overflow * 10,
                        economic_damage=state.production_of(resource) * overflow * 10,
                        building_efficiency=-3 * overflow * 10,
                        description=f"Storage overflow risk for {resource.value} limiting production",
                    ),
                    suggested_actions=[
                        f"Build additional {resource.value} storage",
                        f"Increase {resource.value} consumption or trade",
                        "Implement inventory rotation system",
                        "Upgrade existing storage capacity",
                        "Establish overflow storage areas",
                    ],
                    urgency=80 if utilization > 0.99 else 50,
                )
            )

        crises.sort(key=lambda c: c.urgency, reverse=True)
        if crises:
            logger.info(
                "%s 检测到 %d 个资源危机，最紧急: %s/%s",
                village.name,
                len(crises),
                crises[0].type,
                crises[0].resource.value,
            )
        return crises

    @staticmethod
    def _assess_shortage_impact(resource: ResourceType, severity: str, village: Village) -> CrisisImpact:
        multiplier = _SEVERITY_MULTIPLIER[severity]
        income = village.economy.monthly_income
        name = resource.value
        if resource in (ResourceType.FOOD, ResourceType.WATER):
            return CrisisImpact(
                population_happiness=-20 * multiplier,
                population_health=-15 * multiplier,
                description=f"{name} shortage threatens population survival",
            )
        if resource in (ResourceType.WOOD, ResourceType.TOOLS):
            return CrisisImpact(
                building_efficiency=-10 * multiplier,
                economic_damage=income * 0.1 * multiplier,
                description=f"{name} shortage reduces production capacity",
            )
        return CrisisImpact(
            population_happiness=-5 * multiplier,
            economic_damage=income * 0.05 * multiplier,
            description=f"{name} shortage affects quality of life",
        )

    @staticmethod
    def _shortage_actions(resource: ResourceType, severity: str) -> list[str]:
        name = resource.value
        actions = [
            f"Initiate emergency procurement of {name}",
            f"Ration {name} consumption",
            f"Seek trade partnerships for {name}",
        ]
        if resource == ResourceType.FOOD:
            actions += [
                "Implement emergency farming measures",
                "Organize hunting and foraging expeditions",
                "Open emergency food reserves",
            ]
        elif resource == ResourceType.WATER:
            actions += [
                "Dig emergency wells",
                "Implement water conservation measures",
                "Search for new water sources",
            ]
        elif resource == ResourceType.WOOD:
            actions += [
                "Organize logging expeditions",
                "Recycle wooden structures",
                "Explore alternative materials",
            ]
        if severity == "catastrophic":
            actions += [
                "Declare village emergency",
                "Implement martial law for resource distribution",
                "Consider population evacuation",
            ]
        return actions

    def implement_emergency_protocols(self, crisis: ResourceCrisis, village: Village) -> EmergencyResponse:
        """为危机生成应急方案，整体有效性按可行性加权平均。"""
        actions = self._protocol_actions(crisis, village)
        effectiveness = self._protocol_effectiveness(actions, village)
        time_needed = max((a.time_to_implement for a in actions), default=0.0)
        return EmergencyResponse(
            crisis_id=f"{crisis.type}_{crisis.resource.value}",
            actions=actions,
            estimated_effectiveness=effectiveness,
            implementation_time=time_needed,
            total_cost=aggregate_costs(c for a in actions for c in a.cost),
            expected_outcome=EmergencyOutcome(
                success_probability=min(95.0, effectiveness),
                time_to_resolve=time_needed,
                residual_impact=max(0.0, crisis.urgency - effectiveness),
                long_term_effects=(
                    ["Improved crisis preparedness", "Enhanced resource management"]
                    if effectiveness > 70
                    else ["Ongoing resource vulnerability", "Reduced population confidence"]
                ),
            ),
        )

    @staticmethod
    def _protocol_actions(crisis: ResourceCrisis, village: Village) -> list[EmergencyAction]:
        name = crisis.resource.value
        gold = ResourceType.GOLD
        if crisis.type == "shortage":
            actions = [
                EmergencyAction(
                    type="rationing",
                    description=f"Implement emergency rationing of {name}",
                    effectiveness=30,
                    time_to_implement=1,
                    requirements=["Administrative capacity"],
                )
            ]
            if village.economy.treasury >= 100:
                actions.append(
                    EmergencyAction(
                        type="procurement",
                        description=f"Emergency purchase of {name} from traders",
                        cost=[ResourceCost(resource=gold, amount=100)],
                        effectiveness=50,
                        time_to_implement=3,
                        requirements=["Active trade routes", "Available funds"],
                    )
                )
            actions.append(
                EmergencyAction(
                    type="production_boost",
                    description=f"Increase {name} production through overtime work",
                    cost=[ResourceCost(resource=gold, amount=50)],
                    effectiveness=40,
                    time_to_implement=2,
                    requirements=["Available workers", "Production facilities"],
                )
            )
            return actions
        if crisis.type == "quality_degradation":
            return [
                EmergencyAction(
                    type="quality_improvement",
                    description=f"Improve storage and handling of {name}",
                    cost=[
                        ResourceCost(resource=ResourceType.WOOD, amount=20),
                        ResourceCost(resource=ResourceType.TOOLS, amount=5),
                    ],
                    effectiveness=60,
                    time_to_implement=5,
                    requirements=["Storage facilities", "Skilled workers"],
                )
            ]
        return [
            EmergencyAction(
                type="storage_expansion",
                description=f"Build emergency storage for {name}",
                cost=[
                    ResourceCost(resource=ResourceType.WOOD, amount=50),
                    ResourceCost(resource=ResourceType.STONE, amount=30),
                ],
                effectiveness=70,
                time_to_implement=7,
                requirements=["Construction workers", "Available space"],
            )
        ]

    def _protocol_effectiveness(self, actions: list[EmergencyAction], village: Village) -> float:
        total = 0.0
        weight_sum = 0.0
        for action in actions:
            weight = self.assess_action_feasibility(action, village) / 100
            total += action.effectiveness * weight
            weight_sum += weight
        return total / weight_sum if weight_sum > 0 else 0.0

    @staticmethod
    def assess_action_feasibility(action: EmergencyAction, village: Village) -> float:
        """应急措施可行性（0-100）。"""
        feasibility = 100.0
        for cost in action.cost:
            stock = village.resources.resources.get(cost.resource)
            available = stock.current if stock else 0.0
            if available < cost.amount:
                feasibility -= 50
            elif available < cost.amount * 1.5:
                feasibility -= 20
        if "Available workers" in action.requirements and village.population.unemployed < 5:
            feasibility -= 30
        if "Available funds" in action.requirements and village.economy.treasury < 50:
            feasibility -= 40
        return max(0.0, feasibility)

    # ──────────────────────────────────────────
    # 贸易
    # ──────────────────────────────────────────

    def evaluate_trade_opportunities(self, village: Village) -> list[TradeOpportunity]:
        """评估所有活跃路线的进出口机会，按风险调整后的收益排序。"""
        opportunities: list[TradeOpportunity] = []
        for route in village.trade_routes:
            if not route.is_active:
                continue
            duration = route.travel_time * 2
            for good in route.exports:
                revenue = good.price * good.quantity
                production_cost = (
                    catalog.PRODUCTION_COSTS.get(good.resource, catalog.DEFAULT_PRODUCTION_COST)
                    * good.quantity
                )
                risk_cost = revenue * (route.risk_level / 100) * catalog.RISK_COST_FACTOR
                profit = revenue - (production_cost + route.cost + risk_cost)
                if profit > 0:
                    opportunities.append(
                        TradeOpportunity(
                            route_id=route.id,
                            type="export",
                            resource=good.resource,
                            quantity=good.quantity,
                            expected_profit=profit,
                            risk_level=route.risk_level,
                            time_to_complete=duration,
                            requirements=[ResourceCost(resource=good.resource, amount=good.quantity)],
                        )
                    )
            for good in route.imports:
                cost = good.price * good.quantity
                benefit = self._local_value(good.resource, good.quantity, village) + (
                    self._scarcity_bonus(good.resource, village)
                )
                if benefit > cost:
                    opportunities.append(
                        TradeOpportunity(
                            route_id=route.id,
                            type="import",
                            resource=good.resource,
                            quantity=good.quantity,
                            expected_profit=benefit - cost,
                            risk_level=route.risk_level,
                            time_to_complete=duration,
                            requirements=[ResourceCost(resource=ResourceType.GOLD, amount=cost)],
                        )
                    )
        opportunities.sort(key=lambda o: o.score, reverse=True)
        return opportunities

    @staticmethod
    def _local_value(resource: ResourceType, quantity: float, village: Village) -> float:
        stock = village.resources.resources.get(resource)
        scarcity = 1 - stock.utilization if stock else 1.0
        price = village.market_prices.get(resource, catalog.DEFAULT_MARKET_PRICE)
        return price * quantity * (1 + scarcity)

    @staticmethod
    def _scarcity_bonus(resource: ResourceType, village: Village) -> float:
        consumption = village.resources.consumption_of(resource)
        stock = village.resources.resources.get(resource)
        if consumption == 0 or stock is None:
            return 0.0
        days = stock.current / consumption
        if days < 3:
            return stock.current * 2
        if days < 7:
            return stock.current * 1.5
        if days < 14:
            return stock.current * 1.2
        return 0.0

    def execute_trade(self, trade_id: str, village: Village, now: datetime | None = None) -> TradeResult:
        """执行一趟贸易。全部前置条件通过后才会修改（村庄副本上的）库存。"""
        now = now or datetime.now()
        try:
            route = self._check_trade(trade_id, village)
        except TradeError as e:
            logger.info("贸易 %s 未执行: %s", trade_id, e)
            return TradeResult(success=False, error=str(e))

        updated = village.model_copy(deep=True)
        stocks = updated.resources.resources
        changes: list[ResourceUpdate] = []

        for good in route.exports:
            stock = stocks[good.resource]
            previous = stock.current
            stock.current = previous - good.quantity
            stock.reserved = min(stock.reserved, stock.current)
            changes.append(
                ResourceUpdate(
                    resource=good.resource,
                    previous_amount=previous,
                    new_amount=stock.current,
                    change=-good.quantity,
                    reason=f"Export to {route.destination}",
                    timestamp=now,
                )
            )

        for good in route.imports:
            stock = stocks[good.resource]
            previous = stock.current
            stock.current = min(previous + good.quantity, stock.maximum)
            actual = stock.current - previous
            if actual < good.quantity:
                logger.warning(
                    "%s 仓储不足，进口 %s 仅入库 %.1f/%.1f",
                    village.name,
                    good.resource.value,
                    actual,
                    good.quantity,
                )
            changes.append(
                ResourceUpdate(
                    resource=good.resource,
                    previous_amount=previous,
                    new_amount=stock.current,
                    change=actual,
                    reason=f"Import from {route.destination}",
                    timestamp=now,
                )
            )

        revenue = sum(g.price * g.quantity for g in route.exports)
        import_cost = sum(g.price * g.quantity for g in route.imports)
        profit = revenue - import_cost - route.cost

        updated_route = next(r for r in updated.trade_routes if r.id == trade_id)
        updated_route.last_trade = now
        updated_route.trades_this_month += 1
        updated.economy.treasury += profit
        updated.resources.used_capacity = sum(s.current for s in stocks.values())
        updated.updated_at = now

        logger.info("%s 与 %s 完成贸易，净利润 %.1f", village.name, route.destination, profit)
        return TradeResult(
            success=True,
            changes=changes,
            profit=profit,
            duration=route.travel_time * 2,
            village=updated,
        )

    @staticmethod
    def _check_trade(trade_id: str, village: Village) -> TradeRoute:
        route = next((r for r in village.trade_routes if r.id == trade_id), None)
        if route is None:
            raise TradeError("Trade route not found")
        if not route.is_active:
            raise TradeError("Trade route is inactive")
        stocks = village.resources.resources
        # 同一资源的多条出口合并后再比较库存
        exports = aggregate_costs(
            ResourceCost(resource=g.resource, amount=g.quantity) for g in route.exports
        )
        for need in exports:
            stock = stocks.get(need.resource)
            if stock is None or stock.current < need.amount:
                raise TradeError(f"Insufficient {need.resource.value} for trade")
        import_cost = sum(g.price * g.quantity for g in route.imports)
        if village.economy.treasury < import_cost + route.cost:
            raise TradeError("Insufficient gold for trade")
        for good in route.imports:
            if good.resource not in stocks:
                raise TradeError(f"No storage for {good.resource.value}")
        return route


def classify_shortage(days_remaining: float) -> str:
    """按剩余天数划分短缺严重程度。"""
    if days_remaining < 1:
        return "catastrophic"
    if days_remaining < 2:
        return "major"
    if days_remaining < 4:
        return "moderate"
    return "minor"
