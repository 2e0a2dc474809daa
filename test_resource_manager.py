"""资源管理器测试：时间推进、事务校验、危机、贸易、季节、生产与应急。"""

import random

import pytest

from villagesim.engine.resource_manager import ResourceManager, classify_shortage
from villagesim.models import (
    Building,
    NaturalResource,
    ResourceCost,
    ResourceState,
    ResourceStock,
    ResourceType,
    TradeGood,
    TradeRoute,
    Transaction,
    Village,
    VillageConfig,
    VillageEconomy,
    VillagePopulation,
    WeatherEffect,
    WeatherState,
    Worker,
)

R = ResourceType


def make_state(stocks: dict, production: dict | None = None, consumption: dict | None = None) -> ResourceState:
    """stocks: 资源 -> (current, maximum) 或 (current, maximum, spoilage_rate)。"""
    resources = {}
    for resource, values in stocks.items():
        current, maximum, *rest = values
        resources[resource] = ResourceStock(
            current=current, maximum=maximum, spoilage_rate=rest[0] if rest else 0.0
        )
    production = production or {}
    consumption = consumption or {}
    return ResourceState(
        resources=resources,
        total_capacity=sum(s.maximum for s in resources.values()),
        used_capacity=sum(s.current for s in resources.values()),
        daily_production=dict(production),
        daily_consumption=dict(consumption),
        base_production=dict(production),
        base_consumption=dict(consumption),
    )


def make_village(state: ResourceState, **kwargs) -> Village:
    return Village(id="v1", name="Testville", resources=state, **kwargs)


@pytest.fixture
def manager() -> ResourceManager:
    return ResourceManager()


# ────────────────────────────────────────────
# 时间推进
# ────────────────────────────────────────────


def test_update_never_leaves_bounds(manager):
    """任意状态、任意时长推进后，库存都在 [0, maximum] 内。"""
    rng = random.Random(7)
    for _ in range(40):
        maximum = rng.uniform(10, 1000)
        state = make_state(
            {R.FOOD: (rng.uniform(0, maximum), maximum, rng.uniform(-0.05, 0.2))},
            production={R.FOOD: rng.uniform(0, 2000)},
            consumption={R.FOOD: rng.uniform(0, 2000)},
        )
        updated = manager.update_resources(state, rng.uniform(0, 240))
        stock = updated.resources[R.FOOD]
        assert 0 <= stock.current <= stock.maximum


def test_zero_length_tick_is_identity(manager):
    """delta_hours=0 不改变库存。"""
    state = make_state(
        {R.FOOD: (123.4, 500, 0.02), R.WOOD: (50, 200)},
        production={R.FOOD: 40},
        consumption={R.FOOD: 30, R.WOOD: 5},
    )
    updated = manager.update_resources(state, 0)
    for resource, stock in state.resources.items():
        assert updated.resources[resource].current == stock.current


def test_spoilage_only_decay(manager):
    """无产无耗时 100 单位、腐损率 0.02，一天后约为 98。"""
    state = make_state({R.FOOD: (100, 500, 0.02)})
    updated = manager.update_resources(state, 24)
    assert updated.resources[R.FOOD].current == pytest.approx(98)


def test_shortage_clamps_at_zero(manager):
    state = make_state({R.FOOD: (10, 500)}, consumption={R.FOOD: 20})
    updated = manager.update_resources(state, 24)
    assert updated.resources[R.FOOD].current == 0


def test_capacity_clamps_at_maximum(manager):
    state = make_state({R.FOOD: (450, 500)}, production={R.FOOD: 100})
    updated = manager.update_resources(state, 24)
    assert updated.resources[R.FOOD].current <= 500


def test_negative_spoilage_appreciates_wine(manager):
    """腐损率为负的资源随时间增加（葡萄酒陈酿）。"""
    state = make_state({R.WINE: (100, 500, -0.01)})
    updated = manager.update_resources(state, 24)
    assert updated.resources[R.WINE].current == pytest.approx(101)


def test_update_does_not_mutate_input(manager):
    state = make_state({R.FOOD: (100, 500, 0.02)}, consumption={R.FOOD: 10})
    before = state.model_dump()
    manager.update_resources(state, 24)
    assert state.model_dump() == before


# ────────────────────────────────────────────
# 事务校验
# ────────────────────────────────────────────


def test_validation_rejects_shortfall(manager):
    state = make_state({R.IRON: (10, 100)})
    tx = Transaction(id="t1", type="consumption", resources=[ResourceCost(resource=R.IRON, amount=20)])
    result = manager.validate_transaction(tx, state)
    assert not result.is_valid
    assert "Insufficient iron: need 20, have 10 available" in result.errors
    assert result.suggestions == ["Consider trade opportunities to acquire needed resources"]


def test_validation_warns_when_tight(manager):
    state = make_state({R.WOOD: (11, 100)})
    tx = Transaction(id="t2", type="construction", resources=[ResourceCost(resource=R.WOOD, amount=10)])
    result = manager.validate_transaction(tx, state)
    assert result.is_valid
    assert len(result.warnings) == 1
    assert len(result.suggestions) == 3


def test_validation_respects_reserved_and_quality(manager):
    state = make_state({R.FOOD: (30, 100)})
    state.resources[R.FOOD].reserved = 15
    state.resources[R.FOOD].quality = 40
    tx = Transaction(
        id="t3",
        type="consumption",
        resources=[ResourceCost(resource=R.FOOD, amount=20, quality=60)],
    )
    result = manager.validate_transaction(tx, state)
    assert not result.is_valid
    assert any("need 20, have 15 available" in e for e in result.errors)
    assert any("quality too low" in e for e in result.errors)


def test_validation_checks_storage_for_production(manager):
    state = make_state({R.STONE: (90, 100)})
    tx = Transaction(id="t4", type="production", resources=[ResourceCost(resource=R.STONE, amount=20)])
    result = manager.validate_transaction(tx, state)
    assert not result.is_valid
    assert "Insufficient storage for stone: need 20, have 10 capacity" in result.errors


def test_apply_costs_returns_new_state(manager):
    state = make_state({R.WOOD: (50, 200)})
    updated = manager.apply_costs(state, [ResourceCost(resource=R.WOOD, amount=20)])
    assert updated.resources[R.WOOD].current == 30
    assert state.resources[R.WOOD].current == 50
    assert updated.used_capacity == 30


# ────────────────────────────────────────────
# 需求与初始化
# ────────────────────────────────────────────


def test_calculate_consumption_by_demographics(manager):
    population = VillagePopulation(total=100, children=20, adults=70, elderly=10, birth_rate=30, death_rate=10)
    demand = manager.calculate_consumption(population)
    # 20*1.5 + 70*2.0 + 10*1.8
    assert demand.total_demand[R.FOOD] == pytest.approx(188)
    urgent = {c.resource: c.amount for c in demand.urgent_needs}
    assert urgent[R.FOOD] == pytest.approx(188 * 0.8)
    assert demand.projected_growth[R.FOOD] == pytest.approx(188 * 0.02)


def test_initialize_resources_applies_climate_and_water(manager):
    river = manager.initialize_resources(
        VillageConfig(id="a", name="A", starting_population=100, water_access="riverside")
    )
    arid = manager.initialize_resources(
        VillageConfig(id="b", name="B", starting_population=100, climate="arid", water_access="dry")
    )
    # (10 + 3) * 1.2
    assert river.daily_production[R.WATER] == pytest.approx(15.6)
    assert arid.daily_production[R.WATER] < river.daily_production[R.WATER]
    assert river.resources[R.FOOD].maximum == 500
    assert river.daily_consumption[R.FOOD] == pytest.approx(200)


# ────────────────────────────────────────────
# 季节与天气
# ────────────────────────────────────────────


def test_seasonal_effects_compose_without_compounding(manager):
    state = make_state(
        {R.FOOD: (100, 500), R.WOOD: (100, 200)},
        production={R.FOOD: 100, R.WOOD: 50},
        consumption={R.FOOD: 40, R.WOOD: 10},
    )
    winter = manager.manage_seasonal_effects(state, "winter")
    assert winter.daily_production[R.FOOD] == pytest.approx(70)
    assert winter.daily_consumption[R.WOOD] == pytest.approx(15)
    assert winter.net_flow[R.FOOD] == pytest.approx(30)

    again = manager.manage_seasonal_effects(winter, "winter")
    assert again.daily_production[R.FOOD] == pytest.approx(70)


def test_weather_multiplies_sensitive_production(manager):
    state = make_state({R.FOOD: (100, 500)}, production={R.FOOD: 100, R.WATER: 50})
    weather = WeatherState(current="stormy", effects=[WeatherEffect(type="production", modifier=-20)])
    spring = manager.manage_seasonal_effects(state, "spring", weather)
    assert spring.daily_production[R.FOOD] == pytest.approx(96)
    # 水不受天气影响
    assert spring.daily_production[R.WATER] == pytest.approx(55)


# ────────────────────────────────────────────
# 生产
# ────────────────────────────────────────────


def test_process_production_scales_by_efficiency(manager):
    farm = Building(
        id="farm",
        name="Farm",
        type="farm",
        efficiency=80,
        produces=[{"resource": "food", "amount_per_day": 100}],
        workers=[Worker(resident_id="r1", efficiency=50)],
    )
    quarry = Building(id="q", name="Quarry", type="quarry", workers=[Worker(resident_id="r2", efficiency=100)])
    deposit = NaturalResource(
        id="d", type=R.STONE, current_yield=20, depletion_rate=0.1, required_building="quarry"
    )
    village = make_village(
        make_state({R.FOOD: (0, 500), R.STONE: (0, 300)}),
        buildings=[farm, quarry],
        natural_resources=[deposit],
    )
    report = manager.process_production(village)
    food = next(u for u in report.updates if u.resource == R.FOOD)
    stone = next(u for u in report.updates if u.resource == R.STONE)
    assert food.change == pytest.approx(40)
    assert stone.change == pytest.approx(20)
    assert report.deposits[0].current_yield == pytest.approx(18)
    assert village.natural_resources[0].current_yield == 20

    applied = manager.apply_resource_updates(village, report.updates, report.deposits)
    assert applied.resources.resources[R.FOOD].current == pytest.approx(40)
    assert applied.natural_resources[0].current_yield == pytest.approx(18)


def test_half_day_production_scales_amounts_and_decay(manager):
    farm = Building(
        id="farm",
        name="Farm",
        type="farm",
        produces=[{"resource": "food", "amount_per_day": 100}],
        workers=[Worker(resident_id="r1", efficiency=100)],
    )
    quarry = Building(id="q", name="Quarry", type="quarry", workers=[Worker(resident_id="r2", efficiency=100)])
    deposit = NaturalResource(
        id="d", type=R.STONE, current_yield=20, depletion_rate=0.19, required_building="quarry"
    )
    village = make_village(
        make_state({R.FOOD: (100, 500), R.STONE: (0, 300)}),
        buildings=[farm, quarry],
        natural_resources=[deposit],
    )
    report = manager.process_production(village, days=0.5)
    food = next(u for u in report.updates if u.resource == R.FOOD)
    assert food.change == pytest.approx(50)
    assert (food.previous_amount, food.new_amount) == (pytest.approx(100), pytest.approx(150))
    for update in report.updates:
        assert update.new_amount - update.previous_amount == pytest.approx(update.change)
    # 0.81 ** 0.5 == 0.9
    assert report.deposits[0].current_yield == pytest.approx(18)


def test_half_day_chain_runs_half_the_batches(manager):
    mill = Building(
        id="mill", name="Mill", type="lumber_mill", workers=[Worker(resident_id="r1", efficiency=100)]
    )
    village = make_village(make_state({R.WOOD: (100, 200), R.LUMBER: (0, 150)}), buildings=[mill])
    updates = manager.process_production_chains(village, "spring", days=0.5)
    wood = next(u for u in updates if u.resource == R.WOOD)
    assert wood.change == pytest.approx(-6)
    assert (wood.previous_amount, wood.new_amount) == (pytest.approx(100), pytest.approx(94))


def test_production_chain_limited_by_hours_and_inputs(manager):
    mill = Building(
        id="mill", name="Mill", type="lumber_mill", workers=[Worker(resident_id="r1", efficiency=100)]
    )
    village = make_village(make_state({R.WOOD: (100, 200), R.LUMBER: (0, 150)}), buildings=[mill])
    updates = manager.process_production_chains(village, "spring")
    wood = next(u for u in updates if u.resource == R.WOOD)
    lumber = next(u for u in updates if u.resource == R.LUMBER)
    # 6 批次（24h / 4h），每批 2 木头
    assert wood.change == pytest.approx(-12)
    assert lumber.change == pytest.approx(6 * 0.85 * 1.1)


def test_production_chain_needs_enough_workers(manager):
    workshop = Building(id="w", name="Workshop", type="workshop", workers=[Worker(resident_id="r1")])
    village = make_village(
        make_state({R.IRON: (50, 100), R.WOOD: (50, 200), R.TOOLS: (0, 50)}), buildings=[workshop]
    )
    assert manager.process_production_chains(village, "summer") == []


# ────────────────────────────────────────────
# 危机与应急
# ────────────────────────────────────────────


def test_classify_shortage():
    assert classify_shortage(0.2) == "catastrophic"
    assert classify_shortage(1.5) == "major"
    assert classify_shortage(2.5) == "moderate"
    assert classify_shortage(5) == "minor"


def test_detect_crises_sorted_by_urgency(manager):
    state = make_state(
        {R.FOOD: (2, 500), R.WATER: (25, 1000), R.STONE: (299.5, 300)},
        consumption={R.FOOD: 10, R.WATER: 10},
    )
    crises = manager.detect_resource_crises(make_village(state))
    urgencies = [c.urgency for c in crises]
    assert urgencies == sorted(urgencies, reverse=True)

    by_resource = {(c.type, c.resource): c for c in crises}
    food = by_resource[("shortage", R.FOOD)]
    assert food.severity == "catastrophic"
    assert "Declare village emergency" in food.suggested_actions
    assert by_resource[("shortage", R.WATER)].severity == "moderate"
    assert by_resource[("storage_overflow", R.STONE)].severity == "major"


def test_emergency_protocol_weights_by_feasibility(manager):
    state = make_state({R.FOOD: (2, 500), R.GOLD: (0, 50)}, consumption={R.FOOD: 10})
    village = make_village(state, economy=VillageEconomy(treasury=200))
    crisis = manager.detect_resource_crises(village)[0]
    response = manager.implement_emergency_protocols(crisis, village)

    assert [a.type for a in response.actions] == ["rationing", "procurement", "production_boost"]
    # 可行性：配给 100，采购 50（金币库存不足），加班 20（金币不足且无闲置劳力）
    expected = (30 * 1.0 + 50 * 0.5 + 40 * 0.2) / (1.0 + 0.5 + 0.2)
    assert response.estimated_effectiveness == pytest.approx(expected)
    assert response.expected_outcome.residual_impact == pytest.approx(100 - expected)
    assert response.implementation_time == 3
    assert response.total_cost == [ResourceCost(resource=R.GOLD, amount=150)]


def test_optimization_flags_poor_buildings_and_critical_stock(manager):
    shed = Building(id="shed", name="Old Shed", type="farm", condition="poor")
    state = make_state({R.FOOD: (10, 500)}, consumption={R.FOOD: 10})
    result = manager.optimize_resource_distribution(make_village(state, buildings=[shed]))
    assert result.priority == "critical"
    assert result.recommendations[0].type == "upgrade"
    assert "Repair" in result.recommendations[0].description
    assert "shed" in result.efficiency_gains


# ────────────────────────────────────────────
# 贸易
# ────────────────────────────────────────────


def trade_village(wood: float = 100, treasury: float = 200) -> Village:
    route = TradeRoute(
        id="r1",
        destination="Millbrook",
        travel_time=2,
        cost=10,
        risk_level=10,
        exports=[TradeGood(resource=R.WOOD, quantity=50, price=4)],
        imports=[TradeGood(resource=R.IRON, quantity=10, price=6)],
    )
    state = make_state({R.WOOD: (wood, 200), R.IRON: (0, 100)})
    return make_village(state, trade_routes=[route], economy=VillageEconomy(treasury=treasury))


def test_trade_is_atomic_on_insufficient_export(manager):
    village = trade_village(wood=20)
    before = village.model_dump()
    result = manager.execute_trade("r1", village)
    assert not result.success
    assert result.error == "Insufficient wood for trade"
    assert result.village is None
    assert village.model_dump() == before


def test_trade_rejects_missing_and_poor_routes(manager):
    assert manager.execute_trade("nope", trade_village()).error == "Trade route not found"
    assert manager.execute_trade("r1", trade_village(treasury=5)).error == "Insufficient gold for trade"


def test_trade_success_moves_goods_and_gold(manager):
    village = trade_village()
    result = manager.execute_trade("r1", village)
    assert result.success
    stocks = result.village.resources.resources
    assert stocks[R.WOOD].current == 50
    assert stocks[R.IRON].current == 10
    # 200 出口收入 - 60 进口 - 10 路线成本
    assert result.profit == pytest.approx(130)
    assert result.village.economy.treasury == pytest.approx(330)
    assert result.duration == 4
    assert result.village.trade_routes[0].trades_this_month == 1
    assert village.resources.resources[R.WOOD].current == 100


def test_trade_sums_repeated_export_lines(manager):
    """同一资源的两条出口合计超过库存时整单拒绝。"""
    village = trade_village(wood=100)
    route = village.trade_routes[0]
    route.exports = [
        TradeGood(resource=R.WOOD, quantity=60, price=4),
        TradeGood(resource=R.WOOD, quantity=60, price=4),
    ]
    before = village.model_dump()
    result = manager.execute_trade("r1", village)
    assert not result.success
    assert result.error == "Insufficient wood for trade"
    assert village.model_dump() == before


def test_trade_import_overflow_is_capped(manager):
    village = trade_village()
    village.resources.resources[R.IRON] = ResourceStock(current=95, maximum=100)
    result = manager.execute_trade("r1", village)
    assert result.success
    assert result.village.resources.resources[R.IRON].current == 100
    iron = next(c for c in result.changes if c.resource == R.IRON)
    assert (iron.previous_amount, iron.new_amount, iron.change) == (95, 100, 5)
    # 利润按合同数量结算，溢出部分丢失
    assert result.profit == pytest.approx(130)


@pytest.mark.parametrize(
    "current, bonus",
    [(20, 40), (50, 75), (100, 120), (200, 0)],
)
def test_scarcity_bonus_tiers(current, bonus):
    """日耗 10：2 天 x2，5 天 x1.5，10 天 x1.2，20 天无加成。"""
    state = make_state({R.IRON: (current, 1000)}, consumption={R.IRON: 10})
    assert ResourceManager._scarcity_bonus(R.IRON, make_village(state)) == pytest.approx(bonus)


def test_scarcity_bonus_needs_consumption():
    state = make_state({R.IRON: (5, 1000)})
    assert ResourceManager._scarcity_bonus(R.IRON, make_village(state)) == 0


def test_evaluate_trade_opportunities_sorted_by_score(manager):
    opportunities = manager.evaluate_trade_opportunities(trade_village())
    assert opportunities
    scores = [o.score for o in opportunities]
    assert scores == sorted(scores, reverse=True)
    export = next(o for o in opportunities if o.type == "export")
    # 200 - (2*50 + 10 + 200*0.1*0.1)
    assert export.expected_profit == pytest.approx(88)
