"""事件管理器测试：概率、生成、处理、连锁、玩家选择、排期与延迟效果。"""

import random
from datetime import datetime, timedelta

import pytest

from villagesim.catalog import events as catalog
from villagesim.config.settings import SimulationConfig
from villagesim.engine.event_engine import (
    VillageEventManager,
    calculate_crisis_level,
    calculate_event_severity,
    convert_response_to_choice,
    determine_tone,
    evaluate_condition_string,
    get_emergency_response_options,
)
from villagesim.models import (
    Building,
    ChainReaction,
    DelayedEffect,
    EventEffect,
    EventRequirement,
    GameEvent,
    OutcomeDescriptions,
    PlayerChoice,
    ResourceCost,
    ResourceState,
    ResourceStock,
    ResourceType,
    SeasonInfo,
    Village,
    VillageEconomy,
    WeatherState,
)
from villagesim.storage.store import (
    InMemoryStore,
    active_events_key,
    delayed_effects_key,
    history_key,
    scheduled_key,
)

R = ResourceType
NOW = datetime(2026, 3, 1, 12, 0)


class ScriptedRandom(random.Random):
    """按顺序返回预设的 random() 值；用完后再抽样会抛 IndexError。"""

    def __init__(self, draws):
        super().__init__(0)
        self.draws = list(draws)

    def random(self):
        return self.draws.pop(0)


def make_village(**kwargs) -> Village:
    state = ResourceState(
        resources={
            R.FOOD: ResourceStock(current=200, maximum=500),
            R.WOOD: ResourceStock(current=100, maximum=200),
            R.CULTURE: ResourceStock(current=10, maximum=100),
            R.GOLD: ResourceStock(current=0, maximum=50),
        }
    )
    data = {"id": "v1", "name": "Testville", "resources": state, "economy": VillageEconomy(treasury=100)}
    data.update(kwargs)
    return Village(**data)


def make_event(**kwargs) -> GameEvent:
    data = {
        "id": "e1",
        "name": "Village Gathering",
        "type": "social",
        "start_date": NOW,
        "effects": [EventEffect(type="happiness", modifier=5)],
    }
    data.update(kwargs)
    return GameEvent(**data)


def make_choice(**kwargs) -> PlayerChoice:
    data = {
        "id": "c1",
        "name": "Hold a feast",
        "success_chance": 80,
        "critical_success_chance": 15,
        "immediate_effects": [EventEffect(type="happiness", modifier=10)],
        "failure_consequences": [EventEffect(type="stability", modifier=-5)],
        "outcome_descriptions": OutcomeDescriptions(
            success="The feast was a success.",
            critical_success="The feast will be remembered for years.",
            failure="The feast fell flat.",
        ),
    }
    data.update(kwargs)
    return PlayerChoice(**data)


def make_manager(draws=(), store=None, **config) -> VillageEventManager:
    return VillageEventManager(
        store or InMemoryStore(), rng=ScriptedRandom(draws), config=SimulationConfig(**config)
    )


# ────────────────────────────────────────────
# 条件与辅助函数
# ────────────────────────────────────────────


def test_condition_strings():
    village = make_village(happiness=30, season=SeasonInfo(current="winter"))
    assert evaluate_condition_string("happiness < 40", village)
    assert not evaluate_condition_string("happiness >= 40", village)
    assert evaluate_condition_string("resource:food >= 200", village)
    assert evaluate_condition_string("treasury == 100", village)
    assert evaluate_condition_string("season == winter", village)
    assert not evaluate_condition_string("season != winter", village)


def test_unparsable_conditions_fail_closed():
    village = make_village()
    assert not evaluate_condition_string("the villagers are sad", village)
    assert not evaluate_condition_string("mood > 3", village)
    assert not evaluate_condition_string("season > winter", village)


def test_severity_and_tone():
    assert calculate_event_severity(make_village(stability=20)) == "major"
    assert calculate_event_severity(make_village(happiness=30)) == "moderate"
    assert calculate_event_severity(make_village(happiness=80, stability=70)) == "beneficial"
    assert calculate_event_severity(make_village(happiness=60, stability=55)) == "minor"
    assert determine_tone("catastrophic") == "urgent"
    assert determine_tone("major") == "serious"
    assert determine_tone("beneficial") == "celebratory"
    assert determine_tone("minor") == "lighthearted"


def test_crisis_level_is_clamped():
    events = [make_event(id=str(i), severity="catastrophic") for i in range(4)]
    assert calculate_crisis_level(events) == 100
    assert calculate_crisis_level([make_event(severity="beneficial")]) == 0
    assert calculate_crisis_level([make_event(severity="major"), make_event(severity="minor")]) == 27


def test_emergency_options_cost_tenth_of_treasury():
    choice = get_emergency_response_options(make_event(), make_village())[0]
    assert choice.resource_cost == [ResourceCost(resource=R.GOLD, amount=10)]
    broke = get_emergency_response_options(make_event(), make_village(economy=VillageEconomy()))[0]
    assert broke.resource_cost[0].amount == 50


def test_convert_response_to_choice():
    choice = convert_response_to_choice(
        {
            "id": "dig",
            "name": "Dig A Well",
            "success_chance": 70,
            "cost": [{"resource": "wood", "amount": 5}],
            "effects": [{"type": "stability", "modifier": 3}],
        }
    )
    assert choice.critical_success_chance == pytest.approx(14)
    assert choice.outcome_descriptions.success == "Successfully dig a well"
    assert choice.resource_cost[0].resource == R.WOOD
    assert convert_response_to_choice({"name": "x", "success_chance": 100}).critical_success_chance == 20


# ────────────────────────────────────────────
# 概率与随机生成
# ────────────────────────────────────────────


@pytest.mark.parametrize("event_type", ["natural", "economic", "social", "military", "cultural", "political"])
def test_event_probability_bounds(event_type):
    manager = make_manager()
    extreme = make_village(
        size="city",
        happiness=0,
        stability=0,
        prosperity=0,
        defense=0,
        season=SeasonInfo(current="winter"),
        weather=WeatherState(current="extreme"),
    )
    calm = make_village(size="hamlet", happiness=60, stability=100, prosperity=50, defense=100)
    for village in (extreme, calm):
        assert 1 <= manager.calculate_event_probability(event_type, village) <= 95


def test_no_event_when_bernoulli_draw_misses():
    manager = make_manager([0.99])
    assert manager.generate_random_events(make_village(), NOW) == []


def test_fallback_event_without_content():
    """没有内容协作方时使用大类兜底事件。"""
    store = InMemoryStore()
    # 命中 -> 类别 NATURAL（权重区间起点）-> 类型 weather
    manager = make_manager([0.01, 0.0, 0.0], store=store)
    events = manager.generate_random_events(make_village(), NOW)
    assert len(events) == 1
    event = events[0]
    assert event.name == "Pleasant Weather"
    assert event.category == "NATURAL"
    assert event.event_kind == "weather"
    assert event.type == "natural"
    assert not event.generated_by_ai
    assert event.id in store.get(active_events_key("v1"))


def test_category_weights_follow_village_state():
    manager = make_manager()
    unstable = make_village(stability=10)
    stable = make_village(stability=90)
    assert manager.category_weight("CRISIS", unstable) == 30
    assert manager.category_weight("CRISIS", stable) == 7.5
    assert manager.category_weight("ECONOMIC", make_village(prosperity=10)) == 30


def test_crisis_fallback_gets_emergency_choice():
    manager = make_manager()
    event = manager.generate_fallback_event("CRISIS", "famine", make_village(), NOW)
    assert event.name == "Unsettling Rumors"
    assert event.type == "economic"
    assert [c.id for c in event.player_choices] == ["emergency_resources"]
    assert [r.event_type for r in event.chain_reactions] == ["migration", "plague"]


# ────────────────────────────────────────────
# 事件处理
# ────────────────────────────────────────────


def test_process_event_applies_effects_and_records_history():
    store = InMemoryStore()
    manager = make_manager(store=store)
    event = make_event(
        effects=[
            EventEffect(type="happiness", modifier=5),
            EventEffect(type="resource", target="food", modifier=-50),
        ]
    )
    store.set(active_events_key("v1"), {event.id: event.model_dump(mode="json")})
    village = make_village()

    result = manager.process_event(event, village, NOW)

    assert result.success
    assert result.village.happiness == 55
    assert result.village.resources.resources[R.FOOD].current == 150
    assert result.village_changes.resource_changes[R.FOOD] == -50
    assert result.event.is_resolved and not result.event.is_active
    assert result.narrative_text == "The village gathering concluded successfully in Testville."
    assert village.happiness == 50
    assert store.get(active_events_key("v1")) == {}
    history = manager.get_event_history("v1")
    assert [h.event_id for h in history] == ["e1"]


def test_process_event_failure_penalty_leaves_input_untouched():
    manager = make_manager()
    village = make_village()
    before = village.model_dump()
    result = manager.process_event(make_event(is_active=False, is_resolved=True), village, NOW)

    assert not result.success
    assert result.narrative_text == catalog.PROCESS_FAILURE_NARRATIVE
    assert result.village.happiness == 45
    assert result.village.stability == 48
    assert village.model_dump() == before
    assert manager.get_event_history("v1") == []


def test_effects_clamp_percentages_and_hit_buildings():
    manager = make_manager()
    village = make_village(
        happiness=95, buildings=[Building(id="farm1", name="Farm", type="farm", efficiency=90)]
    )
    updated, changes = manager.apply_event_effects(
        [
            EventEffect(type="happiness", modifier=20),
            EventEffect(type="building", target="farm", modifier=-30),
            EventEffect(type="population", modifier=-3),
        ],
        village,
        NOW,
    )
    assert updated.happiness == 100
    assert changes.happiness_change == 5
    assert updated.buildings[0].efficiency == 60
    assert "farm1" in changes.building_effects
    assert updated.population.total == 0


def test_gold_effect_credits_treasury():
    manager = make_manager()
    village = make_village()
    updated, changes = manager.apply_event_effects(
        [
            EventEffect(type="resource", target="gold", modifier=20),
            EventEffect(type="resource", target="gold", modifier=-500),
        ],
        village,
        NOW,
    )
    assert updated.economy.treasury == 0
    assert changes.resource_changes[R.GOLD] == -100
    assert updated.resources.resources[R.GOLD].current == 0

    updated, changes = manager.apply_event_effects(
        [EventEffect(type="resource", target="gold", modifier=20)], village, NOW
    )
    assert updated.economy.treasury == 120
    assert changes.resource_changes[R.GOLD] == 20
    assert village.economy.treasury == 100


def test_history_is_truncated():
    store = InMemoryStore()
    manager = make_manager(store=store, history_limit=2)
    for i in range(3):
        manager.process_event(make_event(id=f"e{i}"), make_village(), NOW)
    assert [h.event_id for h in manager.get_event_history("v1")] == ["e1", "e2"]
    assert len(store.get(history_key("v1"))) == 2


# ────────────────────────────────────────────
# 连锁
# ────────────────────────────────────────────


def test_chain_requires_probability_and_condition():
    reaction = ChainReaction(event_type="migration", probability=30, condition="happiness < 40")
    trigger = make_event(chain_reactions=[reaction])

    spawned = make_manager([0.2]).create_event_chains(trigger, make_village(happiness=30), NOW)
    assert len(spawned) == 1
    assert spawned[0].parent_event_id == "e1"
    assert spawned[0].category == "SOCIAL"

    missed_roll = make_manager([0.5]).create_event_chains(trigger, make_village(happiness=30), NOW)
    assert missed_roll == []

    condition_false = make_manager([0.2]).create_event_chains(trigger, make_village(happiness=60), NOW)
    assert condition_false == []


def test_delayed_chain_is_scheduled_then_released():
    store = InMemoryStore()
    manager = make_manager([0.0], store=store)
    trigger = make_event(chain_reactions=[ChainReaction(event_type="plague", delay=3, probability=15)])
    village = make_village()

    children = manager.create_event_chains(trigger, village, NOW)
    assert len(children) == 1
    assert len(store.get(scheduled_key("v1"))) == 1

    assert manager.release_due_events(village, NOW + timedelta(days=2)) == []
    released = manager.release_due_events(village, NOW + timedelta(days=3))
    assert [e.id for e in released] == [children[0].id]
    assert store.get(scheduled_key("v1")) == []
    assert children[0].id in store.get(active_events_key("v1"))


class BrokenNarrativeManager(VillageEventManager):
    def _narrate(self, event, outcome, village):
        raise RuntimeError("narrative unavailable")


def test_process_event_schedules_delayed_chain_on_commit():
    store = InMemoryStore()
    manager = make_manager([0.0], store=store)
    trigger = make_event(chain_reactions=[ChainReaction(event_type="plague", delay=2, probability=40)])
    result = manager.process_event(trigger, make_village(), NOW)

    assert result.success
    [scheduled] = manager.get_scheduled_events("v1")
    assert scheduled.parent_event_id == "e1"
    assert scheduled.event_id == result.chain_events[0].id
    assert store.get(active_events_key("v1")) == {}


def test_failed_processing_leaves_no_chain_behind():
    """结算中途失败时，已抽中的延迟连锁不会留在排期里。"""
    store = InMemoryStore()
    manager = BrokenNarrativeManager(
        store, rng=ScriptedRandom([0.0]), config=SimulationConfig()
    )
    trigger = make_event(chain_reactions=[ChainReaction(event_type="plague", delay=2, probability=40)])
    store.set(active_events_key("v1"), {trigger.id: trigger.model_dump(mode="json")})

    result = manager.process_event(trigger, make_village(), NOW)

    assert not result.success
    assert result.village.happiness == 45
    assert store.get(scheduled_key("v1")) is None
    assert list(store.get(active_events_key("v1"))) == ["e1"]
    assert manager.get_event_history("v1") == []


# ────────────────────────────────────────────
# 玩家选择
# ────────────────────────────────────────────


@pytest.mark.parametrize(
    "draw, expected",
    [(0.10, "critical"), (0.50, "success"), (0.90, "failure")],
)
def test_choice_outcome_selection(draw, expected):
    manager = make_manager([draw])
    result = manager.handle_player_choices(make_event(), make_choice(), make_village(), NOW)
    assert result.roll == pytest.approx(draw * 100)
    if expected == "critical":
        assert result.outcome.success and result.outcome.critical
        assert result.village.happiness == 65
        assert result.outcome.description == "The feast will be remembered for years."
    elif expected == "success":
        assert result.outcome.success and not result.outcome.critical
        assert result.village.happiness == 60
    else:
        assert not result.outcome.success
        assert result.village.stability == 45
        assert result.outcome.description == "The feast fell flat."
    assert result.event.chosen_response == "c1"
    assert result.event.is_resolved


def test_choice_requirement_failure_penalizes_without_roll():
    """条件不满足时不掷骰（脚本为空，抽样会出错），只扣 -5 / -2。"""
    manager = make_manager([])
    choice = make_choice(
        resource_cost=[ResourceCost(resource=R.GOLD, amount=500)],
        requirements=[EventRequirement(type="building", target="temple")],
    )
    village = make_village()
    result = manager.handle_player_choices(make_event(), choice, village, NOW)

    assert not result.outcome.success
    assert result.outcome.description == catalog.CHOICE_REQUIREMENT_FAILURE
    assert result.village.happiness == 45
    assert result.village.stability == 48
    assert result.village.economy.treasury == 100
    assert not result.event.is_resolved
    assert any("temple" in c for c in result.outcome.unexpected_consequences)


def test_choice_pays_gold_from_treasury_and_resources_from_stock():
    manager = make_manager([0.5])
    choice = make_choice(
        resource_cost=[
            ResourceCost(resource=R.GOLD, amount=30),
            ResourceCost(resource=R.WOOD, amount=40),
        ]
    )
    result = manager.handle_player_choices(make_event(), choice, make_village(), NOW)
    assert result.outcome.success
    assert result.village.economy.treasury == 70
    assert result.village.resources.resources[R.WOOD].current == 60


def test_choice_chain_events_and_delayed_effects():
    store = InMemoryStore()
    manager = make_manager([0.5], store=store)
    choice = make_choice(
        chain_events=["festival"],
        delayed_effects=[DelayedEffect(type="stability", modifier=5, delay=2)],
    )
    result = manager.handle_player_choices(make_event(), choice, make_village(), NOW)

    assert len(result.chain_events) == 1
    child = result.chain_events[0]
    assert child.parent_event_id == "e1"
    assert result.event.child_event_ids == [child.id]
    assert child.id in store.get(active_events_key("v1"))
    assert len(store.get(delayed_effects_key("v1"))) == 1

    village = result.village
    assert manager.apply_due_effects(village, NOW + timedelta(days=1)) is village
    later = manager.apply_due_effects(village, NOW + timedelta(days=2))
    assert later.stability == village.stability + 5
    assert store.get(delayed_effects_key("v1")) == []


def test_resolved_event_rejects_second_choice():
    """已结算的事件再次选择时不掷骰、不扣费、不写历史，只扣 -5 / -2。"""
    store = InMemoryStore()
    manager = make_manager([0.5], store=store)
    choice = make_choice(resource_cost=[ResourceCost(resource=R.GOLD, amount=30)])
    first = manager.handle_player_choices(make_event(), choice, make_village(), NOW)
    assert first.outcome.success

    second = manager.handle_player_choices(first.event, choice, first.village, NOW)
    assert not second.outcome.success
    assert second.outcome.description == catalog.CHOICE_REQUIREMENT_FAILURE
    assert second.village.happiness == first.village.happiness - 5
    assert second.village.economy.treasury == 70
    assert len(manager.get_event_history("v1")) == 1


def test_failed_choice_does_not_schedule_delayed_effects():
    store = InMemoryStore()
    manager = make_manager([0.95], store=store)
    choice = make_choice(delayed_effects=[DelayedEffect(type="stability", modifier=5, delay=2)])
    manager.handle_player_choices(make_event(), choice, make_village(), NOW)
    assert store.get(delayed_effects_key("v1")) is None


# ────────────────────────────────────────────
# 季节性排期
# ────────────────────────────────────────────


def test_seasonal_events_are_scheduled_once_and_recur():
    store = InMemoryStore()
    manager = make_manager(store=store)
    village = make_village(season=SeasonInfo(current="spring", day=1, total_days=30))

    created = manager.schedule_seasonal_events(village, now=NOW)
    assert [s.event_kind for s in created] == ["planting_festival", "market_fair"]
    assert created[0].scheduled_date == NOW + timedelta(days=2)
    assert manager.schedule_seasonal_events(village, now=NOW) == []

    released = manager.release_due_events(village, NOW + timedelta(days=3))
    assert [e.event_kind for e in released] == ["planting_festival"]
    assert released[0].effects[0].type == "happiness"

    remaining = {s.event_kind: s.scheduled_date for s in manager.get_scheduled_events("v1")}
    assert remaining["planting_festival"] == NOW + timedelta(days=2 + 120)
    assert remaining["market_fair"] == NOW + timedelta(days=14)
