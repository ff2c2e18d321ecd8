"""
Production state machine tests.

Covers the fixed precondition order, the all-or-nothing apply step, reward
payout, experience and level-ups, recipe inputs and item supply caps.
"""

import pytest

from galax.authorization import ActionKind, Authorization
from galax.catalog import CatalogEntry, CatalogKind, Recipe, ResourceInput
from galax.events import ResourceProduced
from galax.hardening import (
    BadActionKind,
    BadNonce,
    BadSigner,
    InsufficientInputs,
    InsufficientSkillExp,
    InsufficientTreasury,
    InsufficientVitality,
    NotMember,
    NotOwner,
    OverProductionLimit,
    UnknownResource,
    ValidationError,
)
from galax.participants import BASE_UNIT, VitalityStats


ALICE_KEY = 1
BOB_KEY = 2
ALICE = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"
BOB = "0x2b5ad5c4795c026514f8317c7a215e218dccd6cf"

ORE, INGOT, BREAD = 1, 2, 3
TREASURY = 1000 * BASE_UNIT


def _ore(skill_exp_per_unit=0):
    return CatalogEntry(ORE, "Ore", "ORE", recipe=Recipe(
        max_per_call=10**19,
        vitality_cost=VitalityStats.uniform(BASE_UNIT),
        skill_kind=1,
        skill_exp_per_unit=skill_exp_per_unit,
    ))


def _ingot():
    return CatalogEntry(INGOT, "Ingot", "ING", recipe=Recipe(
        max_per_call=100,
        vitality_cost=VitalityStats.uniform(BASE_UNIT),
        skill_kind=2,
        skill_exp_per_unit=1,
        inputs=(ResourceInput(ORE, 2),),
    ))


def _bread(max_supply=3):
    return CatalogEntry(
        BREAD, "Bread", "BRD",
        kind=CatalogKind.ITEM,
        max_supply=max_supply,
        restores=VitalityStats.uniform(5 * BASE_UNIT),
        recipe=Recipe(
            max_per_call=10,
            vitality_cost=VitalityStats.uniform(BASE_UNIT),
            skill_kind=1,
            skill_exp_per_unit=0,
        ),
    )


@pytest.fixture
def member(make_world, funded_territory, sign, owner):
    """World with one funded territory and Alice admitted to it."""
    def build(*entries, vitality=None, experience=None, **ore):
        world = make_world(*entries, **ore)
        territory = funded_territory(world, treasury=TREASURY)
        world.enroll(ALICE, vitality=vitality, experience=experience)
        territory.join(owner, sign(world, ALICE_KEY, territory.territory_id, ActionKind.JOIN))
        return world, territory
    return build


@pytest.fixture
def produce(sign, owner):
    def _produce(world, territory, amount, resource_id=ORE, reward=0, key=ALICE_KEY, authorization=None):
        authorization = authorization or sign(world, key, territory.territory_id, ActionKind.PRODUCE)
        return territory.produce(owner, authorization.participant, resource_id, amount, reward, authorization)
    return _produce


# =============================================================================
# REFERENCE SCENARIO
# =============================================================================

class TestReferenceScenario:
    """Vitality 100 per stat, recipe cost 10, one exp per unit, max 1e19 per call."""

    def test_over_production_limit(self, member, produce):
        world, territory = member()
        with pytest.raises(OverProductionLimit):
            produce(world, territory, 10**20)

    def test_skill_exp_with_vitality_available(self, member, produce):
        world, territory = member()
        with pytest.raises(InsufficientSkillExp) as exc_info:
            produce(world, territory, 10**18)
        assert exc_info.value.details["required"] == 10**18
        assert world.participant(ALICE).vitality == VitalityStats.uniform(100 * BASE_UNIT)

    def test_exhausted_vitality_reported_before_skill(self, member, produce):
        world, territory = member(vitality=VitalityStats(hunger=100 * BASE_UNIT, thirst=5 * BASE_UNIT, energy=0))
        with pytest.raises(InsufficientVitality) as exc_info:
            produce(world, territory, 10**18)
        assert exc_info.value.stat == "thirst"
        assert exc_info.value.reason == "InsufficientVitality"

    def test_first_deficient_stat_is_hunger(self, member, produce):
        world, territory = member(vitality=VitalityStats(hunger=0, thirst=0, energy=0))
        with pytest.raises(InsufficientVitality) as exc_info:
            produce(world, territory, 1)
        assert exc_info.value.stat == "hunger"


# =============================================================================
# CHECK ORDER
# =============================================================================

class TestCheckOrder:

    def test_not_member_before_authorization(self, member, owner):
        world, territory = member()
        forged = Authorization(BOB, 0, ActionKind.PRODUCE, b"\x00" * 65)
        with pytest.raises(NotMember):
            territory.produce(owner, BOB, ORE, 1, 0, forged)

    def test_join_authorization_rejected(self, member, produce, sign):
        world, territory = member(experience={1: 10})
        join = sign(world, ALICE_KEY, territory.territory_id, ActionKind.JOIN)
        with pytest.raises(BadActionKind):
            produce(world, territory, 1, authorization=join)

    def test_authorization_for_other_participant(self, member, sign, owner):
        world, territory = member(experience={1: 10})
        bobs = sign(world, BOB_KEY, territory.territory_id, ActionKind.PRODUCE)
        with pytest.raises(BadSigner):
            territory.produce(owner, ALICE, ORE, 1, 0, bobs)

    def test_authorization_before_limits(self, member, produce, sign):
        world, territory = member()
        stale = sign(world, ALICE_KEY, territory.territory_id, ActionKind.PRODUCE, nonce=0)
        with pytest.raises(BadNonce):
            produce(world, territory, 10**20, authorization=stale)

    def test_limit_before_treasury(self, member, produce):
        world, territory = member()
        with pytest.raises(OverProductionLimit):
            produce(world, territory, 10**20, reward=TREASURY + 1)

    def test_treasury_before_vitality(self, member, produce):
        world, territory = member(vitality=0)
        with pytest.raises(InsufficientTreasury):
            produce(world, territory, 1, reward=TREASURY + 1)

    def test_vitality_before_skill(self, member, produce):
        world, territory = member(vitality=0)
        with pytest.raises(InsufficientVitality):
            produce(world, territory, 5)

    def test_skill_before_inputs(self, member, produce):
        world, territory = member(_ore(), _ingot())
        with pytest.raises(InsufficientSkillExp):
            produce(world, territory, 1, resource_id=INGOT)

    def test_inputs(self, member, produce):
        world, territory = member(_ore(), _ingot(), experience={2: 100})
        with pytest.raises(InsufficientInputs) as exc_info:
            produce(world, territory, 3, resource_id=INGOT)
        assert exc_info.value.details["resource_id"] == ORE
        assert exc_info.value.details["required"] == 6


class TestInputValidation:

    def test_non_owner_caller(self, member, sign):
        world, territory = member()
        auth = sign(world, ALICE_KEY, territory.territory_id, ActionKind.PRODUCE)
        with pytest.raises(NotOwner):
            territory.produce(BOB, ALICE, ORE, 1, 0, auth)

    def test_zero_amount(self, member, produce):
        world, territory = member()
        with pytest.raises(ValidationError):
            produce(world, territory, 0)

    def test_unknown_resource(self, member, produce):
        world, territory = member()
        with pytest.raises(UnknownResource):
            produce(world, territory, 1, resource_id=99)


# =============================================================================
# ATOMICITY
# =============================================================================

class TestAtomicity:
    """A rejected call leaves every balance, stat and nonce as it was."""

    @pytest.mark.parametrize("failure", ["limit", "treasury", "vitality", "skill", "inputs"])
    def test_failed_call_changes_nothing(self, member, produce, failure):
        vitality = 0 if failure == "vitality" else None
        experience = {2: 100} if failure == "inputs" else None
        world, territory = member(_ore(skill_exp_per_unit=0), _ingot(), vitality=vitality, experience=experience)
        kwargs = {
            "limit": dict(amount=101, resource_id=INGOT),
            "treasury": dict(amount=1, reward=TREASURY + 1),
            "vitality": dict(amount=1),
            "skill": dict(amount=1, resource_id=INGOT),
            "inputs": dict(amount=1, resource_id=INGOT),
        }[failure]
        before = world.snapshot()
        events_before = world.event_store.total_events

        with pytest.raises((OverProductionLimit, InsufficientTreasury, InsufficientVitality,
                            InsufficientSkillExp, InsufficientInputs)):
            produce(world, territory, **kwargs)

        assert world.snapshot() == before
        assert world.nonce_of(ALICE) == 1
        assert world.event_store.total_events == events_before

    def test_nonce_reusable_after_failure(self, member, produce, sign):
        world, territory = member(experience={1: 10})
        auth = sign(world, ALICE_KEY, territory.territory_id, ActionKind.PRODUCE)
        with pytest.raises(InsufficientTreasury):
            produce(world, territory, 1, reward=TREASURY + 1, authorization=auth)
        receipt = produce(world, territory, 1, authorization=auth)
        assert receipt.next_nonce == 2


# =============================================================================
# SUCCESSFUL PRODUCTION
# =============================================================================

class TestProduction:

    def test_receipt_and_balances(self, member, produce):
        world, territory = member(experience={1: 1000})
        receipt = produce(world, territory, 50, reward=7 * BASE_UNIT)

        assert receipt.amount == 50
        assert receipt.resource_balance == 50
        assert receipt.next_nonce == 2
        assert territory.balance_of(ORE) == 50
        assert territory.treasury == TREASURY - 7 * BASE_UNIT
        view = world.participant(ALICE)
        assert view.balance == 7 * BASE_UNIT
        assert view.nonce == 2
        assert view.vitality == VitalityStats.uniform(90 * BASE_UNIT)

    def test_vitality_charged_per_call(self, member, produce):
        world, territory = member(experience={1: 10**6})
        produce(world, territory, 1)
        produce(world, territory, 1000)
        assert world.participant(ALICE).vitality == VitalityStats.uniform(80 * BASE_UNIT)

    def test_vitality_runs_out(self, member, produce):
        world, territory = member(experience={1: 100})
        for _ in range(10):
            produce(world, territory, 1)
        assert world.participant(ALICE).vitality == VitalityStats()
        with pytest.raises(InsufficientVitality):
            produce(world, territory, 1)
        assert world.nonce_of(ALICE) == 11

    def test_experience_and_level_up(self, member, produce):
        world, territory = member(experience={1: 99})
        assert world.participant(ALICE).skills[1].level == 1

        receipt = produce(world, territory, 1)
        assert receipt.leveled_up
        assert receipt.skill.experience == 100
        assert receipt.skill.level == 2

        receipt = produce(world, territory, 1)
        assert not receipt.leveled_up
        assert receipt.skill.level == 2
        assert world.participant(ALICE).skills[1].level == 2

    def test_level_up_through_engine(self, member, sign):
        world, territory = member(experience={1: 99})
        authorization = sign(world, ALICE_KEY, territory.territory_id, ActionKind.PRODUCE)

        receipt = world.engine.produce(territory.territory_id, ALICE, ORE, 1, 0, authorization)
        assert receipt.leveled_up
        assert receipt.next_nonce == 2
        view = world.participant(ALICE)
        assert view.skills[1].experience == 100
        assert view.skills[1].level == 2
        assert territory.balance_of(ORE) == 1

    def test_zero_exp_recipe_from_scratch(self, member, produce):
        world, territory = member(_ore(skill_exp_per_unit=0))
        receipt = produce(world, territory, 10)
        assert receipt.skill.experience == 0
        assert territory.balance_of(ORE) == 10

    def test_inputs_consumed(self, member, produce):
        world, territory = member(_ore(), _ingot(), experience={2: 100})
        produce(world, territory, 10)
        produce(world, territory, 3, resource_id=INGOT)
        assert territory.balance_of(ORE) == 4
        assert territory.balance_of(INGOT) == 3
        assert world.participant(ALICE).skills[2].experience == 103

    def test_event_emitted(self, member, produce):
        world, territory = member(experience={1: 10})
        seen = []
        world.event_bus.subscribe(ResourceProduced)(seen.append)
        produce(world, territory, 2, reward=1)

        assert len(seen) == 1
        assert seen[0].territory_id == territory.territory_id
        assert seen[0].participant == ALICE
        assert seen[0].amount == 2
        stream = world.event_store.read_stream(f"territory-{territory.territory_id}")
        assert stream[-1] is seen[0]


class TestItemSupply:

    def test_supply_cap(self, member, produce):
        world, territory = member(_bread(max_supply=3))
        with pytest.raises(OverProductionLimit) as exc_info:
            produce(world, territory, 4, resource_id=BREAD)
        assert exc_info.value.details["remaining_supply"] == 3

        produce(world, territory, 3, resource_id=BREAD)
        with pytest.raises(OverProductionLimit):
            produce(world, territory, 1, resource_id=BREAD)

    def test_consumed_items_free_supply(self, member, produce, owner):
        world, territory = member(_bread(max_supply=2))
        produce(world, territory, 2, resource_id=BREAD)
        territory.transfer_resource(owner, ALICE, BREAD, 1)
        world.consume_item(ALICE, BREAD, 1)
        receipt = produce(world, territory, 1, resource_id=BREAD)
        assert receipt.resource_balance == 2
