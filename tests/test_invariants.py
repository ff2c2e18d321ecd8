"""
Randomized operation sequences against a small world, checking ledger
invariants after every call whether it succeeded or not.
"""

import random

import pytest

from galax.authorization import ActionKind
from galax.catalog import CatalogEntry, CatalogKind, Recipe, ResourceInput
from galax.hardening import LedgerError
from galax.participants import BASE_UNIT, VitalityStats
from galax.signing import address_from_private_key


KEYS = [1, 2, 3, 4]
ORE, BREAD, PLANK = 1, 2, 3
RESOURCES = (ORE, BREAD, PLANK)
CARPENTRY = 3


def _entries():
    ore = CatalogEntry(ORE, "Ore", "ORE", recipe=Recipe(
        max_per_call=50,
        vitality_cost=VitalityStats(hunger=3 * BASE_UNIT, thirst=2 * BASE_UNIT, energy=5 * BASE_UNIT),
        skill_kind=1,
        skill_exp_per_unit=0,
    ))
    bread = CatalogEntry(
        BREAD, "Bread", "BRD",
        kind=CatalogKind.ITEM,
        max_supply=40,
        restores=VitalityStats.uniform(20 * BASE_UNIT),
        recipe=Recipe(
            max_per_call=5,
            vitality_cost=VitalityStats.uniform(BASE_UNIT),
            skill_kind=2,
            skill_exp_per_unit=0,
            inputs=(ResourceInput(ORE, 3),),
        ),
    )
    plank = CatalogEntry(PLANK, "Plank", "PLK", recipe=Recipe(
        max_per_call=50,
        vitality_cost=VitalityStats.uniform(2 * BASE_UNIT),
        skill_kind=CARPENTRY,
        skill_exp_per_unit=1,
    ))
    return ore, bread, plank


def _check(world, territories, previous):
    ledger = world.state.ledger
    directory = ledger.participants
    vitality_max = world.settings.vitality_max
    for address in directory.addresses():
        view = directory.view(address)
        for _, value in view.vitality.items():
            assert 0 <= value <= vitality_max
        before = previous.get(address)
        if before is not None:
            assert view.nonce >= before.nonce
            for kind, progress in before.skills.items():
                assert view.skills[kind].experience >= progress.experience
                assert view.skills[kind].level >= progress.level
        for kind, progress in view.skills.items():
            assert progress.level == directory.skill_table.level_for(kind, progress.experience)
        previous[address] = view
        memberships = [t.territory_id for t in territories if t.is_member(address)]
        assert len(memberships) <= 1
        if memberships:
            assert view.current_territory == memberships[0]

    holders = [t.address for t in territories] + [address_from_private_key(k) for k in KEYS]
    for resource_id in RESOURCES:
        held = sum(ledger.balances.balance_of(h, resource_id) for h in holders)
        assert held == ledger.balances.total_supply(resource_id)
    assert ledger.balances.total_supply(BREAD) <= 40
    for territory in territories:
        assert territory.treasury >= 0


def _run(make_world, funded_territory, sign, owner, seed, steps):
    rng = random.Random(seed)
    world = make_world(*_entries(), thresholds=(5, 15, 40, 100, 250))
    territories = [
        funded_territory(world, salt=b"a", treasury=500),
        funded_territory(world, salt=b"b", treasury=500),
    ]
    for key in KEYS:
        world.enroll(address_from_private_key(key), experience={CARPENTRY: 10})
    previous = {}
    outcomes = {"ok": 0, "rejected": 0, "level_ups": 0}

    for _ in range(steps):
        key = rng.choice(KEYS)
        participant = address_from_private_key(key)
        territory = rng.choice(territories)
        op = rng.choice(["join", "produce", "produce", "produce", "consume", "transfer", "future"])
        before = world.snapshot()
        try:
            if op == "join":
                territory.join(owner, sign(world, key, territory.territory_id, ActionKind.JOIN))
            elif op == "produce":
                resource_id = rng.choice(RESOURCES)
                auth = sign(world, key, territory.territory_id, ActionKind.PRODUCE)
                receipt = territory.produce(
                    owner, participant, resource_id, rng.randint(1, 60), rng.randint(0, 10), auth
                )
                outcomes["level_ups"] += receipt.leveled_up
            elif op == "consume":
                world.consume_item(participant, BREAD, rng.randint(1, 3))
            elif op == "transfer":
                territory.transfer_resource(owner, participant, BREAD, rng.randint(1, 3))
            else:
                future = world.nonce_of(participant) + 1
                territory.join(owner, sign(world, key, territory.territory_id, ActionKind.JOIN, nonce=future))
            outcomes["ok"] += 1
        except LedgerError:
            outcomes["rejected"] += 1
            assert world.snapshot() == before
        _check(world, territories, previous)

    assert world.audit.verify_chain() == (True, None)
    return outcomes


class TestInvariants:

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_short_sequences(self, make_world, funded_territory, sign, owner, seed):
        outcomes = _run(make_world, funded_territory, sign, owner, seed, steps=60)
        assert outcomes["ok"] > 0
        assert outcomes["rejected"] > 0

    def test_level_ups_occur(self, make_world, funded_territory, sign, owner):
        level_ups = sum(
            _run(make_world, funded_territory, sign, owner, seed, steps=120)["level_ups"]
            for seed in range(3)
        )
        assert level_ups > 0

    @pytest.mark.slow
    @pytest.mark.parametrize("seed", range(10))
    def test_long_sequences(self, make_world, funded_territory, sign, owner, seed):
        _run(make_world, funded_territory, sign, owner, seed, steps=600)
