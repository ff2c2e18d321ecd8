"""
Territory membership: owner-gated joins, re-joins and transfers between
territories of the same world.
"""

import pytest

from galax.authorization import ActionKind
from galax.events import ParticipantJoined
from galax.hardening import BadActionKind, BadNonce, BadSigner, NotOwner
from galax.security import AuditEventType


ALICE_KEY = 1
BOB_KEY = 2
ALICE = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"
BOB = "0x2b5ad5c4795c026514f8317c7a215e218dccd6cf"


@pytest.fixture
def terra(world, funded_territory):
    return funded_territory(world, salt=b"terra")


@pytest.fixture
def luna(world, funded_territory):
    return funded_territory(world, salt=b"luna")


class TestJoin:

    def test_join(self, world, terra, sign, owner):
        receipt = terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))

        assert receipt.participant == ALICE
        assert receipt.previous_territory_id is None
        assert not receipt.transferred
        assert receipt.next_nonce == 1
        assert terra.is_member(ALICE)
        assert terra.members == [ALICE]
        assert world.participant(ALICE).current_territory == terra.territory_id

    def test_first_join_enrolls_at_full_vitality(self, world, terra, sign, owner):
        assert world.participant(ALICE) is None
        terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        view = world.participant(ALICE)
        assert view.vitality.hunger == world.settings.vitality_max
        assert view.balance == 0

    def test_non_owner_rejected(self, world, terra, sign):
        auth = sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN)
        with pytest.raises(NotOwner):
            terra.join(BOB, auth)
        assert not terra.is_member(ALICE)
        assert world.nonce_of(ALICE) == 0
        assert world.audit.get_events(event_type=AuditEventType.CAPABILITY_DENIED, actor=BOB)

    def test_produce_authorization_rejected(self, world, terra, sign, owner):
        auth = sign(world, ALICE_KEY, terra.territory_id, ActionKind.PRODUCE)
        with pytest.raises(BadActionKind):
            terra.join(owner, auth)
        assert world.participant(ALICE) is None

    def test_authorization_for_other_territory(self, world, terra, luna, sign, owner):
        auth = sign(world, ALICE_KEY, luna.territory_id, ActionKind.JOIN)
        with pytest.raises(BadSigner):
            terra.join(owner, auth)

    def test_replay_rejected(self, world, terra, sign, owner):
        auth = sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN)
        terra.join(owner, auth)
        with pytest.raises(BadNonce):
            terra.join(owner, auth)
        assert world.nonce_of(ALICE) == 1

    def test_event(self, world, terra, sign, owner):
        seen = []
        world.event_bus.subscribe(ParticipantJoined)(seen.append)
        terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        assert [(e.territory_id, e.participant, e.previous_territory_id) for e in seen] == [
            (terra.territory_id, ALICE, None)
        ]


class TestRejoin:

    def test_join_twice(self, world, terra, sign, owner):
        terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        receipt = terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))

        assert world.nonce_of(ALICE) == 2
        assert receipt.previous_territory_id is None
        assert not receipt.transferred
        assert terra.members == [ALICE]

    def test_rejoin_receipt_matches_event(self, world, terra, sign, owner):
        seen = []
        world.event_bus.subscribe(ParticipantJoined)(seen.append)
        terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        receipt = terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        assert receipt.previous_territory_id == seen[-1].previous_territory_id
        assert receipt.to_dict()["previous_territory_id"] is None

    def test_transfer(self, world, terra, luna, sign, owner):
        terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        receipt = luna.join(owner, sign(world, ALICE_KEY, luna.territory_id, ActionKind.JOIN))

        assert receipt.transferred
        assert receipt.previous_territory_id == terra.territory_id
        assert not terra.is_member(ALICE)
        assert luna.is_member(ALICE)
        assert world.participant(ALICE).current_territory == luna.territory_id

    def test_transfer_event_names_previous(self, world, terra, luna, sign, owner):
        terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        luna.join(owner, sign(world, ALICE_KEY, luna.territory_id, ActionKind.JOIN))
        events = world.event_store.read_stream(f"territory-{luna.territory_id}")
        joined = [e for e in events if isinstance(e, ParticipantJoined)]
        assert joined[-1].previous_territory_id == terra.territory_id

    def test_members_independent(self, world, terra, sign, owner):
        terra.join(owner, sign(world, ALICE_KEY, terra.territory_id, ActionKind.JOIN))
        terra.join(owner, sign(world, BOB_KEY, terra.territory_id, ActionKind.JOIN))
        assert terra.members == sorted([ALICE, BOB])
        assert world.nonce_of(ALICE) == world.nonce_of(BOB) == 1
