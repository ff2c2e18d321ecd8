"""
GALAX Territory Entity

A ``Territory`` is a handle onto one territory ("planet") of a world. It owns
nothing itself: every read goes to the world's current ledger and every
mutation runs in a world transition. The territory owner is the only caller
allowed to admit participants, drive production, create businesses or move
territory-held resources.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from galax.authorization import ActionKind, Authorization
from galax.events import ParticipantJoined
from galax.hardening import InsufficientTreasury, InvariantChecker, NotOwner, UINT256_MAX, Validators
from galax.observability import LedgerLayer, get_logger, timed_operation
from galax.production import ProductionReceipt
from galax.security import AuditEventType
from galax.state import BusinessRecord, TerritoryRecord

if TYPE_CHECKING:
    from galax.world import World

logger = get_logger("territory", LedgerLayer.TERRITORY)


@dataclass(frozen=True)
class JoinReceipt:
    territory_id: int
    participant: str
    previous_territory_id: Optional[int]
    next_nonce: int

    @property
    def transferred(self) -> bool:
        return self.previous_territory_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "territory_id": self.territory_id,
            "participant": self.participant,
            "previous_territory_id": self.previous_territory_id,
            "next_nonce": self.next_nonce,
        }


class Territory:
    """Handle for one territory of a world."""

    def __init__(self, world: "World", territory_id: int):
        self.world = world
        self.territory_id = territory_id

    def __repr__(self) -> str:
        return f"Territory(id={self.territory_id}, address={self.address})"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Territory)
            and other.world is self.world
            and other.territory_id == self.territory_id
        )

    def __hash__(self) -> int:
        return hash((id(self.world), self.territory_id))

    @property
    def _record(self) -> TerritoryRecord:
        return self.world.state.ledger.territory(self.territory_id)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._record.address

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def metadata_uri(self) -> str:
        return self._record.metadata_uri

    @property
    def owner(self) -> str:
        return self._record.owner

    @property
    def treasury(self) -> int:
        return self._record.treasury

    @property
    def businesses(self) -> List[BusinessRecord]:
        return [BusinessRecord(**vars(b)) for b in self._record.businesses]

    def business(self, business_id: int) -> Optional[BusinessRecord]:
        businesses = self._record.businesses
        if 1 <= business_id <= len(businesses):
            return BusinessRecord(**vars(businesses[business_id - 1]))
        return None

    @property
    def members(self) -> List[str]:
        return self._record.active_members()

    def is_member(self, participant: str) -> bool:
        return self._record.is_member(participant.lower())

    def balance_of(self, resource_id: int) -> int:
        return self.world.state.ledger.balances.balance_of(self.address, resource_id)

    def to_dict(self) -> Dict[str, Any]:
        d = self._record.to_dict()
        d["holdings"] = {str(k): v for k, v in self.world.state.ledger.balances.holdings(self.address).items()}
        return d

    def _require_owner(self, caller: str, action: str) -> str:
        caller = Validators.validate_address(caller, "caller").unwrap()
        if caller != self._record.owner:
            self.world.state.audit.log(
                AuditEventType.CAPABILITY_DENIED, caller, "territory", str(self.territory_id), action, "failure",
            )
            raise NotOwner(
                f"{caller} does not own territory {self.territory_id}",
                caller=caller, territory_id=self.territory_id,
            )
        return caller

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    @timed_operation(logger, "join")
    def join(self, caller: str, authorization: Authorization) -> JoinReceipt:
        """Admit the authorizing participant. Owner only.

        Re-joining the same territory succeeds without changing membership
        (the nonce is still consumed). Joining from another territory moves
        the participant.
        """
        state = self.world.state
        with state.transition("join") as tx:
            self._require_owner(caller, "join")
            directory = state.ledger.participants
            verified = self.world.protocol.verify(
                directory.nonces, self.territory_id, authorization, ActionKind.JOIN
            )
            participant = verified.participant

            directory.enroll(participant)
            previous = directory.assign_territory(participant, self.territory_id)
            if previous is not None and previous != self.territory_id:
                state.ledger.territory(previous).members[participant] = False
            self._record.members[participant] = True

            next_nonce = self.world.protocol.consume(directory.nonces, verified)
            transferred_from = previous if previous != self.territory_id else None
            tx.emit(ParticipantJoined(
                territory_id=self.territory_id,
                participant=participant,
                previous_territory_id=transferred_from,
            ))

        logger.info(
            "participant joined",
            operation="join",
            territory_id=self.territory_id,
            participant=participant,
            previous_territory_id=transferred_from,
        )
        return JoinReceipt(self.territory_id, participant, transferred_from, next_nonce)

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    def produce(
        self,
        caller: str,
        participant: str,
        resource_id: int,
        amount: int,
        reward: int,
        authorization: Authorization,
    ) -> ProductionReceipt:
        """Run production on behalf of a member. Owner only."""
        with self.world.state.transition("produce"):
            self._require_owner(caller, "produce")
            return self.world.engine.produce(
                self.territory_id, participant, resource_id, amount, reward, authorization
            )

    # ------------------------------------------------------------------
    # Treasury and holdings
    # ------------------------------------------------------------------

    def fund(self, amount: int) -> int:
        """Add external funding to the treasury. Returns the new treasury."""
        Validators.validate_uint256(amount, "amount").raise_if_invalid()
        with self.world.state.transition("fund"):
            record = self._record
            record.treasury += amount
            InvariantChecker.check_bounded("treasury", record.treasury, UINT256_MAX)
            treasury = record.treasury
        logger.info("treasury funded", operation="fund", territory_id=self.territory_id, amount=amount)
        return treasury

    def create_business(
        self,
        caller: str,
        name: str,
        business_type: int,
        owner: str,
        paid_value: Optional[int] = None,
    ) -> BusinessRecord:
        """Create a business in this territory. Owner only.

        With ``paid_value`` the caller attaches the payment. Without it the
        business creation cost is spent from the treasury.
        """
        with self.world.state.transition("create_business"):
            self._require_owner(caller, "create_business")
            if paid_value is None:
                cost = self.world.settings.business_creation_cost
                record = self._record
                if record.treasury < cost:
                    raise InsufficientTreasury(
                        f"treasury {record.treasury} cannot pay business creation cost {cost}",
                        treasury=record.treasury, reward=cost,
                    )
                record.treasury -= cost
                paid_value = cost
            return self.world.create_business(self.address, name, business_type, owner, paid_value)

    def transfer_resource(self, caller: str, to: str, resource_id: int, amount: int) -> int:
        """Move territory-held units to ``to``. Owner only. Returns the territory's remaining balance."""
        to = Validators.validate_address(to, "to").unwrap()
        Validators.validate_uint256(amount, "amount").raise_if_invalid()
        self.world.catalog.get(resource_id)
        with self.world.state.transition("transfer_resource"):
            self._require_owner(caller, "transfer_resource")
            balances = self.world.state.ledger.balances
            balances.transfer(self.address, to, resource_id, amount)
            remaining = balances.balance_of(self.address, resource_id)
        logger.info(
            "resource transferred",
            operation="transfer_resource",
            territory_id=self.territory_id,
            to=to,
            resource_id=resource_id,
            amount=amount,
        )
        return remaining
