"""
GALAX World Registry

The world ("galaxy") is the factory and router of one ledger instance. It
creates territories behind a creation fee, creates businesses on behalf of
registered territories, lets participants consume items, and exposes
read-only snapshots for off-ledger collaborators.

    world = World.create()                       # Galax Network defaults
    territory = world.create_territory(
        owner, "Terra", "ipfs://terra", declared_value=100,
        salt=b"terra", paid_value=100_200,
    )
    territory.join(owner, authorization)

Identity
────────

    domain_id        keccak256(world name)[12:], bound into every
                     authorization message
    territory addr   derive_id(domain_id, salt, next territory id)
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

from galax.authorization import AuthorizationProtocol
from galax.catalog import BusinessType, ResourceCatalog
from galax.config import GalaxConfig, LedgerSettings, WorldDefinition, load_world_definition
from galax.events import BusinessCreated, EventBus, EventStore, ItemConsumed, TerritoryCreated
from galax.hardening import (
    CryptoUtils,
    InsufficientPayment,
    InsufficientValue,
    InvalidBusinessType,
    InvariantChecker,
    NotATerritory,
    NotMember,
    UINT256_MAX,
    Validators,
)
from galax.observability import LedgerLayer, get_logger, timed_operation
from galax.participants import ParticipantDirectory, ParticipantView, VitalityStats
from galax.production import ProductionEngine
from galax.security import AuditLogger
from galax.state import BusinessRecord, Ledger, TerritoryRecord, WorldState
from galax.territory import Territory

logger = get_logger("world", LedgerLayer.WORLD)

Salt = Union[bytes, int, str]


def _salt_bytes(salt: Salt) -> bytes:
    if isinstance(salt, bool):
        raise TypeError("salt must be bytes, int or str")
    if isinstance(salt, int):
        return Validators.validate_uint256(salt, "salt").unwrap().to_bytes(32, "big")
    if isinstance(salt, str):
        if salt.startswith("0x"):
            salt = Validators.validate_bytes(salt, "salt", 0, 32).unwrap()
        else:
            salt = salt.encode("utf-8")
    salt = bytes(salt)
    if len(salt) > 32:
        raise ValueError("salt must be at most 32 bytes")
    return salt.ljust(32, b"\x00")


def derive_id(creator: str, salt: Salt, sequence: int) -> str:
    """Deterministic entity address from creator, salt and sequence number.

    keccak256(0xff || creator || salt32 || sequence32)[12:]
    """
    creator_bytes = bytes.fromhex(Validators.validate_address(creator, "creator").unwrap()[2:])
    seq = Validators.validate_uint256(sequence, "sequence").unwrap()
    preimage = b"\xff" + creator_bytes + _salt_bytes(salt) + seq.to_bytes(32, "big")
    return "0x" + CryptoUtils.keccak256(preimage)[12:].hex()


def domain_id_for(name: str) -> str:
    return "0x" + CryptoUtils.keccak256(name.encode("utf-8"))[12:].hex()


class World:
    """One ledger instance: registry, router and read model."""

    def __init__(
        self,
        definition: WorldDefinition,
        settings: Optional[LedgerSettings] = None,
        event_bus: Optional[EventBus] = None,
        event_store: Optional[EventStore] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.definition = definition
        self.settings = settings or LedgerSettings.resolve(definition=definition)
        self.domain_id = domain_id_for(definition.name)

        directory = ParticipantDirectory(
            vitality_max=self.settings.vitality_max,
            skill_table=definition.skill_table,
        )
        self.state = WorldState(Ledger(directory), event_bus, event_store, audit)
        self.protocol = AuthorizationProtocol(
            self.domain_id,
            self.settings.chain_id,
            envelope=self.settings.envelope,
            audit=self.state.audit,
        )
        self.engine = ProductionEngine(self.state, definition.catalog, self.protocol)

    @classmethod
    def create(
        cls,
        definition: Union[WorldDefinition, str, None] = None,
        config: Optional[GalaxConfig] = None,
        event_bus: Optional[EventBus] = None,
        event_store: Optional[EventStore] = None,
    ) -> "World":
        """Build a world from a definition (or a path to one) and ledger config."""
        if not isinstance(definition, WorldDefinition):
            definition = load_world_definition(definition)
        settings = LedgerSettings.resolve(config, definition)
        world = cls(definition, settings, event_bus, event_store)
        logger.info(
            "world created",
            operation="create",
            name=definition.name,
            domain_id=world.domain_id,
            chain_id=settings.chain_id,
        )
        return world

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def chain_id(self) -> int:
        return self.settings.chain_id

    @property
    def catalog(self) -> ResourceCatalog:
        return self.definition.catalog

    @property
    def event_bus(self) -> EventBus:
        return self.state.event_bus

    @property
    def event_store(self) -> EventStore:
        return self.state.event_store

    @property
    def audit(self) -> AuditLogger:
        return self.state.audit

    @property
    def fee_vault(self) -> int:
        return self.state.ledger.fee_vault

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def predict_territory_address(self, salt: Salt) -> str:
        """Address the next ``create_territory`` call with ``salt`` will assign."""
        return derive_id(self.domain_id, salt, self.state.ledger.next_territory_id)

    @timed_operation(logger, "create_territory")
    def create_territory(
        self,
        caller: str,
        name: str,
        metadata_uri: str,
        declared_value: int,
        salt: Salt,
        paid_value: int,
    ) -> Territory:
        """Create a territory owned by ``caller``.

        ``declared_value`` seeds the treasury; the rest of ``paid_value`` is
        the creation fee and goes to the world fee vault.
        """
        caller = Validators.validate_address(caller, "caller").unwrap()
        name = Validators.validate_string(name, "name").unwrap()
        metadata_uri = Validators.validate_string(
            metadata_uri, "metadata_uri", min_length=0, max_length=Validators.MAX_URI_LENGTH
        ).unwrap()
        Validators.validate_uint256(declared_value, "declared_value").raise_if_invalid()
        Validators.validate_uint256(paid_value, "paid_value").raise_if_invalid()

        required = declared_value + self.settings.territory_creation_cost
        if paid_value < required:
            raise InsufficientValue(
                f"paid {paid_value}, territory creation requires {required}",
                paid_value=paid_value, required=required,
            )

        with self.state.transition("create_territory") as tx:
            ledger = self.state.ledger
            territory_id = ledger.next_territory_id
            address = derive_id(self.domain_id, salt, territory_id)
            if address in ledger.territory_addresses:
                raise ValueError(f"derived territory address {address} already registered")

            ledger.add_territory(TerritoryRecord(
                territory_id=territory_id,
                address=address,
                name=name,
                metadata_uri=metadata_uri,
                owner=caller,
                treasury=declared_value,
            ))
            ledger.fee_vault += paid_value - declared_value
            InvariantChecker.check_bounded("fee_vault", ledger.fee_vault, UINT256_MAX)
            tx.emit(TerritoryCreated(territory_id=territory_id, owner=caller, address=address, name=name))

        logger.info(
            "territory created",
            operation="create_territory",
            territory_id=territory_id,
            owner=caller,
            address=address,
        )
        return Territory(self, territory_id)

    @timed_operation(logger, "create_business")
    def create_business(
        self,
        caller: str,
        name: str,
        business_type: int,
        owner: str,
        paid_value: int,
    ) -> BusinessRecord:
        """Create a business for the territory at address ``caller``."""
        caller = Validators.validate_address(caller, "caller").unwrap()
        owner = Validators.validate_address(owner, "owner").unwrap()
        name = Validators.validate_string(name, "name").unwrap()
        Validators.validate_uint256(paid_value, "paid_value").raise_if_invalid()

        with self.state.transition("create_business") as tx:
            ledger = self.state.ledger
            territory = ledger.territory_by_address(caller)
            if territory is None:
                raise NotATerritory(f"{caller} is not a registered territory", caller=caller)

            cost = self.settings.business_creation_cost
            if paid_value < cost:
                raise InsufficientPayment(
                    f"paid {paid_value}, business creation costs {cost}",
                    paid_value=paid_value, required=cost,
                )

            kind = BusinessType.parse(business_type)
            if kind is None:
                raise InvalidBusinessType(f"unknown business type {business_type!r}", business_type=business_type)

            business = BusinessRecord(
                business_id=len(territory.businesses) + 1,
                territory_id=territory.territory_id,
                name=name,
                business_type=int(kind),
                owner=owner,
            )
            territory.businesses.append(business)
            ledger.fee_vault += paid_value
            tx.emit(BusinessCreated(
                business_id=business.business_id,
                territory_id=territory.territory_id,
                business_type=int(kind),
                owner=owner,
            ))

        logger.info(
            "business created",
            operation="create_business",
            territory_id=business.territory_id,
            business_id=business.business_id,
            business_type=kind.name,
        )
        return BusinessRecord(**vars(business))

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def enroll(
        self,
        address: str,
        vitality: Optional[Any] = None,
        experience: Optional[Mapping[int, int]] = None,
    ) -> ParticipantView:
        """Register a participant ahead of their first join.

        ``vitality`` and ``experience`` (skill kind -> experience) seed a new
        participant; an already known participant is left unchanged.
        """
        stats = VitalityStats.from_value(vitality) if vitality is not None else None
        with self.state.transition("enroll"):
            directory = self.state.ledger.participants
            address = Validators.validate_address(address, "participant").unwrap()
            is_new = address not in directory
            directory.enroll(address, stats)
            if is_new:
                for skill_kind, amount in sorted((experience or {}).items()):
                    Validators.validate_uint256(amount, "experience").raise_if_invalid()
                    directory.grant_experience(address, skill_kind, amount)
        return self.participant(address)

    @timed_operation(logger, "consume_item")
    def consume_item(self, caller: str, item_id: int, amount: int) -> VitalityStats:
        """Burn held items; each unit restores the item's vitality, capped at the maximum."""
        caller = Validators.validate_address(caller, "caller").unwrap()
        Validators.validate_uint256(amount, "amount", min_value=1).raise_if_invalid()
        item = self.catalog.item(item_id)

        with self.state.transition("consume_item") as tx:
            ledger = self.state.ledger
            if caller not in ledger.participants:
                raise NotMember(f"{caller} is not a participant of this world", participant=caller)
            ledger.balances.debit(caller, item_id, amount)
            vitality = ledger.participants.replenish(caller, item.restores.scaled(amount))
            tx.emit(ItemConsumed(participant=caller, item_id=item_id, amount=amount))

        logger.info("item consumed", operation="consume_item", participant=caller, item_id=item_id, amount=amount)
        return vitality

    # ------------------------------------------------------------------
    # Read-only snapshots
    # ------------------------------------------------------------------

    def participant(self, address: str) -> Optional[ParticipantView]:
        address = Validators.validate_address(address, "address").unwrap()
        return self.state.ledger.participants.view(address)

    def nonce_of(self, address: str) -> int:
        address = Validators.validate_address(address, "address").unwrap()
        return self.state.ledger.participants.nonces.current(address)

    def territory(self, territory_id: int) -> Territory:
        self.state.ledger.territory(territory_id)
        return Territory(self, territory_id)

    def territory_at(self, address: str) -> Optional[Territory]:
        address = Validators.validate_address(address, "address").unwrap()
        record = self.state.ledger.territory_by_address(address)
        return Territory(self, record.territory_id) if record else None

    def territories(self) -> List[Territory]:
        return [Territory(self, tid) for tid in sorted(self.state.ledger.territories)]

    def balance_of(self, holder: str, resource_id: int) -> int:
        holder = Validators.validate_address(holder, "holder").unwrap()
        return self.state.ledger.balances.balance_of(holder, resource_id)

    def snapshot(self) -> Dict[str, Any]:
        """Consistent, JSON-friendly copy of the whole ledger."""
        ledger = self.state.read()
        directory = ledger.participants
        return {
            "name": self.name,
            "domain_id": self.domain_id,
            "chain_id": self.chain_id,
            "fee_vault": ledger.fee_vault,
            "territories": [
                dict(t.to_dict(), holdings={
                    str(k): v for k, v in ledger.balances.holdings(t.address).items()
                })
                for _, t in sorted(ledger.territories.items())
            ],
            "participants": [directory.view(a).to_dict() for a in directory.addresses()],
            "supply": {str(e.resource_id): ledger.balances.total_supply(e.resource_id) for e in self.catalog},
        }
