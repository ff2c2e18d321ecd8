"""
GALAX World State

The ``WorldState`` aggregate holds every mutable piece of one world's ledger
and is the only path to mutating it. Each mutating call runs inside
``WorldState.transition(name)``:

    with state.transition("produce") as tx:
        ledger = state.ledger
        ... check every precondition ...
        ... mutate ledger ...
        tx.emit(ResourceProduced(...))

The transition holds the world lock for the whole call, snapshots the ledger
on entry and restores the snapshot if anything raises. Events emitted inside
the transition are published only after it commits. Transitions nest: an
inner ``transition`` call joins the active one instead of opening another.

Code must always reach ledger data through ``state.ledger`` inside the
transition, never through references kept from an earlier call, because
rollback replaces the ``Ledger`` object.
"""

from __future__ import annotations

import copy
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from galax.catalog import BalanceLedger
from galax.events import Event, EventBus, EventStore, stream_for
from galax.hardening import UnknownTerritory
from galax.observability import LedgerLayer, get_correlation_id, get_logger
from galax.participants import ParticipantDirectory
from galax.security import AuditLogger

logger = get_logger("state", LedgerLayer.STATE)


@dataclass
class BusinessRecord:
    """A business in a territory's registry."""
    business_id: int
    territory_id: int
    name: str
    business_type: int
    owner: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.business_id,
            "territory_id": self.territory_id,
            "name": self.name,
            "business_type": self.business_type,
            "owner": self.owner,
        }


@dataclass
class TerritoryRecord:
    """Ledger-side data of one territory. Resource holdings live in the balance ledger."""
    territory_id: int
    address: str
    name: str
    metadata_uri: str
    owner: str
    treasury: int = 0
    businesses: List[BusinessRecord] = field(default_factory=list)
    members: Dict[str, bool] = field(default_factory=dict)

    def is_member(self, address: str) -> bool:
        return self.members.get(address, False)

    def active_members(self) -> List[str]:
        return sorted(a for a, active in self.members.items() if active)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.territory_id,
            "address": self.address,
            "name": self.name,
            "metadata_uri": self.metadata_uri,
            "owner": self.owner,
            "treasury": self.treasury,
            "businesses": [b.to_dict() for b in self.businesses],
            "members": self.active_members(),
        }


class Ledger:
    """All mutable state of one world. Snapshotted as a whole for rollback."""

    def __init__(self, participants: ParticipantDirectory):
        self.participants = participants
        self.balances = BalanceLedger()
        self.territories: Dict[int, TerritoryRecord] = {}
        self.territory_addresses: Dict[str, int] = {}
        self.fee_vault = 0

    @property
    def next_territory_id(self) -> int:
        return len(self.territories) + 1

    def territory(self, territory_id: int) -> TerritoryRecord:
        record = self.territories.get(territory_id)
        if record is None:
            raise UnknownTerritory(f"no territory with id {territory_id}", territory_id=territory_id)
        return record

    def territory_by_address(self, address: str) -> Optional[TerritoryRecord]:
        territory_id = self.territory_addresses.get(address)
        return self.territories.get(territory_id) if territory_id is not None else None

    def add_territory(self, record: TerritoryRecord) -> None:
        self.territories[record.territory_id] = record
        self.territory_addresses[record.address] = record.territory_id


class Transition:
    """Handle for the transition in progress; buffers emitted events."""

    def __init__(self, name: str, correlation_id: str):
        self.name = name
        self.correlation_id = correlation_id
        self.events: List[Event] = []

    def emit(self, event: Event) -> Event:
        if event.correlation_id is None:
            event.correlation_id = self.correlation_id
        self.events.append(event)
        return event


class WorldState:
    """Whole-transition exclusivity, rollback and event publication for one ledger."""

    def __init__(
        self,
        ledger: Ledger,
        event_bus: Optional[EventBus] = None,
        event_store: Optional[EventStore] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.ledger = ledger
        self.event_bus = event_bus or EventBus()
        self.event_store = event_store or EventStore()
        self.audit = audit or AuditLogger()
        self._lock = threading.RLock()
        self._active: Optional[Transition] = None

    @property
    def in_transition(self) -> bool:
        return self._active is not None

    @contextmanager
    def transition(self, name: str) -> Iterator[Transition]:
        with self._lock:
            if self._active is not None:
                yield self._active
                return

            snapshot = copy.deepcopy(self.ledger)
            tx = Transition(name, get_correlation_id())
            self._active = tx
            start = time.monotonic()
            try:
                yield tx
            except Exception as exc:
                self.ledger = snapshot
                logger.warning(
                    f"Transition {name} rolled back",
                    operation=name,
                    error_code=getattr(exc, "reason", type(exc).__name__),
                    duration_ms=(time.monotonic() - start) * 1000,
                )
                raise
            finally:
                self._active = None

            self._publish(tx)
            logger.debug(
                f"Transition {name} committed",
                operation=name,
                duration_ms=(time.monotonic() - start) * 1000,
                events=len(tx.events),
            )

    def _publish(self, tx: Transition) -> None:
        for event in tx.events:
            self.event_store.append(stream_for(event), [event])
        for event in tx.events:
            self.event_bus.publish(event)

    def read(self) -> Ledger:
        """Consistent copy of the ledger for off-ledger readers."""
        with self._lock:
            return copy.deepcopy(self.ledger)
