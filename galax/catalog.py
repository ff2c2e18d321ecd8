"""
GALAX Resource/Item Catalog and Balance Ledger

The catalog is the shared, read-only description of everything a territory
can produce: fungible resources and limited-supply items, each with a
production recipe. It is supplied by the world definition at world creation
and never changes afterwards.

The balance ledger is the fungible/item balance collaborator: per-holder
balances plus total supply per catalog id. It is mutated only inside a world
transition, so its changes commit or roll back together with the rest of the
ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from galax.hardening import (
    InsufficientBalance,
    InvariantChecker,
    NotAnItem,
    UINT256_MAX,
    UnknownResource,
    Validators,
)
from galax.participants import VitalityStats


class BusinessType(IntEnum):
    """Fixed enumeration of business kinds a territory may host."""
    FOODS_AND_DRINKS = 1
    FOOD_SERVICE = 2
    FMCG = 3
    VEHICLE_MATERIALS = 4

    @classmethod
    def parse(cls, value: Any) -> Optional["BusinessType"]:
        """Return the member for ``value`` or None when outside the enumeration."""
        if isinstance(value, BusinessType):
            return value
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class CatalogKind(Enum):
    """Balance semantics of a catalog entry."""
    RESOURCE = "resource"  # fungible, unlimited supply
    ITEM = "item"  # limited supply, consumable by participants


@dataclass(frozen=True)
class ResourceInput:
    """Input consumed per produced unit."""
    resource_id: int
    amount: int


@dataclass(frozen=True)
class Recipe:
    """
    Production parameters for one catalog entry.

    ``vitality_cost`` is charged once per production call; experience and
    inputs scale with the produced amount.
    """
    max_per_call: int
    vitality_cost: VitalityStats
    skill_kind: int
    skill_exp_per_unit: int
    inputs: Tuple[ResourceInput, ...] = ()

    def required_experience(self, amount: int) -> int:
        return self.skill_exp_per_unit * amount

    def required_inputs(self, amount: int) -> List[Tuple[int, int]]:
        return [(i.resource_id, i.amount * amount) for i in self.inputs]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_per_call": self.max_per_call,
            "vitality_cost": self.vitality_cost.to_dict(),
            "skill_kind": self.skill_kind,
            "skill_exp_per_unit": self.skill_exp_per_unit,
            "inputs": [{"id": i.resource_id, "amount": i.amount} for i in self.inputs],
        }


@dataclass(frozen=True)
class CatalogEntry:
    """One resource or item kind."""
    resource_id: int
    name: str
    symbol: str
    kind: CatalogKind = CatalogKind.RESOURCE
    recipe: Optional[Recipe] = None
    business_type: Optional[BusinessType] = None
    max_supply: Optional[int] = None
    restores: VitalityStats = field(default_factory=VitalityStats)

    @property
    def is_item(self) -> bool:
        return self.kind is CatalogKind.ITEM

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.resource_id,
            "name": self.name,
            "symbol": self.symbol,
            "kind": self.kind.value,
        }
        if self.recipe:
            d["recipe"] = self.recipe.to_dict()
        if self.business_type is not None:
            d["business_type"] = int(self.business_type)
        if self.is_item:
            if self.max_supply is not None:
                d["max_supply"] = self.max_supply
            d["restores"] = self.restores.to_dict()
        return d


class ResourceCatalog:
    """Read-mostly registry of catalog entries keyed by id."""

    def __init__(self, entries: Iterable[CatalogEntry] = ()):
        self._entries: Dict[int, CatalogEntry] = {}
        for entry in entries:
            if entry.resource_id in self._entries:
                raise ValueError(f"duplicate catalog id {entry.resource_id}")
            self._entries[entry.resource_id] = entry
        for entry in self._entries.values():
            for needed in (entry.recipe.inputs if entry.recipe else ()):
                if needed.resource_id not in self._entries:
                    raise ValueError(
                        f"recipe for {entry.resource_id} needs unknown input {needed.resource_id}"
                    )

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(sorted(self._entries.values(), key=lambda e: e.resource_id))

    def get(self, resource_id: int) -> CatalogEntry:
        entry = self._entries.get(resource_id)
        if entry is None:
            raise UnknownResource(f"unknown catalog id {resource_id}", resource_id=resource_id)
        return entry

    def item(self, resource_id: int) -> CatalogEntry:
        entry = self.get(resource_id)
        if not entry.is_item:
            raise NotAnItem(f"catalog id {resource_id} is not an item", resource_id=resource_id)
        return entry

    def to_dict(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self]


class BalanceLedger:
    """
    Per-holder balances and total supply for catalog entries.

    ``credit`` mints, ``debit`` burns, ``transfer`` moves between holders.
    """

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, int], int] = {}
        self._supply: Dict[int, int] = {}

    def balance_of(self, holder: str, resource_id: int) -> int:
        return self._balances.get((holder, resource_id), 0)

    def total_supply(self, resource_id: int) -> int:
        return self._supply.get(resource_id, 0)

    def credit(self, holder: str, resource_id: int, amount: int) -> int:
        Validators.validate_uint256(amount, "amount").raise_if_invalid()
        new_balance = self.balance_of(holder, resource_id) + amount
        new_supply = self.total_supply(resource_id) + amount
        InvariantChecker.check_bounded("balance", new_balance, UINT256_MAX)
        InvariantChecker.check_bounded("supply", new_supply, UINT256_MAX)
        self._balances[(holder, resource_id)] = new_balance
        self._supply[resource_id] = new_supply
        return new_balance

    def debit(self, holder: str, resource_id: int, amount: int) -> int:
        Validators.validate_uint256(amount, "amount").raise_if_invalid()
        current = self.balance_of(holder, resource_id)
        if current < amount:
            raise InsufficientBalance(
                f"{holder} holds {current} of {resource_id}, needs {amount}",
                holder=holder, resource_id=resource_id, available=current, required=amount,
            )
        self._balances[(holder, resource_id)] = current - amount
        self._supply[resource_id] = self.total_supply(resource_id) - amount
        return current - amount

    def transfer(self, sender: str, recipient: str, resource_id: int, amount: int) -> None:
        self.debit(sender, resource_id, amount)
        self.credit(recipient, resource_id, amount)

    def holdings(self, holder: str) -> Dict[int, int]:
        return {rid: amt for (h, rid), amt in sorted(self._balances.items()) if h == holder and amt}
