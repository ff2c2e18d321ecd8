"""
GALAX Participant Directory

Tracks every participant ("character") known to a world: vitality stats,
skill progression, native balance and territory membership. The directory
also owns the nonce registry used by the authorization protocol.

Participants are created implicitly on first successful join and are never
deleted, only reassigned between territories.

Invariants:
    - each vitality stat stays within [0, vitality_max]
    - skill experience never decreases and levels never regress
    - a participant is an active member of at most one territory
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple

from galax.hardening import (
    InvariantChecker,
    InvariantViolation,
    UINT256_MAX,
    Validators,
)
from galax.security import NonceRegistry


# Fixed check order for deterministic deficiency reporting.
VITALITY_STATS: Tuple[str, ...] = ("hunger", "thirst", "energy")

# 18-decimal fixed point, matching token base units.
BASE_UNIT = 10**18
DEFAULT_VITALITY_MAX = 100 * BASE_UNIT
DEFAULT_LEVEL_THRESHOLDS: Tuple[int, ...] = (100, 1_000, 10_000, 100_000, 1_000_000)


# =============================================================================
# VITALITY
# =============================================================================

@dataclass(frozen=True)
class VitalityStats:
    """Depletable participant attributes, in base units."""
    hunger: int = 0
    thirst: int = 0
    energy: int = 0

    def __post_init__(self):
        for name in VITALITY_STATS:
            Validators.validate_uint256(getattr(self, name), name).raise_if_invalid()

    @classmethod
    def uniform(cls, value: int) -> "VitalityStats":
        return cls(hunger=value, thirst=value, energy=value)

    @classmethod
    def from_value(cls, value) -> "VitalityStats":
        """Build from an int (uniform), a mapping, or an existing instance."""
        if isinstance(value, VitalityStats):
            return value
        if isinstance(value, Mapping):
            return cls(**{k: int(value.get(k, 0)) for k in VITALITY_STATS})
        return cls.uniform(int(value))

    def items(self) -> Iterator[Tuple[str, int]]:
        for name in VITALITY_STATS:
            yield name, getattr(self, name)

    def first_deficit(self, cost: "VitalityStats") -> Optional[str]:
        """Name of the first stat (hunger, thirst, energy) below ``cost``."""
        for name, value in self.items():
            if value < getattr(cost, name):
                return name
        return None

    def minus(self, cost: "VitalityStats") -> "VitalityStats":
        values = {}
        for name, value in self.items():
            remaining = value - getattr(cost, name)
            if remaining < 0:
                raise InvariantViolation(f"vitality {name} would underflow: {value} - {getattr(cost, name)}")
            values[name] = remaining
        return VitalityStats(**values)

    def plus_capped(self, gain: "VitalityStats", maximum: int) -> "VitalityStats":
        return VitalityStats(**{
            name: min(maximum, value + getattr(gain, name)) for name, value in self.items()
        })

    def scaled(self, factor: int) -> "VitalityStats":
        return VitalityStats(**{name: value * factor for name, value in self.items()})

    def to_dict(self) -> Dict[str, int]:
        return dict(self.items())


# =============================================================================
# SKILLS
# =============================================================================

@dataclass
class SkillProgress:
    """Level and accumulated experience in one skill kind."""
    level: int = 1
    experience: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"level": self.level, "experience": self.experience}


@dataclass(frozen=True)
class SkillTable:
    """
    Experience thresholds for level-ups.

    Level is 1 plus the number of thresholds reached. ``per_skill`` overrides
    the default thresholds for individual skill kinds.
    """
    thresholds: Tuple[int, ...] = DEFAULT_LEVEL_THRESHOLDS
    per_skill: Mapping[int, Tuple[int, ...]] = field(default_factory=dict)
    names: Mapping[int, str] = field(default_factory=dict)

    def __post_init__(self):
        for kind, table in [(None, self.thresholds), *self.per_skill.items()]:
            for previous, current in zip(table, table[1:]):
                if current <= previous:
                    raise ValueError(f"skill thresholds must be strictly increasing (skill {kind}): {table}")

    def thresholds_for(self, skill_kind: int) -> Sequence[int]:
        return self.per_skill.get(skill_kind, self.thresholds)

    def level_for(self, skill_kind: int, experience: int) -> int:
        return 1 + sum(1 for t in self.thresholds_for(skill_kind) if experience >= t)

    def name_of(self, skill_kind: int) -> str:
        return self.names.get(skill_kind, f"skill-{skill_kind}")


# =============================================================================
# PARTICIPANT
# =============================================================================

@dataclass
class Participant:
    """Mutable participant record. Only the directory mutates it."""
    address: str
    vitality: VitalityStats
    skills: Dict[int, SkillProgress] = field(default_factory=dict)
    current_territory: Optional[int] = None
    balance: int = 0

    def skill(self, skill_kind: int) -> SkillProgress:
        return self.skills.get(skill_kind, SkillProgress())


@dataclass(frozen=True)
class ParticipantView:
    """Read-only snapshot handed to callers and off-ledger collaborators."""
    address: str
    vitality: VitalityStats
    skills: Mapping[int, SkillProgress]
    nonce: int
    current_territory: Optional[int]
    balance: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "address": self.address,
            "vitality": self.vitality.to_dict(),
            "skills": {str(k): v.to_dict() for k, v in sorted(self.skills.items())},
            "nonce": self.nonce,
            "current_territory": self.current_territory,
            "balance": self.balance,
        }


class ParticipantDirectory:
    """
    Registry of participants shared by all territories of one world.

    The directory is plain data plus invariant-checked mutators; exclusivity
    comes from the enclosing world transition.
    """

    def __init__(
        self,
        vitality_max: int = DEFAULT_VITALITY_MAX,
        skill_table: Optional[SkillTable] = None,
    ):
        self.vitality_max = vitality_max
        self.skill_table = skill_table or SkillTable()
        self.nonces = NonceRegistry()
        self._participants: Dict[str, Participant] = {}

    def __contains__(self, address: object) -> bool:
        return address in self._participants

    def __len__(self) -> int:
        return len(self._participants)

    def get(self, address: str) -> Optional[Participant]:
        return self._participants.get(address)

    def enroll(self, address: str, vitality: Optional[VitalityStats] = None) -> Participant:
        """Return the participant for ``address``, creating it if needed.

        New participants start at full vitality unless ``vitality`` is given.
        Existing participants are returned unchanged.
        """
        address = Validators.validate_address(address, "participant").unwrap()
        existing = self._participants.get(address)
        if existing is not None:
            return existing

        stats = vitality if vitality is not None else VitalityStats.uniform(self.vitality_max)
        for name, value in stats.items():
            InvariantChecker.check_bounded(f"vitality.{name}", value, self.vitality_max)

        participant = Participant(address=address, vitality=stats)
        self._participants[address] = participant
        return participant

    def view(self, address: str) -> Optional[ParticipantView]:
        participant = self._participants.get(address)
        if participant is None:
            return None
        return ParticipantView(
            address=participant.address,
            vitality=participant.vitality,
            skills={k: SkillProgress(v.level, v.experience) for k, v in participant.skills.items()},
            nonce=self.nonces.current(address),
            current_territory=participant.current_territory,
            balance=participant.balance,
        )

    def addresses(self) -> Tuple[str, ...]:
        return tuple(sorted(self._participants))

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def is_member_of(self, address: str, territory_id: int) -> bool:
        participant = self._participants.get(address)
        return participant is not None and participant.current_territory == territory_id

    def assign_territory(self, address: str, territory_id: int) -> Optional[int]:
        """Move the participant into ``territory_id``. Returns the previous territory."""
        participant = self.enroll(address)
        previous = participant.current_territory
        participant.current_territory = territory_id
        return previous

    # ------------------------------------------------------------------
    # Vitality
    # ------------------------------------------------------------------

    def spend_vitality(self, address: str, cost: VitalityStats) -> VitalityStats:
        participant = self._require(address)
        participant.vitality = participant.vitality.minus(cost)
        return participant.vitality

    def replenish(self, address: str, gain: VitalityStats) -> VitalityStats:
        """Add ``gain`` to each stat, capped at the vitality maximum."""
        participant = self._require(address)
        participant.vitality = participant.vitality.plus_capped(gain, self.vitality_max)
        return participant.vitality

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    def grant_experience(self, address: str, skill_kind: int, experience: int) -> Tuple[SkillProgress, bool]:
        """Add experience and apply level-ups. Returns (progress, leveled_up)."""
        participant = self._require(address)
        current = participant.skill(skill_kind)

        new_experience = current.experience + experience
        InvariantChecker.check_bounded("skill.experience", new_experience, UINT256_MAX)
        new_level = max(current.level, self.skill_table.level_for(skill_kind, new_experience))
        InvariantChecker.check_monotonic_increase("skill.level", current.level, new_level)

        progress = SkillProgress(level=new_level, experience=new_experience)
        participant.skills[skill_kind] = progress
        return progress, new_level > current.level

    # ------------------------------------------------------------------
    # Native balance
    # ------------------------------------------------------------------

    def credit_balance(self, address: str, amount: int) -> int:
        participant = self._require(address)
        new_balance = participant.balance + amount
        InvariantChecker.check_bounded("participant.balance", new_balance, UINT256_MAX)
        participant.balance = new_balance
        return new_balance

    def _require(self, address: str) -> Participant:
        participant = self._participants.get(address)
        if participant is None:
            raise InvariantViolation(f"participant {address} is not enrolled")
        return participant
