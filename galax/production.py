"""
GALAX Production Engine

The state machine behind ``produce``. Given a participant's authorization it
checks, in this fixed order:

    1. participant is an active member of the territory      NotMember
    2. authorization is valid for PRODUCE                    BadActionKind / BadSigner / BadNonce
    3. amount within max_per_call (and item max_supply)      OverProductionLimit
    4. treasury holds the reward                             InsufficientTreasury
    5. vitality covers the recipe cost (hunger, thirst,
       energy; first deficient stat reported)                InsufficientVitality
    6. skill experience >= exp_per_unit * amount             InsufficientSkillExp
    7. territory holds the recipe inputs for amount          InsufficientInputs

and only then applies every mutation: vitality, inputs, minted output,
reward payout, experience and level-ups, nonce consumption and the
``ResourceProduced`` event. All of it runs in one world transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from galax.authorization import ActionKind, Authorization, AuthorizationProtocol
from galax.catalog import ResourceCatalog
from galax.events import ResourceProduced
from galax.hardening import (
    BadSigner,
    InsufficientInputs,
    InsufficientSkillExp,
    InsufficientTreasury,
    InsufficientVitality,
    NotMember,
    OverProductionLimit,
    UnknownResource,
    Validators,
)
from galax.observability import LedgerLayer, get_logger, timed_operation
from galax.participants import SkillProgress, VitalityStats
from galax.state import WorldState

logger = get_logger("production", LedgerLayer.PRODUCTION)


@dataclass(frozen=True)
class ProductionReceipt:
    """Result of a successful production call."""
    territory_id: int
    participant: str
    resource_id: int
    amount: int
    reward: int
    resource_balance: int
    vitality: VitalityStats
    skill_kind: int
    skill: SkillProgress
    leveled_up: bool
    next_nonce: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "territory_id": self.territory_id,
            "participant": self.participant,
            "resource_id": self.resource_id,
            "amount": self.amount,
            "reward": self.reward,
            "resource_balance": self.resource_balance,
            "vitality": self.vitality.to_dict(),
            "skill_kind": self.skill_kind,
            "skill": self.skill.to_dict(),
            "leveled_up": self.leveled_up,
            "next_nonce": self.next_nonce,
        }


class ProductionEngine:
    """Checks production preconditions and applies the multi-balance mutation."""

    def __init__(self, state: WorldState, catalog: ResourceCatalog, protocol: AuthorizationProtocol):
        self.state = state
        self.catalog = catalog
        self.protocol = protocol

    @timed_operation(logger, "produce")
    def produce(
        self,
        territory_id: int,
        participant: str,
        resource_id: int,
        amount: int,
        reward: int,
        authorization: Authorization,
    ) -> ProductionReceipt:
        participant = Validators.validate_address(participant, "participant").unwrap()
        Validators.validate_uint256(amount, "amount", min_value=1).raise_if_invalid()
        Validators.validate_uint256(reward, "reward").raise_if_invalid()
        entry = self.catalog.get(resource_id)
        recipe = entry.recipe
        if recipe is None:
            raise UnknownResource(f"catalog id {resource_id} has no production recipe", resource_id=resource_id)

        with self.state.transition("produce") as tx:
            ledger = self.state.ledger
            territory = ledger.territory(territory_id)
            directory = ledger.participants

            # 1. membership
            if not territory.is_member(participant):
                raise NotMember(
                    f"{participant} is not a member of territory {territory_id}",
                    participant=participant, territory_id=territory_id,
                )

            # 2. authorization, verified now and consumed last
            if authorization.participant != participant:
                raise BadSigner(
                    f"authorization is for {authorization.participant}, not {participant}",
                    participant=participant, claimed=authorization.participant,
                )
            verified = self.protocol.verify(directory.nonces, territory_id, authorization, ActionKind.PRODUCE)

            # 3. limits
            if amount > recipe.max_per_call:
                raise OverProductionLimit(
                    f"amount {amount} exceeds max per call {recipe.max_per_call}",
                    amount=amount, max_per_call=recipe.max_per_call,
                )
            if entry.is_item and entry.max_supply is not None:
                remaining = entry.max_supply - ledger.balances.total_supply(resource_id)
                if amount > remaining:
                    raise OverProductionLimit(
                        f"amount {amount} exceeds remaining supply {remaining}",
                        amount=amount, remaining_supply=remaining,
                    )

            # 4. treasury
            if territory.treasury < reward:
                raise InsufficientTreasury(
                    f"treasury {territory.treasury} cannot pay reward {reward}",
                    treasury=territory.treasury, reward=reward,
                )

            # 5. vitality
            record = directory.get(participant)
            deficient = record.vitality.first_deficit(recipe.vitality_cost)
            if deficient is not None:
                raise InsufficientVitality(
                    f"{deficient} below recipe cost",
                    stat=deficient,
                    available=getattr(record.vitality, deficient),
                    required=getattr(recipe.vitality_cost, deficient),
                )

            # 6. skill experience
            required_exp = recipe.required_experience(amount)
            experience = record.skill(recipe.skill_kind).experience
            if experience < required_exp:
                raise InsufficientSkillExp(
                    f"skill {recipe.skill_kind} experience {experience} below {required_exp}",
                    skill_kind=recipe.skill_kind, experience=experience, required=required_exp,
                )

            # 7. inputs
            needed = recipe.required_inputs(amount)
            for input_id, quantity in needed:
                held = ledger.balances.balance_of(territory.address, input_id)
                if held < quantity:
                    raise InsufficientInputs(
                        f"territory holds {held} of input {input_id}, needs {quantity}",
                        resource_id=input_id, available=held, required=quantity,
                    )

            # apply
            vitality = directory.spend_vitality(participant, recipe.vitality_cost)
            for input_id, quantity in needed:
                ledger.balances.debit(territory.address, input_id, quantity)
            resource_balance = ledger.balances.credit(territory.address, resource_id, amount)
            territory.treasury -= reward
            directory.credit_balance(participant, reward)
            progress, leveled_up = directory.grant_experience(participant, recipe.skill_kind, required_exp)
            next_nonce = self.protocol.consume(directory.nonces, verified)

            tx.emit(ResourceProduced(
                territory_id=territory_id,
                participant=participant,
                resource_id=resource_id,
                amount=amount,
                reward=reward,
            ))

        if leveled_up:
            logger.info(
                "skill level up",
                operation="produce",
                participant=participant,
                skill_kind=recipe.skill_kind,
                skill_level=progress.level,
            )
        logger.info(
            "resource produced",
            operation="produce",
            territory_id=territory_id,
            participant=participant,
            resource_id=resource_id,
            amount=amount,
        )
        return ProductionReceipt(
            territory_id=territory_id,
            participant=participant,
            resource_id=resource_id,
            amount=amount,
            reward=reward,
            resource_balance=resource_balance,
            vitality=vitality,
            skill_kind=recipe.skill_kind,
            skill=progress,
            leveled_up=leveled_up,
            next_nonce=next_nonce,
        )
