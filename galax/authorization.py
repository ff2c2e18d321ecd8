"""
GALAX Authorization Protocol

An off-ledger authority vouches for a participant's right to perform one
action by signing a canonical message:

    domain_id (20) || chain_id (32) || participant (20) ||
    target_entity_id (32) || nonce (32) || action_kind (32)

packed big-endian (168 bytes) and hashed with Keccak-256. The message binds
the authorization to one ledger deployment, one network, one target entity,
one action kind and one nonce.

Verification and consumption are separate steps. ``verify`` is pure: it
rebuilds the message, recovers the signer and compares nonces. ``consume``
advances the participant's nonce by one and is called by the operation only
after all of its own preconditions have passed, inside the same transition,
so a failed operation never burns a nonce.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Optional, Union

from galax.hardening import (
    BadActionKind,
    BadNonce,
    BadSigner,
    CryptoUtils,
    LedgerError,
    Validators,
)
from galax.observability import LedgerLayer, get_logger
from galax.security import AuditEventType, AuditLogger, NonceRegistry
from galax.signing import SignatureEnvelope, address_from_private_key, recover_signer, sign_digest

logger = get_logger("authorization", LedgerLayer.AUTH)


class ActionKind(IntEnum):
    """Privileged actions an authorization can be issued for."""
    JOIN = 1
    PRODUCE = 2


def _uint256(value: int) -> bytes:
    return value.to_bytes(32, "big")


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(address[2:])


@dataclass(frozen=True)
class AuthorizationMessage:
    """The logical tuple a signature covers. Rebuilt for every check, never stored."""
    domain_id: str
    chain_id: int
    participant: str
    target_entity_id: int
    nonce: int
    action_kind: int

    ENCODED_LENGTH: ClassVar[int] = 168

    def __post_init__(self):
        object.__setattr__(self, "domain_id", Validators.validate_address(self.domain_id, "domain_id").unwrap())
        object.__setattr__(self, "participant", Validators.validate_address(self.participant, "participant").unwrap())
        for name in ("chain_id", "target_entity_id", "nonce", "action_kind"):
            Validators.validate_uint256(getattr(self, name), name).raise_if_invalid()

    def encode(self) -> bytes:
        return b"".join((
            _address_bytes(self.domain_id),
            _uint256(self.chain_id),
            _address_bytes(self.participant),
            _uint256(self.target_entity_id),
            _uint256(self.nonce),
            _uint256(int(self.action_kind)),
        ))

    def digest(self) -> bytes:
        return CryptoUtils.keccak256(self.encode())


@dataclass(frozen=True)
class Authorization:
    """What a caller presents: the claimed participant, nonce and kind plus the signature."""
    participant: str
    nonce: int
    action_kind: int
    signature: Union[bytes, str]

    def __post_init__(self):
        object.__setattr__(self, "participant", Validators.validate_address(self.participant, "participant").unwrap())
        Validators.validate_uint256(self.nonce, "nonce").raise_if_invalid()
        Validators.validate_uint256(int(self.action_kind), "action_kind").raise_if_invalid()

    def to_dict(self) -> dict:
        sig = self.signature if isinstance(self.signature, str) else "0x" + bytes(self.signature).hex()
        return {
            "participant": self.participant,
            "nonce": self.nonce,
            "action_kind": int(self.action_kind),
            "signature": sig,
        }


@dataclass(frozen=True)
class VerifiedAuthorization:
    """Proof that ``verify`` passed; the only input ``consume`` accepts."""
    participant: str
    nonce: int
    action_kind: ActionKind
    target_entity_id: int
    digest: bytes


class AuthorizationProtocol:
    """
    Verifies authorizations for one ledger instance (domain id + chain id).

    The protocol holds no ledger state. The nonce registry is passed per call
    so that it is always the one owned by the current transition's ledger.
    """

    def __init__(
        self,
        domain_id: str,
        chain_id: int,
        envelope: SignatureEnvelope = SignatureEnvelope.RAW,
        audit: Optional[AuditLogger] = None,
    ):
        self.domain_id = Validators.validate_address(domain_id, "domain_id").unwrap()
        self.chain_id = Validators.validate_uint256(chain_id, "chain_id").unwrap()
        self.envelope = envelope
        self.audit = audit or AuditLogger()

    def message_for(
        self,
        participant: str,
        target_entity_id: int,
        nonce: int,
        action_kind: int,
    ) -> AuthorizationMessage:
        return AuthorizationMessage(
            domain_id=self.domain_id,
            chain_id=self.chain_id,
            participant=participant,
            target_entity_id=target_entity_id,
            nonce=nonce,
            action_kind=action_kind,
        )

    def verify(
        self,
        nonces: NonceRegistry,
        target_entity_id: int,
        authorization: Authorization,
        intended: ActionKind,
    ) -> VerifiedAuthorization:
        """Check kind, signer and nonce, in that order. Mutates nothing.

        Raises BadActionKind, BadSigner or BadNonce.
        """
        participant = authorization.participant
        try:
            if int(authorization.action_kind) != int(intended):
                raise BadActionKind(
                    f"authorization is for action {int(authorization.action_kind)}, not {intended.name}",
                    declared=int(authorization.action_kind), intended=int(intended),
                )

            message = self.message_for(participant, target_entity_id, authorization.nonce, intended)
            digest = message.digest()
            signer = recover_signer(digest, authorization.signature, self.envelope)
            if not CryptoUtils.secure_compare_str(signer, participant):
                raise BadSigner(
                    f"signature recovers {signer}, not {participant}",
                    recovered=signer, participant=participant,
                )

            current = nonces.current(participant)
            if authorization.nonce != current:
                raise BadNonce(
                    f"nonce {authorization.nonce} is not current ({current})",
                    claimed=authorization.nonce, current=current,
                )
        except LedgerError as exc:
            self._record_denial(exc, participant, target_entity_id, intended, nonces)
            raise

        self.audit.log(
            AuditEventType.AUTHZ_GRANTED, participant, "territory", str(target_entity_id),
            intended.name.lower(), "success", {"nonce": authorization.nonce},
        )
        return VerifiedAuthorization(
            participant=participant,
            nonce=authorization.nonce,
            action_kind=intended,
            target_entity_id=target_entity_id,
            digest=digest,
        )

    def consume(self, nonces: NonceRegistry, verified: VerifiedAuthorization) -> int:
        """Advance the participant's nonce past the verified one. Returns the next nonce."""
        next_nonce = nonces.consume(verified.participant, verified.nonce)
        self.audit.log(
            AuditEventType.NONCE_CONSUMED, verified.participant, "territory",
            str(verified.target_entity_id), verified.action_kind.name.lower(), "success",
            {"nonce": verified.nonce, "next_nonce": next_nonce},
        )
        logger.debug(
            "nonce consumed",
            operation="consume",
            participant=verified.participant,
            next_nonce=next_nonce,
        )
        return next_nonce

    def authorize(
        self,
        nonces: NonceRegistry,
        target_entity_id: int,
        authorization: Authorization,
        intended: ActionKind,
    ) -> int:
        """Verify and consume in one step, for callers with no further preconditions."""
        return self.consume(nonces, self.verify(nonces, target_entity_id, authorization, intended))

    def _record_denial(
        self,
        exc: LedgerError,
        participant: str,
        target_entity_id: int,
        intended: ActionKind,
        nonces: NonceRegistry,
    ) -> None:
        if isinstance(exc, BadSigner):
            event_type = AuditEventType.SIGNATURE_INVALID
        elif isinstance(exc, BadNonce) and exc.details["claimed"] < nonces.current(participant):
            event_type = AuditEventType.REPLAY_ATTEMPT
        else:
            event_type = AuditEventType.AUTHZ_DENIED
        self.audit.log(
            event_type, participant, "territory", str(target_entity_id),
            intended.name.lower(), "failure", {"reason": exc.reason},
        )
        logger.warning(
            "authorization rejected",
            operation="verify",
            error_code=exc.reason,
            participant=participant,
            target_entity_id=target_entity_id,
        )


# =============================================================================
# OFF-LEDGER HELPERS
# =============================================================================

def build_message(
    domain_id: str,
    chain_id: int,
    participant: str,
    target_entity_id: int,
    nonce: int,
    action_kind: int,
) -> AuthorizationMessage:
    return AuthorizationMessage(domain_id, chain_id, participant, target_entity_id, nonce, action_kind)


def sign_authorization(
    private_key: Union[int, bytes, str],
    domain_id: str,
    chain_id: int,
    target_entity_id: int,
    nonce: int,
    action_kind: int,
    envelope: SignatureEnvelope = SignatureEnvelope.RAW,
) -> Authorization:
    """Produce an Authorization the way an off-ledger authority would.

    Tooling and tests only; the ledger never signs.
    """
    participant = address_from_private_key(private_key)
    message = build_message(domain_id, chain_id, participant, target_entity_id, nonce, action_kind)
    signature = sign_digest(private_key, message.digest(), envelope)
    return Authorization(participant=participant, nonce=nonce, action_kind=action_kind, signature=signature)
