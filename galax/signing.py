"""
GALAX Signature Verifier

Recovers the signing identity from a 32-byte digest and a 65-byte secp256k1
signature, the way Ethereum accounts sign:

    signature = r (32) || s (32) || v (1)      v in {0, 1, 27, 28}
    address   = keccak256(uncompressed_pubkey_xy)[12:]

Recovery is a pure function: no state, no nonce handling. Replay protection is
the job of the authorization protocol.

Two envelopes are supported for presenting the digest to the signer:

    RAW        the digest itself is signed (no re-hashing)
    PERSONAL   EIP-191 personal_sign: keccak256("\\x19Ethereum Signed
               Message:\\n32" || digest), as produced by wallet signMessage

Signing helpers exist for off-ledger tooling and tests only; the ledger never
signs.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import List, Union

from ecdsa import SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.numbertheory import SquareRootError
from ecdsa.util import MalformedSignature, sigdecode_string, sigencode_string_canonize

from galax.hardening import BadSigner, CryptoUtils, Validators


CURVE_ORDER = SECP256k1.order
HALF_CURVE_ORDER = CURVE_ORDER // 2
SIGNATURE_LENGTH = 65
PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"

_RECOVERY_ERRORS = (
    MalformedSignature,
    MalformedPointError,
    SquareRootError,
    ArithmeticError,
    ValueError,
    RuntimeError,
)


class SignatureEnvelope(Enum):
    """How a message digest is presented to the signer."""
    RAW = "raw"
    PERSONAL = "personal"

    def wrap(self, digest: bytes) -> bytes:
        """Return the 32-byte hash that is actually signed."""
        if self is SignatureEnvelope.PERSONAL:
            return CryptoUtils.keccak256(PERSONAL_MESSAGE_PREFIX + digest)
        return digest


def address_from_public_key(public_key: Union[VerifyingKey, bytes]) -> str:
    """Derive the 0x-prefixed lowercase address for a public key."""
    if isinstance(public_key, VerifyingKey):
        raw = public_key.to_string()
    else:
        raw = bytes(public_key)
        if len(raw) == 65 and raw[0] == 0x04:
            raw = raw[1:]
    if len(raw) != 64:
        raise ValueError(f"Uncompressed public key must be 64 bytes, got {len(raw)}")
    return "0x" + CryptoUtils.keccak256(raw)[12:].hex()


def _signing_key(private_key: Union[int, bytes, str]) -> SigningKey:
    if isinstance(private_key, int):
        return SigningKey.from_secret_exponent(private_key, curve=SECP256k1)
    if isinstance(private_key, str):
        private_key = Validators.validate_bytes(private_key, "private_key", 32, 32).unwrap()
    return SigningKey.from_string(bytes(private_key), curve=SECP256k1)


def address_from_private_key(private_key: Union[int, bytes, str]) -> str:
    return address_from_public_key(_signing_key(private_key).get_verifying_key())


def _candidates(rs: bytes, digest: bytes) -> List[VerifyingKey]:
    # Ordered by parity of R.y: index 0 is even (recovery id 0), index 1 is odd.
    return VerifyingKey.from_public_key_recovery_with_digest(
        rs,
        digest,
        SECP256k1,
        hashfunc=hashlib.sha256,
        sigdecode=sigdecode_string,
    )


def sign_digest(
    private_key: Union[int, bytes, str],
    digest: bytes,
    envelope: SignatureEnvelope = SignatureEnvelope.RAW,
) -> bytes:
    """Sign a 32-byte digest, returning r || s || v with v in {27, 28}.

    Deterministic (RFC 6979) and canonical (low-s).
    """
    if len(digest) != 32:
        raise ValueError("digest must be 32 bytes")
    sk = _signing_key(private_key)
    signed_hash = envelope.wrap(digest)
    rs = sk.sign_digest_deterministic(
        signed_hash,
        hashfunc=hashlib.sha256,
        sigencode=sigencode_string_canonize,
    )
    own = sk.get_verifying_key().to_string()
    for recovery_id, candidate in enumerate(_candidates(rs, signed_hash)):
        if candidate.to_string() == own:
            return rs + bytes([27 + recovery_id])
    raise ValueError("could not determine recovery id for signature")


def recover_signer(
    digest: bytes,
    signature: Union[bytes, str],
    envelope: SignatureEnvelope = SignatureEnvelope.RAW,
) -> str:
    """Recover the address that produced ``signature`` over ``digest``.

    Raises BadSigner for any malformed or non-canonical signature.
    """
    result = Validators.validate_bytes(signature, "signature", SIGNATURE_LENGTH, SIGNATURE_LENGTH)
    if not result.is_valid:
        raise BadSigner(f"malformed signature: {result.errors[0].message}")
    sig = result.sanitized_value

    r = int.from_bytes(sig[:32], "big")
    s = int.from_bytes(sig[32:64], "big")
    v = sig[64]
    recovery_id = v - 27 if v >= 27 else v

    if recovery_id not in (0, 1):
        raise BadSigner(f"invalid recovery id v={v}")
    if not (0 < r < CURVE_ORDER) or not (0 < s < CURVE_ORDER):
        raise BadSigner("signature scalar out of range")
    if s > HALF_CURVE_ORDER:
        raise BadSigner("non-canonical signature (high s)")

    signed_hash = envelope.wrap(digest)
    try:
        candidates = _candidates(sig[:64], signed_hash)
    except _RECOVERY_ERRORS as exc:
        raise BadSigner(f"signature recovery failed: {exc}") from exc

    if recovery_id >= len(candidates):
        raise BadSigner("signature recovery produced no key for recovery id")
    return address_from_public_key(candidates[recovery_id])
