"""
GALAX Validation and Error Taxonomy

Every failure the ledger can report is a ``LedgerError`` carrying a stable,
machine-checkable ``reason`` (the class name). Errors are grouped by how a
caller is expected to react:

    AuthorizationError        terminal; obtain a fresh authorization
        BadSigner, BadNonce, BadActionKind
    DomainPreconditionError   terminal; ledger state unchanged, nonce kept
        NotMember, OverProductionLimit, InsufficientTreasury,
        InsufficientVitality, InsufficientSkillExp, InsufficientInputs,
        InsufficientBalance
    CapabilityError           caller-fixable by using the right identity
        NotOwner, NotATerritory
    FactoryError              caller-fixable by adjusting inputs
        InsufficientValue, InsufficientPayment, InvalidBusinessType
    LookupFailure             the referenced entity does not exist
        UnknownTerritory, UnknownResource, NotAnItem

Input validation (addresses, uint256 quantities, names) lives here as well so
that every entry point rejects malformed input before touching state.

Security Model:
    - All inputs are untrusted until validated
    - All digest comparisons are constant-time
    - All quantities are bounded to the uint256 range
"""

from __future__ import annotations

import hmac
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from Crypto.Hash import keccak


UINT256_MAX = 2**256 - 1


# =============================================================================
# LEDGER ERROR TAXONOMY
# =============================================================================

class LedgerError(Exception):
    """Base class for every error surfaced by a ledger operation."""

    category = "ledger"

    def __init__(self, message: str = "", **details: Any):
        self.details = details
        super().__init__(message or self.reason)

    @property
    def reason(self) -> str:
        """Stable machine-checkable reason code."""
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "category": self.category,
            "message": str(self),
            "details": {k: str(v) for k, v in self.details.items()},
        }


class AuthorizationError(LedgerError):
    category = "authorization"


class BadSigner(AuthorizationError):
    """Recovered signer differs from the claimed participant."""


class BadNonce(AuthorizationError):
    """Claimed nonce is not the participant's current nonce."""


class BadActionKind(AuthorizationError):
    """Authorization was issued for a different action kind."""


class DomainPreconditionError(LedgerError):
    category = "domain_precondition"


class NotMember(DomainPreconditionError):
    pass


class OverProductionLimit(DomainPreconditionError):
    pass


class InsufficientTreasury(DomainPreconditionError):
    pass


class InsufficientVitality(DomainPreconditionError):
    """Raised with ``stat`` naming the first deficient vitality stat."""

    def __init__(self, message: str = "", *, stat: str = "", **details: Any):
        self.stat = stat
        super().__init__(message, stat=stat, **details)


class InsufficientSkillExp(DomainPreconditionError):
    pass


class InsufficientInputs(DomainPreconditionError):
    pass


class InsufficientBalance(DomainPreconditionError):
    pass


class CapabilityError(LedgerError):
    category = "capability"


class NotOwner(CapabilityError):
    pass


class NotATerritory(CapabilityError):
    pass


class FactoryError(LedgerError):
    category = "factory"


class InsufficientValue(FactoryError):
    pass


class InsufficientPayment(FactoryError):
    pass


class InvalidBusinessType(FactoryError):
    pass


class LookupFailure(LedgerError):
    category = "lookup"


class UnknownTerritory(LookupFailure):
    pass


class UnknownResource(LookupFailure):
    pass


class NotAnItem(LookupFailure):
    pass


class InvariantViolation(Exception):
    """Internal state invariant violated. Indicates a bug, not a caller error."""
    pass


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(ValueError):
    """Malformed input rejected before reaching the ledger."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class ValidationErrors(ValueError):
    """Collection of validation errors."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {messages}")


@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        if not self.is_valid:
            if len(self.errors) == 1:
                raise self.errors[0]
            raise ValidationErrors(self.errors)

    def unwrap(self) -> Any:
        """Return the sanitized value or raise."""
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> "ValidationResult":
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    ADDRESS_PATTERN = re.compile(r'^0x[a-f0-9]{40}$')
    HEX_PATTERN = re.compile(r'^(0x)?[a-fA-F0-9]*$')

    MAX_NAME_LENGTH = 256
    MAX_URI_LENGTH = 2048

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a string value, stripping whitespace and null bytes."""
        max_length = max_length or cls.MAX_NAME_LENGTH
        errors = []

        if not isinstance(value, str):
            errors.append(ValidationError(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        sanitized = value.strip().replace('\x00', '')

        if len(sanitized) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))

        if len(sanitized) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(sanitized)

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "address") -> ValidationResult:
        """Validate a 20-byte hex address; normalizes to lowercase."""
        if isinstance(value, bytes):
            if len(value) != 20:
                return ValidationResult.failure([
                    ValidationError(field_name, "Address must be 20 bytes", value)
                ])
            return ValidationResult.success("0x" + value.hex())

        result = cls.validate_string(value, field_name, min_length=42, max_length=42)
        if not result.is_valid:
            return result

        lower = result.sanitized_value.lower()
        if not cls.ADDRESS_PATTERN.match(lower):
            return ValidationResult.failure([
                ValidationError(field_name, "Must be a valid address (0x + 40 hex)", value)
            ])

        return ValidationResult.success(lower)

    @classmethod
    def validate_uint256(
        cls,
        value: Any,
        field_name: str,
        min_value: int = 0,
    ) -> ValidationResult:
        """Validate an unsigned 256-bit integer quantity."""
        # bool is an int subclass; a flag is never a quantity
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])

        errors = []
        if value < min_value:
            errors.append(ValidationError(field_name, f"Below minimum ({min_value})", value))
        if value > UINT256_MAX:
            errors.append(ValidationError(field_name, "Exceeds uint256 range", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_bytes(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 0,
        max_length: int = 65536,
    ) -> ValidationResult:
        """Validate bytes; hex strings (with or without 0x) are decoded."""
        if isinstance(value, str):
            text = value.strip()
            if not cls.HEX_PATTERN.match(text):
                return ValidationResult.failure([ValidationError(field_name, "Invalid hex string", value)])
            if text.startswith("0x"):
                text = text[2:]
            try:
                value = bytes.fromhex(text)
            except ValueError:
                return ValidationResult.failure([ValidationError(field_name, "Invalid hex string", value)])

        if not isinstance(value, (bytes, bytearray)):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected bytes, got {type(value).__name__}", value)
            ])

        errors = []
        if len(value) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} bytes)", value))
        if len(value) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} bytes)", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(bytes(value))


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Hashing and comparison helpers shared by the signing and identity layers."""

    @staticmethod
    def keccak256(data: bytes) -> bytes:
        """Keccak-256 (the pre-NIST padding variant, not SHA3-256)."""
        h = keccak.new(digest_bits=256)
        h.update(data)
        return h.digest()

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def secure_compare_str(a: str, b: str) -> bool:
        return hmac.compare_digest(a.encode(), b.encode())


# =============================================================================
# STATE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces ledger invariants on values about to be written."""

    @staticmethod
    def check_bounded(field_name: str, value: int, maximum: int) -> None:
        """Ensure 0 <= value <= maximum."""
        if value < 0:
            raise InvariantViolation(f"{field_name} cannot be negative: {value}")
        if value > maximum:
            raise InvariantViolation(f"{field_name} exceeds maximum {maximum}: {value}")

    @staticmethod
    def check_monotonic_increase(field_name: str, old_value: int, new_value: int) -> None:
        """Ensure value only increases."""
        if new_value < old_value:
            raise InvariantViolation(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )
