"""
GALAX: Persistent World Ledger

Authoritative state-transition engine of a persistent, multi-tenant simulated
world: territories owned by principals, each hosting businesses and
participants whose actions are authorized off-ledger by signature and settled
on the ledger.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                              GALAX LEDGER                                │
    │                                                                          │
    │  ROUTING                                                                 │
    │    world.py          Registry and factory: territories, businesses      │
    │    territory.py      Owner-gated membership, production, treasury       │
    │                                                                          │
    │  ENGINES                                                                 │
    │    production.py     Ordered preconditions, atomic multi-balance apply  │
    │    authorization.py  Canonical message, verify, consume                 │
    │    participants.py   Vitality, skills, membership, nonces               │
    │                                                                          │
    │  FOUNDATION                                                              │
    │    state.py          WorldState aggregate: lock, snapshot, rollback     │
    │    signing.py        secp256k1 signer recovery over Keccak-256          │
    │    security.py       Nonce registry, hash-chained audit trail           │
    │    catalog.py        Resource/item catalog, balance ledger              │
    │    hardening.py      Error taxonomy, validators, invariants             │
    │                                                                          │
    │  AMBIENT                                                                 │
    │    config.py         Ledger settings, world definitions                 │
    │    events.py         Event bus and append-only event store              │
    │    observability.py  Structured JSON logging                            │
    │    cli.py            Operator and tooling CLI                           │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Fail Closed: every precondition is checked before any mutation, and any
    exception inside a transition restores the ledger snapshot.

    Single Use: an authorization is bound to one ledger, one network, one
    target, one action kind and one nonce. The nonce is consumed only when
    the whole operation succeeds.

    No Ambient State: each World owns its ledger, event bus, event store and
    audit trail.
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import GALAX modules on first access."""

    if name in ("World", "derive_id", "domain_id_for"):
        from galax import world
        return getattr(world, name)

    if name in ("Territory", "JoinReceipt"):
        from galax import territory
        return getattr(territory, name)

    if name in ("ProductionEngine", "ProductionReceipt"):
        from galax import production
        return getattr(production, name)

    if name in ("ActionKind", "Authorization", "AuthorizationMessage",
                "AuthorizationProtocol", "VerifiedAuthorization",
                "build_message", "sign_authorization"):
        from galax import authorization
        return getattr(authorization, name)

    if name in ("VitalityStats", "SkillProgress", "SkillTable",
                "ParticipantDirectory", "ParticipantView"):
        from galax import participants
        return getattr(participants, name)

    if name in ("BusinessType", "CatalogEntry", "CatalogKind", "Recipe",
                "ResourceInput", "ResourceCatalog", "BalanceLedger"):
        from galax import catalog
        return getattr(catalog, name)

    if name in ("GalaxConfig", "ConfigManager", "LedgerSettings",
                "WorldDefinition", "load_world_definition"):
        from galax import config
        return getattr(config, name)

    if name in ("SignatureEnvelope", "recover_signer", "sign_digest",
                "address_from_private_key"):
        from galax import signing
        return getattr(signing, name)

    if name in ("LedgerError", "ValidationError", "InvariantViolation"):
        from galax import hardening
        return getattr(hardening, name)

    raise AttributeError(f"module 'galax' has no attribute '{name}'")


__all__ = [
    "__version__",
    # World
    "World",
    "Territory",
    "derive_id",
    # Engines
    "ProductionEngine",
    "ProductionReceipt",
    "ActionKind",
    "Authorization",
    "AuthorizationProtocol",
    "sign_authorization",
    # Data
    "VitalityStats",
    "BusinessType",
    "ResourceCatalog",
    # Config
    "GalaxConfig",
    "ConfigManager",
    "load_world_definition",
    # Errors
    "LedgerError",
]
