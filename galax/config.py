"""
GALAX Configuration System

Two layers of configuration feed a world:

    1. Ledger settings (``GalaxConfig``): economy costs, chain id, signature
       envelope, vitality maximum, logging. Sources, in order of precedence:
           environment variables (GALAX_*), values set at runtime or loaded
           from a YAML file, defaults.
    2. World definition (``WorldDefinition``): the catalog, the skill table
       and optional economy overrides, read from a YAML file validated
       against ``galax/schemas/world.schema.json``.

Both are read once when a world is created and are read-only afterwards.
"""

from __future__ import annotations

import json
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from galax.catalog import (
    BusinessType,
    CatalogEntry,
    CatalogKind,
    Recipe,
    ResourceCatalog,
    ResourceInput,
)
from galax.participants import DEFAULT_LEVEL_THRESHOLDS, DEFAULT_VITALITY_MAX, SkillTable, VitalityStats
from galax.signing import SignatureEnvelope

T = TypeVar("T")

PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent
SCHEMAS_DIR = PACKAGE_ROOT / "schemas"
WORLDS_DIR = PACKAGE_ROOT / "worlds"
WORLD_SCHEMA_PATH = SCHEMAS_DIR / "world.schema.json"
DEFAULT_WORLD_PATH = WORLDS_DIR / "galax-network.yaml"


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)


def load_yaml(path: pathlib.Path) -> Any:
    return yaml.safe_load(path.read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


# =============================================================================
# LEDGER SETTINGS
# =============================================================================

@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            value = self._coerce(os.environ[self.env_var])
            if self.validator and not self.validator(value):
                raise ConfigValidationError(f"validation failed for value {value!r}")
            return value
        return self._value if self._value is not None else self.default

    def is_explicit(self) -> bool:
        """True when the value comes from the environment or was set."""
        return bool(self.env_var and self.env_var in os.environ) or self._value is not None

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value!r}")

        old_value = self._value
        self._value = value
        for callback in self._callbacks:
            callback(old_value, value)

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)
        try:
            if target_type == bool:
                return value.lower() in ("true", "1", "yes", "on")  # type: ignore
            if target_type == int:
                # base 0 accepts 0x-prefixed values as well as decimals
                return int(value.replace("_", ""), 0)  # type: ignore
        except ValueError as exc:
            raise ConfigValidationError(f"{self.env_var}: cannot parse {value!r}") from exc
        return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _is_uint(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and x >= 0


@dataclass
class EconomyConfig:
    """Creation costs, in native base units."""
    territory_creation_cost: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=100000,
        env_var="GALAX_TERRITORY_CREATION_COST",
        description="Fee charged on top of the declared value when creating a territory",
        validator=_is_uint,
    ))
    business_creation_cost: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=100000,
        env_var="GALAX_BUSINESS_CREATION_COST",
        description="Payment required to create a business",
        validator=_is_uint,
    ))


@dataclass
class LedgerConfig:
    """Identity of the ledger instance signatures are bound to."""
    chain_id: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="GALAX_CHAIN_ID",
        description="Chain/network identifier included in every authorization message",
        validator=_is_uint,
    ))
    signature_envelope: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="raw",
        env_var="GALAX_SIGNATURE_ENVELOPE",
        description="How the authorization digest is signed (raw, personal)",
        validator=lambda x: x in ("raw", "personal"),
    ))


@dataclass
class ParticipantConfig:
    """Participant directory limits."""
    vitality_max: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=DEFAULT_VITALITY_MAX,
        env_var="GALAX_VITALITY_MAX",
        description="Maximum of each vitality stat, in base units",
        validator=lambda x: _is_uint(x) and x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="GALAX_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="GALAX_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class GalaxConfig:
    """Root configuration for a GALAX ledger."""
    economy: EconomyConfig = field(default_factory=EconomyConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    participants: ParticipantConfig = field(default_factory=ParticipantConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=True)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Each manager owns its own ``GalaxConfig``; worlds built from different
    managers never share settings.
    """

    def __init__(self, config: Optional[GalaxConfig] = None):
        self._config = config or GalaxConfig()
        self._config_paths: List[pathlib.Path] = []

    @property
    def config(self) -> GalaxConfig:
        return self._config

    @property
    def loaded_paths(self) -> List[pathlib.Path]:
        return list(self._config_paths)

    def load_from_file(self, path: Union[str, pathlib.Path]) -> None:
        """Load configuration from a YAML file."""
        path = pathlib.Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            data = load_yaml(path)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {path}: {exc}") from exc

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {path}")
            self.apply_dict(data)
        self._config_paths.append(path)

    def apply_dict(self, data: Mapping[str, Any]) -> None:
        """Apply nested dictionary values. Unknown keys are rejected."""
        def apply_to_config(config_obj: Any, values: Mapping[str, Any], prefix: str) -> None:
            for key, value in values.items():
                path = f"{prefix}{key}"
                if not hasattr(config_obj, "__dataclass_fields__") or key not in config_obj.__dataclass_fields__:
                    raise ConfigError(f"Unknown config key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif isinstance(value, Mapping):
                    apply_to_config(attr, value, f"{path}.")
                else:
                    raise ConfigError(f"Config section {path} expects a mapping")

        apply_to_config(self._config, data, "")

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, "__dataclass_fields__") or part not in obj.__dataclass_fields__:
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: manager.set("economy.territory_creation_cost", 5000)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: manager.get("ledger.chain_id")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value!r}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


# =============================================================================
# WORLD DEFINITION
# =============================================================================

_SCHEMA_REGISTRY: Optional[Registry] = None


def schema_registry(schemas_dir: pathlib.Path = SCHEMAS_DIR) -> Registry:
    """Build an in-memory registry of the packaged schemas keyed by $id.

    This enables offline validation of schemas that use $ref between files.
    """
    global _SCHEMA_REGISTRY
    if _SCHEMA_REGISTRY is not None and schemas_dir == SCHEMAS_DIR:
        return _SCHEMA_REGISTRY

    reg = Registry()
    for sp in sorted(schemas_dir.glob("*.schema.json")):
        sj = load_json(sp)
        sid = sj.get("$id")
        if not isinstance(sid, str) or not sid:
            raise ConfigError(f"Schema without $id: {sp}")
        reg = reg.with_resource(sid, Resource.from_contents(sj, default_specification=DRAFT202012))

    if schemas_dir == SCHEMAS_DIR:
        _SCHEMA_REGISTRY = reg
    return reg


def schema_validator(schema_path: pathlib.Path = WORLD_SCHEMA_PATH) -> Draft202012Validator:
    schema = load_json(schema_path)
    return Draft202012Validator(schema, registry=schema_registry(schema_path.parent))


def validate_with_schema(obj: Any, validator: Draft202012Validator) -> List[str]:
    errors = []
    for e in sorted(validator.iter_errors(obj), key=str):
        errors.append(f"{list(e.absolute_path)}: {e.message}")
    return errors


@dataclass(frozen=True)
class WorldDefinition:
    """Catalog, skill table and economy overrides for one world."""
    name: str
    catalog: ResourceCatalog
    skill_table: SkillTable = field(default_factory=SkillTable)
    economy: Mapping[str, int] = field(default_factory=dict)
    chain_id: Optional[int] = None
    vitality_max: Optional[int] = None
    source: Optional[pathlib.Path] = None

    def to_dict(self) -> Dict[str, Any]:
        table = self.skill_table
        kinds = []
        for k in sorted(set(table.names) | set(table.per_skill)):
            kind: Dict[str, Any] = {"kind": k}
            if k in table.names:
                kind["name"] = table.names[k]
            if k in table.per_skill:
                kind["thresholds"] = list(table.per_skill[k])
            kinds.append(kind)
        d: Dict[str, Any] = {
            "name": self.name,
            "economy": dict(self.economy),
            "skills": {"thresholds": list(table.thresholds), "kinds": kinds},
            "catalog": self.catalog.to_dict(),
        }
        if self.chain_id is not None:
            d["chain_id"] = self.chain_id
        if self.vitality_max is not None:
            d["participants"] = {"vitality_max": self.vitality_max}
        return d


def _parse_recipe(data: Mapping[str, Any]) -> Recipe:
    return Recipe(
        max_per_call=data["max_per_call"],
        vitality_cost=VitalityStats.from_value(data["vitality_cost"]),
        skill_kind=data["skill_kind"],
        skill_exp_per_unit=data["skill_exp_per_unit"],
        inputs=tuple(ResourceInput(i["id"], i["amount"]) for i in data.get("inputs", ())),
    )


def _parse_entry(data: Mapping[str, Any]) -> CatalogEntry:
    kind = CatalogKind(data.get("kind", "resource"))
    if kind is CatalogKind.RESOURCE and ("max_supply" in data or "restores" in data):
        raise ConfigValidationError(f"catalog entry {data['id']}: max_supply and restores apply to items only")
    business_type = data.get("business_type")
    return CatalogEntry(
        resource_id=data["id"],
        name=data["name"],
        symbol=data["symbol"],
        kind=kind,
        recipe=_parse_recipe(data["recipe"]) if "recipe" in data else None,
        business_type=BusinessType(business_type) if business_type is not None else None,
        max_supply=data.get("max_supply"),
        restores=VitalityStats.from_value(data.get("restores", 0)),
    )


def _parse_skills(data: Mapping[str, Any]) -> SkillTable:
    kinds = data.get("kinds", ())
    return SkillTable(
        thresholds=tuple(data.get("thresholds", DEFAULT_LEVEL_THRESHOLDS)),
        per_skill={k["kind"]: tuple(k["thresholds"]) for k in kinds if "thresholds" in k},
        names={k["kind"]: k["name"] for k in kinds if "name" in k},
    )


def parse_world_definition(data: Any, source: Optional[pathlib.Path] = None) -> WorldDefinition:
    """Validate a decoded world document and build a ``WorldDefinition``."""
    errors = validate_with_schema(data, schema_validator())
    if errors:
        raise ConfigValidationError(
            f"Invalid world definition{f' {source}' if source else ''}: {errors[0]}",
            errors,
        )

    try:
        catalog = ResourceCatalog(_parse_entry(e) for e in data["catalog"])
        skill_table = _parse_skills(data.get("skills", {}))
    except ValueError as exc:
        raise ConfigValidationError(f"Invalid world definition: {exc}", [str(exc)]) from exc

    return WorldDefinition(
        name=data["name"],
        catalog=catalog,
        skill_table=skill_table,
        economy=dict(data.get("economy", {})),
        chain_id=data.get("chain_id"),
        vitality_max=data.get("participants", {}).get("vitality_max"),
        source=source,
    )


def load_world_definition(path: Union[str, pathlib.Path, None] = None) -> WorldDefinition:
    """Load and validate a world definition YAML file (default: Galax Network)."""
    path = pathlib.Path(path) if path is not None else DEFAULT_WORLD_PATH
    if not path.exists():
        raise ConfigError(f"World definition not found: {path}")
    try:
        data = load_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    return parse_world_definition(data, source=path)


# =============================================================================
# RESOLVED SETTINGS
# =============================================================================

@dataclass(frozen=True)
class LedgerSettings:
    """Immutable settings a world runs with, resolved once at creation."""
    chain_id: int = 1
    envelope: SignatureEnvelope = SignatureEnvelope.RAW
    territory_creation_cost: int = 100000
    business_creation_cost: int = 100000
    vitality_max: int = DEFAULT_VITALITY_MAX

    @classmethod
    def resolve(
        cls,
        config: Optional[GalaxConfig] = None,
        definition: Optional[WorldDefinition] = None,
    ) -> "LedgerSettings":
        """Combine ledger config with world definition values.

        Precedence: explicit config (environment or set) > world definition
        > config default.
        """
        config = config or GalaxConfig()
        overrides: Dict[str, Any] = {}
        if definition is not None:
            overrides.update(definition.economy)
            if definition.chain_id is not None:
                overrides["chain_id"] = definition.chain_id
            if definition.vitality_max is not None:
                overrides["vitality_max"] = definition.vitality_max

        def pick(name: str, value: ConfigValue) -> Any:
            if value.is_explicit() or name not in overrides:
                return value.get()
            picked = overrides[name]
            if value.validator and not value.validator(picked):
                raise ConfigValidationError(f"{name}: validation failed for value {picked!r}")
            return picked

        return cls(
            chain_id=pick("chain_id", config.ledger.chain_id),
            envelope=SignatureEnvelope(config.ledger.signature_envelope.get()),
            territory_creation_cost=pick("territory_creation_cost", config.economy.territory_creation_cost),
            business_creation_cost=pick("business_creation_cost", config.economy.business_creation_cost),
            vitality_max=pick("vitality_max", config.participants.vitality_max),
        )
