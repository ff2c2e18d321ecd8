import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import galax`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from galax.authorization import sign_authorization  # noqa: E402
from galax.catalog import CatalogEntry, Recipe, ResourceCatalog  # noqa: E402
from galax.config import WorldDefinition  # noqa: E402
from galax.participants import BASE_UNIT, SkillTable, VitalityStats  # noqa: E402
from galax.signing import address_from_private_key  # noqa: E402
from galax.world import World  # noqa: E402


OWNER_KEY = 0xA11CE
ALICE_KEY = 1
BOB_KEY = 2
STRANGER_KEY = 0x5EED

ALICE = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"
BOB = "0x2b5ad5c4795c026514f8317c7a215e218dccd6cf"

ORE = 1


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless GALAX_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('GALAX_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set GALAX_RUN_SLOW=1 to enable'))


def ore_entry(
    max_per_call: int = 10**19,
    vitality_cost: int = 10 * BASE_UNIT,
    skill_exp_per_unit: int = 1,
) -> CatalogEntry:
    """The single-recipe resource used by the production scenarios."""
    return CatalogEntry(
        resource_id=ORE,
        name="Ore",
        symbol="ORE",
        recipe=Recipe(
            max_per_call=max_per_call,
            vitality_cost=VitalityStats.uniform(vitality_cost),
            skill_kind=1,
            skill_exp_per_unit=skill_exp_per_unit,
        ),
    )


@pytest.fixture
def owner() -> str:
    return address_from_private_key(OWNER_KEY)


@pytest.fixture
def world() -> World:
    """Galax Network world from the packaged definition."""
    return World.create()


@pytest.fixture
def make_world():
    """Build a world around explicit catalog entries.

    Without entries the catalog holds only Ore; keyword arguments tune its recipe.
    """
    def build(*entries, name="Test World", economy=None, thresholds=(100, 1000, 10000), **ore):
        definition = WorldDefinition(
            name=name,
            catalog=ResourceCatalog(entries or (ore_entry(**ore),)),
            skill_table=SkillTable(thresholds=tuple(thresholds)),
            economy=economy or {},
        )
        return World.create(definition)
    return build


@pytest.fixture
def sign():
    """Sign an authorization for ``world`` the way the off-ledger authority would."""
    def _sign(world, private_key, target, action, nonce=None):
        participant = address_from_private_key(private_key)
        if nonce is None:
            nonce = world.nonce_of(participant)
        return sign_authorization(
            private_key, world.domain_id, world.chain_id, target, nonce, action,
            world.settings.envelope,
        )
    return _sign


@pytest.fixture
def funded_territory(owner):
    """Create a territory with a treasury of 1000 base units."""
    def create(world, salt=b"terra", treasury=1000 * BASE_UNIT):
        cost = world.settings.territory_creation_cost
        return world.create_territory(
            owner, "Terra", "ipfs://terra", declared_value=treasury, salt=salt,
            paid_value=treasury + cost,
        )
    return create
