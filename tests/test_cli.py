"""
CLI tests: configuration, world definition and authorization commands.
"""

import json
import logging

import pytest
import yaml

from galax import __version__
from galax.authorization import ActionKind, Authorization, build_message
from galax.cli import main
from galax.observability import StructuredHandler
from galax.world import World, domain_id_for


ALICE = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"
ALICE_PRIVATE_KEY = "0x" + "00" * 31 + "01"
BOB = "0x2b5ad5c4795c026514f8317c7a215e218dccd6cf"


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger("galax")
    for handler in list(root.handlers):
        if isinstance(handler, StructuredHandler):
            root.removeHandler(handler)
    root.propagate = True


def _run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured


def _json(capsys, *argv):
    code, captured = _run(capsys, *argv)
    assert code == 0, captured.err
    return json.loads(captured.out)


class TestGeneral:

    def test_no_command_prints_help(self, capsys):
        code, captured = _run(capsys)
        assert code == 0
        assert "usage: galax" in captured.out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_unknown_subcommand(self, capsys):
        code, captured = _run(capsys, "config")
        assert code == 2
        assert "Unknown command" in captured.err

    def test_quiet_suppresses_errors(self, capsys, tmp_path):
        code, captured = _run(capsys, "--quiet", "world", "validate", "--world", str(tmp_path / "none.yaml"))
        assert code == 1
        assert captured.err == ""


# =============================================================================
# CONFIG
# =============================================================================

class TestConfigCommands:

    def test_show(self, capsys):
        data = _json(capsys, "config", "show")
        assert data["ledger"]["chain_id"] == 1
        assert data["economy"]["territory_creation_cost"] == 100000

    def test_get_yaml(self, capsys):
        code, captured = _run(capsys, "--format", "yaml", "config", "get", "ledger.signature_envelope")
        assert code == 0
        assert yaml.safe_load(captured.out) == {"path": "ledger.signature_envelope", "value": "raw"}

    def test_config_file(self, capsys, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("ledger:\n  chain_id: 31337\n")
        data = _json(capsys, "--config", str(path), "config", "get", "ledger.chain_id")
        assert data["value"] == 31337

    def test_validate(self, capsys):
        assert _json(capsys, "config", "validate") == {"valid": True, "errors": []}

    def test_validate_reports_errors(self, capsys, monkeypatch):
        monkeypatch.setenv("GALAX_SIGNATURE_ENVELOPE", "eip712")
        code, captured = _run(capsys, "config", "validate")
        assert code == 1
        assert "ledger.signature_envelope" in captured.err

    def test_schema(self, capsys):
        data = _json(capsys, "config", "schema")
        assert data["properties"]["economy"]["business_creation_cost"]["env_var"] == "GALAX_BUSINESS_CREATION_COST"


# =============================================================================
# WORLD
# =============================================================================

class TestWorldCommands:

    def test_show(self, capsys):
        data = _json(capsys, "world", "show")
        assert data["domain_id"] == domain_id_for("Galax Network")
        assert data["settings"]["envelope"] == "raw"
        assert len(data["definition"]["catalog"]) == 5

    def test_validate(self, capsys):
        data = _json(capsys, "world", "validate")
        assert data["valid"] is True
        assert data["catalog_entries"] == 5

    def test_validate_invalid(self, capsys, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("name: Broken\ncatalog: []\n")
        code, captured = _run(capsys, "world", "validate", "--world", str(path))
        assert code == 1
        assert "Invalid world definition" in captured.err

    def test_predict_matches_world(self, capsys):
        data = _json(capsys, "world", "predict", "--salt", "terra")
        assert data["address"] == World.create().predict_territory_address(b"terra")

    def test_predict_sequence(self, capsys):
        first = _json(capsys, "world", "predict", "--salt", "terra")
        second = _json(capsys, "world", "predict", "--salt", "terra", "--sequence", "2")
        assert first["address"] != second["address"]


# =============================================================================
# AUTH
# =============================================================================

class TestAuthCommands:

    def _message_args(self, action="join"):
        return ["--target", "1", "--nonce", "0", "--action", action]

    def test_encode(self, capsys):
        data = _json(capsys, "auth", "encode", "--participant", ALICE, *self._message_args())
        assert data["length"] == 168
        expected = build_message(domain_id_for("Galax Network"), 1, ALICE, 1, 0, ActionKind.JOIN)
        assert data["message"] == "0x" + expected.encode().hex()

    def test_encode_overrides(self, capsys):
        domain = "0x" + "11" * 20
        data = _json(capsys, "auth", "encode", "--participant", ALICE, "--domain-id", domain,
                     "--chain-id", "0x05", "--envelope", "raw", *self._message_args("produce"))
        raw = bytes.fromhex(data["message"][2:])
        assert raw[:20] == bytes.fromhex("11" * 20)
        assert int.from_bytes(raw[20:52], "big") == 5
        assert int.from_bytes(raw[136:168], "big") == 2

    def test_digest_envelopes(self, capsys):
        raw = _json(capsys, "auth", "digest", "--participant", ALICE, *self._message_args())
        personal = _json(capsys, "auth", "digest", "--participant", ALICE, "--envelope", "personal",
                         *self._message_args())
        assert raw["digest"] == raw["signed_hash"] == personal["digest"]
        assert personal["signed_hash"] != personal["digest"]

    def test_sign_then_recover(self, capsys):
        signed = _json(capsys, "auth", "sign", "--private-key", ALICE_PRIVATE_KEY, *self._message_args())
        assert signed["participant"] == ALICE

        recovered = _json(capsys, "auth", "recover", "--participant", ALICE,
                          "--signature", signed["signature"], *self._message_args())
        assert recovered == {"signer": ALICE, "participant": ALICE, "valid": True}

    def test_recover_other_participant(self, capsys):
        signed = _json(capsys, "auth", "sign", "--private-key", ALICE_PRIVATE_KEY, *self._message_args())
        recovered = _json(capsys, "auth", "recover", "--participant", BOB,
                          "--signature", signed["signature"], *self._message_args())
        assert recovered["valid"] is False

    def test_signature_accepted_by_world(self, capsys, owner, funded_territory):
        signed = _json(capsys, "auth", "sign", "--private-key", ALICE_PRIVATE_KEY, *self._message_args())
        world = World.create()
        territory = funded_territory(world)

        authorization = Authorization(signed["participant"], signed["nonce"], signed["action_kind"],
                                      signed["signature"])
        assert territory.join(owner, authorization).participant == ALICE

    def test_malformed_signature(self, capsys):
        code, captured = _run(capsys, "auth", "recover", "--participant", ALICE, "--signature", "0x1234",
                              *self._message_args())
        assert code == 1
        assert "malformed signature" in captured.err

    def test_bad_integer(self, capsys):
        with pytest.raises(SystemExit):
            main(["auth", "encode", "--participant", ALICE, "--target", "one", "--nonce", "0", "--action", "join"])
