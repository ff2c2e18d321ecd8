#!/usr/bin/env python3
"""
GALAX CLI

Command-line access to configuration, world definitions and the
authorization message format, for operators and off-ledger tooling.

Usage:
    galax <command> [subcommand] [options]

Commands:
    config      Ledger configuration (show, validate, schema)
    world       World definitions (show, validate, predict)
    auth        Authorization messages (encode, digest, sign, recover)
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from typing import Any, List, Optional

import yaml

from galax import __version__
from galax.config import ConfigError, ConfigManager, LedgerSettings, load_world_definition
from galax.hardening import LedgerError, Validators
from galax.observability import configure_logging


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.dump(data, default_flow_style=False, sort_keys=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _parse_int(value: str) -> int:
    """argparse type for decimal or 0x-prefixed integers."""
    try:
        return int(value.replace("_", ""), 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")


class GalaxCLI:
    """Main CLI application."""

    ACTIONS = {"join": 1, "produce": 2}

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="galax",
            description="GALAX ledger CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"galax {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Ledger configuration YAML file",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_config_commands()
        self._register_world_commands()
        self._register_auth_commands()

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Ledger configuration")
        config_sub = config.add_subparsers(dest="subcommand")

        config_sub.add_parser("show", help="Show effective configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

        get = config_sub.add_parser("get", help="Get a value by dotted path")
        get.add_argument("path", help="Config path, e.g. ledger.chain_id")

    def _register_world_commands(self) -> None:
        world = self.subparsers.add_parser("world", help="World definitions")
        world_sub = world.add_subparsers(dest="subcommand")

        show = world_sub.add_parser("show", help="Show a world definition and resolved settings")
        show.add_argument("--world", "-w", help="World definition YAML (default: Galax Network)")

        validate = world_sub.add_parser("validate", help="Validate a world definition")
        validate.add_argument("--world", "-w", help="World definition YAML (default: Galax Network)")

        predict = world_sub.add_parser("predict", help="Predict a territory address")
        predict.add_argument("--world", "-w", help="World definition YAML (default: Galax Network)")
        predict.add_argument("--salt", "-s", required=True, help="Salt (0x hex, or text)")
        predict.add_argument("--sequence", "-n", type=_parse_int, default=1,
                             help="Territory id the creation will receive (default: 1)")

    def _add_message_arguments(self, parser: argparse.ArgumentParser, with_participant: bool = True) -> None:
        parser.add_argument("--world", "-w", help="World definition YAML (default: Galax Network)")
        parser.add_argument("--domain-id", help="Override the domain id (0x address)")
        parser.add_argument("--chain-id", type=_parse_int, help="Override the chain id")
        if with_participant:
            parser.add_argument("--participant", "-p", required=True, help="Participant address")
        parser.add_argument("--target", "-t", type=_parse_int, required=True, help="Target territory id")
        parser.add_argument("--nonce", "-n", type=_parse_int, required=True, help="Participant nonce")
        parser.add_argument("--action", "-a", choices=sorted(self.ACTIONS), required=True, help="Action kind")
        parser.add_argument("--envelope", "-e", choices=["raw", "personal"],
                            help="Signature envelope (default: from configuration)")

    def _register_auth_commands(self) -> None:
        auth = self.subparsers.add_parser("auth", help="Authorization messages")
        auth_sub = auth.add_subparsers(dest="subcommand")

        encode = auth_sub.add_parser("encode", help="Encode the canonical message")
        self._add_message_arguments(encode)

        digest = auth_sub.add_parser("digest", help="Keccak-256 digest of the message")
        self._add_message_arguments(digest)

        sign = auth_sub.add_parser("sign", help="Sign an authorization (tooling only)")
        self._add_message_arguments(sign, with_participant=False)
        sign.add_argument("--private-key", "-k", required=True, help="Hex private key")

        recover = auth_sub.add_parser("recover", help="Recover the signer of an authorization")
        self._add_message_arguments(recover)
        recover.add_argument("--signature", "-s", required=True, help="65-byte hex signature")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._manager = self._load_manager(parsed)
            obs = self._manager.config.observability
            configure_logging(obs.log_level.get(), obs.log_format.get())

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (LedgerError, ConfigError, ValueError, OSError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _load_manager(self, args: argparse.Namespace) -> ConfigManager:
        manager = ConfigManager()
        if args.config:
            manager.load_from_file(args.config)
        return manager

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)

        return handler(args)

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self._manager.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = self._manager.validate()
        if errors:
            raise CLIError("invalid configuration: " + "; ".join(errors))
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return self._manager.export_schema()

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": self._manager.get(args.path)}

    # World handlers
    def _handle_world_show(self, args: argparse.Namespace) -> Any:
        from galax.world import domain_id_for

        definition = load_world_definition(args.world)
        settings = LedgerSettings.resolve(self._manager.config, definition)
        return {
            "domain_id": domain_id_for(definition.name),
            "settings": {
                "chain_id": settings.chain_id,
                "envelope": settings.envelope.value,
                "territory_creation_cost": settings.territory_creation_cost,
                "business_creation_cost": settings.business_creation_cost,
                "vitality_max": settings.vitality_max,
            },
            "definition": definition.to_dict(),
        }

    def _handle_world_validate(self, args: argparse.Namespace) -> Any:
        definition = load_world_definition(args.world)
        return {
            "valid": True,
            "name": definition.name,
            "catalog_entries": len(definition.catalog),
            "source": str(definition.source),
        }

    def _handle_world_predict(self, args: argparse.Namespace) -> Any:
        from galax.world import derive_id, domain_id_for

        definition = load_world_definition(args.world)
        domain_id = domain_id_for(definition.name)
        return {
            "domain_id": domain_id,
            "salt": args.salt,
            "sequence": args.sequence,
            "address": derive_id(domain_id, args.salt, args.sequence),
        }

    # Auth handlers
    def _message_context(self, args: argparse.Namespace):
        from galax.signing import SignatureEnvelope
        from galax.world import domain_id_for

        if args.domain_id and args.chain_id is not None and args.envelope:
            return args.domain_id, args.chain_id, SignatureEnvelope(args.envelope)

        definition = load_world_definition(args.world)
        settings = LedgerSettings.resolve(self._manager.config, definition)
        domain_id = args.domain_id or domain_id_for(definition.name)
        chain_id = args.chain_id if args.chain_id is not None else settings.chain_id
        envelope = SignatureEnvelope(args.envelope) if args.envelope else settings.envelope
        return domain_id, chain_id, envelope

    def _message(self, args: argparse.Namespace, participant: str):
        from galax.authorization import build_message

        domain_id, chain_id, envelope = self._message_context(args)
        message = build_message(
            domain_id, chain_id, participant, args.target, args.nonce, self.ACTIONS[args.action]
        )
        return message, envelope

    def _handle_auth_encode(self, args: argparse.Namespace) -> Any:
        message, _ = self._message(args, args.participant)
        return {"message": "0x" + message.encode().hex(), "length": len(message.encode())}

    def _handle_auth_digest(self, args: argparse.Namespace) -> Any:
        message, envelope = self._message(args, args.participant)
        digest = message.digest()
        return {
            "digest": "0x" + digest.hex(),
            "envelope": envelope.value,
            "signed_hash": "0x" + envelope.wrap(digest).hex(),
        }

    def _handle_auth_sign(self, args: argparse.Namespace) -> Any:
        from galax.authorization import sign_authorization

        domain_id, chain_id, envelope = self._message_context(args)
        authorization = sign_authorization(
            args.private_key, domain_id, chain_id, args.target, args.nonce,
            self.ACTIONS[args.action], envelope,
        )
        return authorization.to_dict()

    def _handle_auth_recover(self, args: argparse.Namespace) -> Any:
        from galax.signing import recover_signer

        participant = Validators.validate_address(args.participant, "participant").unwrap()
        message, envelope = self._message(args, participant)
        signer = recover_signer(message.digest(), args.signature, envelope)
        return {"signer": signer, "participant": participant, "valid": signer == participant}


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = GalaxCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
