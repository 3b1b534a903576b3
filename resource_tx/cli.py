#!/usr/bin/env python3
"""
Resource Transaction CLI

Command-line access to keys, resources, the Merkle-path indexer and the
configuration.

Usage:
    resource-tx [--config FILE] <command> <subcommand> [options]

Commands:
    keychain    new, public
    resource    commitment
    indexer     path
    config      show, get, validate

Errors raised by the pipeline are printed as their structured error body and
exit with status 2; configuration errors exit with status 3.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from resource_tx.config import ConfigError, ConfigValidationError, ResourceTxConfig, load_config
from resource_tx.errors import ResourceTxError
from resource_tx.keys import Keychain
from resource_tx.observability import LogLevel, configure_logging
from resource_tx.resolver import IndexerTransport, MerklePathResolver
from resource_tx.resource import NullifierKey
from resource_tx.serializer import expand, keychain_from_json, loads

__version__ = "0.1.0"


class OutputFormat(Enum):
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.dump(data, default_flow_style=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _read_argument(value: str) -> str:
    """Inline text, or the contents of a file when prefixed with '@'."""
    if value.startswith("@"):
        path = Path(value[1:])
        if not path.exists():
            raise CLIError(f"File not found: {path}")
        return path.read_text(encoding="utf-8")
    return value


def _hex_argument(value: str, size: int, name: str) -> bytes:
    raw = value[2:] if value.startswith("0x") else value
    try:
        data = bytes.fromhex(raw)
    except ValueError as exc:
        raise CLIError(f"{name} is not valid hex") from exc
    if len(data) != size:
        raise CLIError(f"{name} must be {size} bytes, got {len(data)}")
    return data


class ResourceTxCLI:
    """Main CLI application."""

    def __init__(self, indexer_transport: Optional[IndexerTransport] = None):
        self._indexer_transport = indexer_transport
        self.config = ResourceTxConfig()
        self.parser = argparse.ArgumentParser(
            prog="resource-tx",
            description="Confidential resource transaction tooling",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument("--version", "-V", action="version", version=f"resource-tx {__version__}")
        self.parser.add_argument("--config", "-c", help="YAML configuration file")
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument("--quiet", "-q", action="store_true", help="Suppress error output")
        self.parser.add_argument(
            "--log-level",
            choices=[level.value for level in LogLevel],
            help="Override the configured log level",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        keychain = self.subparsers.add_parser("keychain", help="Key management")
        keychain_sub = keychain.add_subparsers(dest="subcommand")
        new = keychain_sub.add_parser("new", help="Generate a keychain (prints secrets)")
        new.add_argument("--evm-address", help="EVM address (20 bytes hex); random if omitted")
        public = keychain_sub.add_parser("public", help="Public part of a keychain")
        public.add_argument("keychain", help="Keychain JSON, or @file")

        resource = self.subparsers.add_parser("resource", help="Resource inspection")
        resource_sub = resource.add_subparsers(dest="subcommand")
        commitment = resource_sub.add_parser("commitment", help="Commitment of a JsonResource")
        commitment.add_argument("resource", help="JsonResource, or @file")
        commitment.add_argument("--nf-key", help="Nullifier key (hex) to also derive the nullifier")

        indexer = self.subparsers.add_parser("indexer", help="Merkle-path indexer")
        indexer_sub = indexer.add_subparsers(dest="subcommand")
        path = indexer_sub.add_parser("path", help="Fetch the Merkle path of a commitment")
        path.add_argument("commitment", help="Commitment (32 bytes hex)")

        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Dotted path, e.g. indexer.max_attempts")
        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self.config = load_config(parsed.config)
            errors = self.config.validate()
            if errors:
                # config validate reports invalid values instead of failing on them
                if (parsed.command, getattr(parsed, "subcommand", None)) != ("config", "validate"):
                    raise ConfigValidationError("; ".join(errors))
            else:
                configure_logging(
                    level=parsed.log_level or self.config.observability.log_level.get(),
                    fmt=self.config.observability.log_format.get(),
                )
            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, OutputFormat(parsed.format)))
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except ResourceTxError as e:
            if not parsed.quiet:
                print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
            return 2

        except ConfigError as e:
            if not parsed.quiet:
                print(f"Configuration error: {e}", file=sys.stderr)
            return 3

    def _dispatch(self, args: argparse.Namespace) -> Any:
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Keychain handlers
    def _handle_keychain_new(self, args: argparse.Namespace) -> Any:
        evm_address = _hex_argument(args.evm_address, 20, "evm address") if args.evm_address else None
        return Keychain.generate(evm_address).to_dict()

    def _handle_keychain_public(self, args: argparse.Namespace) -> Any:
        return keychain_from_json(loads(_read_argument(args.keychain))).public_dict()

    # Resource handlers
    def _handle_resource_commitment(self, args: argparse.Namespace) -> Any:
        resource = expand(loads(_read_argument(args.resource)))
        result = {
            "commitment": resource.commitment().hex(),
            "kind": resource.kind().hex(),
            "is_ephemeral": resource.is_ephemeral,
            "quantity": resource.quantity,
        }
        if args.nf_key:
            nf_key = NullifierKey(_hex_argument(args.nf_key, 32, "nullifier key"))
            result["nullifier"] = resource.nullifier(nf_key).hex()
        return result

    # Indexer handlers
    def _handle_indexer_path(self, args: argparse.Namespace) -> Any:
        commitment = _hex_argument(args.commitment, 32, "commitment")
        kwargs = {}
        if self._indexer_transport is not None:
            kwargs["transport"] = self._indexer_transport
        with MerklePathResolver.from_config(self.config.indexer, **kwargs) as resolver:
            proof = resolver.fetch_proof(commitment)
        path = proof.to_merkle_path()
        return {
            "commitment": commitment.hex(),
            "root": proof.root.hex(),
            "computed_root": path.root(commitment).hex(),
            "path": path.to_list(),
        }

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": self.config.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = self.config.validate()
        return {"valid": len(errors) == 0, "errors": errors}


def main() -> int:
    """CLI entry point."""
    cli = ResourceTxCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
