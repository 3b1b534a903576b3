"""
Wire Form

Conversions between the JSON payloads exchanged with request front ends and the
internal types.

    JsonResource                         Resource
    {"logic_ref": "<base64>", ...}  ──expand──►  Resource(logic_ref=b"...", ...)
                                    ◄─simplify──

Digests, nonces and seeds travel as standard base64, quantities as JSON
integers. Keys and ValueInfo travel as hex. Every payload is checked against
its JSON Schema (resource_tx/schemas/*.schema.json) before expansion; schema
violations raise InvalidRequestError listing every failing path.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import base64
import binascii
import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource as SchemaResource
from referencing.jsonschema import DRAFT202012

from resource_tx.errors import InvalidRequestError
from resource_tx.keys import Keychain, ValueInfo
from resource_tx.resource import Resource
from resource_tx.transaction import Transaction

SCHEMA_DIR = Path(__file__).parent / "schemas"

_DIGEST_FIELDS = ("logic_ref", "label_ref", "value_ref", "nonce", "nk_commitment", "rand_seed")


# =============================================================================
# SCHEMAS
# =============================================================================

def _load_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=1)
def schema_registry() -> Registry:
    """Registry of every bundled schema, keyed by $id, for $ref resolution."""
    resources = []
    for schema_path in sorted(SCHEMA_DIR.glob("*.schema.json")):
        schema = _load_json(schema_path)
        resource = SchemaResource.from_contents(schema, default_specification=DRAFT202012)
        resources.append((schema["$id"], resource))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    schema_path = SCHEMA_DIR / f"{name}.schema.json"
    if not schema_path.exists():
        raise InvalidRequestError(f"unknown schema: {name}")
    return Draft202012Validator(_load_json(schema_path), registry=schema_registry())


def validate_against_schema(obj: Any, name: str) -> List[str]:
    """Validation error messages for `obj` (empty if valid)."""
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


def _require_valid(obj: Any, name: str) -> None:
    errors = validate_against_schema(obj, name)
    if errors:
        raise InvalidRequestError(f"invalid {name} payload: {errors[0]}", schema=name, errors=errors)


# =============================================================================
# RESOURCES
# =============================================================================

def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as exc:
        raise InvalidRequestError(f"{name} is not valid base64", field=name) from exc


def simplify(resource: Resource) -> Dict[str, Any]:
    """Resource to its JsonResource wire form."""
    data: Dict[str, Any] = {name: _b64encode(getattr(resource, name)) for name in _DIGEST_FIELDS}
    data["quantity"] = resource.quantity
    data["is_ephemeral"] = resource.is_ephemeral
    return data


def expand(data: Dict[str, Any]) -> Resource:
    """JsonResource wire form to a Resource."""
    _require_valid(data, "resource")
    fields = {name: _b64decode(data[name], name) for name in _DIGEST_FIELDS}
    return Resource(quantity=data["quantity"], is_ephemeral=data["is_ephemeral"], **fields)


# =============================================================================
# KEYS
# =============================================================================

def value_info_from_json(data: Dict[str, Any]) -> ValueInfo:
    _require_valid(data, "value_info")
    return ValueInfo.from_dict({k: v.removeprefix("0x") for k, v in data.items()})


def keychain_from_json(data: Dict[str, Any]) -> Keychain:
    _require_valid(data, "keychain")
    return Keychain.from_dict({k: v.removeprefix("0x") for k, v in data.items()})


def keychain_to_json(keychain: Keychain) -> Dict[str, str]:
    return keychain.to_dict()


# =============================================================================
# DOCUMENTS
# =============================================================================

def loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidRequestError(f"payload is not JSON: {exc.msg}", line=exc.lineno) from exc


def dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2, sort_keys=True)


def transaction_to_json(transaction: Transaction) -> str:
    return dumps(transaction.to_dict())
