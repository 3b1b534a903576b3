"""
Compliance Witnesses and Value Deltas

A compliance witness pairs one consumed resource with one created resource. Its
instance exposes the consumed nullifier, the created commitment, both logic
references, the commitment tree root the consumed resource is proven against,
and a blinded value delta.

Delta arithmetic runs in the BN254 scalar field:

    delta = q_consumed · G(kind_consumed) − q_created · G(kind_created) + rcv · H

where G(kind) is a per-kind generator derived from (logic_ref, label_ref) and H
is the blinding generator. Summing the deltas of every compliance unit gives
Σrcv · H exactly when quantities balance per kind, which is what the delta
proof attests.

Ephemeral consumed resources are never in the commitment tree; their instance
root is INITIAL_ROOT and their path is empty.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable

from resource_tx.merkle import MerklePath
from resource_tx.resource import NullifierKey, Resource, sha256


# BN254 scalar field order (Fr)
FIELD_MODULUS = 0x30644e72e131a029b85045b68181585d2833e84879b9709143e1f593f0000001

INITIAL_ROOT = sha256(b"InitialCommitmentTreeRoot")


def _to_scalar(digest: bytes) -> int:
    value = int.from_bytes(digest, "big") % FIELD_MODULUS
    return value or 1


BLINDING_GENERATOR = _to_scalar(sha256(b"DeltaBlindingGenerator"))


def kind_generator(kind: bytes) -> int:
    return _to_scalar(sha256(b"DeltaKindGenerator", kind))


def random_scalar() -> int:
    return int.from_bytes(secrets.token_bytes(32), "big") % (FIELD_MODULUS - 1) + 1


def value_delta(consumed: Resource, created: Resource, rcv: int) -> int:
    consumed_part = consumed.quantity * kind_generator(consumed.kind())
    created_part = created.quantity * kind_generator(created.kind())
    return (consumed_part - created_part + rcv * BLINDING_GENERATOR) % FIELD_MODULUS


def sum_scalars(values: Iterable[int]) -> int:
    total = 0
    for value in values:
        total = (total + value) % FIELD_MODULUS
    return total


@dataclass(frozen=True)
class ComplianceInstance:
    """Public output of a compliance circuit."""
    consumed_nullifier: bytes
    consumed_logic_ref: bytes
    consumed_commitment_tree_root: bytes
    created_commitment: bytes
    created_logic_ref: bytes
    delta: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consumed_nullifier": self.consumed_nullifier.hex(),
            "consumed_logic_ref": self.consumed_logic_ref.hex(),
            "consumed_commitment_tree_root": self.consumed_commitment_tree_root.hex(),
            "created_commitment": self.created_commitment.hex(),
            "created_logic_ref": self.created_logic_ref.hex(),
            "delta": format(self.delta, "064x"),
        }

    @property
    def digest(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    @property
    def tags(self) -> tuple:
        return (self.consumed_nullifier, self.created_commitment)


@dataclass(frozen=True)
class ComplianceWitness:
    """
    Private input of one compliance proof.

    `rcv` is the delta blinding randomness. It is aggregated positionally into
    the transaction's delta witness.
    """
    consumed_resource: Resource
    nf_key: NullifierKey
    merkle_path: MerklePath
    created_resource: Resource
    rcv: int = field(default_factory=random_scalar)
    ephemeral_root: bytes = INITIAL_ROOT

    @classmethod
    def from_resources(
        cls,
        consumed: Resource,
        nf_key: NullifierKey,
        created: Resource,
        merkle_path: MerklePath = MerklePath(),
    ) -> "ComplianceWitness":
        return cls(
            consumed_resource=consumed,
            nf_key=nf_key,
            merkle_path=merkle_path,
            created_resource=created,
        )

    def consumed_root(self, commitment: bytes) -> bytes:
        if self.consumed_resource.is_ephemeral:
            return self.ephemeral_root
        return self.merkle_path.root(commitment)

    def constrain(self) -> ComplianceInstance:
        consumed_cm = self.consumed_resource.commitment()
        nullifier = self.consumed_resource.nullifier_from_commitment(self.nf_key, consumed_cm)
        return ComplianceInstance(
            consumed_nullifier=nullifier,
            consumed_logic_ref=self.consumed_resource.logic_ref,
            consumed_commitment_tree_root=self.consumed_root(consumed_cm),
            created_commitment=self.created_resource.commitment(),
            created_logic_ref=self.created_resource.logic_ref,
            delta=value_delta(self.consumed_resource, self.created_resource, self.rcv),
        )
