"""
Proof Artifacts, Actions and Transactions

    Transaction
    ├── actions: [Action, ...]
    │     ├── compliance_units: [ComplianceUnit]   one per (consumed, created) pair
    │     └── logic_proofs:     [LogicProof]       one per resource
    └── delta_proof: DeltaProof                    Σ deltas balance to zero

An Action is only constructible from consistent parts: every logic proof must
cover a tag of the action's compliance units, every tag must be covered exactly
once, and every logic proof must be bound to the action tree root built from
those tags. A Transaction is immutable; attaching the delta proof yields a new
instance.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from resource_tx.compliance import ComplianceInstance, ComplianceWitness, sum_scalars
from resource_tx.errors import InvalidRequestError, TreeMembershipError
from resource_tx.merkle import ACTION_TREE_DEPTH, ActionTree
from resource_tx.witness import LogicInstance


def _canonical_digest(content: Dict[str, Any]) -> str:
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


# =============================================================================
# PROOF ARTIFACTS
# =============================================================================

@dataclass(frozen=True)
class ComplianceUnit:
    instance: ComplianceInstance
    proof: bytes

    @property
    def tags(self) -> Tuple[bytes, bytes]:
        return self.instance.tags

    def to_dict(self) -> Dict[str, Any]:
        return {"instance": self.instance.to_dict(), "proof": self.proof.hex()}


@dataclass(frozen=True)
class LogicProof:
    """Proof that one resource's predicate holds; `verifying_key` is its logic_ref."""
    instance: LogicInstance
    verifying_key: bytes
    proof: bytes

    @property
    def tag(self) -> bytes:
        return self.instance.tag

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance": self.instance.to_dict(),
            "verifying_key": self.verifying_key.hex(),
            "proof": self.proof.hex(),
        }


@dataclass(frozen=True)
class DeltaWitness:
    """Compliance blinding randomness, in compliance witness order."""
    rcvs: Tuple[int, ...]

    @classmethod
    def from_compliance_witnesses(cls, witnesses: Sequence[ComplianceWitness]) -> "DeltaWitness":
        return cls(tuple(w.rcv for w in witnesses))

    def aggregate(self) -> int:
        return sum_scalars(self.rcvs)

    def __repr__(self) -> str:
        return f"DeltaWitness(<{len(self.rcvs)} blinding values>)"


@dataclass(frozen=True)
class DeltaProof:
    proof: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"proof": self.proof.hex()}


# =============================================================================
# ACTION
# =============================================================================

@dataclass(frozen=True)
class Action:
    compliance_units: Tuple[ComplianceUnit, ...]
    logic_proofs: Tuple[LogicProof, ...]
    tree_depth: int = ACTION_TREE_DEPTH

    @classmethod
    def new(
        cls,
        compliance_units: Sequence[ComplianceUnit],
        logic_proofs: Sequence[LogicProof],
        tree_depth: int = ACTION_TREE_DEPTH,
    ) -> "Action":
        """Build an action, rejecting inconsistent compliance/logic sets."""
        action = cls(tuple(compliance_units), tuple(logic_proofs), tree_depth)
        action.check_consistency()
        return action

    def tags(self) -> List[bytes]:
        """Action tree leaf order: consumed nullifier, created commitment, per unit."""
        tags: List[bytes] = []
        for unit in self.compliance_units:
            tags.extend(unit.tags)
        return tags

    def nullifiers(self) -> List[bytes]:
        return [unit.instance.consumed_nullifier for unit in self.compliance_units]

    def commitments(self) -> List[bytes]:
        return [unit.instance.created_commitment for unit in self.compliance_units]

    def tree(self) -> ActionTree:
        return ActionTree(self.tags(), self.tree_depth)

    def root(self) -> bytes:
        return self.tree().root()

    def check_consistency(self) -> None:
        if not self.compliance_units:
            raise InvalidRequestError("action has no compliance units")
        expected = 2 * len(self.compliance_units)
        if len(self.logic_proofs) != expected:
            raise InvalidRequestError(
                f"action needs {expected} logic proofs, got {len(self.logic_proofs)}",
                compliance_units=len(self.compliance_units),
                logic_proofs=len(self.logic_proofs),
            )

        tree = self.tree()
        root = tree.root()
        nullifiers = set(self.nullifiers())
        covered = set()
        for index, proof in enumerate(self.logic_proofs):
            if proof.tag not in tree:
                raise TreeMembershipError(proof.tag, logic_proof=index)
            if proof.tag in covered:
                raise InvalidRequestError("duplicate logic proof for tag", tag=proof.tag, logic_proof=index)
            covered.add(proof.tag)
            if proof.instance.is_consumed != (proof.tag in nullifiers):
                raise InvalidRequestError(
                    "logic proof direction disagrees with compliance unit",
                    tag=proof.tag,
                    logic_proof=index,
                )
            if proof.instance.root != root:
                raise InvalidRequestError(
                    "logic proof bound to a different action tree root",
                    tag=proof.tag,
                    logic_proof=index,
                )

    def logic_ref_for(self, tag: bytes) -> bytes:
        for unit in self.compliance_units:
            if unit.instance.consumed_nullifier == tag:
                return unit.instance.consumed_logic_ref
            if unit.instance.created_commitment == tag:
                return unit.instance.created_logic_ref
        raise TreeMembershipError(tag)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compliance_units": [u.to_dict() for u in self.compliance_units],
            "logic_proofs": [p.to_dict() for p in self.logic_proofs],
        }


def delta_message(actions: Sequence[Action]) -> bytes:
    """Message bound by the delta proof: every tag of every action, in order."""
    h = hashlib.sha256(b"DeltaMessage")
    for action in actions:
        for tag in action.tags():
            h.update(tag)
    return h.digest()


# =============================================================================
# TRANSACTION
# =============================================================================

@dataclass(frozen=True)
class Transaction:
    actions: Tuple[Action, ...]
    delta_proof: Optional[DeltaProof] = None

    def with_delta_proof(self, delta_proof: DeltaProof) -> "Transaction":
        if self.delta_proof is not None:
            raise InvalidRequestError("transaction already carries a delta proof")
        return replace(self, delta_proof=delta_proof)

    @property
    def is_balanced(self) -> bool:
        return self.delta_proof is not None

    def iter_logic_proofs(self) -> Iterator[LogicProof]:
        for action in self.actions:
            yield from action.logic_proofs

    def nullifiers(self) -> List[bytes]:
        return [nf for action in self.actions for nf in action.nullifiers()]

    def commitments(self) -> List[bytes]:
        return [cm for action in self.actions for cm in action.commitments()]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "delta_proof": self.delta_proof.to_dict() if self.delta_proof else None,
        }

    @property
    def digest(self) -> str:
        return _canonical_digest(self.to_dict())
