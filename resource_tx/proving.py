"""
Proving Backend

The zero-knowledge backend is an external collaborator. The pipeline talks to
it through the ProvingBackend protocol:

    prove_compliance(ComplianceWitness) -> ComplianceUnit
    prove_logic(LogicWitness)           -> LogicProof
    aggregate_delta(DeltaWitness, msg)  -> DeltaProof
    verify(Transaction)                 -> None, raises VerificationError

Calls are assumed to be pure functions of their inputs. Backends signal a
witness they refuse to prove with ProverRejected; any other exception escaping
a call is treated by the orchestrator as a crashed task.

MockProvingBackend is a deterministic stand-in used by tests and local runs.
It evaluates the same constraints as the circuits, derives proofs by hashing
the public instance, and verifies balance with real field arithmetic, so an
unbalanced or mis-bound transaction fails verification.
NOT CRYPTOGRAPHICALLY SECURE - for testing only.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol

from resource_tx.compliance import BLINDING_GENERATOR, FIELD_MODULUS, ComplianceWitness, sum_scalars
from resource_tx.errors import (
    BalanceError,
    ProverRejected,
    ResourceTxError,
    TreeMembershipError,
    VerificationError,
)
from resource_tx.transaction import (
    Action,
    ComplianceUnit,
    DeltaProof,
    DeltaWitness,
    LogicProof,
    Transaction,
    delta_message,
)
from resource_tx.witness import LogicWitness

logger = logging.getLogger(__name__)


class ProvingBackend(Protocol):
    """Interface to a proof system."""

    def prove_compliance(self, witness: ComplianceWitness) -> ComplianceUnit:
        ...

    def prove_logic(self, witness: LogicWitness) -> LogicProof:
        ...

    def aggregate_delta(self, witness: DeltaWitness, message: bytes) -> DeltaProof:
        ...

    def verify(self, transaction: Transaction) -> None:
        ...


class MockProvingBackend:
    """
    Mock proving backend for testing.

    Generates deterministic mock proofs from instance digests.
    NOT CRYPTOGRAPHICALLY SECURE - for testing only.
    """

    @staticmethod
    def _compliance_proof(unit_digest: str) -> bytes:
        return hashlib.sha256(b"compliance" + unit_digest.encode()).digest()

    @staticmethod
    def _logic_proof(verifying_key: bytes, instance_digest: str) -> bytes:
        return hashlib.sha256(b"logic" + verifying_key + instance_digest.encode()).digest()

    @staticmethod
    def _delta_binding(aggregate: int, message: bytes) -> bytes:
        return hashlib.sha256(b"delta" + aggregate.to_bytes(32, "big") + message).digest()

    def prove_compliance(self, witness: ComplianceWitness) -> ComplianceUnit:
        try:
            instance = witness.constrain()
        except ResourceTxError as exc:
            raise ProverRejected(f"compliance constraints unsatisfied: {exc}", cause=exc) from exc
        return ComplianceUnit(instance=instance, proof=self._compliance_proof(instance.digest))

    def prove_logic(self, witness: LogicWitness) -> LogicProof:
        try:
            instance = witness.constrain()
        except ResourceTxError as exc:
            raise ProverRejected(f"logic constraints unsatisfied: {exc}", cause=exc) from exc
        return LogicProof(
            instance=instance,
            verifying_key=witness.logic_ref,
            proof=self._logic_proof(witness.logic_ref, instance.digest),
        )

    def aggregate_delta(self, witness: DeltaWitness, message: bytes) -> DeltaProof:
        aggregate = witness.aggregate()
        return DeltaProof(aggregate.to_bytes(32, "big") + self._delta_binding(aggregate, message))

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify(self, transaction: Transaction) -> None:
        if transaction.delta_proof is None:
            raise VerificationError("transaction has no delta proof")
        if not transaction.actions:
            raise VerificationError("transaction has no actions")

        nullifiers = transaction.nullifiers()
        if len(set(nullifiers)) != len(nullifiers):
            raise VerificationError("nullifier published twice in one transaction")

        for index, action in enumerate(transaction.actions):
            try:
                self._verify_action(action)
            except VerificationError as exc:
                raise exc.with_context(action=index)
            except ResourceTxError as exc:
                raise VerificationError(f"inconsistent action: {exc}", action=index) from exc

        self._verify_delta(transaction)

    def _verify_action(self, action: Action) -> None:
        action.check_consistency()
        for unit in action.compliance_units:
            if unit.proof != self._compliance_proof(unit.instance.digest):
                raise VerificationError("compliance proof does not verify", tag=unit.tags[0])
        for proof in action.logic_proofs:
            try:
                expected_vk = action.logic_ref_for(proof.tag)
            except TreeMembershipError as exc:
                raise VerificationError("logic proof tag not in action", tag=proof.tag) from exc
            if proof.verifying_key != expected_vk:
                raise VerificationError("logic proof verifying key mismatch", tag=proof.tag)
            if proof.proof != self._logic_proof(proof.verifying_key, proof.instance.digest):
                raise VerificationError("logic proof does not verify", tag=proof.tag)

    def _verify_delta(self, transaction: Transaction) -> None:
        raw = transaction.delta_proof.proof
        if len(raw) != 64:
            raise BalanceError("malformed delta proof")
        aggregate = int.from_bytes(raw[:32], "big")
        if raw[32:] != self._delta_binding(aggregate, delta_message(transaction.actions)):
            raise BalanceError("delta proof not bound to these actions")
        total = sum_scalars(
            unit.instance.delta
            for action in transaction.actions
            for unit in action.compliance_units
        )
        if total != (aggregate * BLINDING_GENERATOR) % FIELD_MODULUS:
            raise BalanceError("transaction does not balance")
        logger.debug("verified transaction with %d actions", len(transaction.actions))
