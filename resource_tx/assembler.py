"""
Transaction Assembler

Turns joined proving results into a balanced, self-verified transaction.

Assembly Phases:
    1. ACTIONS   Build one Action per proof bundle; inconsistent compliance and
                 logic sets are rejected here.
    2. DELTA     Aggregate every compliance witness's rcv, positionally, and
                 request the delta proof over the complete action list.
    3. VERIFY    Run the backend verifier on the finished transaction.

Verification is not optional. A transaction that fails it after every proof was
generated signals a construction bug (wrong nullifier key, mismatched action
tree) and is fatal for that instance; the assembler logs and re-raises, it
never retries.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

from resource_tx.compliance import ComplianceWitness
from resource_tx.errors import (
    InvalidRequestError,
    ProverError,
    ProverTaskFailed,
    ResourceTxError,
    VerificationError,
)
from resource_tx.merkle import ACTION_TREE_DEPTH
from resource_tx.observability import Layer, get_logger
from resource_tx.orchestrator import ProofBundle
from resource_tx.proving import ProvingBackend
from resource_tx.transaction import Action, DeltaWitness, Transaction, delta_message

logger = logging.getLogger(__name__)
log = get_logger("assembler", Layer.ASSEMBLER)


class AssemblyPhase(Enum):
    ACTIONS = "actions"
    DELTA = "delta"
    VERIFY = "verify"


@dataclass(frozen=True)
class ActionParts:
    """
    Everything needed to assemble one action.

    `compliance_witnesses` must be in the order the compliance units were
    proven; their blinding values are combined positionally.
    """
    bundle: ProofBundle
    compliance_witnesses: Tuple[ComplianceWitness, ...]
    tree_depth: int = ACTION_TREE_DEPTH


class TransactionAssembler:
    """Builds actions, attaches the delta proof and self-verifies."""

    def __init__(self, backend: ProvingBackend):
        self.backend = backend

    def assemble(self, parts: Sequence[ActionParts]) -> Transaction:
        if not parts:
            raise InvalidRequestError("transaction needs at least one action")

        start = time.monotonic()
        actions = self._build_actions(parts)
        transaction = self._attach_delta(actions, parts)
        self._verify(transaction)

        log.operation(
            "assemble",
            (time.monotonic() - start) * 1000,
            actions=len(actions),
            compliance_units=sum(len(a.compliance_units) for a in actions),
        )
        return transaction

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _build_actions(self, parts: Sequence[ActionParts]) -> List[Action]:
        actions: List[Action] = []
        for index, part in enumerate(parts):
            try:
                self._check_witness_order(part)
                action = Action.new(
                    part.bundle.compliance_units,
                    part.bundle.logic_proofs,
                    part.tree_depth,
                )
            except ResourceTxError as exc:
                raise exc.with_context(action=index, phase=AssemblyPhase.ACTIONS.value)
            actions.append(action)
        return actions

    @staticmethod
    def _check_witness_order(part: ActionParts) -> None:
        units = part.bundle.compliance_units
        witnesses = part.compliance_witnesses
        if len(units) != len(witnesses):
            raise InvalidRequestError(
                "compliance witnesses do not match compliance units",
                compliance_units=len(units),
                compliance_witnesses=len(witnesses),
            )
        for position, (unit, witness) in enumerate(zip(units, witnesses)):
            if unit.instance.created_commitment != witness.created_resource.commitment():
                raise InvalidRequestError(
                    "compliance witness out of order for delta aggregation",
                    compliance_unit=position,
                )

    def _attach_delta(self, actions: List[Action], parts: Sequence[ActionParts]) -> Transaction:
        witnesses = [w for part in parts for w in part.compliance_witnesses]
        delta_witness = DeltaWitness.from_compliance_witnesses(witnesses)
        message = delta_message(actions)
        try:
            delta_proof = self.backend.aggregate_delta(delta_witness, message)
        except ProverError as exc:
            raise exc.with_context(phase=AssemblyPhase.DELTA.value)
        except Exception as exc:
            raise ProverTaskFailed(
                f"delta aggregation crashed: {exc!r}",
                cause=exc,
                phase=AssemblyPhase.DELTA.value,
            ) from exc
        logger.debug("aggregated %d blinding values", len(delta_witness.rcvs))
        return Transaction(tuple(actions)).with_delta_proof(delta_proof)

    def _verify(self, transaction: Transaction) -> None:
        try:
            self.backend.verify(transaction)
        except VerificationError as exc:
            log.error(
                "assembled transaction failed self-verification",
                error_code=type(exc).__name__,
                error=str(exc),
            )
            raise exc.with_context(phase=AssemblyPhase.VERIFY.value)
        except ResourceTxError as exc:
            log.error(
                "assembled transaction failed self-verification",
                error_code=type(exc).__name__,
                error=str(exc),
            )
            raise VerificationError(
                f"verification failed: {exc}", phase=AssemblyPhase.VERIFY.value
            ) from exc
        log.info("transaction verified", digest=transaction.digest)
