"""
Proof Orchestrator

Fans out one compliance proof per resource pair and one logic proof per
resource onto a bounded worker pool, then joins every task before returning.

    compliance witnesses ──┐                     ┌── ComplianceUnit[0..N)
                           ├─► ThreadPoolExecutor ┤
    logic witnesses ───────┘   (max_workers)     └── LogicProof[0..M)

Each task owns its witness; no task shares mutable state with another. Results
come back in submission order regardless of completion order.

Failure mapping:
    ProverRejected from the backend    → ProverRejected (invalid witness)
    ProverTaskFailed from the backend  → ProverTaskFailed
    any other exception                → ProverTaskFailed (infrastructure fault)

A failed task never corrupts its siblings: all tasks run to completion, then
the first failure in submission order is raised with the total failure count
in its context. `task_index` is the position within the task's kind
(compliance unit or logic proof), not the resource pair. Proof generation has
no timeout.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from resource_tx.compliance import ComplianceWitness
from resource_tx.config import ProverConfig
from resource_tx.errors import ProverError, ProverTaskFailed
from resource_tx.observability import Layer, get_logger
from resource_tx.proving import ProvingBackend
from resource_tx.transaction import ComplianceUnit, LogicProof
from resource_tx.witness import LogicWitness

logger = logging.getLogger(__name__)
log = get_logger("orchestrator", Layer.PROVER)


@dataclass(frozen=True)
class ProofBundle:
    """Joined proving results for one action, in witness order."""
    compliance_units: Tuple[ComplianceUnit, ...]
    logic_proofs: Tuple[LogicProof, ...]


@dataclass(frozen=True)
class _Task:
    kind: str
    index: int
    fn: Callable[[Any], Any]
    witness: Any


class ProofOrchestrator:
    """Runs proving tasks concurrently on a bounded pool."""

    def __init__(self, backend: ProvingBackend, max_workers: int = 4):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.backend = backend
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, backend: ProvingBackend, config: Optional[ProverConfig] = None) -> "ProofOrchestrator":
        """Build with the worker count of a ProverConfig section (RESOURCE_TX_PROVER_WORKERS)."""
        config = config if config is not None else ProverConfig()
        return cls(backend, config.max_workers.get())

    def prove_all(
        self,
        compliance_witnesses: Sequence[ComplianceWitness],
        logic_witnesses: Sequence[LogicWitness],
    ) -> ProofBundle:
        tasks = [
            _Task("compliance", i, self.backend.prove_compliance, w)
            for i, w in enumerate(compliance_witnesses)
        ] + [
            _Task("logic", i, self.backend.prove_logic, w)
            for i, w in enumerate(logic_witnesses)
        ]
        log.info(
            "proving started",
            compliance=len(compliance_witnesses),
            logic=len(logic_witnesses),
            workers=self.max_workers,
        )

        start = time.monotonic()
        results = self._run(tasks)
        duration_ms = (time.monotonic() - start) * 1000

        failures = [err for _, err in results if err is not None]
        log.operation(
            "prove_all",
            duration_ms,
            success=not failures,
            tasks=len(tasks),
            failures=len(failures),
        )
        if failures:
            raise failures[0].with_context(failures=len(failures))

        values = [value for value, _ in results]
        n = len(compliance_witnesses)
        return ProofBundle(tuple(values[:n]), tuple(values[n:]))

    def _run(self, tasks: List[_Task]) -> List[Tuple[Any, Optional[ProverError]]]:
        if not tasks:
            return []
        logger.debug("submitting %d prover tasks", len(tasks))
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="prover") as pool:
            futures = [pool.submit(task.fn, task.witness) for task in tasks]
            wait(futures)
        return [self._collect(task, future) for task, future in zip(tasks, futures)]

    def _collect(self, task: _Task, future: Future) -> Tuple[Any, Optional[ProverError]]:
        exc = future.exception()
        if exc is None:
            return future.result(), None

        context = {"task": task.kind, "task_index": task.index}
        role = getattr(task.witness, "role", None)
        if role is not None:
            context["role"] = role

        if isinstance(exc, ProverError):
            error: ProverError = exc
        else:
            error = ProverTaskFailed(f"{task.kind} prover task crashed: {exc!r}", cause=exc)
            error.__cause__ = exc
        log.error(
            "prover task failed",
            error_code=type(error).__name__,
            task=task.kind,
            task_index=task.index,
            error=str(exc),
        )
        return None, error.with_context(**context)
