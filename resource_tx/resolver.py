"""
Merkle-Path Resolver

Fetches inclusion paths of already settled commitments from the indexer:

    GET {indexer}/generate_proof/0x<commitment hex>
    200 {"root": "<hex>", "frontiers": [{"neighbour": "<hex>", "is_left": bool}, ...]}

The indexer's `is_left` describes the running node, the mirror of the
MerklePath convention (where it describes the sibling), so every flag is
inverted on conversion.

Retry State Machine
───────────────────

    ┌─────────┐  success   ┌────────┐
    │  FETCH  ├───────────►│  DONE  │
    └──┬───▲──┘            └────────┘
       │   │
       │   │ slept         429: fixed delay (10s)
       │ ┌─┴──────┐        5xx / connect / timeout / request / body:
       ├►│  WAIT  │          exponential 0.25s · 2^(attempt-1)
       │ └────────┘
       │            other 4xx, invalid 200 body,
       │            or attempts exhausted (6 total)
       │           ┌──────────┐
       └──────────►│  FAILED  │  raises the last observed error
                   └──────────┘

The fetch is a pure read, so re-running it against an unchanged indexer yields
an identical path. The transport and the sleep function are injectable; tests
drive the machine without network or real waits.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, List, Optional, Protocol, Tuple

import httpx

from resource_tx.errors import (
    IndexerError,
    IndexerRateLimitedError,
    IndexerRequestError,
    IndexerTransientError,
    InvalidIndexerResponseError,
)
from resource_tx.merkle import MerklePath
from resource_tx.observability import Layer, get_logger
from resource_tx.resource import DIGEST_SIZE, require_bytes

logger = logging.getLogger(__name__)
log = get_logger("resolver", Layer.INDEXER)


# =============================================================================
# RESPONSE PARSING
# =============================================================================

@dataclass(frozen=True)
class Frontier:
    neighbour: bytes
    is_left: bool


@dataclass(frozen=True)
class ProofResponse:
    root: bytes
    frontiers: Tuple[Frontier, ...]

    def to_merkle_path(self) -> MerklePath:
        return MerklePath.from_pairs((f.neighbour, not f.is_left) for f in self.frontiers)


def _hex(value: Any, name: str) -> bytes:
    if not isinstance(value, str):
        raise InvalidIndexerResponseError(f"{name} must be a hex string")
    raw = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(raw)
    except ValueError as exc:
        raise InvalidIndexerResponseError(f"{name} is not valid hex") from exc


def parse_proof_response(body: Any) -> ProofResponse:
    """Validate an indexer response body."""
    if not isinstance(body, dict) or "frontiers" not in body or "root" not in body:
        raise InvalidIndexerResponseError("response lacks root or frontiers")
    if not isinstance(body["frontiers"], list):
        raise InvalidIndexerResponseError("frontiers must be a list")
    frontiers: List[Frontier] = []
    for index, item in enumerate(body["frontiers"]):
        if not isinstance(item, dict) or not isinstance(item.get("is_left"), bool):
            raise InvalidIndexerResponseError("malformed frontier", frontier=index)
        neighbour = _hex(item.get("neighbour"), "neighbour")
        if len(neighbour) != DIGEST_SIZE:
            raise InvalidIndexerResponseError(
                f"neighbour must be {DIGEST_SIZE} bytes, got {len(neighbour)}", frontier=index
            )
        frontiers.append(Frontier(neighbour, item["is_left"]))
    return ProofResponse(root=_hex(body["root"], "root"), frontiers=tuple(frontiers))


# =============================================================================
# TRANSPORT
# =============================================================================

@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: bytes


class IndexerTransport(Protocol):
    """HTTP GET seam. Transport-level failures raise IndexerError subclasses."""

    def get(self, url: str) -> TransportResponse:
        ...


class HttpxTransport:
    """Default transport over a synchronous httpx.Client."""

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 30.0) -> None:
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None

    def get(self, url: str) -> TransportResponse:
        try:
            response = self._client.get(url)
            body = response.read()
        except httpx.UnsupportedProtocol as exc:
            raise IndexerRequestError(f"unsupported indexer URL: {exc}", url=url) from exc
        except httpx.InvalidURL as exc:
            raise IndexerRequestError(f"invalid indexer URL: {exc}", url=url) from exc
        except httpx.TimeoutException as exc:
            raise IndexerTransientError(f"indexer timeout: {exc}", url=url) from exc
        except httpx.ConnectError as exc:
            raise IndexerTransientError(f"indexer connection failed: {exc}", url=url) from exc
        except httpx.RequestError as exc:
            raise IndexerTransientError(f"indexer request failed: {exc}", url=url) from exc
        return TransportResponse(response.status_code, body)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def classify_response(response: TransportResponse) -> ProofResponse:
    """Turn an HTTP response into a ProofResponse or the matching IndexerError."""
    status = response.status_code
    if 200 <= status < 300:
        try:
            body = json.loads(response.body)
        except ValueError as exc:
            raise InvalidIndexerResponseError("response body is not JSON", status_code=status) from exc
        return parse_proof_response(body)
    if status == 429:
        raise IndexerRateLimitedError("indexer rate limited", status_code=status)
    if status >= 500:
        raise IndexerTransientError(f"indexer server error {status}", status_code=status)
    raise IndexerRequestError(f"indexer rejected request with {status}", status_code=status)


# =============================================================================
# RETRY STATE MACHINE
# =============================================================================

class FetchState(Enum):
    FETCH = auto()
    WAIT = auto()
    DONE = auto()
    FAILED = auto()


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and delays of the Merkle-path fetch."""
    max_attempts: int = 6
    rate_limit_delay_seconds: float = 10.0
    base_backoff_seconds: float = 0.25

    def delay_for(self, error: IndexerError, attempt: int) -> float:
        if isinstance(error, IndexerRateLimitedError):
            return self.rate_limit_delay_seconds
        return self.base_backoff_seconds * (2 ** (attempt - 1))


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    error: IndexerError
    delay_seconds: Optional[float]


@dataclass
class RetryMachine:
    """
    Explicit retry state: attempt count, pending delay, last error.

    `record_failure` decides between WAIT and FAILED; `waited` moves WAIT back
    to FETCH. The machine performs no I/O itself.
    """
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    state: FetchState = FetchState.FETCH
    attempt: int = 1
    pending_delay: float = 0.0
    last_error: Optional[IndexerError] = None
    history: List[AttemptRecord] = field(default_factory=list)

    def record_success(self) -> None:
        self._require(FetchState.FETCH)
        self.state = FetchState.DONE

    def record_failure(self, error: IndexerError) -> FetchState:
        self._require(FetchState.FETCH)
        self.last_error = error
        if not error.retryable or self.attempt >= self.policy.max_attempts:
            self.history.append(AttemptRecord(self.attempt, error, None))
            self.state = FetchState.FAILED
        else:
            self.pending_delay = self.policy.delay_for(error, self.attempt)
            self.history.append(AttemptRecord(self.attempt, error, self.pending_delay))
            self.state = FetchState.WAIT
        return self.state

    def waited(self) -> None:
        self._require(FetchState.WAIT)
        self.attempt += 1
        self.pending_delay = 0.0
        self.state = FetchState.FETCH

    @property
    def exhausted(self) -> bool:
        return (
            self.state == FetchState.FAILED
            and self.last_error is not None
            and self.last_error.retryable
        )

    def _require(self, state: FetchState) -> None:
        if self.state != state:
            raise RuntimeError(f"retry machine in {self.state.name}, expected {state.name}")


# =============================================================================
# RESOLVER
# =============================================================================

class MerklePathResolver:
    """Client for the Merkle-path indexer."""

    def __init__(
        self,
        base_url: str,
        transport: Optional[IndexerTransport] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.transport = transport or HttpxTransport()
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "MerklePathResolver":
        """Build from an IndexerConfig section."""
        if "transport" not in kwargs:
            kwargs["transport"] = HttpxTransport(timeout=config.timeout_seconds.get())
        return cls(
            config.url.get(),
            policy=RetryPolicy(
                max_attempts=config.max_attempts.get(),
                rate_limit_delay_seconds=config.rate_limit_delay_seconds.get(),
                base_backoff_seconds=config.base_backoff_seconds.get(),
            ),
            **kwargs,
        )

    def url_for(self, commitment: bytes) -> str:
        cm = require_bytes(commitment, DIGEST_SIZE, "commitment")
        return f"{self.base_url}/generate_proof/0x{cm.hex()}"

    def fetch_proof(self, commitment: bytes) -> ProofResponse:
        """Fetch the indexer's proof for `commitment`, following the retry policy."""
        url = self.url_for(commitment)
        machine = RetryMachine(self.policy)
        while True:
            if machine.state == FetchState.FETCH:
                try:
                    proof = classify_response(self.transport.get(url))
                except IndexerError as exc:
                    exc.with_context(attempt=machine.attempt, commitment=commitment)
                    machine.record_failure(exc)
                    continue
                machine.record_success()
                logger.debug("merkle path for %s after %d attempt(s)", commitment.hex(), machine.attempt)
                return proof

            if machine.state == FetchState.WAIT:
                log.warning(
                    "indexer fetch failed, retrying",
                    attempt=machine.attempt,
                    delay_seconds=machine.pending_delay,
                    error=str(machine.last_error),
                )
                self._sleep(machine.pending_delay)
                machine.waited()
                continue

            log.error(
                "indexer fetch failed",
                error_code="exhausted" if machine.exhausted else "terminal",
                attempts=machine.attempt,
                commitment=commitment.hex(),
                error=str(machine.last_error),
            )
            raise machine.last_error

    def merkle_path(self, commitment: bytes) -> MerklePath:
        return self.fetch_proof(commitment).to_merkle_path()

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "MerklePathResolver":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
