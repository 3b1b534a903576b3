"""
Settlement Submission

Hands a verified transaction to the settlement layer and returns its receipt.
Submission is costly and irrevocable, so only balanced, self-verified
transactions are accepted, and nothing here retries: a failed submission is
surfaced as SubmissionError and any retry policy belongs to the caller.

JsonRpcSubmitter speaks JSON-RPC 2.0 over HTTP:

    POST {rpc_url}
    {"jsonrpc": "2.0", "id": 1, "method": "resource_submitTransaction", "params": [<tx>]}
    → {"jsonrpc": "2.0", "id": 1, "result": "0x<tx hash>"}

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from resource_tx.errors import InvalidRequestError, ResourceTxError, SubmissionError
from resource_tx.observability import Layer, get_logger
from resource_tx.transaction import Transaction

logger = logging.getLogger(__name__)
log = get_logger("submission", Layer.SUBMISSION)

SUBMIT_METHOD = "resource_submitTransaction"


@dataclass(frozen=True)
class Receipt:
    tx_hash: str


class Submitter(Protocol):
    def submit(self, transaction: Transaction) -> Receipt:
        ...


def submit_transaction(transaction: Transaction, submitter: Submitter) -> Receipt:
    """Submit once; collaborator failures become SubmissionError."""
    if not transaction.is_balanced:
        raise InvalidRequestError("refusing to submit a transaction without a delta proof")

    try:
        receipt = submitter.submit(transaction)
    except SubmissionError as exc:
        log.error("submission failed", error_code=type(exc).__name__, error=str(exc))
        raise
    except ResourceTxError:
        raise
    except Exception as exc:
        log.error("submission failed", error_code="unexpected", error=repr(exc))
        raise SubmissionError(f"submitter failed: {exc!r}") from exc

    log.info("transaction submitted", tx_hash=receipt.tx_hash, digest=transaction.digest)
    return receipt


class JsonRpcSubmitter:
    """Submitter posting transactions to a JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        client: Optional[httpx.Client] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._client = client or httpx.Client(timeout=timeout_s)
        self._owns_client = client is None
        self._headers = headers or {}
        self._next_id = 1

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "JsonRpcSubmitter":
        """Build from a SubmissionConfig section."""
        return cls(config.rpc_url.get(), timeout_s=config.timeout_seconds.get(), **kwargs)

    def _payload(self, transaction: Transaction) -> Dict[str, Any]:
        request_id = self._next_id
        self._next_id += 1
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": SUBMIT_METHOD,
            "params": [transaction.to_dict()],
        }

    def submit(self, transaction: Transaction) -> Receipt:
        url = self._rpc_url
        logger.debug("posting transaction %s to %s", transaction.digest, url)
        try:
            response = self._client.post(
                url,
                json=self._payload(transaction),
                headers={"Accept": "application/json", **self._headers},
            )
        except httpx.TimeoutException as e:
            raise SubmissionError("RPC request timed out", url=url) from e
        except httpx.ConnectError as e:
            raise SubmissionError(f"Failed to connect to {url}", url=url) from e
        except httpx.HTTPError as e:
            raise SubmissionError(f"HTTP error: {e}", url=url) from e

        if response.status_code >= 400:
            raise SubmissionError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                url=url,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise SubmissionError("RPC response was not valid JSON", url=url) from e

        if not isinstance(body, dict):
            raise SubmissionError("RPC response was not an object", url=url)
        if body.get("error") is not None:
            error = body["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise SubmissionError(f"RPC error: {message}", url=url, rpc_error=error)
        tx_hash = body.get("result")
        if not isinstance(tx_hash, str) or not tx_hash:
            raise SubmissionError("RPC response carries no transaction hash", url=url)
        return Receipt(tx_hash)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
