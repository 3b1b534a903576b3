"""
Resource Transaction Error Taxonomy

Every failure raised by the construction pipeline derives from ResourceTxError
and belongs to exactly one category. Callers decide between "retry later" and
"re-collect input" from the category and the `retryable` flag alone:

    ┌──────────────────┬───────────────────────────────────────┬───────────┐
    │ Category         │ Meaning                               │ Retryable │
    ├──────────────────┼───────────────────────────────────────┼───────────┤
    │ binding          │ label_ref/value_ref/key/sig forged    │ no        │
    │ missing_data     │ predicate branch lacks a field        │ no        │
    │ invalid_request  │ shape of the request is wrong         │ no        │
    │ tree_membership  │ tag absent from its action tree       │ no        │
    │ external_io      │ indexer or submission failure         │ sometimes │
    │ prover           │ task crash vs. semantic rejection     │ task only │
    │ verification     │ assembled transaction does not verify │ no        │
    └──────────────────┴───────────────────────────────────────┴───────────┘

Errors carry a `context` dict (resource index, role, tag, field) so a failing
witness can be reconstructed without re-running the pipeline.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Top-level error categories exposed to REST callers."""
    BINDING = "binding"
    MISSING_DATA = "missing_data"
    INVALID_REQUEST = "invalid_request"
    TREE_MEMBERSHIP = "tree_membership"
    EXTERNAL_IO = "external_io"
    PROVER = "prover"
    VERIFICATION = "verification"


class ResourceTxError(Exception):
    """Base exception for the resource transaction pipeline."""

    category: ErrorCategory = ErrorCategory.INVALID_REQUEST
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def with_context(self, **context: Any) -> "ResourceTxError":
        """Add context entries in place and return self, keeping existing keys."""
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Structured error body for API responses."""
        return {
            "error": type(self).__name__,
            "category": self.category.value,
            "retryable": self.retryable,
            "message": self.message,
            "context": {k: _render(v) for k, v in self.context.items()},
        }

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={_render(v)}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


def _render(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# REQUEST ERRORS
# =============================================================================

class BindingError(ResourceTxError):
    """
    A resource field does not match the value recomputed from plaintext inputs.

    Raised for forged label_ref/value_ref bindings, wrong nullifier keys and
    invalid authorization signatures. Never retried.
    """
    category = ErrorCategory.BINDING

    def __init__(self, field: str, message: Optional[str] = None, **context: Any):
        self.field = field
        super().__init__(message or f"Invalid resource {field}", field=field, **context)


class NullifierKeyMismatchError(BindingError):
    """The nullifier key does not open the resource's nk_commitment."""

    def __init__(self, **context: Any):
        super().__init__(
            "nk_commitment",
            "Nullifier key does not match resource nk_commitment",
            **context,
        )


class InvalidSignatureError(BindingError):
    """An authorization signature does not verify under the expected key."""

    def __init__(self, field: str = "auth_sig", **context: Any):
        super().__init__(field, f"Invalid authorization signature: {field}", **context)


class MissingAuxiliaryDataError(ResourceTxError):
    """A witness field required by the chosen predicate branch is absent."""
    category = ErrorCategory.MISSING_DATA

    def __init__(self, field: str, **context: Any):
        self.field = field
        super().__init__(f"Missing required witness data: {field}", field=field, **context)


class InvalidRequestError(ResourceTxError):
    """The request is structurally malformed (counts, lengths, directions)."""
    category = ErrorCategory.INVALID_REQUEST


class TreeMembershipError(ResourceTxError):
    """A tag is not among the leaves of the action tree being queried."""
    category = ErrorCategory.TREE_MEMBERSHIP

    def __init__(self, tag: bytes, **context: Any):
        self.tag = tag
        super().__init__("Tag not found in action tree", tag=tag, **context)


# =============================================================================
# EXTERNAL I/O ERRORS
# =============================================================================

class ExternalIOError(ResourceTxError):
    """Failure talking to an external collaborator."""
    category = ErrorCategory.EXTERNAL_IO


class IndexerError(ExternalIOError):
    """Base class for Merkle-path indexer failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, **context: Any):
        self.status_code = status_code
        super().__init__(message, status_code=status_code, **context)


class IndexerRateLimitedError(IndexerError):
    """The indexer answered 429 Too Many Requests."""
    retryable = True


class IndexerTransientError(IndexerError):
    """5xx, connection failure, timeout, or transient request/body error."""
    retryable = True


class IndexerRequestError(IndexerError):
    """A non-retryable 4xx response, or an unusable indexer URL."""


class InvalidIndexerResponseError(IndexerError):
    """The indexer answered 200 with a body that is not a valid Merkle path."""


class SubmissionError(ExternalIOError):
    """The settlement submission layer rejected or failed the transaction."""


# =============================================================================
# PROVER ERRORS
# =============================================================================

class ProverError(ResourceTxError):
    """Base class for proof generation failures."""
    category = ErrorCategory.PROVER


class ProverTaskFailed(ProverError):
    """
    The proving task crashed (infrastructure fault).

    Distinct from ProverRejected: the witness may be perfectly valid.
    """
    retryable = True

    def __init__(self, message: str, cause: Optional[BaseException] = None, **context: Any):
        self.cause = cause
        super().__init__(message, **context)


class ProverRejected(ProverError):
    """The backend refused to prove the witness (semantic failure)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None, **context: Any):
        self.cause = cause
        super().__init__(message, **context)


# =============================================================================
# VERIFICATION ERRORS
# =============================================================================

class VerificationError(ResourceTxError):
    """The assembled transaction failed verification. Fatal for the instance."""
    category = ErrorCategory.VERIFICATION


class BalanceError(VerificationError):
    """The delta proof does not establish a zero net value change."""
