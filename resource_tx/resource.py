"""
Resource Model

The resource is the atomic unit of value in the ledger. It is immutable: spending
a resource publishes its nullifier, creating one publishes its commitment. Both
identifiers are pure functions of the resource fields.

Hashing:
- SHA-256 throughout, with domain separation prefixes
  - commitment    = SHA256("ResourceCommitment" || canonical_bytes)
  - nullifier     = SHA256("ResourceNullifier" || nk || nonce || rand_seed || cm)
  - nk_commitment = SHA256("NullifierKeyCommitment" || nk)
  - label_ref     = SHA256(forwarder || token)

Canonical resource bytes (209 bytes):
    logic_ref(32) | label_ref(32) | quantity(16, big-endian) | value_ref(32) |
    is_ephemeral(1) | nonce(32) | nk_commitment(32) | rand_seed(32)

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from resource_tx.errors import InvalidRequestError, NullifierKeyMismatchError


DIGEST_SIZE = 32
ADDRESS_SIZE = 20
MAX_QUANTITY = (1 << 128) - 1
RESOURCE_BYTES_SIZE = 6 * DIGEST_SIZE + 16 + 1

_COMMITMENT_DOMAIN = b"ResourceCommitment"
_NULLIFIER_DOMAIN = b"ResourceNullifier"
_NK_COMMITMENT_DOMAIN = b"NullifierKeyCommitment"

ZERO_DIGEST = bytes(DIGEST_SIZE)

# Logic reference of the padding predicate; it accepts any structurally valid resource.
TRIVIAL_LOGIC_REF = hashlib.sha256(b"TrivialLogic").digest()

# Built-in verifying key digests of the token transfer logic, current and previous version.
TOKEN_TRANSFER_LOGIC_REF = hashlib.sha256(b"TokenTransferLogicV2").digest()
LEGACY_TOKEN_TRANSFER_LOGIC_REF = hashlib.sha256(b"TokenTransferLogicV1").digest()


def sha256(*parts: bytes) -> bytes:
    """SHA-256 over the concatenation of parts."""
    h = hashlib.sha256()
    for part in parts:
        h.update(part)
    return h.digest()


def require_bytes(value: Any, size: int, name: str) -> bytes:
    """Return value as bytes, raising InvalidRequestError unless it is exactly `size` long."""
    if isinstance(value, (bytes, bytearray)) and len(value) == size:
        return bytes(value)
    got = len(value) if isinstance(value, (bytes, bytearray)) else type(value).__name__
    raise InvalidRequestError(f"{name} must be {size} bytes, got {got}", field=name)


def random_digest() -> bytes:
    return secrets.token_bytes(DIGEST_SIZE)


# =============================================================================
# NULLIFIER KEYS
# =============================================================================

@dataclass(frozen=True)
class NullifierKey:
    """
    Secret key whose holder can derive a resource's nullifier.

    Resources bind to the key through `nk_commitment = key.commit()`.
    """
    key: bytes

    def __post_init__(self):
        require_bytes(self.key, DIGEST_SIZE, "nullifier_key")

    @classmethod
    def default(cls) -> "NullifierKey":
        """All-zero key shared by padding resources."""
        return cls(ZERO_DIGEST)

    @classmethod
    def random(cls) -> "NullifierKey":
        return cls(random_digest())

    def commit(self) -> bytes:
        return sha256(_NK_COMMITMENT_DOMAIN, self.key)

    def __repr__(self) -> str:
        return "NullifierKey(<redacted>)"


# =============================================================================
# DERIVED REFERENCES
# =============================================================================

def label_ref(forwarder_addr: bytes, token_addr: bytes) -> bytes:
    """Label binding a resource to its (forwarder contract, ERC20 token) pair."""
    return sha256(forwarder_addr, token_addr)


def value_ref_from_user_address(user_addr: bytes) -> bytes:
    """Value reference of an ephemeral resource: the 20-byte address, zero padded to 32."""
    addr = require_bytes(user_addr, ADDRESS_SIZE, "user_addr")
    return addr + bytes(DIGEST_SIZE - ADDRESS_SIZE)


def user_address_from_value_ref(value_ref: bytes) -> bytes:
    return require_bytes(value_ref, DIGEST_SIZE, "value_ref")[:ADDRESS_SIZE]


# =============================================================================
# RESOURCE
# =============================================================================

@dataclass(frozen=True)
class Resource:
    """
    An immutable resource.

    Attributes:
        logic_ref: Digest of the validity predicate governing this resource kind
        label_ref: Digest binding the resource to its external asset context
        quantity: Unsigned 128-bit amount
        value_ref: Digest of ownership/authorization material
        is_ephemeral: True if the resource only lives within one transaction
        nonce: Uniqueness salt, usually the nullifier of a preceding resource
        nk_commitment: Commitment to the nullifier key of the owner
        rand_seed: Blinding value for commitment hiding
    """
    logic_ref: bytes
    label_ref: bytes
    quantity: int
    value_ref: bytes
    is_ephemeral: bool
    nonce: bytes
    nk_commitment: bytes
    rand_seed: bytes = field(default_factory=random_digest)

    def __post_init__(self):
        for name in ("logic_ref", "label_ref", "value_ref", "nonce", "nk_commitment", "rand_seed"):
            require_bytes(getattr(self, name), DIGEST_SIZE, name)
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidRequestError("quantity must be an integer", field="quantity")
        if not 0 <= self.quantity <= MAX_QUANTITY:
            raise InvalidRequestError(
                f"quantity out of u128 range: {self.quantity}", field="quantity"
            )
        if not isinstance(self.is_ephemeral, bool):
            raise InvalidRequestError("is_ephemeral must be a bool", field="is_ephemeral")

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        logic_ref: bytes,
        label_ref: bytes,
        quantity: int,
        value_ref: bytes,
        is_ephemeral: bool,
        nullifier_key: NullifierKey,
        nonce: Optional[bytes] = None,
        rand_seed: Optional[bytes] = None,
    ) -> "Resource":
        """Create a resource owned by the holder of `nullifier_key`."""
        return cls(
            logic_ref=logic_ref,
            label_ref=label_ref,
            quantity=quantity,
            value_ref=value_ref,
            is_ephemeral=is_ephemeral,
            nonce=nonce if nonce is not None else random_digest(),
            nk_commitment=nullifier_key.commit(),
            rand_seed=rand_seed if rand_seed is not None else random_digest(),
        )

    @classmethod
    def padding(cls, nonce: Optional[bytes] = None) -> "Resource":
        """Zero-quantity ephemeral resource under the trivial logic and default key."""
        return cls.create(
            logic_ref=TRIVIAL_LOGIC_REF,
            label_ref=ZERO_DIGEST,
            quantity=0,
            value_ref=ZERO_DIGEST,
            is_ephemeral=True,
            nullifier_key=NullifierKey.default(),
            nonce=nonce,
        )

    def with_nonce(self, nonce: bytes) -> "Resource":
        return replace(self, nonce=nonce)

    @property
    def is_padding(self) -> bool:
        return self.logic_ref == TRIVIAL_LOGIC_REF

    # -------------------------------------------------------------------------
    # Identifiers
    # -------------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        return b"".join([
            self.logic_ref,
            self.label_ref,
            self.quantity.to_bytes(16, "big"),
            self.value_ref,
            b"\x01" if self.is_ephemeral else b"\x00",
            self.nonce,
            self.nk_commitment,
            self.rand_seed,
        ])

    @classmethod
    def from_bytes(cls, data: bytes) -> "Resource":
        if len(data) != RESOURCE_BYTES_SIZE:
            raise InvalidRequestError(
                f"resource encoding must be {RESOURCE_BYTES_SIZE} bytes, got {len(data)}"
            )
        if data[112] not in (0, 1):
            raise InvalidRequestError("invalid is_ephemeral byte", field="is_ephemeral")
        return cls(
            logic_ref=data[0:32],
            label_ref=data[32:64],
            quantity=int.from_bytes(data[64:80], "big"),
            value_ref=data[80:112],
            is_ephemeral=data[112] == 1,
            nonce=data[113:145],
            nk_commitment=data[145:177],
            rand_seed=data[177:209],
        )

    def commitment(self) -> bytes:
        return sha256(_COMMITMENT_DOMAIN, self.to_bytes())

    def nullifier(self, nullifier_key: NullifierKey) -> bytes:
        """Nullifier of this resource; fails unless the key opens nk_commitment."""
        return self.nullifier_from_commitment(nullifier_key, self.commitment())

    def nullifier_from_commitment(self, nullifier_key: NullifierKey, commitment: bytes) -> bytes:
        """Nullifier derived from an already computed commitment."""
        if nullifier_key.commit() != self.nk_commitment:
            raise NullifierKeyMismatchError()
        return sha256(_NULLIFIER_DOMAIN, nullifier_key.key, self.nonce, self.rand_seed, commitment)

    def kind(self) -> bytes:
        """Fungibility class: resources of one kind may balance against each other."""
        return sha256(self.logic_ref, self.label_ref)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logic_ref": self.logic_ref.hex(),
            "label_ref": self.label_ref.hex(),
            "quantity": self.quantity,
            "value_ref": self.value_ref.hex(),
            "is_ephemeral": self.is_ephemeral,
            "nonce": self.nonce.hex(),
            "nk_commitment": self.nk_commitment.hex(),
            "rand_seed": self.rand_seed.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        return cls(
            logic_ref=bytes.fromhex(data["logic_ref"]),
            label_ref=bytes.fromhex(data["label_ref"]),
            quantity=int(data["quantity"]),
            value_ref=bytes.fromhex(data["value_ref"]),
            is_ephemeral=bool(data["is_ephemeral"]),
            nonce=bytes.fromhex(data["nonce"]),
            nk_commitment=bytes.fromhex(data["nk_commitment"]),
            rand_seed=bytes.fromhex(data["rand_seed"]),
        )


@dataclass(frozen=True)
class ResourceWithLabel:
    """Plaintext of a created resource's ciphertext: the resource and its label inputs."""
    resource: Resource
    forwarder: bytes
    token: bytes

    def to_bytes(self) -> bytes:
        return b"".join([
            self.resource.to_bytes(),
            len(self.forwarder).to_bytes(2, "big"),
            self.forwarder,
            len(self.token).to_bytes(2, "big"),
            self.token,
        ])

    @classmethod
    def from_bytes(cls, data: bytes) -> "ResourceWithLabel":
        resource = Resource.from_bytes(data[:RESOURCE_BYTES_SIZE])
        forwarder, offset = _read_prefixed(data, RESOURCE_BYTES_SIZE)
        token, offset = _read_prefixed(data, offset)
        if offset != len(data):
            raise InvalidRequestError("trailing bytes after resource label")
        return cls(resource=resource, forwarder=forwarder, token=token)


def _read_prefixed(data: bytes, offset: int) -> Tuple[bytes, int]:
    if offset + 2 > len(data):
        raise InvalidRequestError("truncated resource label encoding")
    size = int.from_bytes(data[offset:offset + 2], "big")
    end = offset + 2 + size
    if end > len(data):
        raise InvalidRequestError("truncated resource label encoding")
    return data[offset + 2:end], end
