"""
Forwarder Call Encoding

Ephemeral resources are backed by ERC20 custody in the forwarder contract. Their
logic proofs emit an *external payload*: ABI-encoded call data telling the
forwarder what to do once the transaction settles.

    ┌──────────┬───────────┬──────────────────────────────────────────────────┐
    │ Call     │ Direction │ Input parameters                                 │
    ├──────────┼───────────┼──────────────────────────────────────────────────┤
    │ WRAP     │ consumed  │ (type, from, (token, amount, nonce, deadline),   │
    │          │           │  action_root, permit signature)                  │
    │ UNWRAP   │ created   │ (type, token, to, amount)                        │
    │ MIGRATE  │ consumed  │ (type, token, amount, nf, root, logic_ref,       │
    │          │           │  legacy forwarder)                               │
    └──────────┴───────────┴──────────────────────────────────────────────────┘

The permit signature is a Permit2 `permitWitnessTransferFrom` signature whose
witness is the action tree root. It is checked by Permit2 on settlement; the
witness builder only checks its shape and deadline.

Encoding follows Solidity `abi.encode` for parameter lists: static values take
one 32-byte word each, `bytes` values are referenced by offset from the head and
stored as length word + right-padded data in the tail.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Tuple, Union

from resource_tx.errors import InvalidRequestError
from resource_tx.resource import ADDRESS_SIZE, DIGEST_SIZE, require_bytes


PERMIT_SIGNATURE_SIZE = 65
WORD_SIZE = 32


class ForwarderCallType(IntEnum):
    """Forwarder operation encoded in an ephemeral resource's call data."""
    WRAP = 0
    UNWRAP = 1
    MIGRATE = 2


# =============================================================================
# ABI ENCODING
# =============================================================================

class _Dynamic:
    __slots__ = ("data",)

    def __init__(self, data: bytes):
        self.data = data


_Param = Union[bytes, _Dynamic]


def uint_word(value: int) -> bytes:
    if value < 0 or value >= 1 << 256:
        raise InvalidRequestError(f"value does not fit a uint256: {value}")
    return value.to_bytes(WORD_SIZE, "big")


def address_word(address: bytes) -> bytes:
    return bytes(WORD_SIZE - ADDRESS_SIZE) + require_bytes(address, ADDRESS_SIZE, "address")


def _pad(data: bytes) -> bytes:
    return data + bytes(-len(data) % WORD_SIZE)


def abi_encode_params(params: List[_Param]) -> bytes:
    """Encode a parameter list of static words and dynamic byte strings."""
    head_size = WORD_SIZE * len(params)
    head: List[bytes] = []
    tail: List[bytes] = []
    tail_size = 0
    for param in params:
        if isinstance(param, _Dynamic):
            head.append(uint_word(head_size + tail_size))
            chunk = uint_word(len(param.data)) + _pad(param.data)
            tail.append(chunk)
            tail_size += len(chunk)
        else:
            if len(param) != WORD_SIZE:
                raise InvalidRequestError("static ABI parameter must be one word")
            head.append(param)
    return b"".join(head + tail)


def _read_dynamic(data: bytes, head_index: int) -> bytes:
    offset = int.from_bytes(data[head_index * WORD_SIZE:(head_index + 1) * WORD_SIZE], "big")
    length = int.from_bytes(data[offset:offset + WORD_SIZE], "big")
    start = offset + WORD_SIZE
    if start + length > len(data):
        raise InvalidRequestError("truncated ABI dynamic value")
    return data[start:start + length]


# =============================================================================
# PERMITS
# =============================================================================

@dataclass(frozen=True)
class PermitInfo:
    """Permit2 signature data authorizing the forwarder to pull ERC20 funds."""
    nonce: bytes
    deadline: bytes
    signature: bytes

    def __post_init__(self):
        require_bytes(self.nonce, DIGEST_SIZE, "permit_nonce")
        require_bytes(self.deadline, DIGEST_SIZE, "permit_deadline")
        require_bytes(self.signature, PERMIT_SIGNATURE_SIZE, "permit_sig")

    @property
    def deadline_timestamp(self) -> int:
        return int.from_bytes(self.deadline, "big")

    def is_expired(self, now: int) -> bool:
        return self.deadline_timestamp < now

    @classmethod
    def from_values(cls, nonce: int, deadline: int, signature: bytes) -> "PermitInfo":
        return cls(uint_word(nonce), uint_word(deadline), signature)


@dataclass(frozen=True)
class PermitTransferFrom:
    token: bytes
    amount: int
    nonce: bytes
    deadline: bytes

    def encode_words(self) -> List[bytes]:
        return [address_word(self.token), uint_word(self.amount), self.nonce, self.deadline]


# =============================================================================
# FORWARDER INPUTS
# =============================================================================

def encode_wrap_input(
    user_addr: bytes,
    permit: PermitTransferFrom,
    action_root: bytes,
    signature: bytes,
) -> bytes:
    return abi_encode_params(
        [uint_word(ForwarderCallType.WRAP), address_word(user_addr)]
        + permit.encode_words()
        + [require_bytes(action_root, DIGEST_SIZE, "action_root"), _Dynamic(signature)]
    )


def encode_unwrap_input(token_addr: bytes, user_addr: bytes, quantity: int) -> bytes:
    return abi_encode_params([
        uint_word(ForwarderCallType.UNWRAP),
        address_word(token_addr),
        address_word(user_addr),
        uint_word(quantity),
    ])


def encode_migrate_input(
    token_addr: bytes,
    quantity: int,
    nullifier: bytes,
    root: bytes,
    logic_ref: bytes,
    forwarder_addr: bytes,
) -> bytes:
    return abi_encode_params([
        uint_word(ForwarderCallType.MIGRATE),
        address_word(token_addr),
        uint_word(quantity),
        require_bytes(nullifier, DIGEST_SIZE, "nullifier"),
        require_bytes(root, DIGEST_SIZE, "root"),
        require_bytes(logic_ref, DIGEST_SIZE, "logic_ref"),
        address_word(forwarder_addr),
    ])


def decode_call_type(forwarder_input: bytes) -> ForwarderCallType:
    return ForwarderCallType(int.from_bytes(forwarder_input[:WORD_SIZE], "big"))


@dataclass(frozen=True)
class ForwarderCalldata:
    """Call data routed to the forwarder: (untrustedForwarder, input, output)."""
    untrusted_forwarder: bytes
    input: bytes
    output: bytes = b""

    def __post_init__(self):
        require_bytes(self.untrusted_forwarder, ADDRESS_SIZE, "forwarder_addr")

    def encode(self) -> bytes:
        return abi_encode_params([
            address_word(self.untrusted_forwarder),
            _Dynamic(self.input),
            _Dynamic(self.output),
        ])

    @classmethod
    def decode(cls, data: bytes) -> "ForwarderCalldata":
        if len(data) < 3 * WORD_SIZE:
            raise InvalidRequestError("forwarder call data too short")
        return cls(
            untrusted_forwarder=data[WORD_SIZE - ADDRESS_SIZE:WORD_SIZE],
            input=_read_dynamic(data, 1),
            output=_read_dynamic(data, 2),
        )


def split_words(data: bytes) -> Tuple[bytes, ...]:
    """Split ABI data into its 32-byte words."""
    return tuple(data[i:i + WORD_SIZE] for i in range(0, len(data), WORD_SIZE))
