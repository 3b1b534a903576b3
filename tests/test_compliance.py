"""Tests for compliance witnesses and forwarder call encoding.

Tests cover:
- Compliance instance fields and tree roots
- Delta arithmetic over the scalar field
- ABI word layout of forwarder inputs and permits
"""

import pytest

from resource_tx.compliance import (
    BLINDING_GENERATOR,
    FIELD_MODULUS,
    INITIAL_ROOT,
    ComplianceWitness,
    kind_generator,
    sum_scalars,
    value_delta,
)
from resource_tx.errors import InvalidRequestError, NullifierKeyMismatchError
from resource_tx.evm import (
    ForwarderCallType,
    ForwarderCalldata,
    PermitInfo,
    abi_encode_params,
    address_word,
    decode_call_type,
    encode_unwrap_input,
    split_words,
    uint_word,
)
from resource_tx.merkle import MerkleTree
from resource_tx.resource import TOKEN_TRANSFER_LOGIC_REF, NullifierKey, Resource, label_ref

from conftest import FORWARDER, TOKEN


def _token_resource(quantity, nf_key, is_ephemeral=False):
    return Resource.create(
        logic_ref=TOKEN_TRANSFER_LOGIC_REF,
        label_ref=label_ref(FORWARDER, TOKEN),
        quantity=quantity,
        value_ref=b"\x04" * 32,
        is_ephemeral=is_ephemeral,
        nullifier_key=nf_key,
    )


class TestComplianceWitness:
    """Test compliance constraint evaluation."""

    def test_instance_fields(self):
        """The instance exposes the consumed nullifier and created commitment."""
        nf_key = NullifierKey.random()
        consumed = _token_resource(5, nf_key, is_ephemeral=True)
        created = _token_resource(5, NullifierKey.random())

        instance = ComplianceWitness.from_resources(consumed, nf_key, created).constrain()
        assert instance.consumed_nullifier == consumed.nullifier(nf_key)
        assert instance.created_commitment == created.commitment()
        assert instance.tags == (consumed.nullifier(nf_key), created.commitment())
        assert instance.consumed_logic_ref == TOKEN_TRANSFER_LOGIC_REF

    def test_ephemeral_uses_initial_root(self):
        """Ephemeral resources prove against the initial root."""
        nf_key = NullifierKey.random()
        consumed = _token_resource(1, nf_key, is_ephemeral=True)
        witness = ComplianceWitness.from_resources(consumed, nf_key, Resource.padding())
        assert witness.constrain().consumed_commitment_tree_root == INITIAL_ROOT

    def test_persistent_uses_path_root(self):
        """Persistent resources prove against the root their path computes."""
        nf_key = NullifierKey.random()
        consumed = _token_resource(3, nf_key)
        tree = MerkleTree([b"\x01" * 32, consumed.commitment()], 3)
        witness = ComplianceWitness.from_resources(
            consumed, nf_key, Resource.padding(), merkle_path=tree.generate_path(consumed.commitment())
        )
        assert witness.constrain().consumed_commitment_tree_root == tree.root()

    def test_wrong_key(self):
        """A key that does not open nk_commitment is rejected."""
        consumed = _token_resource(3, NullifierKey.random())
        witness = ComplianceWitness.from_resources(consumed, NullifierKey.random(), Resource.padding())
        with pytest.raises(NullifierKeyMismatchError):
            witness.constrain()

    def test_digest_is_stable(self):
        """Instance digests depend only on the instance contents."""
        nf_key = NullifierKey.random()
        consumed = _token_resource(2, nf_key, is_ephemeral=True)
        witness = ComplianceWitness.from_resources(consumed, nf_key, _token_resource(2, NullifierKey.random()))
        assert witness.constrain().digest == witness.constrain().digest


class TestDelta:
    """Test value delta arithmetic."""

    def test_equal_quantities_leave_blinding_only(self):
        """Same kind and quantity cancel to the blinding term."""
        consumed = _token_resource(7, NullifierKey.random())
        created = _token_resource(7, NullifierKey.random())
        assert value_delta(consumed, created, 3) == (3 * BLINDING_GENERATOR) % FIELD_MODULUS

    def test_different_kinds_do_not_cancel(self):
        """Resources of different kinds leave a non-blinding residue."""
        consumed = _token_resource(7, NullifierKey.random())
        other = Resource.create(
            logic_ref=TOKEN_TRANSFER_LOGIC_REF,
            label_ref=b"\x09" * 32,
            quantity=7,
            value_ref=b"\x04" * 32,
            is_ephemeral=False,
            nullifier_key=NullifierKey.random(),
        )
        assert value_delta(consumed, other, 0) != 0

    def test_kind_generator_non_zero(self):
        """Kind generators are never zero."""
        assert 0 < kind_generator(b"\x00" * 32) < FIELD_MODULUS

    def test_sum_wraps(self):
        """Sums reduce modulo the field order."""
        assert sum_scalars([FIELD_MODULUS - 1, 2]) == 1
        assert sum_scalars([]) == 0


class TestForwarderEncoding:
    """Test forwarder call data."""

    def test_unwrap_layout(self):
        """Unwrap inputs are four static words."""
        data = encode_unwrap_input(TOKEN, b"\xbb" * 20, 42)
        words = split_words(data)
        assert len(words) == 4
        assert decode_call_type(data) is ForwarderCallType.UNWRAP
        assert words[1] == address_word(TOKEN)
        assert words[2][-20:] == b"\xbb" * 20
        assert int.from_bytes(words[3], "big") == 42

    def test_calldata_round_trip(self):
        """Encoded call data decodes to the same forwarder and input."""
        calldata = ForwarderCalldata(FORWARDER, b"\x01\x02\x03")
        decoded = ForwarderCalldata.decode(calldata.encode())
        assert decoded == calldata

    def test_calldata_too_short(self):
        """Fewer than three words cannot be call data."""
        with pytest.raises(InvalidRequestError):
            ForwarderCalldata.decode(b"\x00" * 64)

    def test_uint_range(self):
        """Negative and oversized integers do not fit a word."""
        with pytest.raises(InvalidRequestError):
            uint_word(-1)
        with pytest.raises(InvalidRequestError):
            uint_word(1 << 256)

    def test_static_word_size(self):
        """Static parameters must be exactly one word."""
        with pytest.raises(InvalidRequestError):
            abi_encode_params([b"\x00" * 31])


class TestPermit:
    """Test permit data."""

    def test_expiry(self):
        """Permits expire strictly after their deadline."""
        permit = PermitInfo.from_values(1, 100, b"\x00" * 65)
        assert permit.deadline_timestamp == 100
        assert not permit.is_expired(100)
        assert permit.is_expired(101)

    def test_signature_length(self):
        """Permit signatures are 65 bytes."""
        with pytest.raises(InvalidRequestError):
            PermitInfo.from_values(1, 100, b"\x00" * 64)
