"""End-to-end tests for the transaction shapes.

Tests cover:
- mint, transfer, split, burn and migrate through generate_transaction
- Merkle paths resolved from the indexer for persistent inputs
- Receiver-side decryption of created resources
- Quantity conservation per resource kind
- Binding failures caught before any proof is generated
- Request shape, permit and authorization errors
"""

import logging
from collections import Counter
from dataclasses import replace

import pytest

from resource_tx.errors import (
    BindingError,
    InvalidRequestError,
    MissingAuxiliaryDataError,
    NullifierKeyMismatchError,
)
from resource_tx.evm import ForwarderCalldata, ForwarderCallType, decode_call_type, split_words
from resource_tx.keys import Ciphertext
from resource_tx.merkle import MerkleTree
from resource_tx.observability import correlation_id_var
from resource_tx.parameters import (
    ConsumedResource,
    EphemeralUnwrapData,
    Parameters,
    PersistentConsumedData,
)
from resource_tx.proving import MockProvingBackend
from resource_tx.resource import (
    LEGACY_TOKEN_TRANSFER_LOGIC_REF,
    Resource,
    ResourceWithLabel,
    label_ref,
)
from resource_tx.transactions import Recipient, burn, migrate, mint, split, transfer

from conftest import FORWARDER, LEGACY_FORWARDER, TOKEN


class SpyBackend(MockProvingBackend):
    """Counts proving calls."""

    def __init__(self):
        self.prove_calls = 0

    def prove_compliance(self, witness):
        self.prove_calls += 1
        return super().prove_compliance(witness)

    def prove_logic(self, witness):
        self.prove_calls += 1
        return super().prove_logic(witness)


def _conserved(params):
    consumed = Counter()
    created = Counter()
    for item in params.consumed:
        consumed[item.resource.kind()] += item.resource.quantity
    for item in params.created:
        created[item.resource.kind()] += item.resource.quantity
    return +consumed == +created


def _forwarder_input(transaction, consumed):
    for proof in transaction.iter_logic_proofs():
        if proof.instance.is_consumed == consumed and proof.instance.app_data.external_payload:
            (blob,) = proof.instance.app_data.external_payload
            return ForwarderCalldata.decode(blob.blob).input
    raise AssertionError("no forwarder call in transaction")


@pytest.fixture
def minted(alice, context, backend, ledger, permit_signer):
    """100 tokens minted by alice and settled in the ledger."""
    params = mint(alice, context, TOKEN, 100, permit_signer)
    ledger.add(b"\x0f" * 32)
    ledger.settle(params.generate_transaction(backend, context, now=0))
    return params.created[0].resource


class TestMint:
    """Test wrapping ERC20 tokens."""

    def test_mint(self, alice, context, backend, permit_signer):
        """A mint has two tags and verifies."""
        params = mint(alice, context, TOKEN, 100, permit_signer)
        assert len(params.tags()) == 2
        assert _conserved(params)

        tx = params.generate_transaction(backend, context, now=0)
        backend.verify(tx)
        created = params.created[0].resource
        assert tx.commitments() == [created.commitment()]
        assert created.nonce == params.consumed[0].resource.nullifier(alice.nf_key)
        assert created.value_ref == alice.value_info().value_ref()

    def test_wrap_call(self, alice, context, backend, permit_signer):
        """The consumed resource carries a WRAP call bound to the action root."""
        params = mint(alice, context, TOKEN, 100, permit_signer)
        root = params.action_tree(context).root()
        forwarder_input = _forwarder_input(params.generate_transaction(backend, context, now=0), True)
        assert decode_call_type(forwarder_input) == ForwarderCallType.WRAP
        assert split_words(forwarder_input)[6] == root

    def test_expired_permit(self, alice, context, backend, permit_signer):
        """An expired permit is rejected before proving."""
        params = mint(alice, context, TOKEN, 100, permit_signer)
        with pytest.raises(InvalidRequestError) as exc:
            params.generate_transaction(backend, context, now=5_000_000_000)
        assert exc.value.context["field"] == "permit_deadline"

    def test_zero_quantity(self, alice, context, permit_signer):
        """Mint quantities must be positive."""
        with pytest.raises(InvalidRequestError):
            mint(alice, context, TOKEN, 0, permit_signer)

    def test_correlation_id_restored(self, alice, context, backend, permit_signer):
        """generate_transaction scopes its correlation id to the call."""
        mint(alice, context, TOKEN, 1, permit_signer).generate_transaction(backend, context, now=0)
        assert correlation_id_var.get() == ""

    def test_workers_from_environment(self, alice, context, backend, permit_signer, monkeypatch, caplog):
        """Without an explicit worker count the prover pool follows RESOURCE_TX_PROVER_WORKERS."""
        monkeypatch.setenv("RESOURCE_TX_PROVER_WORKERS", "1")
        caplog.set_level(logging.INFO, logger="resource_tx")
        mint(alice, context, TOKEN, 1, permit_signer).generate_transaction(backend, context, now=0)

        (record,) = [r for r in caplog.records if r.getMessage() == "proving started"]
        assert record.context["workers"] == 1


class TestTransfer:
    """Test whole-resource transfers."""

    def test_transfer(self, alice, bob, context, backend, ledger, resolver, minted):
        """The receiver can decrypt the created resource; the root is the ledger's."""
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        assert _conserved(params)
        tx = params.generate_transaction(backend, context, resolver=resolver)

        unit = tx.actions[0].compliance_units[0]
        assert unit.instance.consumed_nullifier == minted.nullifier(alice.nf_key)
        assert unit.instance.consumed_commitment_tree_root == ledger.tree().root()
        assert ledger.requests == [f"/generate_proof/0x{minted.commitment().hex()}"]

        created = params.created[0].resource
        (proof,) = [p for p in tx.iter_logic_proofs() if not p.instance.is_consumed]
        (payload,) = proof.instance.app_data.resource_payload
        plaintext = ResourceWithLabel.from_bytes(Ciphertext(payload.blob).decrypt(bob.encryption_sk))
        assert plaintext.resource == created
        assert plaintext.forwarder == FORWARDER
        assert plaintext.token == TOKEN
        assert created.nk_commitment == bob.nf_key.commit()

    def test_received_resource_is_spendable(self, alice, bob, context, backend, ledger, resolver, minted):
        """The receiver spends what they were sent."""
        first = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        ledger.settle(first.generate_transaction(backend, context, resolver=resolver))
        received = first.created[0].resource

        back = transfer(bob, Recipient.from_keychain(alice), context, received, TOKEN)
        backend.verify(back.generate_transaction(backend, context, resolver=resolver))

    def test_supplied_path_skips_indexer(self, alice, bob, context, backend, ledger, minted):
        """An explicit Merkle path is used without a resolver."""
        path = ledger.tree().generate_path(minted.commitment())
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN, merkle_path=path)
        backend.verify(params.generate_transaction(backend, context))

    def test_missing_path_without_resolver(self, alice, bob, context, backend, minted):
        """Persistent inputs need a path or a resolver."""
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        with pytest.raises(MissingAuxiliaryDataError) as exc:
            params.generate_transaction(backend, context)
        assert exc.value.field == "merkle_path"

    def test_foreign_resource(self, alice, bob, context, minted):
        """Only the owner's nullifier key can spend a resource."""
        with pytest.raises(NullifierKeyMismatchError):
            transfer(bob, Recipient.from_keychain(alice), context, minted, TOKEN)

    def test_unsigned_transfer(self, alice, bob, context, backend, resolver, minted):
        """A persistent input without authorization is rejected before proving."""
        signed = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        unsigned = replace(
            signed,
            consumed=(replace(signed.consumed[0], data=PersistentConsumedData(alice.value_info())),),
        )
        spy = SpyBackend()
        with pytest.raises(MissingAuxiliaryDataError) as exc:
            unsigned.generate_transaction(spy, context, resolver=resolver)
        assert exc.value.field == "auth_sig"
        assert spy.prove_calls == 0


class TestSplit:
    """Test partial transfers."""

    def test_split(self, alice, bob, context, backend, resolver, minted):
        """A split has four tags, two compliance units and four logic proofs."""
        params = split(alice, Recipient.from_keychain(bob), context, minted, TOKEN, 30)
        assert len(params.tags()) == 4
        assert _conserved(params)

        tx = params.generate_transaction(backend, context, resolver=resolver)
        action = tx.actions[0]
        assert len(action.compliance_units) == 2
        assert len(action.logic_proofs) == 4

        sent, remainder = (item.resource for item in params.created)
        assert sent.quantity == 30
        assert sent.value_ref == bob.value_info().value_ref()
        assert remainder.quantity == 70
        assert remainder.value_ref == alice.value_info().value_ref()
        assert params.consumed[1].resource.is_padding

    def test_nonces_chain_from_nullifiers(self, alice, bob, context, minted):
        """Each created resource's nonce is its paired consumed nullifier."""
        params = split(alice, Recipient.from_keychain(bob), context, minted, TOKEN, 30)
        tags = params.tags()
        assert params.created[0].resource.nonce == tags[0]
        assert params.created[1].resource.nonce == tags[2]

    @pytest.mark.parametrize("amount", [0, 100, 101])
    def test_amount_out_of_range(self, alice, bob, context, minted, amount):
        """The split amount must be strictly between zero and the quantity."""
        with pytest.raises(InvalidRequestError):
            split(alice, Recipient.from_keychain(bob), context, minted, TOKEN, amount)


class TestBurn:
    """Test unwrapping back to ERC20."""

    def test_burn(self, alice, context, backend, resolver, minted):
        """The created ephemeral resource releases the full quantity to the owner's address."""
        params = burn(alice, context, minted, TOKEN)
        assert _conserved(params)
        tx = params.generate_transaction(backend, context, resolver=resolver)

        forwarder_input = _forwarder_input(tx, False)
        assert decode_call_type(forwarder_input) == ForwarderCallType.UNWRAP
        words = split_words(forwarder_input)
        assert words[2][12:] == alice.evm_address
        assert int.from_bytes(words[3], "big") == 100

    def test_burn_to_other_address(self, alice, bob, context, backend, resolver, minted):
        """Burned tokens may be released to another address."""
        params = burn(alice, context, minted, TOKEN, user_addr=bob.evm_address)
        tx = params.generate_transaction(backend, context, resolver=resolver)
        assert split_words(_forwarder_input(tx, False))[2][12:] == bob.evm_address


class TestMigrate:
    """Test migration from the previous protocol version."""

    @pytest.fixture
    def legacy(self, alice):
        resource = Resource.create(
            logic_ref=LEGACY_TOKEN_TRANSFER_LOGIC_REF,
            label_ref=label_ref(LEGACY_FORWARDER, TOKEN),
            quantity=40,
            value_ref=alice.value_info().value_ref(),
            is_ephemeral=False,
            nullifier_key=alice.nf_key,
        )
        tree = MerkleTree([b"\x0e" * 32, resource.commitment()], 8)
        return resource, tree

    def test_migrate(self, alice, context, backend, legacy):
        """The legacy resource is nullified via the migrate call and re-created."""
        resource, tree = legacy
        params = migrate(alice, context, resource, tree.generate_path(resource.commitment()), TOKEN)
        assert len(params.tags()) == 2

        tx = params.generate_transaction(backend, context)
        created = params.created[0].resource
        assert created.quantity == 40
        assert created.logic_ref == context.logic_ref
        assert created.label_ref == label_ref(FORWARDER, TOKEN)

        words = split_words(_forwarder_input(tx, True))
        assert decode_call_type(_forwarder_input(tx, True)) == ForwarderCallType.MIGRATE
        assert words[3] == resource.nullifier(alice.nf_key)
        assert words[4] == tree.root()

    def test_migrate_requires_owner(self, alice, bob, context, legacy):
        """Only the legacy owner can migrate."""
        resource, tree = legacy
        with pytest.raises(BindingError):
            params = migrate(bob, context, resource, tree.generate_path(resource.commitment()), TOKEN)
            params.validate_logic_witnesses(
                params.logic_witnesses(params.action_tree(context).root(), context)
            )


class TestRejectedBeforeProving:
    """Test that bad requests never reach the prover."""

    def test_forged_label_ref(self, alice, bob, context, resolver, minted):
        """A created resource with a forged label_ref fails before any proof."""
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        item = params.created[0]
        forged = replace(item, resource=replace(item.resource, label_ref=label_ref(FORWARDER, b"\x66" * 20)))
        params = replace(params, created=(forged,)).sign(alice.auth_signing_key, context)

        spy = SpyBackend()
        with pytest.raises(BindingError) as exc:
            params.generate_transaction(spy, context, resolver=resolver)
        assert exc.value.field == "label_ref"
        assert exc.value.context["role"] == "created"
        assert exc.value.context["index"] == 0
        assert exc.value.context["logic_index"] == 1
        assert spy.prove_calls == 0

    def test_forged_value_ref(self, alice, bob, context, resolver, minted):
        """A created resource whose value_ref is not the receiver's fails before proving."""
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        item = params.created[0]
        forged = replace(item, resource=replace(item.resource, value_ref=alice.value_info().value_ref()))
        params = replace(params, created=(forged,)).sign(alice.auth_signing_key, context)

        spy = SpyBackend()
        with pytest.raises(BindingError) as exc:
            params.generate_transaction(spy, context, resolver=resolver)
        assert exc.value.field == "value_ref"
        assert spy.prove_calls == 0

    def test_count_mismatch(self, alice, bob, context, backend, minted):
        """Consumed and created counts must match."""
        params = split(alice, Recipient.from_keychain(bob), context, minted, TOKEN, 30)
        with pytest.raises(InvalidRequestError):
            replace(params, created=params.created[:1]).generate_transaction(backend, context)

    def test_empty_request(self, backend, context):
        """An empty request is rejected."""
        with pytest.raises(InvalidRequestError):
            Parameters((), ()).generate_transaction(backend, context)

    def test_wrong_witness_data_kind(self, alice, context, backend, minted):
        """Ephemeral witness data on a persistent resource is rejected."""
        params = burn(alice, context, minted, TOKEN)
        bad = Parameters(
            consumed=(ConsumedResource(minted, alice.nf_key, EphemeralUnwrapData(TOKEN, alice.evm_address)),),
            created=params.created,
        )
        with pytest.raises(InvalidRequestError) as exc:
            bad.generate_transaction(backend, context)
        assert exc.value.context["role"] == "consumed"

    def test_created_data_used_for_consumed(self, alice, bob, context, backend, minted):
        """Created-only witness data cannot describe a consumed resource."""
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        bad = replace(
            params,
            consumed=(replace(params.consumed[0], data=params.created[0].data),),
        )
        with pytest.raises(InvalidRequestError):
            bad.generate_transaction(backend, context)

    def test_created_resource_under_foreign_logic(self, alice, bob, context, backend, minted):
        """Token data requires the token transfer logic."""
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        item = params.created[0]
        foreign = replace(item, resource=replace(item.resource, logic_ref=b"\x77" * 32))
        with pytest.raises(BindingError) as exc:
            replace(params, created=(foreign,)).generate_transaction(backend, context)
        assert exc.value.field == "logic_ref"


class TestCreatedResourceKinds:
    """Test that resource kinds never mix across a transfer."""

    def test_kinds_preserved(self, alice, bob, context, minted):
        """Created resources share the kind of the consumed resource."""
        params = transfer(alice, Recipient.from_keychain(bob), context, minted, TOKEN)
        assert params.created[0].resource.kind() == minted.kind()
