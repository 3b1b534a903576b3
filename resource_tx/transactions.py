"""
Transaction Shapes

Builders for the five supported transaction shapes. Each returns Parameters
ready for generate_transaction(); every consumed persistent resource is already
authorized by a signature over the action tree root.

    ┌──────────┬───────────────────────────────┬───────────────────────────────┐
    │ Shape    │ Consumed                      │ Created                       │
    ├──────────┼───────────────────────────────┼───────────────────────────────┤
    │ mint     │ ephemeral (wrap, Permit2)     │ persistent for the minter     │
    │ transfer │ persistent                    │ persistent for the receiver   │
    │ split    │ persistent                    │ persistent for the receiver   │
    │          │ padding                       │ persistent remainder (sender) │
    │ burn     │ persistent                    │ ephemeral (unwrap)            │
    │ migrate  │ ephemeral (migrate, legacy)   │ persistent for the owner      │
    └──────────┴───────────────────────────────┴───────────────────────────────┘

Created resources take the nullifier of their paired consumed resource as
nonce, which makes every created commitment unique.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional

from resource_tx.config import TransferContext
from resource_tx.errors import InvalidRequestError
from resource_tx.evm import PermitInfo
from resource_tx.keys import EncryptionPublicKey, Keychain, ValueInfo
from resource_tx.merkle import MerklePath
from resource_tx.parameters import (
    ConsumedResource,
    CreatedResource,
    EphemeralMigrateData,
    EphemeralUnwrapData,
    EphemeralWrapData,
    Parameters,
    PersistentConsumedData,
    PersistentCreatedData,
    TrivialData,
)
from resource_tx.resource import (
    NullifierKey,
    Resource,
    label_ref,
    require_bytes,
    value_ref_from_user_address,
)
from resource_tx.witness import MigrateInfo

# Produces the Permit2 authorization for a wrap, given the action tree root it
# must be bound to.
PermitSigner = Callable[[bytes], PermitInfo]


@dataclass(frozen=True)
class Recipient:
    """Public material needed to create a persistent resource for someone."""
    value_info: ValueInfo
    discovery_pk: EncryptionPublicKey
    nk_commitment: bytes

    def __post_init__(self):
        require_bytes(self.nk_commitment, 32, "nk_commitment")

    @classmethod
    def from_keychain(cls, keychain: Keychain) -> "Recipient":
        return cls(keychain.value_info(), keychain.discovery_pk, keychain.nf_key.commit())


def _persistent_for(
    recipient: Recipient,
    context: TransferContext,
    token_addr: bytes,
    quantity: int,
    nonce: bytes,
) -> Resource:
    return Resource(
        logic_ref=context.logic_ref,
        label_ref=label_ref(context.forwarder_address, token_addr),
        quantity=quantity,
        value_ref=recipient.value_info.value_ref(),
        is_ephemeral=False,
        nonce=nonce,
        nk_commitment=recipient.nk_commitment,
    )


def _created_data(recipient: Recipient, token_addr: bytes) -> PersistentCreatedData:
    return PersistentCreatedData(token_addr, recipient.value_info, discovery_pk=recipient.discovery_pk)


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequestError(f"quantity must be a positive integer, got {quantity!r}", field="quantity")


# =============================================================================
# SHAPES
# =============================================================================

def mint(
    keychain: Keychain,
    context: TransferContext,
    token_addr: bytes,
    quantity: int,
    permit_signer: PermitSigner,
) -> Parameters:
    """Wrap `quantity` ERC20 tokens of `keychain.evm_address` into a persistent resource."""
    _check_quantity(quantity)
    consumed = Resource.create(
        logic_ref=context.logic_ref,
        label_ref=label_ref(context.forwarder_address, token_addr),
        quantity=quantity,
        value_ref=value_ref_from_user_address(keychain.evm_address),
        is_ephemeral=True,
        nullifier_key=keychain.nf_key,
    )
    minter = Recipient.from_keychain(keychain)
    created = _persistent_for(minter, context, token_addr, quantity, consumed.nullifier(keychain.nf_key))
    wrap = EphemeralWrapData(token_addr, keychain.evm_address)
    params = Parameters(
        consumed=(ConsumedResource(consumed, keychain.nf_key, wrap),),
        created=(CreatedResource(created, _created_data(minter, token_addr)),),
    )

    permit = permit_signer(params.action_tree(context).root())
    return replace(
        params,
        consumed=(ConsumedResource(consumed, keychain.nf_key, replace(wrap, permit=permit)),),
    )


def transfer(
    sender: Keychain,
    receiver: Recipient,
    context: TransferContext,
    to_send: Resource,
    token_addr: bytes,
    merkle_path: Optional[MerklePath] = None,
) -> Parameters:
    """Send a whole persistent resource to `receiver`."""
    created = _persistent_for(
        receiver, context, token_addr, to_send.quantity, to_send.nullifier(sender.nf_key)
    )
    params = Parameters(
        consumed=(
            ConsumedResource(
                to_send, sender.nf_key, PersistentConsumedData(sender.value_info()), merkle_path
            ),
        ),
        created=(CreatedResource(created, _created_data(receiver, token_addr)),),
    )
    return params.sign(sender.auth_signing_key, context)


def split(
    sender: Keychain,
    receiver: Recipient,
    context: TransferContext,
    to_split: Resource,
    token_addr: bytes,
    amount: int,
    merkle_path: Optional[MerklePath] = None,
) -> Parameters:
    """
    Send `amount` of a persistent resource, keeping the remainder.

    The second compliance unit pairs a zero-quantity padding resource with the
    sender's remainder, giving four tags: to-split, created, padding, remainder.
    """
    _check_quantity(amount)
    if amount >= to_split.quantity:
        raise InvalidRequestError(
            "split amount must be less than the resource quantity",
            field="quantity",
            amount=amount,
            available=to_split.quantity,
        )

    padding = Resource.padding()
    default_key = NullifierKey.default()
    created = _persistent_for(
        receiver, context, token_addr, amount, to_split.nullifier(sender.nf_key)
    )
    sender_recipient = Recipient.from_keychain(sender)
    remainder = _persistent_for(
        sender_recipient,
        context,
        token_addr,
        to_split.quantity - amount,
        padding.nullifier(default_key),
    )

    params = Parameters(
        consumed=(
            ConsumedResource(
                to_split, sender.nf_key, PersistentConsumedData(sender.value_info()), merkle_path
            ),
            ConsumedResource(padding, default_key, TrivialData()),
        ),
        created=(
            CreatedResource(created, _created_data(receiver, token_addr)),
            CreatedResource(remainder, _created_data(sender_recipient, token_addr)),
        ),
    )
    return params.sign(sender.auth_signing_key, context)


def burn(
    owner: Keychain,
    context: TransferContext,
    to_burn: Resource,
    token_addr: bytes,
    user_addr: Optional[bytes] = None,
    merkle_path: Optional[MerklePath] = None,
) -> Parameters:
    """Unwrap a persistent resource back into ERC20 tokens sent to `user_addr`."""
    user_addr = user_addr if user_addr is not None else owner.evm_address
    created = Resource.create(
        logic_ref=context.logic_ref,
        label_ref=label_ref(context.forwarder_address, token_addr),
        quantity=to_burn.quantity,
        value_ref=value_ref_from_user_address(user_addr),
        is_ephemeral=True,
        nullifier_key=owner.nf_key,
        nonce=to_burn.nullifier(owner.nf_key),
    )
    params = Parameters(
        consumed=(
            ConsumedResource(
                to_burn, owner.nf_key, PersistentConsumedData(owner.value_info()), merkle_path
            ),
        ),
        created=(CreatedResource(created, EphemeralUnwrapData(token_addr, user_addr)),),
    )
    return params.sign(owner.auth_signing_key, context)


def migrate(
    owner: Keychain,
    context: TransferContext,
    legacy_resource: Resource,
    legacy_path: MerklePath,
    token_addr: bytes,
) -> Parameters:
    """
    Move a resource settled under the previous protocol version to the current one.

    The legacy resource is not part of the action; it is nullified through the
    migrate call of the consumed ephemeral resource and proven against the
    legacy commitment tree with `legacy_path`.
    """
    consumed = Resource.create(
        logic_ref=context.logic_ref,
        label_ref=label_ref(context.forwarder_address, token_addr),
        quantity=legacy_resource.quantity,
        value_ref=value_ref_from_user_address(owner.evm_address),
        is_ephemeral=True,
        nullifier_key=owner.nf_key,
    )
    holder = Recipient.from_keychain(owner)
    created = _persistent_for(
        holder, context, token_addr, legacy_resource.quantity, consumed.nullifier(owner.nf_key)
    )
    info = MigrateInfo(
        resource=legacy_resource,
        nf_key=owner.nf_key,
        path=legacy_path,
        auth_sig=None,
        value_info=owner.value_info(),
        forwarder_addr=context.legacy_forwarder_address,
    )
    params = Parameters(
        consumed=(
            ConsumedResource(
                consumed, owner.nf_key, EphemeralMigrateData(token_addr, owner.evm_address, info)
            ),
        ),
        created=(CreatedResource(created, _created_data(holder, token_addr)),),
    )
    return params.sign(owner.auth_signing_key, context)
