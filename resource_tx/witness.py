"""
Logic Witnesses and the Token Transfer Validity Predicate

A logic witness is the private input to one logic proof. It binds one resource
to the action tree root and to whatever auxiliary data its predicate branch
needs. `constrain()` evaluates the predicate exactly as the logic circuit does
and returns the public LogicInstance the proof will attest to.

Witness kinds form a closed set over (direction × persistence), with an inner
forwarder call for ephemeral resources:

    ┌──────────────────────────────┬──────────────────────────┬──────────────────────────┐
    │ Witness                      │ Checks                   │ Payload                  │
    ├──────────────────────────────┼──────────────────────────┼──────────────────────────┤
    │ ConsumedEphemeralWitness     │ label_ref, value_ref     │ external: forwarder call │
    │   WrapCall                   │   + permit present       │   wrap (pull ERC20)      │
    │   MigrateCall                │   + legacy resource      │   migrate (nf, old root) │
    │ CreatedEphemeralWitness      │ label_ref, value_ref     │ external: forwarder call │
    │   UnwrapCall                 │                          │   unwrap (release ERC20) │
    │ ConsumedPersistentWitness    │ value_ref, auth sig      │ none                     │
    │ CreatedPersistentWitness     │ label_ref, value_ref     │ discovery + resource     │
    │                              │                          │ ciphertexts              │
    │ TrivialWitness               │ default nullifier key    │ none                     │
    └──────────────────────────────┴──────────────────────────┴──────────────────────────┘

Failure policy:
    A field that disagrees with the value recomputed from plaintext inputs raises
    BindingError. An absent field the branch needs raises
    MissingAuxiliaryDataError. A call type used in the wrong direction raises
    InvalidRequestError.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple, Union

from resource_tx.errors import (
    BindingError,
    InvalidRequestError,
    InvalidSignatureError,
    MissingAuxiliaryDataError,
    ResourceTxError,
)
from resource_tx.evm import (
    ForwarderCalldata,
    PermitInfo,
    PermitTransferFrom,
    encode_migrate_input,
    encode_unwrap_input,
    encode_wrap_input,
)
from resource_tx.keys import (
    AUTH_SIGNATURE_DOMAIN,
    ENCRYPTION_NONCE_SIZE,
    AuthorizationSignature,
    Ciphertext,
    EncryptionPublicKey,
    EncryptionSecretKey,
    ValueInfo,
)
from resource_tx.merkle import MerklePath
from resource_tx.resource import (
    NullifierKey,
    Resource,
    ResourceWithLabel,
    label_ref,
    require_bytes,
    value_ref_from_user_address,
)


# =============================================================================
# LOGIC INSTANCE
# =============================================================================

class DeletionCriterion(IntEnum):
    """How long a payload blob must be retained by the ledger."""
    IMMEDIATELY = 0
    NEVER = 1


@dataclass(frozen=True)
class ExpirableBlob:
    blob: bytes
    deletion_criterion: DeletionCriterion

    def to_dict(self) -> Dict[str, Any]:
        return {"blob": self.blob.hex(), "deletion_criterion": int(self.deletion_criterion)}


@dataclass(frozen=True)
class AppData:
    """Payloads published alongside a logic proof."""
    resource_payload: Tuple[ExpirableBlob, ...] = ()
    discovery_payload: Tuple[ExpirableBlob, ...] = ()
    external_payload: Tuple[ExpirableBlob, ...] = ()
    application_payload: Tuple[ExpirableBlob, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_payload": [b.to_dict() for b in self.resource_payload],
            "discovery_payload": [b.to_dict() for b in self.discovery_payload],
            "external_payload": [b.to_dict() for b in self.external_payload],
            "application_payload": [b.to_dict() for b in self.application_payload],
        }


@dataclass(frozen=True)
class LogicInstance:
    """Public output of a logic circuit."""
    tag: bytes
    is_consumed: bool
    root: bytes
    app_data: AppData = field(default_factory=AppData)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag.hex(),
            "is_consumed": self.is_consumed,
            "root": self.root.hex(),
            "app_data": self.app_data.to_dict(),
        }

    @property
    def digest(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


# =============================================================================
# AUXILIARY DATA
# =============================================================================

@dataclass(frozen=True)
class LabelInfo:
    """Plaintext inputs of label_ref."""
    forwarder_addr: bytes
    token_addr: bytes

    def label_ref(self) -> bytes:
        return label_ref(self.forwarder_addr, self.token_addr)


@dataclass(frozen=True)
class EncryptionInfo:
    """
    Sender-side encryption material for a created persistent resource.

    The discovery ciphertext is prepared independently, under a key unrelated
    to the resource ciphertext, so the receiver can find their resources with
    the discovery key alone.
    """
    sender_sk: EncryptionSecretKey
    encryption_nonce: bytes
    discovery_ciphertext: bytes

    def __post_init__(self):
        require_bytes(self.encryption_nonce, ENCRYPTION_NONCE_SIZE, "encryption_nonce")

    @classmethod
    def create(cls, discovery_pk: EncryptionPublicKey) -> "EncryptionInfo":
        discovery = Ciphertext.encrypt(b"\x00", discovery_pk)
        return cls(
            sender_sk=EncryptionSecretKey(),
            encryption_nonce=secrets.token_bytes(ENCRYPTION_NONCE_SIZE),
            discovery_ciphertext=discovery.data,
        )


@dataclass(frozen=True)
class MigrateInfo:
    """A settled resource of the previous protocol version being migrated."""
    resource: Resource
    nf_key: NullifierKey
    path: MerklePath
    auth_sig: Optional[AuthorizationSignature]
    value_info: ValueInfo
    forwarder_addr: bytes


@dataclass(frozen=True)
class WrapCall:
    user_addr: bytes
    permit: Optional[PermitInfo] = None


@dataclass(frozen=True)
class UnwrapCall:
    user_addr: bytes


@dataclass(frozen=True)
class MigrateCall:
    user_addr: bytes
    migrate_info: Optional[MigrateInfo] = None


ForwarderCall = Union[WrapCall, UnwrapCall, MigrateCall]


def _external_payload(forwarder_addr: bytes, forwarder_input: bytes) -> Tuple[ExpirableBlob, ...]:
    calldata = ForwarderCalldata(forwarder_addr, forwarder_input)
    return (ExpirableBlob(calldata.encode(), DeletionCriterion.IMMEDIATELY),)


# =============================================================================
# WITNESSES
# =============================================================================

class _LogicWitness:
    """Shared behaviour of every witness kind."""

    resource: Resource
    action_tree_root: bytes
    is_consumed: bool

    @property
    def role(self) -> str:
        return "consumed" if self.is_consumed else "created"

    @property
    def logic_ref(self) -> bytes:
        return self.resource.logic_ref

    def _nf_key(self) -> Optional[NullifierKey]:
        return getattr(self, "nf_key", None)

    def tag(self) -> bytes:
        commitment = self.resource.commitment()
        if not self.is_consumed:
            return commitment
        nf_key = self._nf_key()
        if nf_key is None:
            raise MissingAuxiliaryDataError("nf_key", role=self.role)
        return self.resource.nullifier_from_commitment(nf_key, commitment)

    def constrain(self) -> LogicInstance:
        """Evaluate the predicate; raises a ResourceTxError enriched with role and kind."""
        try:
            tag = self.tag()
            app_data = self._check()
        except ResourceTxError as exc:
            raise exc.with_context(role=self.role, witness=type(self).__name__)
        return LogicInstance(
            tag=tag,
            is_consumed=self.is_consumed,
            root=self.action_tree_root,
            app_data=app_data,
        )

    def _check(self) -> AppData:
        raise NotImplementedError

    def _check_ephemeral_binding(self, label_info: Optional[LabelInfo], call: Optional[ForwarderCall]) -> None:
        if label_info is None:
            raise MissingAuxiliaryDataError("label_info")
        if call is None:
            raise MissingAuxiliaryDataError("forwarder_info")
        if self.resource.label_ref != label_info.label_ref():
            raise BindingError("label_ref")
        if self.resource.value_ref != value_ref_from_user_address(call.user_addr):
            raise BindingError("value_ref")


@dataclass(frozen=True)
class ConsumedEphemeralWitness(_LogicWitness):
    """Ephemeral resource consumed by a wrap (mint) or a migration."""
    resource: Resource
    action_tree_root: bytes
    nf_key: Optional[NullifierKey]
    label_info: Optional[LabelInfo]
    call: Optional[ForwarderCall]

    is_consumed = True

    def _check(self) -> AppData:
        self._check_ephemeral_binding(self.label_info, self.call)
        call = self.call
        if isinstance(call, WrapCall):
            forwarder_input = self._wrap_input(call)
        elif isinstance(call, MigrateCall):
            forwarder_input = self._migrate_input(call)
        elif isinstance(call, UnwrapCall):
            raise InvalidRequestError("Unwrap must be a created resource", field="call_type")
        else:
            raise InvalidRequestError(f"Unknown forwarder call {type(call).__name__}", field="call_type")
        return AppData(external_payload=_external_payload(self.label_info.forwarder_addr, forwarder_input))

    def _wrap_input(self, call: WrapCall) -> bytes:
        if call.permit is None:
            raise MissingAuxiliaryDataError("permit_info")
        permit = PermitTransferFrom(
            token=self.label_info.token_addr,
            amount=self.resource.quantity,
            nonce=call.permit.nonce,
            deadline=call.permit.deadline,
        )
        return encode_wrap_input(call.user_addr, permit, self.action_tree_root, call.permit.signature)

    def _migrate_input(self, call: MigrateCall) -> bytes:
        info = call.migrate_info
        if info is None:
            raise MissingAuxiliaryDataError("migrate_info")
        old = info.resource
        old_cm = old.commitment()
        old_root = info.path.root(old_cm)

        if old.is_ephemeral:
            raise BindingError("migrate_resource.is_ephemeral", "Migrated resource must be persistent")
        if old.value_ref != info.value_info.value_ref():
            raise BindingError("migrate_resource.value_ref")
        if info.auth_sig is None:
            raise MissingAuxiliaryDataError("migrate_auth_sig")
        if not info.value_info.auth_pk.verify(AUTH_SIGNATURE_DOMAIN, self.action_tree_root, info.auth_sig):
            raise InvalidSignatureError("migrate_auth_sig")
        if old.quantity != self.resource.quantity:
            raise BindingError("migrate_resource.quantity", "Migrated quantity differs")
        old_nf = old.nullifier_from_commitment(info.nf_key, old_cm)
        if old.label_ref != label_ref(info.forwarder_addr, self.label_info.token_addr):
            raise BindingError("migrate_resource.label_ref")

        return encode_migrate_input(
            self.label_info.token_addr,
            self.resource.quantity,
            old_nf,
            old_root,
            old.logic_ref,
            info.forwarder_addr,
        )


@dataclass(frozen=True)
class CreatedEphemeralWitness(_LogicWitness):
    """Ephemeral resource created by an unwrap (burn)."""
    resource: Resource
    action_tree_root: bytes
    label_info: Optional[LabelInfo]
    call: Optional[ForwarderCall]

    is_consumed = False

    def _check(self) -> AppData:
        self._check_ephemeral_binding(self.label_info, self.call)
        if not isinstance(self.call, UnwrapCall):
            raise InvalidRequestError(
                f"{type(self.call).__name__} must be a consumed resource", field="call_type"
            )
        forwarder_input = encode_unwrap_input(
            self.label_info.token_addr, self.call.user_addr, self.resource.quantity
        )
        return AppData(external_payload=_external_payload(self.label_info.forwarder_addr, forwarder_input))


@dataclass(frozen=True)
class ConsumedPersistentWitness(_LogicWitness):
    """Persistent resource spent by its owner's authorization signature."""
    resource: Resource
    action_tree_root: bytes
    nf_key: Optional[NullifierKey]
    auth_sig: Optional[AuthorizationSignature]
    value_info: Optional[ValueInfo]

    is_consumed = True

    def _check(self) -> AppData:
        if self.auth_sig is None:
            raise MissingAuxiliaryDataError("auth_sig")
        if self.value_info is None:
            raise MissingAuxiliaryDataError("value_info")
        if self.resource.value_ref != self.value_info.value_ref():
            raise BindingError("value_ref")
        if not self.value_info.auth_pk.verify(AUTH_SIGNATURE_DOMAIN, self.action_tree_root, self.auth_sig):
            raise InvalidSignatureError("auth_sig")
        return AppData()


@dataclass(frozen=True)
class CreatedPersistentWitness(_LogicWitness):
    """Persistent resource created for a receiver, encrypted to them."""
    resource: Resource
    action_tree_root: bytes
    label_info: Optional[LabelInfo]
    value_info: Optional[ValueInfo]
    encryption_info: Optional[EncryptionInfo]

    is_consumed = False

    def _check(self) -> AppData:
        if self.label_info is None:
            raise MissingAuxiliaryDataError("label_info")
        if self.resource.label_ref != self.label_info.label_ref():
            raise BindingError("label_ref")
        if self.value_info is None:
            raise MissingAuxiliaryDataError("value_info")
        if self.resource.value_ref != self.value_info.value_ref():
            raise BindingError("value_ref")
        if self.encryption_info is None:
            raise MissingAuxiliaryDataError("encryption_info")

        plaintext = ResourceWithLabel(
            self.resource, self.label_info.forwarder_addr, self.label_info.token_addr
        ).to_bytes()
        ciphertext = Ciphertext.encrypt_with_nonce(
            plaintext,
            self.value_info.encryption_pk,
            self.encryption_info.sender_sk,
            self.encryption_info.encryption_nonce,
        )
        return AppData(
            resource_payload=(ExpirableBlob(ciphertext.data, DeletionCriterion.NEVER),),
            discovery_payload=(
                ExpirableBlob(self.encryption_info.discovery_ciphertext, DeletionCriterion.NEVER),
            ),
        )


@dataclass(frozen=True)
class TrivialWitness(_LogicWitness):
    """Padding resource; consumed ones are nullified with the default key."""
    resource: Resource
    action_tree_root: bytes
    is_consumed: bool

    @property
    def nf_key(self) -> NullifierKey:
        return NullifierKey.default()

    def _check(self) -> AppData:
        return AppData()


LogicWitness = Union[
    ConsumedEphemeralWitness,
    CreatedEphemeralWitness,
    ConsumedPersistentWitness,
    CreatedPersistentWitness,
    TrivialWitness,
]
