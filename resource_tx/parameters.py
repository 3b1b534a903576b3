"""
Transaction Parameters

A request to build one transaction: the consumed resources with their nullifier
keys, the created resources, and per-resource witness data selecting the
predicate branch each one is proven under.

Pipeline (generate_transaction):

    Parameters
        │ 1. shape check (equal, non-zero consumed/created counts)
        │ 2. tags, interleaved:  nf(c0), cm(n0), nf(c1), cm(n1), ...
        │ 3. action tree over the tags
        │ 4. logic witnesses, each validated before any proving starts
        │ 5. commitment tree paths for consumed persistent resources
        │ 6. compliance witnesses, one per (consumed[i], created[i])
        ▼
    ProofOrchestrator ──► TransactionAssembler ──► verified Transaction

Witness Data Variants:
    EphemeralWrapData        consumed ephemeral, pulls ERC20 via Permit2
    EphemeralMigrateData     consumed ephemeral, spends a legacy resource
    EphemeralUnwrapData      created ephemeral, releases ERC20
    PersistentConsumedData   consumed persistent, owner's authorization
    PersistentCreatedData    created persistent, encrypted to the receiver
    TrivialData              padding, either direction

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Sequence, Tuple, Union

from resource_tx.assembler import ActionParts, TransactionAssembler
from resource_tx.compliance import ComplianceWitness
from resource_tx.config import TransferContext
from resource_tx.errors import (
    BindingError,
    InvalidRequestError,
    MissingAuxiliaryDataError,
    ResourceTxError,
)
from resource_tx.evm import PermitInfo
from resource_tx.keys import AuthorizationSignature, AuthorizationSigningKey, EncryptionPublicKey, ValueInfo
from resource_tx.merkle import ActionTree, MerklePath
from resource_tx.observability import (
    Layer,
    correlation_id_var,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
)
from resource_tx.orchestrator import ProofOrchestrator
from resource_tx.proving import ProvingBackend
from resource_tx.resource import NullifierKey, Resource
from resource_tx.transaction import Transaction
from resource_tx.witness import (
    ConsumedEphemeralWitness,
    ConsumedPersistentWitness,
    CreatedEphemeralWitness,
    CreatedPersistentWitness,
    EncryptionInfo,
    LabelInfo,
    LogicWitness,
    MigrateCall,
    MigrateInfo,
    TrivialWitness,
    UnwrapCall,
    WrapCall,
)

logger = logging.getLogger(__name__)
log = get_logger("parameters", Layer.WITNESS)


# =============================================================================
# WITNESS DATA
# =============================================================================

class _TokenData:
    """Data for resources governed by the token transfer logic."""

    persistent = False

    def _check_resource(self, resource: Resource, context: TransferContext) -> None:
        if resource.logic_ref != context.logic_ref:
            raise BindingError("logic_ref", "Resource is not governed by the token transfer logic")
        if resource.is_ephemeral == self.persistent:
            expected = "persistent" if self.persistent else "ephemeral"
            raise InvalidRequestError(
                f"{type(self).__name__} requires an {expected} resource", field="is_ephemeral"
            )

    def _label_info(self, context: TransferContext) -> LabelInfo:
        return LabelInfo(context.forwarder_address, self.token_addr)  # type: ignore[attr-defined]

    def consumed_witness(
        self, resource: Resource, nf_key: NullifierKey, root: bytes, context: TransferContext
    ) -> LogicWitness:
        raise InvalidRequestError(f"{type(self).__name__} cannot describe a consumed resource")

    def created_witness(self, resource: Resource, root: bytes, context: TransferContext) -> LogicWitness:
        raise InvalidRequestError(f"{type(self).__name__} cannot describe a created resource")


@dataclass(frozen=True)
class EphemeralWrapData(_TokenData):
    token_addr: bytes
    user_addr: bytes
    permit: Optional[PermitInfo] = None

    def consumed_witness(self, resource, nf_key, root, context):
        self._check_resource(resource, context)
        return ConsumedEphemeralWitness(
            resource, root, nf_key, self._label_info(context), WrapCall(self.user_addr, self.permit)
        )

    def created_witness(self, resource, root, context):
        self._check_resource(resource, context)
        return CreatedEphemeralWitness(
            resource, root, self._label_info(context), WrapCall(self.user_addr, self.permit)
        )


@dataclass(frozen=True)
class EphemeralMigrateData(_TokenData):
    token_addr: bytes
    user_addr: bytes
    migrate_info: Optional[MigrateInfo] = None

    def consumed_witness(self, resource, nf_key, root, context):
        self._check_resource(resource, context)
        return ConsumedEphemeralWitness(
            resource, root, nf_key, self._label_info(context), MigrateCall(self.user_addr, self.migrate_info)
        )

    def created_witness(self, resource, root, context):
        self._check_resource(resource, context)
        return CreatedEphemeralWitness(
            resource, root, self._label_info(context), MigrateCall(self.user_addr, self.migrate_info)
        )


@dataclass(frozen=True)
class EphemeralUnwrapData(_TokenData):
    token_addr: bytes
    user_addr: bytes

    def consumed_witness(self, resource, nf_key, root, context):
        self._check_resource(resource, context)
        return ConsumedEphemeralWitness(
            resource, root, nf_key, self._label_info(context), UnwrapCall(self.user_addr)
        )

    def created_witness(self, resource, root, context):
        self._check_resource(resource, context)
        return CreatedEphemeralWitness(resource, root, self._label_info(context), UnwrapCall(self.user_addr))


@dataclass(frozen=True)
class PersistentConsumedData(_TokenData):
    value_info: Optional[ValueInfo]
    auth_sig: Optional[AuthorizationSignature] = None

    persistent = True

    def consumed_witness(self, resource, nf_key, root, context):
        self._check_resource(resource, context)
        return ConsumedPersistentWitness(resource, root, nf_key, self.auth_sig, self.value_info)


@dataclass(frozen=True)
class PersistentCreatedData(_TokenData):
    """
    A persistent resource created for `value_info`'s owner.

    Without explicit encryption_info, fresh sender-side material is generated
    for `discovery_pk` when the witness is built.
    """
    token_addr: bytes
    value_info: Optional[ValueInfo]
    discovery_pk: Optional[EncryptionPublicKey] = None
    encryption_info: Optional[EncryptionInfo] = None

    persistent = True

    def created_witness(self, resource, root, context):
        self._check_resource(resource, context)
        encryption_info = self.encryption_info
        if encryption_info is None:
            if self.discovery_pk is None:
                raise MissingAuxiliaryDataError("discovery_pk")
            encryption_info = EncryptionInfo.create(self.discovery_pk)
        return CreatedPersistentWitness(
            resource, root, self._label_info(context), self.value_info, encryption_info
        )


@dataclass(frozen=True)
class TrivialData:
    """Padding resource under the trivial logic."""

    def _check_resource(self, resource: Resource) -> None:
        if not resource.is_padding:
            raise InvalidRequestError("TrivialData requires a trivial-logic resource", field="logic_ref")

    def consumed_witness(self, resource, nf_key, root, context):
        self._check_resource(resource)
        return TrivialWitness(resource, root, True)

    def created_witness(self, resource, root, context):
        self._check_resource(resource)
        return TrivialWitness(resource, root, False)


WitnessData = Union[
    EphemeralWrapData,
    EphemeralMigrateData,
    EphemeralUnwrapData,
    PersistentConsumedData,
    PersistentCreatedData,
    TrivialData,
]


@dataclass(frozen=True)
class ConsumedResource:
    """
    A resource to spend.

    `merkle_path` may be supplied for persistent resources whose path is already
    known; otherwise it is fetched from the indexer.
    """
    resource: Resource
    nf_key: NullifierKey
    data: WitnessData
    merkle_path: Optional[MerklePath] = None


@dataclass(frozen=True)
class CreatedResource:
    resource: Resource
    data: WitnessData


# =============================================================================
# PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class Parameters:
    consumed: Tuple[ConsumedResource, ...]
    created: Tuple[CreatedResource, ...]

    def __post_init__(self):
        object.__setattr__(self, "consumed", tuple(self.consumed))
        object.__setattr__(self, "created", tuple(self.created))

    def check_shape(self) -> None:
        if not self.consumed or len(self.consumed) != len(self.created):
            raise InvalidRequestError(
                "consumed and created resources must pair up one to one",
                consumed=len(self.consumed),
                created=len(self.created),
            )

    # -------------------------------------------------------------------------
    # Tags and tree
    # -------------------------------------------------------------------------

    def nullifiers(self) -> List[bytes]:
        nullifiers = []
        for index, item in enumerate(self.consumed):
            try:
                nullifiers.append(item.resource.nullifier(item.nf_key))
            except ResourceTxError as exc:
                raise exc.with_context(index=index, role="consumed")
        return nullifiers

    def tags(self) -> List[bytes]:
        """Interleaved tags: consumed nullifier then created commitment, per pair."""
        self.check_shape()
        tags: List[bytes] = []
        for nullifier, item in zip(self.nullifiers(), self.created):
            tags.extend((nullifier, item.resource.commitment()))
        return tags

    def action_tree(self, context: TransferContext) -> ActionTree:
        return ActionTree(self.tags(), context.action_tree_depth)

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def sign(self, signing_key: AuthorizationSigningKey, context: TransferContext) -> "Parameters":
        """
        Authorize every consumed resource owned by `signing_key`.

        Signs the action tree root and fills the signature into matching
        PersistentConsumedData and MigrateInfo entries. Tags do not depend on
        signatures, so the root is unchanged by signing.
        """
        signature = signing_key.authorize(self.action_tree(context).root())
        verifying_key = signing_key.verifying_key()

        consumed = []
        for item in self.consumed:
            data = item.data
            if isinstance(data, PersistentConsumedData) and data.value_info is not None:
                if data.value_info.auth_pk == verifying_key:
                    data = replace(data, auth_sig=signature)
            elif isinstance(data, EphemeralMigrateData) and data.migrate_info is not None:
                if data.migrate_info.value_info.auth_pk == verifying_key:
                    data = replace(data, migrate_info=replace(data.migrate_info, auth_sig=signature))
            consumed.append(replace(item, data=data))
        return replace(self, consumed=tuple(consumed))

    def check_permits(self, now: int) -> None:
        for index, item in enumerate(self.consumed):
            data = item.data
            if isinstance(data, EphemeralWrapData) and data.permit is not None:
                if data.permit.is_expired(now):
                    raise InvalidRequestError(
                        "permit deadline has passed",
                        field="permit_deadline",
                        index=index,
                        role="consumed",
                        deadline=data.permit.deadline_timestamp,
                    )

    # -------------------------------------------------------------------------
    # Witnesses
    # -------------------------------------------------------------------------

    def logic_witnesses(self, root: bytes, context: TransferContext) -> List[LogicWitness]:
        """Logic witnesses in tag order."""
        witnesses: List[LogicWitness] = []
        for index, (consumed, created) in enumerate(zip(self.consumed, self.created)):
            try:
                witnesses.append(
                    consumed.data.consumed_witness(consumed.resource, consumed.nf_key, root, context)
                )
            except ResourceTxError as exc:
                raise exc.with_context(index=index, role="consumed")
            try:
                witnesses.append(created.data.created_witness(created.resource, root, context))
            except ResourceTxError as exc:
                raise exc.with_context(index=index, role="created")
        return witnesses

    @staticmethod
    def validate_logic_witnesses(witnesses: Sequence[LogicWitness]) -> None:
        """
        Evaluate every predicate; the first failure is raised with its position.

        `index` is the resource pair, `logic_index` the position in tag order.
        """
        for position, witness in enumerate(witnesses):
            try:
                witness.constrain()
            except ResourceTxError as exc:
                raise exc.with_context(index=position // 2, logic_index=position)

    def merkle_paths(self, resolver: Optional[Any] = None) -> List[MerklePath]:
        """Commitment tree paths; ephemeral resources are not in the tree and get an empty path."""
        paths: List[MerklePath] = []
        for index, item in enumerate(self.consumed):
            if item.resource.is_ephemeral:
                paths.append(MerklePath.empty())
            elif item.merkle_path is not None:
                paths.append(item.merkle_path)
                logger.debug("using supplied merkle path for consumed resource %d", index)
            elif resolver is None:
                raise MissingAuxiliaryDataError("merkle_path", index=index, role="consumed")
            else:
                try:
                    paths.append(resolver.merkle_path(item.resource.commitment()))
                except ResourceTxError as exc:
                    raise exc.with_context(index=index, role="consumed")
        return paths

    def compliance_witnesses(self, paths: Sequence[MerklePath]) -> List[ComplianceWitness]:
        return [
            ComplianceWitness.from_resources(
                consumed.resource, consumed.nf_key, created.resource, merkle_path=path
            )
            for consumed, created, path in zip(self.consumed, self.created, paths)
        ]

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_transaction(
        self,
        backend: ProvingBackend,
        context: TransferContext,
        resolver: Optional[Any] = None,
        max_workers: Optional[int] = None,
        now: Optional[int] = None,
    ) -> Transaction:
        """
        Build, prove, assemble and self-verify the transaction.

        Without `max_workers` the proving pool is sized from the prover
        configuration (RESOURCE_TX_PROVER_WORKERS, else the CPU count).
        """
        token = None
        if not correlation_id_var.get():
            token = set_correlation_id(generate_correlation_id())
        try:
            return self._generate(backend, context, resolver, max_workers, now)
        finally:
            if token is not None:
                correlation_id_var.reset(token)

    def _generate(self, backend, context, resolver, max_workers, now) -> Transaction:
        start = time.monotonic()
        self.check_shape()
        self.check_permits(int(time.time()) if now is None else now)

        tree = self.action_tree(context)
        root = tree.root()
        log.info("action tree built", tags=len(tree), root=root)

        logic_witnesses = self.logic_witnesses(root, context)
        self.validate_logic_witnesses(logic_witnesses)

        compliance_witnesses = self.compliance_witnesses(self.merkle_paths(resolver))

        if max_workers is None:
            orchestrator = ProofOrchestrator.from_config(backend)
        else:
            orchestrator = ProofOrchestrator(backend, max_workers)
        bundle = orchestrator.prove_all(compliance_witnesses, logic_witnesses)
        transaction = TransactionAssembler(backend).assemble(
            [ActionParts(bundle, tuple(compliance_witnesses), context.action_tree_depth)]
        )
        log.operation(
            "generate_transaction",
            (time.monotonic() - start) * 1000,
            consumed=len(self.consumed),
            created=len(self.created),
        )
        return transaction
