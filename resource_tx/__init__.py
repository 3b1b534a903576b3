"""
resource_tx: Confidential Resource Transaction Construction

Builds shielded transactions over a resource ledger. A user's request (mint,
transfer, split, burn, migrate) becomes a set of consumed and created
resources; each resource is bound to an action tree, proven valid under its
logic, paired into compliance units, and balanced by a delta proof before the
transaction is handed to settlement.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                    RESOURCE TRANSACTION PIPELINE                         │
    │                                                                          │
    │  REQUESTS                                                                │
    │    transactions.py  mint / transfer / split / burn / migrate shapes      │
    │    parameters.py    witness data, tags, generate_transaction()           │
    │    serializer.py    JsonResource wire form, JSON Schema checks           │
    │                                                                          │
    │  CONSTRUCTION                                                            │
    │    resource.py      Resource, commitments, nullifiers, references        │
    │    merkle.py        Action tree and Merkle paths                         │
    │    witness.py       Token transfer validity predicate                    │
    │    compliance.py    Compliance witnesses, value deltas                   │
    │    resolver.py      Merkle-path indexer client with retry                │
    │                                                                          │
    │  PROVING AND ASSEMBLY                                                    │
    │    orchestrator.py  Concurrent proof fan-out and join                    │
    │    assembler.py     Actions, delta proof, mandatory self-verification    │
    │    proving.py       Backend protocol, mock backend                       │
    │    submission.py    Settlement submission                                │
    │                                                                          │
    │  SUPPORT                                                                 │
    │    keys.py  evm.py  errors.py  config.py  observability.py  cli.py       │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Resource: An immutable record (logic, label, quantity, value, nonce, ...).
    Its commitment is published when it is created; its nullifier, derivable
    only with the owner's nullifier key, is published when it is consumed.

    Tag: The commitment of a created resource or the nullifier of a consumed
    one. The tags of an action are the leaves of its action tree, and every
    logic proof is bound to that tree's root.

    Delta: Each compliance unit commits to the value change of its resource
    pair. The delta proof shows the sum over the transaction is zero.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.1.0"

_EXPORTS = {
    "resource_tx.resource": (
        "Resource", "ResourceWithLabel", "NullifierKey", "label_ref",
        "value_ref_from_user_address", "TOKEN_TRANSFER_LOGIC_REF", "TRIVIAL_LOGIC_REF",
    ),
    "resource_tx.merkle": ("ActionTree", "MerkleTree", "MerklePath", "PathNode", "verify_path"),
    "resource_tx.keys": (
        "Keychain", "ValueInfo", "AuthorizationSigningKey", "AuthorizationVerifyingKey",
        "AuthorizationSignature", "EncryptionSecretKey", "EncryptionPublicKey", "Ciphertext",
    ),
    "resource_tx.witness": (
        "ConsumedEphemeralWitness", "CreatedEphemeralWitness", "ConsumedPersistentWitness",
        "CreatedPersistentWitness", "TrivialWitness", "LogicInstance", "LabelInfo",
        "WrapCall", "UnwrapCall", "MigrateCall", "MigrateInfo", "EncryptionInfo",
    ),
    "resource_tx.compliance": ("ComplianceWitness", "ComplianceInstance"),
    "resource_tx.transaction": (
        "Action", "Transaction", "ComplianceUnit", "LogicProof", "DeltaWitness", "DeltaProof",
    ),
    "resource_tx.resolver": ("MerklePathResolver", "RetryPolicy", "HttpxTransport"),
    "resource_tx.orchestrator": ("ProofOrchestrator", "ProofBundle"),
    "resource_tx.assembler": ("TransactionAssembler", "ActionParts"),
    "resource_tx.proving": ("ProvingBackend", "MockProvingBackend"),
    "resource_tx.parameters": (
        "Parameters", "ConsumedResource", "CreatedResource", "EphemeralWrapData",
        "EphemeralMigrateData", "EphemeralUnwrapData", "PersistentConsumedData",
        "PersistentCreatedData", "TrivialData",
    ),
    "resource_tx.transactions": ("mint", "transfer", "split", "burn", "migrate", "Recipient"),
    "resource_tx.submission": ("Receipt", "JsonRpcSubmitter", "submit_transaction"),
    "resource_tx.config": ("ResourceTxConfig", "TransferContext", "load_config"),
    "resource_tx.errors": (
        "ResourceTxError", "BindingError", "MissingAuxiliaryDataError", "InvalidRequestError",
        "TreeMembershipError", "ExternalIOError", "IndexerError", "ProverError",
        "ProverTaskFailed", "ProverRejected", "VerificationError", "BalanceError",
    ),
}


# Lazy imports keep `import resource_tx` cheap and free of import cycles
def __getattr__(name):
    """Lazy import submodule exports on first access."""
    import importlib

    for module_name, names in _EXPORTS.items():
        if name in names:
            return getattr(importlib.import_module(module_name), name)
    raise AttributeError(f"module 'resource_tx' has no attribute '{name}'")


__all__ = ["__version__"] + [name for names in _EXPORTS.values() for name in names]
