"""
Keys, Signatures and Ciphertexts

Key material held by a user of the resource ledger:

    ┌─────────────────────────┬──────────┬─────────────────────────────────────┐
    │ Key                     │ Scheme   │ Purpose                             │
    ├─────────────────────────┼──────────┼─────────────────────────────────────┤
    │ auth signing key        │ Ed25519  │ signs action tree roots             │
    │ nullifier key           │ 32 bytes │ derives nullifiers of own resources │
    │ encryption key pair     │ X25519   │ receives resource ciphertexts       │
    │ discovery key pair      │ X25519   │ receives discovery ciphertexts      │
    │ EVM address             │ 20 bytes │ ERC20 side of wrap/unwrap           │
    └─────────────────────────┴──────────┴─────────────────────────────────────┘

Signatures are domain separated: the signed message is `domain || message`.

Ciphertexts use ECDH (X25519) between a sender secret key and the receiver
public key, HKDF-SHA256 key derivation and AES-256-GCM. The encoded ciphertext
is `nonce(12) || sender_pk(32) || sealed`, so the receiver can decrypt with
its own secret key alone.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from resource_tx.errors import InvalidRequestError
from resource_tx.resource import ADDRESS_SIZE, DIGEST_SIZE, NullifierKey, require_bytes, sha256


AUTH_SIGNATURE_DOMAIN = b"TokenTransferAuthorizationV2"

ENCRYPTION_NONCE_SIZE = 12
SIGNATURE_SIZE = 64
_HKDF_INFO = b"resource-ciphertext-v1"


def _raw_public(key: Any) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _raw_private(key: Any) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


# =============================================================================
# AUTHORIZATION KEYS
# =============================================================================

@dataclass(frozen=True)
class AuthorizationSignature:
    """Ed25519 signature over `domain || message`."""
    signature: bytes

    def __post_init__(self):
        require_bytes(self.signature, SIGNATURE_SIZE, "auth_sig")

    def to_bytes(self) -> bytes:
        return self.signature


@dataclass(frozen=True)
class AuthorizationVerifyingKey:
    public_key: bytes

    def __post_init__(self):
        require_bytes(self.public_key, 32, "auth_pk")

    def to_bytes(self) -> bytes:
        return self.public_key

    def verify(self, domain: bytes, message: bytes, signature: AuthorizationSignature) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(self.public_key).verify(
                signature.signature, domain + message
            )
        except InvalidSignature:
            return False
        return True


class AuthorizationSigningKey:
    """Ed25519 signing key used to authorize consumption of persistent resources."""

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None):
        self._key = private_key or Ed25519PrivateKey.generate()

    @classmethod
    def from_bytes(cls, raw: bytes) -> "AuthorizationSigningKey":
        return cls(Ed25519PrivateKey.from_private_bytes(require_bytes(raw, 32, "auth_sk")))

    def to_bytes(self) -> bytes:
        return _raw_private(self._key)

    def verifying_key(self) -> AuthorizationVerifyingKey:
        return AuthorizationVerifyingKey(_raw_public(self._key.public_key()))

    def sign(self, domain: bytes, message: bytes) -> AuthorizationSignature:
        return AuthorizationSignature(self._key.sign(domain + message))

    def authorize(self, action_root: bytes) -> AuthorizationSignature:
        """Sign an action tree root under the transfer authorization domain."""
        return self.sign(AUTH_SIGNATURE_DOMAIN, action_root)

    def __repr__(self) -> str:
        return "AuthorizationSigningKey(<redacted>)"


# =============================================================================
# ENCRYPTION KEYS
# =============================================================================

@dataclass(frozen=True)
class EncryptionPublicKey:
    public_key: bytes

    def __post_init__(self):
        require_bytes(self.public_key, 32, "encryption_pk")

    def to_bytes(self) -> bytes:
        return self.public_key


class EncryptionSecretKey:
    """X25519 secret key for resource and discovery ciphertexts."""

    def __init__(self, private_key: Optional[X25519PrivateKey] = None):
        self._key = private_key or X25519PrivateKey.generate()

    @classmethod
    def from_bytes(cls, raw: bytes) -> "EncryptionSecretKey":
        return cls(X25519PrivateKey.from_private_bytes(require_bytes(raw, 32, "encryption_sk")))

    def to_bytes(self) -> bytes:
        return _raw_private(self._key)

    def public_key(self) -> EncryptionPublicKey:
        return EncryptionPublicKey(_raw_public(self._key.public_key()))

    def shared_key(self, peer: EncryptionPublicKey) -> bytes:
        secret = self._key.exchange(X25519PublicKey.from_public_bytes(peer.public_key))
        return HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=_HKDF_INFO,
        ).derive(secret)

    def __repr__(self) -> str:
        return "EncryptionSecretKey(<redacted>)"


@dataclass(frozen=True)
class Ciphertext:
    """Encoded ciphertext: nonce(12) || sender_pk(32) || AES-GCM output."""
    data: bytes

    @classmethod
    def encrypt_with_nonce(
        cls,
        plaintext: bytes,
        receiver_pk: EncryptionPublicKey,
        sender_sk: EncryptionSecretKey,
        nonce: bytes,
    ) -> "Ciphertext":
        """Deterministic encryption given the sender key and nonce."""
        nonce = require_bytes(nonce, ENCRYPTION_NONCE_SIZE, "encryption_nonce")
        sealed = AESGCM(sender_sk.shared_key(receiver_pk)).encrypt(nonce, plaintext, None)
        return cls(nonce + sender_sk.public_key().to_bytes() + sealed)

    @classmethod
    def encrypt(cls, plaintext: bytes, receiver_pk: EncryptionPublicKey) -> "Ciphertext":
        """Encrypt under a fresh ephemeral sender key and nonce."""
        return cls.encrypt_with_nonce(
            plaintext,
            receiver_pk,
            EncryptionSecretKey(),
            secrets.token_bytes(ENCRYPTION_NONCE_SIZE),
        )

    def decrypt(self, receiver_sk: EncryptionSecretKey) -> bytes:
        if len(self.data) < ENCRYPTION_NONCE_SIZE + 32 + 16:
            raise InvalidRequestError("ciphertext too short", field="ciphertext")
        nonce = self.data[:ENCRYPTION_NONCE_SIZE]
        sender_pk = EncryptionPublicKey(self.data[ENCRYPTION_NONCE_SIZE:ENCRYPTION_NONCE_SIZE + 32])
        sealed = self.data[ENCRYPTION_NONCE_SIZE + 32:]
        try:
            return AESGCM(receiver_sk.shared_key(sender_pk)).decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise InvalidRequestError("ciphertext does not decrypt under this key") from exc


# =============================================================================
# OWNERSHIP
# =============================================================================

@dataclass(frozen=True)
class ValueInfo:
    """Ownership material of a persistent resource."""
    auth_pk: AuthorizationVerifyingKey
    encryption_pk: EncryptionPublicKey

    def value_ref(self) -> bytes:
        return sha256(self.auth_pk.to_bytes(), self.encryption_pk.to_bytes())

    def to_dict(self) -> Dict[str, str]:
        return {
            "auth_pk": self.auth_pk.to_bytes().hex(),
            "encryption_pk": self.encryption_pk.to_bytes().hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "ValueInfo":
        return cls(
            auth_pk=AuthorizationVerifyingKey(bytes.fromhex(data["auth_pk"])),
            encryption_pk=EncryptionPublicKey(bytes.fromhex(data["encryption_pk"])),
        )


class Keychain:
    """All keys of one user."""

    def __init__(
        self,
        auth_signing_key: AuthorizationSigningKey,
        nf_key: NullifierKey,
        discovery_sk: EncryptionSecretKey,
        encryption_sk: EncryptionSecretKey,
        evm_address: bytes,
    ):
        self.auth_signing_key = auth_signing_key
        self.nf_key = nf_key
        self.discovery_sk = discovery_sk
        self.encryption_sk = encryption_sk
        self.evm_address = require_bytes(evm_address, ADDRESS_SIZE, "evm_address")

    @classmethod
    def generate(cls, evm_address: Optional[bytes] = None) -> "Keychain":
        return cls(
            auth_signing_key=AuthorizationSigningKey(),
            nf_key=NullifierKey(secrets.token_bytes(DIGEST_SIZE)),
            discovery_sk=EncryptionSecretKey(),
            encryption_sk=EncryptionSecretKey(),
            evm_address=evm_address if evm_address is not None else secrets.token_bytes(ADDRESS_SIZE),
        )

    @property
    def auth_verifying_key(self) -> AuthorizationVerifyingKey:
        return self.auth_signing_key.verifying_key()

    @property
    def encryption_pk(self) -> EncryptionPublicKey:
        return self.encryption_sk.public_key()

    @property
    def discovery_pk(self) -> EncryptionPublicKey:
        return self.discovery_sk.public_key()

    def value_info(self) -> ValueInfo:
        return ValueInfo(self.auth_verifying_key, self.encryption_pk)

    def to_dict(self) -> Dict[str, str]:
        return {
            "auth_signing_key": self.auth_signing_key.to_bytes().hex(),
            "nf_key": self.nf_key.key.hex(),
            "discovery_sk": self.discovery_sk.to_bytes().hex(),
            "encryption_sk": self.encryption_sk.to_bytes().hex(),
            "evm_address": self.evm_address.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "Keychain":
        try:
            return cls(
                auth_signing_key=AuthorizationSigningKey.from_bytes(bytes.fromhex(data["auth_signing_key"])),
                nf_key=NullifierKey(bytes.fromhex(data["nf_key"])),
                discovery_sk=EncryptionSecretKey.from_bytes(bytes.fromhex(data["discovery_sk"])),
                encryption_sk=EncryptionSecretKey.from_bytes(bytes.fromhex(data["encryption_sk"])),
                evm_address=bytes.fromhex(data["evm_address"].removeprefix("0x")),
            )
        except (KeyError, ValueError) as exc:
            raise InvalidRequestError(f"invalid keychain: {exc}") from exc

    def public_dict(self) -> Dict[str, str]:
        return {
            "auth_pk": self.auth_verifying_key.to_bytes().hex(),
            "encryption_pk": self.encryption_pk.to_bytes().hex(),
            "discovery_pk": self.discovery_pk.to_bytes().hex(),
            "evm_address": "0x" + self.evm_address.hex(),
        }

    def __repr__(self) -> str:
        return f"Keychain(evm_address=0x{self.evm_address.hex()})"
