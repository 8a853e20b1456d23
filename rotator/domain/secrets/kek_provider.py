"""Envelope encryption for secret versions at rest.

Versions written by the SQL vault are JSON-encoded and sealed with AES-256-GCM
under the keyring's active key. The AAD names the ``(secret_id, version_id)``
pair, so a ciphertext copied onto another row fails authentication.
"""
import binascii
import hashlib
import json
import os
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12
TAG_SIZE = 16
MAX_RETIRED_KEYS = 3


@dataclass(frozen=True)
class EncryptedEnvelope:
    """A sealed secret version as persisted: hex nonce, body and GCM tag."""
    kek_id: str
    iv: str
    ciphertext: str
    tag: str

    def __post_init__(self):
        if len(self.iv) != NONCE_SIZE * 2:
            raise ValueError(f"Invalid IV length {len(self.iv)} in envelope sealed under {self.kek_id}")
        if len(self.tag) != TAG_SIZE * 2:
            raise ValueError(f"Invalid tag length {len(self.tag)} in envelope sealed under {self.kek_id}")

    @classmethod
    def from_sealed(cls, kek_id: str, nonce: bytes, sealed: bytes) -> "EncryptedEnvelope":
        # AESGCM appends the tag to the ciphertext
        return cls(
            kek_id=kek_id,
            iv=nonce.hex(),
            ciphertext=sealed[:-TAG_SIZE].hex(),
            tag=sealed[-TAG_SIZE:].hex(),
        )

    def nonce(self) -> bytes:
        return bytes.fromhex(self.iv)

    def sealed(self) -> bytes:
        return bytes.fromhex(self.ciphertext) + bytes.fromhex(self.tag)


def derive_key(master_key: str) -> bytes:
    """64 hex characters are the raw key; any other string is hashed to 32 bytes."""
    if len(master_key) == 64 and all(c in string.hexdigits for c in master_key):
        return binascii.unhexlify(master_key)
    return hashlib.sha256(master_key.encode("utf-8")).digest()


class KekProvider(ABC):
    """Seals and opens secret values; implementations own the key material."""

    @property
    @abstractmethod
    def key_id(self) -> str:
        """ID of the key new envelopes are sealed under."""
        ...

    @abstractmethod
    def encrypt(self, plaintext: bytes, aad: Optional[bytes] = None) -> EncryptedEnvelope:
        ...

    @abstractmethod
    def decrypt(self, envelope: EncryptedEnvelope, aad: Optional[bytes] = None) -> bytes:
        ...

    def seal_value(self, value: Mapping[str, Any], aad: bytes) -> EncryptedEnvelope:
        return self.encrypt(json.dumps(value, sort_keys=True).encode("utf-8"), aad)

    def open_value(self, envelope: EncryptedEnvelope, aad: bytes) -> Dict[str, Any]:
        return json.loads(self.decrypt(envelope, aad).decode("utf-8"))


class KeyringKekProvider(KekProvider):
    """Seals under the active key, opens envelopes sealed under any key in the ring.

    Retired keys stay in the ring until every version sealed under them has been
    superseded by a rotation.
    """

    def __init__(self, keys: Mapping[str, str], active_key_id: str):
        if active_key_id not in keys:
            raise ValueError(f"Active key {active_key_id} is not in the keyring")
        self._active = active_key_id
        self._ciphers = {kid: AESGCM(derive_key(secret)) for kid, secret in keys.items()}

    @property
    def key_id(self) -> str:
        return self._active

    @property
    def key_ids(self) -> List[str]:
        return sorted(self._ciphers)

    def encrypt(self, plaintext: bytes, aad: Optional[bytes] = None) -> EncryptedEnvelope:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._ciphers[self._active].encrypt(nonce, plaintext, aad)
        return EncryptedEnvelope.from_sealed(self._active, nonce, sealed)

    def decrypt(self, envelope: EncryptedEnvelope, aad: Optional[bytes] = None) -> bytes:
        cipher = self._ciphers.get(envelope.kek_id)
        if cipher is None:
            raise ValueError(
                f"Key mismatch: envelope sealed under {envelope.kek_id}, "
                f"keyring holds {', '.join(self.key_ids)}"
            )
        return cipher.decrypt(envelope.nonce(), envelope.sealed(), aad)


class LocalKekProvider(KeyringKekProvider):
    """Keyring holding a single master key."""

    def __init__(self, master_key: str, key_id: str = "v1"):
        super().__init__({key_id: master_key}, key_id)


def get_kek_provider(master_key: Optional[str], key_id: str = "v1", dev_mode: bool = False) -> KekProvider:
    """Keyring from MASTER_KEY plus retired MASTER_KEY_OLD_<n>/KEK_ID_OLD_<n> pairs (n = 1..3)."""
    if not master_key:
        if not dev_mode:
            raise RuntimeError("CRITICAL: MASTER_KEY must be set to use the SQL vault.")
        master_key = "dev-master-key-change-in-prod"

    keys = {key_id: master_key}
    for n in range(1, MAX_RETIRED_KEYS + 1):
        old_key = os.getenv(f"MASTER_KEY_OLD_{n}")
        old_id = os.getenv(f"KEK_ID_OLD_{n}")
        if old_key and old_id and old_id != key_id:
            keys[old_id] = old_key
    return KeyringKekProvider(keys, key_id)
