"""Credential vault: field-level envelope encryption for integration configs.

Every sensitive string is sealed with AES-256-GCM under a key derived from the
service master secret. The nonce and authentication tag travel with the
ciphertext in a single colon-delimited string::

    <ivHex>:<authTagHex>:<cipherHex>

Strings that are not in that form are treated as legacy plaintext and passed
through by ``decrypt`` so that configs written before encryption was enabled
still load.
"""

import os
import re
import logging
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from evidence_sync.core.config import Settings
from evidence_sync.core.errors import ConfigurationError, CryptographicError

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32
IV_SIZE = 16
TAG_SIZE = 16
KDF_ITERATIONS = 100000

MASK = "••••••••"

SENSITIVE_FRAGMENTS = (
    "key",
    "secret",
    "password",
    "passwd",
    "token",
    "credential",
    "private",
)

# Keys that name or locate a secret without being one (keyName, tokenUrl).
DESCRIPTOR_SUFFIXES = ("url", "uri", "name", "type", "location")

_ENVELOPE_RE = re.compile(r"^[0-9a-f]+:[0-9a-f]+:[0-9a-f]*$", re.IGNORECASE)


def is_sensitive_key(key: str) -> bool:
    """Return True if a config key holds secret material."""
    lowered = str(key).lower()
    if lowered.endswith(DESCRIPTOR_SUFFIXES):
        return False
    return any(fragment in lowered for fragment in SENSITIVE_FRAGMENTS)


def looks_encrypted(value: str) -> bool:
    """Return True if a value has the persisted ciphertext shape."""
    return bool(_ENVELOPE_RE.match(value)) and len(value.split(":")) == 3


def mask_value(value: str) -> str:
    """Redact a secret for display, keeping only its last four characters."""
    if value.startswith(MASK):
        return value
    if looks_encrypted(value):
        return MASK
    if len(value) > 4:
        return MASK + value[-4:]
    return MASK


class CredentialVault:
    """Encrypts, decrypts and masks sensitive values in config maps."""

    def __init__(self, master_secret: Optional[str], salt: str = "evidence-sync-vault"):
        if not master_secret:
            raise ConfigurationError(
                "ENCRYPTION_KEY is required for secure credential storage"
            )
        if len(master_secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"ENCRYPTION_KEY must be at least {MIN_SECRET_LENGTH} characters long"
            )

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(),
            iterations=KDF_ITERATIONS,
        )
        self._key = kdf.derive(master_secret.encode())

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialVault":
        """Build a vault from service settings."""
        return cls(settings.encryption_key, salt=settings.encryption_salt)

    def encrypt(self, plain: str) -> str:
        """Encrypt a single value into the persisted envelope format."""
        if not plain:
            return plain

        iv = os.urandom(IV_SIZE)
        encryptor = Cipher(
            algorithms.AES(self._key),
            modes.GCM(iv),
            backend=default_backend(),
        ).encryptor()
        ciphertext = encryptor.update(plain.encode("utf-8")) + encryptor.finalize()

        return f"{iv.hex()}:{encryptor.tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, value: str) -> str:
        """Decrypt a persisted value.

        Values that are not envelopes are returned untouched. Envelopes that
        fail to parse or authenticate are logged and returned untouched too,
        so a single bad value never fails a whole config load.
        """
        if not value or not isinstance(value, str):
            return value

        parts = value.split(":")
        if len(parts) != 3:
            return value

        try:
            return self._open(*parts)
        except CryptographicError as e:
            logger.warning(f"Failed to decrypt value, returning as-is: {e}")
            return value

    def _open(self, iv_hex: str, tag_hex: str, cipher_hex: str) -> str:
        try:
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(cipher_hex)
        except ValueError as e:
            raise CryptographicError(f"malformed envelope: {e}") from e

        if not iv or len(tag) != TAG_SIZE:
            raise CryptographicError("malformed envelope: bad iv or tag length")

        decryptor = Cipher(
            algorithms.AES(self._key),
            modes.GCM(iv, tag),
            backend=default_backend(),
        ).decryptor()
        try:
            plaintext = decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag as e:
            raise CryptographicError("integrity check failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptographicError("plaintext is not valid UTF-8") from e

    def encrypt_config(self, config: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Encrypt sensitive fields in a config map before storing it."""
        if config is None:
            return None
        return _walk(config, self.encrypt)

    def decrypt_config(self, config: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Decrypt sensitive fields in a stored config map for internal use."""
        if config is None:
            return None
        return _walk(config, self.decrypt)

    @staticmethod
    def mask_config(config: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Return a display-safe copy of a decrypted config map."""
        if config is None:
            return None
        return _walk(config, mask_value)


def _walk(node: Any, transform, sensitive: bool = False) -> Any:
    """Rebuild a nested structure, applying transform to sensitive scalar leaves.

    Numeric secrets are stored as strings; booleans and None are left alone.
    """
    if isinstance(node, dict):
        return {
            key: _walk(value, transform, is_sensitive_key(key))
            for key, value in node.items()
        }
    if isinstance(node, list):
        return [_walk(item, transform, sensitive) for item in node]
    if sensitive and isinstance(node, str):
        return transform(node)
    if sensitive and isinstance(node, (int, float)) and not isinstance(node, bool):
        return transform(str(node))
    return node


def merge_config(stored: Optional[Dict[str, Any]], update: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Overlay an edited config on a decrypted stored one.

    Masked values coming back from a display copy keep the stored secret.
    """
    merged = dict(stored or {})
    for key, value in (update or {}).items():
        if isinstance(value, str) and value.startswith(MASK):
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged
