"""reqvault crypto - AES-256-GCM codec for stored variable values.

Every stored value is a self-describing envelope:

    base64(iv) ":" base64(ciphertext) ":" base64(tag)

The key is derived once per process from the operator secret (SHA-256)
and cached; the cache is written exactly once and only read afterwards.
"""

import base64
import binascii
import hashlib
import os
import threading

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from reqvault.errors import AuthenticationError, ConfigurationError, MalformedPayloadError

SECRET_ENV_VARS = ("REQVAULT_ENCRYPTION_KEY", "ENCRYPTION_KEY")

IV_LEN = 12  # GCM recommended nonce length
TAG_LEN = 16
DELIMITER = ":"

_KEY_CACHE: dict[str, bytes] = {}
_KEY_LOCK = threading.Lock()


def derive_key(secret: str | None) -> bytes:
    """Derive a 32-byte AES key from the operator secret."""
    if secret is None or not secret.strip():
        raise ConfigurationError(
            "Missing encryption secret. Set REQVAULT_ENCRYPTION_KEY in the environment or .env file."
        )
    return hashlib.sha256(secret.encode("utf-8")).digest()


def secret_from_env(env: dict[str, str] | None = None) -> str | None:
    """Return the first configured secret from env (defaults to os.environ)."""
    source = os.environ if env is None else env
    for name in SECRET_ENV_VARS:
        value = source.get(name)
        if value:
            return value
    return None


def configure_key(secret: str | None) -> bytes:
    """Derive and cache the process-wide key unless one is already cached."""
    with _KEY_LOCK:
        key = _KEY_CACHE.get("key")
        if key is None:
            key = derive_key(secret)
            _KEY_CACHE["key"] = key
        return key


def get_encryption_key(env: dict[str, str] | None = None) -> bytes:
    """Return the cached key, deriving it from the environment on first use."""
    key = _KEY_CACHE.get("key")
    if key is not None:
        return key
    return configure_key(secret_from_env(env))


def reset_key_cache() -> None:
    """Forget the cached key. Only meant for tests."""
    with _KEY_LOCK:
        _KEY_CACHE.clear()


def encrypt_value(plaintext: str, key: bytes | None = None) -> str:
    """Encrypt plaintext into an iv:ciphertext:tag envelope.

    A fresh random nonce is drawn for every call, so encrypting the same
    value twice never yields the same envelope.
    """
    if not isinstance(plaintext, str):
        raise TypeError("Value to encrypt must be a string")

    key = key or get_encryption_key()
    iv = os.urandom(IV_LEN)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LEN], sealed[-TAG_LEN:]

    return DELIMITER.join(
        base64.b64encode(part).decode("ascii") for part in (iv, ciphertext, tag)
    )


def _parse_envelope(payload: str) -> tuple[bytes, bytes, bytes]:
    if not isinstance(payload, str):
        raise MalformedPayloadError("Invalid encrypted payload format")
    parts = payload.split(DELIMITER)
    if len(parts) != 3:
        raise MalformedPayloadError(
            f"Invalid encrypted payload format: expected 3 segments, got {len(parts)}"
        )
    try:
        iv, ciphertext, tag = (base64.b64decode(p, validate=True) for p in parts)
    except (binascii.Error, ValueError) as e:
        # truncated or corrupted segment
        raise AuthenticationError(f"Encrypted payload rejected: {e}") from e
    return iv, ciphertext, tag


def decrypt_value(payload: str, key: bytes | None = None) -> str:
    """Decrypt an envelope produced by encrypt_value.

    Raises MalformedPayloadError when the payload is not three segments and
    AuthenticationError when a segment is corrupted or the tag does not
    verify. Never logs the plaintext.
    """
    iv, ciphertext, tag = _parse_envelope(payload)
    key = key or get_encryption_key()

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise AuthenticationError("Integrity check failed for encrypted payload") from e
    except ValueError as e:
        # wrong nonce length, i.e. truncated input
        raise AuthenticationError(f"Encrypted payload rejected: {e}") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthenticationError("Decrypted payload is not valid UTF-8") from e
