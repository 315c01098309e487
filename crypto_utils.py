"""
crypto_utils.py
===============
Binary codec and envelope encryption helpers used by the auth core.

This module centralizes every encoding and cryptographic operation so the rest
of the codebase never touches base64 or ciphers directly. It provides:
- Buffer codec: lenient (and optionally strict) string -> bytes decoding,
  bytes -> base64url / base64 encoding, random challenge generation
- SHA-256 hashing for challenge digests
- PBKDF2 key derivation from the configured application secret
- AES-GCM envelopes (nonce || ciphertext+tag, base64) for data at rest

Randomness and the AEAD primitive are injectable so tests can pin them.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from errors import CryptoUnavailable, DecodeFailure, SessionInvalid

logger = logging.getLogger(__name__)

# A RandomSource returns n cryptographically secure random bytes.
RandomSource = Callable[[int], bytes]

BinaryLike = Union[bytes, bytearray, memoryview]

CHALLENGE_LENGTH = 32
NONCE_LENGTH = 12   # 96-bit GCM nonce
TAG_LENGTH = 16
KEY_LENGTH = 32     # AES-256
DEFAULT_KDF_ITERATIONS = 100_000
DEFAULT_KDF_SALT = b"biometric-auth-salt"

STRICT_ENCODINGS = ("base64url", "base64", "utf-8")


# -----------------------------------------------------------------------------
# Buffer codec
# -----------------------------------------------------------------------------
def base64url_encode(raw_bytes: bytes) -> str:
    """
    Encode raw bytes using URL-safe base64 without '=' padding (WebAuthn-style).

    WebAuthn uses base64url (RFC 4648 §5): '-' and '_' instead of '+' and '/',
    with the trailing padding omitted.
    """
    return base64.urlsafe_b64encode(raw_bytes).decode("utf-8").rstrip("=")


def base64url_decode(encoded: str) -> bytes:
    """Decode URL-safe base64, restoring any missing '=' padding first."""
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding)


def _decode_base64url(text: str) -> bytes:
    normalized = text.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)


def _decode_base64(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _decode_strict(text: str, encoding: str) -> bytes:
    try:
        if encoding == "base64url":
            return _decode_base64url(text)
        if encoding == "base64":
            return _decode_base64(text)
        return text.encode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise DecodeFailure(f"Input is not valid {encoding}: {exc}") from exc


def to_buffer(
    value: Optional[Union[BinaryLike, str]], encoding: Optional[str] = None
) -> Optional[bytes]:
    """
    Convert a binary value or an encoded string into bytes.

    Binary input is returned as ``bytes`` unchanged (even when empty). ``None``
    and the empty string cannot be decoded and yield ``None``.

    Without ``encoding`` a string goes through a compatibility chain that never
    raises:
    1. base64url, after padding it to a multiple of 4
    2. standard base64
    3. the raw UTF-8 bytes of the string

    The chain reinterprets malformed input instead of rejecting it. Pass
    ``encoding`` ("base64url", "base64" or "utf-8") to decode exactly one
    format; malformed input then raises DecodeFailure.
    """
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if not isinstance(value, str) or value == "":
        return None

    if encoding is not None:
        if encoding not in STRICT_ENCODINGS:
            raise ValueError(f"Unsupported encoding: {encoding!r}")
        return _decode_strict(value, encoding)

    for decode in (_decode_base64url, _decode_base64):
        try:
            return decode(value)
        except (binascii.Error, ValueError):
            continue
    logger.debug("Value is not base64; falling back to UTF-8 bytes")
    return value.encode("utf-8", errors="replace")


def from_buffer(data: BinaryLike, url_safe: bool = True) -> str:
    """
    Encode bytes for transport.

    url_safe=True gives unpadded base64url (the WebAuthn wire format);
    url_safe=False gives padded standard base64 (generic storage).
    """
    raw = bytes(data)
    if url_safe:
        return base64url_encode(raw)
    return base64.b64encode(raw).decode("ascii")


def generate_challenge(random: Optional[RandomSource] = None) -> bytes:
    """Return a fresh 32-byte challenge from the secure random source."""
    return (random or os.urandom)(CHALLENGE_LENGTH)


def sha256(data: bytes) -> bytes:
    """Compute the SHA-256 digest of ``data``."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize()


# -----------------------------------------------------------------------------
# Key derivation and AEAD
# -----------------------------------------------------------------------------
def derive_key(
    secret: str,
    salt: bytes = DEFAULT_KDF_SALT,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> bytes:
    """
    Derive a 256-bit AES key from the application secret with PBKDF2-HMAC-SHA256.

    Step-by-step:
    1. Configure PBKDF2 with SHA-256, a 32-byte output and the app salt
    2. Run ``iterations`` rounds over the UTF-8 encoded secret
    3. Return the 32-byte key suitable for AES-GCM
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


class AeadCipher(Protocol):
    """Authenticated cipher: decrypt raises on any tag mismatch."""

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        ...

    def decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        ...


class AesGcmCipher:
    """AES-256-GCM from ``cryptography``; the 16-byte tag is appended."""

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        return AESGCM(key).encrypt(nonce, plaintext, associated_data=None)

    def decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data=None)


def default_aead() -> Optional[AeadCipher]:
    """Return AES-GCM, or None when the host's crypto backend lacks it."""
    try:
        AESGCM(bytes(KEY_LENGTH))
    except UnsupportedAlgorithm as exc:
        logger.debug("AES-GCM probe failed: %s", exc)
        return None
    return AesGcmCipher()


@dataclass
class EncryptedEnvelope:
    """
    Parsed form of a stored envelope.

    - nonce: 96-bit random nonce used for this encryption
    - ciphertext: encrypted payload followed by the 16-byte GCM tag

    Serialized as standard base64 of ``nonce || ciphertext``.
    """

    nonce: bytes
    ciphertext: bytes

    def serialize(self) -> str:
        return from_buffer(self.nonce + self.ciphertext, url_safe=False)

    @classmethod
    def parse(cls, encoded: str) -> "EncryptedEnvelope":
        try:
            combined = to_buffer(encoded, encoding="base64")
        except DecodeFailure as exc:
            raise SessionInvalid("Envelope is not valid base64") from exc
        if combined is None or len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise SessionInvalid("Envelope is too short")
        return cls(nonce=combined[:NONCE_LENGTH], ciphertext=combined[NONCE_LENGTH:])


class EnvelopeCipher:
    """
    Seals and opens envelopes with a key derived from the configured secret.

    The key is re-derived on every call; nothing secret is cached on the
    instance beyond the secret string itself. When no AEAD primitive is
    available the cipher runs in degraded mode: envelopes are plain base64 and
    provide no confidentiality or integrity.
    """

    def __init__(
        self,
        secret: str,
        salt: bytes = DEFAULT_KDF_SALT,
        iterations: int = DEFAULT_KDF_ITERATIONS,
        aead: Optional[AeadCipher] = None,
        random: Optional[RandomSource] = None,
    ) -> None:
        self._secret = secret
        self._salt = salt
        self._iterations = iterations
        self._random = random or os.urandom
        self._aead = aead if aead is not None else default_aead()
        if self._aead is None:
            logger.error(
                "No AEAD cipher available: stored envelopes are only base64 "
                "encoded and are NOT encrypted"
            )

    @property
    def degraded(self) -> bool:
        return self._aead is None

    def _key(self) -> bytes:
        return derive_key(self._secret, self._salt, self._iterations)

    def seal(self, plaintext: bytes) -> str:
        """
        Encrypt ``plaintext`` into a transportable envelope string.

        Step-by-step:
        1. Derive the AES key from secret + salt
        2. Draw a fresh 12-byte nonce (never reused across calls)
        3. Encrypt; GCM appends the authentication tag
        4. Base64-encode nonce || ciphertext+tag
        """
        if self._aead is None:
            return from_buffer(plaintext, url_safe=False)
        nonce = self._random(NONCE_LENGTH)
        try:
            ciphertext = self._aead.encrypt(self._key(), nonce, plaintext)
        except UnsupportedAlgorithm as exc:
            raise CryptoUnavailable(str(exc)) from exc
        return EncryptedEnvelope(nonce=nonce, ciphertext=ciphertext).serialize()

    def open(self, envelope: str) -> bytes:
        """
        Verify and decrypt an envelope. Raises SessionInvalid on any failure:
        bad base64, truncated input, wrong key or a modified byte.
        """
        if self._aead is None:
            try:
                return to_buffer(envelope, encoding="base64") or b""
            except DecodeFailure as exc:
                raise SessionInvalid("Envelope is not valid base64") from exc

        parsed = EncryptedEnvelope.parse(envelope)
        try:
            return self._aead.decrypt(self._key(), parsed.nonce, parsed.ciphertext)
        except (InvalidTag, ValueError) as exc:
            raise SessionInvalid("Envelope failed authentication") from exc
