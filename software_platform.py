"""
software_platform.py
====================
An in-process stand-in for the platform credential primitive.

Browsers expose navigator.credentials.create()/get(); mobile hosts expose an
OS biometric API. This class plays that role for the demo CLI and the tests:
- create() generates a key pair bound to the relying party id and returns the
  new credential; it refuses when an excluded credential is already held
- get() signs the challenge with a held credential allowed by the options
- failures are raised as the same named errors a browser would raise

Signatures use a simplified message, not the WebAuthn authenticatorData
layout:
- registration: rp_id || SHA256(challenge)
- assertion:    rp_id || SHA256(challenge) || sign_counter (4 bytes, big-endian)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from fido2.cose import EdDSA, ES256
from fido2.webauthn import UserVerificationRequirement

from ceremony import CreateCeremonyOptions, GetCeremonyOptions
from crypto_utils import base64url_encode, sha256
from errors import (
    InvalidStateError,
    NotAllowedError,
    NotSupportedError,
    PlatformError,
)

SUPPORTED_ALGORITHMS = (ES256.ALGORITHM, EdDSA.ALGORITHM)


@dataclass
class PlatformCredential:
    """
    What a ceremony hands back: the raw credential id plus proof material.

    - raw_id: the opaque credential id chosen by the authenticator
    - public_key: raw (Ed25519) or X9.62 uncompressed (P-256) public key bytes
    - alg: COSE algorithm id of the key
    - signature: signature over the message described in the module docstring
    - sign_counter: 0 after registration, incremented on every assertion
    - user_handle: the user.id the credential was registered for
    """

    raw_id: bytes
    public_key: bytes
    alg: int
    signature: bytes
    sign_counter: int
    user_handle: bytes
    type: str = "public-key"
    authenticator_attachment: str = "platform"

    @property
    def id(self) -> str:
        return base64url_encode(self.raw_id)


def _generate_key(alg: int) -> Any:
    if alg == ES256.ALGORITHM:
        return ec.generate_private_key(ec.SECP256R1())
    return ed25519.Ed25519PrivateKey.generate()


def _public_bytes(private_key: Any) -> bytes:
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )


def _sign(private_key: Any, message: bytes) -> bytes:
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return private_key.sign(message)
    return private_key.sign(message, ec.ECDSA(hashes.SHA256()))


class SoftwarePlatform:
    """Software authenticator holding its keys in memory."""

    def __init__(self, available: bool = True, user_verifying: bool = True) -> None:
        self.available = available
        self.user_verifying = user_verifying
        self._credentials: Dict[bytes, Dict[str, Any]] = {}
        self._pending_failure: Optional[PlatformError] = None

    def is_available(self) -> bool:
        return self.available

    def decline_next(self, error: Optional[PlatformError] = None) -> None:
        """Make the next ceremony fail with ``error`` (default: user declined)."""
        self._pending_failure = error or NotAllowedError(
            "The operation either timed out or was not allowed."
        )

    def _begin(self) -> None:
        if not self.available:
            raise NotSupportedError("No platform authenticator available")
        if self._pending_failure is not None:
            failure, self._pending_failure = self._pending_failure, None
            raise failure

    def create(self, options: CreateCeremonyOptions) -> PlatformCredential:
        """
        Register a new credential for ``options.rp.id``.

        Step-by-step:
        1. Refuse if any excluded credential is already held for this RP
        2. Pick the first requested algorithm this authenticator supports
        3. Generate the key pair and a random 16-byte credential id
        4. Sign rp_id || SHA256(challenge) as proof of possession
        """
        self._begin()
        rp_id = options.rp.id

        for descriptor in options.exclude_credentials or []:
            held = self._credentials.get(descriptor.id)
            if held is not None and held["rp_id"] == rp_id:
                raise InvalidStateError("The authenticator already holds an excluded credential")

        alg = next(
            (p.alg for p in options.pub_key_cred_params if p.alg in SUPPORTED_ALGORITHMS),
            None,
        )
        if alg is None:
            raise NotSupportedError("None of the requested algorithms is supported")

        private_key = _generate_key(alg)
        credential_id = os.urandom(16)
        self._credentials[credential_id] = {
            "rp_id": rp_id,
            "alg": alg,
            "private_key": private_key,
            "user_handle": options.user.id,
            "sign_counter": 0,
        }

        message = rp_id.encode("utf-8") + sha256(options.challenge)
        return PlatformCredential(
            raw_id=credential_id,
            public_key=_public_bytes(private_key),
            alg=alg,
            signature=_sign(private_key, message),
            sign_counter=0,
            user_handle=options.user.id,
        )

    def get(self, options: GetCeremonyOptions) -> PlatformCredential:
        """
        Sign the challenge with a credential bound to ``options.rp_id``.

        Only credentials named in allow_credentials qualify when that list is
        non-empty; otherwise any credential held for the RP (discoverable) does.
        """
        self._begin()
        if (
            options.user_verification == UserVerificationRequirement.REQUIRED
            and not self.user_verifying
        ):
            raise NotAllowedError("User verification is required but not supported")

        allowed = {d.id for d in options.allow_credentials or []}
        candidates: List[bytes] = [
            credential_id
            for credential_id, held in self._credentials.items()
            if held["rp_id"] == options.rp_id and (not allowed or credential_id in allowed)
        ]
        if not candidates:
            raise NotAllowedError("No matching credential for this relying party")

        credential_id = candidates[0]
        held = self._credentials[credential_id]
        held["sign_counter"] += 1

        counter_bytes = int(held["sign_counter"]).to_bytes(4, "big")
        message = options.rp_id.encode("utf-8") + sha256(options.challenge) + counter_bytes
        return PlatformCredential(
            raw_id=credential_id,
            public_key=_public_bytes(held["private_key"]),
            alg=held["alg"],
            signature=_sign(held["private_key"], message),
            sign_counter=held["sign_counter"],
            user_handle=held["user_handle"],
        )

    def debug_dump(self) -> Dict[str, dict]:
        """JSON-friendly view of the held credentials (no private keys)."""
        return {
            base64url_encode(credential_id): {
                "rp_id": held["rp_id"],
                "alg": held["alg"],
                "public_key_b64u": base64url_encode(_public_bytes(held["private_key"])),
                "sign_counter": held["sign_counter"],
            }
            for credential_id, held in self._credentials.items()
        }
