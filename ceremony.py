"""
ceremony.py
===========
Builds complete WebAuthn "create" and "get" options from partial input.

Callers hand in WebAuthn-shaped mappings (camelCase keys, binary fields as
bytes or base64/base64url strings). The builder merges them with per-site
defaults and built-in fallbacks, turns every binary field into real bytes, and
returns option objects whose fields mirror PublicKeyCredentialCreationOptions
and PublicKeyCredentialRequestOptions one-to-one.

Resolution order for every field: caller value -> site default -> built-in.
A value counts as supplied when it is not None.

This module performs no I/O; only the random source is consumed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Type, TypeVar
from urllib.parse import urlparse

from fido2.cose import ES256, RS256
from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from crypto_utils import RandomSource, from_buffer, generate_challenge, to_buffer

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 60000
DEFAULT_ALGORITHMS = (ES256.ALGORITHM, RS256.ALGORITHM)  # -7, -257
MIN_CHALLENGE_LENGTH = 16
MAX_USER_ID_LENGTH = 64
DEFAULT_USER_ID_LENGTH = 16
KNOWN_HINTS = ("security-key", "client-device", "hybrid")

E = TypeVar("E")
Options = Mapping[str, Any]


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _section(options: Optional[Options], key: str) -> Mapping[str, Any]:
    value = (options or {}).get(key)
    return value if isinstance(value, Mapping) else {}


def _enum(enum_cls: Type[E], *candidates: Any) -> Optional[E]:
    """First candidate that is a known member of ``enum_cls``; unknown values are skipped."""
    members = {member.value: member for member in enum_cls}  # type: ignore[attr-defined]
    for candidate in candidates:
        if candidate is None:
            continue
        value = getattr(candidate, "value", candidate)
        if value in members:
            return members[value]
        logger.warning("Ignoring unknown %s value %r", enum_cls.__name__, candidate)
    return None


def _known_transports(raw: Optional[Iterable[Any]]) -> Optional[List[AuthenticatorTransport]]:
    if raw is None:
        return None
    transports = []
    for item in raw:
        transport = _enum(AuthenticatorTransport, item)
        if transport is not None:
            transports.append(transport)
    return transports


def _to_descriptor(entry: Any) -> Optional[PublicKeyCredentialDescriptor]:
    """Accepts a descriptor, a descriptor mapping, or a bare credential id."""
    if isinstance(entry, PublicKeyCredentialDescriptor):
        raw_id, transports = entry.id, entry.transports
    elif isinstance(entry, Mapping):
        raw_id, transports = entry.get("id"), entry.get("transports")
    else:
        raw_id, transports = entry, None

    credential_id = to_buffer(raw_id)
    if not credential_id:
        logger.warning("Dropping credential descriptor without a decodable id")
        return None
    return PublicKeyCredentialDescriptor(
        type=PublicKeyCredentialType.PUBLIC_KEY,
        id=credential_id,
        transports=_known_transports(transports),
    )


def merge_descriptors(
    caller: Optional[Iterable[Any]], defaults: Optional[Iterable[Any]]
) -> Optional[List[PublicKeyCredentialDescriptor]]:
    """
    Union two descriptor lists.

    Caller entries come first; a default entry whose decoded id is already
    present is dropped, so the caller's transports win on collision. Returns
    None when neither side supplied a list.
    """
    if caller is None and defaults is None:
        return None
    merged: List[PublicKeyCredentialDescriptor] = []
    seen = set()
    for entry in list(caller or []) + list(defaults or []):
        descriptor = _to_descriptor(entry)
        if descriptor is None or descriptor.id in seen:
            continue
        seen.add(descriptor.id)
        merged.append(descriptor)
    return merged


def _alg(param: Any) -> int:
    if isinstance(param, Mapping):
        return int(param["alg"])
    return int(param.alg)


def _merge_maps(caller: Any, defaults: Any) -> Optional[Dict[str, Any]]:
    if caller is None and defaults is None:
        return None
    return {**dict(defaults or {}), **dict(caller or {})}


def _hints(caller: Optional[Options], defaults: Optional[Options]) -> Optional[List[str]]:
    raw = _first((caller or {}).get("hints"), (defaults or {}).get("hints"))
    if raw is None:
        return None
    return [hint for hint in raw if hint in KNOWN_HINTS]


# -----------------------------------------------------------------------------
# Serialization helpers shared by both option types
# -----------------------------------------------------------------------------
Encoder = Callable[[bytes], Any]


def _identity(data: bytes) -> bytes:
    return data


def _descriptor_dict(descriptor: PublicKeyCredentialDescriptor, encode: Encoder) -> Dict[str, Any]:
    result: Dict[str, Any] = {"type": descriptor.type.value, "id": encode(descriptor.id)}
    if descriptor.transports is not None:
        result["transports"] = [t.value for t in descriptor.transports]
    return result


def _selection_dict(selection: AuthenticatorSelectionCriteria, supplied: Iterable[str]) -> Dict[str, Any]:
    """Only the members named in ``supplied``; fido2 back-fills residentKey otherwise."""
    values = {
        "authenticatorAttachment": selection.authenticator_attachment,
        "residentKey": selection.resident_key,
        "requireResidentKey": selection.require_resident_key,
        "userVerification": selection.user_verification,
    }
    supplied = set(supplied)
    result: Dict[str, Any] = {}
    for key, value in values.items():
        if key in supplied and value is not None:
            result[key] = getattr(value, "value", value)
    return result


def _set_optional(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        target[key] = value


@dataclass
class CreateCeremonyOptions:
    """Mirror of PublicKeyCredentialCreationOptions with all binary fields as bytes."""

    challenge: bytes
    rp: PublicKeyCredentialRpEntity
    user: PublicKeyCredentialUserEntity
    pub_key_cred_params: List[PublicKeyCredentialParameters]
    timeout: int
    attestation: AttestationConveyancePreference
    authenticator_selection: Optional[AuthenticatorSelectionCriteria] = None
    exclude_credentials: Optional[List[PublicKeyCredentialDescriptor]] = None
    extensions: Optional[Dict[str, Any]] = None
    hints: Optional[List[str]] = None
    attestation_formats: Optional[List[str]] = None
    selection_fields: List[str] = field(default_factory=list, repr=False)

    def to_dict(self, encode: Encoder = _identity) -> Dict[str, Any]:
        """camelCase WebAuthn dictionary; binary fields pass through ``encode``."""
        result: Dict[str, Any] = {
            "challenge": encode(self.challenge),
            "rp": {"id": self.rp.id, "name": self.rp.name},
            "user": {
                "id": encode(self.user.id),
                "name": self.user.name,
                "displayName": self.user.display_name,
            },
            "pubKeyCredParams": [
                {"type": p.type.value, "alg": p.alg} for p in self.pub_key_cred_params
            ],
            "timeout": self.timeout,
            "attestation": self.attestation.value,
        }
        if self.authenticator_selection is not None:
            result["authenticatorSelection"] = _selection_dict(self.authenticator_selection, self.selection_fields)
        if self.exclude_credentials is not None:
            result["excludeCredentials"] = [
                _descriptor_dict(d, encode) for d in self.exclude_credentials
            ]
        _set_optional(result, "extensions", self.extensions)
        _set_optional(result, "hints", self.hints)
        _set_optional(result, "attestationFormats", self.attestation_formats)
        return result

    def to_json(self) -> Dict[str, Any]:
        """Same as to_dict() with binary fields as unpadded base64url."""
        return self.to_dict(encode=from_buffer)


@dataclass
class GetCeremonyOptions:
    """Mirror of PublicKeyCredentialRequestOptions with all binary fields as bytes."""

    challenge: bytes
    rp_id: str
    timeout: int
    user_verification: UserVerificationRequirement
    allow_credentials: Optional[List[PublicKeyCredentialDescriptor]] = None
    extensions: Optional[Dict[str, Any]] = None
    hints: Optional[List[str]] = None

    def to_dict(self, encode: Encoder = _identity) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "challenge": encode(self.challenge),
            "rpId": self.rp_id,
            "timeout": self.timeout,
            "userVerification": self.user_verification.value,
        }
        if self.allow_credentials is not None:
            result["allowCredentials"] = [
                _descriptor_dict(d, encode) for d in self.allow_credentials
            ]
        _set_optional(result, "extensions", self.extensions)
        _set_optional(result, "hints", self.hints)
        return result

    def to_json(self) -> Dict[str, Any]:
        return self.to_dict(encode=from_buffer)


class CeremonyOptionBuilder:
    """
    Produces fully populated ceremony options for one origin.

    ``origin`` supplies the built-in relying party id (its host name);
    ``rp_name`` the built-in display name (the host when omitted).
    """

    def __init__(
        self,
        origin: str,
        rp_name: Optional[str] = None,
        random: Optional[RandomSource] = None,
    ) -> None:
        self.host = urlparse(origin).hostname or origin
        self.rp_name = rp_name or self.host
        self._random = random or os.urandom

    def _challenge(self, caller: Optional[Options]) -> bytes:
        challenge = to_buffer((caller or {}).get("challenge"))
        if challenge is None:
            return generate_challenge(self._random)
        if len(challenge) < MIN_CHALLENGE_LENGTH:
            raise ValueError(
                f"Challenge must be at least {MIN_CHALLENGE_LENGTH} bytes, got {len(challenge)}"
            )
        return challenge

    def _user(self, caller: Optional[Options], defaults: Optional[Options]) -> PublicKeyCredentialUserEntity:
        user = _section(caller, "user")
        default_user = _section(defaults, "user")

        user_id = _first(to_buffer(user.get("id")), to_buffer(default_user.get("id")))
        if user_id is None:
            user_id = self._random(DEFAULT_USER_ID_LENGTH)
        if len(user_id) > MAX_USER_ID_LENGTH:
            raise ValueError(f"User id must be at most {MAX_USER_ID_LENGTH} bytes")

        return PublicKeyCredentialUserEntity(
            name=_first(user.get("name"), default_user.get("name"), f"user@{self.host}"),
            id=user_id,
            display_name=_first(user.get("displayName"), default_user.get("displayName"), "User"),
        )

    def _authenticator_selection(
        self, merged: Optional[Dict[str, Any]]
    ) -> Optional[AuthenticatorSelectionCriteria]:
        if merged is None:
            return None
        return AuthenticatorSelectionCriteria(
            authenticator_attachment=_enum(AuthenticatorAttachment, merged.get("authenticatorAttachment")),
            resident_key=_enum(ResidentKeyRequirement, merged.get("residentKey")),
            user_verification=_enum(UserVerificationRequirement, merged.get("userVerification")),
            require_resident_key=merged.get("requireResidentKey"),
        )

    def build_create_options(
        self, caller: Optional[Options] = None, site_defaults: Optional[Options] = None
    ) -> CreateCeremonyOptions:
        """
        Merge caller options and site defaults into registration options.

        Step-by-step:
        1. Decode the caller challenge, or draw a fresh one
        2. Resolve rp, user, algorithms, timeout and attestation field by field
        3. Dict-merge authenticatorSelection and extensions (caller wins)
        4. Union excludeCredentials, decoding every id to bytes
        """
        caller = caller or {}
        defaults = site_defaults or {}
        rp = _section(caller, "rp")
        default_rp = _section(defaults, "rp")

        selection = _merge_maps(
            caller.get("authenticatorSelection"), defaults.get("authenticatorSelection")
        )
        params = _first(caller.get("pubKeyCredParams"), defaults.get("pubKeyCredParams"))
        if params is None:
            params = [{"type": "public-key", "alg": alg} for alg in DEFAULT_ALGORITHMS]

        return CreateCeremonyOptions(
            challenge=self._challenge(caller),
            rp=PublicKeyCredentialRpEntity(
                name=_first(rp.get("name"), default_rp.get("name"), self.rp_name),
                id=_first(rp.get("id"), default_rp.get("id"), self.host),
            ),
            user=self._user(caller, defaults),
            pub_key_cred_params=[
                PublicKeyCredentialParameters(type=PublicKeyCredentialType.PUBLIC_KEY, alg=_alg(param))
                for param in params
            ],
            timeout=_first(caller.get("timeout"), defaults.get("timeout"), DEFAULT_TIMEOUT_MS),
            attestation=_enum(
                AttestationConveyancePreference,
                caller.get("attestation"),
                defaults.get("attestation"),
                "none",
            ),
            authenticator_selection=self._authenticator_selection(selection),
            exclude_credentials=merge_descriptors(
                caller.get("excludeCredentials"), defaults.get("excludeCredentials")
            ),
            extensions=_merge_maps(caller.get("extensions"), defaults.get("extensions")),
            hints=_hints(caller, defaults),
            attestation_formats=_first(
                caller.get("attestationFormats"), defaults.get("attestationFormats")
            ),
            selection_fields=[key for key, value in (selection or {}).items() if value is not None],
        )

    def build_get_options(
        self, caller: Optional[Options] = None, site_defaults: Optional[Options] = None
    ) -> GetCeremonyOptions:
        """Merge caller options and site defaults into assertion options."""
        caller = caller or {}
        defaults = site_defaults or {}
        return GetCeremonyOptions(
            challenge=self._challenge(caller),
            rp_id=_first(caller.get("rpId"), defaults.get("rpId"), self.host),
            timeout=_first(caller.get("timeout"), defaults.get("timeout"), DEFAULT_TIMEOUT_MS),
            user_verification=_enum(
                UserVerificationRequirement,
                caller.get("userVerification"),
                defaults.get("userVerification"),
                "preferred",
            ),
            allow_credentials=merge_descriptors(
                caller.get("allowCredentials"), defaults.get("allowCredentials")
            ),
            extensions=_merge_maps(caller.get("extensions"), defaults.get("extensions")),
            hints=_hints(caller, defaults),
        )
