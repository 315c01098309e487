"""
authenticator.py
================
Runs complete biometric authentication flows on top of the auth core.

BiometricAuthenticator ties the pieces together:
- builds ceremony options (CeremonyOptionBuilder)
- hands them to the platform credential primitive (browser, OS bridge, or
  SoftwarePlatform) and maps its named failures onto ErrorCode
- records new credential ids per user (CredentialIndex)
- issues an encrypted session on success (SessionManager), so later access
  checks do not repeat the ceremony until the session expires

A failed or cancelled ceremony never creates a session. Storage failures are
not caught here and propagate to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from ceremony import CeremonyOptionBuilder, CreateCeremonyOptions, GetCeremonyOptions
from credential_index import CredentialIndex
from crypto_utils import EnvelopeCipher, RandomSource, from_buffer
from errors import AuthError, CeremonyAborted, ErrorCode, PlatformError
from session import Clock, CredentialBlobManager, SessionManager, SessionRecord
from settings import Settings
from software_platform import SoftwarePlatform
from vault_store import JsonFileStore, KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)

# DOMException name -> (normalized code, user-facing message)
PLATFORM_ERRORS = {
    "NotAllowedError": (ErrorCode.USER_CANCELLED, "User cancelled the authentication"),
    "AbortError": (ErrorCode.USER_CANCELLED, "Authentication was aborted"),
    "SecurityError": (ErrorCode.INVALID_CONTEXT, "Security error during authentication"),
    "InvalidStateError": (ErrorCode.INVALID_CONTEXT, "Invalid authentication context"),
    "NotSupportedError": (ErrorCode.NOT_AVAILABLE, "Biometric authentication not supported"),
}


class PlatformCredentials(Protocol):
    """The platform credential primitive. Returned objects expose ``raw_id: bytes``."""

    def is_available(self) -> bool:
        ...

    def create(self, options: CreateCeremonyOptions) -> Any:
        ...

    def get(self, options: GetCeremonyOptions) -> Any:
        ...


def map_platform_error(exc: BaseException) -> AuthError:
    """Normalize a named platform failure; unknown names map to UNKNOWN."""
    name = getattr(exc, "name", None) or type(exc).__name__
    code, message = PLATFORM_ERRORS.get(name, (ErrorCode.UNKNOWN, str(exc) or "Unknown error occurred"))
    return AuthError(code=code, message=message)


@dataclass
class AuthResult:
    success: bool
    session: Optional[SessionRecord] = None
    credential_id: Optional[str] = None
    error: Optional[AuthError] = None
    platform: str = "web"

    @property
    def token(self) -> Optional[str]:
        return self.session.token if self.session else None

    @classmethod
    def failure(cls, error: AuthError, platform: str = "web") -> "AuthResult":
        return cls(success=False, error=error, platform=platform)

    @classmethod
    def from_native(cls, outcome: Mapping[str, Any], platform: str = "native") -> "AuthResult":
        """Normalize a native adapter's ``{success, error?: {code, message}}`` outcome."""
        if outcome.get("success") is True:
            return cls(success=True, platform=platform)
        return cls.failure(AuthError.from_mapping(outcome.get("error")), platform=platform)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "platform": self.platform}
        if self.session is not None:
            result["token"] = self.session.token
            result["expiresAt"] = self.session.expires_at
        if self.credential_id is not None:
            result["credentialId"] = self.credential_id
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


def _as_create_options(options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Translate assertion-shaped options (caller or site defaults) for the registration fallback."""
    create = dict(options or {})
    rp_id = create.pop("rpId", None)
    user_verification = create.pop("userVerification", None)
    create.pop("allowCredentials", None)
    if rp_id is not None:
        create["rp"] = {"id": rp_id, **dict(create.get("rp") or {})}
    if user_verification is not None:
        create["authenticatorSelection"] = {
            "userVerification": user_verification,
            **dict(create.get("authenticatorSelection") or {}),
        }
    return create


class BiometricAuthenticator:
    """Credential ceremonies plus session bookkeeping for one application."""

    def __init__(
        self,
        platform: PlatformCredentials,
        builder: CeremonyOptionBuilder,
        credentials: CredentialIndex,
        sessions: SessionManager,
        blobs: Optional[CredentialBlobManager] = None,
        session_duration_ms: Optional[int] = None,
        platform_name: str = "web",
    ) -> None:
        self._platform = platform
        self._builder = builder
        self.credentials = credentials
        self.sessions = sessions
        self.blobs = blobs
        self._session_duration_ms = session_duration_ms
        self.platform_name = platform_name

    def is_available(self) -> bool:
        try:
            return bool(self._platform.is_available())
        except PlatformError as exc:
            logger.info("Platform availability probe failed: %s", exc)
            return False

    def _unavailable(self) -> AuthResult:
        return AuthResult.failure(
            AuthError(ErrorCode.NOT_AVAILABLE, "Biometric authentication not available"),
            platform=self.platform_name,
        )

    def _succeed(self, raw_id: bytes, scope: Optional[str]) -> AuthResult:
        credential_id = from_buffer(raw_id, url_safe=True)
        self.credentials.store(credential_id, scope)
        record = self.sessions.start(
            self._session_duration_ms,
            metadata={"credentialId": credential_id, "scope": scope, "platform": self.platform_name},
        )
        logger.info("Authentication succeeded, session valid until %d", record.expires_at)
        return AuthResult(
            success=True, session=record, credential_id=credential_id, platform=self.platform_name
        )

    def _fail(self, exc: PlatformError) -> AuthResult:
        error = map_platform_error(exc)
        logger.info("Ceremony failed (%s): %s", error.code.value, exc)
        return AuthResult.failure(error, platform=self.platform_name)

    def register(
        self,
        options: Optional[Mapping[str, Any]] = None,
        scope: Optional[str] = None,
        site_defaults: Optional[Mapping[str, Any]] = None,
    ) -> AuthResult:
        """
        Run a registration ceremony.

        Step-by-step:
        1. Bail out with NOT_AVAILABLE when there is no platform authenticator
        2. Build create options and hand them to the platform primitive
        3. Map a named platform failure to a failed result
        4. On success record the credential id for ``scope`` and start a session
        """
        if not self.is_available():
            return self._unavailable()
        create_options = self._builder.build_create_options(options, site_defaults)
        try:
            credential = self._platform.create(create_options)
        except PlatformError as exc:
            return self._fail(exc)
        if credential is None:
            return AuthResult.failure(
                AuthError(ErrorCode.AUTHENTICATION_FAILED, "Failed to create credential"),
                platform=self.platform_name,
            )
        return self._succeed(credential.raw_id, scope)

    def authenticate(
        self,
        options: Optional[Mapping[str, Any]] = None,
        scope: Optional[str] = None,
        site_defaults: Optional[Mapping[str, Any]] = None,
    ) -> AuthResult:
        """
        Assert with a stored credential, or register one if the scope has none.

        ``options`` are assertion-shaped (rpId, userVerification, ...). The
        allow list is the caller's entries followed by the scope's stored ids.
        """
        stored = self.credentials.list(scope)
        if not stored:
            logger.debug("No stored credentials for scope %s, registering", scope)
            return self.register(
                _as_create_options(options), scope, _as_create_options(site_defaults)
            )

        if not self.is_available():
            return self._unavailable()
        caller = dict(options or {})
        caller["allowCredentials"] = list(caller.get("allowCredentials") or []) + [
            {"id": credential_id, "type": "public-key"} for credential_id in stored
        ]
        get_options = self._builder.build_get_options(caller, site_defaults)
        try:
            credential = self._platform.get(get_options)
        except PlatformError as exc:
            return self._fail(exc)
        if credential is None:
            return AuthResult.failure(
                AuthError(ErrorCode.AUTHENTICATION_FAILED, "Failed to authenticate"),
                platform=self.platform_name,
            )
        return self._succeed(credential.raw_id, scope)

    def ensure_authenticated(
        self,
        options: Optional[Mapping[str, Any]] = None,
        scope: Optional[str] = None,
        site_defaults: Optional[Mapping[str, Any]] = None,
    ) -> SessionRecord:
        """Return the live session, running a ceremony only when there is none."""
        record = self.sessions.current()
        if record is not None:
            return record
        result = self.authenticate(options, scope, site_defaults)
        if not result.success or result.session is None:
            raise CeremonyAborted(
                result.error or AuthError(ErrorCode.AUTHENTICATION_FAILED, "Authentication failed")
            )
        return result.session

    def accept_native_outcome(
        self, outcome: Mapping[str, Any], platform: str = "native"
    ) -> AuthResult:
        """Turn a native adapter outcome into an AuthResult, starting a session on success."""
        result = AuthResult.from_native(outcome, platform=platform)
        if not result.success:
            logger.info("Native authentication failed: %s", result.error)
            return result
        result.session = self.sessions.start(
            self._session_duration_ms, metadata={"platform": platform}
        )
        return result

    def is_authenticated(self) -> bool:
        return self.sessions.is_valid()

    def logout(self) -> None:
        self.sessions.clear()

    def delete_credentials(self, scope: Optional[str] = None) -> None:
        """Forget credential ids (one scope or all), end the session, and drop blobs when clearing all."""
        self.credentials.clear(scope)
        self.sessions.clear()
        if scope is None and self.blobs is not None:
            self.blobs.clear_all()


def build_authenticator(
    settings: Optional[Settings] = None,
    platform: Optional[PlatformCredentials] = None,
    durable_store: Optional[KeyValueStore] = None,
    session_store: Optional[KeyValueStore] = None,
    random: Optional[RandomSource] = None,
    clock: Optional[Clock] = None,
) -> BiometricAuthenticator:
    """Wire a BiometricAuthenticator from settings; unspecified collaborators get defaults."""
    settings = (settings or Settings.from_env()).validate()
    if platform is None:
        platform = SoftwarePlatform()

    durable = durable_store if durable_store is not None else JsonFileStore(settings.store_path)
    envelope = EnvelopeCipher(
        settings.encryption_secret,
        salt=settings.kdf_salt,
        iterations=settings.kdf_iterations,
        random=random,
    )
    return BiometricAuthenticator(
        platform=platform,
        builder=CeremonyOptionBuilder(settings.origin, settings.rp_name, random=random),
        credentials=CredentialIndex(durable),
        sessions=SessionManager(
            session_store if session_store is not None else MemoryStore(),
            envelope,
            random=random,
            clock=clock,
            default_duration_ms=settings.session_duration_ms,
        ),
        blobs=CredentialBlobManager(durable, envelope),
        session_duration_ms=settings.session_duration_ms,
    )
