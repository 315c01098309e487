"""
errors.py
=========
Exception types and normalized error codes shared by the auth core.

Propagation rules:
- DecodeFailure, SessionInvalid and CryptoUnavailable are recovered locally
  (callers see "no value" or a degraded envelope, never the exception)
- CeremonyAborted is surfaced so the UI can offer a fallback
- StorageFailure always propagates; there is no safe way to continue
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class ErrorCode(str, Enum):
    """Reason codes shared by the web path and the native adapters (wire values)."""

    AUTHENTICATION_FAILED = "authenticationFailed"
    USER_CANCELLED = "userCancelled"
    SYSTEM_CANCELLED = "systemCancelled"
    NOT_AVAILABLE = "notAvailable"
    PERMISSION_DENIED = "permissionDenied"
    LOCKED_OUT = "lockedOut"
    INVALID_CONTEXT = "invalidContext"
    NOT_ENROLLED = "notEnrolled"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @classmethod
    def normalize(cls, value: Any) -> "ErrorCode":
        """
        Map an adapter-supplied code onto the enum, UNKNOWN if unrecognized.

        Accepts the camelCase wire value (``lockedOut``), the member name
        (``LOCKED_OUT``) and the short ``lockout`` spelling, in any case.
        """
        if isinstance(value, cls):
            return value
        return _CODE_LOOKUP.get(_compact(value), cls.UNKNOWN)


def _compact(value: Any) -> str:
    return str(value).replace("_", "").replace("-", "").lower()


_CODE_LOOKUP = {_compact(code.value): code for code in ErrorCode}
_CODE_LOOKUP["lockout"] = ErrorCode.LOCKED_OUT


@dataclass
class AuthError:
    code: ErrorCode
    message: str

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "AuthError":
        raw = raw or {}
        return cls(
            code=ErrorCode.normalize(raw.get("code")),
            message=str(raw.get("message") or "Authentication failed"),
        )

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class BiometricAuthError(Exception):
    """Base class for every error raised by this package."""


class DecodeFailure(BiometricAuthError, ValueError):
    """Strict decoding was requested and the input is not in that format."""


class CryptoUnavailable(BiometricAuthError):
    """The AEAD primitive cannot be used on this host."""


class SessionInvalid(BiometricAuthError):
    """An envelope failed verification or could not be parsed."""


class StorageFailure(BiometricAuthError):
    """The backing key-value store could not be read or written."""


class CeremonyAborted(BiometricAuthError):
    """A credential ceremony did not complete; carries the normalized reason."""

    def __init__(self, error: AuthError) -> None:
        super().__init__(f"{error.code.value}: {error.message}")
        self.error = error


# -----------------------------------------------------------------------------
# Named failures raised by the platform credential primitive
# -----------------------------------------------------------------------------
class PlatformError(Exception):
    """Base for failures raised by a platform credential primitive."""

    name = "UnknownError"


class NotAllowedError(PlatformError):
    """User declined or the ceremony timed out."""

    name = "NotAllowedError"


class AbortError(PlatformError):
    name = "AbortError"


class SecurityError(PlatformError):
    """Insecure context or RP id not valid for the origin."""

    name = "SecurityError"


class NotSupportedError(PlatformError):
    name = "NotSupportedError"


class InvalidStateError(PlatformError):
    """E.g. an excluded credential already lives on the authenticator."""

    name = "InvalidStateError"
