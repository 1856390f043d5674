"""
Error taxonomy for tenant lifecycle and token coordination.

`CallerFacingError.code` uses Firebase's callable/blocking-function error codes
(`invalid-argument`, `internal`, ...) so entrypoints can map it 1:1 onto
`https_fn.FunctionsErrorCode`.
"""

from __future__ import annotations

from typing import Any, Optional


class ZonemapError(Exception):
    pass


class CallerFacingError(ZonemapError):
    """
    An error whose kind is meaningful to the caller and must propagate unchanged.
    """

    code: str = "internal"
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.user_message = user_message or message or self.default_message


class InvalidIdentity(CallerFacingError):
    code = "invalid-argument"
    default_message = "User data is invalid - missing UID"


class ProvisioningFailed(CallerFacingError):
    code = "internal"
    default_message = "Failed to set up tenant for user"


class CascadeDeleteFailed(CallerFacingError):
    code = "internal"
    default_message = "Cascade delete failed"

    def __init__(self, message: str | None = None, *, report: Any = None) -> None:
        super().__init__(message)
        self.report = report


class NoTokenAvailable(CallerFacingError):
    code = "unauthenticated"
    default_message = "No authentication token available"


class AuthExpired(CallerFacingError):
    code = "unauthenticated"
    default_message = "Authorization expired"
    status_code = 401

    def __init__(self, message: str | None = None, *, response: Any = None) -> None:
        super().__init__(message)
        self.response = response


class UserCancelled(CallerFacingError):
    code = "cancelled"
    default_message = "Sign-in was cancelled"


class IdentityStoreError(CallerFacingError):
    code = "unavailable"
    default_message = "Identity provider request failed"

    def __init__(self, message: str | None = None, *, reason: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class MissingTenantScope(CallerFacingError):
    code = "failed-precondition"
    default_message = "No tenant selected"


class DocumentWriteFailed(CallerFacingError):
    code = "internal"
    default_message = "Failed to write document"


def is_auth_expired(exc: BaseException) -> bool:
    """
    True for 401-class failures: AuthExpired, or anything carrying status_code=401
    directly (ws/http client errors) or on `.response` (requests.HTTPError).
    """
    if isinstance(exc, AuthExpired):
        return True
    if getattr(exc, "status_code", None) == 401:
        return True
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None) == 401
