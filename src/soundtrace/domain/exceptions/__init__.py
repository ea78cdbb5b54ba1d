"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so callers can log it structured
    # without parsing str(exception). Never raise this directly, use a subclass.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when entity validation fails.

    Used to signal that an entity's invariants or business rules
    have been violated (e.g., empty track name, negative duration).
    """

    pass


class TokenRefreshException(DomainException):
    """Raised when token refresh fails and re-authentication is required.

    Common causes:
    - User revoked app access in Spotify settings
    - Refresh token expired or was already rotated by a concurrent refresh
    - App credentials changed

    The token manager catches this and reports "no token" to its callers, so
    background workers skip the user for this cycle instead of crash looping.
    """

    def __init__(
        self,
        message: str = "Token refresh failed. Please re-link the Spotify account.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status  # e.g., 400, 401

    @property
    def requires_reauth(self) -> bool:
        """Check if error requires user re-authentication."""
        # 400 with invalid_grant means the refresh token is dead,
        # 401/403 mean access denied (user revoked, etc.)
        return self.error_code == "invalid_grant" or self.http_status in (400, 401, 403)


class SyncAbortedException(DomainException):
    """Raised when a listening history sync cannot proceed for a user.

    The upstream page came back absent (transport failure, no usable token).
    Nothing after the last committed page is lost: the next run resumes from
    the stored watermark.
    """

    def __init__(self, user_id: Any, reason: str = "API returned no history") -> None:
        super().__init__(f"Sync aborted for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


class ExternalServiceException(DomainException):
    """An upstream service (Spotify, embedding or completion API) gave no usable result.

    Only raised on request paths that must report failure to the caller, such as
    answering a question or refreshing a cached ranking.
    """

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class InvalidAnswerException(DomainException):
    """The language model returned malformed or internally inconsistent JSON."""

    def __init__(self, message: str, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class UnsafeQueryException(DomainException):
    """A generated SQL statement was rejected by the read-only query guard."""

    def __init__(self, query: str) -> None:
        super().__init__("Only SELECT queries are allowed")
        self.query = query


__all__ = [
    "DomainException",
    "EntityNotFoundException",
    "ExternalServiceException",
    "InvalidAnswerException",
    "SyncAbortedException",
    "TokenRefreshException",
    "UnsafeQueryException",
    "ValidationException",
]
