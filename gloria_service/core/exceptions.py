"""Application exceptions rendered as RFC 7807 problem details."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, ClassVar


class AppException(Exception):
    """Base application exception.

    The FastAPI exception handlers render every subclass as an
    ``application/problem+json`` response. Subclasses fix the status code,
    title and default problem type; callers pick a more specific ``type``.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Problem type identifier, e.g. ``unsubscribe-token-not-found``.
        title: Short summary of the problem type.
        instance: URI reference for this occurrence; the request path when unset.
        extra: Additional members merged into the problem document.

    Example:
        raise NotFoundException(
            detail="Unsubscribe token not found",
            type="unsubscribe-token-not-found",
            extra={"token": token},
        )
    """

    status_code: ClassVar[int] = 500
    default_type: ClassVar[str] = "about:blank"

    def __init__(
        self,
        detail: str,
        type: str | None = None,
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.detail = detail
        self.type = type or self.default_type
        self.title = title or default_title(self.status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)


def default_title(status_code: int) -> str:
    """Standard reason phrase for a status code, ``Error`` when unknown."""
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


class BadRequestException(AppException):
    """The request is well formed but cannot be applied, e.g. already unsubscribed."""

    status_code = 400
    default_type = "bad-request"


class NotFoundException(AppException):
    status_code = 404
    default_type = "not-found"


class ConflictException(AppException):
    """The request conflicts with current state, e.g. a retry already in flight."""

    status_code = 409
    default_type = "conflict"


__all__ = [
    "AppException",
    "BadRequestException",
    "ConflictException",
    "NotFoundException",
    "default_title",
]
