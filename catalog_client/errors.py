"""
Error taxonomy shared by every coordinator.

Transport and HTTP outcomes are normalised into a closed set of
``ErrorKind`` values so the presentation layer can pick its copy per kind
without looking at status codes or exception types.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    ALREADY_IN_PROGRESS = "already_in_progress"
    NETWORK = "network"
    AUTH = "auth"
    VALIDATION = "validation"
    SERVER = "server"
    CANCELLED = "cancelled"


class CatalogError(Exception):
    """A classified failure of a catalog operation."""

    def __init__(self, kind: ErrorKind, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Whether repeating the same call unchanged may succeed."""
        return self.kind in (ErrorKind.NETWORK, ErrorKind.SERVER)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"CatalogError(kind={self.kind.value!r}, message={self.message!r}, status_code={self.status_code!r})"


@dataclass
class Result:
    """Outcome of a coordinator operation: a value or a ``CatalogError``."""
    value: Any = None
    error: Optional[CatalogError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: "CatalogError | ErrorKind", message: str = "", status_code: Optional[int] = None) -> "Result":
        if isinstance(error, ErrorKind):
            error = CatalogError(error, message, status_code)
        return cls(error=error)


def _body_message(response: httpx.Response) -> Optional[str]:
    """Pull a human readable message out of a JSON error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for key in ("message", "error", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


class ErrorClassifier:
    """Maps HTTP responses and transport exceptions onto ``ErrorKind``."""

    @staticmethod
    def classify(response: httpx.Response) -> Optional[CatalogError]:
        """Return the error carried by ``response`` or None when it succeeded."""
        status = response.status_code
        reason = response.reason_phrase or f"HTTP {status}"

        if status == 401:
            return CatalogError(ErrorKind.AUTH, _body_message(response) or "Unauthorized", status)
        if 400 <= status < 500:
            return CatalogError(ErrorKind.VALIDATION, _body_message(response) or reason, status)
        if status >= 500:
            return CatalogError(ErrorKind.SERVER, _body_message(response) or reason, status)
        if not 200 <= status < 300:
            return CatalogError(ErrorKind.SERVER, f"Unexpected response: {reason}", status)

        # The catalog API reports some rejections as 2xx with success=false
        if response.content:
            try:
                body = response.json()
            except ValueError:
                return None
            if isinstance(body, dict) and body.get("success") is False:
                message = body.get("error") or body.get("message") or "Request was rejected"
                return CatalogError(ErrorKind.VALIDATION, str(message), status)
        return None

    @staticmethod
    def classify_exception(exc: Exception) -> CatalogError:
        """Classify a transport level exception raised before any response arrived."""
        if isinstance(exc, httpx.TimeoutException):
            return CatalogError(ErrorKind.NETWORK, "Request timed out")
        if isinstance(exc, httpx.RequestError):
            return CatalogError(ErrorKind.NETWORK, f"Network error: {exc.__class__.__name__}")
        raise TypeError(f"Cannot classify non-transport exception: {exc!r}") from exc
