import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import requests
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError


class ErrorKind(str, Enum):
    """Classes of failure a retrieval can end with."""

    NOT_FOUND = "NotFound"
    TIMEOUT = "Timeout"
    VALIDATION_FAILURE = "ValidationFailure"
    NETWORK_ERROR = "NetworkError"
    AUTHENTICATION_REQUIRED = "AuthenticationRequired"
    SITE_STRUCTURE_CHANGED = "SiteStructureChanged"


class ConfigurationError(Exception):
    """Raised for invalid settings or adapter declarations."""


@dataclass(frozen=True)
class ErrorInfo:
    """A failure as reported in a stage result or the final retrieval result."""

    kind: ErrorKind
    message: str
    step: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "step": self.step}


@dataclass(frozen=True)
class Failure:
    """
    An expected, recoverable miss returned in place of a value.

    Failures are falsy so call sites can write ``if not element: ...``.
    """

    kind: ErrorKind
    message: str

    def __bool__(self) -> bool:
        return False

    def to_error(self, step: Optional[str] = None) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=self.message, step=step)


@dataclass(frozen=True)
class NotFound(Failure):
    """A selector, record or reference that could not be found."""

    kind: ErrorKind = ErrorKind.NOT_FOUND
    message: str = "not found"
    tried: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CaptureFailure(Failure):
    """A document capture attempt that produced no valid document."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILURE
    message: str = "capture failed"
    strategy: Optional[str] = None


def classify_exception(exc: BaseException) -> Optional[ErrorKind]:
    """
    Map an interaction exception to an ErrorKind.

    Returns None for anything that is not a browser or transport failure;
    those are programming errors and should propagate.
    """
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, PlaywrightError):
        message = str(exc)
        if "net::" in message or "NS_ERROR" in message:
            return ErrorKind.NETWORK_ERROR
        return ErrorKind.SITE_STRUCTURE_CHANGED
    if isinstance(exc, requests.RequestException):
        return ErrorKind.NETWORK_ERROR
    return None
