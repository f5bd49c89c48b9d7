"""
=============================================================================
ERROR KINDS
=============================================================================

Every failure the framework raises on purpose derives from LambdaAPIError.

    ┌───────────────────────┬──────────────────────────────────────────────┐
    │ Error                 │ Raised when                                  │
    ├───────────────────────┼──────────────────────────────────────────────┤
    │ ConfigurationError    │ Setup is invalid (no handler, bad logger     │
    │                       │ config, non-callable middleware). Raised     │
    │                       │ directly, never turned into a response.      │
    │ ResponseError         │ A response operation is invalid, e.g.        │
    │                       │ redirect(310, url).                          │
    │ FileError             │ sendFile/download could not resolve a file.  │
    │ EventParseError       │ The inbound event could not be normalized.   │
    └───────────────────────┴──────────────────────────────────────────────┘

ResponseError, FileError and EventParseError raised while a request is
being processed go through the engine's error protocol and end up as a
JSON error body. Anything else raised by user code does too.

=============================================================================
"""

from typing import Any, Optional


class LambdaAPIError(Exception):
    """Base class for framework errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(LambdaAPIError):
    """Invalid engine, logger or middleware configuration."""


class ResponseError(LambdaAPIError):
    """
    An invalid operation on a response.

    Attributes:
        code: The status code involved in the failure, if any.
    """

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class FileError(LambdaAPIError):
    """
    A file or object could not be resolved.

    Attributes:
        details: The underlying exception or error payload, if any.
    """

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class EventParseError(LambdaAPIError):
    """The inbound event is malformed."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
