"""
Unified error handling for the Stratum resource client.

This module defines the error taxonomy raised by resource registration
and the exit codes a program run maps them to.

Exit Codes:
- 0: Success
- 10: Configuration error
- 11: Registration error (the engine rejected a resource operation)
- 12: Invalid resource definition
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for program runs."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    REGISTRATION_ERROR = 11
    INVALID_RESOURCE = 12
    UNKNOWN_ERROR = 127


class StratumError(Exception):
    """Base exception for Stratum errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(StratumError):
    """Raised when the runtime is used before it has been configured."""

    exit_code = ExitCode.CONFIG_ERROR


class InvalidResourceError(StratumError):
    """Raised for resource definitions that can never be registered."""

    exit_code = ExitCode.INVALID_RESOURCE


class MissingIdentityError(InvalidResourceError):
    """Raised when a read is requested without a pre-known resource id."""

    def __init__(self, name: str, type_: str):
        super().__init__(
            "Cannot read resource whose options are lacking an ID value",
            details={"name": name, "type": type_},
        )
        self.name = name
        self.type = type_


class RegistrationError(StratumError):
    """Raised when the engine fails a read or register call."""

    exit_code = ExitCode.REGISTRATION_ERROR

    def __init__(self, message: str, *, name: str, type_: str, detail: str):
        super().__init__(message, details={"name": name, "type": type_, "detail": detail})
        self.name = name
        self.type = type_
        self.detail = detail


class OutputsAttachError(StratumError):
    """Raised when the engine fails to attach outputs to a resource."""

    exit_code = ExitCode.REGISTRATION_ERROR

    def __init__(self, urn: str, detail: str):
        super().__init__(
            f"Failed to end new resource registration '{urn}': {detail}",
            details={"urn": urn, "detail": detail},
        )
        self.urn = urn
        self.detail = detail


class OutputAlreadyResolvedError(StratumError):
    """Raised when a deferred value is resolved a second time."""


class MonitorCallError(StratumError):
    """Raised by the transport when a resource monitor call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class MonitorUnavailableError(MonitorCallError):
    """Raised when the resource monitor endpoint is shutting down or gone."""


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for program entry points that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - StratumError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except StratumError as e:
                if log_errors:
                    logger.error(
                        "program_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("program_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator
