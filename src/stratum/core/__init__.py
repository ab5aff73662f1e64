"""Core modules for Stratum - centralized definitions and utilities."""

from stratum.core.errors import (
    ConfigurationError,
    ExitCode,
    InvalidResourceError,
    MissingIdentityError,
    MonitorCallError,
    MonitorUnavailableError,
    OutputAlreadyResolvedError,
    OutputsAttachError,
    RegistrationError,
    StratumError,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "StratumError",
    "ConfigurationError",
    "InvalidResourceError",
    "MissingIdentityError",
    "RegistrationError",
    "OutputsAttachError",
    "OutputAlreadyResolvedError",
    "MonitorCallError",
    "MonitorUnavailableError",
    "main_with_error_handling",
]
