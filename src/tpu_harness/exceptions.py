"""
Exception Hierarchy for the TPU Harness

Every error raised by the harness inherits from ``HarnessError`` and carries
an optional ``details`` dictionary with structured context.

Exception Hierarchy:
- HarnessError: Base for all harness errors
  - ConfigurationError: Invalid target or configuration values
  - ServerLaunchError: Accelerator server could not be started
  - SessionError: Session could not be established
    - SessionClosedError: Operation on a closed session
  - DeviceNotAvailableError: Accelerator required but not available
  - TransferError: Host to device transfer failure
  - CompilationError: Ahead-of-time compilation failure
  - ExecutionError: Failure while running a compiled executable

Assertion mismatches are reported as plain ``AssertionError``.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class HarnessError(Exception):
    """
    Base exception for all harness errors.

    Supports an optional details dictionary for structured error information.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize harness error.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, details={self.details!r})"


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(HarnessError):
    """Raised when configuration validation fails."""

    def __init__(self, parameter: str, value: Any, reason: str):
        message = f"Invalid configuration for '{parameter}': {value} - {reason}"
        super().__init__(message, {"parameter": parameter, "value": value, "reason": reason})


# =============================================================================
# Process and Session Errors
# =============================================================================

class ServerLaunchError(HarnessError):
    """Raised when the accelerator server process cannot be started."""

    def __init__(self, command: Any, error_message: str):
        message = f"Failed to launch server {command}: {error_message}"
        super().__init__(message, {"command": command, "error": error_message})


class SessionError(HarnessError):
    """Raised when a session cannot be established."""

    def __init__(self, target: str, error_message: str):
        message = f"Session to {target} failed: {error_message}"
        super().__init__(message, {"target": target, "error": error_message})


class SessionClosedError(SessionError):
    """Raised when an operation is attempted on a closed session."""

    def __init__(self, target: str, operation: str):
        self.operation = operation
        message = f"Session to {target} is closed; cannot {operation}"
        HarnessError.__init__(self, message, {"target": target, "operation": operation})


class DeviceNotAvailableError(HarnessError):
    """Raised when the accelerator device or runtime is not available."""

    def __init__(self, backend: str, reason: str = ""):
        message = f"{backend} not available"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"backend": backend, "reason": reason})


class TransferError(HarnessError):
    """Raised when a host value cannot be placed on the device."""

    def __init__(self, value_type: str, error_message: str):
        message = f"Cannot transfer {value_type} to device: {error_message}"
        super().__init__(message, {"value_type": value_type, "error": error_message})


# =============================================================================
# Compilation and Execution Errors
# =============================================================================

class CompilationError(HarnessError):
    """Raised when ahead-of-time compilation of a function fails."""

    def __init__(self, function_name: str, error_message: str):
        self.function_name = function_name
        message = f"Compilation of '{function_name}' failed: {error_message}"
        super().__init__(message, {"function": function_name, "error": error_message})


class ExecutionError(HarnessError):
    """Raised when running a compiled executable fails."""

    def __init__(self, function_name: str, error_message: str):
        self.function_name = function_name
        message = f"Execution of '{function_name}' failed: {error_message}"
        super().__init__(message, {"function": function_name, "error": error_message})


# =============================================================================
# Utility Functions
# =============================================================================

def raise_or_warn(
    message: str,
    exception_class: type = HarnessError,
    strict_mode: bool = False,
    log: Optional[logging.Logger] = None,
    **kwargs
) -> None:
    """
    Raise exception in strict mode, otherwise log warning.

    Args:
        message: Error message
        exception_class: Exception class to raise/warn
        strict_mode: If True, raise exception; if False, log warning
        log: Optional logger instance
        **kwargs: Arguments for the exception constructor (replace ``message``)
    """
    if strict_mode:
        if kwargs:
            raise exception_class(**kwargs)
        raise exception_class(message)

    log_instance = log or logger
    log_instance.warning("%s: %s", exception_class.__name__, message)


__all__ = [
    'HarnessError',
    'ConfigurationError',
    'ServerLaunchError',
    'SessionError',
    'SessionClosedError',
    'DeviceNotAvailableError',
    'TransferError',
    'CompilationError',
    'ExecutionError',
    'raise_or_warn',
]
