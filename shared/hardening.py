"""Production hardening utilities for the Dojo backend.

Provides retry logic for transient write conflicts, user-friendly error
formatting for API responses, and input validation for free text arriving
at the HTTP boundary.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Retry Logic
# ---------------------------------------------------------------------------

_DEFAULT_RETRYABLE = (sqlite3.OperationalError, TimeoutError, ConnectionError)


@dataclass
class RetryConfig:
    """Configuration for retry-with-backoff behavior.

    Attributes:
        max_attempts: Total number of attempts (including the first).
        base_delay: Initial delay in seconds before first retry.
        max_delay: Upper bound on delay between retries.
        exponential_backoff: Double delay on each retry when True.
        retryable_exceptions: Tuple of exception types that trigger a retry.
    """

    max_attempts: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0
    exponential_backoff: bool = True
    retryable_exceptions: tuple[type[BaseException], ...] = _DEFAULT_RETRYABLE


class RetriesExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        last_error: The final exception that caused the failure.
        attempts: Total number of attempts made.
    """

    def __init__(self, last_error: Exception, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"All {attempts} attempts failed. Last error: {last_error}")


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the pause before retry number *attempt* (0-based), capped at max_delay."""
    factor = 2**attempt if config.exponential_backoff else 1
    return min(config.base_delay * factor, config.max_delay)


def retry_with_backoff(
    func: Callable[..., Any],
    config: RetryConfig | None = None,
    *args: Any,
    sleep_func: Callable[[float], None] | None = None,
    **kwargs: Any,
) -> Any:
    """Call ``func(*args, **kwargs)`` until it succeeds or attempts run out.

    Only exceptions listed in ``config.retryable_exceptions`` are retried;
    anything else propagates from the first call that raises it. No sleep
    happens when the computed delay is zero, which is how ordinal
    allocation retries immediately after losing a race.

    Args:
        func: Callable to invoke.
        config: Retry configuration. Uses defaults when None.
        *args: Positional arguments forwarded to *func*.
        sleep_func: Injectable sleep for testing. Defaults to time.sleep.
        **kwargs: Keyword arguments forwarded to *func*.

    Returns:
        Whatever *func* returns on success.

    Raises:
        RetriesExhaustedError: When every attempt failed with a retryable error.
    """
    cfg = config or RetryConfig()
    pause = sleep_func or time.sleep
    attempt = 0

    while True:
        try:
            return func(*args, **kwargs)
        except cfg.retryable_exceptions as exc:
            attempt += 1
            if attempt >= cfg.max_attempts:
                raise RetriesExhaustedError(exc, cfg.max_attempts) from exc  # type: ignore[arg-type]
            delay = _compute_delay(attempt - 1, cfg)
            logger.warning(
                "%s failed on attempt %d of %d (%s); retrying%s",
                getattr(func, "__name__", "call"),
                attempt,
                cfg.max_attempts,
                exc,
                f" in {delay:.2f}s" if delay > 0 else "",
            )
            if delay > 0:
                pause(delay)


# ---------------------------------------------------------------------------
# 2. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem.
        error_code: Machine-readable identifier (e.g. "STOR_003").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert unexpected exceptions to user-friendly messages.

    Never exposes stack traces or SQL to the end user; the technical
    detail is kept for logging only.
    """

    def format_storage_error(self, error: Exception) -> UserFriendlyError:
        """Format a persistence failure.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="composer", code_prefix="STOR")

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        message, suggestion, code_suffix = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    if isinstance(error, sqlite3.IntegrityError):
        return (
            "The change conflicts with existing data.",
            "Reload the curriculum and try again.",
            "001",
        )
    if isinstance(error, sqlite3.OperationalError):
        return (
            "The database is temporarily unavailable.",
            "Try again in a moment.",
            "002",
        )
    if isinstance(error, (TimeoutError, ConnectionError)):
        return (
            "The operation timed out or lost its connection.",
            "Try again. If the problem persists, check system resources.",
            "003",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "005",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 3. Input Validation
# ---------------------------------------------------------------------------

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class ValidationError(Exception):
    """Raised when input validation fails."""


class InputValidator:
    """Validate free-text inputs at the HTTP boundary."""

    def clean_text(
        self,
        value: str | None,
        *,
        field_name: str,
        max_length: int | None = None,
    ) -> str | None:
        """Strip control characters and surrounding whitespace.

        Args:
            value: Raw user string, or None.
            field_name: Name used in the error message.
            max_length: Maximum allowed length after cleaning.

        Returns:
            Cleaned string, or None when *value* is None.

        Raises:
            ValidationError: When the cleaned value is too long.
        """
        if value is None:
            return None
        cleaned = _strip_control_chars(value).strip()
        if max_length is not None and len(cleaned) > max_length:
            raise ValidationError(f"'{field_name}' must be at most {max_length} characters.")
        return cleaned


def _strip_control_chars(text: str) -> str:
    """Remove ASCII control characters except common whitespace.

    Args:
        text: Input string.

    Returns:
        Cleaned string.
    """
    return _CONTROL_CHARS.sub("", text)
