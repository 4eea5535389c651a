"""Runtime configuration for the Composer service."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from composer.src.errors import OrdinalConflictError
from shared.hardening import RetryConfig

DEFAULT_DB_PATH = Path("data/composer/composer.db")


def _allocation_retry() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        base_delay=0.0,
        exponential_backoff=False,
        retryable_exceptions=(OrdinalConflictError,),
    )


@dataclass
class ComposerConfig:
    """Configuration for storage and the composition engine.

    Attributes:
        db_path: SQLite database file, or ':memory:'.
        max_elements_per_curriculum: Element cap enforced by the HTTP layer.
        max_title_length: Longest accepted element or curriculum title.
        allocation_retry: Retry policy for ordinal allocation races.
    """

    db_path: str | Path = DEFAULT_DB_PATH
    max_elements_per_curriculum: int = 50
    max_title_length: int = 255
    allocation_retry: RetryConfig = field(default_factory=_allocation_retry)
