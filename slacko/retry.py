"""Retry budgets and backoff arithmetic shared by HTTP and realtime code."""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import ConfigurationError


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a cap.

    Attributes:
        base_delay: Delay before the first retry (seconds).
        max_delay: Upper bound for any single delay (seconds).
        max_retries: Retries allowed before giving up, None for unlimited.
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    max_retries: int | None = 3

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Backoff delays must not be negative")
        if self.max_retries is not None and self.max_retries < 0:
            raise ConfigurationError("max_retries must not be negative")

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    def exhausted(self, retries_done: int) -> bool:
        """Whether ``retries_done`` retries used up the budget."""
        return self.max_retries is not None and retries_done >= self.max_retries


@dataclass(frozen=True)
class RetryConfig:
    """Retry budgets for one request.

    The three budgets are independent: rate limiting never consumes the
    transport or server error budget and vice versa.
    """

    transport_retries: int = 2
    transport_backoff: float = 0.5
    server_errors: BackoffPolicy = field(
        default_factory=lambda: BackoffPolicy(base_delay=1.0, max_delay=30.0)
    )
    rate_limit_retries: int | None = None
    max_rate_limit_wait: float = 60.0
    default_retry_after: float = 60.0

    def __post_init__(self) -> None:
        if self.transport_retries < 0:
            raise ConfigurationError("transport_retries must not be negative")
        if self.transport_backoff < 0:
            raise ConfigurationError("transport_backoff must not be negative")
        if self.rate_limit_retries is not None and self.rate_limit_retries < 0:
            raise ConfigurationError("rate_limit_retries must not be negative")
        if self.max_rate_limit_wait < 0:
            raise ConfigurationError("max_rate_limit_wait must not be negative")

    def rate_limit_wait(self, retry_after: float) -> float:
        """Clamp a remote retry-after hint to the configured maximum."""
        return min(max(retry_after, 0.0), self.max_rate_limit_wait)

    def rate_limit_exhausted(self, retries_done: int) -> bool:
        return (
            self.rate_limit_retries is not None
            and retries_done >= self.rate_limit_retries
        )
