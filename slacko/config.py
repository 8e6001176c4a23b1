"""Client settings loaded from code, environment variables or YAML."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .retry import BackoffPolicy, RetryConfig

DEFAULT_BASE_URL = "https://slack.com/api"
DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "slacko-python/0.1.0"

_UNLIMITED = {"", "none", "unlimited"}


@dataclass(frozen=True)
class ClientConfig:
    """Settings shared by every request of one client.

    Attributes:
        base_url: API root; method names are appended as "/<method>".
        timeout: Default per-call timeout (seconds).
        user_agent: User-Agent header value.
        connection_limit: Size of the shared HTTP connection pool.
        retry: Retry budgets.
    """

    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    connection_limit: int = 100
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid base_url: {self.base_url!r}")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        if self.connection_limit < 0:
            raise ConfigurationError("connection_limit must not be negative")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Build settings from ``SLACKO_*`` environment variables."""
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        retry: dict[str, Any] = {}

        if base_url := env.get("SLACKO_BASE_URL"):
            data["base_url"] = base_url
        if timeout := env.get("SLACKO_TIMEOUT"):
            data["timeout"] = timeout
        if value := env.get("SLACKO_TRANSPORT_RETRIES"):
            retry["transport_retries"] = value
        if value := env.get("SLACKO_SERVER_ERROR_RETRIES"):
            retry["server_error_retries"] = value
        if "SLACKO_RATE_LIMIT_RETRIES" in env:
            retry["rate_limit_retries"] = env["SLACKO_RATE_LIMIT_RETRIES"]
        if value := env.get("SLACKO_MAX_RATE_LIMIT_WAIT"):
            retry["max_rate_limit_wait"] = value

        if retry:
            data["retry"] = retry
        return cls.from_mapping(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> ClientConfig:
        """Load settings from a YAML file.

        Example:
            base_url: https://slack.com/api
            timeout: 10
            retry:
              transport_retries: 2
              server_error_retries: 3
              rate_limit_retries: null
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with path.open() as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise ConfigurationError(f"Invalid YAML in {path}") from err
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {path}")
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ClientConfig:
        """Build settings from a plain mapping of field names."""
        kwargs: dict[str, Any] = {}
        if "base_url" in data:
            kwargs["base_url"] = str(data["base_url"])
        if "timeout" in data:
            kwargs["timeout"] = _as_float("timeout", data["timeout"])
        if "user_agent" in data:
            kwargs["user_agent"] = str(data["user_agent"])
        if "connection_limit" in data:
            kwargs["connection_limit"] = _as_int("connection_limit", data["connection_limit"])
        if retry := data.get("retry"):
            if not isinstance(retry, Mapping):
                raise ConfigurationError("retry must be a mapping")
            kwargs["retry"] = _retry_from_mapping(retry)
        return cls(**kwargs)


def _retry_from_mapping(data: Mapping[str, Any]) -> RetryConfig:
    kwargs: dict[str, Any] = {}
    if "transport_retries" in data:
        kwargs["transport_retries"] = _as_int("transport_retries", data["transport_retries"])
    if "transport_backoff" in data:
        kwargs["transport_backoff"] = _as_float("transport_backoff", data["transport_backoff"])
    if "rate_limit_retries" in data:
        kwargs["rate_limit_retries"] = _as_optional_int(
            "rate_limit_retries", data["rate_limit_retries"]
        )
    if "max_rate_limit_wait" in data:
        kwargs["max_rate_limit_wait"] = _as_float(
            "max_rate_limit_wait", data["max_rate_limit_wait"]
        )

    server_keys = ("server_error_retries", "server_error_base_delay", "server_error_max_delay")
    if any(key in data for key in server_keys):
        default = BackoffPolicy(base_delay=1.0, max_delay=30.0)
        kwargs["server_errors"] = BackoffPolicy(
            base_delay=_as_float(
                "server_error_base_delay",
                data.get("server_error_base_delay", default.base_delay),
            ),
            max_delay=_as_float(
                "server_error_max_delay",
                data.get("server_error_max_delay", default.max_delay),
            ),
            max_retries=_as_optional_int(
                "server_error_retries",
                data.get("server_error_retries", default.max_retries),
            ),
        )
    return RetryConfig(**kwargs)


def _as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from err


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from err


def _as_optional_int(name: str, value: Any) -> int | None:
    if value is None or (isinstance(value, str) and value.strip().lower() in _UNLIMITED):
        return None
    return _as_int(name, value)
