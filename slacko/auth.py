"""Credentials and the headers/cookies they put on each request.

Two mutually exclusive modes are supported:

- bearer token: a bot, user, or app-level token sent as ``Authorization``
- session token: a browser-session ``xoxc-`` token paired with the ``d``
  cookie, emulating an authenticated browser tab

Credentials are validated once, when constructed, and are read-only after
that; all concurrent requests of a client share the same instance.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .request import RequestSpec

# Token prefix -> credential kind
BEARER_PREFIXES: dict[str, str] = {
    "xoxb-": "bot",
    "xoxp-": "user",
    "xoxa-": "user",
    "xoxs-": "user",
    "xoxe.": "user",
    "xoxe-": "user",
    "xapp-": "app",
}

SESSION_COOKIE_NAME = "d"


class Credential(ABC):
    """Per-request authentication material."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """Short credential kind: bot, user, app or session."""

    @abstractmethod
    def headers_for(self, spec: RequestSpec | None = None) -> dict[str, str]:
        """Headers a request must carry."""

    @abstractmethod
    def cookies_for(self, spec: RequestSpec | None = None) -> dict[str, str]:
        """Cookies a request must carry."""


def _requires_auth(spec: RequestSpec | None) -> bool:
    return spec is None or spec.authenticated


@dataclass(frozen=True)
class BearerToken(Credential):
    """Static bot, user or app-level token."""

    token: str = field(repr=False)

    def __post_init__(self) -> None:
        token = (self.token or "").strip()
        if not token:
            raise ConfigurationError("Bearer token must not be empty")
        if not token.startswith(tuple(BEARER_PREFIXES)):
            raise ConfigurationError(
                "Bearer token has an unrecognized prefix "
                f"(expected one of {', '.join(sorted(BEARER_PREFIXES))})"
            )
        object.__setattr__(self, "token", token)

    @property
    def kind(self) -> str:
        for prefix, kind in BEARER_PREFIXES.items():
            if self.token.startswith(prefix):
                return kind
        return "user"

    def headers_for(self, spec: RequestSpec | None = None) -> dict[str, str]:
        if not _requires_auth(spec):
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def cookies_for(self, spec: RequestSpec | None = None) -> dict[str, str]:
        return {}


@dataclass(frozen=True)
class SessionToken(Credential):
    """Browser-session token plus its session cookie."""

    token: str = field(repr=False)
    cookie: str = field(repr=False)

    def __post_init__(self) -> None:
        token = (self.token or "").strip()
        cookie = (self.cookie or "").strip()
        if not token:
            raise ConfigurationError("Session token must not be empty")
        if not cookie:
            raise ConfigurationError("Session mode requires the session cookie")
        object.__setattr__(self, "token", token)
        object.__setattr__(self, "cookie", cookie)

    @property
    def kind(self) -> str:
        return "session"

    def headers_for(self, spec: RequestSpec | None = None) -> dict[str, str]:
        if not _requires_auth(spec):
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def cookies_for(self, spec: RequestSpec | None = None) -> dict[str, str]:
        if not _requires_auth(spec):
            return {}
        return {SESSION_COOKIE_NAME: self.cookie}


def credential_from_env(environ: Mapping[str, str] | None = None) -> Credential:
    """Load a credential from environment variables.

    Checked in order:
    1. ``SLACK_XOXC_TOKEN`` and ``SLACK_XOXD_COOKIE`` for session mode
    2. ``SLACK_XOXP_TOKEN`` for a user token
    3. ``SLACK_BOT_TOKEN`` or ``SLACK_TOKEN`` for a bot token
    4. ``SLACK_APP_TOKEN`` for an app-level token

    Raises:
        ConfigurationError: If no credential is set, or the one found is malformed.
    """
    env = os.environ if environ is None else environ

    session_token = env.get("SLACK_XOXC_TOKEN")
    session_cookie = env.get("SLACK_XOXD_COOKIE")
    if session_token or session_cookie:
        return SessionToken(session_token or "", session_cookie or "")

    for name in ("SLACK_XOXP_TOKEN", "SLACK_BOT_TOKEN", "SLACK_TOKEN", "SLACK_APP_TOKEN"):
        token = env.get(name)
        if token:
            return BearerToken(token)

    raise ConfigurationError(
        "No Slack credentials found in environment. Set SLACK_XOXC_TOKEN + "
        "SLACK_XOXD_COOKIE, SLACK_XOXP_TOKEN, SLACK_BOT_TOKEN or SLACK_APP_TOKEN"
    )
