# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Core age gate data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


# =============================================================================
# Verification state
# =============================================================================


class VerificationState(str, Enum):
    """Three-valued verification status of an account or token.

    A cache miss is ``None`` and is never confused with any member.

    Values
    ------
    VERIFIED
        A verification record exists and is verified.
    UNVERIFIED
        A record exists but is not verified.
    UNKNOWN
        No such record exists.
    """

    VERIFIED = "VERIFIED"
    UNVERIFIED = "UNVERIFIED"
    UNKNOWN = "UNKNOWN"


class UpgradeResult(str, Enum):
    UPGRADED = "UPGRADED"
    NOOP = "NOOP"
    FAILED = "FAILED"


class VerificationMethod(str, Enum):
    """Value stored in the account's ``age_verified`` column."""

    REDACT_ID = "REDACT-ID"
    GOCAM = "GOCAM"
    COOKIE = "COOKIE"


# =============================================================================
# Request-scoped context
# =============================================================================


@dataclass
class VisitorContext:
    """Everything known about the current visitor.

    Built per request by the HTTP layer.  ``display_region_name`` is
    written by the region resolver when the visitor's region is
    restricted.
    """

    ip: str
    account_id: int = 0
    cookie_token: str = ""
    user_agent: str = ""
    host: str = ""
    scheme: str = "https"
    display_region_name: str = ""

    @property
    def is_guest(self) -> bool:
        return self.account_id <= 0


@dataclass(frozen=True)
class RegionDecision:
    restricted: bool
    display_region_name: str = ""


# =============================================================================
# Provider protocol I/O
# =============================================================================


class OutcomeKind(str, Enum):
    REDIRECT = "REDIRECT"
    MESSAGE = "MESSAGE"
    EMPTY = "EMPTY"


@dataclass
class ProviderRequest:
    """Inbound provider traffic: query string and form body."""

    query: Dict[str, str] = field(default_factory=dict)
    form: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProviderOutcome:
    """What the HTTP layer should send back for a provider operation.

    Attributes:
        kind:             REDIRECT, MESSAGE or EMPTY.
        location:         Redirect target for REDIRECT outcomes.
        message:          User-facing or plain-text message.
        status_code:      HTTP status for the response.
        set_cookie_token: New token cookie to write before the body, if any.
    """

    kind: OutcomeKind
    location: str = ""
    message: str = ""
    status_code: int = 200
    set_cookie_token: Optional[str] = None

    @classmethod
    def redirect(cls, location: str, set_cookie_token: Optional[str] = None) -> "ProviderOutcome":
        return cls(
            kind=OutcomeKind.REDIRECT,
            location=location,
            status_code=302,
            set_cookie_token=set_cookie_token,
        )

    @classmethod
    def show_message(cls, message: str, status_code: int = 200) -> "ProviderOutcome":
        return cls(kind=OutcomeKind.MESSAGE, message=message, status_code=status_code)

    @classmethod
    def empty(cls) -> "ProviderOutcome":
        return cls(kind=OutcomeKind.EMPTY, status_code=200)
