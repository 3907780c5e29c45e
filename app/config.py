# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Age gate configuration.

Cache lifetimes and the cookie lifetime are fixed.  Everything else may be
overridden via environment variables; :func:`load_settings` snapshots the
current values into a :class:`Settings` record that is handed to the
services explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

# =============================================================================
# FIXED CONSTANTS
# =============================================================================

REGION_CACHE_TTL_SECONDS: int = 300
ACCOUNT_CACHE_TTL_SECONDS: int = 60 * 60 * 3
TOKEN_CACHE_TTL_SECONDS: int = 60 * 60 * 3
MISSING_TOKEN_CACHE_TTL_SECONDS: int = 60 * 3
REPLAY_MARKER_TTL_SECONDS: int = 60 * 60 * 3

TOKEN_COOKIE_NAME: str = "ageVerificationToken"
TOKEN_COOKIE_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 31 * 12 * 25
TOKEN_LENGTH: int = 32
TOKEN_CREATE_MAX_ATTEMPTS: int = 5

REDACT_ID_ISSUER: str = "https://redact-id.com"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> tuple[str, ...]:
    env_value = os.getenv(name, "")
    return tuple(item.strip() for item in env_value.split(",") if item.strip())


# =============================================================================
# STORAGE / CACHE
# =============================================================================

DATABASE_URL: str = os.getenv("AV_DATABASE_URL", "sqlite:///./agegate.db")
GEOIP_DB_PATH: str = os.getenv("AV_GEOIP_DB_PATH", "GeoLite2-City.mmdb")
CACHE_PREFIX: str = os.getenv("AV_CACHE_PREFIX", "AV_")
CACHE_READ_ENABLED: bool = _env_bool("AV_CACHE_READ_ENABLED", "true")
CACHE_MAX_ENTRIES: int = int(os.getenv("AV_CACHE_MAX_ENTRIES", "100000"))

# =============================================================================
# RESTRICTION POLICY
# =============================================================================

GLOBALLY_RESTRICTED: bool = _env_bool("AV_GLOBALLY_RESTRICTED")
FORCE_RESTRICTED_IPS: tuple[str, ...] = _env_list("AV_FORCE_RESTRICTED_IPS")
FORCE_UNRESTRICTED_IPS: tuple[str, ...] = _env_list("AV_FORCE_UNRESTRICTED_IPS")

# =============================================================================
# HTTP
# =============================================================================

AGE_GATE_PATH: str = os.getenv("AV_AGE_GATE_PATH", "/age-gate")
ACCOUNT_ID_HEADER: str = os.getenv("AV_ACCOUNT_ID_HEADER", "X-Account-ID")
TRUST_FORWARDED_FOR: bool = _env_bool("AV_TRUST_FORWARDED_FOR")
HTTP_HOST: str = os.getenv("AV_HTTP_HOST", "0.0.0.0")
HTTP_PORT: int = int(os.getenv("AV_HTTP_PORT", "8000"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("AV_LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("AV_LOG_FORMAT", "json")


# =============================================================================
# PROVIDER CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class RedactIdConfig:
    """RedactID assertion-redirect provider.

    Attributes:
        redact_id_url:  Where visitors are sent to start verification.
        site_id:        This site's id; must equal the assertion ``sub``.
        public_key:     Base64-encoded Ed25519 key RedactID signs with.
    """

    redact_id_url: str
    site_id: str
    public_key: str


DEFAULT_GOCAM_CIPHER_KEY = "zIkmW2zEgzlTLTRC5xeMbcOhHcE5sBHB"
DEFAULT_GOCAM_VERIFICATION_OPTIONS: tuple[str, ...] = ("selfie", "scanId")


@dataclass(frozen=True)
class GoCamConfig:
    """GoCam SDK-encrypted-redirect provider.

    An empty ``base_url`` (or one on ``https://go.cam``) selects the
    official hosted service, which needs ``partner_id`` and ``hmac_key``.
    Any other base URL is a self-hosted open-source instance.
    """

    base_url: str = ""
    cipher_key: str = DEFAULT_GOCAM_CIPHER_KEY
    callback_key: str = ""
    linkback_url: str = ""
    callback_url_base: str = ""
    partner_id: int = 0
    hmac_key: str = ""
    verification_options: tuple[str, ...] = DEFAULT_GOCAM_VERIFICATION_OPTIONS

    @property
    def is_official(self) -> bool:
        return self.base_url == "" or self.base_url.lower().startswith("https://go.cam")


def _load_redact_id() -> Optional[RedactIdConfig]:
    url = os.getenv("AV_REDACT_ID_URL", "")
    site_id = os.getenv("AV_REDACT_ID_SITE_ID", "")
    public_key = os.getenv("AV_REDACT_ID_PUBLIC_KEY", "")
    if not (url and site_id and public_key):
        return None
    return RedactIdConfig(redact_id_url=url, site_id=site_id, public_key=public_key)


def _load_gocam() -> Optional[GoCamConfig]:
    if not _env_bool("AV_GOCAM_ENABLED"):
        return None
    return GoCamConfig(
        base_url=os.getenv("AV_GOCAM_BASE_URL", ""),
        cipher_key=os.getenv("AV_GOCAM_CIPHER_KEY", "") or DEFAULT_GOCAM_CIPHER_KEY,
        callback_key=os.getenv("AV_GOCAM_CALLBACK_KEY", ""),
        linkback_url=os.getenv("AV_GOCAM_LINKBACK_URL", ""),
        callback_url_base=os.getenv("AV_GOCAM_CALLBACK_URL_BASE", ""),
        partner_id=int(os.getenv("AV_GOCAM_PARTNER_ID", "0")),
        hmac_key=os.getenv("AV_GOCAM_HMAC_KEY", ""),
        verification_options=(
            _env_list("AV_GOCAM_VERIFICATION_OPTIONS")
            or DEFAULT_GOCAM_VERIFICATION_OPTIONS
        ),
    )


# =============================================================================
# SETTINGS SNAPSHOT
# =============================================================================


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration passed explicitly to the services."""

    database_url: str = DATABASE_URL
    geoip_db_path: str = GEOIP_DB_PATH
    cache_prefix: str = CACHE_PREFIX
    cache_read_enabled: bool = CACHE_READ_ENABLED
    cache_max_entries: int = CACHE_MAX_ENTRIES
    globally_restricted: bool = GLOBALLY_RESTRICTED
    force_restricted_ips: tuple[str, ...] = FORCE_RESTRICTED_IPS
    force_unrestricted_ips: tuple[str, ...] = FORCE_UNRESTRICTED_IPS
    age_gate_path: str = AGE_GATE_PATH
    account_id_header: str = ACCOUNT_ID_HEADER
    trust_forwarded_for: bool = TRUST_FORWARDED_FOR
    redact_id: Optional[RedactIdConfig] = None
    gocam: Optional[GoCamConfig] = None


def load_settings() -> Settings:
    """Build a :class:`Settings` from the current environment."""
    return Settings(
        database_url=os.getenv("AV_DATABASE_URL", DATABASE_URL),
        geoip_db_path=os.getenv("AV_GEOIP_DB_PATH", GEOIP_DB_PATH),
        cache_prefix=os.getenv("AV_CACHE_PREFIX", CACHE_PREFIX),
        cache_read_enabled=_env_bool("AV_CACHE_READ_ENABLED", "true"),
        cache_max_entries=int(os.getenv("AV_CACHE_MAX_ENTRIES", str(CACHE_MAX_ENTRIES))),
        globally_restricted=_env_bool("AV_GLOBALLY_RESTRICTED"),
        force_restricted_ips=_env_list("AV_FORCE_RESTRICTED_IPS"),
        force_unrestricted_ips=_env_list("AV_FORCE_UNRESTRICTED_IPS"),
        age_gate_path=os.getenv("AV_AGE_GATE_PATH", AGE_GATE_PATH),
        account_id_header=os.getenv("AV_ACCOUNT_ID_HEADER", ACCOUNT_ID_HEADER),
        trust_forwarded_for=_env_bool("AV_TRUST_FORWARDED_FOR"),
        redact_id=_load_redact_id(),
        gocam=_load_gocam(),
    )
