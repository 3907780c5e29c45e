# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Shared test fixtures for the age gate test suite.

Provides an in-memory SQLite database, a fresh TTL cache, a fake
GeoLookup that counts its calls, Ed25519 keypairs and a factory for
signed RedactID assertions.  All signatures use real Ed25519 key
material via pysodium.
"""

from __future__ import annotations

import base64
import json
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

import pysodium
import pytest

from app.config import GoCamConfig, RedactIdConfig, Settings
from app.db.models import Account, Base
from app.db.session import create_session_factory, session_scope
from app.agegate.cache import TTLCache
from app.agegate.exceptions import GeoLookupError
from app.agegate.geo import GeoLocation
from app.agegate.providers.gocam import GoCamRequest
from app.agegate.services import AgeGateServices, build_services

# Public addresses used throughout the suite.
FLORIDA_IP = "131.247.253.85"
TEXAS_IP = "129.116.1.1"
US_NO_STATE_IP = "8.8.8.8"
CALIFORNIA_IP = "128.32.1.1"
UK_IP = "81.2.69.142"

SITE_ID = "site-1234"
REDACT_ID_URL = "https://redact-id.com/verify/site-1234"
GOCAM_CALLBACK_KEY = "callback-secret"


# =========================================================================
# Fakes
# =========================================================================

class FakeGeoLookup:
    """GeoLookup over a fixed table, recording every IP it resolves."""

    def __init__(self, locations: Dict[str, GeoLocation]):
        self.locations = dict(locations)
        self.calls: List[str] = []
        self.unavailable = False

    def resolve(self, ip: str) -> GeoLocation:
        self.calls.append(ip)
        if self.unavailable:
            raise GeoLookupError.unavailable("database file missing")
        try:
            return self.locations[ip]
        except KeyError:
            raise GeoLookupError.not_found(ip)


class FakeGoCamUrlBuilder:
    """Stands in for the GoCam SDK; remembers the requests it was given."""

    def __init__(self):
        self.requests: List[GoCamRequest] = []

    def build_redirect_url(self, request: GoCamRequest) -> str:
        self.requests.append(request)
        return f"{request.base_url or 'https://go.cam'}/verify?payload={len(self.requests)}"


# =========================================================================
# Ed25519 Keypair
# =========================================================================

@pytest.fixture
def ed25519_keypair() -> Tuple[bytes, bytes]:
    """Fresh Ed25519 keypair as (public_key, secret_key)."""
    pk, sk = pysodium.crypto_sign_keypair()
    return pk, sk


@pytest.fixture
def public_key_b64(ed25519_keypair: Tuple[bytes, bytes]) -> str:
    """The public key in the base64 form RedactID publishes."""
    return base64.b64encode(ed25519_keypair[0]).decode("ascii")


# =========================================================================
# RedactID assertion factory
# =========================================================================

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


@pytest.fixture
def make_redact_jwt(ed25519_keypair: Tuple[bytes, bytes]) -> Callable[..., str]:
    """Factory fixture: create a signed RedactID age assertion.

    Defaults produce an assertion that validates for ``SITE_ID``.  Pass
    ``drop=[...]`` to omit claims, or keyword overrides to change them.
    """
    _, sk = ed25519_keypair

    def _make(
        header: Optional[dict] = None,
        drop: Tuple[str, ...] = (),
        secret_key: Optional[bytes] = None,
        **claims,
    ) -> str:
        now = int(time.time())
        payload = {
            "iss": "https://redact-id.com",
            "sub": SITE_ID,
            "iat": now - 10,
            "nbf": now - 10,
            "exp": now + 600,
            "jti": uuid.uuid4().hex,
            "18plus": True,
            "reference": "REF-0001",
            "ip": FLORIDA_IP,
        }
        payload.update(claims)
        for name in drop:
            payload.pop(name, None)

        h = _b64url(json.dumps(header or {"alg": "EdDSA", "typ": "JWT"}).encode())
        p = _b64url(json.dumps(payload).encode())
        signing_input = f"{h}.{p}".encode("ascii")
        sig = pysodium.crypto_sign_detached(signing_input, secret_key or sk)
        return f"{h}.{p}.{_b64url(sig)}"

    return _make


# =========================================================================
# Storage and cache
# =========================================================================

@pytest.fixture
def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    factory = create_session_factory("sqlite://")
    engine = factory.kw["bind"]
    Base.metadata.create_all(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def make_account(session_factory) -> Callable[..., int]:
    """Factory fixture: insert an account row and return its id."""

    def _make(account_id: int, age_verified: Optional[str] = None) -> int:
        with session_scope(session_factory) as db:
            db.add(Account(account_id=account_id, age_verified=age_verified))
        return account_id

    return _make


@pytest.fixture
def cache() -> TTLCache:
    return TTLCache(max_entries=1000)


@pytest.fixture
def fake_geo() -> FakeGeoLookup:
    return FakeGeoLookup({
        FLORIDA_IP: GeoLocation("US", "FL", "Florida"),
        TEXAS_IP: GeoLocation("US", "TX", "Texas"),
        US_NO_STATE_IP: GeoLocation("US", None, ""),
        CALIFORNIA_IP: GeoLocation("US", "CA", "California"),
        UK_IP: GeoLocation("GB", "ENG", "England"),
    })


@pytest.fixture
def gocam_builder() -> FakeGoCamUrlBuilder:
    return FakeGoCamUrlBuilder()


# =========================================================================
# Settings and services
# =========================================================================

@pytest.fixture
def settings(public_key_b64: str) -> Settings:
    return Settings(
        database_url="sqlite://",
        cache_prefix="AV_",
        trust_forwarded_for=True,
        redact_id=RedactIdConfig(
            redact_id_url=REDACT_ID_URL,
            site_id=SITE_ID,
            public_key=public_key_b64,
        ),
        gocam=GoCamConfig(
            base_url="https://gocam.example.org",
            callback_key=GOCAM_CALLBACK_KEY,
        ),
    )


@pytest.fixture
def services(settings, fake_geo, session_factory, cache, gocam_builder) -> AgeGateServices:
    """Fully wired services over the in-memory database and fake geo."""
    return build_services(
        settings,
        geo=fake_geo,
        session_factory=session_factory,
        cache=cache,
        gocam_url_builder=gocam_builder,
    )
