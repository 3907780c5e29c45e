# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for the RedactID provider (app.agegate.providers.redact_id)."""

from __future__ import annotations

import pytest

from app.db.models import Account
from app.db.session import session_scope
from app.agegate.models import (
    OutcomeKind,
    ProviderRequest,
    VerificationState,
    VisitorContext,
)
from app.agegate.providers import Provider, RedactIdProvider

from tests.conftest import FLORIDA_IP, REDACT_ID_URL


@pytest.fixture
def redact_id(services) -> RedactIdProvider:
    return services.providers.get(Provider.REDACT_ID)


def _linkback_request(raw: str) -> ProviderRequest:
    return ProviderRequest(form={"redactJwt": raw})


def _account_row(session_factory, account_id):
    with session_scope(session_factory) as db:
        account = db.get(Account, account_id)
        return account.age_verified, account.verification_reference


class TestLaunch:

    @pytest.mark.asyncio
    async def test_redirects_to_redact_id(self, redact_id):
        outcome = await redact_id.launch(VisitorContext(ip=FLORIDA_IP))
        assert outcome.kind == OutcomeKind.REDIRECT
        assert outcome.location == REDACT_ID_URL
        assert outcome.set_cookie_token is None

    @pytest.mark.asyncio
    async def test_already_verified_goes_back_to_gate(self, redact_id, services):
        token = await services.tokens.create(verified=True)
        outcome = await redact_id.launch(VisitorContext(ip=FLORIDA_IP, cookie_token=token))
        assert outcome.kind == OutcomeKind.REDIRECT
        assert outcome.location.startswith("/age-gate?cache=")

    @pytest.mark.asyncio
    async def test_verified_cookie_promoted_onto_account(self, redact_id, services, session_factory, make_account):
        make_account(5)
        token = await services.tokens.create(verified=True)
        context = VisitorContext(ip=FLORIDA_IP, account_id=5, cookie_token=token)

        outcome = await redact_id.launch(context)

        assert outcome.location.startswith("/age-gate?cache=")
        assert _account_row(session_factory, 5) == ("COOKIE", None)

    @pytest.mark.asyncio
    async def test_verified_account_not_demoted_to_cookie(self, redact_id, services, session_factory, make_account):
        make_account(6, age_verified="REDACT-ID")
        token = await services.tokens.create(verified=True)
        await redact_id.launch(VisitorContext(ip=FLORIDA_IP, account_id=6, cookie_token=token))
        assert _account_row(session_factory, 6)[0] == "REDACT-ID"


class TestLinkback:

    @pytest.mark.asyncio
    async def test_missing_assertion(self, redact_id):
        outcome = await redact_id.linkback(VisitorContext(ip=FLORIDA_IP), ProviderRequest())
        assert outcome.kind == OutcomeKind.MESSAGE
        assert outcome.status_code == 400
        assert "Retry" in outcome.message

    @pytest.mark.asyncio
    async def test_guest_receives_verified_cookie(self, redact_id, services, make_redact_jwt):
        context = VisitorContext(ip=FLORIDA_IP)
        outcome = await redact_id.linkback(context, _linkback_request(make_redact_jwt()))

        assert outcome.kind == OutcomeKind.REDIRECT
        assert outcome.location.startswith("/age-gate?cache=")
        assert outcome.set_cookie_token
        assert await services.tokens.check(outcome.set_cookie_token) == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_existing_cookie_is_upgraded(self, redact_id, services, make_redact_jwt):
        token = await services.tokens.create(verified=False)
        context = VisitorContext(ip=FLORIDA_IP, cookie_token=token)

        outcome = await redact_id.linkback(context, _linkback_request(make_redact_jwt()))

        assert outcome.set_cookie_token is None
        assert await services.tokens.check(token) == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_unknown_cookie_replaced_with_verified_token(self, redact_id, services, make_redact_jwt):
        context = VisitorContext(ip=FLORIDA_IP, cookie_token="9" * 32)
        outcome = await redact_id.linkback(context, _linkback_request(make_redact_jwt()))

        assert outcome.set_cookie_token and outcome.set_cookie_token != "9" * 32
        assert await services.tokens.check(outcome.set_cookie_token) == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_account_marked_with_reference(self, redact_id, session_factory, make_account, make_redact_jwt):
        make_account(42)
        context = VisitorContext(ip=FLORIDA_IP, account_id=42)
        await redact_id.linkback(context, _linkback_request(make_redact_jwt(reference="REF-42")))
        assert _account_row(session_factory, 42) == ("REDACT-ID", "REF-42")

    @pytest.mark.asyncio
    async def test_invalid_assertion_mutates_nothing(self, redact_id, services, session_factory, make_account, make_redact_jwt):
        make_account(43)
        token = await services.tokens.create(verified=False)
        context = VisitorContext(ip=FLORIDA_IP, account_id=43, cookie_token=token)

        outcome = await redact_id.linkback(context, _linkback_request(make_redact_jwt(**{"18plus": False})))

        assert outcome.kind == OutcomeKind.MESSAGE
        assert outcome.status_code == 400
        assert "18plus" in outcome.message
        assert REDACT_ID_URL in outcome.message
        assert _account_row(session_factory, 43) == (None, None)
        assert await services.tokens.check(token) == VerificationState.UNVERIFIED

    @pytest.mark.asyncio
    async def test_replay_rejected_without_second_write(self, redact_id, services, cache, make_account, make_redact_jwt):
        make_account(44)
        raw = make_redact_jwt(jti="jti-replayed")
        first = await redact_id.linkback(VisitorContext(ip=FLORIDA_IP, account_id=44), _linkback_request(raw))
        assert first.kind == OutcomeKind.REDIRECT
        writes_after_first = cache.stats()["writes"]

        second = await redact_id.linkback(VisitorContext(ip=FLORIDA_IP, account_id=44), _linkback_request(raw))

        assert second.kind == OutcomeKind.MESSAGE
        assert second.status_code == 409
        assert "already used" in second.message
        assert cache.stats()["writes"] == writes_after_first

    @pytest.mark.asyncio
    async def test_replay_hint_for_verified_visitor(self, redact_id, services, make_redact_jwt):
        raw = make_redact_jwt()
        first = await redact_id.linkback(VisitorContext(ip=FLORIDA_IP), _linkback_request(raw))

        context = VisitorContext(ip=FLORIDA_IP, cookie_token=first.set_cookie_token)
        second = await redact_id.linkback(context, _linkback_request(raw))

        assert "already age verified" in second.message

    @pytest.mark.asyncio
    async def test_replay_marker_key(self, redact_id, cache, make_redact_jwt):
        await redact_id.linkback(VisitorContext(ip=FLORIDA_IP), _linkback_request(make_redact_jwt(jti="abc")))
        assert await cache.get("AV_REDACT_ID_TOKEN_USED_abc") is True
