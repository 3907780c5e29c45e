# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for per-account verification state (app.agegate.records)."""

from __future__ import annotations

import pytest

from app.db.models import Account
from app.db.session import session_scope
from app.agegate.exceptions import PersistenceError
from app.agegate.models import VerificationMethod, VerificationState
from app.agegate.records import VerificationRecordStore
from app.agegate.store import AccountTable


class FailingAccountTable:
    """AccountTable whose every call fails like a lost database."""

    def get(self, account_id):
        raise PersistenceError.read_failed("accounts", "connection lost")

    def update(self, account_id, method, reference):
        raise PersistenceError.write_failed("accounts", "connection lost")


@pytest.fixture
def records(session_factory, cache) -> VerificationRecordStore:
    return VerificationRecordStore(AccountTable(session_factory), cache, cache_prefix="AV_")


def _row(session_factory, account_id):
    with session_scope(session_factory) as db:
        account = db.get(Account, account_id)
        return account.age_verified, account.verification_reference


class TestGetAccountVerified:

    @pytest.mark.asyncio
    async def test_unknown_account(self, records, cache):
        assert await records.get_account_verified(404) == VerificationState.UNKNOWN
        assert await cache.get("AV_ACCT_404") is None

    @pytest.mark.asyncio
    async def test_unverified_account_is_cached(self, records, cache, make_account):
        make_account(1)
        assert await records.get_account_verified(1) == VerificationState.UNVERIFIED
        assert await cache.get("AV_ACCT_1") == VerificationState.UNVERIFIED

    @pytest.mark.asyncio
    async def test_empty_method_is_unverified(self, records, make_account):
        make_account(2, age_verified="")
        assert await records.get_account_verified(2) == VerificationState.UNVERIFIED

    @pytest.mark.asyncio
    async def test_verified_account(self, records, make_account):
        make_account(3, age_verified="GOCAM")
        assert await records.get_account_verified(3) == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_cache_answers_before_store(self, records, cache, make_account):
        make_account(4)
        await cache.set("AV_ACCT_4", VerificationState.VERIFIED, 60)
        assert await records.get_account_verified(4) == VerificationState.VERIFIED

    @pytest.mark.asyncio
    async def test_cache_reads_disabled(self, session_factory, cache, make_account):
        make_account(5)
        records = VerificationRecordStore(
            AccountTable(session_factory), cache, cache_prefix="AV_", cache_read_enabled=False
        )
        await cache.set("AV_ACCT_5", VerificationState.VERIFIED, 60)
        assert await records.get_account_verified(5) == VerificationState.UNVERIFIED

    @pytest.mark.asyncio
    async def test_read_failure_reports_unverified(self, cache):
        records = VerificationRecordStore(FailingAccountTable(), cache)
        assert await records.get_account_verified(1) == VerificationState.UNVERIFIED
        assert await cache.get("AV_ACCT_1") is None


class TestSetAccountVerified:

    @pytest.mark.asyncio
    async def test_marks_verified_and_refreshes_cache(self, records, cache, session_factory, make_account):
        make_account(10)
        assert await records.get_account_verified(10) == VerificationState.UNVERIFIED

        assert await records.set_account_verified(10, VerificationMethod.GOCAM) is True

        assert await records.get_account_verified(10) == VerificationState.VERIFIED
        assert await cache.get("AV_ACCT_10") == VerificationState.VERIFIED
        assert _row(session_factory, 10) == ("GOCAM", None)

    @pytest.mark.asyncio
    async def test_reference_kept_for_redact_id(self, records, session_factory, make_account):
        make_account(11)
        await records.set_account_verified(11, VerificationMethod.REDACT_ID, "REF-77")
        assert _row(session_factory, 11) == ("REDACT-ID", "REF-77")

    @pytest.mark.asyncio
    async def test_reference_dropped_for_other_methods(self, records, session_factory, make_account):
        make_account(12)
        await records.set_account_verified(12, VerificationMethod.COOKIE, "REF-77")
        assert _row(session_factory, 12) == ("COOKIE", None)

    @pytest.mark.asyncio
    async def test_accepts_method_string(self, records, session_factory, make_account):
        make_account(13)
        assert await records.set_account_verified(13, "GOCAM") is True
        assert _row(session_factory, 13)[0] == "GOCAM"

    @pytest.mark.asyncio
    async def test_missing_row_reports_false_without_caching(self, records, cache):
        assert await records.set_account_verified(999, VerificationMethod.GOCAM) is False
        assert await cache.get("AV_ACCT_999") is None

    @pytest.mark.asyncio
    async def test_write_failure_reports_false(self, cache):
        records = VerificationRecordStore(FailingAccountTable(), cache)
        assert await records.set_account_verified(1, VerificationMethod.GOCAM) is False
        assert await cache.get("AV_ACCT_1") is None
