# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Per-account verification state with a read-through cache."""

from __future__ import annotations

import logging
from typing import Optional

from app.config import ACCOUNT_CACHE_TTL_SECONDS
from app.agegate.cache import TTLCache
from app.agegate.exceptions import PersistenceError
from app.agegate.models import VerificationMethod, VerificationState
from app.agegate.store import AccountTable

log = logging.getLogger("agegate.records")


class VerificationRecordStore:
    """Query and mark account verification.

    The store is authoritative.  Cached values are ``VerificationState``
    members kept for three hours; cache writes happen even when cache
    reads are disabled.
    """

    def __init__(
        self,
        accounts: AccountTable,
        cache: TTLCache,
        cache_prefix: str = "AV_",
        cache_read_enabled: bool = True,
    ):
        self._accounts = accounts
        self._cache = cache
        self._prefix = cache_prefix
        self._cache_read_enabled = cache_read_enabled

    def cache_key(self, account_id: int) -> str:
        return f"{self._prefix}ACCT_{int(account_id)}"

    async def get_account_verified(self, account_id: int) -> VerificationState:
        """Return VERIFIED, UNVERIFIED or UNKNOWN (no such account)."""
        key = self.cache_key(account_id)
        if self._cache_read_enabled:
            cached = await self._cache.get(key)
            if cached is not None:
                return cached

        try:
            row = self._accounts.get(int(account_id))
        except PersistenceError:
            log.exception("Account lookup failed for %s", account_id)
            return VerificationState.UNVERIFIED

        if row is None:
            return VerificationState.UNKNOWN

        state = VerificationState.VERIFIED if row.is_verified else VerificationState.UNVERIFIED
        await self._cache.set(key, state, ACCOUNT_CACHE_TTL_SECONDS)
        return state

    async def set_account_verified(
        self,
        account_id: int,
        method: VerificationMethod,
        reference: Optional[str] = None,
    ) -> bool:
        """Mark an account verified by *method*.

        The reference is kept only for RedactID verifications.

        Returns:
            True when the row was updated, False on a missing row or a
            store failure.
        """
        method = VerificationMethod(method)
        if method != VerificationMethod.REDACT_ID or not reference:
            reference = None

        try:
            updated = self._accounts.update(int(account_id), method.value, reference)
        except PersistenceError:
            log.exception("Failed to mark account %s verified via %s", account_id, method.value)
            return False

        if not updated:
            log.warning("No account row %s to mark verified via %s", account_id, method.value)
            return False

        await self._cache.set(
            self.cache_key(account_id), VerificationState.VERIFIED, ACCOUNT_CACHE_TTL_SECONDS
        )
        log.info("Account %s verified via %s", account_id, method.value)
        return True
