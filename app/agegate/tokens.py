# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Anonymous age verification tokens.

A token is 32 lowercase hex characters kept in the visitor's
``ageVerificationToken`` cookie.  It is created unverified when a guest
launches a provider, or verified when created at the moment a provider
confirms the visitor's age.  Tokens are upgraded, never deleted.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional
from urllib.parse import quote_plus

from app.config import (
    MISSING_TOKEN_CACHE_TTL_SECONDS,
    TOKEN_CACHE_TTL_SECONDS,
    TOKEN_CREATE_MAX_ATTEMPTS,
    TOKEN_LENGTH,
)
from app.agegate.cache import TTLCache
from app.agegate.exceptions import PersistenceError
from app.agegate.models import UpgradeResult, VerificationState, VisitorContext
from app.agegate.store import TokenTable

log = logging.getLogger("agegate.tokens")


class TokenLifecycle:
    """Issue, check and upgrade anonymous verification tokens."""

    def __init__(
        self,
        tokens: TokenTable,
        cache: TTLCache,
        cache_prefix: str = "AV_",
        cache_read_enabled: bool = True,
        token_factory=None,
    ):
        self._tokens = tokens
        self._cache = cache
        self._prefix = cache_prefix
        self._cache_read_enabled = cache_read_enabled
        self._token_factory = token_factory or _random_token

    def cache_key(self, token: str) -> str:
        return f"{self._prefix}TOKEN_{quote_plus(token)}"

    async def check(self, token: str) -> VerificationState:
        """Return the token's state: VERIFIED, UNVERIFIED or UNKNOWN."""
        if len(token) > TOKEN_LENGTH:
            return VerificationState.UNVERIFIED

        key = self.cache_key(token)
        if self._cache_read_enabled:
            cached = await self._cache.get(key)
            if cached is not None:
                return cached

        try:
            row = self._tokens.get(token)
        except PersistenceError:
            log.exception("Token lookup failed")
            return VerificationState.UNVERIFIED

        if row is None:
            # Short TTL; unknown tokens may be someone probing
            await self._cache.set(key, VerificationState.UNKNOWN, MISSING_TOKEN_CACHE_TTL_SECONDS)
            return VerificationState.UNKNOWN

        state = VerificationState.VERIFIED if row.verified else VerificationState.UNVERIFIED
        await self._cache.set(key, state, TOKEN_CACHE_TTL_SECONDS)
        return state

    async def create(self, verified: bool) -> str:
        """Create and persist a new token.

        Returns:
            The token, or "" if generation or persistence failed.
        """
        token = ""
        for attempt in range(TOKEN_CREATE_MAX_ATTEMPTS):
            candidate = self._token_factory()
            if len(candidate) != TOKEN_LENGTH:
                log.error("Generated token has wrong length %d", len(candidate))
                return ""
            if await self.check(candidate) == VerificationState.UNKNOWN:
                token = candidate
                break
            log.warning("Generated token collided (attempt %d)", attempt + 1)

        if not token:
            log.error("Gave up generating a unique token after %d attempts", TOKEN_CREATE_MAX_ATTEMPTS)
            return ""

        try:
            self._tokens.insert(token, verified)
        except PersistenceError:
            log.exception("Failed to store new token")
            return ""

        state = VerificationState.VERIFIED if verified else VerificationState.UNVERIFIED
        await self._cache.set(self.cache_key(token), state, TOKEN_CACHE_TTL_SECONDS)
        log.info("Issued %s token", "verified" if verified else "unverified")
        return token

    async def upgrade(self, token: str) -> UpgradeResult:
        """Mark an existing unverified token verified.

        Unknown and already-verified tokens are left alone.
        """
        if len(token) > TOKEN_LENGTH:
            return UpgradeResult.FAILED

        current = await self.check(token)
        if current in (VerificationState.UNKNOWN, VerificationState.VERIFIED):
            return UpgradeResult.NOOP

        try:
            updated = self._tokens.set_verified(token)
        except PersistenceError:
            log.exception("Failed to upgrade token")
            return UpgradeResult.FAILED

        if not updated:
            log.warning("Token upgrade matched no stored row")
            return UpgradeResult.FAILED

        await self._cache.set(self.cache_key(token), VerificationState.VERIFIED, TOKEN_CACHE_TTL_SECONDS)
        log.info("Upgraded token to verified")
        return UpgradeResult.UPGRADED

    async def set_cookie(self, context: VisitorContext, verified: bool) -> Optional[str]:
        """Decide the token cookie to write for this visitor.

        Returns:
            A new token for the caller to write as the cookie, or None when
            the existing cookie is already verified or creation failed.
        """
        if context.cookie_token and await self.check(context.cookie_token) == VerificationState.VERIFIED:
            return None

        token = await self.create(verified)
        if not token:
            return None
        context.cookie_token = token
        return token


def _random_token() -> str:
    return secrets.token_bytes(TOKEN_LENGTH // 2).hex()
