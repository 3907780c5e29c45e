# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Decide whether the current visitor must verify their age.

Checks run cheapest-first and short-circuit:

1. Region not restricted: no verification.
2. Logged-in account already verified: no verification.
3. Cookie token already verified: no verification.
4. Crawler / bot user agent: exempt.
5. Otherwise the visitor must verify.
"""

from __future__ import annotations

import logging
from typing import Tuple

from app.agegate.models import VerificationState, VisitorContext
from app.agegate.records import VerificationRecordStore
from app.agegate.region import RegionResolver
from app.agegate.tokens import TokenLifecycle

log = logging.getLogger("agegate.decision")

BOT_AGENT_MARKERS: Tuple[str, ...] = (
    "bot",
    "spider",
    "facebook",
    "gpt",
    "anthropic",
    "crawler",
    "curl",
)


def is_bot_agent(user_agent: str) -> bool:
    """True if the user agent looks like a search engine crawler or bot."""
    lowered = (user_agent or "").lower()
    return any(marker in lowered for marker in BOT_AGENT_MARKERS)


class DecisionEngine:
    def __init__(
        self,
        region: RegionResolver,
        records: VerificationRecordStore,
        tokens: TokenLifecycle,
    ):
        self.region = region
        self.records = records
        self.tokens = tokens

    async def should_verify(self, context: VisitorContext) -> bool:
        decision = await self.region.resolve(context)
        if not decision.restricted:
            return False

        if context.account_id > 0:
            if await self.records.get_account_verified(context.account_id) == VerificationState.VERIFIED:
                return False

        if context.cookie_token:
            if await self.tokens.check(context.cookie_token) == VerificationState.VERIFIED:
                return False

        if is_bot_agent(context.user_agent):
            log.debug("Exempting bot agent %r", context.user_agent[:80])
            return False

        return True

    async def should_verify_ip(
        self,
        ip: str,
        cookie_token: str = "",
        account_id: int = 0,
        user_agent: str = "",
    ) -> bool:
        """``should_verify`` for callers holding only the raw inputs."""
        context = VisitorContext(
            ip=ip,
            account_id=account_id,
            cookie_token=cookie_token,
            user_agent=user_agent,
        )
        return await self.should_verify(context)

    async def already_verified(self, context: VisitorContext) -> Tuple[bool, bool]:
        """Return ``(account_verified, token_verified)`` for the visitor."""
        account_verified = False
        if context.account_id > 0:
            account_verified = (
                await self.records.get_account_verified(context.account_id) == VerificationState.VERIFIED
            )

        token_verified = False
        if context.cookie_token:
            token_verified = await self.tokens.check(context.cookie_token) == VerificationState.VERIFIED

        return account_verified, token_verified

    async def display_region_name(self, context: VisitorContext) -> str:
        """Subdivision name to show a restricted visitor, or ""."""
        if not context.display_region_name:
            await self.region.resolve(context)
        return context.display_region_name
