# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Behaviour shared by all verification providers."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Optional

from app.config import TOKEN_LENGTH
from app.agegate.decision import DecisionEngine
from app.agegate.exceptions import ConfigurationError
from app.agegate.models import (
    ProviderOutcome,
    ProviderRequest,
    VerificationMethod,
    VerificationState,
    VisitorContext,
)

log = logging.getLogger("agegate.providers")


class Provider(str, Enum):
    """Supported verification providers, by their URL name."""

    REDACT_ID = "RedactID"
    GOCAM = "GoCam"

    @classmethod
    def from_name(cls, name: str) -> "Provider":
        for provider in cls:
            if provider.value == name:
                return provider
        raise ConfigurationError.unknown_provider(name)


class VerificationProvider:
    """One provider's launch / callback / linkback handshake.

    Subclasses implement :meth:`start_verification`; callback and linkback
    default to sending the visitor back to the age gate.
    """

    provider: Provider

    def __init__(self, engine: DecisionEngine, age_gate_path: str, clock=time.time):
        self.engine = engine
        self.age_gate_path = age_gate_path
        self._clock = clock

    def gate_url(self) -> str:
        """Age gate path with a cache-busting parameter."""
        return f"{self.age_gate_path}?cache={int(self._clock())}"

    async def launch(self, context: VisitorContext) -> ProviderOutcome:
        """Send the visitor to the provider, unless already verified.

        A visitor verified by cookie but logged in to an unverified account
        has the verification promoted onto the account.
        """
        account_verified, token_verified = await self.engine.already_verified(context)
        if account_verified or token_verified:
            if context.account_id > 0 and not account_verified and token_verified:
                await self.engine.records.set_account_verified(
                    context.account_id, VerificationMethod.COOKIE
                )
                log.info("Promoted cookie verification onto account %s", context.account_id)
            return ProviderOutcome.redirect(self.gate_url())

        return await self.start_verification(context)

    async def start_verification(self, context: VisitorContext) -> ProviderOutcome:
        raise NotImplementedError

    async def callback(self, context: VisitorContext, request: ProviderRequest) -> ProviderOutcome:
        return ProviderOutcome.empty()

    async def linkback(self, context: VisitorContext, request: ProviderRequest) -> ProviderOutcome:
        return ProviderOutcome.redirect(self.gate_url())

    async def ensure_cookie_token(self, context: VisitorContext, verified: bool) -> Optional[str]:
        """Make sure the visitor carries a token the store knows about.

        A missing, over-long or unknown cookie is replaced with a fresh
        token; only stored tokens can be upgraded later.

        Returns:
            The newly issued token, or None when nothing new was issued.
        """
        token = context.cookie_token
        if token and len(token) <= TOKEN_LENGTH:
            if await self.engine.tokens.check(token) != VerificationState.UNKNOWN:
                return None
        return await self.engine.tokens.set_cookie(context, verified)
