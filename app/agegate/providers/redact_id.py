# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""RedactID: assertion-redirect verification.

The visitor is sent to RedactID and comes back with a form-posted,
Ed25519-signed JWT (``redactJwt``).  Each assertion may be consumed once;
its ``jti`` is marked in the cache for three hours.
"""

from __future__ import annotations

import html
import logging
from typing import Optional

from app.config import REDACT_ID_ISSUER, REPLAY_MARKER_TTL_SECONDS, RedactIdConfig
from app.agegate.assertion import AssertionValidator
from app.agegate.cache import TTLCache
from app.agegate.decision import DecisionEngine
from app.agegate.exceptions import AssertionValidationError, ReplayError
from app.agegate.models import (
    ProviderOutcome,
    ProviderRequest,
    UpgradeResult,
    VerificationMethod,
    VerificationState,
    VisitorContext,
)
from app.agegate.providers.base import Provider, VerificationProvider

log = logging.getLogger("agegate.providers")

ASSERTION_FIELD = "redactJwt"


class RedactIdProvider(VerificationProvider):
    provider = Provider.REDACT_ID

    def __init__(
        self,
        config: RedactIdConfig,
        engine: DecisionEngine,
        cache: TTLCache,
        age_gate_path: str,
        cache_prefix: str = "AV_",
        validator: Optional[AssertionValidator] = None,
        **kwargs,
    ):
        super().__init__(engine, age_gate_path, **kwargs)
        self.config = config
        self._cache = cache
        self._prefix = cache_prefix
        self._validator = validator or AssertionValidator()

    def replay_key(self, jti: str) -> str:
        return f"{self._prefix}REDACT_ID_TOKEN_USED_{jti}"

    async def start_verification(self, context: VisitorContext) -> ProviderOutcome:
        return ProviderOutcome.redirect(self.config.redact_id_url)

    async def linkback(self, context: VisitorContext, request: ProviderRequest) -> ProviderOutcome:
        raw = request.form.get(ASSERTION_FIELD, "")
        if not raw:
            launch = f"{self.age_gate_path}/{self.provider.value}/launch"
            return ProviderOutcome.show_message(
                "Did not receive verification data from RedactID. "
                f'<a href="{html.escape(launch)}">Retry</a>',
                status_code=400,
            )

        try:
            claims = self._validator.validate(
                raw,
                public_key=self.config.public_key,
                issuer=REDACT_ID_ISSUER,
                subject=self.config.site_id,
            )
        except AssertionValidationError as e:
            log.warning("Rejected RedactID assertion: %s", e.message)
            return ProviderOutcome.show_message(
                f"Problem validating data from RedactID: {html.escape(e.message)}. "
                f"{self._return_link()}",
                status_code=AssertionValidationError.status_code,
            )

        try:
            await self._consume(str(claims["jti"]))
        except ReplayError as e:
            log.warning("%s", e.message)
            message = f"You may have already used this token. {self._return_link()}"
            if context.cookie_token and await self.engine.tokens.check(context.cookie_token) == VerificationState.VERIFIED:
                message += (
                    "<p>Note: you are already age verified and can continue to the "
                    'main website. <a href="/">Continue</a>.'
                )
            return ProviderOutcome.show_message(message, status_code=ReplayError.status_code)

        if context.account_id > 0:
            await self.engine.records.set_account_verified(
                context.account_id, VerificationMethod.REDACT_ID, str(claims["reference"])
            )

        new_token = None
        if not context.cookie_token or await self.engine.tokens.upgrade(context.cookie_token) != UpgradeResult.UPGRADED:
            # No usable cookie to upgrade; issue a verified one unless it is already verified
            new_token = await self.engine.tokens.set_cookie(context, verified=True)

        log.info("RedactID verification accepted for account %s", context.account_id)
        return ProviderOutcome.redirect(self.gate_url(), set_cookie_token=new_token)

    async def _consume(self, jti: str) -> None:
        """Mark *jti* consumed; raise ReplayError if it already was."""
        created = await self._cache.set_if_absent(
            self.replay_key(jti), True, REPLAY_MARKER_TTL_SECONDS
        )
        if not created:
            raise ReplayError.already_used(jti)

    def _return_link(self) -> str:
        return f'<a href="{html.escape(self.config.redact_id_url)}">Return to RedactID</a>.'
