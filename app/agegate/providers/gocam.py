# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""GoCam: SDK-encrypted redirect with a server-to-server callback.

Launch assembles a :class:`GoCamRequest` and hands it to a
:class:`GoCamUrlBuilder`, which owns the GoCam SDK payload encryption.
GoCam later posts the outcome to the callback endpoint; the visitor's own
return through the linkback only brings them back to the age gate.

The official hosted service (base URL empty or on ``https://go.cam``)
needs a partner id and HMAC key and ignores any callback URL we send, so
none is sent.  Any other base URL is a self-hosted open-source instance.
"""

from __future__ import annotations

import hmac
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

from app.config import GoCamConfig
from app.agegate.decision import DecisionEngine
from app.agegate.exceptions import CallbackRejectedError, ConfigurationError
from app.agegate.models import (
    ProviderOutcome,
    ProviderRequest,
    VerificationMethod,
    VisitorContext,
)
from app.agegate.providers.base import Provider, VerificationProvider

log = logging.getLogger("agegate.providers")


# ---------------------------------------------------------------------------
# Launch payload
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GoCamButtonColors:
    background: str = "#9acd1f"
    foreground: str = "#ffffff"
    foregroundCallToAction: str = "#ffffff"


@dataclass(frozen=True)
class GoCamColorConfig:
    """Theme of the GoCam verification page."""

    background: str = "#ffffff"
    foreground: str = "#000000"
    button: GoCamButtonColors = field(default_factory=GoCamButtonColors)

    def to_dict(self) -> Dict[str, Any]:
        return {"body": asdict(self)}


@dataclass(frozen=True)
class GoCamRequest:
    """Everything GoCam needs to start a verification.

    Attributes:
        user_id:             Account id, 0 for guests.
        token:               Cookie token correlating the callback.
        user_agent:          Visitor's user agent.
        website_hostname:    Host the callback must echo back.
        verification_types:  e.g. ``("selfie", "scanId")``.
        link_back:           Where the visitor returns after verifying.
        callback_url:        Server-to-server result URL ("" for official).
        user_ip:             Visitor's IP.
        official:            True for the hosted go.cam service.
        base_url:            GoCam instance base URL.
        country_code:        Optional ISO country code.
        state_code:          Optional subdivision code.
    """

    user_id: int
    token: str
    user_agent: str
    website_hostname: str
    verification_types: Tuple[str, ...]
    link_back: str
    callback_url: str
    user_ip: str
    official: bool
    base_url: str = ""
    country_code: str = ""
    state_code: str = ""
    color_config: GoCamColorConfig = field(default_factory=GoCamColorConfig)
    show_detected_age_number: bool = False

    def to_payload(self) -> Dict[str, Any]:
        """Request object in the layout the GoCam SDKs expect."""
        # The two SDK flavours name the HTTP section differently
        http_key = "http" if self.official else "httpParamList"
        return {
            "userData": {
                "userId": self.user_id,
                "userData": self.token,
                "colorConfig": self.color_config.to_dict(),
            },
            http_key: {
                "userAgent": self.user_agent,
                "websiteHostname": self.website_hostname,
                "paramList": {
                    "showDetectedAgeNumber": self.show_detected_age_number,
                    "verificationTypeList": list(self.verification_types),
                    "userAgent": self.user_agent,
                },
            },
            "linkBack": self.link_back,
            "callbackUrl": self.callback_url,
            "ipStr": self.user_ip,
            "countryCode": self.country_code,
            "stateCode": self.state_code,
        }


class GoCamUrlBuilder(Protocol):
    def build_redirect_url(self, request: GoCamRequest) -> str:
        """Encrypt *request* with the GoCam SDK and return the redirect URL."""
        ...


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class GoCamProvider(VerificationProvider):
    provider = Provider.GOCAM

    def __init__(
        self,
        config: GoCamConfig,
        engine: DecisionEngine,
        age_gate_path: str,
        url_builder: Optional[GoCamUrlBuilder] = None,
        **kwargs,
    ):
        super().__init__(engine, age_gate_path, **kwargs)
        self.config = config
        self.url_builder = url_builder

    def endpoint_url(self, context: VisitorContext, operation: str) -> str:
        return (
            f"{context.scheme}://{context.host}{self.age_gate_path}"
            f"/{self.provider.value}/{operation}?cache={int(self._clock())}"
        )

    def link_back_url(self, context: VisitorContext) -> str:
        return self.config.linkback_url or self.endpoint_url(context, "linkback")

    def callback_url(self, context: VisitorContext) -> str:
        if self.config.is_official:
            return ""
        key = self.config.callback_key
        if not self.config.callback_url_base:
            return f"{self.endpoint_url(context, 'callback')}&k={key}"
        url = self.config.callback_url_base
        if key:
            url += ("&" if "?" in url else "?") + f"k={key}"
        return url

    def build_request(self, context: VisitorContext, token: str) -> GoCamRequest:
        return GoCamRequest(
            user_id=context.account_id,
            token=token,
            user_agent=context.user_agent,
            website_hostname=context.host,
            verification_types=tuple(self.config.verification_options) or ("selfie", "scanId"),
            link_back=self.link_back_url(context),
            callback_url=self.callback_url(context),
            user_ip=context.ip,
            official=self.config.is_official,
            base_url=self.config.base_url,
        )

    async def start_verification(self, context: VisitorContext) -> ProviderOutcome:
        if self.config.is_official and (self.config.partner_id <= 0 or not self.config.hmac_key):
            raise ConfigurationError.invalid(
                self.provider.value, "official instance selected but no partner id and HMAC key set"
            )
        if self.url_builder is None:
            raise ConfigurationError.invalid(self.provider.value, "no GoCam SDK URL builder installed")

        # The callback correlates through the token, so one must exist first
        new_token = await self.ensure_cookie_token(context, verified=False)

        request = self.build_request(context, context.cookie_token)
        location = self.url_builder.build_redirect_url(request)
        log.info("Launching GoCam verification for account %s", context.account_id)
        return ProviderOutcome.redirect(location, set_cookie_token=new_token)

    async def callback(self, context: VisitorContext, request: ProviderRequest) -> ProviderOutcome:
        expected_key = self.config.callback_key
        if expected_key:
            supplied = request.query.get("k", "")
            if not hmac.compare_digest(supplied.encode("utf-8"), expected_key.encode("utf-8")):
                raise CallbackRejectedError.bad_key()

        state = request.form.get("state", "")
        if state.lower() != "success":
            raise CallbackRejectedError.not_successful(state)

        hostname = request.form.get("websiteHostname", "")
        if hostname != context.host:
            raise CallbackRejectedError.wrong_host(hostname)

        account_id, token = _parse_user_data(request.form.get("userData", ""))

        if account_id > 0:
            await self.engine.records.set_account_verified(account_id, VerificationMethod.GOCAM)
        if token:
            await self.engine.tokens.upgrade(token)

        log.info("GoCam callback accepted for account %s", account_id)
        return ProviderOutcome.empty()


def _parse_user_data(raw: str) -> Tuple[int, str]:
    """Decode the ``userData`` field into ``(account_id, token)``."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise CallbackRejectedError.bad_user_data(str(e)) from e
    if not isinstance(data, dict):
        raise CallbackRejectedError.bad_user_data("expected a JSON object")

    user_id = data.get("userId") or 0
    try:
        account_id = int(user_id)
    except (TypeError, ValueError) as e:
        raise CallbackRejectedError.bad_user_data(f"userId {user_id!r} is not a number") from e

    token = data.get("userData") or ""
    if not isinstance(token, str):
        raise CallbackRejectedError.bad_user_data("userData must be a string")
    return account_id, token
