# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Configured verification providers, keyed by :class:`Provider`."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from app.config import Settings
from app.agegate.cache import TTLCache
from app.agegate.decision import DecisionEngine
from app.agegate.exceptions import ConfigurationError
from app.agegate.providers.base import Provider, VerificationProvider
from app.agegate.providers.gocam import GoCamProvider, GoCamUrlBuilder
from app.agegate.providers.redact_id import RedactIdProvider

log = logging.getLogger("agegate.providers")


class ProviderRegistry:
    def __init__(self, providers: Dict[Provider, VerificationProvider]):
        self._providers = dict(providers)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        engine: DecisionEngine,
        cache: TTLCache,
        gocam_url_builder: Optional[GoCamUrlBuilder] = None,
        **kwargs,
    ) -> "ProviderRegistry":
        """Build one provider per configured entry in *settings*."""
        providers: Dict[Provider, VerificationProvider] = {}
        for provider in Provider:
            if provider is Provider.REDACT_ID:
                if settings.redact_id is None:
                    continue
                providers[provider] = RedactIdProvider(
                    settings.redact_id,
                    engine,
                    cache,
                    settings.age_gate_path,
                    cache_prefix=settings.cache_prefix,
                    **kwargs,
                )
            elif provider is Provider.GOCAM:
                if settings.gocam is None:
                    continue
                providers[provider] = GoCamProvider(
                    settings.gocam,
                    engine,
                    settings.age_gate_path,
                    url_builder=gocam_url_builder,
                    **kwargs,
                )
            else:  # pragma: no cover
                raise ConfigurationError.unknown_provider(provider.value)

        log.info("Verification providers configured: %s", [p.value for p in providers])
        return cls(providers)

    def get(self, provider: Union[Provider, str]) -> VerificationProvider:
        """Return the provider for *provider* (enum member or URL name).

        Raises:
            ConfigurationError: Unknown name or provider not configured.
        """
        if not isinstance(provider, Provider):
            provider = Provider.from_name(provider)
        try:
            return self._providers[provider]
        except KeyError:
            raise ConfigurationError.not_configured(provider.value)

    def configured(self) -> List[Provider]:
        return list(self._providers)
