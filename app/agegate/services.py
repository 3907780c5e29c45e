# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Wiring of the age gate services.

:func:`build_services` constructs every collaborator exactly once from a
:class:`~app.config.Settings`; the application lifespan keeps the result
on ``app.state``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.config import Settings
from app.db.session import create_session_factory
from app.agegate.cache import TTLCache
from app.agegate.decision import DecisionEngine
from app.agegate.geo import GeoLookup, MaxMindGeoLookup
from app.agegate.providers import GoCamUrlBuilder, ProviderRegistry
from app.agegate.records import VerificationRecordStore
from app.agegate.region import RegionResolver
from app.agegate.store import AccountTable, TokenTable
from app.agegate.tokens import TokenLifecycle

log = logging.getLogger("agegate.services")


@dataclass
class AgeGateServices:
    settings: Settings
    cache: TTLCache
    session_factory: sessionmaker
    geo: GeoLookup
    region: RegionResolver
    records: VerificationRecordStore
    tokens: TokenLifecycle
    engine: DecisionEngine
    providers: ProviderRegistry

    def close(self) -> None:
        """Release the database engine and the geolocation reader."""
        close_geo = getattr(self.geo, "close", None)
        if close_geo is not None:
            close_geo()
        self.session_factory.kw["bind"].dispose()


def build_services(
    settings: Settings,
    geo: Optional[GeoLookup] = None,
    session_factory: Optional[sessionmaker] = None,
    cache: Optional[TTLCache] = None,
    gocam_url_builder: Optional[GoCamUrlBuilder] = None,
    clock=time.time,
) -> AgeGateServices:
    """Construct the full service graph for *settings*.

    Any collaborator may be supplied to replace the default built from
    settings (tests pass an in-memory database and a fake GeoLookup).
    """
    cache = cache or TTLCache(max_entries=settings.cache_max_entries)
    session_factory = session_factory or create_session_factory(settings.database_url)
    geo = geo or MaxMindGeoLookup(settings.geoip_db_path)

    region = RegionResolver(
        geo,
        cache,
        cache_prefix=settings.cache_prefix,
        globally_restricted=settings.globally_restricted,
        force_restricted_ips=settings.force_restricted_ips,
        force_unrestricted_ips=settings.force_unrestricted_ips,
        cache_read_enabled=settings.cache_read_enabled,
    )
    records = VerificationRecordStore(
        AccountTable(session_factory),
        cache,
        cache_prefix=settings.cache_prefix,
        cache_read_enabled=settings.cache_read_enabled,
    )
    tokens = TokenLifecycle(
        TokenTable(session_factory),
        cache,
        cache_prefix=settings.cache_prefix,
        cache_read_enabled=settings.cache_read_enabled,
    )
    engine = DecisionEngine(region, records, tokens)
    providers = ProviderRegistry.from_settings(
        settings,
        engine,
        cache,
        gocam_url_builder=gocam_url_builder,
        clock=clock,
    )

    log.info(
        "Age gate services built: cache_prefix=%s, cache_reads=%s, globally_restricted=%s",
        settings.cache_prefix,
        settings.cache_read_enabled,
        settings.globally_restricted,
    )
    return AgeGateServices(
        settings=settings,
        cache=cache,
        session_factory=session_factory,
        geo=geo,
        region=region,
        records=records,
        tokens=tokens,
        engine=engine,
        providers=providers,
    )
