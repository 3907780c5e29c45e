# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Region restriction resolution.

Decides whether a visitor's IP falls in a territory that requires age
verification.  Decisions, display name included, are cached per IP for
five minutes; lookup failures fail open and are never cached.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Callable, Iterable, Optional

from app.config import REGION_CACHE_TTL_SECONDS
from app.agegate.blocked_regions import is_restrictive_us_state
from app.agegate.cache import TTLCache
from app.agegate.exceptions import GeoLookupError
from app.agegate.geo import GeoLookup
from app.agegate.models import RegionDecision, VisitorContext

log = logging.getLogger("agegate.region")

RegionPolicy = Callable[[Optional[str], Optional[str]], bool]

# RFC 1918 and IPv6 unique local ranges.  Documentation, benchmarking and
# shared address space are not internal and go through the geo lookup.
INTERNAL_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)


def is_private_ip(ip: str) -> bool:
    """True for loopback, link-local and RFC 1918 / ULA addresses.

    Unparseable input is not private.
    """
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    if addr.is_loopback or addr.is_link_local:
        return True
    return any(addr.version == net.version and addr in net for net in INTERNAL_NETWORKS)


class RegionResolver:
    """Resolve and cache the restricted/unrestricted status of an IP.

    Args:
        geo: GeoLookup used on cache miss.
        cache: Shared TTL cache.
        cache_prefix: Prefix for every cache key.
        policy: ``(country_iso, subdivision_iso) -> restricted``.
        globally_restricted: Restrict every visitor, skipping all lookups.
        force_restricted_ips: IPs always treated as restricted.
        force_unrestricted_ips: IPs never treated as restricted.
        cache_read_enabled: When False the cache is written but not read.
    """

    def __init__(
        self,
        geo: GeoLookup,
        cache: TTLCache,
        cache_prefix: str = "AV_",
        policy: RegionPolicy = is_restrictive_us_state,
        globally_restricted: bool = False,
        force_restricted_ips: Iterable[str] = (),
        force_unrestricted_ips: Iterable[str] = (),
        cache_read_enabled: bool = True,
    ):
        self._geo = geo
        self._cache = cache
        self._prefix = cache_prefix
        self._policy = policy
        self._globally_restricted = globally_restricted
        self._force_restricted = frozenset(force_restricted_ips)
        self._force_unrestricted = frozenset(force_unrestricted_ips)
        self._cache_read_enabled = cache_read_enabled

    def cache_key(self, ip: str) -> str:
        return f"{self._prefix}IP_{ip}"

    def override_for(self, ip: str) -> Optional[bool]:
        """Operator override for *ip*: True, False or None for no override."""
        if ip in self._force_restricted:
            return True
        if ip in self._force_unrestricted:
            return False
        return None

    async def resolve(self, context: VisitorContext) -> RegionDecision:
        """Decide whether ``context.ip`` is in a restricted territory.

        Writes the subdivision display name into ``context`` whenever a
        lookup or cached decision supplies one: the name when restricted,
        ``""`` otherwise.
        """
        ip = context.ip

        if self._globally_restricted:
            return RegionDecision(restricted=True, display_region_name=context.display_region_name)

        override = self.override_for(ip)
        if override is not None:
            return RegionDecision(restricted=override, display_region_name=context.display_region_name)

        key = self.cache_key(ip)
        if self._cache_read_enabled:
            cached: Optional[RegionDecision] = await self._cache.get(key)
            if cached is not None:
                context.display_region_name = cached.display_region_name
                return cached

        if is_private_ip(ip):
            decision = RegionDecision(restricted=False)
            await self._cache.set(key, decision, REGION_CACHE_TTL_SECONDS)
            return decision

        try:
            location = self._geo.resolve(ip)
        except GeoLookupError as e:
            log.warning("Region lookup failed for %s, not restricting: %s", ip, e.message)
            return RegionDecision(restricted=False)

        restricted = bool(self._policy(location.country_iso, location.subdivision_iso))
        context.display_region_name = location.subdivision_name if restricted else ""

        log.debug(
            "Region for %s: country=%s subdivision=%s restricted=%s",
            ip, location.country_iso, location.subdivision_iso, restricted,
        )
        decision = RegionDecision(restricted=restricted, display_region_name=context.display_region_name)
        await self._cache.set(key, decision, REGION_CACHE_TTL_SECONDS)
        return decision
