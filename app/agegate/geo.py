# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""IP geolocation boundary.

``MaxMindGeoLookup`` reads a GeoLite2-City database with ``geoip2``.  The
reader is opened lazily and reopened when the file on disk is replaced
(see ``scripts/refresh_geoip_db.py``).
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

import geoip2.database
import geoip2.errors
import maxminddb

from app.agegate.exceptions import GeoLookupError

log = logging.getLogger("agegate.geo")


@dataclass(frozen=True)
class GeoLocation:
    """Location of an IP address.

    Attributes:
        country_iso:      ISO 3166-1 alpha-2 country code, or None.
        subdivision_iso:  Most specific subdivision code (e.g. "FL"), or None.
        subdivision_name: Human readable subdivision name, or "".
    """

    country_iso: Optional[str]
    subdivision_iso: Optional[str]
    subdivision_name: str = ""


class GeoLookup(Protocol):
    def resolve(self, ip: str) -> GeoLocation:
        """Locate *ip*; raise GeoLookupError if that is not possible."""
        ...


class MaxMindGeoLookup:
    """GeoLookup backed by a MaxMind GeoLite2-City database file."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._reader: Optional[geoip2.database.Reader] = None
        self._mtime: Optional[float] = None
        self._lock = threading.Lock()

    def resolve(self, ip: str) -> GeoLocation:
        reader = self._get_reader()
        try:
            record = reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            raise GeoLookupError.not_found(ip)
        except (ValueError, maxminddb.InvalidDatabaseError) as e:
            raise GeoLookupError.unavailable(str(e))

        subdivision = record.subdivisions.most_specific
        return GeoLocation(
            country_iso=record.country.iso_code,
            subdivision_iso=subdivision.iso_code,
            subdivision_name=subdivision.name or "",
        )

    def close(self) -> None:
        with self._lock:
            if self._reader is not None:
                self._reader.close()
                self._reader = None
                self._mtime = None

    def _get_reader(self) -> geoip2.database.Reader:
        try:
            mtime = os.path.getmtime(self._db_path)
        except OSError:
            raise GeoLookupError.unavailable(f"missing database file {self._db_path}")

        with self._lock:
            if self._reader is None or mtime != self._mtime:
                if self._reader is not None:
                    self._reader.close()
                try:
                    self._reader = geoip2.database.Reader(self._db_path)
                except (OSError, maxminddb.InvalidDatabaseError) as e:
                    self._reader = None
                    raise GeoLookupError.unavailable(str(e))
                self._mtime = mtime
                log.info("Opened geolocation database %s", self._db_path)
            return self._reader
