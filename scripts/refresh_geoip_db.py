#!/usr/bin/env python3
# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Refresh the GeoLite2-City database used by the age gate.

Intended to run from cron once a day or every couple of days.  Downloads the
latest database from the community mirror into a staging file, checks it,
and atomically swaps it in place of the live file.  Running services pick up
the new file on their next lookup (the reader reopens when the mtime changes).

Usage:
    python3 scripts/refresh_geoip_db.py
    python3 scripts/refresh_geoip_db.py --dest /srv/geo/GeoLite2-City.mmdb \\
        --ping-url https://hc-ping.com/<uuid>

Environment:
    AV_GEOIP_DB_PATH        Live database path (default: GeoLite2-City.mmdb)
    AV_GEOIP_SOURCE_URL     Download URL (default: P3TERX GitHub mirror)
    AV_GEOIP_PING_URL       Health-check URL pinged with the result
"""

import argparse
import hashlib
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

import geoip2.database
import geoip2.errors
import httpx

log = logging.getLogger("agegate.refresh_geoip_db")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

SOURCE_URL = os.getenv(
    "AV_GEOIP_SOURCE_URL",
    "https://github.com/P3TERX/GeoLite.mmdb/raw/download/GeoLite2-City.mmdb",
)
DEST_PATH = os.getenv("AV_GEOIP_DB_PATH", "GeoLite2-City.mmdb")
PING_URL = os.getenv("AV_GEOIP_PING_URL", "")

MIN_SIZE_BYTES = 30 * 1024 * 1024
SAMPLE_IP = "128.101.101.101"  # MaxMind's test address, University of Minnesota
SAMPLE_SUBDIVISION = "MN"
MAX_UNCHANGED_SECONDS = 60 * 60 * 24 * 10
DOWNLOAD_TIMEOUT_SECONDS = 3600.0


class RefreshError(Exception):
    """A refresh step failed; the live database was left untouched."""


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def staging_path(dest: Path) -> Path:
    return dest.with_name(dest.stem + "-staging" + dest.suffix)


def metadata_path(dest: Path) -> Path:
    return dest.with_suffix(".meta.json")


def download(url: str, target: Path, timeout: float = DOWNLOAD_TIMEOUT_SECONDS) -> int:
    """Stream ``url`` into ``target`` and return the number of bytes written."""
    written = 0
    try:
        if target.exists():
            target.unlink()
        with httpx.stream("GET", url, follow_redirects=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(target, "wb") as fh:
                for chunk in response.iter_bytes():
                    fh.write(chunk)
                    written += len(chunk)
    except httpx.HTTPError as e:
        raise RefreshError(f"Download failed: {e}") from e
    except OSError as e:
        raise RefreshError(f"Could not write staging file {target}: {e}") from e
    return written


def check_size(path: Path, min_size: int = MIN_SIZE_BYTES) -> None:
    # Usually ~60MB; a file this small means something upstream went wrong
    size = path.stat().st_size
    if size < min_size:
        raise RefreshError(f"Unexpected file size {size}, not installing")


def check_lookup(path: Path) -> None:
    """Open the staged file with geoip2 and look up the sample address."""
    try:
        with geoip2.database.Reader(str(path)) as reader:
            record = reader.city(SAMPLE_IP)
    except (geoip2.errors.GeoIP2Error, ValueError, OSError) as e:
        raise RefreshError(f"Database unreadable: {e}") from e

    state = record.subdivisions.most_specific.iso_code
    if state != SAMPLE_SUBDIVISION:
        raise RefreshError(f"Unexpected result for {SAMPLE_IP}: subdivision was {state!r}")


def file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(1024 * 1024), b""):
            digest.update(block)
    return digest.hexdigest()


def read_metadata(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text())
    except (OSError, json.JSONDecodeError):
        log.warning(f"Ignoring unreadable metadata file {path}")
        return None


def install(staged: Path, dest: Path, digest: str, now: float) -> None:
    # os.replace is atomic on POSIX; readers holding the old file keep it open
    try:
        os.replace(staged, dest)
    except OSError as e:
        raise RefreshError(f"Rename to {dest} failed: {e}") from e
    # Written after the move so a failed move never records the new digest
    try:
        metadata_path(dest).write_text(json.dumps({"sha256": digest, "time": int(now)}))
    except OSError as e:
        raise RefreshError(f"Installed {dest} but could not write metadata: {e}") from e


def refresh(
    dest: Path,
    url: str = SOURCE_URL,
    now: Optional[float] = None,
    min_size: int = MIN_SIZE_BYTES,
) -> str:
    """Run one refresh cycle.

    Returns ``"installed"`` or ``"unchanged"``.  Raises :class:`RefreshError`
    when a check fails or the database has not changed for too long.
    """
    now = time.time() if now is None else now
    staged = staging_path(dest)

    log.info(f"Downloading {url}")
    size = download(url, staged)
    log.info(f"Downloaded {size} bytes")

    try:
        check_size(staged, min_size)
        check_lookup(staged)
        digest = file_digest(staged)

        metadata = read_metadata(metadata_path(dest))
        if metadata and metadata.get("sha256") == digest:
            staged.unlink()
            unchanged_for = now - float(metadata.get("time", now))
            if unchanged_for > MAX_UNCHANGED_SECONDS:
                raise RefreshError(
                    f"Database unchanged for {int(unchanged_for // 86400)} days, "
                    "possible problem with the upstream mirror"
                )
            log.info("Database unchanged, nothing to install")
            return "unchanged"

        install(staged, dest, digest, now)
    finally:
        if staged.exists():
            staged.unlink()

    log.info(f"Installed new database at {dest}")
    return "installed"


def report(ping_url: str, success: bool) -> None:
    """Ping a healthchecks-style URL; failures get a ``/fail`` suffix."""
    if not ping_url:
        return
    url = ping_url.rstrip("/") + ("" if success else "/fail")
    try:
        httpx.get(url, timeout=10.0)
    except httpx.HTTPError as e:
        log.warning(f"Health-check ping to {url} failed: {e}")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Refresh the GeoLite2-City database")
    parser.add_argument("--dest", default=DEST_PATH, help="Live database path")
    parser.add_argument("--url", default=SOURCE_URL, help="Download URL")
    parser.add_argument("--ping-url", default=PING_URL,
                        help="Health-check URL to ping with the result")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        result = refresh(Path(args.dest), url=args.url)
    except RefreshError as e:
        log.error(str(e))
        report(args.ping_url, success=False)
        return 1

    log.info(f"Refresh complete: {result}")
    report(args.ping_url, success=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
