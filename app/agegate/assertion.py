# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Signed age assertion (EdDSA JWT) parser and validator.

RedactID returns the visitor with a compact-serialised JWT signed with
Ed25519.  Validation is strict and ordered; the first violation is
reported:

1. Structure, algorithm (``EdDSA`` only) and signature.
2. Issuer and subject (the subject is this site's id).
3. Time validity: ``iat``, ``nbf`` and ``exp`` must all be present with
   ``iat <= now``, ``nbf <= now`` and ``now < exp``.
4. ``18plus`` must be ``true``; ``reference``, ``ip`` and ``jti`` present.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import pysodium

from app.agegate.exceptions import AssertionValidationError

logger = logging.getLogger(__name__)

__all__ = ["AgeAssertion", "AssertionValidator", "parse_assertion"]

ALLOWED_ALGORITHM = "EdDSA"
_ED25519_KEY_LEN = 32
_ED25519_SIG_LEN = 64


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgeAssertion:
    """Parsed, not yet validated, age assertion.

    Attributes:
        header:       Decoded JOSE header.
        claims:       Decoded payload claims.
        signature:    Raw signature bytes.
        signing_input: ``<header>.<payload>`` as sent, for verification.
    """

    header: Dict[str, Any]
    claims: Dict[str, Any]
    signature: bytes
    signing_input: bytes


# ---------------------------------------------------------------------------
# Internal helpers: base64url / JSON
# ---------------------------------------------------------------------------

def _b64url_decode(segment: str, label: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise AssertionValidationError.malformed(
            f"base64url decoding of {label} failed: {exc}"
        ) from exc


def _decode_json(raw: bytes, label: str) -> Dict[str, Any]:
    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise AssertionValidationError.malformed(
            f"JSON decoding of {label} failed: {exc}"
        ) from exc
    if not isinstance(obj, dict):
        raise AssertionValidationError.malformed(
            f"expected JSON object for {label}, got {type(obj).__name__}"
        )
    return obj


def _decode_public_key(public_key: str) -> bytes:
    try:
        key = base64.b64decode(public_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AssertionValidationError.malformed(f"public key is not base64: {exc}") from exc
    if len(key) != _ED25519_KEY_LEN:
        raise AssertionValidationError.malformed(
            f"public key must be {_ED25519_KEY_LEN} bytes, got {len(key)}"
        )
    return key


def _require_time(claims: Dict[str, Any], name: str) -> int:
    value = claims.get(name)
    if value is None:
        raise AssertionValidationError.invalid_claim(name, "is missing")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise AssertionValidationError.invalid_claim(
            name, f"must be a number, got {type(value).__name__}"
        )
    return int(value)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_assertion(raw: Optional[str]) -> AgeAssertion:
    """Split and decode a compact JWT without validating it."""
    if not raw or not raw.strip():
        raise AssertionValidationError.missing()

    parts = raw.strip().split(".")
    if len(parts) != 3:
        raise AssertionValidationError.malformed(
            f"JWT must have 3 dot-separated parts, got {len(parts)}"
        )
    raw_header, raw_payload, raw_signature = parts

    header = _decode_json(_b64url_decode(raw_header, "header"), "header")
    claims = _decode_json(_b64url_decode(raw_payload, "payload"), "payload")
    signature = _b64url_decode(raw_signature, "signature")

    return AgeAssertion(
        header=header,
        claims=claims,
        signature=signature,
        signing_input=f"{raw_header}.{raw_payload}".encode("ascii"),
    )


class AssertionValidator:
    """Validate RedactID age assertions.

    Args:
        clock: Returns the current UNIX time; overridable in tests.
    """

    def __init__(self, clock=time.time):
        self._clock = clock

    def validate(
        self,
        raw: Optional[str],
        public_key: str,
        issuer: str,
        subject: str,
    ) -> Dict[str, Any]:
        """Validate *raw* and return its claims.

        Raises:
            AssertionValidationError: On the first violated constraint.
        """
        assertion = parse_assertion(raw)
        self._verify_signature(assertion, public_key)

        claims = assertion.claims
        if claims.get("iss") != issuer:
            raise AssertionValidationError.invalid_claim("iss", f"must be {issuer!r}")
        if claims.get("sub") != subject:
            raise AssertionValidationError.invalid_claim("sub", "does not match this site")

        now = int(self._clock())
        iat = _require_time(claims, "iat")
        nbf = _require_time(claims, "nbf")
        exp = _require_time(claims, "exp")
        if iat > now:
            raise AssertionValidationError.not_yet_valid("iat", iat, now)
        if nbf > now:
            raise AssertionValidationError.not_yet_valid("nbf", nbf, now)
        if now >= exp:
            raise AssertionValidationError.expired(exp, now)

        if claims.get("18plus") is not True:
            raise AssertionValidationError.invalid_claim("18plus", "must be true")
        for name in ("reference", "ip", "jti"):
            if name not in claims or claims[name] in (None, ""):
                raise AssertionValidationError.invalid_claim(name, "is missing")

        logger.debug("Age assertion %s validated", claims["jti"])
        return claims

    def _verify_signature(self, assertion: AgeAssertion, public_key: str) -> None:
        alg = assertion.header.get("alg")
        if alg != ALLOWED_ALGORITHM:
            raise AssertionValidationError.forbidden_alg(str(alg))

        verkey = _decode_public_key(public_key)
        if len(assertion.signature) != _ED25519_SIG_LEN:
            raise AssertionValidationError.bad_signature()

        try:
            pysodium.crypto_sign_verify_detached(
                assertion.signature,
                assertion.signing_input,
                verkey,
            )
        except ValueError as exc:
            raise AssertionValidationError.bad_signature() from exc
