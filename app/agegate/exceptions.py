# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Age gate exceptions, each carrying a stable error code."""


class AgeGateError(Exception):
    """Base exception for age gate errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class GeoLookupError(AgeGateError):
    """Geolocation source unavailable or address not found.

    Always transient from the caller's point of view: the region resolver
    fails open and never caches the outcome.
    """

    @classmethod
    def unavailable(cls, reason: str) -> "GeoLookupError":
        return cls(code="GEO_LOOKUP_FAILED", message=f"Geolocation database unavailable: {reason}")

    @classmethod
    def not_found(cls, ip: str) -> "GeoLookupError":
        return cls(code="GEO_LOOKUP_FAILED", message=f"No geolocation record for {ip}")


class PersistenceError(AgeGateError):
    """Store read or write failure."""

    @classmethod
    def read_failed(cls, table: str, reason: str) -> "PersistenceError":
        return cls(code="PERSISTENCE_FAILED", message=f"Read from {table} failed: {reason}")

    @classmethod
    def write_failed(cls, table: str, reason: str) -> "PersistenceError":
        return cls(code="PERSISTENCE_FAILED", message=f"Write to {table} failed: {reason}")


class AssertionValidationError(AgeGateError):
    """Provider assertion (signed JWT) failed validation."""

    status_code = 400

    @classmethod
    def missing(cls) -> "AssertionValidationError":
        return cls(code="ASSERTION_INVALID", message="Verification token is missing")

    @classmethod
    def malformed(cls, reason: str) -> "AssertionValidationError":
        return cls(code="ASSERTION_INVALID", message=f"Verification token is malformed: {reason}")

    @classmethod
    def forbidden_alg(cls, alg: str) -> "AssertionValidationError":
        return cls(code="ASSERTION_INVALID", message=f"Verification token uses forbidden algorithm: {alg}")

    @classmethod
    def bad_signature(cls) -> "AssertionValidationError":
        return cls(code="ASSERTION_INVALID", message="Verification token signature is invalid")

    @classmethod
    def invalid_claim(cls, claim: str, reason: str) -> "AssertionValidationError":
        return cls(code="ASSERTION_INVALID", message=f"Verification token claim '{claim}' {reason}")

    @classmethod
    def expired(cls, exp: int, now: int) -> "AssertionValidationError":
        return cls(code="ASSERTION_INVALID", message=f"Verification token expired: exp={exp}, now={now}")

    @classmethod
    def not_yet_valid(cls, claim: str, value: int, now: int) -> "AssertionValidationError":
        return cls(
            code="ASSERTION_INVALID",
            message=f"Verification token not yet valid: {claim}={value}, now={now}",
        )


class ReplayError(AgeGateError):
    """Provider assertion was already consumed."""

    status_code = 409

    @classmethod
    def already_used(cls, jti: str) -> "ReplayError":
        return cls(code="ASSERTION_REPLAYED", message=f"Verification token {jti} has already been used")


class CallbackRejectedError(AgeGateError):
    """Machine-to-machine provider callback rejected."""

    status_code = 400

    @classmethod
    def bad_key(cls) -> "CallbackRejectedError":
        return cls(code="CALLBACK_REJECTED", message="Invalid key")

    @classmethod
    def not_successful(cls, state: str) -> "CallbackRejectedError":
        return cls(code="CALLBACK_REJECTED", message=f"Verification state is {state!r}, not success")

    @classmethod
    def wrong_host(cls, hostname: str) -> "CallbackRejectedError":
        return cls(code="CALLBACK_REJECTED", message=f"Wrong website hostname: {hostname!r}")

    @classmethod
    def bad_user_data(cls, reason: str) -> "CallbackRejectedError":
        return cls(code="CALLBACK_REJECTED", message=f"Invalid userData: {reason}")


class ConfigurationError(AgeGateError):
    """Deployment defect: provider missing or misconfigured."""

    status_code = 500

    @classmethod
    def unknown_provider(cls, name: str) -> "ConfigurationError":
        return cls(code="CONFIGURATION_ERROR", message=f"Unknown verification provider: {name!r}")

    @classmethod
    def not_configured(cls, name: str) -> "ConfigurationError":
        return cls(code="CONFIGURATION_ERROR", message=f"Verification provider {name} is not configured")

    @classmethod
    def invalid(cls, name: str, reason: str) -> "ConfigurationError":
        return cls(code="CONFIGURATION_ERROR", message=f"Verification provider {name} is misconfigured: {reason}")
