# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Verification providers: launch, callback and linkback handshakes."""

from .base import Provider, VerificationProvider
from .gocam import GoCamColorConfig, GoCamProvider, GoCamRequest, GoCamUrlBuilder
from .redact_id import RedactIdProvider
from .registry import ProviderRegistry

__all__ = [
    "Provider",
    "VerificationProvider",
    "GoCamColorConfig",
    "GoCamProvider",
    "GoCamRequest",
    "GoCamUrlBuilder",
    "RedactIdProvider",
    "ProviderRegistry",
]
