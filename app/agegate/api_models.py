# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Pydantic response models for the age gate HTTP API."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ProviderLink(BaseModel):
    provider: str
    launch_url: str


class AgeGateResponse(BaseModel):
    """Outcome of ``GET /age-gate``.

    ``verify_required`` False is served with 200; True with 451 and the
    launch links of every configured provider.
    """

    verify_required: bool
    region: Optional[str] = None
    providers: List[ProviderLink] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    cache: Dict[str, int] = Field(default_factory=dict)
    providers: List[str] = Field(default_factory=list)
