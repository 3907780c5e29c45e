# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""SQLAlchemy models for age verification records.

``accounts`` is normally owned by the host site; only the verification
columns are mapped here.  ``age_tokens`` backs the anonymous cookie
tokens and is owned by this service.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Account(Base):
    """Site account with its age verification method.

    A non-empty ``age_verified`` means the account is verified; the value
    is the method used (``REDACT-ID``, ``GOCAM`` or ``COOKIE``).
    """
    __tablename__ = "accounts"

    account_id = Column(Integer, primary_key=True)
    age_verified = Column(String(32), nullable=True)
    verification_reference = Column(String(255), nullable=True)  # RedactID only


class AgeToken(Base):
    """Anonymous verification token stored in the visitor's cookie."""
    __tablename__ = "age_tokens"

    token_id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String(32), nullable=False, unique=True, index=True)
    issued = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    verified = Column(Boolean, nullable=False, default=False)
