# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Table access for accounts and age tokens.

Each call runs in its own short session.  SQLAlchemy failures surface as
:class:`PersistenceError`; callers decide how to degrade.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.db.models import Account, AgeToken
from app.db.session import session_scope
from app.agegate.exceptions import PersistenceError


@dataclass(frozen=True)
class AccountRow:
    account_id: int
    age_verified: Optional[str]
    verification_reference: Optional[str]

    @property
    def is_verified(self) -> bool:
        return bool(self.age_verified)


@dataclass(frozen=True)
class TokenRow:
    token: str
    verified: bool


class AccountTable:
    """Read and update the verification columns of ``accounts``."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, account_id: int) -> Optional[AccountRow]:
        try:
            with session_scope(self._session_factory) as db:
                account = db.get(Account, account_id)
                if account is None:
                    return None
                return AccountRow(
                    account_id=account.account_id,
                    age_verified=account.age_verified,
                    verification_reference=account.verification_reference,
                )
        except SQLAlchemyError as e:
            raise PersistenceError.read_failed("accounts", str(e)) from e

    def update(self, account_id: int, method: str, reference: Optional[str]) -> bool:
        """Set the verification method and reference.

        Returns:
            False if no such account row exists.
        """
        try:
            with session_scope(self._session_factory) as db:
                result = db.execute(
                    update(Account)
                    .where(Account.account_id == account_id)
                    .values(age_verified=method, verification_reference=reference)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise PersistenceError.write_failed("accounts", str(e)) from e


class TokenTable:
    """Rows of ``age_tokens``, looked up by exact token value."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, token: str) -> Optional[TokenRow]:
        try:
            with session_scope(self._session_factory) as db:
                row = db.execute(
                    select(AgeToken.token, AgeToken.verified).where(AgeToken.token == token)
                ).first()
                if row is None:
                    return None
                return TokenRow(token=row.token, verified=bool(row.verified))
        except SQLAlchemyError as e:
            raise PersistenceError.read_failed("age_tokens", str(e)) from e

    def insert(self, token: str, verified: bool) -> None:
        try:
            with session_scope(self._session_factory) as db:
                db.add(AgeToken(token=token, verified=verified))
        except IntegrityError as e:
            raise PersistenceError.write_failed("age_tokens", f"duplicate token: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceError.write_failed("age_tokens", str(e)) from e

    def set_verified(self, token: str) -> bool:
        try:
            with session_scope(self._session_factory) as db:
                result = db.execute(
                    update(AgeToken).where(AgeToken.token == token).values(verified=True)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise PersistenceError.write_failed("age_tokens", str(e)) from e
