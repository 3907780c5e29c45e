# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Database engine and session factory construction.

Engines are built per ``Settings`` by :func:`create_session_factory`
rather than at import time, so tests and the application each own
their engine.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import Base

log = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with SQLite-specific settings where needed."""
    connect_args = {}
    engine_kwargs = {
        "echo": False,
        "pool_pre_ping": True,
    }
    if database_url.startswith("sqlite"):
        # For SQLite, we need check_same_thread=False for multi-threaded access
        connect_args["check_same_thread"] = False
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise each session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
    engine_kwargs["connect_args"] = connect_args
    return create_engine(database_url, **engine_kwargs)


def create_session_factory(database_url: str) -> sessionmaker:
    """Return a session factory bound to a new engine for *database_url*."""
    engine = create_db_engine(database_url)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_database(session_factory: sessionmaker) -> None:
    """Create all tables.  Called from the application lifespan."""
    engine = session_factory.kw["bind"]
    url = str(engine.url)
    log.info("Initializing database at %s", engine.url.render_as_string(hide_password=True))

    # Ensure the database directory exists for SQLite
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "")
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=engine)
    log.info("Database tables created successfully")


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Session committed on success and rolled back on exception."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
