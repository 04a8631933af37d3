"""SQLAlchemy engine, session factory, and declarative Base for the audit store."""

from __future__ import annotations

import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger(__name__)

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./claims_audit.db")


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> Engine:
    # SQLite needs check_same_thread=False: the retry queue writes from its own thread
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(url: str) -> sessionmaker:
    """Engine + sessionmaker for ``url`` with all audit tables created."""
    engine = make_engine(url)
    init_db(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine) -> None:
    """Create all tables. Safe to call repeatedly."""
    from db import models  # noqa: F401  registers the models on Base
    Base.metadata.create_all(bind=bind)


if __name__ == "__main__":
    from dotenv import load_dotenv
    from sqlalchemy import inspect

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    load_dotenv()
    url = os.getenv("DATABASE_URL", DATABASE_URL)
    engine = make_engine(url)
    init_db(engine)
    logger.info("Audit tables ready in %s", url)
    for table in inspect(engine).get_table_names():
        logger.info("   Table: %s", table)
