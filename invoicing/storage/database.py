"""Database engine and session setup.

Based on SQLAlchemy 2.0 documentation:
https://docs.sqlalchemy.org/en/20/orm/session_basics.html
"""

import logging

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from invoicing.shared.config import Settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for the given URL.

    In-memory SQLite URLs share a single connection across threads, otherwise
    every pooled connection would see its own empty database.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured Engine
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def engine_from_settings(settings: Settings) -> Engine:
    engine = create_db_engine(settings.database_url, echo=settings.database_echo)
    logger.info(f"Database engine created for dialect: {engine.dialect.name}")
    return engine


def init_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    # Import models so they register with Base.metadata
    from invoicing.mail import identity_store  # noqa: F401
    from invoicing.storage import models  # noqa: F401

    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
