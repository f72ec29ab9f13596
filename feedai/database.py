from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for all ORM models
Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """Create an engine for the given URL. SQLite needs cross-thread access for the worker pool."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Each unit of work gets its own session from this factory."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine):
    """Create tables if they don't exist."""
    # models must be imported so their tables are registered on Base.metadata
    from feedai import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
