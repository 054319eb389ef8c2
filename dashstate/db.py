"""
Database connection and setup for the SQL metric sink
"""
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from dashstate.models import Base

_session_factory: Optional[sessionmaker] = None


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for database_url
    SQLite connections are shared with the metric flush thread
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, echo=False)


def init_db(engine: Engine) -> None:
    """
    Create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to engine"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_session_factory() -> sessionmaker:
    """
    Get the session factory for settings.database_url
    Tables are created on first use
    """
    global _session_factory
    if _session_factory is None:
        from config.settings import settings
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        _session_factory = make_session_factory(engine)
    return _session_factory
