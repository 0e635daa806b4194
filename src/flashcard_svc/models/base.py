from typing import Generator

from fastapi import Depends
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from flashcard_svc.config import Settings, get_settings

Base = declarative_base()

_engines = {}


def get_engine(database_url: str) -> Engine:
    """Return the engine for a database URL, creating it on first use."""
    engine = _engines.get(database_url)
    if engine is None:
        if database_url.startswith("sqlite"):
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(database_url, pool_pre_ping=True)
        _engines[database_url] = engine
    return engine


def init_db(settings: Settings) -> None:
    # Import models so their tables are registered on Base.metadata
    from flashcard_svc.models import flashcard_set, user  # noqa: F401

    Base.metadata.create_all(bind=get_engine(settings.database_url))


def get_db(settings: Settings = Depends(get_settings)) -> Generator[Session, None, None]:
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine(settings.database_url))
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
