import logging as log
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config.app_vars import DATABASE_URL, DB_HOST, DB_NAME, DB_PASS, DB_PORT, DB_USER

POSTGRES_URL = f"postgresql+psycopg://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"

Base = declarative_base()

# Unbound until init_db() runs at process start
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

_engine: Optional[Engine] = None


def create_db_engine(url: Optional[str] = None) -> Engine:
    url = url or DATABASE_URL or POSTGRES_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url == "sqlite://" or ":memory:" in url:
            # Shared connection so every session sees the same in-memory database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def init_db(engine: Optional[Engine] = None) -> Engine:
    """Bind the session factory to an engine and create missing tables."""
    global _engine
    # Models must be registered on Base before create_all
    import models  # noqa: F401

    _engine = engine or create_db_engine()
    SessionLocal.configure(bind=_engine)
    Base.metadata.create_all(bind=_engine)
    log.info(f"Database initialised on {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def close_db() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        log.info("Database engine disposed")
    _engine = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
