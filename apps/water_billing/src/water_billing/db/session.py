"""SQLAlchemy engine and session factory definitions."""

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from water_billing.core.settings import get_settings


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Build the process-wide engine from application settings."""

    return create_engine(get_settings().database_url, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create the SQLAlchemy session factory."""

    return sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    """Return the session factory bound to the process-wide engine."""

    return create_session_factory(get_engine())


def get_db_session() -> Generator[Session, None, None]:
    """Yield a database session per request lifecycle."""

    with get_session_factory()() as session:
        yield session


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional session scope."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
