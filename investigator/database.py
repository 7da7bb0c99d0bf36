"""Database configuration and session management."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from investigator.config import get_settings


def normalize_database_url(url: str) -> str:
    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str) -> Engine:
    """Create an engine configured for the database type behind ``url``."""
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        # Pipeline workers touch the database from executor threads
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    """
    Session factory used by the services.

    Objects returned by a service outlive its session, so attributes are not
    expired on commit: a returned Task is a consistent snapshot.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine(get_settings().database_url)

SessionLocal = make_session_factory(engine)

Base = declarative_base()
