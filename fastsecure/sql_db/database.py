"""SQLAlchemy engine and session factory for the configured database."""

from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from fastsecure.config import DATABASE_URL


def engine_options(url: str) -> dict:
    """Keyword arguments for ``create_engine`` that suit the database in *url*."""
    if not url.startswith("sqlite"):
        return {"pool_size": 20, "max_overflow": 30}

    options = {"connect_args": {"check_same_thread": False}}
    # In-memory SQLite uses a singleton-per-thread pool with no overflow
    if ":memory:" not in url and url not in ("sqlite://", "sqlite:///"):
        options.update(pool_size=20, max_overflow=30)
    return options


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))

session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

base = declarative_base()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a session closed after the request."""
    db = session_local()
    try:
        yield db
    finally:
        db.close()
