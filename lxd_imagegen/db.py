"""State database for lxd_imagegen.

Tracked images live in a small SQLite database (any SQLAlchemy URL works).
Tables are created on first use; there are no migrations.
"""

from pathlib import Path

from sqlalchemy import Engine, create_engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from lxd_imagegen.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _ensure_sqlite_dir(db_url: str) -> None:
    """Create the directory holding a file-backed SQLite database."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return
    if url.database and url.database != ":memory:":
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def get_engine(db_url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        db_url: Database URL. If not provided, uses settings default.

    Returns:
        SQLAlchemy Engine instance.
    """
    if db_url is None:
        db_url = get_settings().db_url

    _ensure_sqlite_dir(db_url)
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, connect_args=connect_args, echo=False)


def create_all_tables(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    # Registers ResourceRecord with the metadata
    from lxd_imagegen.state import models as state_models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def open_state(db_url: str | None = None) -> sessionmaker[Session]:
    """Open the state database and return a session factory.

    Args:
        db_url: Database URL. If not provided, uses settings default.

    Returns:
        Session factory bound to a ready-to-use database.
    """
    engine = get_engine(db_url)
    create_all_tables(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


__all__ = ["Base", "create_all_tables", "get_engine", "open_state"]
