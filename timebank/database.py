"""
Database engine and session factory.
"""
import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from timebank.constants import DEFAULT_DB_DIRECTORY, DEFAULT_DB_FILE


def _default_database_url() -> str:
    db_dir = Path(os.getenv("TIMEBANK_DB_DIR", DEFAULT_DB_DIRECTORY))
    try:
        db_dir.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        # Fallback to local directory if no permissions for /var/lib
        db_dir = Path(".")
    return f"sqlite:///{db_dir / DEFAULT_DB_FILE}"


DATABASE_URL = os.getenv("TIMEBANK_DATABASE_URL") or _default_database_url()


def make_engine(url: str):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
