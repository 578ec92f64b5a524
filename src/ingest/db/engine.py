"""SQLModel engine singleton and document-store dependency."""
from typing import Generator

from sqlmodel import SQLModel, create_engine

from ingest.config import get_settings
from ingest.db.store import DocumentStore

_engine = None


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # shared across FastAPI/APScheduler threads
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        # Import all models so metadata is populated before create_all
        from ingest.db.store import Document  # noqa
        SQLModel.metadata.create_all(_engine)
    return _engine


def get_store() -> Generator[DocumentStore, None, None]:
    """FastAPI dependency that yields the document store."""
    yield DocumentStore(get_engine())
