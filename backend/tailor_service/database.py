from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from tailor_service.config import settings
from tailor_service.models.base import Base


def build_engine(url: str) -> Engine:
    """
    Create an engine for ``url``.

    SQLite connections are shared across threads (the SSE pipeline persists
    from the event loop thread); an in-memory database additionally needs a
    single shared connection or every session would see an empty schema.
    """
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None):
    # Import all models here so they are registered with Base
    import tailor_service.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
