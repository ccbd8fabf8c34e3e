from collections.abc import Generator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.core.config import settings


def build_engine(uri: str):
    """Create an engine; SQLite connections are shared across worker threads."""
    if not uri.startswith("sqlite"):
        return create_engine(uri, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if uri in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(uri, **kwargs)


engine = build_engine(str(settings.DATABASE_URI))


def create_db_and_tables() -> None:
    """Create database tables."""
    # Register table models on the metadata before create_all
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_db_session() -> Generator[Session, None, None]:
    """Get database session."""
    with Session(engine) as session:
        yield session


def open_session() -> Session:
    """Session for work that runs outside a request, e.g. push dispatch."""
    return Session(engine)


def init_db() -> None:
    """Initialize database with tables."""
    create_db_and_tables()
