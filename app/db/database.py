"""
Database engine and session management.
The connection string comes from DATABASE_URL; nothing is created at import.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Base class for models
Base = declarative_base()


def create_session_factory(database_url: str) -> sessionmaker:
    """Create an engine for database_url and return a session factory."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool
    else:
        kwargs = {"pool_pre_ping": True}

    engine = create_engine(
        database_url,
        echo=False,  # No SQL logging (security)
        **kwargs,
    )
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(session_factory: sessionmaker) -> None:
    """Create tables that do not exist yet."""
    from app.db.models import Project, Build  # noqa: F401
    Base.metadata.create_all(bind=session_factory.kw["bind"])
