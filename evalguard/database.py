"""
Database connection and session management.
"""

from sqlalchemy import JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from evalguard.config import settings

# JSON column type: JSONB on PostgreSQL, generic JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite connections get explicit BEGIN handling so that SAVEPOINTs
    (used by score upserts and per-evaluator isolation) behave correctly.

    Args:
        database_url: SQLAlchemy database URL
        **kwargs: Extra keyword arguments for create_engine

    Returns:
        Engine instance
    """
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(database_url, **kwargs)

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        echo=settings.log_level == "DEBUG",
        **kwargs
    )


# Create SQLAlchemy engine
engine = create_db_engine(settings.database_url)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """
    Yield a database session and close it afterwards.

    Usage:
        for db in get_db():
            DatasetRunnerService(db, run).call()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None) -> None:
    """Create all tables that do not exist yet."""
    import evalguard.models  # noqa: F401  registers models on Base.metadata

    Base.metadata.create_all(bind=bind or engine)
