"""
Database configuration and session management.

The engine is created lazily from settings.DATABASE_URL so importing the
application (tests, the scheduler runner) never opens a connection by itself.
Every settlement runs inside one session transaction; see
casino_settlement.services.settlement.settlement_scope.
"""
import os
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

_engine: Optional[Engine] = None

# Bound to the engine on first use by get_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let pysqlite honour SAVEPOINTs.

    The driver otherwise opens transactions lazily and releases savepoints on
    its own, which breaks the begin_nested() used when crediting inventory.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine

    if _engine is None:
        from casino_settlement.core.config import settings

        echo = os.getenv("SQL_ECHO", "false").lower() == "true"
        if settings.DATABASE_URL.startswith("sqlite"):
            _engine = create_engine(
                settings.DATABASE_URL,
                connect_args={"check_same_thread": False},
                echo=echo,
            )
            enable_sqlite_savepoints(_engine)
        else:
            _engine = create_engine(
                settings.DATABASE_URL,
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,  # Verify connections before using
                echo=echo,
            )
        SessionLocal.configure(bind=_engine)

    return _engine


def new_session() -> Session:
    """Open a session bound to the application engine (scheduler jobs, scripts)."""
    get_engine()
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Usage in FastAPI:
    ```python
    @router.post("/join")
    def join(db: Session = Depends(get_db)):
        ...
    ```
    """
    db = new_session()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create any missing tables."""
    from casino_settlement.models import Base
    Base.metadata.create_all(bind=get_engine(), checkfirst=True)
