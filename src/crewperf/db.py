from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlmodel import SQLModel, create_engine, Session
from pathlib import Path
from typing import Optional
from crewperf.config import settings
from crewperf.logging import logger

DB_URL = settings.DATABASE_URL


def enable_sqlite_savepoints(engine):
    """
    pysqlite defers BEGIN until the first write, so a SAVEPOINT opened after
    plain SELECTs would start its own transaction. Emit BEGIN ourselves so
    per-job savepoints nest inside the operation's transaction.
    """
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


engine = create_engine(DB_URL, echo=False)
if DB_URL.startswith("sqlite"):
    enable_sqlite_savepoints(engine)


def database_dir(url: Optional[str] = None) -> Optional[Path]:
    """Directory holding the SQLite file, or None for in-memory and server databases."""
    parsed = make_url(url or DB_URL)
    if parsed.get_backend_name() != "sqlite" or parsed.database in (None, "", ":memory:"):
        return None
    return Path(parsed.database).parent


def init_db():
    data_dir = database_dir()
    if data_dir is not None:
        data_dir.mkdir(parents=True, exist_ok=True)

    # Import all models here so SQLModel knows about them
    from crewperf.models import jobs, reconciliation, shifts  # noqa: F401

    logger.info(f"Initializing database at {DB_URL}")
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
