from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class Database:
    """Owns the engine and session factory for one storage backend.

    Built once at startup and disposed at shutdown; request handlers get
    their sessions through ``get_db``.
    """

    def __init__(self, url: str):
        if not url:
            raise ValueError("❌ DATABASE_URL is missing! Check your .env file.")

        self.url = url
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            # In-memory databases only live as long as their connection
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(url, **kwargs)
            _enable_sqlite_savepoints(self.engine)
        else:
            self.engine = create_engine(
                url,
                pool_size=20,
                max_overflow=30,
                pool_recycle=3600,      # Recycle connections after 1 hour
                pool_pre_ping=True      # Verify connections before use
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine
        )

    def create_all(self):
        # Register the mapped classes before touching the metadata
        import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self):
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def dispose(self):
        self.engine.dispose()


def _enable_sqlite_savepoints(engine):
    # pysqlite defers BEGIN to the first DML statement, which breaks
    # SAVEPOINT; let SQLAlchemy emit BEGIN itself instead
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_db(request: Request):
    db = request.app.state.database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
