from contextlib import contextmanager, nullcontext
from threading import Lock
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from mas_hedging.core.config import get_settings

Base = declarative_base()

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
)


def build_engine(sqlite_path=None, echo: bool = False) -> Engine:
    settings = get_settings()
    db_engine = create_engine(
        f"sqlite:///{sqlite_path or settings.sqlite_path}",
        future=True,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(db_engine, "connect")
    def _apply_pragmas(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(pragma)
        cursor.close()

    return db_engine


engine = build_engine()
# one writer at a time: feed refreshes, position closes and alert firing
write_lock = Lock()
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
)


@contextmanager
def session_scope(*, use_lock: bool = False) -> Generator[Session, None, None]:
    """Commit on success, roll back on any exception.

    ``use_lock`` takes the process-wide ``write_lock`` for the whole unit, so
    a tick refresh or a position close is seen by other requests as a whole.
    The lock is not re-entrant; never open a locked scope inside another.
    """
    guard = write_lock if use_lock else nullcontext()
    with guard:
        session = SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def init_db() -> None:
    import mas_hedging.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
