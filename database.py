import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import (
    ConsistencyError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)


logger = logging.getLogger(__name__)


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run the enclosed writes as one all-or-nothing unit on ``session``.

    Commits when the block exits normally. Any exception, including
    cancellation and ``KeyboardInterrupt``, rolls back every
    write made inside the block; storage failures surface as
    ``StoreUnavailableError``, everything else is re-raised unchanged.
    """
    try:
        yield session
        session.commit()
    except (ValidationError, NotFoundError):
        session.rollback()
        raise
    except IntegrityError as exc:
        session.rollback()
        logger.warning(f"unit_rolled_back: reason=integrity error={exc.orig}")
        raise ConsistencyError("Write conflicts with stored state") from exc
    except (OperationalError, DBAPIError) as exc:
        session.rollback()
        logger.warning(f"unit_rolled_back: reason=store_error error={exc}")
        raise StoreUnavailableError("Storage is unavailable") from exc
    except BaseException as exc:
        session.rollback()
        logger.warning(
            f"unit_rolled_back: reason={type(exc).__name__} error={exc}"
        )
        raise
