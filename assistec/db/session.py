import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from assistec.core.config import settings
from assistec.core.errors import Conflict, DomainError

logger = logging.getLogger("assistec.db")

_connect_args = (
    {"check_same_thread": False} if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}
)
engine = create_engine(settings.SQLALCHEMY_DATABASE_URI, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit on success, roll back on any failure.

    A DomainError carrying an ``audit`` entry gets that entry persisted in its
    own commit after the rollback, so denied attempts stay on record.
    """
    try:
        yield db
        db.commit()
    except DomainError as exc:
        db.rollback()
        if exc.audit is not None:
            db.add(exc.audit)
            db.commit()
        raise
    except StaleDataError as exc:
        db.rollback()
        logger.warning("optimistic lock lost: %s", exc)
        raise Conflict("A OS foi alterada por outra operacao. Recarregue e tente novamente.") from exc
    except Exception:
        db.rollback()
        raise
