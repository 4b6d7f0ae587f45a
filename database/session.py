import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from core.errors import ConflictError, TransientError, WorkbenchError
from models.base import Base

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, connect_args=connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@contextmanager
def translate_errors(db: Session, what: str) -> Iterator[None]:
    """
    Roll back and map storage failures onto the workbench taxonomy:
    unique/foreign-key violations mean someone else changed the rows (conflict),
    anything else from the driver is transient.
    """
    try:
        yield
    except WorkbenchError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        logger.warning("%s: integrity conflict: %s", what, exc.orig)
        raise ConflictError(f"{what}: the record was changed concurrently") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("%s: storage failure: %s", what, exc)
        raise TransientError(f"{what}: storage temporarily unavailable") from exc


def init_db(bind=None) -> None:
    # Create tables (MVP). For production, use Alembic migrations.
    import models.exercise  # noqa: F401
    import models.user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)

    if settings.seed_demo_data and bind is None:
        from services.seed_service import seed_demo_data

        with SessionLocal() as db:
            seed_demo_data(db)
