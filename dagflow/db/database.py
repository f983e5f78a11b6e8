from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from dagflow import config
from dagflow.core.errors import InfrastructureError


class Base(DeclarativeBase):
    pass


def make_engine(url: str, echo: bool = False):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, echo=echo)


engine = make_engine(config.DATABASE_URL, echo=config.VERBOSE)

SessionLocal = sessionmaker(bind=engine)


def init_db(bind=None):
    from dagflow.db import tables  # noqa: F401 - registers table models
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=SessionLocal):
    """One transaction: commit on success, roll back on any error.

    Database failures surface as InfrastructureError.
    """
    db: Session = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise InfrastructureError(f"Database error: {e}") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
