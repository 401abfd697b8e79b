import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from resource_booker.config import SQLALCHEMY_DATABASE_URL, DB_TIMEOUT_SECONDS
from resource_booker.utils.exceptions import BookingError, InfrastructureError

logger = logging.getLogger(__name__)


def engine_options(url: str, timeout: int = DB_TIMEOUT_SECONDS) -> dict:
    """Keyword arguments for create_engine bounding connects, lock waits and statements."""
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        # busy timeout covers waiting on another writer's lock
        return {"connect_args": {"check_same_thread": False, "timeout": timeout}}

    connect_args = {"connect_timeout": timeout}
    if backend == "postgresql":
        timeout_ms = timeout * 1000
        connect_args["options"] = f"-c lock_timeout={timeout_ms} -c statement_timeout={timeout_ms}"
    elif backend in ("mysql", "mariadb"):
        connect_args["read_timeout"] = timeout
        connect_args["init_command"] = f"SET SESSION innodb_lock_wait_timeout={timeout}"
    return {
        "pool_pre_ping": True,
        "pool_timeout": timeout,
        "connect_args": connect_args,
    }


def build_engine(url: str):
    """Create an engine whose operations give up after DB_TIMEOUT_SECONDS."""
    return create_engine(url, **engine_options(url))


engine = build_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def init_database():
    if SQLALCHEMY_DATABASE_URL.startswith("sqlite:///./") and not os.path.exists("./data"):
        os.makedirs("./data")
    # Register every table on Base.metadata
    from resource_booker.models import booking, resource, user  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    """Provide a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, action: str):
    """Run the block as one transaction on ``db``.

    Business rejections roll back and propagate unchanged. Storage failures
    roll back, are logged with their traceback and resurface as
    InfrastructureError.
    """
    try:
        yield
        db.commit()
    except BookingError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(f"Storage failure while {action}")
        raise InfrastructureError(
            f"An unexpected error occurred while {action}."
        ) from exc
