import logging
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from .config import settings
from .exceptions import DatabaseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, pool_pre_ping=True, future=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)
Base = declarative_base()

# SQLSTATE serialization_failure and deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_conflict(exc: DBAPIError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if pgcode in _RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(exc.orig)


def run_in_transaction(db: Session, fn: Callable[[Session], T], max_attempts: int = 5) -> T:
    """
    Run ``fn`` as one atomic unit: every write it makes commits together or not at all.

    Conflicting concurrent writers (serialization failures, deadlocks) roll the
    unit back and run it again from the top; any other exception rolls back and
    propagates.
    """
    # Close the implicit transaction left open by earlier reads on this session.
    if db.in_transaction():
        db.commit()

    attempt = 0
    while True:
        attempt += 1
        try:
            with db.begin():
                return fn(db)
        except DBAPIError as e:
            if not _is_conflict(e):
                raise
            if attempt >= max_attempts:
                raise DatabaseError("transaction", f"still conflicting after {attempt} attempts: {e.orig}") from e
            logger.info(f"Transaction conflict, retrying (attempt {attempt}/{max_attempts}): {e.orig}")


# Redis helper
_redis_client = None
def get_redis():
    """Return a Redis client from settings.redis_url."""
    global _redis_client
    if _redis_client is None:
        try:
            import redis  # type: ignore
            _redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        except Exception as e:
            raise RuntimeError(f"Redis initialization failed: {e}")
    return _redis_client
