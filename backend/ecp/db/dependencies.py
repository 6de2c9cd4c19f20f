"""FastAPI database dependencies."""

from collections.abc import Callable, Iterator

from sqlalchemy.orm import Session

from ecp.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    """Yield a request-scoped session."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request handler, such as streamed bodies."""

    return SessionLocal
