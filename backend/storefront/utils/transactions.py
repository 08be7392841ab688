from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session


@contextmanager
def committed(session: Session) -> Iterator[Session]:
    """
    Run a unit of work and make it durable.

    Commits when the block exits cleanly and rolls the session back when it
    raises, so callers never leave a half-written order behind:

        with committed(db):
            db.add(order)
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
