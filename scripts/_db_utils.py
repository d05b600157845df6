from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from sqlalchemy.orm import Session

from app.companyos.db import build_engine, make_sessionmaker


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """One-shot session for release/seed scripts; disposes its engine on exit."""
    engine = build_engine(db_url, pooled=False)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
