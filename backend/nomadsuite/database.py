from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .models import Base


def sqlite_engine(path: Path) -> Engine:
    """Engine for the trip log file; sessions are shared across request threads."""
    return create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False}, future=True)


engine = sqlite_engine(settings.sqlite_path)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(bind: Engine = engine) -> None:
    """Create the trips, exports and app_settings tables when missing."""
    Base.metadata.create_all(bind=bind)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
