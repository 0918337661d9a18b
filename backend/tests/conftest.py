from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Generator

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="nomadsuite-tests-"))
os.environ.setdefault("NS_SQLITE_PATH", str(_TEST_DATA_DIR / "app.db"))
os.environ.setdefault("NS_EXPORT_DIR", str(_TEST_DATA_DIR / "exports"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from nomadsuite.config import settings
from nomadsuite.database import get_db, init_db, sqlite_engine
from nomadsuite.main import app
from nomadsuite.state import RuntimeState


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    engine = sqlite_engine(temp_db_path)
    init_db(engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    previous_state = app.state.runtime_state
    app.state.runtime_state = RuntimeState(settings)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.runtime_state = previous_state


@pytest.fixture()
def as_of() -> dt.date:
    return dt.date(2024, 3, 20)
