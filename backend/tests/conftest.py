from __future__ import annotations

import datetime as dt
import tempfile
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from crewtrack import models
from crewtrack.aggregator import SubtaskAggregator
from crewtrack.database import get_db
from crewtrack.main import app

UTC = dt.timezone.utc


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
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
        yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.aggregator = SubtaskAggregator()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def now() -> dt.datetime:
    return dt.datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture()
def make_task() -> Callable[..., models.Task]:
    """Build an unsaved task; derived-state functions work on in-memory objects."""

    def _make(title: str = "Task", parent: Optional[models.Task] = None, **fields) -> models.Task:
        return models.Task(title=title, parent_task=parent, **fields)

    return _make


@pytest.fixture()
def add_entry() -> Callable[..., models.TimeEntry]:
    def _add(
        task: models.Task,
        start: dt.datetime,
        end: Optional[dt.datetime] = None,
        personnel: int = 1,
    ) -> models.TimeEntry:
        return models.TimeEntry(task=task, start_time=start, end_time=end, personnel_count=personnel)

    return _add


@pytest.fixture()
def make_project() -> Callable[..., models.Project]:
    def _make(title: str = "Project", **fields) -> models.Project:
        return models.Project(title=title, **fields)

    return _make
