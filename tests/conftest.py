import dataclasses
import os
import uuid
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.config import settings  # noqa: E402
from app.db import Base  # noqa: E402
from app.models.person import Person  # noqa: E402


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to work
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def person(db_session):
    p = Person(
        first_name="Test",
        last_name="Assessor",
        email=f"assessor-{uuid.uuid4().hex}@example.com",
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


@pytest.fixture(autouse=True)
def event_delay():
    with patch("app.tasks.events.process_event.delay") as mock_delay:
        yield mock_delay


@pytest.fixture(autouse=True)
def storage_settings(tmp_path, monkeypatch):
    local = dataclasses.replace(
        settings,
        local_storage_dir=str(tmp_path / "storage"),
        s3_endpoint_url="",
        s3_access_key="",
        s3_secret_key="",
    )
    for module in (
        "app.services.storage",
        "app.services.collaborators",
        "app.services.defence_pack",
    ):
        monkeypatch.setattr(f"{module}.settings", local)
    return local


@pytest.fixture()
def client(db_session):
    from app.api.deps import get_db
    from app.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
