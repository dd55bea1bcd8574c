import os
import uuid

# Settings are read at import time; keep tests off Postgres and off disk.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("STORAGE_BACKEND", "memory")

import pytest  # noqa: E402
from dotenv import load_dotenv  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.engine.url import make_url  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: F401,E402
from app.db import Base  # noqa: E402
from app.models.person import Person  # noqa: E402
from app.models.projects import Project, ProjectTask, ProjectTaskAssignee  # noqa: E402

load_dotenv(os.path.join(os.getcwd(), ".env"))


def _resolve_test_database_url() -> str | None:
    raw_url = os.getenv("TEST_DATABASE_URL")
    if not raw_url:
        return None
    url = make_url(raw_url)
    if url.drivername.startswith("postgresql") and url.database != "sitecrew_test":
        url = url.set(database="sitecrew_test")
    return url.render_as_string(hide_password=False)


@pytest.fixture(scope="session")
def engine():
    database_url = _resolve_test_database_url()
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


def _make_person(db_session, name: str) -> Person:
    person = Person(name=name, email=_unique_email())
    db_session.add(person)
    db_session.commit()
    db_session.refresh(person)
    return person


@pytest.fixture()
def person(db_session):
    return _make_person(db_session, "Test User")


@pytest.fixture()
def other_person(db_session):
    return _make_person(db_session, "Jane Smith")


@pytest.fixture()
def project(db_session, person):
    project = Project(name="Tower B fit-out", code="TB-01", created_by_person_id=person.id)
    db_session.add(project)
    db_session.commit()
    db_session.refresh(project)
    return project


@pytest.fixture()
def task(db_session, project, person, other_person):
    """Task created by ``person`` with ``other_person`` assigned."""
    task = ProjectTask(
        project_id=project.id,
        name="Pour level 3 slab",
        created_by_person_id=person.id,
    )
    db_session.add(task)
    db_session.flush()
    db_session.add(ProjectTaskAssignee(task_id=task.id, person_id=other_person.id))
    db_session.commit()
    db_session.refresh(task)
    return task


@pytest.fixture()
def memory_storage():
    from app.services.storage import MemoryBackend, storage

    backend = MemoryBackend()
    previous = storage.use(backend)
    try:
        yield backend
    finally:
        storage.use(previous)


@pytest.fixture()
def client(db_session):
    """API client bound to the test session; pass ``X-User-Id`` to act as someone."""
    from app.api.deps import get_db
    from app.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
