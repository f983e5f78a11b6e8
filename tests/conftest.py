import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from dagflow.api.routes import get_supervisor  # noqa: E402
from dagflow.db.database import get_db, init_db, make_engine  # noqa: E402
from dagflow.engine.supervisor import ExecutionSupervisor  # noqa: E402
from dagflow.main import app  # noqa: E402

from helpers import FAST_RETRIES, RecordingRunner  # noqa: E402


@pytest.fixture()
def session_factory(tmp_path):
    """A sessionmaker bound to a fresh temporary database per test."""
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def runner():
    return RecordingRunner()


@pytest.fixture()
def client(session_factory, runner):
    """TestClient wired to the temporary database and a recording runner."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    supervisor = ExecutionSupervisor(
        session_factory=session_factory,
        runner=runner,
        policy=FAST_RETRIES,
        poll_interval=0.01,
    )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_supervisor] = lambda: supervisor
    with TestClient(app) as c:
        yield c
        c.portal.call(supervisor.shutdown)
    app.dependency_overrides.clear()
