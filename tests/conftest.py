"""Shared fixtures: temp-file SQLite database, frozen clock, inline executor,
and an API client wired to both."""

from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from behavioral_engine.api import BehavioralEngineService
from behavioral_engine.api.auth import create_access_token
from behavioral_engine.api.gateway import ServiceManager, app
from behavioral_engine.common.config import reset_config
from behavioral_engine.data.db import Database, reset_database
from behavioral_engine.data.models import FamilyLink, Profile
from behavioral_engine.governance.policies import PolicyResolver, load_pipeline_defaults

DEFAULTS_FILE = Path(__file__).resolve().parent.parent / "config" / "pipeline_defaults.yaml"

# Tuesday afternoon, outside any bedtime window
DAYTIME = datetime(2026, 3, 10, 14, 0, 0)


class FrozenClock:
    """Injected clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InlineExecutor(Executor):
    """Runs submitted work immediately in the caller's thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Fresh configuration singletons, pointed at the temp directory."""
    monkeypatch.setenv("BEHAVIOR_ENVIRONMENT", "development")
    monkeypatch.setenv("BEHAVIOR_DATABASE_URL", f"sqlite:///{tmp_path / 'config.db'}")
    monkeypatch.setenv("BEHAVIOR_EXECUTION_LOG_DIR", str(tmp_path / "execution"))
    monkeypatch.delenv("BEHAVIOR_METRICS_ENABLED", raising=False)
    monkeypatch.delenv("BEHAVIOR_POLICY_FILE", raising=False)
    reset_config()
    reset_database()
    yield
    reset_config()
    reset_database()


@pytest.fixture
def clock():
    return FrozenClock(DAYTIME)


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'engine.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def defaults():
    return load_pipeline_defaults(DEFAULTS_FILE)


@pytest.fixture
def policy_resolver(database, defaults, clock):
    resolver = PolicyResolver(defaults, clock=clock)
    with database.session_scope() as db:
        resolver.seed_defaults(db)
    return resolver


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def link_guardian(database, clock):
    """Create an active guardian link (and a profile for the user)."""

    def _link(guardian_id: str, user_id: str, display_name: str = None):
        with database.session_scope() as db:
            if db.get(Profile, user_id) is None:
                db.add(Profile(user_id=user_id, display_name=display_name, created_at=clock()))
            db.add(FamilyLink(guardian_id=guardian_id, user_id=user_id, created_at=clock()))

    return _link


@pytest.fixture
def service(database, clock, inline_executor, monkeypatch):
    """Fully wired service; orchestration runs inline with the request."""
    monkeypatch.setenv("BEHAVIOR_REALTIME_POLL_SECONDS", "0.05")
    reset_config()
    engine = BehavioralEngineService.from_config(
        database=database, clock=clock, executor=inline_executor
    )
    ServiceManager.initialize(engine)
    yield engine
    ServiceManager.shutdown()


@pytest.fixture
def api_client(service):
    return TestClient(app)


@pytest.fixture
def auth():
    """Bearer headers for a user id."""

    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
