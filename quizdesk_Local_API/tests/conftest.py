# conftest.py
# Description: Shared fixtures: a migrated local store per test, its queue, a fake remote and a wired sync engine.
#
# Imports
import pytest
#
# 3rd-party Libraries
from fastapi.testclient import TestClient
#
# Local Imports
from quizdesk_Local_API.app.api.v1.API_Deps.Sync_Deps import (
    get_local_store,
    get_operation_queue,
    get_session_service,
    get_sync_engine,
)
from quizdesk_Local_API.app.core.AuthNZ.Session_Service import SessionService
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import open_local_store
from quizdesk_Local_API.app.core.Sync.core import SyncEngine
from quizdesk_Local_API.app.core.Sync.operation_queue import OperationQueue
from quizdesk_Local_API.tests.test_utils import FakeRemoteClient
#
#######################################################################################################################
#
# Fixtures


@pytest.fixture
def client_id():
    return "test_desktop_client"


@pytest.fixture
def db_path(tmp_path):
    """File-backed store; connections are per thread, so :memory: would give each thread its own database."""
    return tmp_path / "local_store.db"


@pytest.fixture
def store(db_path, client_id):
    db = open_local_store(db_path, client_id)
    yield db
    db.close_all_connections()


@pytest.fixture
def queue(store):
    return OperationQueue(store)


@pytest.fixture
def fake_remote():
    return FakeRemoteClient()


@pytest.fixture
def session_service():
    return SessionService()


@pytest.fixture
def engine(store, queue, fake_remote, session_service):
    return SyncEngine(store, queue, fake_remote, session_service, batch_size=2)


@pytest.fixture
def api_client(store, queue, engine, session_service):
    """TestClient over the real app, with app state replaced by the per-test objects. Lifespan is not run."""
    from quizdesk_Local_API.app.main import app

    app.dependency_overrides[get_local_store] = lambda: store
    app.dependency_overrides[get_operation_queue] = lambda: queue
    app.dependency_overrides[get_sync_engine] = lambda: engine
    app.dependency_overrides[get_session_service] = lambda: session_service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()

#
# End of conftest.py
#######################################################################################################################
