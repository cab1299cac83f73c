"""Test configuration and fixtures for FileDesk."""

import pytest
from fastapi.testclient import TestClient

from filedesk import utils
from filedesk.auth import register_user
from filedesk.models import Role
from filedesk.storage import FilesystemStorageAdapter, StorageMutator

PASSWORD = "Str0ng!Pass"
ADMIN_USERNAME = "siteadmin"
ADMIN_PASSWORD = "Adm1n!Pass"


@pytest.fixture
def storage_dir(tmp_path, monkeypatch):
    path = tmp_path / "file_storage"
    monkeypatch.setenv("STORAGE_PATH", str(path))
    return path


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'filedesk.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.delenv("LOG_FILE", raising=False)
    return url


@pytest.fixture
def database(database_url, storage_dir):
    """Fresh SQLite database with all tables created."""
    engine = utils.init_database(database_url)
    yield engine
    engine.dispose()


@pytest.fixture
def db(database):
    session = utils.get_db_session()
    yield session
    session.close()


@pytest.fixture
def adapter(storage_dir):
    return FilesystemStorageAdapter(str(storage_dir))


@pytest.fixture
def storage(db, adapter):
    return StorageMutator(db, adapter)


@pytest.fixture
def make_user(db):
    """Factory creating accounts directly in the database."""
    def _make(username, role=Role.USER, password=PASSWORD):
        return register_user(db, username, password, f"{username}@example.com", "0123456789", role=role)
    return _make


@pytest.fixture
def client(database_url, storage_dir, monkeypatch):
    """API client; the startup hook creates the tables and the bootstrap admin."""
    monkeypatch.setenv("ADMIN_USERNAME", ADMIN_USERNAME)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    from filedesk.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sign_up(client):
    def _sign_up(username, password=PASSWORD):
        return client.post("/api/signup", json={
            "username": username,
            "password": password,
            "email": f"{username}@example.com",
            "phoneNumber": "+60 12-345 6789",
        })
    return _sign_up


@pytest.fixture
def log_in(client):
    def _log_in(username, password=PASSWORD, **extra):
        return client.post("/api/login", json={"username": username, "password": password, **extra})
    return _log_in


@pytest.fixture
def user_login(sign_up, log_in):
    """Sign up and log in a regular user; returns the login payload."""
    def _login(username="alice_01"):
        assert sign_up(username).status_code == 200
        response = log_in(username)
        assert response.status_code == 200
        return response.json()
    return _login


@pytest.fixture
def admin_login(log_in):
    response = log_in(ADMIN_USERNAME, ADMIN_PASSWORD)
    assert response.status_code == 200
    return response.json()
