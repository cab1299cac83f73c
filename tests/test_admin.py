"""Tests for administrative account operations."""

import psutil
import pytest

from filedesk.admin import (
    CANNOT_DELETE_SELF, delete_user_account, get_account_details, get_server_status, list_accounts
)
from filedesk.errors import InputError, NotFound
from filedesk.models import Role
from filedesk.repositories import FileRecordRepository, UserRepository
from filedesk.sessions import SessionManager

CONTENT = b"meeting notes for the week\n" * 60


def test_list_accounts_returns_usernames_only(db, make_user):
    make_user("siteadmin", role=Role.ADMIN)
    make_user("alice_01")

    assert list_accounts(db) == [{"username": "alice_01"}, {"username": "siteadmin"}]


def test_account_details(db, make_user):
    make_user("alice_01")

    assert get_account_details(db, "alice_01") == {
        "username": "alice_01",
        "email": "alice_01@example.com",
        "phoneNumber": "0123456789",
    }
    with pytest.raises(NotFound, match="User not found"):
        get_account_details(db, "nobody_here")


def test_admin_cannot_delete_own_account(db, make_user, storage):
    make_user("siteadmin", role=Role.ADMIN)
    admin_session = SessionManager(db).create(UserRepository(db).find_by_username("siteadmin"))

    with pytest.raises(InputError) as excinfo:
        delete_user_account(db, "siteadmin", "siteadmin", storage)

    assert excinfo.value.public_message == CANNOT_DELETE_SELF
    assert UserRepository(db).find_by_username("siteadmin") is not None
    assert SessionManager(db).validate(admin_session.session_id) is not None


def test_delete_unknown_account(db, make_user, storage):
    make_user("siteadmin", role=Role.ADMIN)

    with pytest.raises(NotFound):
        delete_user_account(db, "siteadmin", "nobody_here", storage)


def test_delete_cascades_to_sessions_and_files(db, make_user, storage, storage_dir):
    make_user("siteadmin", role=Role.ADMIN)
    alice = make_user("alice_01")
    make_user("bob_0001")
    manager = SessionManager(db)
    alice_session = manager.create(alice).session_id
    storage.store("alice_01", "notes.txt", CONTENT)
    storage.store("alice_01", "notes.txt", CONTENT)
    storage.store("bob_0001", "notes.txt", CONTENT)

    delete_user_account(db, "siteadmin", "alice_01", storage)

    assert UserRepository(db).find_by_username("alice_01") is None
    assert manager.validate(alice_session) is None
    assert FileRecordRepository(db).list_by_owner("alice_01") == []
    assert not (storage_dir / "alice_01").exists()
    assert storage.read("bob_0001", "notes.txt") == CONTENT


def test_case_variant_of_own_name_is_still_self(db, make_user, storage, monkeypatch):
    make_user("siteadmin", role=Role.ADMIN)
    real_lookup = UserRepository.find_by_username

    # a case-insensitive collation resolves the variant to the admin's own row
    def folding_lookup(self, username):
        return real_lookup(self, username.lower())

    monkeypatch.setattr(UserRepository, "find_by_username", folding_lookup)

    with pytest.raises(InputError) as excinfo:
        delete_user_account(db, "siteadmin", "SITEADMIN", storage)

    assert excinfo.value.public_message == CANNOT_DELETE_SELF
    assert UserRepository(db).list_usernames() == ["siteadmin"]


def test_server_status_reports_database_and_host(db, adapter):
    status = get_server_status(db)

    assert set(status) == {"databaseStatus", "cpuUsage", "memoryUsage", "diskSpaceAvailable"}
    assert status["databaseStatus"] == "ONLINE"
    assert status["cpuUsage"].endswith("%")
    assert "GB /" in status["memoryUsage"]
    assert status["memoryUsage"].endswith("% used)")
    assert status["diskSpaceAvailable"] != "N/A"


def test_server_status_survives_missing_host_figures(db, monkeypatch):
    def unavailable(*args, **kwargs):
        raise psutil.AccessDenied()

    monkeypatch.setattr(psutil, "cpu_percent", unavailable)
    monkeypatch.setattr(psutil, "virtual_memory", unavailable)
    monkeypatch.setattr(psutil, "disk_usage", unavailable)

    status = get_server_status(db)

    assert status["databaseStatus"] == "ONLINE"
    assert status["cpuUsage"] == status["memoryUsage"] == status["diskSpaceAvailable"] == "N/A"
