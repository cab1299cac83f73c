"""
Administrative operations for FileDesk.
Account listing, account details, account deletion and the server health probe.
"""
import logging

import psutil
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filedesk.errors import InputError, NotFound, StorageFault
from filedesk.repositories import FileRecordRepository, UserRepository
from filedesk.sessions import SessionManager
from filedesk.storage import StorageMutator
from filedesk.utils import format_file_size, get_storage_path

logger = logging.getLogger("filedesk.admin")

CANNOT_DELETE_SELF = "Cannot delete your own account"
USER_NOT_FOUND = "User not found"

CPU_SAMPLE_SECONDS = 0.1
BYTES_PER_GB = 1024 ** 3


def list_accounts(db: Session) -> list:
    return [{"username": username} for username in UserRepository(db).list_usernames()]


def get_account_details(db: Session, username: str) -> dict:
    user = UserRepository(db).find_by_username(username)
    if user is None:
        raise NotFound(USER_NOT_FOUND)
    return {
        "username": user.username,
        "email": user.email,
        "phoneNumber": user.phone_number,
    }


def delete_user_account(db: Session, acting_username: str, target_username: str,
                        storage: StorageMutator) -> None:
    """
    Delete an identity together with everything hanging off it.

    Sessions, file records and the user row go in one transaction; the
    physical files are removed afterwards and any leftovers are logged.
    """
    if acting_username == target_username:
        raise InputError(CANNOT_DELETE_SELF)

    users = UserRepository(db)
    target = users.find_by_username(target_username)
    if target is None:
        raise NotFound(USER_NOT_FOUND)
    # the row, not the submitted name, decides who would be deleted
    if target.username == acting_username:
        raise InputError(CANNOT_DELETE_SELF)
    target_username = target.username

    files = FileRecordRepository(db)
    records = files.list_by_owner(target_username)

    try:
        SessionManager(db).destroy_all(target_username, commit=False)
        files.delete_by_owner(target_username, commit=False)
        affected = users.delete(target_username, commit=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("user_delete_failed target=%s error=%s", target_username, exc)
        raise StorageFault(detail=str(exc)) from exc

    if affected == 0:
        raise NotFound(USER_NOT_FOUND)

    storage.remove_files(target_username, records)
    logger.info(
        "user_deleted target=%s by=%s files_removed=%d",
        target_username,
        acting_username,
        len(records),
    )


def get_server_status(db: Session) -> dict:
    """Database reachability plus CPU, memory and disk figures for the host."""
    status = {}

    try:
        db.execute(text("SELECT 1"))
        status["databaseStatus"] = "ONLINE"
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("health_database_offline error=%s", exc)
        status["databaseStatus"] = "OFFLINE"

    try:
        status["cpuUsage"] = f"{psutil.cpu_percent(interval=CPU_SAMPLE_SECONDS):.1f}%"
    except (OSError, psutil.Error) as exc:
        logger.warning("health_cpu_unavailable error=%s", exc)
        status["cpuUsage"] = "N/A"

    try:
        memory = psutil.virtual_memory()
        status["memoryUsage"] = (
            f"{memory.used / BYTES_PER_GB:.2f} GB / {memory.total / BYTES_PER_GB:.2f} GB "
            f"({memory.percent:.0f}% used)"
        )
    except (OSError, psutil.Error) as exc:
        logger.warning("health_memory_unavailable error=%s", exc)
        status["memoryUsage"] = "N/A"

    try:
        status["diskSpaceAvailable"] = format_file_size(psutil.disk_usage(get_storage_path()).free)
    except (OSError, psutil.Error) as exc:
        logger.warning("health_disk_unavailable path=%s error=%s", get_storage_path(), exc)
        status["diskSpaceAvailable"] = "N/A"

    return status
