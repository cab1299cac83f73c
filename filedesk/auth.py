"""
Authentication module for FileDesk.
Handles account field validation, bcrypt password hashing and credential verification.
"""
import logging
import re
from typing import Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from filedesk.errors import AuthenticationFailure, InputError, IntegrityFault
from filedesk.models import Role, User
from filedesk.repositories import UserRepository

logger = logging.getLogger("filedesk.auth")

BCRYPT_ROUNDS = 10
BCRYPT_MAX_BYTES = 72
INVALID_CREDENTIALS = "Invalid username or password"

USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9_]+$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

_dummy_hash: Optional[bytes] = None


def validate_username(username: str) -> Optional[str]:
    """
    Validate username requirements.

    Requirements:
    - 5 to 20 characters
    - Only letters, numbers and underscores

    Returns an error message, or None when the username is acceptable.
    """
    if not username:
        return "Username cannot be empty"
    if len(username) < 5:
        return "Username must be at least 5 characters"
    if len(username) > 20:
        return "Username must be less than 20 characters"
    if not USERNAME_PATTERN.match(username):
        return "Username can only contain letters, numbers, and underscores"
    return None


def validate_password_strength(password: str) -> Optional[str]:
    if not password:
        return "Password cannot be empty"

    if len(password) < 8:
        return "Password must be at least 8 characters long"

    if len(password) > 64 or len(password.encode('utf-8')) > BCRYPT_MAX_BYTES:
        return "Password must be less than 64 characters"

    if not re.search(r'[A-Z]', password):
        return "Password must contain at least one uppercase letter"

    if not re.search(r'[a-z]', password):
        return "Password must contain at least one lowercase letter"

    if not re.search(r'[0-9]', password):
        return "Password must contain at least one number"

    if not re.search(r'[^A-Za-z0-9]', password):
        return "Password must contain at least one special character"

    if re.search(r'\s', password):
        return "Password cannot contain whitespace"

    return None


def validate_email(email: str) -> Optional[str]:
    email = (email or "").strip()
    if not email:
        return "Email cannot be empty"
    if len(email) > 255:
        return "Email is too long"
    if not EMAIL_PATTERN.match(email):
        return "Invalid email format"
    return None


def validate_phone_number(phone_number: str) -> Optional[str]:
    phone_number = (phone_number or "").strip()
    if not phone_number:
        return "Phone number cannot be empty"
    digits = re.sub(r'[^0-9]', '', phone_number)
    if len(digits) < 10:
        return "Phone number must be at least 10 digits"
    if len(digits) > 15:
        return "Phone number must be less than 15 digits"
    if len(phone_number) > 20:
        return "Phone number is too long"
    return None


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    password_hash = bcrypt.hashpw(password.encode('utf-8'), salt)
    return password_hash.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash."""
    candidate = password.encode('utf-8')
    if len(candidate) > BCRYPT_MAX_BYTES:
        # still pay for one comparison so the failure costs the same
        bcrypt.checkpw(b"x", password_hash.encode('utf-8'))
        return False
    return bcrypt.checkpw(candidate, password_hash.encode('utf-8'))


def _get_dummy_hash() -> str:
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = bcrypt.hashpw(b"filedesk-timing-equalizer", bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return _dummy_hash.decode('utf-8')


class CredentialVerifier:
    """Checks a submitted username/password pair against stored credentials."""

    def __init__(self, db: Session):
        self.users = UserRepository(db)

    def verify(self, username: str, password: str) -> User:
        """
        Return the matching user, or raise AuthenticationFailure.
        Unknown usernames and wrong passwords fail identically.
        """
        matches = self.users.find_all_by_username(username)
        if len(matches) > 1:
            raise IntegrityFault(detail=f"duplicate credential records for username={username!r}")

        user = matches[0] if matches else None
        stored_hash = user.password_hash if user else _get_dummy_hash()

        try:
            password_ok = verify_password(password, stored_hash)
        except ValueError as exc:
            raise IntegrityFault(detail=f"unreadable password hash for username={username!r}") from exc

        if user is None or not password_ok:
            logger.info("login_failed username=%s", username)
            raise AuthenticationFailure(INVALID_CREDENTIALS)

        return user


def register_user(db: Session, username: str, password: str, email: str,
                  phone_number: str, role: Role = Role.USER) -> User:
    """Create a user with a bcrypt password hash. Fields must already be validated."""
    users = UserRepository(db)
    if users.find_by_username(username):
        raise InputError("Username already exists")

    new_user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
        email=email.strip(),
        phone_number=phone_number.strip(),
    )
    try:
        users.insert(new_user)
    except IntegrityError:
        # lost a race against a concurrent sign-up
        db.rollback()
        raise InputError("Username already exists")

    logger.info("user_registered username=%s role=%s", username, role.value)
    return new_user


def ensure_admin(db: Session, username: str, password: str, email: str, phone_number: str) -> Optional[User]:
    """Create the bootstrap admin account if it does not exist yet."""
    users = UserRepository(db)
    existing = users.find_by_username(username)
    if existing:
        if existing.role != Role.ADMIN:
            logger.warning("admin_bootstrap_skipped username=%s reason=existing_non_admin", username)
        return existing

    for message in (validate_username(username), validate_password_strength(password)):
        if message:
            logger.warning("admin_bootstrap_skipped username=%s reason=%r", username, message)
            return None

    return register_user(db, username, password, email, phone_number, role=Role.ADMIN)
