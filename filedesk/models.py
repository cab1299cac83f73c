"""
Database models for FileDesk.
Defines the User, UserSession and FileRecord tables.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Enum, TIMESTAMP, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.dialects import mysql
from datetime import datetime, timezone
import enum

Base = declarative_base()

MYSQL_BINARY_COLLATION = "utf8mb4_bin"


def case_sensitive_string(length: int):
    """VARCHAR compared byte for byte; MySQL's default collations fold case."""
    return String(length).with_variant(mysql.VARCHAR(length, collation=MYSQL_BINARY_COLLATION), "mysql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how TIMESTAMP columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(enum.Enum):
    """Closed set of roles known to the access guard."""
    ADMIN = "admin"
    USER = "user"


class User(Base):
    """User table with credentials, contact details and role."""
    __tablename__ = 'users'

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(case_sensitive_string(20), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(Role), nullable=False, default=Role.USER)
    email = Column(String(255), nullable=False)
    phone_number = Column(String(20), nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    files = relationship("FileRecord", back_populates="owner")


class UserSession(Base):
    """Server-side session keyed by an opaque identifier."""
    __tablename__ = 'sessions'

    session_id = Column(String(64), primary_key=True)
    username = Column(case_sensitive_string(20), nullable=False, index=True)
    role = Column(Enum(Role), nullable=False)
    csrf_token = Column(String(64), unique=True, nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    expires_at = Column(TIMESTAMP, nullable=False)

    def is_expired(self, now=None) -> bool:
        return (now or utcnow()) >= self.expires_at


class FileRecord(Base):
    """Metadata for one stored file; the bytes live under the storage root."""
    __tablename__ = 'file_records'
    __table_args__ = (
        UniqueConstraint('owner_username', 'filename', name='uq_file_records_owner_filename'),
    )

    file_id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(case_sensitive_string(255), nullable=False)
    owner_username = Column(case_sensitive_string(20), ForeignKey('users.username'), nullable=False, index=True)
    physical_path = Column(String(512), nullable=False)
    size = Column(Integer, nullable=False)
    upload_time = Column(TIMESTAMP, nullable=False, default=utcnow)

    owner = relationship("User", back_populates="files")
