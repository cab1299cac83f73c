"""
Persistence layer for FileDesk.
Thin query wrappers over the users, sessions and file_records tables.
"""
from typing import List, Optional
from sqlalchemy.orm import Session
from filedesk.models import FileRecord, User, UserSession


class UserRepository:
    """Identity and credential store."""

    def __init__(self, db: Session):
        self.db = db

    def find_all_by_username(self, username: str) -> List[User]:
        return self.db.query(User).filter(User.username == username).all()

    def find_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def list_usernames(self) -> List[str]:
        return [username for (username,) in self.db.query(User.username).order_by(User.username).all()]

    def insert(self, user: User) -> User:
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def delete(self, username: str, commit: bool = True) -> int:
        affected = self.db.query(User).filter(User.username == username).delete(synchronize_session=False)
        if commit:
            self.db.commit()
        return affected


class SessionRepository:
    """Durable session store keyed by session id."""

    def __init__(self, db: Session):
        self.db = db

    def insert(self, user_session: UserSession) -> UserSession:
        self.db.add(user_session)
        self.db.commit()
        self.db.refresh(user_session)
        return user_session

    def get(self, session_id: str) -> Optional[UserSession]:
        return self.db.query(UserSession).filter(UserSession.session_id == session_id).first()

    def delete(self, session_id: str) -> int:
        affected = self.db.query(UserSession).filter(
            UserSession.session_id == session_id
        ).delete(synchronize_session=False)
        self.db.commit()
        return affected

    def delete_by_username(self, username: str, commit: bool = True) -> int:
        affected = self.db.query(UserSession).filter(
            UserSession.username == username
        ).delete(synchronize_session=False)
        if commit:
            self.db.commit()
        return affected


class FileRecordRepository:
    """File metadata store; every query is scoped by owner."""

    def __init__(self, db: Session):
        self.db = db

    def insert(self, record: FileRecord) -> FileRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def find_by_owner_and_name(self, owner: str, filename: str) -> Optional[FileRecord]:
        return self.db.query(FileRecord).filter(
            FileRecord.owner_username == owner,
            FileRecord.filename == filename,
        ).first()

    def list_by_owner(self, owner: str) -> List[FileRecord]:
        return self.db.query(FileRecord).filter(
            FileRecord.owner_username == owner
        ).order_by(FileRecord.upload_time, FileRecord.file_id).all()

    def delete(self, owner: str, filename: str) -> int:
        affected = self.db.query(FileRecord).filter(
            FileRecord.owner_username == owner,
            FileRecord.filename == filename,
        ).delete(synchronize_session=False)
        self.db.commit()
        return affected

    def delete_by_owner(self, owner: str, commit: bool = True) -> int:
        affected = self.db.query(FileRecord).filter(
            FileRecord.owner_username == owner
        ).delete(synchronize_session=False)
        if commit:
            self.db.commit()
        return affected
