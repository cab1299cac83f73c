"""
Main FastAPI application for FileDesk.
Provides the JSON endpoints for accounts, sessions, file management and administration.
"""
import logging
import os
from io import BytesIO
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from filedesk.access import require
from filedesk.admin import delete_user_account, get_account_details, get_server_status, list_accounts
from filedesk.auth import (
    CredentialVerifier, ensure_admin, register_user, validate_email,
    validate_password_strength, validate_phone_number, validate_username
)
from filedesk.errors import GENERIC_SERVER_ERROR, FileDeskError, InputError
from filedesk.models import Role, UserSession
from filedesk.sessions import SessionManager
from filedesk.storage import StorageMutator
from filedesk.uploads import UploadPayload, UploadStatus, UploadValidator, sniff_content_type
from filedesk.utils import configure_logging, get_admin_bootstrap, get_db, get_db_session, init_database

logger = logging.getLogger("filedesk.api")

app = FastAPI(title="FileDesk API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

UPLOAD_FIELDS = {"sessionId", "csrfToken", "newFileName"}


@app.on_event("startup")
async def startup_event():
    """Initialize logging, the database and the bootstrap admin on application startup."""
    configure_logging()
    init_database()
    bootstrap = get_admin_bootstrap()
    if bootstrap:
        db = get_db_session()
        try:
            ensure_admin(db, **bootstrap)
        finally:
            db.close()


NonEmptyStr = Annotated[str, Field(min_length=1)]


class StrictRequest(BaseModel):
    """Request bodies accept exactly their declared fields."""
    model_config = ConfigDict(extra="forbid")


class SignUpRequest(StrictRequest):
    username: str
    password: str
    email: str
    phoneNumber: str


class LoginRequest(StrictRequest):
    username: str
    password: str
    sessionId: Optional[str] = None


class SessionRequest(StrictRequest):
    sessionId: NonEmptyStr


class LogoutRequest(StrictRequest):
    sessionId: NonEmptyStr
    csrfToken: NonEmptyStr


class FileRequest(StrictRequest):
    sessionId: NonEmptyStr
    filename: NonEmptyStr


class FileDeleteRequest(StrictRequest):
    sessionId: NonEmptyStr
    csrfToken: NonEmptyStr
    filename: NonEmptyStr


class AccountRequest(StrictRequest):
    sessionId: NonEmptyStr
    accountUsername: NonEmptyStr


class DeleteUserRequest(StrictRequest):
    sessionId: NonEmptyStr
    csrfToken: NonEmptyStr
    accountUsername: NonEmptyStr


def ok(**payload) -> dict:
    return {"success": True, "errorMessage": None, **payload}


def failure(status_code: int, message: Optional[str], **payload) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "errorMessage": message, **payload},
    )


def describe_validation_errors(errors) -> str:
    """Turn the first pydantic error into a message safe to show the caller."""
    first = errors[0] if errors else {}
    kind = first.get("type", "")
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")

    if kind == "json_invalid":
        return "Invalid JSON input"
    if not field:
        return "Input must be a JSON object"
    if kind == "missing":
        return f"Missing required field: {field}"
    if kind == "extra_forbidden":
        return f"Unexpected field: {field}"
    if kind == "string_too_short":
        return f"Field cannot be empty: {field}"
    return f"Invalid value for field: {field}"


@app.exception_handler(FileDeskError)
async def filedesk_error_handler(request: Request, exc: FileDeskError):
    if exc.status_code >= 500:
        logger.error(
            "request_failed path=%s error=%s detail=%s",
            request.url.path,
            type(exc).__name__,
            exc.detail or exc.message,
        )
    return failure(exc.status_code, exc.public_message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if exc.status_code < 500 and isinstance(exc.detail, str) else GENERIC_SERVER_ERROR
    return failure(exc.status_code, message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return failure(400, describe_validation_errors(exc.errors()))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("request_crashed path=%s error=%s", request.url.path, type(exc).__name__)
    return failure(500, GENERIC_SERVER_ERROR)


def get_storage(db: Session = Depends(get_db)) -> StorageMutator:
    return StorageMutator(db)


def authorize_request(db: Session, session_id: Optional[str], role: Optional[Role],
                      csrf_token: Optional[str] = None, mutating: bool = False) -> UserSession:
    """Validate the session and run it through the access guard."""
    return require(SessionManager(db).validate(session_id), role, csrf_token=csrf_token, mutating=mutating)


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@app.post("/api/signup")
async def signup(request: SignUpRequest, db: Session = Depends(get_db)):
    """Register a new account. All new accounts get the user role."""
    validation = {
        "username": validate_username(request.username),
        "password": validate_password_strength(request.password),
        "email": validate_email(request.email),
        "phoneNumber": validate_phone_number(request.phoneNumber),
    }
    if any(validation.values()):
        return failure(400, None, validationError=validation)

    register_user(db, request.username, request.password, request.email, request.phoneNumber)
    return ok(validationError=None)


@app.post("/api/login")
async def login(request: LoginRequest, req: Request, db: Session = Depends(get_db)):
    """Verify credentials and open a new session, replacing one the client still holds."""
    validation = {
        "username": None if request.username else "Username is required",
        "password": None if request.password else "Password is required",
    }
    if any(validation.values()):
        return failure(400, None, sessionId=None, role=None, validationError=validation)

    user = CredentialVerifier(db).verify(request.username, request.password)
    user_session = SessionManager(db).create(user, previous_session_id=request.sessionId)
    logger.info("login_succeeded username=%s ip=%s", user.username, get_client_ip(req))

    return ok(
        sessionId=user_session.session_id,
        csrfToken=user_session.csrf_token,
        role=user_session.role.value,
        validationError=None,
    )


@app.post("/api/logout")
async def logout(request: LogoutRequest, db: Session = Depends(get_db)):
    user_session = authorize_request(db, request.sessionId, None, csrf_token=request.csrfToken, mutating=True)
    SessionManager(db).destroy(user_session.session_id)
    logger.info("logout username=%s", user_session.username)
    return ok()


async def read_upload(part, max_size: int) -> Optional[UploadPayload]:
    """Read the file part of a multipart form, at most one byte past max_size."""
    if not isinstance(part, UploadFile):
        return None
    if not part.filename:
        return UploadPayload(data=None, status=UploadStatus.NO_FILE)

    try:
        data = await part.read(max_size + 1)
    except OSError as exc:
        logger.warning("upload_read_failed filename=%s error=%s", part.filename, exc)
        return UploadPayload(data=b"", status=UploadStatus.PARTIAL, client_filename=part.filename)
    finally:
        await part.close()

    return UploadPayload(data=data, client_filename=part.filename, declared_type=part.content_type)


@app.post("/api/files/upload")
async def upload_file(req: Request, db: Session = Depends(get_db),
                      storage: StorageMutator = Depends(get_storage)):
    """
    Upload a file for the current user.
    Multipart form with sessionId, csrfToken, newFileName and file.
    """
    form = await req.form()
    fields = set(form.keys())
    missing = sorted(UPLOAD_FIELDS - fields)
    if missing:
        raise InputError(f"Missing required field: {missing[0]}")
    unexpected = sorted(fields - UPLOAD_FIELDS - {"file"})
    if unexpected:
        raise InputError(f"Unexpected field: {unexpected[0]}")
    duplicated = sorted(name for name in fields if len(form.getlist(name)) > 1)
    if duplicated:
        raise InputError(f"Duplicate field: {duplicated[0]}")

    values = {}
    for name in UPLOAD_FIELDS:
        value = form.get(name)
        if not isinstance(value, str):
            raise InputError(f"Invalid value for field: {name}")
        values[name] = value

    user_session = authorize_request(
        db, values["sessionId"], Role.USER, csrf_token=values["csrfToken"], mutating=True
    )

    validator = UploadValidator()
    payload = await read_upload(form.get("file"), validator.max_size)
    reason = validator.validate(payload, values["newFileName"])
    if reason:
        logger.info(
            "upload_rejected username=%s check=%s client_filename=%s declared_type=%s",
            user_session.username,
            reason.check,
            payload.client_filename if payload else None,
            payload.declared_type if payload else None,
        )
        raise InputError(reason.message)

    stored = storage.store(user_session.username, values["newFileName"], payload.data)
    return ok(filename=stored.filename)


@app.post("/api/files/list")
async def list_files(request: SessionRequest, db: Session = Depends(get_db),
                     storage: StorageMutator = Depends(get_storage)):
    """List the files owned by the current user."""
    user_session = authorize_request(db, request.sessionId, Role.USER)
    files = [
        {
            "filename": record.filename,
            "uploadTime": record.upload_time.isoformat(),
            "size": record.size,
        }
        for record in storage.list_files(user_session.username)
    ]
    return ok(files=files)


@app.post("/api/files/download")
async def download_file(request: FileRequest, db: Session = Depends(get_db),
                        storage: StorageMutator = Depends(get_storage)):
    """Stream one of the current user's files back as an attachment."""
    user_session = authorize_request(db, request.sessionId, Role.USER)
    file_data = storage.read(user_session.username, request.filename)

    return StreamingResponse(
        BytesIO(file_data),
        media_type=sniff_content_type(file_data),
        headers={"Content-Disposition": f'attachment; filename="{request.filename}"'},
    )


@app.post("/api/files/delete")
async def delete_file(request: FileDeleteRequest, db: Session = Depends(get_db),
                      storage: StorageMutator = Depends(get_storage)):
    user_session = authorize_request(db, request.sessionId, Role.USER, csrf_token=request.csrfToken, mutating=True)
    storage.delete(user_session.username, request.filename)
    return ok()


@app.post("/api/admin/users")
async def list_users(request: SessionRequest, db: Session = Depends(get_db)):
    """List all account usernames (admin only)."""
    authorize_request(db, request.sessionId, Role.ADMIN)
    return ok(accounts=list_accounts(db))


@app.post("/api/admin/account-details")
async def account_details(request: AccountRequest, db: Session = Depends(get_db)):
    authorize_request(db, request.sessionId, Role.ADMIN)
    return ok(details=get_account_details(db, request.accountUsername))


@app.post("/api/admin/delete-user")
async def delete_user(request: DeleteUserRequest, db: Session = Depends(get_db),
                      storage: StorageMutator = Depends(get_storage)):
    """Delete an account with its sessions and files (admin only, never yourself)."""
    admin_session = authorize_request(
        db, request.sessionId, Role.ADMIN, csrf_token=request.csrfToken, mutating=True
    )
    delete_user_account(db, admin_session.username, request.accountUsername, storage)
    return ok()


@app.post("/api/admin/server-health")
async def server_health(request: SessionRequest, db: Session = Depends(get_db)):
    authorize_request(db, request.sessionId, Role.ADMIN)
    return ok(status=get_server_status(db))


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "FileDesk API"
    }


def run():
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    run()
