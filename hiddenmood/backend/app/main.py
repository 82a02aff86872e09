from __future__ import annotations

import json
import logging
import os
import re
import secrets
import time
import traceback
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import mailer, ml_client
from .dashboard_engine import stress_value, summarize as summarize_history

APP_VERSION = "1.0.0"
REPO_ROOT = Path(__file__).resolve().parents[3]
load_dotenv(REPO_ROOT / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("hiddenmood")


def resolve_db_path() -> str:
    db_env = (os.getenv("HIDDENMOOD_DB_PATH") or os.getenv("DB_PATH") or "").strip()
    db_path = Path(db_env) if db_env else (REPO_ROOT / "hiddenmood.db")
    if not db_path.is_absolute():
        db_path = REPO_ROOT / db_path
    return str(db_path)


def resolve_database_url() -> str:
    url = (os.getenv("DATABASE_URL") or "").strip()
    return url or f"sqlite:///{resolve_db_path()}"


DATABASE_URL = resolve_database_url()
SECRET_KEY = os.getenv("JWT_SECRET", "CHANGE_ME")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24
RESET_CODE_EXPIRE_MINUTES = int(os.getenv("RESET_CODE_EXPIRE_MINUTES", "10"))
RESET_WINDOW_MINUTES = 15
MIN_CURHAT_LENGTH = 10
DEFAULT_FEEDBACK_MESSAGE = "Thank you for your feedback"

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login", auto_error=False)


class User(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    history = relationship("History", back_populates="user")


class History(Base):
    __tablename__ = "history"

    history_id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=True, index=True)
    stress_level = Column(String, nullable=True)
    stress_percent = Column(Float, nullable=True)
    emotion = Column(String, nullable=True)
    text = Column(Text, nullable=False)
    feedback = Column(Text, nullable=True)
    video_link_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="history")


class PasswordResetCode(Base):
    __tablename__ = "password_reset_codes"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True, nullable=False)
    code = Column(String, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    consumed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(String, primary_key=True, index=True)
    user_name = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    feedback = Column(Text, nullable=False, default=DEFAULT_FEEDBACK_MESSAGE)
    analysis_result_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class Article(Base):
    __tablename__ = "articles"

    article_id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    article_link = Column(String, nullable=False)
    img = Column(String, nullable=True)
    article_intro = Column(Text, nullable=True)


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    current_password: Optional[str] = Field(None, alias="currentPassword")
    new_password: Optional[str] = Field(None, alias="newPassword")


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None


class VerifyCodeRequest(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    new_password: Optional[str] = Field(None, alias="newPassword")


class CurhatRequest(BaseModel):
    text: Optional[str] = None
    user_id: Optional[str] = None


class FeedbackCreate(BaseModel):
    user_name: Optional[str] = None
    text: Optional[str] = None
    analysis_result: Optional[dict] = None


app = FastAPI(title="HiddenMood API", version=APP_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and detail == "Not Found":
        detail = "Route not found"
    content = detail if isinstance(detail, dict) else {"error": detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("HiddenMood API %s using %s", APP_VERSION, engine.url.render_as_string(hide_password=True))


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def runtime_mode() -> str:
    return (os.getenv("HIDDENMOOD_ENV") or os.getenv("APP_ENV") or "development").strip().lower()


def is_production() -> bool:
    return runtime_mode() == "production"


def generate_id() -> str:
    return f"id_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def generate_reset_code() -> str:
    return str(100000 + secrets.randbelow(900000))


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_MESSAGE = (
    "Password must be at least 8 characters long and include a mix of letters, numbers, and symbols."
)
PASSWORD_TOO_LONG_MESSAGE = "Password too long (bcrypt limit is 72 bytes). Use a shorter password."
BCRYPT_MAX_BYTES = 72
NAME_MESSAGE = "Name must be between 2 and 50 characters long"


def validate_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email or ""))


def validate_password(password: str) -> Optional[str]:
    has_letter = re.search(r"[A-Za-z]", password) is not None
    has_number = re.search(r"\d", password) is not None
    has_symbol = re.search(r"[!@#$%^&*(),.?\":{}|<>]", password) is not None
    if len(password) < 8 or not (has_letter and has_number and has_symbol):
        return PASSWORD_MESSAGE
    # bcrypt ignores everything past 72 bytes
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        return PASSWORD_TOO_LONG_MESSAGE
    return None


def validate_name(name: str) -> Tuple[str, Optional[str]]:
    trimmed = (name or "").strip()
    if len(trimmed) < 2 or len(trimmed) > 50:
        return trimmed, NAME_MESSAGE
    return trimmed, None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def issue_user_token(user: User) -> str:
    return create_access_token({"user_id": user.user_id, "name": user.name, "email": user.email})


def decode_user_id(token: str) -> str:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise credentials_exception from exc
    user_id = payload.get("user_id")
    if not user_id:
        raise credentials_exception
    return str(user_id)


def get_current_user_id(token: Optional[str] = Depends(oauth2_scheme)) -> str:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decode_user_id(token)


def get_optional_user_id(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[str]:
    if not token:
        return None
    return decode_user_id(token)


def serialize_user(user: User) -> dict:
    return {"user_id": user.user_id, "name": user.name, "email": user.email}


def serialize_history(entry: History) -> dict:
    return {
        "history_id": entry.history_id,
        "user_id": entry.user_id,
        "stress_level": entry.stress_level,
        "stress_percent": entry.stress_percent,
        "emotion": entry.emotion,
        "text": entry.text,
        "feedback": entry.feedback,
        "video_link": json.loads(entry.video_link_json or "[]"),
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def serialize_feedback(row: Feedback, include_fallback: bool = True) -> dict:
    analysis_result = json.loads(row.analysis_result_json) if row.analysis_result_json else None
    if analysis_result is None and include_fallback:
        analysis_result = {"feedback": row.feedback}
    item = {
        "id": row.id,
        "user_name": row.user_name or "Anonymous",
        "text": row.text,
        "feedback": row.feedback,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
    if analysis_result is not None:
        item["analysis_result"] = analysis_result
    return item


def serialize_article(row: Article) -> dict:
    return {
        "article_id": row.article_id,
        "title": row.title,
        "article_link": row.article_link,
        "img": row.img,
        "article_intro": row.article_intro,
    }


def is_invalid_history_id(history_id: str) -> bool:
    cleaned = (history_id or "").strip()
    return not cleaned or cleaned in {"undefined", "null"}


@app.get("/")
def root() -> dict:
    return {"message": "HiddenMood backend running", "version": APP_VERSION}


@app.get("/api/test-db")
def test_database(db: Session = Depends(get_db)) -> dict:
    db_status = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database connectivity check failed")
        db_status = "error"
    return {"status": "ok", "version": APP_VERSION, "db": db_status, "mode": runtime_mode()}


@app.post("/register", status_code=status.HTTP_201_CREATED)
def register_user(payload: RegisterRequest, db: Session = Depends(get_db)) -> dict:
    if not payload.name or not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Name, email, and password are required")
    email = payload.email.strip().lower()
    if not validate_email(email):
        raise HTTPException(status_code=400, detail="Please enter a valid email address")
    password_error = validate_password(payload.password)
    if password_error:
        raise HTTPException(status_code=400, detail=password_error)
    name, name_error = validate_name(payload.name)
    if name_error:
        raise HTTPException(status_code=400, detail=name_error)

    try:
        existing = db.query(User).filter(User.email == email).first()
    except SQLAlchemyError as exc:
        logger.exception("Failed to check existing user %s", email)
        raise HTTPException(status_code=500, detail="Failed to check existing user") from exc
    if existing:
        raise HTTPException(status_code=400, detail="Email is already registered")

    try:
        hashed_password = get_password_hash(payload.password)
    except Exception as exc:
        logger.exception("Password hashing failed during registration")
        raise HTTPException(
            status_code=500,
            detail="Internal server error during registration",
        ) from exc

    user = User(user_id=generate_id(), name=name, email=email, password=hashed_password)
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to insert user %s", email)
        raise HTTPException(status_code=500, detail="Failed to register user") from exc

    logger.info("Registered user %s", user.user_id)
    return {
        "message": "User registered successfully",
        "user": serialize_user(user),
        "token": issue_user_token(user),
    }


@app.post("/login")
def login_user(payload: LoginRequest, db: Session = Depends(get_db)) -> dict:
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    email = payload.email.strip().lower()
    try:
        user = db.query(User).filter(User.email == email).first()
    except SQLAlchemyError:
        logger.exception("User lookup failed during login")
        user = None
    try:
        valid = bool(user) and verify_password(payload.password, user.password)
    except ValueError as exc:
        logger.exception("Stored password hash is unusable for %s", email)
        raise HTTPException(status_code=500, detail="Internal server error during login") from exc
    if not valid:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {
        "message": "Login successful",
        "user": serialize_user(user),
        "token": issue_user_token(user),
    }


@app.get("/api/profile")
def get_profile(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    try:
        user = db.query(User).filter(User.user_id == user_id).first()
    except SQLAlchemyError as exc:
        logger.exception("Error fetching profile for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch profile") from exc
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": serialize_user(user)}


@app.put("/api/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    try:
        user = db.query(User).filter(User.user_id == user_id).first()
    except SQLAlchemyError as exc:
        logger.exception("Error loading profile %s for update", user_id)
        raise HTTPException(status_code=500, detail="Failed to update profile") from exc
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    changed = False
    if payload.name:
        name, name_error = validate_name(payload.name)
        if name_error:
            raise HTTPException(status_code=400, detail=name_error)
        user.name = name
        changed = True

    if payload.current_password or payload.new_password:
        if not (payload.current_password and payload.new_password):
            raise HTTPException(
                status_code=400,
                detail="Both currentPassword and newPassword are required to change the password",
            )
        if not verify_password(payload.current_password, user.password):
            raise HTTPException(status_code=400, detail="Invalid current password")
        password_error = validate_password(payload.new_password)
        if password_error:
            raise HTTPException(status_code=400, detail=password_error)
        if verify_password(payload.new_password, user.password):
            raise HTTPException(
                status_code=400,
                detail="New password cannot be the same as the current password",
            )
        user.password = get_password_hash(payload.new_password)
        changed = True

    if not changed:
        raise HTTPException(status_code=400, detail="No profile changes provided")

    try:
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Update error for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to update profile") from exc

    return {"message": "User profile updated successfully", "user": serialize_user(user)}


@app.delete("/api/profile")
def delete_profile(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    try:
        user = db.query(User).filter(User.user_id == user_id).first()
    except SQLAlchemyError as exc:
        logger.exception("Error loading profile %s for deletion", user_id)
        raise HTTPException(status_code=500, detail="Failed to delete account") from exc
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    # history and user go in one transaction; any failure rolls both back
    try:
        db.query(History).filter(History.user_id == user_id).delete(synchronize_session=False)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("History delete error for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to delete history data") from exc
    try:
        db.query(User).filter(User.user_id == user_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("User delete error for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to delete user account") from exc

    logger.info("Account deleted for user %s", user_id)
    return {"message": "Account deleted successfully"}


@app.post("/forgot-password/request")
def forgot_password_request(payload: ForgotPasswordRequest, db: Session = Depends(get_db)) -> dict:
    email = (payload.email or "").strip().lower()
    if not email:
        return {"error": "Email is required"}
    try:
        user = db.query(User).filter(User.email == email).first()
    except SQLAlchemyError:
        logger.exception("User lookup failed for reset request")
        return {"error": "Failed to send code"}
    if not user:
        return {"error": "Email not found"}

    code = generate_reset_code()
    record = PasswordResetCode(
        id=generate_id(),
        email=email,
        code=code,
        expires_at=datetime.utcnow() + timedelta(minutes=RESET_CODE_EXPIRE_MINUTES),
        used=False,
    )
    try:
        db.add(record)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store reset code for %s", email)
        return {"error": "Failed to send code"}

    if not mailer.send_reset_code(email, code, RESET_CODE_EXPIRE_MINUTES):
        return {"error": "Failed to send code"}
    return {"message": "Verification code sent"}


@app.post("/forgot-password/verify")
def forgot_password_verify(payload: VerifyCodeRequest, db: Session = Depends(get_db)) -> dict:
    email = (payload.email or "").strip().lower()
    code = (payload.code or "").strip()
    if not email or not code:
        return {"error": "Email and code are required"}
    now = datetime.utcnow()
    try:
        record = (
            db.query(PasswordResetCode)
            .filter(
                PasswordResetCode.email == email,
                PasswordResetCode.code == code,
                PasswordResetCode.used.is_(False),
                PasswordResetCode.expires_at >= now,
            )
            .order_by(PasswordResetCode.created_at.desc())
            .first()
        )
        if not record:
            return {"error": "Invalid or expired code"}
        record.used = True
        record.verified_at = now
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to verify reset code for %s", email)
        return {"error": "Failed to verify code"}
    return {"message": "Code verified"}


@app.post("/forgot-password/reset")
def forgot_password_reset(payload: ResetPasswordRequest, db: Session = Depends(get_db)) -> dict:
    email = (payload.email or "").strip().lower()
    if not email or not payload.new_password:
        return {"error": "Email and new password are required"}
    now = datetime.utcnow()
    try:
        user = db.query(User).filter(User.email == email).first()
        if not user:
            return {"error": "User not found"}
        verified = (
            db.query(PasswordResetCode)
            .filter(
                PasswordResetCode.email == email,
                PasswordResetCode.used.is_(True),
                PasswordResetCode.consumed_at.is_(None),
                PasswordResetCode.verified_at >= now - timedelta(minutes=RESET_WINDOW_MINUTES),
            )
            .order_by(PasswordResetCode.verified_at.desc())
            .first()
        )
    except SQLAlchemyError:
        logger.exception("Reset lookup failed for %s", email)
        return {"error": "Failed to reset password"}
    if not verified:
        return {"error": "Please verify your code first"}

    password_error = validate_password(payload.new_password)
    if password_error:
        return {"error": password_error}
    if verify_password(payload.new_password, user.password):
        return {"error": "New password cannot be the same as the current password"}

    try:
        user.password = get_password_hash(payload.new_password)
        verified.consumed_at = now
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to reset password for %s", email)
        return {"error": "Failed to reset password"}
    logger.info("Password reset for user %s", user.user_id)
    return {"message": "Password reset successfully"}


def resolve_submitter(token_user_id: Optional[str], body_user_id: Optional[str]) -> Optional[str]:
    if token_user_id:
        if body_user_id and body_user_id != token_user_id:
            logger.warning("Ignoring body user_id %s for authenticated user %s", body_user_id, token_user_id)
        return token_user_id
    if body_user_id:
        logger.warning("Ignoring unauthenticated user_id %s; submission stays anonymous", body_user_id)
    return None


def save_history(db: Session, user_id: str, content: str, result: dict) -> Optional[str]:
    """Best-effort write of an analyzed submission. Returns the new id or None."""
    try:
        if db.query(User.user_id).filter(User.user_id == user_id).first() is None:
            logger.warning("Not saving history for unknown user %s", user_id)
            return None
        entry = History(
            history_id=generate_id(),
            user_id=user_id,
            stress_level=result["predicted_stress"]["label"],
            stress_percent=stress_value(result["stress_level"]["stress_level"]),
            emotion=result["predicted_emotion"]["label"],
            text=content,
            feedback=result["analysis"],
            video_link_json=json.dumps(result["recommended_videos"]["recommendations"]),
            created_at=datetime.utcnow(),
        )
        db.add(entry)
        db.commit()
    except (SQLAlchemyError, TypeError, ValueError):
        db.rollback()
        logger.exception("Failed to save history for user %s", user_id)
        return None
    return entry.history_id


@app.post("/curhat")
def submit_curhat(
    payload: CurhatRequest,
    token_user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
) -> dict:
    content = (payload.text or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Text is required")
    if len(content) < MIN_CURHAT_LENGTH:
        raise HTTPException(status_code=400, detail="Text must be at least 10 characters long")
    user_id = resolve_submitter(token_user_id, payload.user_id)

    try:
        result = ml_client.analyze_text(content)
    except ml_client.MLServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.payload) from exc
    except Exception as exc:
        logger.exception("Unexpected failure while analyzing text")
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to process text with ML API", "error_type": "generic_error"},
        ) from exc

    response = dict(result)
    response["saved_to_history"] = False
    if user_id:
        history_id = save_history(db, user_id, content, result)
        if history_id:
            response["saved_to_history"] = True
            response["history_id"] = history_id
    return response


@app.get("/api/history")
def list_history(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[dict]:
    try:
        entries = (
            db.query(History)
            .filter(History.user_id == user_id)
            .order_by(History.created_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Failed to fetch history for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch history") from exc
    return [serialize_history(entry) for entry in entries]


@app.get("/api/history/{history_id}")
def get_history_item(
    history_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    if is_invalid_history_id(history_id):
        raise HTTPException(status_code=400, detail="Invalid history ID")
    try:
        entry = (
            db.query(History)
            .filter(History.history_id == history_id.strip(), History.user_id == user_id)
            .first()
        )
    except SQLAlchemyError as exc:
        logger.exception("Failed to fetch history item %s", history_id)
        raise HTTPException(status_code=500, detail="Failed to fetch history item") from exc
    if not entry:
        raise HTTPException(status_code=404, detail="History item not found")
    return serialize_history(entry)


@app.get("/summary")
def dashboard_summary(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    since = datetime.utcnow() - timedelta(days=days)
    try:
        rows = (
            db.query(History)
            .filter(History.user_id == user_id, History.created_at >= since)
            .order_by(History.created_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Failed to fetch dashboard summary for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch dashboard summary") from exc
    entries = [
        {
            "stress_percent": row.stress_percent,
            "emotion": row.emotion,
            "created_at": row.created_at,
            "feedback": row.feedback,
        }
        for row in rows
    ]
    return summarize_history(entries)


@app.get("/recent")
def recent_history(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[dict]:
    try:
        rows = (
            db.query(History)
            .filter(History.user_id == user_id)
            .order_by(History.created_at.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Failed to fetch recent history for %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch recent history") from exc
    return [serialize_history(row) for row in rows]


@app.get("/detail/{entry_id}")
def entry_detail(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    try:
        entry = (
            db.query(History)
            .filter(History.history_id == entry_id, History.user_id == user_id)
            .first()
        )
    except SQLAlchemyError as exc:
        logger.exception("Failed to fetch entry %s", entry_id)
        raise HTTPException(status_code=500, detail="Failed to fetch entry details") from exc
    if not entry:
        raise HTTPException(status_code=404, detail="Entry not found")
    return serialize_history(entry)


@app.get("/feedback")
def list_feedback(db: Session = Depends(get_db)) -> List[dict]:
    try:
        rows = db.query(Feedback).order_by(Feedback.created_at.desc()).all()
    except SQLAlchemyError as exc:
        logger.exception("Failed to fetch feedback")
        raise HTTPException(status_code=500, detail="Failed to fetch feedback") from exc
    return [serialize_feedback(row) for row in rows]


@app.post("/feedback", status_code=status.HTTP_201_CREATED)
def create_feedback(
    payload: FeedbackCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    user_name = (payload.user_name or "").strip()
    content = (payload.text or "").strip()
    if not user_name or not content:
        raise HTTPException(status_code=400, detail="User name and text are required")
    analysis_result = payload.analysis_result
    message = DEFAULT_FEEDBACK_MESSAGE
    if analysis_result and analysis_result.get("feedback"):
        message = str(analysis_result["feedback"])
    row = Feedback(
        id=generate_id(),
        user_name=user_name,
        text=content,
        feedback=message,
        analysis_result_json=json.dumps(analysis_result) if analysis_result is not None else None,
        created_at=datetime.utcnow(),
    )
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to create feedback from user %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to create feedback") from exc
    return serialize_feedback(row, include_fallback=False)


@app.get("/feedback/{feedback_id}")
def get_feedback(feedback_id: str, db: Session = Depends(get_db)) -> dict:
    try:
        row = db.query(Feedback).filter(Feedback.id == feedback_id).first()
    except SQLAlchemyError as exc:
        logger.exception("Failed to fetch feedback %s", feedback_id)
        raise HTTPException(status_code=500, detail="Failed to fetch feedback") from exc
    if not row:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return serialize_feedback(row)


@app.get("/articles")
def list_articles(db: Session = Depends(get_db)) -> List[dict]:
    logger.info("Fetching articles")
    try:
        rows = db.query(Article).order_by(Article.article_id.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception("Database error while fetching articles")
        raise HTTPException(
            status_code=500,
            detail={
                "error": "Database error",
                "details": str(getattr(exc, "orig", None) or exc),
                "hint": "Check your database configuration",
            },
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected error while fetching articles")
        detail = {"error": "Failed to fetch articles", "details": str(exc)}
        if not is_production():
            detail["stack"] = traceback.format_exc()
        raise HTTPException(status_code=500, detail=detail) from exc
    logger.info("Fetched %d articles", len(rows))
    return [serialize_article(row) for row in rows]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "5001")))
