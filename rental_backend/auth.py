"""
Identity provider abstraction: password sign-in, sessions and password reset.

``InMemoryAuthClient`` is the test double; ``PostgresAuthClient`` keeps users,
sessions and recovery tokens in SQL. Like a browser SDK client, each client
instance tracks one "current" session.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol

import bcrypt
from sqlalchemy import Boolean, Column, Float, String, create_engine, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as OrmSession, declarative_base, sessionmaker

from rental_backend.results import AuthApiError, BackendError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60
RECOVERY_TOKEN_TTL_SECONDS = 60 * 60
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_BYTES = 72

# Receives (email, plaintext recovery token, redirect url).
RecoveryNotifier = Callable[[str, str, Optional[str]], None]


class AuthClient(Protocol):
    """Operations the services need from the identity provider."""

    def sign_in_with_password(self, email: str, password: str) -> "Session":
        ...

    def sign_out(self) -> None:
        ...

    def get_session(self) -> Optional["Session"]:
        ...

    def get_user(self) -> Optional["AuthUser"]:
        ...

    def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None
    ) -> None:
        ...

    def update_user_password(self, password: str) -> "AuthUser":
        ...

    def create_user(self, email: str, password: str) -> "AuthUser":
        ...


@dataclass
class AuthUser:
    id: str
    email: str


@dataclass
class Session:
    access_token: str
    user: AuthUser
    expires_at: float

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or an over-long password.
        return False


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _check_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise AuthApiError(
            f"Password should be at least {MIN_PASSWORD_LENGTH} characters.",
            status_code=422,
        )
    # bcrypt only accepts the first 72 bytes.
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise AuthApiError(
            f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes.",
            status_code=422,
        )


@dataclass
class InMemoryAuthClient:
    """Test double for the identity provider."""

    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    users: Dict[str, AuthUser] = field(default_factory=dict)
    passwords: Dict[str, str] = field(default_factory=dict)
    reset_requests: list[tuple[str, Optional[str]]] = field(default_factory=list)
    current_session: Optional[Session] = None

    def create_user(self, email: str, password: str) -> AuthUser:
        email = _normalize_email(email)
        _check_password(password)
        if email in self.users:
            raise AuthApiError("User already registered", status_code=422)
        user = AuthUser(id=str(uuid.uuid4()), email=email)
        self.users[email] = user
        self.passwords[user.id] = password
        return user

    def sign_in_with_password(self, email: str, password: str) -> Session:
        user = self.users.get(_normalize_email(email))
        if user is None or self.passwords.get(user.id) != password:
            raise AuthApiError("Invalid login credentials", status_code=400)
        self.current_session = Session(
            access_token=secrets.token_hex(32),
            user=user,
            expires_at=time.time() + self.session_ttl_seconds,
        )
        return self.current_session

    def sign_out(self) -> None:
        self.current_session = None

    def get_session(self) -> Optional[Session]:
        if self.current_session and self.current_session.is_expired:
            self.current_session = None
        return self.current_session

    def get_user(self) -> Optional[AuthUser]:
        session = self.get_session()
        return session.user if session else None

    def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None
    ) -> None:
        self.reset_requests.append((_normalize_email(email), redirect_to))

    def update_user_password(self, password: str) -> AuthUser:
        session = self.get_session()
        if session is None:
            raise AuthApiError("Auth session missing!", status_code=401)
        _check_password(password)
        self.passwords[session.user.id] = password
        return session.user


class PostgresAuthClient:
    """
    SQLAlchemy-backed identity provider. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(
        self,
        database_url: str,
        *,
        session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        recovery_notifier: Optional[RecoveryNotifier] = None,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresAuthClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=OrmSession, expire_on_commit=False, future=True
        )
        AuthBase.metadata.create_all(self.engine)
        self.session_ttl_seconds = session_ttl_seconds
        self.recovery_notifier = recovery_notifier
        self._access_token: Optional[str] = None

    def create_user(self, email: str, password: str) -> AuthUser:
        _check_password(password)
        now = time.time()
        row = AuthUserRow(
            id=str(uuid.uuid4()),
            email=_normalize_email(email),
            password_hash=hash_password(password),
            created_at=now,
            updated_at=now,
        )
        try:
            with self.Session() as session:
                session.add(row)
                session.commit()
        except IntegrityError as exc:
            raise AuthApiError("User already registered", status_code=422) from exc
        except SQLAlchemyError as exc:
            raise BackendError(str(exc)) from exc
        return AuthUser(id=row.id, email=row.email)

    def sign_in_with_password(self, email: str, password: str) -> Session:
        now = time.time()
        try:
            with self.Session() as session:
                user = session.execute(
                    select(AuthUserRow).where(
                        AuthUserRow.email == _normalize_email(email)
                    )
                ).scalar_one_or_none()
                if not user or not verify_password(password, user.password_hash):
                    raise AuthApiError("Invalid login credentials", status_code=400)
                token = secrets.token_hex(32)
                expires_at = now + self.session_ttl_seconds
                session.add(
                    AuthSessionRow(
                        token_hash=hash_token(token),
                        user_id=user.id,
                        created_at=now,
                        expires_at=expires_at,
                        revoked=False,
                    )
                )
                session.commit()
                auth_user = AuthUser(id=user.id, email=user.email)
        except SQLAlchemyError as exc:
            raise BackendError(str(exc)) from exc
        self._access_token = token
        return Session(access_token=token, user=auth_user, expires_at=expires_at)

    def sign_out(self) -> None:
        if not self._access_token:
            return
        try:
            with self.Session() as session:
                row = session.get(AuthSessionRow, hash_token(self._access_token))
                if row:
                    row.revoked = True
                    session.commit()
        except SQLAlchemyError as exc:
            raise BackendError(str(exc)) from exc
        self._access_token = None

    def get_session(self) -> Optional[Session]:
        if not self._access_token:
            return None
        try:
            with self.Session() as session:
                row = session.get(AuthSessionRow, hash_token(self._access_token))
                if not row or row.revoked or row.expires_at <= time.time():
                    self._access_token = None
                    return None
                user = session.get(AuthUserRow, row.user_id)
                if not user:
                    self._access_token = None
                    return None
                return Session(
                    access_token=self._access_token,
                    user=AuthUser(id=user.id, email=user.email),
                    expires_at=row.expires_at,
                )
        except SQLAlchemyError as exc:
            raise BackendError(str(exc)) from exc

    def get_user(self) -> Optional[AuthUser]:
        session = self.get_session()
        return session.user if session else None

    def reset_password_for_email(
        self, email: str, redirect_to: Optional[str] = None
    ) -> None:
        email = _normalize_email(email)
        token = secrets.token_urlsafe(32)
        try:
            with self.Session() as session:
                user = session.execute(
                    select(AuthUserRow).where(AuthUserRow.email == email)
                ).scalar_one_or_none()
                if not user:
                    # Unknown addresses are not revealed to the caller.
                    logger.info("Password recovery requested for unknown email")
                    return
                session.add(
                    RecoveryTokenRow(
                        token_hash=hash_token(token),
                        user_id=user.id,
                        expires_at=time.time() + RECOVERY_TOKEN_TTL_SECONDS,
                        used=False,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise BackendError(str(exc)) from exc

        if self.recovery_notifier is None:
            logger.warning(
                "No recovery notifier configured; recovery token for %s not delivered",
                email,
            )
            return
        self.recovery_notifier(email, token, redirect_to)

    def verify_recovery_token(self, token: str) -> Session:
        """Exchange a recovery token for a session so the password can be updated."""
        now = time.time()
        try:
            with self.Session() as session:
                row = session.get(RecoveryTokenRow, hash_token(token))
                if not row or row.used or row.expires_at <= now:
                    raise AuthApiError(
                        "Token has expired or is invalid", status_code=403
                    )
                user = session.get(AuthUserRow, row.user_id)
                if not user:
                    raise AuthApiError("User not found", status_code=404)
                row.used = True
                access_token = secrets.token_hex(32)
                expires_at = now + self.session_ttl_seconds
                session.add(
                    AuthSessionRow(
                        token_hash=hash_token(access_token),
                        user_id=user.id,
                        created_at=now,
                        expires_at=expires_at,
                        revoked=False,
                    )
                )
                session.commit()
                auth_user = AuthUser(id=user.id, email=user.email)
        except SQLAlchemyError as exc:
            raise BackendError(str(exc)) from exc
        self._access_token = access_token
        return Session(access_token=access_token, user=auth_user, expires_at=expires_at)

    def update_user_password(self, password: str) -> AuthUser:
        current = self.get_session()
        if current is None:
            raise AuthApiError("Auth session missing!", status_code=401)
        _check_password(password)
        try:
            with self.Session() as session:
                user = session.get(AuthUserRow, current.user.id)
                if not user:
                    raise AuthApiError("User not found", status_code=404)
                user.password_hash = hash_password(password)
                user.updated_at = time.time()
                session.commit()
        except SQLAlchemyError as exc:
            raise BackendError(str(exc)) from exc
        return current.user


AuthBase = declarative_base()


class AuthUserRow(AuthBase):
    __tablename__ = "auth_users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class AuthSessionRow(AuthBase):
    __tablename__ = "auth_sessions"

    token_hash = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)


class RecoveryTokenRow(AuthBase):
    __tablename__ = "auth_recovery_tokens"

    token_hash = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    expires_at = Column(Float, nullable=False)
    used = Column(Boolean, nullable=False, default=False)
