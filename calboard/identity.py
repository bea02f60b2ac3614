"""Email/password identity provider and session tokens."""

from __future__ import annotations

import base64
import logging
import re
import secrets
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable

import jwt
from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session, sessionmaker

from .database import session_scope
from .models import AuthSession, Meta, User
from .storage import PROJECT_KEY
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

KDF_ITERATIONS = 240_000
HASH_SCHEME = "pbkdf2_sha256"

_email_pattern = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

AuthStateListener = Callable[[str, bool], None]


class IdentityError(Exception):
    """Raised by the identity provider with a stable ``auth/...`` code."""

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code


def hash_password(password: str, *, iterations: int = KDF_ITERATIONS) -> str:
    salt = secrets.token_bytes(16)
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations
    )
    digest = kdf.derive(password.encode("utf-8"))
    return "$".join(
        [
            HASH_SCHEME,
            str(iterations),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(digest).decode("ascii"),
        ]
    )


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations, salt_b64, digest_b64 = encoded.split("$")
    except ValueError:
        return False
    if scheme != HASH_SCHEME:
        return False
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=base64.b64decode(salt_b64),
        iterations=int(iterations),
    )
    try:
        kdf.verify(password.encode("utf-8"), base64.b64decode(digest_b64))
    except InvalidKey:
        return False
    return True


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


@dataclass(frozen=True)
class SignedIn:
    token: str
    user_id: str
    display_name: str | None
    email: str


class IdentityProvider:
    """Accounts, password checks and revocable session tokens."""

    def __init__(
        self,
        factory: sessionmaker,
        *,
        api_key: str,
        project_id: str,
        app_id: str,
        session_secret: str,
        session_ttl: timedelta,
        max_failed_sign_ins: int = 5,
        lockout: timedelta = timedelta(minutes=15),
        min_password_length: int = 6,
    ) -> None:
        self._factory = factory
        self._api_key = api_key
        self._issuer = project_id
        self._audience = app_id
        self._secret = session_secret
        self._session_ttl = session_ttl
        self._max_failed = max_failed_sign_ins
        self._lockout = lockout
        self._min_password_length = min_password_length
        self._listeners: list[AuthStateListener] = []
        self._listener_lock = threading.Lock()

    # -- auth-state notifications -------------------------------------

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register ``listener(user_id, signed_in)``; returns an unsubscribe callable."""
        with self._listener_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listener_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, user_id: str, signed_in: bool) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(user_id, signed_in)
            except Exception:
                logger.exception("Auth-state listener failed for user %s", user_id)

    # -- accounts -----------------------------------------------------

    def _check_api_key(self, db: Session) -> None:
        stored = db.get(Meta, PROJECT_KEY)
        if stored is not None and not secrets.compare_digest(
            stored.value, self._api_key
        ):
            raise IdentityError("auth/api-key-not-valid")

    def create_user(self, db: Session, *, email: str, password: str) -> User:
        """Create an account inside the caller's transaction."""
        self._check_api_key(db)
        normalized = normalize_email(email)
        if not _email_pattern.match(normalized):
            raise IdentityError("auth/invalid-email")
        if len(password or "") < self._min_password_length:
            raise IdentityError("auth/weak-password")
        existing = db.scalars(select(User).where(User.email == normalized)).first()
        if existing is not None:
            raise IdentityError("auth/email-already-in-use")
        user = User(email=normalized, password_hash=hash_password(password))
        db.add(user)
        db.flush()
        return user

    def update_profile(self, db: Session, user: User, *, display_name: str) -> User:
        user.display_name = (display_name or "").strip() or None
        db.add(user)
        db.flush()
        return user

    def get_user(self, db: Session, user_id: str) -> User | None:
        return db.get(User, user_id)

    # -- sessions -----------------------------------------------------

    def sign_in(self, *, email: str, password: str) -> SignedIn:
        normalized = normalize_email(email)
        if not _email_pattern.match(normalized):
            raise IdentityError("auth/invalid-email")

        failure: str | None = None
        signed_in: SignedIn | None = None
        with session_scope(self._factory) as db:
            self._check_api_key(db)
            user = db.scalars(select(User).where(User.email == normalized)).first()
            now = utcnow()
            if user is None:
                failure = "auth/user-not-found"
            elif user.locked_until and user.locked_until > now:
                failure = "auth/too-many-requests"
            elif not verify_password(password or "", user.password_hash):
                user.failed_sign_ins = (user.failed_sign_ins or 0) + 1
                if user.failed_sign_ins >= self._max_failed:
                    user.locked_until = now + self._lockout
                    user.failed_sign_ins = 0
                    failure = "auth/too-many-requests"
                else:
                    failure = "auth/wrong-password"
                db.add(user)
            else:
                user.failed_sign_ins = 0
                user.locked_until = None
                db.add(user)
                signed_in = SignedIn(
                    token=self._issue(db, user),
                    user_id=user.id,
                    display_name=user.display_name,
                    email=user.email,
                )
        if failure:
            logger.warning("Sign-in failed for %s: %s", normalized, failure)
            raise IdentityError(failure)
        self._notify(signed_in.user_id, True)
        return signed_in

    def start_session(self, user_id: str) -> str:
        """Issue a session for an account that was just created."""
        with session_scope(self._factory) as db:
            user = db.get(User, user_id)
            if user is None:
                raise IdentityError("auth/user-not-found")
            token = self._issue(db, user)
        self._notify(user_id, True)
        return token

    def _issue(self, db: Session, user: User) -> str:
        now = datetime.now(UTC)
        expires = now + self._session_ttl
        record = AuthSession(
            id=secrets.token_urlsafe(32),
            user_id=user.id,
            created_at=now.replace(tzinfo=None),
            expires_at=expires.replace(tzinfo=None),
        )
        db.add(record)
        db.flush()
        claims = {
            "iss": self._issuer,
            "aud": self._audience,
            "sub": user.id,
            "sid": record.id,
            "iat": now,
            "exp": expires,
        }
        return jwt.encode(claims, self._secret, algorithm="HS256")

    def _decode(self, token: str | None) -> dict | None:
        if not token:
            return None
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=["HS256"],
                issuer=self._issuer,
                audience=self._audience,
            )
        except jwt.InvalidTokenError as exc:
            logger.debug("Rejected session token: %s", exc)
            return None

    def current_user(self, token: str | None) -> User | None:
        """Return the user behind a live session token, or ``None``."""
        claims = self._decode(token)
        if not claims:
            return None
        with session_scope(self._factory) as db:
            record = db.get(AuthSession, claims.get("sid"))
            if (
                record is None
                or record.user_id != claims.get("sub")
                or record.revoked_at is not None
                or record.expires_at <= utcnow()
            ):
                return None
            return db.get(User, record.user_id)

    def sign_out(self, token: str | None) -> None:
        claims = self._decode(token)
        if not claims:
            return
        with session_scope(self._factory) as db:
            record = db.get(AuthSession, claims.get("sid"))
            if record is None or record.revoked_at is not None:
                return
            record.revoked_at = utcnow()
            db.add(record)
        self._notify(claims["sub"], False)

    def purge_sessions(self) -> int:
        """Delete expired and revoked session rows."""
        now = utcnow()
        with session_scope(self._factory) as db:
            result = db.execute(
                delete(AuthSession).where(
                    or_(
                        AuthSession.expires_at <= now,
                        AuthSession.revoked_at.is_not(None),
                    )
                )
            )
            removed = result.rowcount or 0
        if removed:
            logger.info("Purged %d expired or revoked sessions", removed)
        return removed
