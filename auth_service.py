from __future__ import annotations

import datetime
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from werkzeug.security import generate_password_hash, check_password_hash

from config import YamlConfig
from db import UserRepository, OtpRepository, AuthSessionRepository, EmailLogRepository
from localization import translate_auth_error, translator

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
OTP_DIGITS = 6
OTP_LIFETIME = datetime.timedelta(minutes=10)
OTP_THROTTLE = datetime.timedelta(seconds=60)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


class AuthError(Exception):
    """Identity failure carrying the raw service message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        return translate_auth_error(self.message)


@dataclass
class AuthSession:
    token: str
    user_id: str
    email: str

    def to_dict(self) -> dict:
        return {"token": self.token, "user_id": self.user_id, "email": self.email}


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise AuthError("Unable to validate email address: invalid format")
    return email


class AuthService:
    """Password and one-time-code authentication with session observers."""

    def __init__(
        self,
        db_path: str = "workout.db",
        mailer: Callable[[str, str, str], None] | None = None,
    ) -> None:
        self.users = UserRepository(db_path)
        self.codes = OtpRepository(db_path)
        self.sessions = AuthSessionRepository(db_path)
        self.outbox = EmailLogRepository(db_path)
        self.mailer = mailer or self.outbox.add
        self._listeners: list[Callable[[str, Optional[AuthSession]], None]] = []

    def on_auth_state_change(
        self, callback: Callable[[str, Optional[AuthSession]], None]
    ) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: str, session: Optional[AuthSession]) -> None:
        for callback in list(self._listeners):
            callback(event, session)

    def _open_session(self, user_id: str, email: str) -> AuthSession:
        token = secrets.token_urlsafe(32)
        self.sessions.add(token, user_id)
        session = AuthSession(token, user_id, email)
        logger.info("Signed in %s", email)
        self._emit(SIGNED_IN, session)
        return session

    def sign_up(self, email: str, password: str) -> AuthSession:
        """Create an account and sign it in."""
        email = _normalize_email(email)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
        if self.users.fetch_by_email(email) is not None:
            raise AuthError("User already registered")
        user_id = self.users.create(email, generate_password_hash(password))
        return self._open_session(user_id, email)

    def sign_in(self, email: str, password: str) -> AuthSession:
        email = _normalize_email(email)
        row = self.users.fetch_by_email(email)
        if row is None or not check_password_hash(row[2], password or ""):
            raise AuthError("Invalid login credentials")
        return self._open_session(row[0], email)

    def request_reset_code(self, email: str) -> None:
        """Email a one-time code that signs the account in when verified."""
        email = _normalize_email(email)
        existing = self.codes.fetch(email)
        if existing is not None:
            requested = datetime.datetime.fromisoformat(existing[2])
            wait = OTP_THROTTLE - (_now() - requested)
            if wait > datetime.timedelta(0):
                raise AuthError(
                    "For security purposes, you can only request this after "
                    f"{int(wait.total_seconds()) + 1} seconds."
                )
        if self.users.fetch_by_email(email) is None:
            logger.info("Reset code requested for unknown address")
            return
        code = f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"
        expires_at = (_now() + OTP_LIFETIME).isoformat()
        self.codes.store(email, generate_password_hash(code), expires_at)
        self.mailer(
            email,
            translator.gettext("Your IronCoach access code"),
            f"{translator.gettext('Your code is')}: {code}",
        )

    def verify_reset_code(self, email: str, code: str) -> AuthSession:
        email = _normalize_email(email)
        row = self.codes.fetch(email)
        if row is None:
            raise AuthError("Invalid token")
        code_hash, expires_at, _requested = row
        if datetime.datetime.fromisoformat(expires_at) < _now():
            self.codes.delete(email)
            raise AuthError("Token has expired or is invalid")
        if not check_password_hash(code_hash, (code or "").strip()):
            raise AuthError("Invalid token")
        self.codes.delete(email)
        user = self.users.fetch_by_email(email)
        if user is None:
            raise AuthError("Invalid token")
        return self._open_session(user[0], email)

    def get_session(self, token: str | None) -> Optional[AuthSession]:
        if not token:
            return None
        user_id = self.sessions.fetch_user_id(token)
        if user_id is None:
            return None
        user = self.users.fetch_by_id(user_id)
        if user is None:
            return None
        return AuthSession(token, user[0], user[1])

    def sign_out(self, token: str) -> None:
        session = self.get_session(token)
        self.sessions.delete(token)
        if session is not None:
            logger.info("Signed out %s", session.email)
            self._emit(SIGNED_OUT, None)


def resolve_screen(config: YamlConfig, session: Optional[AuthSession]) -> str:
    """Pick the top-level screen: ``setup``, ``auth`` or ``main``."""
    if not config.is_backend_configured():
        return "setup"
    if session is None:
        return "auth"
    return "main"
