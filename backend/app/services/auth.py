"""Registration, login, token refresh, password change and logout.

The service is stateless per request. Its only shared mutable state is the
rate limiter's counter store and the user table. Failures are raised as
:mod:`app.services.errors` types so the API layer can render them without
inspecting messages.
"""
from contextlib import contextmanager
from dataclasses import dataclass
import logging
import re

from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from app.config import Settings
from app.models.user import User
from app.services import rate_limiter as limits
from app.services.errors import (
    AlreadyExists,
    InvalidCredentials,
    InvalidPassword,
    InvalidToken,
    PolicyViolation,
    RateLimited,
    ServiceUnavailable,
    SessionExpired,
    ValidationFailed,
)
from app.services.password_policy import REUSED_PASSWORD_RULE, validate_password
from app.services.passwords import BCRYPT_MAX_PASSWORD_BYTES, CredentialHasher, HashingTimeout
from app.services.rate_limiter import RateLimiter, rate_limit_key
from app.services.tokens import ACCESS_TOKEN, REFRESH_TOKEN, TokenCodec, TokenError, TokenPair

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254
MAX_NAME_LENGTH = 100


@dataclass(frozen=True)
class AuthResult:
    user: User
    tokens: TokenPair


def log_auth_event(event: str, subject: str | None, success: bool, **details) -> None:
    """Write one audit line for an auth event. Never pass passwords or tokens."""
    extra = " ".join(f"{key}={value}" for key, value in sorted(details.items()))
    logger.info(
        f"auth_event={event} subject={subject or 'unknown'} success={success} {extra}".rstrip(),
        extra={"auth_event": event, "success": success},
    )


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _validate_email(raw_email, errors: list[str]) -> str:
    if not isinstance(raw_email, str) or not raw_email.strip():
        errors.append("email is required")
        return ""
    email = normalize_email(raw_email)
    if not EMAIL_PATTERN.match(email):
        errors.append("Please provide a valid email address")
    if len(email) > MAX_EMAIL_LENGTH:
        errors.append("Email address is too long")
    return email


def _validate_password_shape(raw_password, errors: list[str], field: str = "password") -> None:
    if not isinstance(raw_password, str) or raw_password == "":
        errors.append(f"{field} is required")
    elif len(raw_password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        errors.append(f"{field} must not exceed {BCRYPT_MAX_PASSWORD_BYTES} bytes")


def _validate_name(raw_name, errors: list[str]) -> str | None:
    if raw_name is None or raw_name == "":
        return None
    if not isinstance(raw_name, str):
        errors.append("Name must be a string")
        return None
    name = raw_name.strip()
    if not name:
        errors.append("Name cannot be empty")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Name must not exceed {MAX_NAME_LENGTH} characters")
    return name or None


class AuthService:
    """Session lifecycle operations backed by the user table."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        limiter: RateLimiter,
        codec: TokenCodec | None = None,
        hasher: CredentialHasher | None = None,
    ):
        self.db = db
        self.settings = settings
        self.limiter = limiter
        self.codec = codec or TokenCodec.from_settings(settings)
        self.hasher = hasher or CredentialHasher(
            rounds=settings.password_hash_rounds,
            timeout_seconds=settings.password_hash_timeout_seconds,
        )

    # Bounded dependencies

    @contextmanager
    def _record_store(self, operation: str):
        try:
            yield
        except (OperationalError, PoolTimeoutError) as exc:
            self.db.rollback()
            logger.error(f"Record store unavailable during {operation}: {exc.__class__.__name__}")
            raise ServiceUnavailable() from exc

    def _hash(self, password: str) -> str:
        try:
            return self.hasher.hash(password)
        except HashingTimeout as exc:
            logger.error(f"Password hashing timed out: {exc}")
            raise ServiceUnavailable() from exc

    def _verify(self, password: str, password_hash: str | None) -> bool:
        try:
            if password_hash is None:
                return self.hasher.verify_dummy(password)
            return self.hasher.verify(password, password_hash)
        except HashingTimeout as exc:
            logger.error(f"Password verification timed out: {exc}")
            raise ServiceUnavailable() from exc

    def _get_user_by_email(self, email: str) -> User | None:
        with self._record_store("user lookup"):
            return self.db.query(User).filter(User.email == email).first()

    def _get_user_by_id(self, user_id: str) -> User | None:
        with self._record_store("user lookup"):
            return self.db.query(User).filter(User.id == user_id).first()

    # Operations

    def register(self, email, password, name=None, address: str | None = None) -> AuthResult:
        """Create an account and sign it in."""
        decision = self.limiter.hit(limits.REGISTER, rate_limit_key(address=address))
        if not decision.allowed:
            log_auth_event("register", None, False, reason="rate_limited")
            raise RateLimited(decision.retry_after, "Too many registration attempts, please try again later")

        errors: list[str] = []
        email = _validate_email(email, errors)
        _validate_password_shape(password, errors)
        name = _validate_name(name, errors)
        if errors:
            raise ValidationFailed(details=errors)

        check = validate_password(password)
        if not check.is_valid:
            raise PolicyViolation(details=check.messages)

        if self._get_user_by_email(email) is not None:
            log_auth_event("register", None, False, reason="already_exists")
            raise AlreadyExists()

        user = User(email=email, name=name, password_hash=self._hash(password))
        with self._record_store("register"):
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                log_auth_event("register", None, False, reason="already_exists")
                raise AlreadyExists() from exc
            self.db.refresh(user)

        log_auth_event("register", user.id, True, has_name=user.name is not None)
        return AuthResult(user=user, tokens=self.codec.issue_pair(user.id))

    def login(self, email, password, address: str | None = None) -> AuthResult:
        """Verify credentials and issue a fresh token pair."""
        errors: list[str] = []
        email = _validate_email(email, errors)
        if not isinstance(password, str) or password == "":
            errors.append("password is required")
        if errors:
            raise ValidationFailed(message="Please provide valid email and password", details=errors)

        # Record the attempt before looking at credentials.
        account_key = f"email:{email}"
        address_key = rate_limit_key(address=address)
        decisions = [self.limiter.hit(limits.LOGIN, key) for key in (account_key, address_key)]
        blocked = [decision for decision in decisions if not decision.allowed]
        if blocked:
            log_auth_event("login", None, False, reason="rate_limited")
            raise RateLimited(
                max(decision.retry_after for decision in blocked),
                "Too many authentication attempts, please try again later",
            )

        user = self._get_user_by_email(email)
        if user is None:
            self._verify(password, None)
            log_auth_event("login", None, False, reason="user_not_found")
            raise InvalidCredentials()

        if not self._verify(password, user.password_hash):
            log_auth_event("login", user.id, False, reason="invalid_password")
            raise InvalidCredentials()

        self.limiter.reset(limits.LOGIN, account_key)
        self.limiter.release(limits.LOGIN, address_key)
        log_auth_event("login", user.id, True)
        return AuthResult(user=user, tokens=self.codec.issue_pair(user.id))

    def refresh(self, refresh_token, address: str | None = None) -> AuthResult:
        """Exchange a refresh token for a brand-new pair.

        The presented token is not recorded anywhere, so it stays nominally
        valid until its own expiry.
        """
        if not isinstance(refresh_token, str) or not refresh_token:
            raise ValidationFailed(message="Refresh token is required", details=["refreshToken is required"])

        limit_key = rate_limit_key(address=address)
        decision = self.limiter.hit(limits.REFRESH, limit_key)
        if not decision.allowed:
            log_auth_event("refresh", None, False, reason="rate_limited")
            raise RateLimited(decision.retry_after)

        result = self.codec.verify(refresh_token, REFRESH_TOKEN)
        if result.error is not None and result.error is not TokenError.EXPIRED:
            log_auth_event("refresh", None, False, reason=result.error.value)
            raise InvalidToken("Invalid refresh token")

        # Only forged or garbled tokens stay counted.
        self.limiter.release(limits.REFRESH, limit_key)
        if result.error is TokenError.EXPIRED:
            log_auth_event("refresh", result.subject_id, False, reason="expired")
            raise SessionExpired("Refresh token has expired, please login again")

        user = self._get_user_by_id(result.subject_id)
        if user is None:
            log_auth_event("refresh", result.subject_id, False, reason="user_not_found")
            raise InvalidToken("Invalid refresh token")

        log_auth_event("refresh", user.id, True)
        return AuthResult(user=user, tokens=self.codec.issue_pair(user.id))

    def authenticate(self, access_token) -> User:
        """Resolve the user behind an access token."""
        result = self.codec.verify(access_token, ACCESS_TOKEN)
        if result.error is TokenError.EXPIRED:
            raise SessionExpired("Access token has expired")
        if not result.ok:
            raise InvalidToken()

        user = self._get_user_by_id(result.subject_id)
        if user is None:
            raise InvalidToken()
        return user

    def change_password(self, user: User, current_password, new_password) -> None:
        """Replace the user's password after re-checking the current one.

        Tokens already issued keep working until they expire.
        """
        errors: list[str] = []
        if not isinstance(current_password, str) or current_password == "":
            errors.append("currentPassword is required")
        _validate_password_shape(new_password, errors, field="newPassword")
        if errors:
            raise ValidationFailed(message="Current password and new password are required", details=errors)

        limit_key = rate_limit_key(subject_id=user.id)
        decision = self.limiter.hit(limits.CHANGE_PASSWORD, limit_key)
        if not decision.allowed:
            log_auth_event("change_password", user.id, False, reason="rate_limited")
            raise RateLimited(decision.retry_after)

        if not self._verify(current_password, user.password_hash):
            log_auth_event("change_password", user.id, False, reason="invalid_current_password")
            raise InvalidPassword()
        self.limiter.release(limits.CHANGE_PASSWORD, limit_key)

        check = validate_password(new_password)
        if not check.is_valid:
            raise PolicyViolation(message="New password does not meet security requirements", details=check.messages)
        if new_password == current_password:
            raise PolicyViolation(details=[REUSED_PASSWORD_RULE.message])

        password_hash = self._hash(new_password)
        with self._record_store("change_password"):
            user.password_hash = password_hash
            self.db.commit()

        self.limiter.reset(limits.CHANGE_PASSWORD, limit_key)
        log_auth_event("change_password", user.id, True)

    def logout(self, user: User) -> None:
        """Advisory only: the client discards its tokens, nothing is revoked here."""
        log_auth_event("logout", user.id, True)
