"""Signed access/refresh token issuance and verification.

Tokens are self-contained JWTs: ``sub`` (user id), ``type`` (``access`` or
``refresh``), ``iat``, ``exp`` and a random ``jti``. Nothing is stored
server-side, so a token stays usable until ``exp`` even after logout or
rotation.

Verification never raises; it returns a :class:`TokenVerification` whose
``error`` names the first failed check, in this order: structure, signature,
required claims, type, expiry.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
import enum
import uuid

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from app.config import Settings

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


class TokenError(str, enum.Enum):
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"
    TYPE_MISMATCH = "type_mismatch"


@dataclass(frozen=True)
class TokenVerification:
    subject_id: str | None = None
    claims: dict = field(default_factory=dict)
    error: TokenError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds


def _timestamp(now: datetime | None) -> int:
    if now is None:
        now = datetime.now(timezone.utc)
    return int(now.timestamp())


class TokenCodec:
    """Issues and verifies tokens signed with a shared secret."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            secret_key=settings.secret_key,
            algorithm=settings.algorithm,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
        )

    def issue(self, subject_id: str, token_type: str, ttl_seconds: int, now: datetime | None = None) -> str:
        """Create a signed token for ``subject_id`` valid for ``ttl_seconds``."""
        issued_at = _timestamp(now)
        claims = {
            "sub": str(subject_id),
            "type": token_type,
            "iat": issued_at,
            "exp": issued_at + ttl_seconds,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def issue_pair(self, subject_id: str, now: datetime | None = None) -> TokenPair:
        """Create a fresh access + refresh pair for one subject."""
        return TokenPair(
            access_token=self.issue(subject_id, ACCESS_TOKEN, self.access_ttl_seconds, now),
            refresh_token=self.issue(subject_id, REFRESH_TOKEN, self.refresh_ttl_seconds, now),
            expires_in=self.access_ttl_seconds,
        )

    def verify(self, token: str, expected_type: str, now: datetime | None = None) -> TokenVerification:
        """Check a token and return the subject id or the reason it was rejected."""
        if not isinstance(token, str) or not token:
            return TokenVerification(error=TokenError.MALFORMED)

        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError:
            return TokenVerification(error=TokenError.MALFORMED)

        try:
            # Expiry is checked below against the caller's clock.
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTClaimsError:
            return TokenVerification(error=TokenError.MALFORMED)
        except JWTError:
            return TokenVerification(error=TokenError.SIGNATURE_INVALID)

        subject_id = claims.get("sub")
        token_type = claims.get("type")
        expires_at = claims.get("exp")
        if (
            not isinstance(subject_id, str)
            or not subject_id
            or not isinstance(token_type, str)
            or not isinstance(expires_at, int)
            or isinstance(expires_at, bool)
        ):
            return TokenVerification(claims=claims, error=TokenError.MALFORMED)

        if token_type != expected_type:
            return TokenVerification(subject_id=subject_id, claims=claims, error=TokenError.TYPE_MISMATCH)

        if _timestamp(now) >= expires_at:
            return TokenVerification(subject_id=subject_id, claims=claims, error=TokenError.EXPIRED)

        return TokenVerification(subject_id=subject_id, claims=claims)
