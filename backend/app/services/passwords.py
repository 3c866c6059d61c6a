"""Password hashing and verification."""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
import logging
import threading

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt ignores (or, in newer releases, rejects) input past this many bytes
BCRYPT_MAX_PASSWORD_BYTES = 72

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="bcrypt")


class HashingTimeout(TimeoutError):
    """Raised when a hash or verify call does not finish within the deadline."""


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with a freshly generated salt."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash; malformed hashes never match."""
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except (ValueError, TypeError, AttributeError):
        logger.warning("Stored password hash could not be parsed")
        return False


class CredentialHasher:
    """Runs bcrypt on a bounded worker pool with a caller-visible deadline."""

    def __init__(self, rounds: int = 12, timeout_seconds: float = 5.0):
        self.rounds = rounds
        self.timeout_seconds = timeout_seconds
        self._dummy_hash: str | None = None
        self._dummy_lock = threading.Lock()

    def _run(self, fn, *args):
        future = _executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            raise HashingTimeout(f"{fn.__name__} exceeded {self.timeout_seconds}s") from exc

    def hash(self, password: str) -> str:
        return self._run(hash_password, password, self.rounds)

    def verify(self, password: str, hashed_password: str) -> bool:
        return self._run(verify_password, password, hashed_password)

    def verify_dummy(self, password: str) -> bool:
        """Spend the same work as a real verify when there is no stored hash."""
        with self._dummy_lock:
            if self._dummy_hash is None:
                self._dummy_hash = hash_password("dummy-password-for-timing", self.rounds)
        self.verify(password, self._dummy_hash)
        return False
