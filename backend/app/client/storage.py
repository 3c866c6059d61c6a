"""Client-local token persistence."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "authToken"
REFRESH_TOKEN_KEY = "refreshToken"


@dataclass(frozen=True)
class StoredTokens:
    access_token: str | None = None
    refresh_token: str | None = None


class TokenStore(ABC):
    """Holds the access and refresh token under fixed key names."""

    @abstractmethod
    def load(self) -> StoredTokens:
        ...

    @abstractmethod
    def save(self, access_token: str, refresh_token: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryTokenStore(TokenStore):
    def __init__(self, access_token: str | None = None, refresh_token: str | None = None):
        self._values: dict[str, str] = {}
        if access_token:
            self._values[ACCESS_TOKEN_KEY] = access_token
        if refresh_token:
            self._values[REFRESH_TOKEN_KEY] = refresh_token

    def load(self) -> StoredTokens:
        return StoredTokens(
            access_token=self._values.get(ACCESS_TOKEN_KEY),
            refresh_token=self._values.get(REFRESH_TOKEN_KEY),
        )

    def save(self, access_token: str, refresh_token: str) -> None:
        self._values[ACCESS_TOKEN_KEY] = access_token
        self._values[REFRESH_TOKEN_KEY] = refresh_token

    def clear(self) -> None:
        self._values.pop(ACCESS_TOKEN_KEY, None)
        self._values.pop(REFRESH_TOKEN_KEY, None)


class FileTokenStore(TokenStore):
    """Keeps tokens in a JSON file readable only by the current user."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> StoredTokens:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return StoredTokens()
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable token file {self.path}: {e}")
            return StoredTokens()
        if not isinstance(data, dict):
            return StoredTokens()
        return StoredTokens(
            access_token=data.get(ACCESS_TOKEN_KEY) or None,
            refresh_token=data.get(REFRESH_TOKEN_KEY) or None,
        )

    def save(self, access_token: str, refresh_token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({ACCESS_TOKEN_KEY: access_token, REFRESH_TOKEN_KEY: refresh_token}, f)
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
