"""Where the client keeps its tokens.

``TokenStore`` is the one capability the client needs (get / set / clear).
Pick an implementation once at startup with ``select_token_store``.
"""
from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class StoredAuth:
    access_token: str
    refresh_token: str
    user: dict = field(default_factory=dict)

    @classmethod
    def from_auth_result(cls, data: dict) -> "StoredAuth":
        return cls(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
            user=data.get("user") or {},
        )


class TokenStore(ABC):
    @abstractmethod
    async def get(self) -> Optional[StoredAuth]:
        ...

    @abstractmethod
    async def set(self, auth: StoredAuth) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...


class MemoryTokenStore(TokenStore):
    """Process-local storage; tokens are gone when the process exits."""

    def __init__(self, auth: Optional[StoredAuth] = None):
        self._auth = auth

    async def get(self) -> Optional[StoredAuth]:
        return self._auth

    async def set(self, auth: StoredAuth) -> None:
        self._auth = auth

    async def clear(self) -> None:
        self._auth = None


class FileTokenStore(TokenStore):
    """JSON file readable only by the current user (mode 0600)."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path).expanduser()

    async def get(self) -> Optional[StoredAuth]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return StoredAuth(**data)
        except (ValueError, TypeError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", self.path, e)
            return None

    async def set(self, auth: StoredAuth) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(asdict(auth), f, ensure_ascii=False)

    async def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def select_token_store(path: Optional[str] = None) -> TokenStore:
    """File-backed when a path is given (or AISTORY_TOKEN_FILE is set), else in-memory."""
    path = path or os.getenv("AISTORY_TOKEN_FILE")
    return FileTokenStore(path) if path else MemoryTokenStore()
