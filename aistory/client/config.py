"""Client configuration, owned by whoever builds the ApiClient."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_BASE_URL = "http://localhost:3000/v1"
DEFAULT_TIMEOUT = 12.0


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes and make sure the URL ends in /v1."""
    value = (url or "").strip() or DEFAULT_BASE_URL
    value = value.rstrip("/")
    return value if value.endswith("/v1") else f"{value}/v1"


@dataclass(frozen=True)
class ApiClientConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = "AIStory-Python/1.0"
    headers: dict = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "base_url", normalize_base_url(self.base_url))

    @classmethod
    def from_env(cls) -> "ApiClientConfig":
        return cls(
            base_url=os.getenv("AISTORY_API_BASE_URL", DEFAULT_BASE_URL),
            timeout=float(os.getenv("AISTORY_API_TIMEOUT", str(DEFAULT_TIMEOUT))),
        )
