"""Python client for the AIStory API."""
from aistory.client.api_client import ApiClient, ApiError, AuthExpiredError, parse_api_error
from aistory.client.config import ApiClientConfig, normalize_base_url
from aistory.client.token_store import (
    FileTokenStore, MemoryTokenStore, StoredAuth, TokenStore, select_token_store,
)

__all__ = [
    "ApiClient",
    "ApiClientConfig",
    "ApiError",
    "AuthExpiredError",
    "FileTokenStore",
    "MemoryTokenStore",
    "StoredAuth",
    "TokenStore",
    "normalize_base_url",
    "parse_api_error",
    "select_token_store",
]
