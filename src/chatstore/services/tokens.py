"""Access token providers.

Token acquisition (service-account JWT exchange, metadata server, ...) is owned
by the host application. The executor only needs something it can await for a
bearer token before each request.
"""

from typing import Protocol


class AccessTokenProvider(Protocol):
    async def get_token(self) -> str: ...


class StaticTokenProvider:
    """Returns a fixed token. Used by the CLI and tests."""

    def __init__(self, token: str) -> None:
        if not token or not token.strip():
            raise ValueError("access token cannot be empty")
        self._token = token.strip()

    async def get_token(self) -> str:
        return self._token
