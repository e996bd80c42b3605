"""HTTP command transport for the persistence backend bridge."""

import asyncio
import json
from pathlib import Path
from typing import Any

import requests
from loguru import logger

from workspace_tree.config import API_TOKEN_FILES, REQUEST_TIMEOUT_SECONDS, resolve_store_url
from workspace_tree.errors import TransportFailure


def read_token(paths: list[Path]) -> str | None:
    """Return the token from the first readable file, or None."""
    for token_path in paths:
        try:
            token = token_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            continue
        if token:
            logger.debug("Using store token from {!r}", str(token_path))
            return token
    return None


class HttpTransport:
    """Posts ``{command}`` requests to the backend bridge as JSON.

    The response body is the result envelope
    ``{"success": bool, "data": ..., "error": str, "code": str}``. Blocking
    requests run in a worker thread so the event loop keeps serving the UI.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = (base_url or resolve_store_url()).rstrip("/")
        self.timeout = timeout
        self.sess = requests.Session()
        self.sess.headers["Content-Type"] = "application/json"
        self.api_token = token if token is not None else read_token(API_TOKEN_FILES)
        if self.api_token:
            self.sess.headers["Authorization"] = f"Bearer {self.api_token}"
        logger.debug(f"HTTP transport ready: {self.base_url!r}, token {bool(self.api_token)!r}")

    def call(self, command: str, args: dict[str, Any]) -> dict[str, Any]:
        """Invoke a backend command synchronously, return the envelope."""
        logger.debug(f"Making request: {command!r} {repr(args)[:48]}")
        try:
            r = self.sess.post(
                f"{self.base_url}/{command}",
                json.dumps(args),
                timeout=self.timeout,
            )
            r.raise_for_status()
            rv: dict[str, Any] = r.json()
        except requests.RequestException as e:
            msg = f"Request {command!r} failed: {e}"
            raise TransportFailure(msg) from e
        except ValueError as e:
            msg = f"Request {command!r} returned invalid JSON: {e}"
            raise TransportFailure(msg) from e
        return rv

    async def invoke(self, command: str, args: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.call, command, args)

    def close(self) -> None:
        self.sess.close()
