"""Shared HTTP plumbing for the remote integration clients."""

import logging
import re
from typing import Any, Dict, Optional

import requests
from requests import Session

from ..sync.exceptions import IntegrationNotConfiguredError, RemoteApiError


logger = logging.getLogger(__name__)


def sanitize_token(token: Optional[str]) -> Optional[str]:
    """Strip characters that cannot appear in an HTTP header (pasted dashes and the like)."""
    if token is None:
        return None
    token = re.sub(r"[–—]", "-", token.strip())
    return token.encode("ascii", "ignore").decode("ascii") or None


class RemoteClient:
    """Blocking JSON-over-HTTP client with bearer token auth."""

    integration = "remote"
    accept = "application/json"

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: float = 20.0, session: Optional[Session] = None):
        """
        Args:
            base_url: API root without trailing slash
            token: Bearer token
            timeout: Per-request timeout in seconds
            session: Optional requests session (tests inject a mock)
        """
        self.base_url = (base_url or "").rstrip("/")
        self.token = sanitize_token(token)
        self.timeout = timeout
        self.session = session or Session()

    def is_configured(self) -> bool:
        return bool(self.token) and bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": self.accept,
        }

    def _request(self, url: str, params: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> requests.Response:
        """
        Perform a GET request.

        Raises:
            IntegrationNotConfiguredError: Without a token or base URL
            RemoteApiError: On network failures and non-2xx responses
        """
        if not self.is_configured():
            raise IntegrationNotConfiguredError(self.integration)

        try:
            response = self.session.get(
                url, params=params, headers=headers or self._headers(), timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RemoteApiError(self.integration, f"network error for {url}: {e}", url=url) from e

        if not response.ok:
            body = (response.text or "").strip()[:200]
            detail = f"{response.reason} - {body}" if body else f"{response.reason}"
            raise RemoteApiError(self.integration, detail, status_code=response.status_code, url=url)

        return response

    def get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._request(f"{self.base_url}{endpoint}", params=params)
        try:
            return response.json()
        except ValueError as e:
            raise RemoteApiError(
                self.integration, f"invalid JSON from {endpoint}: {e}", status_code=response.status_code
            ) from e

    def close(self) -> None:
        self.session.close()
