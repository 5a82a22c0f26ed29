"""
Token acquisition for the Microsoft APIs.

Uses the OAuth2 client-credentials grant against Entra ID. Tokens are cached
per scope and refreshed shortly before they expire. AzureTokenAuth plugs the
provider into httpx so collectors never deal with Authorization headers.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generator

import httpx

from m365_exporter.errors import AuthError

log = logging.getLogger(__name__)

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"

# Hosts that get a bearer token scoped to themselves
TOKEN_HOSTS = ("graph.microsoft.com", "management.azure.com", "outlook.office365.com")

# Refresh this many seconds before the token actually expires
EXPIRY_MARGIN = 60.0


@dataclass
class _CachedToken:
    value: str
    expires_at: float


class TokenProvider:

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        client: httpx.Client,
        clock: Callable[[], float] = time.time,
    ):
        self._token_url = TOKEN_URL.format(tenant=tenant_id)
        self._client_id = client_id
        self._client_secret = client_secret
        self._client = client
        self._clock = clock
        self._cache: Dict[str, _CachedToken] = {}
        self._lock = threading.Lock()

    def get_token(self, scope: str) -> str:
        with self._lock:
            cached = self._cache.get(scope)
            if cached and cached.expires_at - EXPIRY_MARGIN > self._clock():
                return cached.value

            token = self._request_token(scope)
            self._cache[scope] = token
            return token.value

    def _request_token(self, scope: str) -> _CachedToken:
        log.debug("requesting token for scope %s", scope)
        try:
            response = self._client.post(
                self._token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "scope": scope,
                },
            )
        except httpx.HTTPError as e:
            raise AuthError(f"getting token for {scope}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code != 200:
            detail = payload.get("error_description") or payload.get("error") or response.text
            raise AuthError(f"getting token for {scope}: status {response.status_code}: {detail}")

        access_token = payload.get("access_token")
        if not access_token:
            raise AuthError(f"getting token for {scope}: response did not contain an access token")

        expires_in = float(payload.get("expires_in", 3600))
        return _CachedToken(value=access_token, expires_at=self._clock() + expires_in)


def needs_token(host: str) -> bool:
    return host in TOKEN_HOSTS or host.endswith("-admin.sharepoint.com")


class AzureTokenAuth(httpx.Auth):
    """Attach a bearer token for the Microsoft API hosts, pass everything else through."""

    def __init__(self, provider: TokenProvider):
        self._provider = provider

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        host = request.url.host
        if needs_token(host):
            token = self._provider.get_token(f"https://{host}/.default")
            request.headers["Authorization"] = f"Bearer {token}"
        yield request
