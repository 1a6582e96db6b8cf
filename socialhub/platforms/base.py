"""
Common capability set every social platform adapter implements.

The connector and the publish scheduler only talk to ``PlatformAdapter``; the
concrete classes in this package translate the calls into each platform's
OAuth and publishing endpoints.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, quote

import httpx
from loguru import logger

from socialhub.config import PlatformCredentials
from socialhub.db.models import Platform
from socialhub.errors import (
    ConfigError,
    PublishPermanentError,
    PublishTransientError,
    RefreshFailedError,
    TokenExchangeError,
    TokenRejectedError,
)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scopes: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PlatformProfile:
    id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    profile_url: Optional[str] = None


@dataclass
class PostContent:
    text: str
    media_urls: List[str] = field(default_factory=list)


@dataclass
class PublishResult:
    external_id: str
    url: Optional[str] = None


class PlatformAdapter(ABC):
    platform: Platform
    authorize_url: str = ""
    scopes: List[str] = []
    scope_separator: str = " "
    max_length: int = 63206
    requires_media: bool = False
    uses_pkce: bool = False
    client_id_param: str = "client_id"

    def __init__(
        self,
        credentials: PlatformCredentials,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self._transport = transport

    def ensure_configured(self) -> None:
        if not self.credentials.configured:
            raise ConfigError(f"{self.platform.value} OAuth client credentials are not configured")

    # --- capability set ---------------------------------------------------

    def auth_url(self, state: str, code_challenge: Optional[str] = None) -> str:
        self.ensure_configured()
        params = {
            "response_type": "code",
            self.client_id_param: self.credentials.client_id,
            "redirect_uri": self.credentials.redirect_uri,
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
        }
        params.update(self.extra_auth_params(code_challenge))
        qs = urlencode(params, quote_via=quote, safe=":/")
        return f"{self.authorize_url}?{qs}"

    def extra_auth_params(self, code_challenge: Optional[str]) -> Dict[str, str]:
        return {}

    @classmethod
    def inline_media_length(cls, media_urls: Optional[List[str]]) -> int:
        """Characters ``publish`` appends to the text to carry media inline."""
        return 0

    @abstractmethod
    async def exchange_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        ...

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenSet:
        ...

    @abstractmethod
    async def revoke(self, access_token: str) -> None:
        ...

    @abstractmethod
    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        ...

    @abstractmethod
    async def publish(self, access_token: str, platform_id: str, content: PostContent) -> PublishResult:
        ...

    # --- HTTP helpers -------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=5),
            transport=self._transport,
        )

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """One outbound request; network trouble surfaces as a retryable error."""
        try:
            async with self._client() as c:
                resp = await c.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"[{self.platform.value}] timeout calling {url}: {e}")
            raise PublishTransientError(f"{self.platform.value} request timed out") from e
        except httpx.TransportError as e:
            logger.warning(f"[{self.platform.value}] transport error calling {url}: {e}")
            raise PublishTransientError(f"{self.platform.value} unreachable: {e}") from e
        return resp

    def _check_publish(self, resp: httpx.Response) -> Dict[str, Any]:
        """Classify a publish/profile response into success, retryable or permanent failure."""
        if resp.is_success:
            try:
                return resp.json()
            except ValueError:
                return {}
        detail = _error_detail(resp)
        if resp.status_code == 401:
            raise TokenRejectedError(f"{self.platform.value} rejected the access token: {detail}")
        if resp.status_code in RETRYABLE_STATUSES:
            raise PublishTransientError(
                f"{self.platform.value} API error ({resp.status_code}): {detail}",
                retry_after=_retry_after(resp),
            )
        raise PublishPermanentError(f"{self.platform.value} API error ({resp.status_code}): {detail}")

    def _check_token_exchange(self, resp: httpx.Response) -> Dict[str, Any]:
        if not resp.is_success:
            raise TokenExchangeError(
                f"{self.platform.value} token exchange failed ({resp.status_code}): {_error_detail(resp)}"
            )
        data = _json_object(resp)
        if data is None:
            raise TokenExchangeError(
                f"{self.platform.value} token response was not a JSON object: {resp.text[:120]}"
            )
        if not data.get("access_token"):
            raise TokenExchangeError(f"{self.platform.value} token response had no access_token")
        return data

    def _check_refresh(self, resp: httpx.Response) -> Dict[str, Any]:
        if resp.status_code in RETRYABLE_STATUSES:
            raise PublishTransientError(
                f"{self.platform.value} refresh unavailable ({resp.status_code})",
                retry_after=_retry_after(resp),
            )
        if not resp.is_success:
            raise RefreshFailedError(
                f"{self.platform.value} refresh rejected ({resp.status_code}): {_error_detail(resp)}"
            )
        data = _json_object(resp)
        if data is None:
            raise RefreshFailedError(
                f"{self.platform.value} refresh response was not a JSON object: {resp.text[:120]}"
            )
        if not data.get("access_token"):
            raise RefreshFailedError(f"{self.platform.value} refresh response had no access_token")
        return data

    def _token_set(self, data: Dict[str, Any], refresh_fallback: Optional[str] = None) -> TokenSet:
        scope = data.get("scope")
        if isinstance(scope, str):
            scopes = [s for s in scope.replace(",", " ").split() if s]
        else:
            scopes = list(self.scopes)
        expires_in = data.get("expires_in")
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_fallback,
            expires_in=int(expires_in) if expires_in else None,
            scopes=scopes,
            raw=data,
        )


def _retry_after(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _json_object(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        body = resp.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300]
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err.get("code") or err)
        return str(body.get("error_description") or body.get("message") or body.get("detail") or err or body)[:300]
    return str(body)[:300]
