# socialhub/platforms/instagram.py
from typing import Optional

from socialhub.db.models import Platform
from socialhub.errors import PublishPermanentError
from socialhub.platforms.base import PlatformAdapter, PlatformProfile, PostContent, PublishResult, TokenSet

AUTH_URL = "https://www.instagram.com/oauth/authorize"
TOKEN_URL = "https://api.instagram.com/oauth/access_token"
GRAPH_URL = "https://graph.instagram.com"
GRAPH_VERSIONED = f"{GRAPH_URL}/v21.0"


class InstagramAdapter(PlatformAdapter):
    """
    Instagram API with Instagram Login.

    Long-lived tokens are refreshed with themselves (``ig_refresh_token``), so the
    long-lived access token doubles as the stored refresh token.
    """

    platform = Platform.INSTAGRAM
    authorize_url = AUTH_URL
    scopes = ["instagram_business_basic", "instagram_business_content_publish"]
    scope_separator = ","
    max_length = 2200
    requires_media = True

    async def exchange_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        resp = await self._send(
            "POST",
            TOKEN_URL,
            data={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.credentials.redirect_uri,
                "code": code,
            },
        )
        short_lived = self._check_token_exchange(resp)["access_token"]
        resp = await self._send(
            "GET",
            f"{GRAPH_URL}/access_token",
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": self.credentials.client_secret,
                "access_token": short_lived,
            },
        )
        data = self._check_token_exchange(resp)
        return self._token_set(data, refresh_fallback=data["access_token"])

    async def refresh(self, refresh_token: str) -> TokenSet:
        resp = await self._send(
            "GET",
            f"{GRAPH_URL}/refresh_access_token",
            params={"grant_type": "ig_refresh_token", "access_token": refresh_token},
        )
        data = self._check_refresh(resp)
        return self._token_set(data, refresh_fallback=data["access_token"])

    async def revoke(self, access_token: str) -> None:
        # Instagram Login has no token revocation endpoint; removal happens in the app settings
        return None

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        resp = await self._send(
            "GET", f"{GRAPH_VERSIONED}/me", params={"fields": "user_id,username", "access_token": access_token}
        )
        user = self._check_publish(resp)
        username = user.get("username")
        return PlatformProfile(
            id=str(user.get("user_id") or user.get("id", "")),
            username=username,
            display_name=username,
            profile_url=f"https://instagram.com/{username}" if username else None,
        )

    async def publish(self, access_token: str, platform_id: str, content: PostContent) -> PublishResult:
        if not content.media_urls:
            raise PublishPermanentError("Instagram posts require an image")
        resp = await self._send(
            "POST",
            f"{GRAPH_VERSIONED}/{platform_id}/media",
            data={"image_url": content.media_urls[0], "caption": content.text, "access_token": access_token},
        )
        container_id = self._check_publish(resp).get("id")
        resp = await self._send(
            "POST",
            f"{GRAPH_VERSIONED}/{platform_id}/media_publish",
            data={"creation_id": container_id, "access_token": access_token},
        )
        media_id = str(self._check_publish(resp).get("id", ""))
        return PublishResult(external_id=media_id)
