# socialhub/platforms/tiktok.py
from typing import Optional

from socialhub.db.models import Platform
from socialhub.errors import PublishPermanentError
from socialhub.platforms.base import PlatformAdapter, PlatformProfile, PostContent, PublishResult, TokenSet

AUTH_URL = "https://www.tiktok.com/v2/auth/authorize/"
API_URL = "https://open.tiktokapis.com/v2"

FORM = {"Content-Type": "application/x-www-form-urlencoded"}


class TikTokAdapter(PlatformAdapter):
    platform = Platform.TIKTOK
    authorize_url = AUTH_URL
    scopes = ["user.info.basic", "video.upload", "video.publish"]
    scope_separator = ","
    max_length = 2200
    requires_media = True
    client_id_param = "client_key"

    async def exchange_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        resp = await self._send(
            "POST",
            f"{API_URL}/oauth/token/",
            data={
                "client_key": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.credentials.redirect_uri,
            },
            headers=FORM,
        )
        return self._token_set(self._check_token_exchange(resp))

    async def refresh(self, refresh_token: str) -> TokenSet:
        resp = await self._send(
            "POST",
            f"{API_URL}/oauth/token/",
            data={
                "client_key": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            headers=FORM,
        )
        return self._token_set(self._check_refresh(resp), refresh_fallback=refresh_token)

    async def revoke(self, access_token: str) -> None:
        resp = await self._send(
            "POST",
            f"{API_URL}/oauth/revoke/",
            data={
                "client_key": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "token": access_token,
            },
            headers=FORM,
        )
        self._check_publish(resp)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        resp = await self._send(
            "GET",
            f"{API_URL}/user/info/",
            params={"fields": "open_id,union_id,display_name,username"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        user = self._check_publish(resp).get("data", {}).get("user", {})
        username = user.get("username")
        return PlatformProfile(
            id=str(user.get("open_id", "")),
            username=username,
            display_name=user.get("display_name"),
            profile_url=f"https://www.tiktok.com/@{username}" if username else None,
        )

    async def publish(self, access_token: str, platform_id: str, content: PostContent) -> PublishResult:
        if not content.media_urls:
            raise PublishPermanentError("TikTok posts require a video")
        payload = {
            "post_info": {"title": content.text, "privacy_level": "SELF_ONLY"},
            "source_info": {"source": "PULL_FROM_URL", "video_url": content.media_urls[0]},
        }
        resp = await self._send(
            "POST",
            f"{API_URL}/post/publish/video/init/",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json; charset=UTF-8",
            },
            json=payload,
        )
        data = self._check_publish(resp)
        return PublishResult(external_id=str(data.get("data", {}).get("publish_id", "")))
