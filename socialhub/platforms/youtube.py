# socialhub/platforms/youtube.py
from typing import Dict, Optional

from socialhub.db.models import Platform
from socialhub.errors import PublishPermanentError
from socialhub.platforms.base import PlatformAdapter, PlatformProfile, PostContent, PublishResult, TokenSet

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"
UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"

FORM = {"Content-Type": "application/x-www-form-urlencoded"}


class YouTubeAdapter(PlatformAdapter):
    platform = Platform.YOUTUBE
    authorize_url = AUTH_URL
    scopes = [
        "https://www.googleapis.com/auth/youtube.upload",
        "https://www.googleapis.com/auth/youtube.readonly",
    ]
    max_length = 5000
    requires_media = True

    def extra_auth_params(self, code_challenge: Optional[str]) -> Dict[str, str]:
        # offline + consent so Google always returns a refresh token
        return {"access_type": "offline", "prompt": "consent", "include_granted_scopes": "true"}

    async def exchange_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        resp = await self._send(
            "POST",
            TOKEN_URL,
            data={
                "code": code,
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "redirect_uri": self.credentials.redirect_uri,
                "grant_type": "authorization_code",
            },
            headers=FORM,
        )
        return self._token_set(self._check_token_exchange(resp))

    async def refresh(self, refresh_token: str) -> TokenSet:
        resp = await self._send(
            "POST",
            TOKEN_URL,
            data={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            headers=FORM,
        )
        return self._token_set(self._check_refresh(resp), refresh_fallback=refresh_token)

    async def revoke(self, access_token: str) -> None:
        resp = await self._send("POST", REVOKE_URL, params={"token": access_token}, headers=FORM)
        self._check_publish(resp)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        resp = await self._send(
            "GET",
            CHANNELS_URL,
            params={"part": "snippet", "mine": "true"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        items = self._check_publish(resp).get("items") or []
        if not items:
            raise PublishPermanentError("Google account has no YouTube channel")
        channel = items[0]
        snippet = channel.get("snippet", {})
        handle = snippet.get("customUrl")
        return PlatformProfile(
            id=str(channel.get("id", "")),
            username=handle,
            display_name=snippet.get("title"),
            profile_url=f"https://www.youtube.com/channel/{channel.get('id')}",
        )

    async def publish(self, access_token: str, platform_id: str, content: PostContent) -> PublishResult:
        if not content.media_urls:
            raise PublishPermanentError("YouTube posts require a video")
        title = content.text.splitlines()[0][:100] if content.text else "Untitled"
        auth = {"Authorization": f"Bearer {access_token}"}

        # resumable upload: open a session, then stream the video bytes to it
        resp = await self._send(
            "POST",
            UPLOAD_URL,
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers={**auth, "Content-Type": "application/json; charset=UTF-8"},
            json={
                "snippet": {"title": title, "description": content.text},
                "status": {"privacyStatus": "private"},
            },
        )
        self._check_publish(resp)
        session_url = resp.headers.get("location")
        if not session_url:
            raise PublishPermanentError("YouTube did not return an upload session")

        media = await self._send("GET", content.media_urls[0])
        if not media.is_success:
            raise PublishPermanentError(f"Could not fetch video from {content.media_urls[0]} ({media.status_code})")

        resp = await self._send(
            "PUT",
            session_url,
            headers={**auth, "Content-Type": media.headers.get("content-type", "video/*")},
            content=media.content,
        )
        video_id = str(self._check_publish(resp).get("id", ""))
        return PublishResult(external_id=video_id, url=f"https://www.youtube.com/watch?v={video_id}")
