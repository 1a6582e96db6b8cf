# socialhub/platforms/twitter.py
import base64
from typing import Dict, List, Optional

from socialhub.db.models import Platform
from socialhub.platforms.base import PlatformAdapter, PlatformProfile, PostContent, PublishResult, TokenSet

AUTH_URL = "https://twitter.com/i/oauth2/authorize"
TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
REVOKE_URL = "https://api.twitter.com/2/oauth2/revoke"
ME_URL = "https://api.twitter.com/2/users/me"
TWEETS_URL = "https://api.twitter.com/2/tweets"

# every link is counted as a t.co URL of this length
TCO_URL_LENGTH = 23


class TwitterAdapter(PlatformAdapter):
    """OAuth 2.0 with PKCE; the code verifier travels with the stored OAuth state."""

    platform = Platform.TWITTER
    authorize_url = AUTH_URL
    scopes = ["tweet.read", "tweet.write", "users.read", "offline.access"]
    max_length = 280
    uses_pkce = True

    def extra_auth_params(self, code_challenge: Optional[str]) -> Dict[str, str]:
        if not code_challenge:
            return {}
        return {"code_challenge": code_challenge, "code_challenge_method": "S256"}

    @classmethod
    def inline_media_length(cls, media_urls: Optional[List[str]]) -> int:
        if not media_urls:
            return 0
        # space plus the link; a raw URL longer than t.co is budgeted at its own length
        return 1 + max(TCO_URL_LENGTH, len(media_urls[0]))

    def _basic_auth(self) -> Dict[str, str]:
        raw = f"{self.credentials.client_id}:{self.credentials.client_secret}".encode()
        return {
            "Authorization": f"Basic {base64.b64encode(raw).decode()}",
            "Content-Type": "application/x-www-form-urlencoded",
        }

    async def exchange_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.credentials.redirect_uri,
            "code_verifier": code_verifier or "",
        }
        resp = await self._send("POST", TOKEN_URL, data=data, headers=self._basic_auth())
        return self._token_set(self._check_token_exchange(resp))

    async def refresh(self, refresh_token: str) -> TokenSet:
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        resp = await self._send("POST", TOKEN_URL, data=data, headers=self._basic_auth())
        return self._token_set(self._check_refresh(resp))

    async def revoke(self, access_token: str) -> None:
        resp = await self._send(
            "POST",
            REVOKE_URL,
            data={"token": access_token, "token_type_hint": "access_token"},
            headers=self._basic_auth(),
        )
        self._check_publish(resp)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        resp = await self._send("GET", ME_URL, headers={"Authorization": f"Bearer {access_token}"})
        user = self._check_publish(resp).get("data", {})
        username = user.get("username")
        return PlatformProfile(
            id=str(user.get("id", "")),
            username=username,
            display_name=user.get("name"),
            profile_url=f"https://twitter.com/{username}" if username else None,
        )

    async def publish(self, access_token: str, platform_id: str, content: PostContent) -> PublishResult:
        # media attachments need the v1.1 upload flow; URLs are posted inline instead
        text = content.text
        if content.media_urls:
            text = f"{text} {content.media_urls[0]}".strip()
        resp = await self._send(
            "POST",
            TWEETS_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            json={"text": text},
        )
        tweet_id = str(self._check_publish(resp).get("data", {}).get("id", ""))
        return PublishResult(external_id=tweet_id, url=f"https://twitter.com/i/web/status/{tweet_id}")
