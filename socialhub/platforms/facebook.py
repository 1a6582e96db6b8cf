# socialhub/platforms/facebook.py
from typing import Optional

from socialhub.db.models import Platform
from socialhub.errors import NotRefreshableError
from socialhub.platforms.base import PlatformAdapter, PlatformProfile, PostContent, PublishResult, TokenSet

API_VERSION = "v18.0"
AUTH_URL = f"https://www.facebook.com/{API_VERSION}/dialog/oauth"
GRAPH_URL = f"https://graph.facebook.com/{API_VERSION}"

# long-lived user tokens last ~60 days when the exchange omits expires_in
LONG_LIVED_DEFAULT_SECONDS = 5184000


class FacebookAdapter(PlatformAdapter):
    """
    Facebook Login. The short-lived code token is swapped for a long-lived one;
    there is no refresh token, so an expired account has to reconnect.
    """

    platform = Platform.FACEBOOK
    authorize_url = AUTH_URL
    scopes = ["public_profile", "pages_show_list", "pages_read_engagement", "pages_manage_posts"]
    scope_separator = ","
    max_length = 63206

    def extra_auth_params(self, code_challenge: Optional[str]):
        return {"auth_type": "rerequest"}

    async def exchange_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        resp = await self._send(
            "GET",
            f"{GRAPH_URL}/oauth/access_token",
            params={
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "redirect_uri": self.credentials.redirect_uri,
                "code": code,
            },
        )
        short_lived = self._check_token_exchange(resp)["access_token"]
        resp = await self._send(
            "GET",
            f"{GRAPH_URL}/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
                "fb_exchange_token": short_lived,
            },
        )
        data = self._check_token_exchange(resp)
        data.setdefault("expires_in", LONG_LIVED_DEFAULT_SECONDS)
        data.pop("refresh_token", None)
        return self._token_set(data)

    async def refresh(self, refresh_token: str) -> TokenSet:
        raise NotRefreshableError("Facebook tokens cannot be refreshed; reconnect the account")

    async def revoke(self, access_token: str) -> None:
        resp = await self._send("DELETE", f"{GRAPH_URL}/me/permissions", params={"access_token": access_token})
        self._check_publish(resp)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        resp = await self._send(
            "GET", f"{GRAPH_URL}/me", params={"fields": "id,name", "access_token": access_token}
        )
        user = self._check_publish(resp)
        uid = str(user.get("id", ""))
        return PlatformProfile(
            id=uid,
            display_name=user.get("name"),
            profile_url=f"https://facebook.com/{uid}" if uid else None,
        )

    async def publish(self, access_token: str, platform_id: str, content: PostContent) -> PublishResult:
        data = {"message": content.text, "access_token": access_token}
        if content.media_urls:
            data["link"] = content.media_urls[0]
        resp = await self._send("POST", f"{GRAPH_URL}/{platform_id}/feed", data=data)
        post_id = str(self._check_publish(resp).get("id", ""))
        return PublishResult(external_id=post_id, url=f"https://facebook.com/{post_id}")
