# socialhub/platforms/linkedin.py
from typing import Optional

from loguru import logger

from socialhub.db.models import Platform
from socialhub.platforms.base import PlatformAdapter, PlatformProfile, PostContent, PublishResult, TokenSet

AUTH_URL  = "https://www.linkedin.com/oauth/v2/authorization"
TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
REVOKE_URL = "https://www.linkedin.com/oauth/v2/revoke"
UGC_URL   = "https://api.linkedin.com/v2/ugcPosts"
USERINFO_URL = "https://api.linkedin.com/v2/userinfo"

FORM = {"Content-Type": "application/x-www-form-urlencoded"}


# Helper: log request id if present in LinkedIn response
def log_request_id(resp):
    req_id = resp.headers.get("x-restli-request-id")
    if req_id:
        logger.debug(f"[LinkedIn] request id: {req_id}")


class LinkedInAdapter(PlatformAdapter):
    platform = Platform.LINKEDIN
    authorize_url = AUTH_URL
    # OpenID scopes; the OpenID sub is the member id we post as
    scopes = ["openid", "profile", "email", "w_member_social"]
    max_length = 3000

    async def exchange_token(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.credentials.redirect_uri,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
        }
        resp = await self._send("POST", TOKEN_URL, data=data, headers=FORM)
        log_request_id(resp)
        return self._token_set(self._check_token_exchange(resp))

    async def refresh(self, refresh_token: str) -> TokenSet:
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
        }
        resp = await self._send("POST", TOKEN_URL, data=payload, headers=FORM)
        log_request_id(resp)
        return self._token_set(self._check_refresh(resp), refresh_fallback=refresh_token)

    async def revoke(self, access_token: str) -> None:
        resp = await self._send(
            "POST",
            REVOKE_URL,
            data={
                "token": access_token,
                "client_id": self.credentials.client_id,
                "client_secret": self.credentials.client_secret,
            },
            headers=FORM,
        )
        self._check_publish(resp)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        resp = await self._send("GET", USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        log_request_id(resp)
        data = self._check_publish(resp)
        sub = data.get("sub", "")
        if not sub:
            logger.warning(f"[LinkedIn] no 'sub' in userinfo payload keys={sorted(data)}")
        return PlatformProfile(
            id=sub,
            username=data.get("email"),
            display_name=data.get("name"),
            profile_url=f"https://www.linkedin.com/in/{sub}" if sub else None,
        )

    async def publish(self, access_token: str, platform_id: str, content: PostContent) -> PublishResult:
        author_urn = platform_id if platform_id.startswith("urn:li:") else f"urn:li:person:{platform_id}"
        share = {
            "shareCommentary": {"text": content.text},
            "shareMediaCategory": "NONE",
        }
        if content.media_urls:
            share["shareMediaCategory"] = "ARTICLE"
            share["media"] = [{"status": "READY", "originalUrl": content.media_urls[0]}]
        payload = {
            "author": author_urn,
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": share},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        resp = await self._send(
            "POST",
            UGC_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "X-Restli-Protocol-Version": "2.0.0",
            },
            json=payload,
        )
        log_request_id(resp)
        data = self._check_publish(resp)
        post_id = resp.headers.get("x-restli-id") or data.get("id", "")
        return PublishResult(external_id=post_id, url=f"https://www.linkedin.com/feed/update/{post_id}")
