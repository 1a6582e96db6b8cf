import asyncio
import os
from typing import List, Optional

import pytest

# configure before anything imports socialhub.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FERNET_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ.setdefault("FACEBOOK_CLIENT_ID", "fb-client")
os.environ.setdefault("FACEBOOK_CLIENT_SECRET", "fb-secret")
os.environ.setdefault("TWITTER_CLIENT_ID", "tw-client")
os.environ.setdefault("TWITTER_CLIENT_SECRET", "tw-secret")

from socialhub.config import PlatformCredentials  # noqa: E402
from socialhub.db import crud_accounts  # noqa: E402
from socialhub.db.base import Base, SessionLocal, engine  # noqa: E402
from socialhub.db.models import AccountStatus, Platform  # noqa: E402
from socialhub.platforms.base import (  # noqa: E402
    PlatformAdapter, PlatformProfile, PostContent, PublishResult, TokenSet,
)
from socialhub.platforms.registry import ADAPTERS  # noqa: E402
from socialhub.services.oauth_connector import OAuthConnector  # noqa: E402
from socialhub.services.publisher import PublishScheduler  # noqa: E402
from socialhub.services.retry import RetryPolicy  # noqa: E402
from socialhub.services.single_flight import KeyedLock, SingleFlight  # noqa: E402


class FakeAdapter(PlatformAdapter):
    """In-memory platform: records every call, scripted publish outcomes."""

    authorize_url = "https://auth.example.test/oauth"
    scopes = ["read", "write"]

    def __init__(self, platform: Platform, uses_pkce: bool = False):
        super().__init__(PlatformCredentials("client", "secret", "http://localhost/cb"))
        real = ADAPTERS[platform]
        self.platform = platform
        self.max_length = real.max_length
        self.requires_media = real.requires_media
        self.uses_pkce = uses_pkce

        self.profile_id = f"{platform.value.lower()}-123"
        self.issue_refresh_token: Optional[str] = "refresh-1"
        self.expires_in: Optional[int] = 3600
        self.exchanges: List[tuple] = []

        self.refresh_calls = 0
        self.refresh_delay = 0.0
        self.refresh_error: Optional[Exception] = None

        self.revoked: List[str] = []
        self.revoke_error: Optional[Exception] = None

        # each publish pops one outcome: an exception to raise, or None for success
        self.outcomes: List[Optional[Exception]] = []
        self.published: List[tuple] = []

    def extra_auth_params(self, code_challenge):
        if not code_challenge:
            return {}
        return {"code_challenge": code_challenge, "code_challenge_method": "S256"}

    async def exchange_token(self, code, code_verifier=None):
        self.exchanges.append((code, code_verifier))
        return TokenSet(
            access_token=f"access-{code}",
            refresh_token=self.issue_refresh_token,
            expires_in=self.expires_in,
            scopes=list(self.scopes),
        )

    async def refresh(self, refresh_token):
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        return TokenSet(access_token=f"access-refreshed-{self.refresh_calls}", expires_in=3600)

    async def revoke(self, access_token):
        if self.revoke_error:
            raise self.revoke_error
        self.revoked.append(access_token)

    async def fetch_profile(self, access_token):
        return PlatformProfile(id=self.profile_id, username="someone", display_name="Some One")

    async def publish(self, access_token, platform_id, content: PostContent):
        self.published.append((access_token, platform_id, content))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome
        n = len(self.published)
        return PublishResult(external_id=f"{self.platform.value.lower()}-post-{n}", url=f"https://example.test/{n}")


class Sleeper:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def adapters():
    return {p: FakeAdapter(p, uses_pkce=(p == Platform.TWITTER)) for p in Platform}


@pytest.fixture
def connector(db, adapters):
    return OAuthConnector(db, adapters=adapters, flights=SingleFlight(), locks=KeyedLock())


@pytest.fixture
def sleeper():
    return Sleeper()


@pytest.fixture
def publisher(db, connector, sleeper):
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0)
    return PublishScheduler(db, connector, retry_policy=policy, sleep=sleeper)


@pytest.fixture
def make_account(db):
    def _make(
        platform: Platform,
        user_id: str = "user-1",
        refresh_token: Optional[str] = "refresh-1",
        expires_in: Optional[int] = 3600,
        status: AccountStatus = AccountStatus.ACTIVE,
        platform_id: Optional[str] = None,
    ):
        acct = crud_accounts.upsert_account(
            db,
            user_id=user_id,
            platform=platform,
            profile=PlatformProfile(id=platform_id or f"{platform.value.lower()}-{user_id}"),
            access_token=f"access-{platform.value.lower()}",
            refresh_token=refresh_token,
            expires_in=expires_in,
            scopes=[],
        )
        if status != AccountStatus.ACTIVE:
            acct = crud_accounts.set_status(db, acct, status)
        return acct
    return _make
