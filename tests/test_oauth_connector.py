import asyncio
import base64
import hashlib
import threading
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from socialhub.config import PlatformCredentials, Settings
from socialhub.db import crud_accounts, crud_states, token_crypto
from socialhub.db.base import SessionLocal
from socialhub.db.models import AccountStatus, Platform
from socialhub.db.time import utcnow
from socialhub.errors import (
    AccountInactiveError,
    ConfigError,
    InvalidStateError,
    NotFoundError,
    NotRefreshableError,
    PublishTransientError,
    RefreshFailedError,
    TokenExchangeError,
)
from socialhub.platforms.linkedin import LinkedInAdapter
from socialhub.services.oauth_connector import OAuthConnector
from socialhub.services.single_flight import KeyedLock, SingleFlight


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def _connect(connector, platform=Platform.FACEBOOK, user_id="user-1", code="abc"):
    url = connector.initiate_connect(user_id, platform)
    state = _state_from(url)
    return asyncio.run(connector.handle_callback(platform, code, state))


# --- connect flow -----------------------------------------------------------

def test_facebook_connect_creates_active_account(connector, adapters, db):
    url = connector.initiate_connect("user-1", "facebook")
    assert url.startswith("https://auth.example.test/oauth?")
    state = _state_from(url)

    acct = asyncio.run(connector.handle_callback("facebook", "abc", state))

    assert acct.status == AccountStatus.ACTIVE
    assert acct.platform == Platform.FACEBOOK
    assert acct.platform_id == "facebook-123"
    assert acct.user_id == "user-1"
    assert acct.token_expiry is not None
    # tokens are stored encrypted
    assert acct.access_token_encrypted != "access-abc"
    assert token_crypto.decrypt_token(acct.access_token_encrypted) == "access-abc"
    assert adapters[Platform.FACEBOOK].exchanges == [("abc", None)]


def test_state_is_single_use(connector):
    url = connector.initiate_connect("user-1", Platform.FACEBOOK)
    state = _state_from(url)
    asyncio.run(connector.handle_callback(Platform.FACEBOOK, "abc", state))

    with pytest.raises(InvalidStateError):
        asyncio.run(connector.handle_callback(Platform.FACEBOOK, "abc", state))


def test_callback_with_html_token_response(db):
    def handler(request):
        return httpx.Response(200, text="<html>Sign in again</html>")

    linkedin = LinkedInAdapter(
        PlatformCredentials("cid", "csecret", "http://localhost/cb"), transport=httpx.MockTransport(handler)
    )
    connector = OAuthConnector(db, adapters={Platform.LINKEDIN: linkedin}, flights=SingleFlight(), locks=KeyedLock())
    state = _state_from(connector.initiate_connect("user-1", Platform.LINKEDIN))

    with pytest.raises(TokenExchangeError):
        asyncio.run(connector.handle_callback(Platform.LINKEDIN, "abc", state))
    assert connector.list_accounts("user-1") == []


def test_state_is_stored_hashed(connector, db):
    state = _state_from(connector.initiate_connect("user-1", Platform.FACEBOOK))
    row = crud_states.find_state(db, state)
    assert row is not None
    assert row.state_hash != state
    assert row.state_hash == hashlib.sha256(state.encode()).hexdigest()


def test_expired_state_is_rejected_and_consumed(db, adapters):
    issued = utcnow()
    early = OAuthConnector(db, adapters=adapters, flights=SingleFlight(), now=lambda: issued)
    state = _state_from(early.initiate_connect("user-1", Platform.FACEBOOK))

    late = OAuthConnector(db, adapters=adapters, flights=SingleFlight(), now=lambda: issued + timedelta(seconds=601))
    with pytest.raises(InvalidStateError):
        asyncio.run(late.handle_callback(Platform.FACEBOOK, "abc", state))
    assert crud_states.find_state(db, state) is None
    assert adapters[Platform.FACEBOOK].exchanges == []


def test_state_for_other_platform_is_rejected_without_consuming(connector, db):
    state = _state_from(connector.initiate_connect("user-1", Platform.FACEBOOK))

    with pytest.raises(InvalidStateError):
        asyncio.run(connector.handle_callback(Platform.TWITTER, "abc", state))
    assert crud_states.find_state(db, state) is not None


def test_unknown_state_is_rejected(connector):
    with pytest.raises(InvalidStateError):
        asyncio.run(connector.handle_callback(Platform.FACEBOOK, "abc", "not-a-real-state"))


def test_missing_code_fails_token_exchange(connector):
    state = _state_from(connector.initiate_connect("user-1", Platform.FACEBOOK))
    with pytest.raises(TokenExchangeError):
        asyncio.run(connector.handle_callback(Platform.FACEBOOK, None, state))


def test_twitter_connect_uses_pkce(connector, adapters):
    url = connector.initiate_connect("user-1", Platform.TWITTER)
    query = parse_qs(urlparse(url).query)
    assert query["code_challenge_method"] == ["S256"]

    asyncio.run(connector.handle_callback(Platform.TWITTER, "xyz", query["state"][0]))

    code, verifier = adapters[Platform.TWITTER].exchanges[0]
    assert code == "xyz"
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=").decode()
    assert query["code_challenge"] == [expected]


def test_profile_failure_surfaces_as_token_exchange_error(connector, adapters):
    async def broken_profile(access_token):
        raise PublishTransientError("graph api down")

    adapters[Platform.FACEBOOK].fetch_profile = broken_profile
    state = _state_from(connector.initiate_connect("user-1", Platform.FACEBOOK))
    with pytest.raises(TokenExchangeError):
        asyncio.run(connector.handle_callback(Platform.FACEBOOK, "abc", state))


def test_reconnect_reactivates_same_account(connector, db):
    first = _connect(connector)
    asyncio.run(connector.disconnect(first.id))

    again = _connect(connector, code="def")
    assert again.id == first.id
    assert again.status == AccountStatus.ACTIVE
    assert len(connector.list_accounts("user-1")) == 1


def test_unconfigured_platform_raises_config_error(db):
    cfg = Settings()
    cfg.tiktok_client_id = ""
    connector = OAuthConnector(db, settings=cfg, flights=SingleFlight())
    with pytest.raises(ConfigError):
        connector.initiate_connect("user-1", "tiktok")


# --- token lifecycle --------------------------------------------------------

def test_concurrent_ensure_valid_token_refreshes_once(connector, adapters, make_account):
    acct = make_account(Platform.LINKEDIN, expires_in=60)
    adapters[Platform.LINKEDIN].refresh_delay = 0.05

    async def both():
        return await asyncio.gather(connector.ensure_valid_token(acct.id), connector.ensure_valid_token(acct.id))

    tokens = asyncio.run(both())

    assert adapters[Platform.LINKEDIN].refresh_calls == 1
    assert tokens == ["access-refreshed-1", "access-refreshed-1"]


def test_refresh_shared_between_server_and_poller_loops(db, adapters, make_account):
    acct = make_account(Platform.LINKEDIN, expires_in=60)
    linkedin = adapters[Platform.LINKEDIN]
    linkedin.refresh_delay = 0.2
    flights, locks = SingleFlight(), KeyedLock()
    started = threading.Event()
    fake_refresh = linkedin.refresh

    async def refresh_and_signal(refresh_token):
        started.set()
        return await fake_refresh(refresh_token)

    linkedin.refresh = refresh_and_signal
    tokens = {}

    def poller_thread():
        session = SessionLocal()
        try:
            worker = OAuthConnector(session, adapters=adapters, flights=flights, locks=locks)
            tokens["poller"] = asyncio.run(worker.ensure_valid_token(acct.id))
        finally:
            session.close()

    t = threading.Thread(target=poller_thread)
    t.start()
    assert started.wait(2)
    server = OAuthConnector(db, adapters=adapters, flights=flights, locks=locks)
    tokens["server"] = asyncio.run(server.ensure_valid_token(acct.id))
    t.join(5)

    assert linkedin.refresh_calls == 1
    assert tokens == {"poller": "access-refreshed-1", "server": "access-refreshed-1"}


def test_sequential_calls_reuse_refreshed_token(connector, adapters, make_account):
    acct = make_account(Platform.LINKEDIN, expires_in=60)

    first = asyncio.run(connector.ensure_valid_token(acct.id))
    second = asyncio.run(connector.ensure_valid_token(acct.id))

    assert first == second == "access-refreshed-1"
    assert adapters[Platform.LINKEDIN].refresh_calls == 1


def test_fresh_token_is_returned_without_refresh(connector, adapters, make_account):
    acct = make_account(Platform.LINKEDIN, expires_in=3600)
    assert asyncio.run(connector.ensure_valid_token(acct.id)) == "access-linkedin"
    assert adapters[Platform.LINKEDIN].refresh_calls == 0


def test_refresh_keeps_existing_refresh_token(connector, db, make_account):
    acct = make_account(Platform.LINKEDIN, refresh_token="keep-me")
    refreshed = asyncio.run(connector.refresh_token(acct.id))
    assert token_crypto.decrypt_token(refreshed.refresh_token_encrypted) == "keep-me"
    assert token_crypto.decrypt_token(refreshed.access_token_encrypted) == "access-refreshed-1"


def test_rejected_refresh_marks_account_expired(connector, adapters, db, make_account):
    acct = make_account(Platform.LINKEDIN, expires_in=60)
    adapters[Platform.LINKEDIN].refresh_error = RefreshFailedError("invalid_grant")

    with pytest.raises(RefreshFailedError):
        asyncio.run(connector.ensure_valid_token(acct.id))

    row = crud_accounts.get_account(db, acct.id)
    assert row.status == AccountStatus.EXPIRED
    assert row.last_error == "invalid_grant"


def test_transient_refresh_failure_leaves_status_alone(connector, adapters, db, make_account):
    acct = make_account(Platform.LINKEDIN, expires_in=60)
    adapters[Platform.LINKEDIN].refresh_error = PublishTransientError("503")

    with pytest.raises(PublishTransientError):
        asyncio.run(connector.refresh_token(acct.id))
    assert crud_accounts.get_account(db, acct.id).status == AccountStatus.ACTIVE


def test_expired_token_without_refresh_token_is_not_refreshable(connector, db, make_account):
    acct = make_account(Platform.FACEBOOK, refresh_token=None, expires_in=-60)

    with pytest.raises(NotRefreshableError):
        asyncio.run(connector.ensure_valid_token(acct.id))
    assert crud_accounts.get_account(db, acct.id).status == AccountStatus.EXPIRED


def test_expiring_token_without_refresh_token_is_still_used(connector, make_account):
    acct = make_account(Platform.FACEBOOK, refresh_token=None, expires_in=120)
    assert asyncio.run(connector.ensure_valid_token(acct.id)) == "access-facebook"


def test_refresh_without_refresh_token(connector, make_account):
    acct = make_account(Platform.FACEBOOK, refresh_token=None)
    with pytest.raises(NotRefreshableError):
        asyncio.run(connector.refresh_token(acct.id))


def test_inactive_accounts_are_refused(connector, make_account):
    revoked = make_account(Platform.TWITTER, status=AccountStatus.REVOKED)
    broken = make_account(Platform.LINKEDIN, status=AccountStatus.ERROR)
    with pytest.raises(AccountInactiveError):
        asyncio.run(connector.ensure_valid_token(revoked.id))
    with pytest.raises(AccountInactiveError):
        asyncio.run(connector.ensure_valid_token(broken.id))


def test_unknown_account(connector):
    with pytest.raises(NotFoundError):
        asyncio.run(connector.ensure_valid_token(999))


# --- disconnect / housekeeping ---------------------------------------------

def test_disconnect_revokes_and_clears_tokens(connector, adapters, make_account):
    acct = make_account(Platform.TWITTER)
    out = asyncio.run(connector.disconnect(acct.id))

    assert out.status == AccountStatus.REVOKED
    assert out.access_token_encrypted is None
    assert out.refresh_token_encrypted is None
    assert adapters[Platform.TWITTER].revoked == ["access-twitter"]


def test_disconnect_succeeds_when_platform_revoke_fails(connector, adapters, make_account):
    acct = make_account(Platform.TWITTER)
    adapters[Platform.TWITTER].revoke_error = PublishTransientError("twitter down")

    out = asyncio.run(connector.disconnect(acct.id))
    assert out.status == AccountStatus.REVOKED


def test_disconnect_is_idempotent(connector, adapters, make_account):
    acct = make_account(Platform.TWITTER)
    asyncio.run(connector.disconnect(acct.id))
    asyncio.run(connector.disconnect(acct.id))
    assert adapters[Platform.TWITTER].revoked == ["access-twitter"]


def test_purge_expired_states(db, adapters):
    issued = utcnow() - timedelta(hours=1)
    old = OAuthConnector(db, adapters=adapters, flights=SingleFlight(), now=lambda: issued)
    old.initiate_connect("user-1", Platform.FACEBOOK)
    current = OAuthConnector(db, adapters=adapters, flights=SingleFlight())
    fresh_state = _state_from(current.initiate_connect("user-1", Platform.FACEBOOK))

    assert current.purge_expired_states() == 1
    assert crud_states.find_state(db, fresh_state) is not None
