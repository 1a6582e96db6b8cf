"""
OAuth connector: authorization-code flow and token lifecycle for every platform.

All token reads and writes for a SocialAccount go through this module.
``ensure_valid_token`` is the single entry point publishers use, and refreshes
are coalesced per account so a platform never sees two refresh calls racing.
"""
import base64
import hashlib
import secrets
from datetime import datetime
from typing import Callable, Dict, List, Optional

import httpx
from cryptography.fernet import InvalidToken
from loguru import logger
from sqlalchemy.orm import Session

from socialhub.config import Settings, settings as default_settings
from socialhub.db import crud_accounts, crud_states, token_crypto
from socialhub.db.models import AccountStatus, Platform, SocialAccount
from socialhub.db.time import utcnow
from socialhub.errors import (
    AccountInactiveError,
    InvalidStateError,
    NotFoundError,
    NotRefreshableError,
    PublishError,
    RefreshFailedError,
    SocialHubError,
    TokenExchangeError,
)
from socialhub.logger import mask
from socialhub.platforms.base import PlatformAdapter
from socialhub.platforms.registry import build_adapter, parse_platform
from socialhub.services.single_flight import KeyedLock, SingleFlight, refresh_flights, refresh_locks


def _pkce_pair() -> tuple:
    verifier = secrets.token_urlsafe(48)
    challenge = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=").decode()
    return verifier, challenge


class OAuthConnector:
    def __init__(
        self,
        db: Session,
        adapters: Optional[Dict[Platform, PlatformAdapter]] = None,
        settings: Optional[Settings] = None,
        flights: Optional[SingleFlight] = None,
        locks: Optional[KeyedLock] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or default_settings
        self._adapters = dict(adapters or {})
        self._flights = flights or refresh_flights
        self._locks = locks or refresh_locks
        self._now = now

    def adapter(self, platform) -> PlatformAdapter:
        platform = parse_platform(platform)
        if platform not in self._adapters:
            self._adapters[platform] = build_adapter(platform, self.settings)
        return self._adapters[platform]

    def _get_account(self, account_id: int) -> SocialAccount:
        acct = crud_accounts.get_account(self.db, account_id)
        if not acct:
            raise NotFoundError(f"Social account {account_id} not found")
        return acct

    # --- connect flow -------------------------------------------------------

    def initiate_connect(self, user_id: str, platform, organization_id: Optional[str] = None) -> str:
        platform = parse_platform(platform)
        adapter = self.adapter(platform)
        adapter.ensure_configured()

        state = secrets.token_urlsafe(32)
        verifier, challenge = _pkce_pair() if adapter.uses_pkce else (None, None)
        crud_states.create_state(
            self.db,
            state=state,
            user_id=user_id,
            platform=platform,
            ttl_seconds=self.settings.oauth_state_ttl_seconds,
            organization_id=organization_id,
            code_verifier=verifier,
            now=self._now(),
        )
        logger.info(f"OAuth state stored state={mask(state)} platform={platform.value} user={user_id}")
        return adapter.auth_url(state, code_challenge=challenge)

    async def handle_callback(self, platform, code: str, returned_state: str) -> SocialAccount:
        platform = parse_platform(platform)
        adapter = self.adapter(platform)
        adapter.ensure_configured()

        if not returned_state:
            raise InvalidStateError("Missing state parameter")
        row = crud_states.find_state(self.db, returned_state)
        if row is None:
            logger.warning(f"OAuth state not found or already used state={mask(returned_state)}")
            raise InvalidStateError("Invalid or expired state parameter")
        if row.platform != platform:
            logger.warning(
                f"OAuth state platform mismatch state={mask(returned_state)} "
                f"expected={row.platform.value} got={platform.value}"
            )
            raise InvalidStateError("State was issued for a different platform")

        user_id, organization_id = row.user_id, row.organization_id
        code_verifier, expires_at = row.code_verifier, row.expires_at
        if not crud_states.consume_state(self.db, row):
            raise InvalidStateError("State parameter was already used")
        if expires_at <= self._now():
            logger.warning(f"OAuth state expired state={mask(returned_state)}")
            raise InvalidStateError("State parameter expired")
        if not code:
            raise TokenExchangeError("Missing authorization code")

        # authorization codes are single-use: no automatic retry from here on
        try:
            tokens = await adapter.exchange_token(code, code_verifier=code_verifier)
        except TokenExchangeError:
            raise
        except PublishError as e:
            raise TokenExchangeError(f"{platform.value} token exchange failed: {e.message}") from e

        try:
            profile = await adapter.fetch_profile(tokens.access_token)
        except PublishError as e:
            raise TokenExchangeError(f"Could not load {platform.value} profile: {e.message}") from e
        if not profile.id:
            raise TokenExchangeError(f"{platform.value} profile did not include an account id")

        acct = crud_accounts.upsert_account(
            self.db,
            user_id=user_id,
            platform=platform,
            profile=profile,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            scopes=tokens.scopes or adapter.scopes,
            organization_id=organization_id,
        )
        logger.info(f"Connected {platform.value} account id={acct.id} platform_id={acct.platform_id} user={user_id}")
        return acct

    # --- token lifecycle ----------------------------------------------------

    async def refresh_token(self, account_id: int) -> SocialAccount:
        seen = self._get_account(account_id).access_token_encrypted
        await self._flights.do(account_id, lambda: self._refresh(account_id, seen))
        self.db.expire_all()
        return self._get_account(account_id)

    async def _refresh(self, account_id: int, seen: Optional[str]) -> None:
        # other loops (API server, poller) may be refreshing the same account
        async with self._locks.hold(account_id):
            acct = self._get_account(account_id)
            self.db.refresh(acct)
            if acct.status == AccountStatus.ACTIVE and acct.access_token_encrypted != seen:
                logger.debug(f"Account {account_id} was refreshed by another worker")
                return
            await self._refresh_locked(acct)

    async def _refresh_locked(self, acct: SocialAccount) -> None:
        account_id = acct.id
        if acct.status == AccountStatus.REVOKED:
            raise AccountInactiveError(f"Account {account_id} was disconnected; reconnect it")
        if not acct.refresh_token_encrypted:
            raise NotRefreshableError(f"Account {account_id} has no refresh token; reconnect it")

        adapter = self.adapter(acct.platform)
        plain_refresh = token_crypto.decrypt_token(acct.refresh_token_encrypted)
        try:
            tokens = await adapter.refresh(plain_refresh)
        except RefreshFailedError as e:
            crud_accounts.set_status(self.db, acct, AccountStatus.EXPIRED, error=e.message)
            logger.warning(f"Refresh rejected for account {account_id} ({acct.platform.value}); marked EXPIRED")
            raise
        except NotRefreshableError as e:
            if crud_accounts.is_token_expired(acct, self._now()):
                crud_accounts.set_status(self.db, acct, AccountStatus.EXPIRED, error=e.message)
            raise

        crud_accounts.update_tokens(
            self.db, acct, tokens.access_token, tokens.expires_in, refresh_token=tokens.refresh_token
        )
        logger.info(f"Refreshed token for account {account_id} ({acct.platform.value})")

    async def ensure_valid_token(self, account_id: int) -> str:
        """Return an access token good for at least the refresh margin, refreshing first if needed."""
        acct = self._get_account(account_id)
        if acct.status in (AccountStatus.REVOKED, AccountStatus.ERROR):
            raise AccountInactiveError(f"Account {account_id} is {acct.status.value}; reconnect it")

        now = self._now()
        margin = self.settings.token_refresh_margin_seconds
        needs_refresh = acct.status == AccountStatus.EXPIRED or crud_accounts.is_token_expiring(acct, margin, now)
        if needs_refresh:
            if acct.refresh_token_encrypted:
                acct = await self.refresh_token(account_id)
            elif acct.status == AccountStatus.EXPIRED or crud_accounts.is_token_expired(acct, now):
                if acct.status != AccountStatus.EXPIRED:
                    crud_accounts.set_status(self.db, acct, AccountStatus.EXPIRED, error="Access token expired")
                raise NotRefreshableError(f"Account {account_id} token expired and cannot be refreshed; reconnect it")
            # otherwise still valid for a little while and nothing to refresh with

        if not acct.access_token_encrypted:
            raise AccountInactiveError(f"Account {account_id} has no access token; reconnect it")
        return token_crypto.decrypt_token(acct.access_token_encrypted)

    async def disconnect(self, account_id: int) -> SocialAccount:
        acct = self._get_account(account_id)
        if acct.status == AccountStatus.REVOKED:
            return acct

        # Revoke access on the platform; the local transition happens regardless
        try:
            access_token = token_crypto.decrypt_token(acct.access_token_encrypted)
            if access_token:
                await self.adapter(acct.platform).revoke(access_token)
        except (SocialHubError, httpx.HTTPError, InvalidToken) as e:
            logger.warning(f"Revoke failed for account {account_id} ({acct.platform.value}): {e}")

        acct = crud_accounts.set_status(self.db, acct, AccountStatus.REVOKED)
        logger.info(f"Disconnected account {account_id} ({acct.platform.value})")
        return acct

    # --- housekeeping -------------------------------------------------------

    def list_accounts(self, user_id: str, organization_id: Optional[str] = None) -> List[SocialAccount]:
        return crud_accounts.list_accounts(self.db, user_id, organization_id)

    def purge_expired_states(self) -> int:
        removed = crud_states.purge_expired_states(self.db, self._now())
        if removed:
            logger.info(f"Purged {removed} expired OAuth states")
        return removed
