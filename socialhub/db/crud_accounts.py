# socialhub/db/crud_accounts.py
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from socialhub.db import token_crypto
from socialhub.db.models import SocialAccount, AccountStatus, Platform
from socialhub.db.time import utcnow


def get_account(db: Session, account_id: int) -> Optional[SocialAccount]:
    return db.query(SocialAccount).filter(SocialAccount.id == account_id).first()

def list_accounts(db: Session, user_id: str, organization_id: str | None = None) -> List[SocialAccount]:
    q = db.query(SocialAccount).filter(SocialAccount.user_id == user_id)
    if organization_id:
        q = q.filter(SocialAccount.organization_id == organization_id)
    return q.order_by(SocialAccount.id.desc()).all()

def expiry_from(expires_in: int | None, now: datetime | None = None) -> datetime | None:
    if not expires_in:
        return None
    return (now or utcnow()) + timedelta(seconds=int(expires_in))

def _apply_connection(
    acct: SocialAccount,
    access_token: str,
    refresh_token: str | None,
    expires_in: int | None,
    scopes: list,
    profile,
    organization_id: str | None,
) -> None:
    now = utcnow()
    acct.access_token_encrypted = token_crypto.encrypt_token(access_token)
    acct.refresh_token_encrypted = token_crypto.encrypt_token(refresh_token)
    acct.token_expiry = expiry_from(expires_in, now)
    acct.scopes = list(scopes)
    acct.username = profile.username
    acct.display_name = profile.display_name
    acct.profile_url = profile.profile_url
    if organization_id:
        acct.organization_id = organization_id
    acct.status = AccountStatus.ACTIVE
    acct.last_error = None
    acct.last_sync_at = now

def upsert_account(
    db: Session,
    user_id: str,
    platform: Platform,
    profile,
    access_token: str,
    refresh_token: str | None,
    expires_in: int | None,
    scopes: list,
    organization_id: str | None = None,
) -> SocialAccount:
    """Create the account or reactivate the existing row for (user, platform, platform_id)."""
    def _existing():
        return (
            db.query(SocialAccount)
            .filter(
                SocialAccount.user_id == user_id,
                SocialAccount.platform == platform,
                SocialAccount.platform_id == profile.id,
            )
            .first()
        )

    acct = _existing()
    if acct is None:
        acct = SocialAccount(user_id=user_id, platform=platform, platform_id=profile.id)
        _apply_connection(acct, access_token, refresh_token, expires_in, scopes, profile, organization_id)
        db.add(acct)
        try:
            db.commit()
        except IntegrityError:
            # lost a race with a concurrent callback for the same identity
            db.rollback()
            acct = _existing()
            if acct is None:
                raise
        else:
            db.refresh(acct)
            return acct

    _apply_connection(acct, access_token, refresh_token, expires_in, scopes, profile, organization_id)
    db.add(acct)
    db.commit()
    db.refresh(acct)
    return acct

def update_tokens(
    db: Session,
    acct: SocialAccount,
    access_token: str,
    expires_in: int | None,
    refresh_token: str | None = None,
) -> SocialAccount:
    acct.access_token_encrypted = token_crypto.encrypt_token(access_token)
    if refresh_token:
        # platforms that rotate refresh tokens hand back a new one
        acct.refresh_token_encrypted = token_crypto.encrypt_token(refresh_token)
    acct.token_expiry = expiry_from(expires_in)
    acct.status = AccountStatus.ACTIVE
    acct.last_error = None
    acct.last_sync_at = utcnow()
    db.add(acct)
    db.commit()
    db.refresh(acct)
    return acct

def set_status(db: Session, acct: SocialAccount, status: AccountStatus, error: str | None = None) -> SocialAccount:
    acct.status = status
    acct.last_error = error
    if status == AccountStatus.REVOKED:
        acct.access_token_encrypted = None
        acct.refresh_token_encrypted = None
        acct.token_expiry = None
    db.add(acct)
    db.commit()
    db.refresh(acct)
    return acct

def is_token_expiring(acct: SocialAccount, seconds: int = 300, now: datetime | None = None) -> bool:
    return bool(acct.token_expiry and (acct.token_expiry - (now or utcnow())).total_seconds() < seconds)

def is_token_expired(acct: SocialAccount, now: datetime | None = None) -> bool:
    return bool(acct.token_expiry and acct.token_expiry <= (now or utcnow()))
