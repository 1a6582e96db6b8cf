# socialhub/db/crud_states.py
import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from socialhub.db.models import OAuthState, Platform
from socialhub.db.time import utcnow


def hash_state(state: str) -> str:
    return hashlib.sha256(state.encode()).hexdigest()

def create_state(
    db: Session,
    state: str,
    user_id: str,
    platform: Platform,
    ttl_seconds: int,
    organization_id: str | None = None,
    code_verifier: str | None = None,
    now: datetime | None = None,
) -> OAuthState:
    created = now or utcnow()
    row = OAuthState(
        state_hash=hash_state(state),
        user_id=user_id,
        platform=platform,
        organization_id=organization_id,
        code_verifier=code_verifier,
        created_at=created,
        expires_at=created + timedelta(seconds=ttl_seconds),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row

def find_state(db: Session, state: str) -> Optional[OAuthState]:
    digest = hash_state(state)
    row = db.query(OAuthState).filter(OAuthState.state_hash == digest).first()
    if row is None or not secrets.compare_digest(row.state_hash, digest):
        return None
    return row

def consume_state(db: Session, row: OAuthState) -> bool:
    """Delete the state; True only for the caller whose delete actually removed the row."""
    res = db.execute(delete(OAuthState).where(OAuthState.state_hash == row.state_hash))
    db.commit()
    return res.rowcount == 1

def purge_expired_states(db: Session, now: datetime | None = None) -> int:
    res = db.execute(delete(OAuthState).where(OAuthState.expires_at <= (now or utcnow())))
    db.commit()
    return res.rowcount or 0
