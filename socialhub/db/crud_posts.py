# socialhub/db/crud_posts.py
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from socialhub.db.models import (
    ScheduledPost, PublishAttempt, PostStatus, AttemptStatus, SocialAccount,
)
from socialhub.db.time import utcnow


def create_post(
    db: Session,
    author_id: str,
    text: str,
    targets: list,
    status: PostStatus,
    scheduled_for: datetime | None = None,
    media_urls: list | None = None,
    hashtags: list | None = None,
    organization_id: str | None = None,
) -> ScheduledPost:
    obj = ScheduledPost(
        author_id=author_id,
        organization_id=organization_id,
        text=text,
        media_urls=list(media_urls or []),
        hashtags=list(hashtags or []),
        targets=list(targets),
        scheduled_for=scheduled_for,
        status=status,
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def get_post(db: Session, post_id: int) -> Optional[ScheduledPost]:
    return db.query(ScheduledPost).filter(ScheduledPost.id == post_id).first()

def transition(db: Session, post_id: int, allowed: Iterable[PostStatus], new_status: PostStatus, **values) -> bool:
    """Compare-and-set the post status. False if the post was not in an allowed state."""
    res = db.execute(
        update(ScheduledPost)
        .where(ScheduledPost.id == post_id, ScheduledPost.status.in_(list(allowed)))
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return res.rowcount == 1

def set_post_status(db: Session, post: ScheduledPost, status: PostStatus) -> ScheduledPost:
    post.status = status
    if status == PostStatus.PUBLISHED or status == PostStatus.PARTIALLY_FAILED:
        post.published_at = post.published_at or utcnow()
    db.add(post)
    db.commit()
    return post

def list_posts(db: Session, author_id: str, status: PostStatus | None = None, limit: int = 100) -> List[ScheduledPost]:
    q = db.query(ScheduledPost).filter(ScheduledPost.author_id == author_id)
    if status is not None:
        q = q.filter(ScheduledPost.status == status)
    return q.order_by(ScheduledPost.scheduled_for.asc(), ScheduledPost.id.asc()).limit(limit).all()

def list_due_posts(db: Session, now: datetime | None = None, limit: int = 50) -> List[ScheduledPost]:
    return (
        db.query(ScheduledPost)
        .filter(
            ScheduledPost.status == PostStatus.SCHEDULED,
            ScheduledPost.scheduled_for <= (now or utcnow()),
        )
        .order_by(ScheduledPost.scheduled_for.asc())
        .limit(limit)
        .all()
    )

def create_attempts(db: Session, post: ScheduledPost, accounts: List[SocialAccount]) -> List[PublishAttempt]:
    rows = [
        PublishAttempt(post_id=post.id, account_id=a.id, platform=a.platform, status=AttemptStatus.PENDING)
        for a in accounts
    ]
    db.add_all(rows)
    db.commit()
    for r in rows:
        db.refresh(r)
    return rows

def list_attempts(db: Session, post_id: int) -> List[PublishAttempt]:
    return (
        db.query(PublishAttempt)
        .filter(PublishAttempt.post_id == post_id)
        .order_by(PublishAttempt.id.asc())
        .all()
    )

def save_attempt(db: Session, attempt: PublishAttempt) -> PublishAttempt:
    db.add(attempt)
    db.commit()
    return attempt
