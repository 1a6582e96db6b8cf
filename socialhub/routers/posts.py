# socialhub/routers/posts.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from socialhub.db import crud_posts
from socialhub.db.models import PostStatus, PublishAttempt, ScheduledPost
from socialhub.deps import get_publisher
from socialhub.services.publisher import PostRequest, PublishScheduler

router = APIRouter(prefix="/posts", tags=["posts"])


class PostIn(BaseModel):
    author_id: str
    text: str = ""
    account_ids: List[int]
    media_urls: List[str] = []
    hashtags: List[str] = []
    scheduled_for: Optional[datetime] = None
    draft: bool = False
    organization_id: Optional[str] = None


class ScheduleIn(BaseModel):
    scheduled_for: Optional[datetime] = None


class RescheduleIn(BaseModel):
    scheduled_for: datetime


class TargetIn(BaseModel):
    account_id: int


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def attempt_out(a: PublishAttempt) -> Dict[str, Any]:
    return {
        "id": a.id,
        "account_id": a.account_id,
        "platform": a.platform.value,
        "status": a.status.value,
        "attempt_count": a.attempt_count,
        "last_error": a.last_error,
        "error_kind": a.error_kind,
        "external_post_id": a.external_post_id,
        "external_url": a.external_url,
        "published_at": _iso(a.published_at),
    }


def post_out(publisher: PublishScheduler, post: ScheduledPost) -> Dict[str, Any]:
    attempts = crud_posts.list_attempts(publisher.db, post.id)
    return {
        "id": post.id,
        "author_id": post.author_id,
        "organization_id": post.organization_id,
        "text": post.text,
        "media_urls": post.media_urls or [],
        "hashtags": post.hashtags or [],
        "targets": post.targets or [],
        "scheduled_for": _iso(post.scheduled_for),
        "status": post.status.value,
        "published_at": _iso(post.published_at),
        "attempts": [attempt_out(a) for a in attempts],
    }


@router.post("")
async def create_post(body: PostIn, publisher: PublishScheduler = Depends(get_publisher)) -> Dict[str, Any]:
    post = await publisher.schedule(PostRequest(**body.model_dump()))
    return post_out(publisher, post)


@router.get("")
def list_posts(
    author_id: str = Query(...),
    status: Optional[PostStatus] = None,
    publisher: PublishScheduler = Depends(get_publisher),
) -> Dict[str, Any]:
    posts = publisher.list_posts(author_id, status)
    return {"status": "ok", "posts": [post_out(publisher, p) for p in posts]}


@router.get("/{post_id}")
def get_post(post_id: int, publisher: PublishScheduler = Depends(get_publisher)) -> Dict[str, Any]:
    return post_out(publisher, publisher.get_post(post_id))


@router.post("/{post_id}/cancel")
def cancel_post(post_id: int, publisher: PublishScheduler = Depends(get_publisher)) -> Dict[str, Any]:
    return post_out(publisher, publisher.cancel(post_id))


@router.post("/{post_id}/schedule")
async def schedule_draft(
    post_id: int, body: ScheduleIn, publisher: PublishScheduler = Depends(get_publisher)
) -> Dict[str, Any]:
    post = await publisher.schedule_draft(post_id, body.scheduled_for)
    return post_out(publisher, post)


@router.post("/{post_id}/targets")
def add_target(post_id: int, body: TargetIn, publisher: PublishScheduler = Depends(get_publisher)) -> Dict[str, Any]:
    return post_out(publisher, publisher.add_target(post_id, body.account_id))


@router.put("/{post_id}/reschedule")
async def reschedule_post(
    post_id: int, body: RescheduleIn, publisher: PublishScheduler = Depends(get_publisher)
) -> Dict[str, Any]:
    post = await publisher.reschedule(post_id, body.scheduled_for)
    return post_out(publisher, post)
