"""
Publish scheduler: one authored post fanned out to N accounts.

Each target gets its own PublishAttempt and its own asyncio task. A failure on
one platform never blocks or rolls back another. The post status is re-derived
from the attempts (under a lock) every time an attempt finishes, so pollers see
DRAFT/SCHEDULED -> PUBLISHING -> terminal and never a step backwards.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from socialhub.db import crud_accounts, crud_posts
from socialhub.db.models import (
    AccountStatus,
    AttemptStatus,
    PostStatus,
    PublishAttempt,
    ScheduledPost,
    SocialAccount,
    TERMINAL_POST_STATUSES,
)
from socialhub.db.time import as_naive_utc, utcnow
from socialhub.errors import (
    AccountInactiveError,
    InvalidStateError,
    NotFoundError,
    NotRefreshableError,
    PublishPermanentError,
    PublishTransientError,
    RefreshFailedError,
    SocialHubError,
    TokenRejectedError,
    ValidationError,
)
from socialhub.services.formatter import format_for_platform, text_budget
from socialhub.services.oauth_connector import OAuthConnector
from socialhub.services.retry import RetryPolicy

CANCELLABLE = (PostStatus.DRAFT, PostStatus.SCHEDULED)
ACCOUNT_ERRORS = (NotRefreshableError, RefreshFailedError, AccountInactiveError)


@dataclass
class PostRequest:
    author_id: str
    text: str
    account_ids: List[int]
    media_urls: List[str] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)
    scheduled_for: Optional[datetime] = None
    draft: bool = False
    organization_id: Optional[str] = None


class PublishScheduler:
    def __init__(
        self,
        db: Session,
        connector: OAuthConnector,
        retry_policy: Optional[RetryPolicy] = None,
        formatter=format_for_platform,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.connector = connector
        self.retry_policy = retry_policy or RetryPolicy.from_settings(connector.settings)
        self.formatter = formatter
        self._sleep = sleep
        self._now = now

    # --- validation ---------------------------------------------------------

    def _resolve_accounts(self, author_id: str, account_ids: List[int]) -> List[SocialAccount]:
        accounts = []
        for account_id in dict.fromkeys(account_ids or []):
            acct = crud_accounts.get_account(self.db, account_id)
            if acct is None or acct.user_id != author_id:
                raise ValidationError(f"Account {account_id} is not connected for this user")
            if acct.status == AccountStatus.REVOKED:
                raise ValidationError(f"Account {account_id} was disconnected")
            accounts.append(acct)
        return accounts

    def _validate(self, text: str, media_urls: List[str], accounts: List[SocialAccount]) -> None:
        if not accounts:
            raise ValidationError("Select at least one platform to publish to")
        if not (text or "").strip() and not media_urls:
            raise ValidationError("Post has no text and no media")

        adapters = [self.connector.adapter(a.platform) for a in accounts]
        budget, platform = min((text_budget(ad.platform, media_urls), ad.platform) for ad in adapters)
        if len(text or "") > budget:
            raise ValidationError(f"Content is {len(text)} characters; {platform.value} allows {budget}")
        for ad in adapters:
            if ad.requires_media and not media_urls:
                raise ValidationError(f"{ad.platform.value} posts require media")

    def _get_post(self, post_id: int) -> ScheduledPost:
        post = crud_posts.get_post(self.db, post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        return post

    def get_post(self, post_id: int) -> ScheduledPost:
        post = self._get_post(post_id)
        self.db.refresh(post)
        return post

    def _is_due(self, scheduled_for: Optional[datetime]) -> bool:
        return scheduled_for is None or scheduled_for <= self._now()

    # --- public operations --------------------------------------------------

    async def schedule(self, req: PostRequest) -> ScheduledPost:
        accounts = self._resolve_accounts(req.author_id, req.account_ids)
        self._validate(req.text, req.media_urls, accounts)

        targets = [{"platform": a.platform.value, "account_id": a.id} for a in accounts]
        scheduled_for = as_naive_utc(req.scheduled_for)
        post = crud_posts.create_post(
            self.db,
            author_id=req.author_id,
            text=req.text,
            targets=targets,
            status=PostStatus.DRAFT if req.draft else PostStatus.SCHEDULED,
            scheduled_for=scheduled_for,
            media_urls=req.media_urls,
            hashtags=req.hashtags,
            organization_id=req.organization_id,
        )
        logger.info(f"Post {post.id} created status={post.status.value} targets={len(targets)}")
        if not req.draft and self._is_due(scheduled_for):
            await self._dispatch_if_claimable(post.id)
        return self.get_post(post.id)

    async def schedule_draft(self, post_id: int, scheduled_for: Optional[datetime] = None) -> ScheduledPost:
        post = self._get_post(post_id)
        scheduled_for = as_naive_utc(scheduled_for)
        if not crud_posts.transition(
            self.db, post.id, [PostStatus.DRAFT], PostStatus.SCHEDULED, scheduled_for=scheduled_for
        ):
            raise InvalidStateError(f"Post {post_id} is not a draft")
        if self._is_due(scheduled_for):
            await self._dispatch_if_claimable(post.id)
        return self.get_post(post.id)

    async def reschedule(self, post_id: int, scheduled_for: datetime) -> ScheduledPost:
        """Move a scheduled post to a new time; a time already past publishes it now."""
        post = self._get_post(post_id)
        scheduled_for = as_naive_utc(scheduled_for)
        if scheduled_for is None:
            raise ValidationError("A new publish time is required")
        if not crud_posts.transition(
            self.db, post.id, [PostStatus.SCHEDULED], PostStatus.SCHEDULED, scheduled_for=scheduled_for
        ):
            self.db.refresh(post)
            raise InvalidStateError(
                f"Post {post_id} is {post.status.value}; only scheduled posts can be rescheduled"
            )
        logger.info(f"Post {post_id} rescheduled for {scheduled_for.isoformat()}")
        if self._is_due(scheduled_for):
            await self._dispatch_if_claimable(post.id)
        return self.get_post(post.id)

    def list_posts(self, author_id: str, status: Optional[PostStatus] = None) -> List[ScheduledPost]:
        return crud_posts.list_posts(self.db, author_id, status)

    def add_target(self, post_id: int, account_id: int) -> ScheduledPost:
        post = self.get_post(post_id)
        if post.status not in CANCELLABLE:
            raise InvalidStateError(f"Cannot add targets to a post that is {post.status.value}")
        current = [t["account_id"] for t in post.targets or []]
        accounts = self._resolve_accounts(post.author_id, current + [account_id])
        self._validate(post.text, post.media_urls or [], accounts)

        targets = [{"platform": a.platform.value, "account_id": a.id} for a in accounts]
        # same status in and out: the update only lands if dispatch has not claimed the post
        if not crud_posts.transition(self.db, post.id, [post.status], post.status, targets=targets):
            raise InvalidStateError(f"Post {post_id} started publishing; targets are frozen")
        return self.get_post(post.id)

    def cancel(self, post_id: int) -> ScheduledPost:
        post = self._get_post(post_id)
        if not crud_posts.transition(self.db, post.id, CANCELLABLE, PostStatus.CANCELLED):
            self.db.refresh(post)
            raise InvalidStateError(f"Post {post_id} is {post.status.value} and can no longer be cancelled")
        logger.info(f"Post {post_id} cancelled")
        return self.get_post(post.id)

    async def _dispatch_if_claimable(self, post_id: int) -> None:
        try:
            await self.dispatch(post_id)
        except InvalidStateError:
            # the poller got there first
            logger.debug(f"Post {post_id} already claimed by another dispatcher")

    async def dispatch(self, post_id: int) -> List[PublishAttempt]:
        post = self._get_post(post_id)
        if not crud_posts.transition(self.db, post.id, CANCELLABLE, PostStatus.PUBLISHING):
            self.db.refresh(post)
            raise InvalidStateError(
                f"Post {post_id} is {post.status.value}; only drafts and scheduled posts can be dispatched"
            )
        self.db.refresh(post)

        accounts = []
        for target in post.targets or []:
            acct = crud_accounts.get_account(self.db, target["account_id"])
            if acct is None:
                logger.warning(f"Post {post_id}: target account {target['account_id']} no longer exists")
                continue
            accounts.append(acct)
        attempts = crud_posts.create_attempts(self.db, post, accounts)
        logger.info(f"Dispatching post {post_id} to {len(attempts)} account(s)")

        lock = asyncio.Lock()
        await asyncio.gather(*(self._run_attempt(post, a, lock) for a in attempts), return_exceptions=True)
        async with lock:
            self._aggregate(post)
        return crud_posts.list_attempts(self.db, post.id)

    def aggregate_status(self, post: ScheduledPost) -> PostStatus:
        attempts = crud_posts.list_attempts(self.db, post.id)
        if not attempts:
            # a claimed post whose targets all vanished has nothing left to publish
            return PostStatus.FAILED if post.status == PostStatus.PUBLISHING else post.status
        if any(a.status == AttemptStatus.PENDING for a in attempts):
            return PostStatus.PUBLISHING
        succeeded = sum(1 for a in attempts if a.status == AttemptStatus.PUBLISHED)
        if succeeded == len(attempts):
            return PostStatus.PUBLISHED
        if succeeded == 0:
            return PostStatus.FAILED
        return PostStatus.PARTIALLY_FAILED

    async def run_due(self, now: Optional[datetime] = None) -> List[int]:
        """Dispatch every scheduled post whose time has come. Returns the dispatched ids."""
        due = crud_posts.list_due_posts(self.db, now or self._now())
        if not due:
            return []
        ids = [p.id for p in due]
        results = await asyncio.gather(*(self.dispatch(pid) for pid in ids), return_exceptions=True)
        dispatched = []
        for pid, res in zip(ids, results):
            if isinstance(res, InvalidStateError):
                logger.debug(f"Post {pid} skipped: {res.message}")
            elif isinstance(res, BaseException):
                logger.opt(exception=res).error(f"Dispatch of post {pid} failed")
            else:
                dispatched.append(pid)
        return dispatched

    # --- internals ----------------------------------------------------------

    def _aggregate(self, post: ScheduledPost) -> None:
        status = self.aggregate_status(post)
        self.db.refresh(post)
        if status == post.status or post.status in TERMINAL_POST_STATUSES:
            return
        crud_posts.set_post_status(self.db, post, status)
        if status in TERMINAL_POST_STATUSES:
            logger.info(f"Post {post.id} finished with status {status.value}")

    def _fail(self, attempt: PublishAttempt, err: SocialHubError, kind: str) -> None:
        attempt.status = AttemptStatus.FAILED
        attempt.last_error = err.message
        attempt.error_kind = kind
        crud_posts.save_attempt(self.db, attempt)
        logger.warning(
            f"Post {attempt.post_id} -> {attempt.platform.value} account {attempt.account_id} failed "
            f"after {attempt.attempt_count} attempt(s) [{kind}]: {err.message}"
        )

    async def _run_attempt(self, post: ScheduledPost, attempt: PublishAttempt, lock: asyncio.Lock) -> None:
        try:
            await self._publish_with_retry(post, attempt)
        except Exception as e:
            # an unexpected bug must still leave the attempt terminal
            logger.exception(f"Unexpected error publishing post {post.id} to account {attempt.account_id}")
            attempt.status = AttemptStatus.FAILED
            attempt.last_error = str(e) or e.__class__.__name__
            attempt.error_kind = "internal"
            crud_posts.save_attempt(self.db, attempt)
        finally:
            async with lock:
                self._aggregate(post)

    async def _publish_with_retry(self, post: ScheduledPost, attempt: PublishAttempt) -> None:
        policy = self.retry_policy
        account = crud_accounts.get_account(self.db, attempt.account_id)
        adapter = self.connector.adapter(attempt.platform)
        content = self.formatter(attempt.platform, post.text, post.hashtags or [], post.media_urls or [])
        forced_refresh = False

        while True:
            attempt.attempt_count += 1
            crud_posts.save_attempt(self.db, attempt)
            try:
                token = await self.connector.ensure_valid_token(account.id)
                result = await adapter.publish(token, account.platform_id, content)
            except ACCOUNT_ERRORS as e:
                self._fail(attempt, e, "auth")
                return
            except TokenRejectedError as e:
                if forced_refresh or not account.refresh_token_encrypted or attempt.attempt_count >= policy.max_attempts:
                    self._fail(attempt, e, "auth")
                    return
                forced_refresh = True
                try:
                    await self.connector.refresh_token(account.id)
                except SocialHubError as refresh_err:
                    self._fail(attempt, refresh_err, "auth")
                    return
                continue
            except PublishTransientError as e:
                attempt.last_error = e.message
                attempt.error_kind = "transient"
                if attempt.attempt_count >= policy.max_attempts:
                    self._fail(attempt, e, "transient")
                    return
                delay = policy.delay_for(attempt.attempt_count, e.retry_after)
                crud_posts.save_attempt(self.db, attempt)
                logger.warning(
                    f"Post {post.id} -> {attempt.platform.value} attempt {attempt.attempt_count}/"
                    f"{policy.max_attempts} failed: {e.message}. Retrying in {delay:.1f} seconds..."
                )
                await self._sleep(delay)
                continue
            except PublishPermanentError as e:
                self._fail(attempt, e, "permanent")
                return

            attempt.status = AttemptStatus.PUBLISHED
            attempt.external_post_id = result.external_id
            attempt.external_url = result.url
            attempt.published_at = utcnow()
            attempt.last_error = None
            attempt.error_kind = None
            crud_posts.save_attempt(self.db, attempt)
            logger.info(
                f"Post {post.id} published to {attempt.platform.value} account {attempt.account_id} "
                f"external_id={result.external_id}"
            )
            return
