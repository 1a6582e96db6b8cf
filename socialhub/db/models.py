import enum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, JSON, Enum, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from socialhub.db.base import Base


class Platform(str, enum.Enum):
    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"
    TWITTER = "TWITTER"
    LINKEDIN = "LINKEDIN"
    TIKTOK = "TIKTOK"
    YOUTUBE = "YOUTUBE"


class AccountStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"    # refresh failed; a new refresh token or reconnect recovers it
    REVOKED = "REVOKED"    # disconnected; full re-auth required
    ERROR = "ERROR"        # platform-side anomaly, needs manual investigation


class PostStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    PUBLISHING = "PUBLISHING"
    PUBLISHED = "PUBLISHED"
    PARTIALLY_FAILED = "PARTIALLY_FAILED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_POST_STATUSES = {PostStatus.PUBLISHED, PostStatus.PARTIALLY_FAILED, PostStatus.FAILED}


class AttemptStatus(str, enum.Enum):
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


class SocialAccount(Base):
    __tablename__ = "social_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", "platform_id", name="uq_account_user_platform_pid"),
    )
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True, index=True)
    platform = Column(Enum(Platform), nullable=False)
    platform_id = Column(String(255), nullable=False)   # the platform's own user id
    username = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    profile_url = Column(String(1024), nullable=True)
    access_token_encrypted = Column(Text, nullable=True)
    refresh_token_encrypted = Column(Text, nullable=True)
    token_expiry = Column(DateTime, nullable=True)
    scopes = Column(JSON, default=list)
    status = Column(Enum(AccountStatus), nullable=False, default=AccountStatus.ACTIVE)
    last_error = Column(Text, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    connected_at = Column(DateTime, server_default=func.now())


class OAuthState(Base):
    __tablename__ = "oauth_states"
    # sha256 of the raw state; the raw value only ever travels in the redirect
    state_hash = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False)
    platform = Column(Enum(Platform), nullable=False)
    organization_id = Column(String(64), nullable=True)
    code_verifier = Column(String(128), nullable=True)   # PKCE (Twitter)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)


class ScheduledPost(Base):
    __tablename__ = "scheduled_posts"
    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True)
    text = Column(Text, nullable=False, default="")
    media_urls = Column(JSON, default=list)
    hashtags = Column(JSON, default=list)
    targets = Column(JSON, default=list)   # [{"platform": "TWITTER", "account_id": 3}, ...]
    scheduled_for = Column(DateTime, nullable=True, index=True)
    status = Column(Enum(PostStatus), nullable=False, default=PostStatus.DRAFT, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    published_at = Column(DateTime, nullable=True)

    attempts = relationship("PublishAttempt", back_populates="post", order_by="PublishAttempt.id")


class PublishAttempt(Base):
    __tablename__ = "publish_attempts"
    __table_args__ = (UniqueConstraint("post_id", "account_id", name="uq_attempt_post_account"),)
    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("scheduled_posts.id"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("social_accounts.id"), nullable=False)
    platform = Column(Enum(Platform), nullable=False)
    status = Column(Enum(AttemptStatus), nullable=False, default=AttemptStatus.PENDING)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    error_kind = Column(String(32), nullable=True)   # transient | permanent | auth
    published_at = Column(DateTime, nullable=True)
    external_post_id = Column(String(255), nullable=True)
    external_url = Column(String(1024), nullable=True)

    post = relationship("ScheduledPost", back_populates="attempts")
