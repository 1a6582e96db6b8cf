# socialhub/platforms/registry.py
from typing import Dict, Optional, Type

import httpx

from socialhub.config import Settings, settings as default_settings
from socialhub.db.models import Platform
from socialhub.errors import ValidationError
from socialhub.platforms.base import PlatformAdapter
from socialhub.platforms.facebook import FacebookAdapter
from socialhub.platforms.instagram import InstagramAdapter
from socialhub.platforms.linkedin import LinkedInAdapter
from socialhub.platforms.tiktok import TikTokAdapter
from socialhub.platforms.twitter import TwitterAdapter
from socialhub.platforms.youtube import YouTubeAdapter

ADAPTERS: Dict[Platform, Type[PlatformAdapter]] = {
    Platform.FACEBOOK: FacebookAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
    Platform.TWITTER: TwitterAdapter,
    Platform.LINKEDIN: LinkedInAdapter,
    Platform.TIKTOK: TikTokAdapter,
    Platform.YOUTUBE: YouTubeAdapter,
}


def parse_platform(value) -> Platform:
    """Accept 'twitter', 'TWITTER' or a Platform member."""
    if isinstance(value, Platform):
        return value
    try:
        return Platform(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unsupported platform: {value}")


def build_adapter(
    platform,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PlatformAdapter:
    cfg = settings or default_settings
    platform = parse_platform(platform)
    cls = ADAPTERS[platform]
    return cls(cfg.credentials(platform), timeout=cfg.http_timeout_seconds, transport=transport)
