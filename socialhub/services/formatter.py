# socialhub/services/formatter.py
import re
from typing import Iterable, List

from socialhub.db.models import Platform
from socialhub.platforms.base import PostContent
from socialhub.platforms.registry import ADAPTERS

# Platform-specific character limits
PLATFORM_LIMITS = {p: cls.max_length for p, cls in ADAPTERS.items()}

ELLIPSIS = "…"
_WS = re.compile(r"[ \t]+")


def limit_for(platform: Platform) -> int:
    return PLATFORM_LIMITS.get(platform, 63206)


def text_budget(platform: Platform, media_urls=None) -> int:
    """Room left for the text once the adapter has added any inline media link."""
    adapter_cls = ADAPTERS.get(platform)
    reserved = adapter_cls.inline_media_length(media_urls) if adapter_cls else 0
    return limit_for(platform) - reserved


def normalize_hashtags(tags: Iterable[str]) -> List[str]:
    out = []
    seen = set()
    for tag in tags or []:
        clean = re.sub(r"[^\w]", "", str(tag).lstrip("#"))
        if clean and clean.lower() not in seen:
            seen.add(clean.lower())
            out.append(f"#{clean}")
    return out


def truncate(text: str, limit: int) -> str:
    """Cut on a word boundary and end with an ellipsis."""
    if len(text) <= limit:
        return text
    cut = text[: limit - len(ELLIPSIS)]
    space = cut.rfind(" ")
    if space > limit // 2:
        cut = cut[:space]
    return cut.rstrip() + ELLIPSIS


def format_for_platform(platform: Platform, text: str, hashtags: Iterable[str] = (), media_urls=None) -> PostContent:
    body = "\n".join(_WS.sub(" ", line).strip() for line in (text or "").strip().splitlines())
    lowered = body.lower()
    tags = [t for t in normalize_hashtags(hashtags) if t.lower() not in lowered]
    limit = text_budget(platform, media_urls)

    if tags:
        suffix = " ".join(tags)
        sep = "\n\n" if platform in (Platform.LINKEDIN, Platform.FACEBOOK, Platform.INSTAGRAM) else " "
        combined = f"{body}{sep}{suffix}" if body else suffix
        # hashtags are dropped before the authored text is shortened
        if len(combined) <= limit:
            body = combined
    return PostContent(text=truncate(body, limit), media_urls=list(media_urls or []))
