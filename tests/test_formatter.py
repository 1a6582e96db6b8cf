from socialhub.db.models import Platform
from socialhub.services.formatter import (
    ELLIPSIS,
    PLATFORM_LIMITS,
    format_for_platform,
    normalize_hashtags,
    text_budget,
    truncate,
)


def test_limits_follow_platform_documentation():
    assert PLATFORM_LIMITS[Platform.TWITTER] == 280
    assert PLATFORM_LIMITS[Platform.LINKEDIN] == 3000
    assert PLATFORM_LIMITS[Platform.INSTAGRAM] == 2200
    assert PLATFORM_LIMITS[Platform.FACEBOOK] == 63206


def test_normalize_hashtags():
    assert normalize_hashtags(["#Python", "python", "fast api", "", "#"]) == ["#Python", "#fastapi"]


def test_hashtags_on_separate_paragraph_for_linkedin():
    content = format_for_platform(Platform.LINKEDIN, "Big news", ["launch"])
    assert content.text == "Big news\n\n#launch"


def test_hashtags_inline_for_twitter():
    content = format_for_platform(Platform.TWITTER, "Big news", ["launch", "ai"])
    assert content.text == "Big news #launch #ai"


def test_hashtag_already_in_text_is_not_repeated():
    content = format_for_platform(Platform.TWITTER, "Loving #Python today", ["python"])
    assert content.text == "Loving #Python today"


def test_whitespace_is_collapsed():
    content = format_for_platform(Platform.FACEBOOK, "  hello    there \n  friend  ")
    assert content.text == "hello there\nfriend"


def test_hashtags_dropped_before_text_is_cut():
    text = "a" * 275
    content = format_for_platform(Platform.TWITTER, text, ["toolong"])
    assert content.text == text


def test_long_text_truncated_on_word_boundary():
    text = " ".join(["word"] * 100)
    content = format_for_platform(Platform.TWITTER, text)
    assert len(content.text) <= 280
    assert content.text.endswith("word" + ELLIPSIS)


def test_truncate_leaves_short_text_alone():
    assert truncate("short", 280) == "short"


def test_media_urls_are_carried():
    content = format_for_platform(Platform.INSTAGRAM, "pic", media_urls=["https://cdn.example/a.jpg"])
    assert content.media_urls == ["https://cdn.example/a.jpg"]


def test_text_budget_leaves_room_for_twitter_media_link():
    assert text_budget(Platform.TWITTER) == 280
    assert text_budget(Platform.TWITTER, ["https://x.test/a.jpg"]) == 256
    assert text_budget(Platform.LINKEDIN, ["https://x.test/a.jpg"]) == 3000


def test_twitter_text_with_media_is_cut_to_fit_the_link():
    url = "https://x.test/a.jpg"
    content = format_for_platform(Platform.TWITTER, " ".join(["word"] * 60), media_urls=[url])
    assert len(content.text) <= 256
    assert content.text.endswith(ELLIPSIS)
    assert content.media_urls == [url]
