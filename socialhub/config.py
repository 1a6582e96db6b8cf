import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class PlatformCredentials:
    client_id: str
    client_secret: str
    redirect_uri: str

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


def _redirect(platform: str) -> str:
    return os.getenv(
        f"{platform.upper()}_REDIRECT_URI",
        f"http://localhost:8000/connections/{platform.lower()}/callback",
    )


class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./socialhub.db")
    fernet_key: str = os.getenv("FERNET_KEY", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")

    facebook_client_id: str = os.getenv("FACEBOOK_CLIENT_ID", "")
    facebook_client_secret: str = os.getenv("FACEBOOK_CLIENT_SECRET", "")
    facebook_redirect_uri: str = _redirect("facebook")
    instagram_client_id: str = os.getenv("INSTAGRAM_CLIENT_ID", "")
    instagram_client_secret: str = os.getenv("INSTAGRAM_CLIENT_SECRET", "")
    instagram_redirect_uri: str = _redirect("instagram")
    twitter_client_id: str = os.getenv("TWITTER_CLIENT_ID", "")
    twitter_client_secret: str = os.getenv("TWITTER_CLIENT_SECRET", "")
    twitter_redirect_uri: str = _redirect("twitter")
    linkedin_client_id: str = os.getenv("LINKEDIN_CLIENT_ID", "")
    linkedin_client_secret: str = os.getenv("LINKEDIN_CLIENT_SECRET", "")
    linkedin_redirect_uri: str = _redirect("linkedin")
    tiktok_client_id: str = os.getenv("TIKTOK_CLIENT_ID", "")
    tiktok_client_secret: str = os.getenv("TIKTOK_CLIENT_SECRET", "")
    tiktok_redirect_uri: str = _redirect("tiktok")
    youtube_client_id: str = os.getenv("YOUTUBE_CLIENT_ID", "")
    youtube_client_secret: str = os.getenv("YOUTUBE_CLIENT_SECRET", "")
    youtube_redirect_uri: str = _redirect("youtube")

    # CSRF state lifetime and how early a token is refreshed before it expires
    oauth_state_ttl_seconds: int = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))
    token_refresh_margin_seconds: int = int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", "300"))

    publish_max_attempts: int = int(os.getenv("PUBLISH_MAX_ATTEMPTS", "3"))
    publish_backoff_base_seconds: float = float(os.getenv("PUBLISH_BACKOFF_BASE_SECONDS", "1.0"))
    publish_backoff_jitter: float = float(os.getenv("PUBLISH_BACKOFF_JITTER", "0.2"))
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    scheduler_interval_seconds: int = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60"))

    def credentials(self, platform) -> PlatformCredentials:
        name = getattr(platform, "value", platform).lower()
        return PlatformCredentials(
            client_id=getattr(self, f"{name}_client_id", ""),
            client_secret=getattr(self, f"{name}_client_secret", ""),
            redirect_uri=getattr(self, f"{name}_redirect_uri", ""),
        )

settings = Settings()
