"""
Exceptions raised by the OAuth connector, the platform adapters and the publish scheduler.

Each error carries a stable ``code`` and the HTTP status the API layer answers
with, so routers never leak raw platform exceptions.
"""


class SocialHubError(Exception):
    """Base exception for all service errors"""

    code = "internal_error"
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code

    def to_dict(self) -> dict:
        return {"status": "error", "error": self.code, "message": self.message}


class ConfigError(SocialHubError):
    """Platform client credentials are not configured"""

    code = "config_error"
    http_status = 500


class NotFoundError(SocialHubError):
    """Requested record does not exist"""

    code = "not_found"
    http_status = 404


class ValidationError(SocialHubError):
    """Request failed validation before any platform call"""

    code = "validation_error"
    http_status = 422


class InvalidStateError(SocialHubError):
    """OAuth state is unknown, expired or reused, or a post is in the wrong state"""

    code = "invalid_state"
    http_status = 400


class TokenExchangeError(SocialHubError):
    """Platform rejected the authorization code"""

    code = "token_exchange_failed"
    http_status = 400


class NotRefreshableError(SocialHubError):
    """Account has no refresh token; user must reconnect"""

    code = "reauthorization_required"
    http_status = 401


class RefreshFailedError(SocialHubError):
    """Refresh token was rejected; account marked expired"""

    code = "refresh_failed"
    http_status = 401


class AccountInactiveError(SocialHubError):
    """Account is revoked or in error and cannot be used"""

    code = "account_inactive"
    http_status = 409


class PublishError(SocialHubError):
    """Platform publish call failed"""

    code = "publish_failed"
    http_status = 502


class PublishTransientError(PublishError):
    """Rate limited, server error or timeout; safe to retry"""

    code = "publish_transient"
    http_status = 503

    def __init__(self, message: str = "", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class PublishPermanentError(PublishError):
    """Platform rejected the request; retrying will not help"""

    code = "publish_rejected"
    http_status = 502


class TokenRejectedError(PublishPermanentError):
    """Platform reported the access token as invalid"""

    code = "token_rejected"
    http_status = 401
