from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

from socialhub.config import settings
from socialhub.errors import ConfigError


def _fernet() -> Fernet:
    if not settings.fernet_key:
        raise ConfigError("FERNET_KEY is missing in .env")
    return Fernet(settings.fernet_key.encode())

def encrypt_token(plain: str | None) -> str | None:
    if plain is None:
        return None
    return _fernet().encrypt(plain.encode()).decode()

def decrypt_token(cipher: str | None) -> str | None:
    if not cipher:
        return None
    try:
        return _fernet().decrypt(cipher.encode()).decode()
    except (TypeError, InvalidToken) as e:
        # Log and propagate for caller to handle
        logger.error(f"[token_crypto] Decrypt error: {e.__class__.__name__}")
        raise
