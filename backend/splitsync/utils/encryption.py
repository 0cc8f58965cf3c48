"""Decryption of Plaid access tokens read from the store."""

from cryptography.fernet import Fernet, InvalidToken

from splitsync.config import get_settings
from splitsync.logging_config import get_logger


logger = get_logger("utils.encryption")


def get_cipher() -> Fernet | None:
    """Get Fernet cipher instance, or None when no key is configured."""
    settings = get_settings()
    if not settings.encryption_key:
        return None
    return Fernet(settings.encryption_key.encode())


def decrypt_access_token(stored_token: str) -> str:
    """Decrypt an access token as stored on a plaid_items row.

    Tokens linked before encryption was switched on are stored in plain
    text; those are returned unchanged.

    Args:
        stored_token: Token string from the database

    Returns:
        Plain text access token
    """
    cipher = get_cipher()
    if cipher is None:
        return stored_token

    try:
        return cipher.decrypt(stored_token.encode()).decode()
    except InvalidToken:
        logger.debug("[Encryption] Access token is not Fernet-encrypted, using as-is")
        return stored_token
