from __future__ import annotations

import base64
import hashlib
import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

log = logging.getLogger(__name__)

# Every Fernet token begins with version byte 0x80 followed by a timestamp; base64 renders it as "gAAAAA".
_FERNET_PREFIX = "gAAAAA"


class TokenVaultError(Exception):
    pass


def _secret() -> Optional[str]:
    for name in ("ENCRYPTION_KEY", "APP_SECRET_KEY"):
        v = os.environ.get(name)
        if v and v.strip():
            return v.strip()
    return None


def secret_key_available() -> bool:
    return _secret() is not None


def _fernet() -> Fernet:
    secret = _secret()
    if secret is None:
        raise TokenVaultError("ENCRYPTION_KEY (or APP_SECRET_KEY) is required to encrypt access tokens.")
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def generate_secret() -> str:
    return Fernet.generate_key().decode("ascii")


def encrypt_value(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_value(token: str) -> str:
    try:
        return _fernet().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise TokenVaultError("Failed to decrypt access token (wrong ENCRYPTION_KEY?).") from e


def is_encrypted(value: Optional[str]) -> bool:
    return bool(value) and str(value).startswith(_FERNET_PREFIX)


def seal_access_token(access_token: str) -> str:
    """
    Encrypt a Plaid access token for storage.

    Without a configured key the token is stored as-is so local development still works.
    """
    if not secret_key_available():
        log.warning("ENCRYPTION_KEY not set; storing Plaid access token %s unencrypted", mask_secret(access_token))
        return access_token
    return encrypt_value(access_token)


def open_access_token(stored: str) -> str:
    if not is_encrypted(stored):
        return stored
    if not secret_key_available():
        raise TokenVaultError("Access token is encrypted but ENCRYPTION_KEY is not set.")
    return decrypt_value(stored)


def mask_secret(value: Optional[str], *, keep_last: int = 4) -> str:
    if value is None or str(value) == "":
        return "-"
    v = str(value)
    k = max(0, int(keep_last))
    suffix = v[-k:] if k and len(v) >= k else ""
    return ("*" * 10) + suffix
