from __future__ import annotations

import pytest

from src.core.token_vault import (
    TokenVaultError,
    is_encrypted,
    mask_secret,
    open_access_token,
    seal_access_token,
)


def test_seal_and_open_with_key(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", "k1")
    sealed = seal_access_token("access-sandbox-123")
    assert sealed != "access-sandbox-123"
    assert is_encrypted(sealed)
    assert open_access_token(sealed) == "access-sandbox-123"


def test_without_key_tokens_stay_plaintext(monkeypatch):
    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("APP_SECRET_KEY", raising=False)
    assert seal_access_token("access-sandbox-123") == "access-sandbox-123"
    assert open_access_token("access-sandbox-123") == "access-sandbox-123"


def test_plaintext_fallback_logs_only_a_masked_token(monkeypatch, caplog):
    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
    monkeypatch.delenv("APP_SECRET_KEY", raising=False)
    with caplog.at_level("WARNING", logger="src.core.token_vault"):
        seal_access_token("access-sandbox-9876")
    assert "**********9876" in caplog.text
    assert "access-sandbox-9876" not in caplog.text


def test_encrypted_token_needs_the_right_key(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", "k1")
    sealed = seal_access_token("access-sandbox-123")

    monkeypatch.setenv("ENCRYPTION_KEY", "k2")
    with pytest.raises(TokenVaultError, match="wrong ENCRYPTION_KEY"):
        open_access_token(sealed)

    monkeypatch.delenv("ENCRYPTION_KEY")
    monkeypatch.delenv("APP_SECRET_KEY", raising=False)
    with pytest.raises(TokenVaultError, match="ENCRYPTION_KEY is not set"):
        open_access_token(sealed)


def test_app_secret_key_is_a_fallback(monkeypatch):
    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
    monkeypatch.setenv("APP_SECRET_KEY", "legacy")
    assert open_access_token(seal_access_token("tok")) == "tok"


def test_mask_secret():
    assert mask_secret(None) == "-"
    assert mask_secret("access-sandbox-1234") == "**********1234"
    assert mask_secret("abc") == "**********"
