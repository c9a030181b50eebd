from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

from supabase import Client, create_client

from src.core.errors import ProviderError

log = logging.getLogger(__name__)


class AuthServiceError(ProviderError):
    pass


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str = ""
    user_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        meta = self.user_metadata or {}
        return str(meta.get("full_name") or meta.get("name") or "")


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[int]
    user: AuthUser


def _to_user(raw: Any) -> Optional[AuthUser]:
    if raw is None:
        return None
    uid = getattr(raw, "id", None)
    if not uid:
        return None
    return AuthUser(
        id=str(uid),
        email=str(getattr(raw, "email", None) or ""),
        user_metadata=dict(getattr(raw, "user_metadata", None) or {}),
    )


def supabase_url() -> str:
    return (os.environ.get("SUPABASE_URL") or "").strip()


def supabase_anon_key() -> str:
    return (os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def supabase_service_key() -> str:
    return (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


class SupabaseAuthClient:
    """
    Supabase Auth operations used by the API. Table storage goes through SQLAlchemy instead.
    """

    def __init__(self, *, url: str | None = None, anon_key: str | None = None, service_key: str | None = None) -> None:
        self.url = (url or supabase_url()).strip()
        self.anon_key = (anon_key or supabase_anon_key()).strip()
        self.service_key = (service_key or supabase_service_key()).strip()
        self._client: Client | None = None

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)

    def _public(self) -> Client:
        if not self.configured:
            raise AuthServiceError("Server configuration error: Supabase credentials not set.")
        if self._client is None:
            self._client = create_client(self.url, self.anon_key)
        return self._client

    def _admin(self) -> Client:
        if not self.url or not self.service_key:
            raise AuthServiceError("SUPABASE_SERVICE_ROLE_KEY is required for admin operations.")
        return create_client(self.url, self.service_key)

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        """Resolve a bearer JWT to its user; None when Supabase rejects the token."""
        try:
            resp = self._public().auth.get_user(access_token)
        except AuthServiceError:
            raise
        except Exception as e:
            log.info("Supabase rejected access token: %s", type(e).__name__)
            return None
        return _to_user(getattr(resp, "user", None)) if resp is not None else None

    def google_oauth_url(self, *, redirect_to: str) -> str:
        try:
            resp = self._public().auth.sign_in_with_oauth(
                {
                    "provider": "google",
                    "options": {
                        "redirect_to": redirect_to,
                        "query_params": {"access_type": "offline", "prompt": "consent"},
                    },
                }
            )
        except AuthServiceError:
            raise
        except Exception as e:
            raise AuthServiceError(str(e) or "Failed to initiate Google login") from e
        return str(getattr(resp, "url", "") or "")

    def exchange_code(self, code: str) -> AuthSession:
        try:
            resp = self._public().auth.exchange_code_for_session({"auth_code": code})
        except AuthServiceError:
            raise
        except Exception as e:
            raise AuthServiceError(str(e) or "Failed to exchange code for session") from e
        session = getattr(resp, "session", None)
        user = _to_user(getattr(resp, "user", None))
        if session is None or user is None:
            raise AuthServiceError("Failed to exchange code for session")
        return AuthSession(
            access_token=str(session.access_token),
            refresh_token=getattr(session, "refresh_token", None),
            expires_at=getattr(session, "expires_at", None),
            user=user,
        )

    def send_magic_link(self, *, email: str, redirect_to: str, data: dict[str, Any]) -> None:
        try:
            self._public().auth.sign_in_with_otp(
                {"email": email, "options": {"email_redirect_to": redirect_to, "data": data}}
            )
        except AuthServiceError:
            raise
        except Exception as e:
            raise AuthServiceError(str(e) or "Failed to send magic link") from e

    def delete_user(self, user_id: str) -> None:
        try:
            self._admin().auth.admin.delete_user(user_id)
        except AuthServiceError:
            raise
        except Exception as e:
            raise AuthServiceError(str(e) or "Failed to delete auth user") from e
