from __future__ import annotations

import logging
import os
import re
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import Session

from src.adapters.supabase_auth.client import AuthServiceError, AuthUser, SupabaseAuthClient
from src.app.auth import require_user
from src.app.deps import db_session, get_auth_client, get_config
from src.app.errors import error_response
from src.rocketbucks.config import AppConfig
from src.rocketbucks.profiles import ensure_profile, get_profile, profile_payload

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def base_url(request: Request) -> str:
    proto = request.headers.get("x-forwarded-proto") or "https"
    host = request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


def _is_production(request: Request) -> bool:
    if (os.environ.get("VERCEL") or "").strip():
        return True
    if (os.environ.get("APP_ENV") or "").strip().lower() == "production":
        return True
    return "localhost" not in (request.headers.get("host") or "")


def _start_google_oauth(request: Request, auth: SupabaseAuthClient):
    redirect_to = f"{base_url(request)}/auth/callback"
    log.info("Initiating Google OAuth, redirect URL: %s", redirect_to)
    try:
        url = auth.google_oauth_url(redirect_to=redirect_to)
    except AuthServiceError as e:
        log.error("Google OAuth error: %s", e)
        return error_response(400, str(e) or "Failed to initiate Google login")
    if not url:
        return error_response(500, "Failed to generate OAuth URL")
    return {"url": url}


@router.post("/callback")
def oauth_start_callback(request: Request, auth: SupabaseAuthClient = Depends(get_auth_client)):
    return _start_google_oauth(request, auth)


@router.post("/google")
def oauth_start_google(request: Request, auth: SupabaseAuthClient = Depends(get_auth_client)):
    return _start_google_oauth(request, auth)


@router.post("/register")
def oauth_start_register(request: Request, auth: SupabaseAuthClient = Depends(get_auth_client)):
    return _start_google_oauth(request, auth)


def _message_page(request: Request, status_code: int, title: str, message: str, detail: Optional[str] = None):
    from src.app.main import templates

    return templates.TemplateResponse(
        request,
        "auth_message.html",
        {"title": title, "message": message, "detail": detail, "login_url": "/login"},
        status_code=status_code,
    )


@router.get("/callback")
def oauth_callback(
    request: Request,
    code: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    session: Session = Depends(db_session),
    auth: SupabaseAuthClient = Depends(get_auth_client),
    cfg: AppConfig = Depends(get_config),
):
    """
    Provider redirect target. Renders a page that stores the session tokens in
    localStorage and forwards to the frontend.
    """
    if error:
        log.error("OAuth error from provider: %s %s", error, error_description or "")
        return _message_page(request, 400, "Authentication Error", error_description or error or "Authentication failed")
    if not code:
        return _message_page(
            request,
            400,
            "Invalid Request",
            "The authentication request is invalid or expired.",
            "No authorization code received. Please try logging in again.",
        )
    try:
        auth_session = auth.exchange_code(code)
    except AuthServiceError as e:
        log.error("Verification error: %s", e)
        return _message_page(request, 400, "Verification Failed", str(e) or "The verification link is invalid or expired.")

    try:
        ensure_profile(session, auth_session.user)
        from src.app.main import templates

        redirect_url = "/" if _is_production(request) else cfg.auth.dev_frontend_url
        return templates.TemplateResponse(
            request,
            "auth_callback.html",
            {
                "access_token": auth_session.access_token,
                "refresh_token": auth_session.refresh_token,
                "redirect_url": redirect_url,
            },
        )
    except Exception as e:
        session.rollback()
        log.error("Callback error: %s", e)
        return _message_page(request, 500, "Error", "An error occurred during verification.")


@router.post("/exchange-code")
def exchange_code(
    payload: Optional[dict[str, Any]] = Body(default=None),
    session: Session = Depends(db_session),
    auth: SupabaseAuthClient = Depends(get_auth_client),
):
    if not auth.configured:
        return error_response(500, "Server configuration error: Supabase credentials not set.")
    code = str((payload or {}).get("code") or "").strip()
    if not code:
        return error_response(400, "Authorization code is required")
    try:
        auth_session = auth.exchange_code(code)
    except AuthServiceError as e:
        log.error("Exchange error: %s", e)
        return error_response(400, str(e) or "Failed to exchange code for session")

    row = ensure_profile(session, auth_session.user)
    log.info("User authenticated via Google: %s", auth_session.user.id)
    return {
        "access_token": auth_session.access_token,
        "refresh_token": auth_session.refresh_token,
        "expires_at": auth_session.expires_at,
        "user": profile_payload(auth_session.user, row),
    }


@router.post("/send_magic_link")
def send_magic_link(
    request: Request,
    payload: Optional[dict[str, Any]] = Body(default=None),
    auth: SupabaseAuthClient = Depends(get_auth_client),
):
    data = payload or {}
    email = str(data.get("email") or "").strip()
    if not email:
        return error_response(400, "Email is required")
    if not EMAIL_RE.match(email):
        return error_response(400, "Invalid email format")
    metadata = {"full_name": str(data.get("full_name") or ""), "type": str(data.get("type") or "signup")}
    try:
        auth.send_magic_link(email=email, redirect_to=f"{base_url(request)}/auth/callback", data=metadata)
    except AuthServiceError as e:
        log.error("Magic link error: %s", e)
        return error_response(400, str(e) or "Failed to send magic link")
    return {"message": "Magic link sent! Please check your email.", "email": email}


@router.get("/me")
def me(session: Session = Depends(db_session), user: AuthUser = Depends(require_user)):
    return {"user": profile_payload(user, get_profile(session, user.id))}
