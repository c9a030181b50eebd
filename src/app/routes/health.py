from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from src.adapters.supabase_auth.client import SupabaseAuthClient
from src.app.deps import db_session, get_auth_client
from src.app.errors import error_response

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/test-supabase")
def test_supabase(session: Session = Depends(db_session), auth: SupabaseAuthClient = Depends(get_auth_client)):
    """Report whether auth credentials are present and the database answers."""
    config = {
        "supabaseUrl": "set" if auth.url else "missing",
        "supabaseKey": "set" if auth.anon_key else "missing",
    }
    if not auth.configured:
        return error_response(
            500,
            "Supabase credentials not configured",
            success=False,
            config=config,
            instructions="Set SUPABASE_URL and SUPABASE_ANON_KEY in your .env file",
        )
    try:
        session.execute(text("SELECT 1"))
    except Exception as e:
        log.error("Database connection error: %s", e)
        return error_response(500, "Database connection failed", details=str(e), success=False, config=config)
    return {
        "success": True,
        "message": "Supabase connection successful",
        "config": config,
        "database": "Connected",
        "auth": "Configured",
    }
