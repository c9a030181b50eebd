from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from src.adapters.openrouter.client import OpenRouterClient
from src.adapters.plaid.client import PlaidClient
from src.adapters.supabase_auth.client import SupabaseAuthClient
from src.db.session import get_session
from src.rocketbucks.config import AppConfig, get_app_config


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_config() -> AppConfig:
    return get_app_config()


@lru_cache(maxsize=1)
def get_auth_client() -> SupabaseAuthClient:
    return SupabaseAuthClient()


def get_plaid_client() -> PlaidClient:
    return PlaidClient()


def get_advisor_client(cfg: AppConfig = Depends(get_config)) -> OpenRouterClient:
    return OpenRouterClient(referer=cfg.advisor_referer(), title=cfg.advisor.title, base_url=cfg.advisor.base_url)
