from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class PlaidLinkConfig(BaseModel):
    client_name: str = "Rocket Bucks"
    products: list[str] = Field(default_factory=lambda: ["transactions"])
    country_codes: list[str] = Field(default_factory=lambda: ["US"])
    language: str = "en"
    sync_window_days: int = 30
    page_size: int = 500


class SyncConfig(BaseModel):
    # 0 disables the manual-sync rate limit.
    min_interval_hours: float = 24
    list_window_days: int = 30
    list_limit: int = 500
    detection_limit: int = 500


class CategorizationConfig(BaseModel):
    rules_path: str = "categorization_rules.yaml"
    batch_size: int = 100


class AdvisorConfig(BaseModel):
    model: str = "anthropic/claude-3.5-sonnet"
    base_url: str = "https://openrouter.ai/api/v1"
    max_history: int = 8
    max_message_chars: int = 2000
    temperature: float = 0.35
    max_tokens: int = 600
    top_p: float = 0.9
    title: str = "Rocket Bucks AI"
    default_referer: str = "https://rocket-money-azure.vercel.app"


class AuthConfig(BaseModel):
    dev_frontend_url: str = "http://localhost:5173/"


class AppConfig(BaseModel):
    plaid: PlaidLinkConfig = Field(default_factory=PlaidLinkConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    categorization: CategorizationConfig = Field(default_factory=CategorizationConfig)
    advisor: AdvisorConfig = Field(default_factory=AdvisorConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)

    def advisor_model(self) -> str:
        return (os.environ.get("OPENROUTER_MODEL") or "").strip() or self.advisor.model

    def advisor_referer(self) -> str:
        explicit = (os.environ.get("OPENROUTER_APP_URL") or "").strip()
        if explicit:
            return explicit
        vercel = (os.environ.get("VERCEL_URL") or "").strip()
        if vercel:
            return f"https://{vercel}"
        return self.advisor.default_referer


def _candidate_paths() -> list[Path]:
    paths = []
    override = (os.environ.get("ROCKETBUCKS_CONFIG") or "").strip()
    if override:
        paths.append(Path(override).expanduser())
    paths.append(Path("rocketbucks.yaml"))
    paths.append(Path(os.path.expanduser("~")) / ".rocketbucks" / "rocketbucks.yaml")
    return paths


def load_app_config() -> tuple[AppConfig, Optional[str]]:
    for p in _candidate_paths():
        if p.exists():
            data = yaml.safe_load(p.read_text()) or {}
            return AppConfig.model_validate(data.get("rocketbucks") or data), str(p)
    return AppConfig(), None


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    cfg, _ = load_app_config()
    return cfg
