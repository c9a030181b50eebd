from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.templating import Jinja2Templates

from src.app.errors import install_error_handlers
from src.app.routes.accounts import router as accounts_router
from src.app.routes.ai import router as ai_router
from src.app.routes.auth import router as auth_router
from src.app.routes.categories import router as categories_router
from src.app.routes.health import router as health_router
from src.app.routes.link import router as link_router
from src.app.routes.recurring import router as recurring_router
from src.app.routes.reports import router as reports_router
from src.app.routes.transactions import router as transactions_router
from src.db.init_db import init_db


load_dotenv()

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


def _configure_logging() -> None:
    level = (os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def create_app() -> FastAPI:
    _configure_logging()
    app = FastAPI(title="Rocket Bucks API", version="0.1.0")
    install_error_handlers(app)

    @app.on_event("startup")
    def _startup() -> None:
        init_db()

    app.include_router(link_router)
    app.include_router(transactions_router)
    app.include_router(accounts_router)
    app.include_router(categories_router)
    app.include_router(recurring_router)
    app.include_router(auth_router)
    app.include_router(reports_router)
    app.include_router(ai_router)
    app.include_router(health_router)
    return app


app = create_app()
