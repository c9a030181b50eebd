from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

app = typer.Typer(help="Rocket Bucks CLI")

# (env var, prompt, hide input)
ENV_PROMPTS: list[tuple[str, str, bool]] = [
    ("PLAID_CLIENT_ID", "Plaid Client ID", False),
    ("PLAID_SECRET", "Plaid Secret", True),
    ("PLAID_ENV", "Plaid environment (sandbox|development|production)", False),
    ("SUPABASE_URL", "Supabase URL", False),
    ("SUPABASE_ANON_KEY", "Supabase anon key", True),
    ("SUPABASE_SERVICE_ROLE_KEY", "Supabase service role key", True),
    ("OPENROUTER_API_KEY", "OpenRouter API key (blank to skip)", True),
]


def merge_env_lines(existing: str, updates: dict[str, str]) -> str:
    """
    Rewrite KEY=value lines for the keys in `updates`; every other line (comments,
    unrelated keys) is kept in place. New keys are appended.
    """
    out: list[str] = []
    seen: set[str] = set()
    for line in existing.splitlines():
        key = line.split("=", 1)[0].strip() if "=" in line and not line.lstrip().startswith("#") else ""
        if key in updates:
            out.append(f"{key}={updates[key]}")
            seen.add(key)
        else:
            out.append(line)
    for key, value in updates.items():
        if key not in seen:
            out.append(f"{key}={value}")
    return "\n".join(out) + "\n"


def _print(result: dict) -> None:
    typer.echo(json.dumps(result, indent=2, default=str))


@app.command("init-db")
def init_db_cmd():
    """Create tables and seed the system categories."""
    load_dotenv()
    from src.db.init_db import init_db

    init_db()
    typer.echo("Database initialized.")


@app.command("setup-env")
def setup_env_cmd(
    path: Path = typer.Option(Path(".env"), help="Env file to write"),
    generate_key: bool = typer.Option(True, help="Generate ENCRYPTION_KEY when it is not set"),
):
    """Interactively write Plaid, Supabase, OpenRouter and encryption settings into an env file."""
    from dotenv import dotenv_values

    from src.core.token_vault import generate_secret

    existing_text = path.read_text() if path.exists() else ""
    current = {k: v for k, v in dotenv_values(path).items() if v is not None} if path.exists() else {}
    if existing_text and not typer.confirm(f"{path} exists. Update it (other lines are kept)?", default=True):
        raise typer.Exit(code=1)

    updates: dict[str, str] = {}
    for key, label, hidden in ENV_PROMPTS:
        default = current.get(key) or ("sandbox" if key == "PLAID_ENV" else "")
        value = typer.prompt(label, default=default, hide_input=hidden, show_default=not hidden and bool(default))
        value = str(value or "").strip()
        if value:
            updates[key] = value

    if generate_key and not current.get("ENCRYPTION_KEY"):
        updates["ENCRYPTION_KEY"] = generate_secret()
        typer.echo("Generated ENCRYPTION_KEY.")

    path.write_text(merge_env_lines(existing_text, updates))
    typer.echo(f"Wrote {path} ({len(updates)} values).")


@app.command("sync")
def sync_cmd(user_id: str = typer.Option(..., help="User id whose items to sync")):
    """Sync transactions for one user, ignoring the manual-sync rate limit."""
    load_dotenv()
    from src.adapters.plaid.client import PlaidClient
    from src.core.errors import NoLinkedItemsError
    from src.db.session import get_session
    from src.rocketbucks.sync import sync_user_transactions

    with get_session() as session:
        try:
            _print(sync_user_transactions(session, user_id=user_id, plaid=PlaidClient(), enforce_rate_limit=False))
        except NoLinkedItemsError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1)


@app.command("sync-recurring")
def sync_recurring_cmd(user_id: str = typer.Option(...)):
    load_dotenv()
    from src.adapters.plaid.client import PlaidClient
    from src.core.errors import NoLinkedItemsError
    from src.db.session import get_session
    from src.rocketbucks.sync import sync_user_recurring

    with get_session() as session:
        try:
            _print(sync_user_recurring(session, user_id=user_id, plaid=PlaidClient()))
        except NoLinkedItemsError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1)


@app.command("categorize")
def categorize_cmd(user_id: str = typer.Option(...)):
    load_dotenv()
    from src.db.session import get_session
    from src.rocketbucks.categorize import auto_categorize_user
    from src.rocketbucks.config import get_app_config

    with get_session() as session:
        _print(auto_categorize_user(session, user_id=user_id, cfg=get_app_config().categorization))


@app.command("categorize-text")
def categorize_text_cmd(
    name: str = typer.Argument(..., help="Transaction description"),
    merchant: Optional[str] = typer.Option(None, help="Merchant name"),
):
    from src.rocketbucks.categorize import auto_categorize, category_display, load_mappings
    from src.rocketbucks.config import get_app_config

    cat = auto_categorize(name, merchant, mappings=load_mappings(get_app_config().categorization))
    shown = category_display(cat)
    typer.echo(f"{shown['icon']} {shown['name']}")


@app.command("serve")
def serve_cmd(
    host: str = typer.Option("127.0.0.1"),
    port: int = typer.Option(3001),
    reload: bool = typer.Option(False),
):
    import uvicorn

    uvicorn.run("src.app.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
