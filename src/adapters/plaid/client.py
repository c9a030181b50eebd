from __future__ import annotations

import datetime as dt
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from src.core.errors import ProviderError
from src.core.net import assert_url_allowed, http_request

log = logging.getLogger(__name__)


def _as_str(v: Any) -> str:
    return str(v).strip() if v is not None else ""


def _plaid_base_url(env: str) -> str:
    e = (env or "sandbox").strip().lower()
    if e in {"prod", "production"}:
        host = "production.plaid.com"
    else:
        # "development" is served by the sandbox host.
        host = "sandbox.plaid.com"
    return f"https://{host}"


@dataclass(frozen=True)
class PlaidErrorInfo:
    error_code: str
    error_type: str
    error_message: str
    request_id: str | None = None

    @property
    def is_item_login_required(self) -> bool:
        return (self.error_code or "").upper() == "ITEM_LOGIN_REQUIRED"


class PlaidApiError(ProviderError):
    def __init__(self, info: PlaidErrorInfo):
        super().__init__(f"{info.error_code}: {info.error_message}".strip(": "))
        self.info = info


class PlaidClient:
    """
    JSON-over-HTTPS Plaid client on top of the shared allowlist + retry helper.

    Credentials travel in the request body only and never appear in raised errors.
    """

    def __init__(
        self,
        *,
        env: str | None = None,
        client_id: str | None = None,
        secret: str | None = None,
    ) -> None:
        self.env = (env or os.environ.get("PLAID_ENV") or "sandbox").strip().lower()
        self.client_id = (client_id or os.environ.get("PLAID_CLIENT_ID") or "").strip()
        self.secret = (secret or os.environ.get("PLAID_SECRET") or "").strip()
        base_override = (os.environ.get("PLAID_BASE_URL") or "").strip()
        self.base_url = (base_override or _plaid_base_url(self.env)).rstrip("/")
        skip = (os.environ.get("PLAID_INSECURE_SKIP_VERIFY") or "").strip().lower()
        self.verify_tls = skip not in {"1", "true", "yes", "y", "on"}

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.secret)

    def _require_ready(self) -> None:
        if not self.configured:
            raise ProviderError("PLAID_CLIENT_ID and PLAID_SECRET are required.")
        assert_url_allowed(self.base_url)

    def _auth(self) -> dict[str, Any]:
        return {"client_id": self.client_id, "secret": self.secret}

    def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_ready()
        url = f"{self.base_url}{path}"
        body = json.dumps({**self._auth(), **payload}, separators=(",", ":"), sort_keys=True).encode("utf-8")
        resp = http_request(
            url,
            method="POST",
            headers={"Content-Type": "application/json"},
            body=body,
            timeout_s=45.0,
            max_retries=2,
            backoff_s=0.5,
            verify_tls=self.verify_tls,
            raise_for_status=False,
        )
        try:
            data = json.loads(resp.content.decode("utf-8", errors="replace") or "{}")
        except json.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            raise ProviderError("Plaid response was not a JSON object.")

        if int(resp.status_code) >= 400 or data.get("error_code"):
            info = PlaidErrorInfo(
                error_code=_as_str(data.get("error_code") or f"HTTP_{resp.status_code}"),
                error_type=_as_str(data.get("error_type")),
                error_message=_as_str(data.get("error_message") or "Plaid request failed"),
                request_id=_as_str(data.get("request_id")) or None,
            )
            log.warning("Plaid %s failed: %s (request_id=%s)", path, info.error_code, info.request_id)
            raise PlaidApiError(info)
        return data

    def create_link_token(
        self,
        *,
        client_user_id: str,
        client_name: str = "Rocket Bucks",
        products: Optional[list[str]] = None,
        country_codes: Optional[list[str]] = None,
        language: str = "en",
        redirect_uri: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "client_name": client_name,
            "language": language,
            "products": products or ["transactions"],
            "country_codes": country_codes or ["US"],
            "user": {"client_user_id": str(client_user_id)},
        }
        if redirect_uri:
            payload["redirect_uri"] = redirect_uri
        data = self._post_json("/link/token/create", payload)
        link_token = _as_str(data.get("link_token"))
        if not link_token:
            raise ProviderError("Plaid did not return link_token.")
        return link_token

    def exchange_public_token(self, *, public_token: str) -> tuple[str, str]:
        data = self._post_json("/item/public_token/exchange", {"public_token": public_token})
        access_token = _as_str(data.get("access_token"))
        item_id = _as_str(data.get("item_id"))
        if not access_token or not item_id:
            raise ProviderError("Plaid did not return access_token/item_id.")
        return access_token, item_id

    def item_get(self, *, access_token: str) -> dict[str, Any]:
        data = self._post_json("/item/get", {"access_token": access_token})
        item = data.get("item")
        return item if isinstance(item, dict) else {}

    def item_remove(self, *, access_token: str) -> None:
        self._post_json("/item/remove", {"access_token": access_token})

    def institution_get_by_id(self, *, institution_id: str, country_codes: Optional[list[str]] = None) -> dict[str, Any]:
        data = self._post_json(
            "/institutions/get_by_id",
            {"institution_id": institution_id, "country_codes": country_codes or ["US"]},
        )
        inst = data.get("institution")
        return inst if isinstance(inst, dict) else {}

    def get_accounts(self, *, access_token: str) -> list[dict[str, Any]]:
        data = self._post_json("/accounts/get", {"access_token": access_token})
        rows = data.get("accounts")
        if not isinstance(rows, list):
            return []
        return [r for r in rows if isinstance(r, dict)]

    def transactions_get(
        self,
        *,
        access_token: str,
        start_date: dt.date,
        end_date: dt.date,
        offset: int = 0,
        count: int = 500,
    ) -> dict[str, Any]:
        """
        Date-range bank/credit transactions pull (paginated by offset/count).
        """
        payload: dict[str, Any] = {
            "access_token": access_token,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "options": {"offset": int(offset), "count": int(count)},
        }
        return self._post_json("/transactions/get", payload)

    def transactions_get_all(
        self,
        *,
        access_token: str,
        start_date: dt.date,
        end_date: dt.date,
        page_size: int = 500,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        offset = 0
        while True:
            data = self.transactions_get(
                access_token=access_token,
                start_date=start_date,
                end_date=end_date,
                offset=offset,
                count=page_size,
            )
            page = [t for t in (data.get("transactions") or []) if isinstance(t, dict)]
            out.extend(page)
            total = int(data.get("total_transactions") or 0)
            offset += len(page)
            if not page or offset >= total:
                break
        return out

    def transactions_recurring_get(self, *, access_token: str, account_ids: Optional[list[str]] = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"access_token": access_token}
        if account_ids:
            payload["account_ids"] = list(account_ids)
        data = self._post_json("/transactions/recurring/get", payload)
        return {
            "inflow_streams": [s for s in (data.get("inflow_streams") or []) if isinstance(s, dict)],
            "outflow_streams": [s for s in (data.get("outflow_streams") or []) if isinstance(s, dict)],
        }


def parse_plaid_date(s: Any) -> dt.date | None:
    v = _as_str(s)
    if not v:
        return None
    try:
        return dt.date.fromisoformat(v[:10])
    except ValueError:
        return None
