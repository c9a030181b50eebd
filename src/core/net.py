from __future__ import annotations

import logging
import os
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Optional

from src.core.errors import ProviderError

log = logging.getLogger(__name__)

DEFAULT_ALLOWED_HOSTS = frozenset(
    {
        "sandbox.plaid.com",
        "development.plaid.com",
        "production.plaid.com",
    }
)


def _normalize_host(entry: str) -> str:
    """
    Accepts bare hosts, host:port, or full URLs and returns the lowercased hostname.
    """
    e = entry.strip()
    if not e:
        return ""
    if "://" not in e:
        e = f"https://{e}"
    return (urllib.parse.urlparse(e).hostname or "").lower()


def allowed_outbound_hosts() -> set[str]:
    raw = (os.environ.get("ALLOWED_OUTBOUND_HOSTS") or "").strip()
    if raw:
        hosts = {_normalize_host(h) for h in raw.split(",")}
        return {h for h in hosts if h}
    return set(DEFAULT_ALLOWED_HOSTS)


def assert_url_allowed(url: str) -> None:
    u = urllib.parse.urlparse(url)
    if (u.scheme or "").lower() != "https":
        raise ProviderError("Blocked network request: only https:// is allowed.")
    host = (u.hostname or "").lower()
    if not host:
        raise ProviderError("Blocked network request: missing hostname.")
    if host not in allowed_outbound_hosts():
        if (os.environ.get("ALLOWED_OUTBOUND_HOSTS") or "").strip():
            raise ProviderError(
                f"Blocked network request: host not allowlisted ({host}). "
                "ALLOWED_OUTBOUND_HOSTS is set and overrides defaults."
            )
        raise ProviderError(f"Blocked network request: host not allowlisted ({host}).")


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    content: bytes
    content_type: Optional[str] = None


class _AllowlistRedirectHandler(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[override]
        assert_url_allowed(str(newurl))
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def _sleep_backoff(backoff_s: float, attempt: int) -> None:
    time.sleep(min(8.0, backoff_s * (2**attempt)))


def http_request(
    url: str,
    *,
    method: str = "GET",
    headers: Optional[dict[str, str]] = None,
    body: Optional[bytes] = None,
    timeout_s: float = 30.0,
    max_retries: int = 2,
    backoff_s: float = 0.5,
    verify_tls: bool = True,
    raise_for_status: bool = True,
) -> HttpResponse:
    """
    Minimal HTTP helper with:
      - outbound host allowlist (redirects included)
      - timeouts + limited retries on 429/5xx and connection errors

    With raise_for_status=False, a final 4xx/5xx response is returned to the caller so
    provider-specific error payloads can be parsed. Never include secrets in raised errors.
    """
    assert_url_allowed(url)
    u = urllib.parse.urlparse(url)
    host = (u.hostname or "").lower()
    path = u.path or "/"

    handlers: list[urllib.request.BaseHandler] = [_AllowlistRedirectHandler()]
    if not verify_tls:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        handlers.append(urllib.request.HTTPSHandler(context=ctx))
    opener = urllib.request.build_opener(*handlers)

    attempt = 0
    last_err: Exception | None = None
    last_reason: str | None = None
    while attempt <= max_retries:
        try:
            req = urllib.request.Request(url, data=body, headers=dict(headers or {}), method=method.upper())
            with opener.open(req, timeout=timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                return HttpResponse(
                    status_code=status,
                    content=resp.read(),
                    content_type=resp.headers.get("Content-Type"),
                )
        except urllib.error.HTTPError as e:
            last_err = e
            status = int(getattr(e, "code", 0) or 0)
            retryable = status == 429 or status >= 500
            if retryable and attempt < max_retries:
                log.warning("HTTP %s from host=%s path=%s; retrying", status, host, path)
                _sleep_backoff(backoff_s, attempt)
                attempt += 1
                continue
            if raise_for_status:
                raise ProviderError(f"HTTP error status={status} host={host} path={path}") from e
            content = e.read() if hasattr(e, "read") else b""
            return HttpResponse(
                status_code=status,
                content=content or b"",
                content_type=e.headers.get("Content-Type") if e.headers else None,
            )
        except urllib.error.URLError as e:
            last_err = e
            r = getattr(e, "reason", None)
            last_reason = str(r) if r is not None else str(e)
        except (TimeoutError, ConnectionError) as e:
            last_err = e
            last_reason = str(e) or type(e).__name__
        _sleep_backoff(backoff_s, attempt)
        attempt += 1

    if last_reason:
        raise ProviderError(
            f"Network request failed after retries: {type(last_err).__name__}: {last_reason}. host={host}"
        )
    raise ProviderError(f"Network request failed after retries: {type(last_err).__name__ if last_err else 'unknown'}")

