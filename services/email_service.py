"""
Outbound mail via Microsoft Graph (`users/{from}/sendMail`).

Access tokens come from the OAuth2 client-credentials flow and are cached
until one minute before they expire.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Iterable
from urllib.parse import quote

import requests
from cachetools import TTLCache

from config import Config


_log = logging.getLogger("mail")

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL_TMPL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
TOKEN_EXPIRY_SKEW_SECONDS = 60

# One entry per tenant/client pair; entries carry their own expiry as well.
_token_cache: TTLCache = TTLCache(maxsize=8, ttl=3600)
_token_lock = threading.Lock()


class EmailSendError(RuntimeError):
    pass


def _recipients(value: str | Iterable[str] | None) -> list[dict[str, Any]]:
    if not value:
        return []
    items = [value] if isinstance(value, str) else list(value)
    return [{"emailAddress": {"address": str(a).strip()}} for a in items if str(a or "").strip()]


def get_graph_access_token(cfg: Config) -> str:
    if not cfg.MS_TENANT_ID or not cfg.MS_CLIENT_ID or not cfg.MS_CLIENT_SECRET:
        raise EmailSendError("Missing MS_TENANT_ID, MS_CLIENT_ID or MS_CLIENT_SECRET")

    key = f"{cfg.MS_TENANT_ID}:{cfg.MS_CLIENT_ID}"
    with _token_lock:
        cached = _token_cache.get(key)
        if cached and cached[1] > time.monotonic():
            return cached[0]

    try:
        resp = requests.post(
            TOKEN_URL_TMPL.format(tenant=quote(cfg.MS_TENANT_ID, safe="")),
            data={
                "client_id": cfg.MS_CLIENT_ID,
                "client_secret": cfg.MS_CLIENT_SECRET,
                "grant_type": "client_credentials",
                "scope": "https://graph.microsoft.com/.default",
            },
            timeout=cfg.MAIL_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise EmailSendError(f"Token request failed: {e}")

    if not resp.ok:
        raise EmailSendError(f"Token request failed ({resp.status_code}): {resp.text[:300]}")

    data = resp.json()
    token = str(data.get("access_token") or "")
    if not token:
        raise EmailSendError("Token response did not include access_token")
    expires_in = int(data.get("expires_in") or 3600)
    expires_at = time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_SKEW_SECONDS)

    with _token_lock:
        _token_cache[key] = (token, expires_at)
    return token


def clear_token_cache() -> None:
    with _token_lock:
        _token_cache.clear()


def send_mail(
    cfg: Config,
    *,
    to: str | Iterable[str],
    subject: str,
    html: str | None = None,
    text: str | None = None,
    cc: str | Iterable[str] | None = None,
    bcc: str | Iterable[str] | None = None,
) -> dict[str, Any]:
    to_list = _recipients(to)
    if not to_list:
        raise EmailSendError("Missing 'to'")

    if not cfg.MAIL_ENABLED:
        _log.info("mail disabled; skipped subject=%r to=%s", subject, [r["emailAddress"]["address"] for r in to_list])
        return {"ok": True, "status": 0, "skipped": True}

    if not cfg.MAIL_FROM:
        raise EmailSendError("Missing MAIL_FROM")

    token = get_graph_access_token(cfg)

    message: dict[str, Any] = {
        "subject": subject or "",
        "body": {"contentType": "HTML" if html else "Text", "content": html if html else (text or "")},
        "toRecipients": to_list,
    }
    if cc:
        message["ccRecipients"] = _recipients(cc)
    if bcc:
        message["bccRecipients"] = _recipients(bcc)

    url = f"{GRAPH_BASE_URL}/users/{quote(cfg.MAIL_FROM, safe='')}/sendMail"
    try:
        resp = requests.post(
            url,
            json={"message": message, "saveToSentItems": True},
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            timeout=cfg.MAIL_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise EmailSendError(f"Graph sendMail failed: {e}")

    if resp.status_code != 202:
        raise EmailSendError(f"Graph sendMail failed ({resp.status_code}): {resp.text[:300]}")

    _log.info("mail sent subject=%r recipients=%s", subject, len(to_list))
    return {"ok": True, "status": resp.status_code}
