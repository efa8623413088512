"""
ShortioClient: JSON HTTP client for the Short.io REST API.

This module provides the remote-service primitives the reconciliation core
consumes:
  * `list_domains` (domain hostname -> numeric id)
  * `list_links` (one page of links for a domain, with continuation token)
  * `create_link`, `update_link`, `delete_link`

Transport behaviour:
  * One `requests.Session` per client, API key in the `authorization` header
  * Retries on 429/502/503/504 through urllib3's `Retry` (exponential
    backoff, `Retry-After` honoured); other errors are not retried
  * Every non-2xx response or network failure surfaces as `ShortioApiError`

Example:
    client = ShortioClient(api_key)
    domains = client.list_domains()
    page = client.list_links(domains[0].id, limit=150)
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

JSON = Union[Dict[str, Any], List[Any]]

DEFAULT_BASE_URL = "https://api.short.io"
RETRY_STATUSES = (429, 502, 503, 504)

_LOG_PREVIEW = int(os.getenv("SHORTSYNC_HTTP_PREVIEW", "600"))
_REDACT_KEYS = {"authorization", "password", "api_key", "apikey", "token"}


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False)
        else:
            s = str(obj)
        return s[:limit]
    except (TypeError, ValueError):
        return f"<unserializable:{type(obj).__name__}>"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


class ShortioApiError(Exception):
    """Short.io call failed. `status_code` is None for network-level failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


@dataclass(frozen=True)
class ShortioDomain:
    id: int
    hostname: str


@dataclass
class LinkPage:
    """One page of `GET /api/links`."""
    links: List[Dict[str, Any]] = field(default_factory=list)
    next_page_token: Optional[str] = None


@dataclass
class ClientOptions:
    """Runtime options for :class:`ShortioClient`.

    Attributes:
        timeout_sec: Per-request timeout (seconds).
        retries: Max retries on rate limiting / gateway errors.
        backoff_factor: urllib3 backoff factor between retries.
    """
    timeout_sec: float = 30.0
    retries: int = 3
    backoff_factor: float = 0.5


class ShortioClient:
    """High-level HTTP client for the Short.io API.

    Args:
        api_key: Secret API key of the Short.io account.
        base_url: API root, overridable for tests.
        options: Optional :class:`ClientOptions`.
        logger: Optional logger (or adapter) for request tracing.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        options: Optional[ClientOptions] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.options = options or ClientOptions()
        self.log = logger or logging.getLogger("shortsync.http")

        self.session = requests.Session()
        self.session.headers.update({
            "authorization": api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "shortsync/HTTPClient",
        })
        retries = Retry(
            total=max(0, int(self.options.retries)),
            backoff_factor=float(self.options.backoff_factor),
            status_forcelist=RETRY_STATUSES,
            allowed_methods=None,
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retries)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    # ---------------- low-level ----------------
    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @staticmethod
    def _error_detail(resp: requests.Response) -> tuple[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = resp.text
        detail = ""
        if isinstance(body, dict):
            for key in ("message", "error"):
                val = body.get(key)
                if isinstance(val, str) and val.strip():
                    detail = val.strip()
                    break
        if not detail:
            detail = (resp.text or resp.reason or "Unknown error")[:200]
        return f"{detail} (HTTP {resp.status_code})", body

    def _req(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> JSON:
        """Perform a request and return the decoded JSON body (empty dict when none).

        Raises:
            ShortioApiError: On network failures and non-2xx responses.
        """
        url = self._url(path)
        self.log.debug("HTTP %s %s params=%s body=%s", method, path, params, _short_json(_redact(json_body or {})))
        try:
            resp = self.session.request(
                method=method.upper(),
                url=url,
                json=json_body,
                params=params,
                timeout=self.options.timeout_sec,
            )
        except requests.RequestException as exc:
            self.log.error("HTTP %s %s failed: %s", method, path, exc)
            raise ShortioApiError(f"Request to {path} failed: {exc}") from exc

        if resp.status_code >= 400:
            message, body = self._error_detail(resp)
            self.log.warning("HTTP %s %s -> %s: %s", method, path, resp.status_code, message)
            raise ShortioApiError(message, status_code=resp.status_code, response=body)

        self.log.debug("HTTP %s %s -> %s", method, path, resp.status_code)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise ShortioApiError(
                f"Non-JSON response from {path}", status_code=resp.status_code, response=resp.text[:200]
            ) from exc

    # ---------------- API ----------------
    def list_domains(self) -> List[ShortioDomain]:
        """Return every domain registered on the account."""
        data = self._req("GET", "/api/domains")
        if not isinstance(data, list):
            raise ShortioApiError("Unexpected domains payload", response=data)
        try:
            return [ShortioDomain(id=int(d["id"]), hostname=str(d["hostname"])) for d in data if isinstance(d, dict)]
        except (KeyError, TypeError, ValueError) as exc:
            raise ShortioApiError("Unexpected domains payload", response=data) from exc

    def list_links(self, domain_id: int, limit: int, page_token: Optional[str] = None) -> LinkPage:
        """Return one page of links for `domain_id`."""
        params: Dict[str, Any] = {"domain_id": domain_id, "limit": limit}
        if page_token:
            params["pageToken"] = page_token
        data = self._req("GET", "/api/links", params=params)
        if not isinstance(data, dict):
            raise ShortioApiError("Unexpected links payload", response=data)
        links = [link for link in (data.get("links") or []) if isinstance(link, dict)]
        return LinkPage(links=links, next_page_token=data.get("nextPageToken") or None)

    def create_link(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._req("POST", "/links", json_body=payload)
        return data if isinstance(data, dict) else {}

    def update_link(self, link_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._req("POST", f"/links/{link_id}", json_body=payload)
        return data if isinstance(data, dict) else {}

    def delete_link(self, link_id: str) -> None:
        self._req("DELETE", f"/links/{link_id}")

    def close(self) -> None:
        self.session.close()
