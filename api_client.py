# Databricks API Client with Async HTTP and Pagination

import asyncio
import json
import time
from typing import Dict, Any, List, Optional, Tuple
import aiohttp
from aiohttp import TCPConnector, ClientTimeout

from config import (
    MAX_CONCURRENCY, HTTP_TIMEOUT_SEC, RETRY_DELAY_BASE, RETRY_ATTEMPTS,
    DEBUG_HTTP, VERBOSE_LOG, PAGE_SIZE_DEFAULT
)
from endpoints import get_endpoint_config


def log(msg: str):
    if VERBOSE_LOG:
        print(msg)

def banner(txt: str):
    print("\n" + "="*22 + f" {txt} " + "="*22 + "\n")

def normalize_host(host: str) -> str:
    """Turn 'adb-123.azuredatabricks.net' or 'https://adb-123.../' into a base URL."""
    host = (host or "").strip().rstrip("/")
    if not host:
        return ""
    if not host.startswith(("http://", "https://")):
        host = f"https://{host}"
    return host


class DatabricksAPIError(Exception):
    """A vendor call that came back with status >= 400 (or never came back)."""

    def __init__(self, status: Optional[int], message: str, error_code: str = None,
                 payload: Any = None, url: str = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.error_code = error_code
        self.payload = payload
        self.url = url

    @classmethod
    def from_response(cls, status: int, payload: Any, url: str = None) -> "DatabricksAPIError":
        error_code = None
        message = None
        if isinstance(payload, dict):
            error_code = payload.get("error_code") or payload.get("scimType")
            message = payload.get("message") or payload.get("detail") or payload.get("error_description")
            if not message and isinstance(payload.get("error"), str):
                message = payload["error"]
        return cls(status, message or f"Databricks returned HTTP {status}", error_code, payload, url)

    def __str__(self):
        code = f"{self.error_code} - " if self.error_code else ""
        return f"{code}{self.message}"


class DatabricksTimeoutError(DatabricksAPIError):
    def __init__(self, url: str = None):
        super().__init__(None, "Request to Databricks timed out", "TIMEOUT", None, url)


class DatabricksConnectionError(DatabricksAPIError):
    def __init__(self, detail: str, url: str = None):
        super().__init__(None, f"Network error: {detail}", "NETWORK_ERROR", None, url)


def _clean_params(params: Dict[str, Any] = None) -> Dict[str, Any]:
    """aiohttp only accepts str/int/float query values."""
    cleaned = {}
    for k, v in (params or {}).items():
        if v is None:
            continue
        if isinstance(v, bool):
            v = "true" if v else "false"
        cleaned[k] = v
    return cleaned


class DatabricksAPIClient:

    def __init__(self, host: str, token: str, max_concurrency: int = MAX_CONCURRENCY,
                 timeout: float = HTTP_TIMEOUT_SEC):
        self.host = host
        self.base_url = normalize_host(host)
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.headers)

    def _print_http(self, method: str, url, status, elapsed: float):
        if DEBUG_HTTP:
            print(f"[HTTP] {method} {url} → {status} [{elapsed:.2f}s]")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = TCPConnector(limit=self.max_concurrency, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _send(self, method: str, url: str, params: Dict[str, Any] = None, json_body: Any = None,
                    data: Any = None, headers: Dict[str, str] = None, timeout: float = None) -> Tuple[int, Any]:
        """Single HTTP exchange. Returns (status, decoded body)."""
        session = await self._get_session()
        t0 = time.time()
        async with session.request(method, url, params=params, json=json_body, data=data, headers=headers,
                                   timeout=ClientTimeout(total=timeout)) as r:
            text = await r.text()
            self._print_http(method, r.url, r.status, time.time() - t0)
            if not text:
                return r.status, {}
            try:
                return r.status, json.loads(text)
            except ValueError:
                return r.status, {"message": text[:500]}

    async def request(self, method: str, path: str, *, params: Dict[str, Any] = None, json_body: Any = None,
                      data: Any = None, headers: Dict[str, str] = None, timeout: float = None,
                      base_url: str = None, token: str = None) -> Any:
        """Issue one vendor call under the concurrency semaphore.

        Absolute URLs are used as-is; relative paths are joined onto ``base_url`` (or the
        client's own host). ``token`` swaps the bearer credential for this call only
        (an empty string sends no Authorization header).
        HTTP 429 is retried with exponential back-off; any other status >= 400 raises
        DatabricksAPIError.
        """
        if path.startswith(("http://", "https://")):
            url = path
        else:
            root = normalize_host(base_url) if base_url else self.base_url
            if not root:
                raise DatabricksAPIError(500, "Databricks host is not configured", "NOT_CONFIGURED")
            url = f"{root}{path}"

        if token is None:
            hdrs = dict(self.headers)
        else:
            hdrs = {"Authorization": f"Bearer {token}"} if token else {}
        hdrs.update(headers or {})
        params = _clean_params(params)
        timeout = timeout or self.timeout

        status, payload = 0, {}
        for attempt in range(RETRY_ATTEMPTS):
            try:
                async with self.semaphore:
                    status, payload = await self._send(method, url, params=params, json_body=json_body,
                                                       data=data, headers=hdrs, timeout=timeout)
            except asyncio.TimeoutError:
                log(f"[TIMEOUT] {method} {url}")
                raise DatabricksTimeoutError(url)
            except aiohttp.ClientError as e:
                log(f"[EXC] {method} {url} params={params}: {e}")
                raise DatabricksConnectionError(str(e), url)

            if status == 429 and attempt < RETRY_ATTEMPTS - 1:
                wait = RETRY_DELAY_BASE * (2 ** attempt)
                log(f"[WARN] Rate limited: {url} (sleep {wait}s)")
                await asyncio.sleep(wait)
                continue
            break

        if status >= 400:
            err = DatabricksAPIError.from_response(status, payload, url)
            log(f"[ERROR] {status}: {method} {url} → {str(err)[:140]}")
            raise err
        return payload

    async def get(self, path: str, params: Dict[str, Any] = None, **kwargs) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json_body: Any = None, **kwargs) -> Any:
        return await self.request("POST", path, json_body=json_body, **kwargs)

    async def patch(self, path: str, json_body: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", path, json_body=json_body, **kwargs)

    async def put(self, path: str, json_body: Any = None, **kwargs) -> Any:
        return await self.request("PUT", path, json_body=json_body, **kwargs)

    async def delete(self, path: str, params: Dict[str, Any] = None, **kwargs) -> Any:
        return await self.request("DELETE", path, params=params, **kwargs)

    async def paginate(self, path: str, list_key: str, params: Dict[str, Any] = None,
                       token_key: str = "next_page_token", page_param: str = "page_token",
                       limit_param: str = None, limit: int = PAGE_SIZE_DEFAULT) -> List[Dict[str, Any]]:
        """Generic paginator supporting next_page_token/page_token + has_more."""
        items: List[Dict[str, Any]] = []
        params = dict(params or {})
        if limit_param and limit:
            params[limit_param] = limit

        while True:
            data = await self.get(path, params=params)
            if not isinstance(data, dict):
                break
            if isinstance(data.get(list_key), list):
                items.extend(data[list_key])

            nxt = data.get(token_key) if token_key else None
            if not nxt:
                break
            params[page_param] = nxt

        return items

    async def fetch_list(self, key: str, params: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        """Fetch every row of a configured list endpoint."""
        cfg = get_endpoint_config(key)
        t0 = time.time()
        if cfg["paginate"]:
            rows = await self.paginate(cfg["url"], cfg["list_key"], params,
                                       token_key=cfg.get("token_key"), page_param=cfg.get("page_param", "page_token"),
                                       limit_param=cfg.get("limit_param"), limit=cfg.get("limit"))
        else:
            data = await self.get(cfg["url"], params=params)
            rows = data.get(cfg["list_key"]) or [] if isinstance(data, dict) else []
        if DEBUG_HTTP:
            log(f"[Fetch] {key:20} ({len(rows)}) [{time.time() - t0:.1f}s]")
        return rows
