import asyncio
from typing import Any, Dict, Optional

import httpx

from hscript.hscript_datatypes import HttpFailure

NO_BODY_METHODS = ('GET', 'HEAD')


def is_json_content_type(content_type: Optional[str]) -> bool:
    ct = (content_type or "").lower()
    return 'json' in ct


async def http_request(method: str, url: str, *, config: Optional[Dict] = None, data: Optional[str] = None) -> Any:
    """
    Core HTTP helper used by the http and import tags.

    config keys:
      - timeout (seconds, default 5.0), retries (default 2), backoff (default 0.2)
      - headers: mapping of request headers
      - raw: return the body text even for JSON content types

    Returns the decoded JSON body for JSON content types, otherwise the body
    text. Non-2xx responses raise HttpFailure.
    """
    cfg = dict(config or {})
    timeout = float(cfg.pop('timeout', 5.0))
    retries = int(cfg.pop('retries', 2))
    backoff = float(cfg.pop('backoff', 0.2))
    headers = {str(k): str(v) for k, v in dict(cfg.pop('headers', None) or {}).items()}
    raw = bool(cfg.pop('raw', False))
    method = (method or 'GET').upper()

    body = None
    if data is not None and method not in NO_BODY_METHODS:
        body = data.encode('utf-8') if isinstance(data, str) else data

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        for attempt in range(retries + 1):
            try:
                resp = await client.request(method, url, headers=headers, content=body)
            except httpx.HTTPError as e:
                if attempt < retries:
                    await asyncio.sleep(backoff * (2 ** attempt))
                    continue
                raise HttpFailure(f"Request to {url} failed: {e}") from e

            if 200 <= resp.status_code < 300:
                ct = resp.headers.get("Content-Type")
                if not raw and is_json_content_type(ct):
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise HttpFailure(f"Invalid JSON from {url}: {e}", resp.status_code) from e
                return resp.text
            # Server errors are retried; client errors fail immediately
            if resp.status_code >= 500 and attempt < retries:
                await asyncio.sleep(backoff * (2 ** attempt))
                continue
            preview = (resp.text or "")[:200]
            raise HttpFailure(f"HTTP {resp.status_code} for {url}: {preview}", resp.status_code)
