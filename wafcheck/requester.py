"""
WAF Checker - HTTP transport
Single-shot requests against a target. No retries, no redirect following
unless asked; every failure surfaces as TransportError.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from wafcheck.config import ProbeConfig
from wafcheck.errors import TransportError


BROWSER_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"


@dataclass
class FetchedResponse:
    """A fully read target response."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    elapsed_ms: int = 0
    url: str = ""

    @classmethod
    def from_httpx(cls, resp: httpx.Response, elapsed: float) -> "FetchedResponse":
        headers: Dict[str, str] = {}
        for key, value in resp.headers.multi_items():
            key = key.lower()
            # Keep every Set-Cookie so cookie signatures can see them all
            if key in headers:
                headers[key] = f"{headers[key]}, {value}"
            else:
                headers[key] = value
        return cls(
            status=resp.status_code,
            headers=headers,
            body=resp.text,
            elapsed_ms=int(round(elapsed * 1000)),
            url=str(resp.url),
        )


def build_client(
    probe_cfg: Optional[ProbeConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared async client used for target traffic."""
    probe_cfg = probe_cfg or ProbeConfig()
    return httpx.AsyncClient(
        verify=False,
        follow_redirects=False,
        timeout=probe_cfg.timeout,
        limits=httpx.Limits(
            max_connections=probe_cfg.max_connections,
            max_keepalive_connections=probe_cfg.max_keepalive_connections,
        ),
        transport=transport,
    )


def browser_headers(probe_cfg: Optional[ProbeConfig] = None) -> Dict[str, str]:
    probe_cfg = probe_cfg or ProbeConfig()
    return {
        "User-Agent": probe_cfg.user_agent,
        "Accept": BROWSER_ACCEPT,
        "Accept-Language": "en-US,en;q=0.9",
    }


async def fetch_once(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
    follow_redirects: bool = False,
    **kwargs,
) -> FetchedResponse:
    """Send exactly one request and read the whole response."""
    started = time.perf_counter()
    try:
        request = client.build_request(
            method.upper(),
            url,
            headers=headers,
            params=params,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            **kwargs,
        )
        resp = await client.send(request, follow_redirects=follow_redirects)
    except httpx.HTTPError as e:
        raise TransportError(f"{type(e).__name__}: {e}", url=url) from e
    except (httpx.InvalidURL, ValueError) as e:
        # Malformed URL or header value rejected by httpx before sending
        raise TransportError(f"Invalid request: {e}", url=url) from e
    elapsed = time.perf_counter() - started
    return FetchedResponse.from_httpx(resp, elapsed)
