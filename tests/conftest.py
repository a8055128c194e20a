"""
WAF Checker Test Configuration
==============================

Shared fixtures: fake targets served through httpx.MockTransport so no test
touches the network.

pytest tests/ -v
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from wafcheck.requester import build_client


TARGET = "https://target.example.com/app"

CF_HEADERS = {"Server": "cloudflare", "CF-RAY": "7d5a1b2c3d4e5f60-SJC"}
CF_BLOCK_BODY = "<html><title>Attention Required! | Cloudflare</title></html>"


# ============================================================
# Fake targets
# ============================================================

class FakeTarget:
    """Async MockTransport handler that records requests and concurrency."""

    def __init__(self, respond: Optional[Callable[[httpx.Request], httpx.Response]] = None, delay: float = 0.0):
        self.respond = respond or (lambda request: httpx.Response(200, text="ok"))
        self.delay = delay
        self.requests: List[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self.respond(request)
        finally:
            self.in_flight -= 1


def cloudflare_target(block_active: bool = True, block_evasion: bool = True) -> FakeTarget:
    """Cloudflare-fronted site. Active probes use `test`, evasion probes use `q`."""

    def respond(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if (block_active and "test" in params) or (block_evasion and "q" in params):
            return httpx.Response(403, headers=CF_HEADERS, text=CF_BLOCK_BODY)
        return httpx.Response(200, headers=CF_HEADERS, text="<html>welcome</html>")

    return FakeTarget(respond)


def unreachable_target() -> FakeTarget:
    def respond(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return FakeTarget(respond)


def doh_resolver(zone: dict) -> FakeTarget:
    """DoH JSON endpoint answering from `zone[(name, type)] = [data, ...]`."""

    def respond(request: httpx.Request) -> httpx.Response:
        name, rtype = request.url.params["name"], request.url.params["type"]
        answers = [{"name": name, "type": rtype, "TTL": 300, "data": d} for d in zone.get((name, rtype), [])]
        body = {"Status": 0, "Answer": answers} if answers else {"Status": 0}
        return httpx.Response(200, json=body)

    return FakeTarget(respond)


# ============================================================
# Client fixtures
# ============================================================

@pytest.fixture
async def make_client():
    """Factory for async clients bound to a fake target."""
    clients: List[httpx.AsyncClient] = []

    def _make(handler) -> httpx.AsyncClient:
        client = build_client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()


@pytest.fixture
def ok_target() -> FakeTarget:
    return FakeTarget()
