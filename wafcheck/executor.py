"""
WAF Checker - Probe executor
Sends one TestRequestSpec and turns the response into a TestOutcome.
A failed probe is a result (status "ERR"), never an exception.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from wafcheck.errors import TransportError
from wafcheck.logger import log_debug
from wafcheck.matrix import TestRequestSpec, substitute_payload
from wafcheck.payloads import FILE_CHECK, HEADER_CHECK
from wafcheck.requester import fetch_once
from wafcheck.variations import ManipulatedRequest


ERR = "ERR"
QUERY_METHODS = ("GET", "DELETE", "HEAD", "OPTIONS")
BODY_METHODS = ("POST", "PUT", "PATCH")


@dataclass
class ProbeContext:
    """Scan-wide values copied onto every outcome."""
    waf_detected: bool = False
    waf_type: str = "Unknown"
    follow_redirect: bool = False
    payload_template: Optional[str] = None
    timeout: Optional[float] = None


@dataclass
class TestOutcome:
    __test__ = False

    category: str
    payload: str
    original_payload: str
    method: str
    status: Union[int, str]
    is_redirect: bool
    response_time_ms: int
    waf_detected: bool
    waf_type: str
    bypass_technique: str

    @property
    def failed(self) -> bool:
        return self.status == ERR

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "payload": self.payload,
            "original_payload": self.original_payload,
            "method": self.method,
            "status": self.status,
            "is_redirect": self.is_redirect,
            "response_time_ms": self.response_time_ms,
            "waf_detected": self.waf_detected,
            "waf_type": self.waf_type,
            "bypass_technique": self.bypass_technique,
        }


def build_request_kwargs(spec: TestRequestSpec, payload_template: Optional[str] = None) -> Dict[str, Any]:
    """Method and check-type specific request arguments for fetch_once."""
    headers: Dict[str, str] = dict(spec.headers or {})
    kwargs: Dict[str, Any] = {"headers": headers}

    if spec.check_type in (FILE_CHECK, HEADER_CHECK):
        return kwargs

    payload = spec.wire_payload
    if spec.method in BODY_METHODS:
        if payload_template:
            try:
                body = substitute_payload(json.loads(payload_template), payload)
            except ValueError:
                body = {"test": payload}
            kwargs["content"] = json.dumps(body)
            headers["Content-Type"] = "application/json"
        else:
            kwargs["data"] = {"test": payload}
    else:
        kwargs["params"] = {"test": payload}
    return kwargs


async def execute_probe(
    client: httpx.AsyncClient,
    spec: TestRequestSpec,
    context: Optional[ProbeContext] = None,
) -> TestOutcome:
    context = context or ProbeContext()
    status: Union[int, str] = ERR
    elapsed_ms = 0
    try:
        resp = await fetch_once(
            client,
            spec.method,
            spec.url,
            timeout=context.timeout,
            follow_redirects=context.follow_redirect,
            **build_request_kwargs(spec, context.payload_template),
        )
        status = resp.status
        elapsed_ms = resp.elapsed_ms
    except TransportError as e:
        log_debug("Executor", f"{spec.method} {spec.url} failed: {e}")
    except Exception as e:
        # Anything else is still just a failed probe
        log_debug("Executor", f"{spec.method} {spec.url} errored: {type(e).__name__}: {e}")

    is_redirect = isinstance(status, int) and 300 <= status < 400
    return TestOutcome(
        category=spec.category,
        payload=spec.payload,
        original_payload=spec.original_payload,
        method=spec.method,
        status=status,
        is_redirect=is_redirect,
        response_time_ms=elapsed_ms if status != ERR else 0,
        waf_detected=context.waf_detected,
        waf_type=context.waf_type,
        bypass_technique="Advanced" if spec.payload != spec.original_payload else "Standard",
    )


# ── HTTP manipulation ────────────────────────────────────────────

async def execute_manipulated(client: httpx.AsyncClient, req: ManipulatedRequest, timeout: Optional[float] = None) -> dict:
    started = time.perf_counter()
    result = req.to_dict()
    try:
        resp = await fetch_once(
            client,
            req.method,
            req.url,
            headers=req.headers,
            content=req.body,
            timeout=timeout,
        )
    except TransportError as e:
        result.update({
            "status": ERR,
            "success": False,
            "error": str(e),
            "response_time_ms": int(round((time.perf_counter() - started) * 1000)),
        })
        return result
    result.update({
        "status": resp.status,
        "success": resp.status < 400,
        "is_redirect": 300 <= resp.status < 400,
        "response_time_ms": resp.elapsed_ms,
    })
    return result


async def execute_manipulated_batch(
    client: httpx.AsyncClient,
    requests: List[ManipulatedRequest],
    concurrency: int = 3,
    timeout: Optional[float] = None,
) -> List[dict]:
    """Run manipulated requests with at most `concurrency` in flight, keeping input order."""
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _run(req: ManipulatedRequest) -> dict:
        async with sem:
            return await execute_manipulated(client, req, timeout=timeout)

    return list(await asyncio.gather(*(_run(r) for r in requests)))
