"""
Tests for the probe executor and HTTP manipulation runner.
"""

import json

import httpx

from conftest import TARGET, FakeTarget, unreachable_target
from wafcheck.executor import (
    ERR,
    ProbeContext,
    build_request_kwargs,
    execute_manipulated_batch,
    execute_probe,
)
from wafcheck.matrix import TestRequestSpec
from wafcheck.payloads import FILE_CHECK, HEADER_CHECK, PARAM_CHECK
from wafcheck.variations import ManipulatedRequest


def spec(method="GET", payload="' OR 1=1--", original=None, check_type=PARAM_CHECK, headers=None, send_payload=None):
    return TestRequestSpec(
        category="SQL Injection",
        payload=payload,
        original_payload=original if original is not None else payload,
        method=method,
        check_type=check_type,
        url=TARGET,
        headers=headers,
        send_payload=send_payload,
    )


class TestRequestKwargs:

    def test_query_methods_use_params(self):
        assert build_request_kwargs(spec("GET")) == {"headers": {}, "params": {"test": "' OR 1=1--"}}
        assert "params" in build_request_kwargs(spec("DELETE"))

    def test_body_without_template_is_form(self):
        kwargs = build_request_kwargs(spec("POST"))
        assert kwargs["data"] == {"test": "' OR 1=1--"}

    def test_body_with_template_is_json(self):
        kwargs = build_request_kwargs(spec("PUT", payload="x"), '{"q": "{PAYLOAD}", "list": ["a{PAYLOAD}"]}')
        assert json.loads(kwargs["content"]) == {"q": "x", "list": ["ax"]}
        assert kwargs["headers"]["Content-Type"] == "application/json"

    def test_invalid_template_falls_back(self):
        kwargs = build_request_kwargs(spec("PATCH", payload="x"), "{not json")
        assert json.loads(kwargs["content"]) == {"test": "x"}

    def test_file_and_header_checks_send_only_headers(self):
        for check_type in (FILE_CHECK, HEADER_CHECK):
            kwargs = build_request_kwargs(spec("POST", check_type=check_type, headers={"X-A": "1"}))
            assert kwargs == {"headers": {"X-A": "1"}}

    def test_wire_payload_is_sent(self):
        kwargs = build_request_kwargs(spec(send_payload="safe&test=x", payload="x"))
        assert kwargs["params"] == {"test": "safe&test=x"}


class TestExecuteProbe:

    async def test_blocked_status_recorded(self, make_client):
        target = FakeTarget(lambda request: httpx.Response(403))
        context = ProbeContext(waf_detected=True, waf_type="Cloudflare")
        outcome = await execute_probe(make_client(target), spec(), context)

        assert outcome.status == 403
        assert outcome.is_redirect is False
        assert outcome.waf_detected is True
        assert outcome.waf_type == "Cloudflare"
        assert outcome.bypass_technique == "Standard"
        assert target.requests[0].url.params["test"] == "' OR 1=1--"

    async def test_transport_failure_is_err(self, make_client):
        outcome = await execute_probe(make_client(unreachable_target()), spec())
        assert outcome.status == ERR
        assert outcome.failed
        assert outcome.response_time_ms == 0
        assert outcome.is_redirect is False

    async def test_redirect_not_followed_by_default(self, make_client):
        def respond(request):
            if request.url.path == "/app":
                return httpx.Response(302, headers={"Location": "https://target.example.com/login"})
            return httpx.Response(200)

        target = FakeTarget(respond)
        outcome = await execute_probe(make_client(target), spec())
        assert outcome.status == 302
        assert outcome.is_redirect is True
        assert len(target.requests) == 1

        followed = await execute_probe(make_client(target), spec(), ProbeContext(follow_redirect=True))
        assert followed.status == 200

    async def test_variant_is_advanced(self, make_client):
        outcome = await execute_probe(make_client(FakeTarget()), spec(payload="%27", original="'"))
        assert outcome.bypass_technique == "Advanced"
        assert outcome.to_dict()["original_payload"] == "'"

    async def test_form_body_on_wire(self, make_client):
        target = FakeTarget()
        await execute_probe(make_client(target), spec("POST", payload="a b"))
        assert target.requests[0].content == b"test=a+b"


class TestManipulatedBatch:

    async def test_order_and_concurrency(self, make_client):
        target = FakeTarget(lambda request: httpx.Response(403 if request.method == "PUT" else 200), delay=0.01)
        requests = [
            ManipulatedRequest("verb_tampering", method, TARGET)
            for method in ("POST", "PUT", "PATCH", "OPTIONS", "HEAD", "POST", "PUT")
        ]
        results = await execute_manipulated_batch(make_client(target), requests, concurrency=3)

        assert [r["method"] for r in results] == ["POST", "PUT", "PATCH", "OPTIONS", "HEAD", "POST", "PUT"]
        assert [r["success"] for r in results] == [True, False, True, True, True, True, False]
        assert target.max_in_flight <= 3

    async def test_failure_is_reported(self, make_client):
        req = ManipulatedRequest("host_header_injection", "GET", TARGET, headers={"X-Host": "127.0.0.1"})
        results = await execute_manipulated_batch(make_client(unreachable_target()), [req])
        assert results[0]["status"] == ERR
        assert results[0]["success"] is False
        assert results[0]["error"]
