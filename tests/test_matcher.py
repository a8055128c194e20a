"""
Tests for signature matching and scoring.
"""

import re

from wafcheck.matcher import (
    PASSIVE_WEIGHTS,
    PROBE_WEIGHTS,
    UNKNOWN,
    header_matches,
    match_passive,
    match_probe,
    score_response,
)
from wafcheck.requester import FetchedResponse
from wafcheck.signatures import SIGNATURE_NAMES, WAF_SIGNATURES, suggested_bypass_techniques


# ============================================================
# Signature table
# ============================================================

class TestSignatureTable:

    def test_sixteen_vendors_in_order(self):
        assert len(WAF_SIGNATURES) == 16
        assert SIGNATURE_NAMES[0] == "Cloudflare"
        assert SIGNATURE_NAMES[-1] == "Varnish"

    def test_header_names_are_lowercase(self):
        for sig in WAF_SIGNATURES:
            for name, _ in sig.headers:
                assert name == name.lower()

    def test_bypass_suggestions_fall_back_to_generic(self):
        assert "Comment-based obfuscation (/**/)" in suggested_bypass_techniques("Cloudflare")
        assert suggested_bypass_techniques("Nope") == suggested_bypass_techniques("Generic WAF")


# ============================================================
# Scoring
# ============================================================

class TestScoreResponse:

    def test_no_match_is_unknown_zero(self):
        match = score_response(200, {"content-type": "text/html"})
        assert match.vendor == UNKNOWN
        assert match.confidence == 0
        assert match.evidence == []
        assert not match.detected

    def test_passive_headers_score_25_each(self):
        match = score_response(200, {"server": "cloudflare", "cf-ray": "7d5a1b2c3d4e5f60-SJC"})
        assert match.vendor == "Cloudflare"
        assert match.confidence == 50
        assert "Header server: cloudflare" in match.evidence

    def test_cf_ray_regex_is_case_sensitive(self):
        match = score_response(200, {"cf-ray": "7d5a1b2c3d4e5f60-sjc"})
        assert match.confidence == 0

    def test_passive_cookie_scoring(self):
        headers = {"set-cookie": "incap_ses_123=abc, visid_incap_456=def"}
        match = score_response(200, headers, weights=PASSIVE_WEIGHTS)
        assert match.vendor == "Imperva"
        # set-cookie header matcher (25) + two cookie patterns (15 each)
        assert match.confidence == 55
        assert any(e.startswith("Cookie:") for e in match.evidence)

    def test_probe_mode_discounts_baseline_headers(self):
        headers = {"x-sucuri-id": "12345"}
        seen = score_response(200, headers, weights=PROBE_WEIGHTS, baseline_headers={"x-sucuri-id": "1"})
        fresh = score_response(200, headers, weights=PROBE_WEIGHTS, baseline_headers={})
        assert seen.vendor == fresh.vendor == "Sucuri"
        assert seen.confidence == 5
        assert fresh.confidence == 35
        assert seen.evidence == ["Header x-sucuri-id: 12345 (also in clean response, infrastructure)"]
        assert fresh.evidence == ["Header x-sucuri-id: 12345 (new in blocked response)"]

    def test_probe_mode_scores_status_and_body(self):
        headers = {"server": "cloudflare"}
        body = "Attention Required! | Cloudflare"
        match = score_response(403, headers, body=body, weights=PROBE_WEIGHTS, baseline_headers=headers)
        # 5 (baseline header) + 15 (status) + 25 + 25 (two body patterns)
        assert match.vendor == "Cloudflare"
        assert match.confidence == 70
        assert "Blocked with status: 403" in match.evidence

    def test_passive_weights_ignore_status_and_body(self):
        match = score_response(403, {}, body="cloudflare", weights=PASSIVE_WEIGHTS)
        assert match.confidence == 0

    def test_tie_keeps_earlier_signature(self):
        match = score_response(200, {"via": "1.1 varnish, fastly"})
        assert match.vendor == "Fastly"
        assert match.confidence == 25

    def test_header_matches_plain_string_is_case_insensitive(self):
        assert header_matches("CloudFlare", "served by cloudflare")
        assert header_matches(re.compile(r"^abc$"), "abc")
        assert not header_matches(re.compile(r"^abc$"), "xabc")


class TestMatchHelpers:

    def test_match_passive_uses_response_headers(self):
        resp = FetchedResponse(status=200, headers={"server": "AkamaiGHost"})
        match = match_passive(resp)
        assert match.vendor == "Akamai"
        assert match.confidence == 25

    def test_match_probe_uses_body(self):
        resp = FetchedResponse(status=403, headers={}, body="The requested URL was rejected. Your support ID is 123")
        match = match_probe(resp, baseline_headers={})
        assert match.vendor == "F5 BIG-IP"
        assert match.confidence == 15 + 25 + 25
