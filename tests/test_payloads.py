"""
Tests for payload sources, merging and the remote pack loader.
"""

import httpx
import pytest

from conftest import FakeTarget
from wafcheck.payloads import (
    BASE_PAYLOADS,
    FILE_CHECK,
    HEADER_CHECK,
    PARAM_CHECK,
    PayloadCategory,
    PayloadStore,
    enhanced_payloads,
    merge_payload_sources,
    parse_custom_payloads,
)


REMOTE_URL = "https://payloads.example.com/payloads.json"


class TestPayloadCategory:

    def test_from_dict_accepts_camel_case(self):
        cat = PayloadCategory.from_dict({"type": "Header", "payloads": ["A: b"], "falsePayloads": ["C: d"]})
        assert cat.check_type == HEADER_CHECK
        assert cat.false_payloads == ["C: d"]

    def test_unknown_type_defaults_to_param_check(self):
        assert PayloadCategory.from_dict({"type": "Weird", "payloads": []}).check_type == PARAM_CHECK

    def test_copy_is_independent(self):
        cat = PayloadCategory(PARAM_CHECK, ["a"], ["b"])
        clone = cat.copy()
        clone.payloads.append("c")
        assert cat.payloads == ["a"]


class TestBuiltins:

    def test_check_types(self):
        assert BASE_PAYLOADS["Sensitive Files"].check_type == FILE_CHECK
        assert BASE_PAYLOADS["Header Injection"].check_type == HEADER_CHECK
        assert BASE_PAYLOADS["SQL Injection"].check_type == PARAM_CHECK

    def test_every_category_has_false_payloads(self):
        for name, cat in BASE_PAYLOADS.items():
            assert cat.payloads, name
            assert cat.false_payloads, name

    def test_enhanced_adds_encoded_param_categories(self):
        enhanced = enhanced_payloads(BASE_PAYLOADS)
        assert "SQL Injection (Encoded)" in enhanced
        assert "Sensitive Files (Encoded)" not in enhanced
        assert "%27%20OR%20%271%27%3D%271" in enhanced["SQL Injection (Encoded)"].payloads
        assert set(BASE_PAYLOADS) <= set(enhanced)


class TestMerging:

    def test_union_by_category(self):
        a = {"X": PayloadCategory(PARAM_CHECK, ["1", "2"], ["f1"])}
        b = {"X": PayloadCategory(FILE_CHECK, ["2", "3"], ["f2"]), "Y": PayloadCategory(PARAM_CHECK, ["y"])}
        merged = merge_payload_sources(a, None, b)
        assert merged["X"].payloads == ["1", "2", "3"]
        assert merged["X"].false_payloads == ["f1", "f2"]
        # first source decides the check type
        assert merged["X"].check_type == PARAM_CHECK
        assert merged["Y"].payloads == ["y"]

    def test_merge_does_not_mutate_inputs(self):
        a = {"X": PayloadCategory(PARAM_CHECK, ["1"])}
        merge_payload_sources(a, {"X": PayloadCategory(PARAM_CHECK, ["2"])})
        assert a["X"].payloads == ["1"]

    def test_custom_payloads_skip_deleted(self):
        custom = parse_custom_payloads({
            "Mine": {"type": "ParamCheck", "payloads": ["m"]},
            "Gone": {"type": "ParamCheck", "payloads": ["g"], "_deleted": True},
            "Bad": "not a mapping",
        })
        assert list(custom) == ["Mine"]

    def test_store_build_source_merges_custom(self):
        store = PayloadStore()
        custom = parse_custom_payloads({"XSS": {"payloads": ["<x>"]}})
        source = store.build_source(use_advanced=True, custom=custom)
        assert "<x>" in source["XSS"].payloads
        assert "<ScRiPt>alert(1)</ScRiPt>" in source["XSS"].payloads
        assert source["XSS"].payloads[0] == BASE_PAYLOADS["XSS"].payloads[0]


class TestRemoteLoad:

    async def test_load_and_cache(self, make_client):
        def respond(request):
            return httpx.Response(200, json={
                "payloads": {"NoSQL Injection": {"type": "ParamCheck", "payloads": ['{"$ne": 1}']}},
                "advancedPayloads": {"XSS Advanced": {"type": "ParamCheck", "payloads": ["<svg onload=1>"]}},
            })

        target = FakeTarget(respond)
        client = make_client(target)
        store = PayloadStore()

        assert await store.load_remote(client, REMOTE_URL) is True
        assert await store.load_remote(client, REMOTE_URL) is True
        assert len(target.requests) == 1

        assert "NoSQL Injection" in store.base
        assert "XSS Advanced" in store.advanced
        assert "NoSQL Injection (Encoded)" in store.enhanced
        status = store.status()
        assert status["loaded"] is True
        assert status["last_error"] is None

    async def test_failed_load_keeps_builtins(self, make_client):
        client = make_client(FakeTarget(lambda request: httpx.Response(500)))
        store = PayloadStore()

        assert await store.load_remote(client, REMOTE_URL) is False
        assert store.loaded_remote is False
        assert store.last_error
        assert set(store.base) == set(BASE_PAYLOADS)

    @pytest.mark.parametrize("pack", [
        [{"payloads": {}}],
        {"payloads": ["a", "b"]},
        {"payloads": {}, "advancedPayloads": "nope"},
    ])
    async def test_wrong_shape_keeps_builtin(self, make_client, pack):
        client = make_client(FakeTarget(lambda request: httpx.Response(200, json=pack)))
        store = PayloadStore()
        assert await store.load_remote(client, REMOTE_URL) is False
        assert store.loaded_remote is False
        assert "must be a JSON object" in store.last_error
        assert set(store.base) == set(BASE_PAYLOADS)

    async def test_invalid_json(self, make_client):
        client = make_client(FakeTarget(lambda request: httpx.Response(200, text="not json")))
        store = PayloadStore()
        assert await store.load_remote(client, REMOTE_URL) is False
