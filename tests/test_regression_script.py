"""
Tests for the detection regression harness scoring and report writing.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

import detection_regression as regression


CF_BLOCKING = {"detected": True, "waf_type": "Cloudflare", "is_actively_blocking": True}


class TestClassify:

    def test_true_positive(self):
        assert regression.classify(CF_BLOCKING, {"detected": True, "waf_type": "cloudflare"}) == "tp"

    def test_wrong_vendor_is_false_positive(self):
        assert regression.classify(CF_BLOCKING, {"detected": True, "waf_type": "Akamai"}) == "fp"

    def test_blocking_flag_must_match(self):
        expected = {"detected": True, "waf_type": "Cloudflare", "actively_blocking": False}
        assert regression.classify(CF_BLOCKING, expected) == "fp"

    def test_missed_and_clean(self):
        assert regression.classify({"detected": False}, {"detected": True}) == "fn"
        assert regression.classify({"detected": False}, {"detected": False}) == "tn"
        assert regression.classify(CF_BLOCKING, {"detected": False}) == "fp"


class TestScore:

    def test_metrics(self):
        results = [{"verdict": v} for v in ("tp", "tp", "fp", "fn", "tn")]
        summary = regression.score_cases(results)
        assert (summary["tp"], summary["fp"], summary["fn"], summary["tn"]) == (2, 1, 1, 1)
        assert summary["precision"] == 0.6667
        assert summary["recall"] == 0.6667
        assert summary["accuracy"] == 0.6
        assert len(summary["mismatches"]) == 2

    def test_empty(self):
        summary = regression.score_cases([])
        assert summary["precision"] == summary["recall"] == summary["f1"] == 0.0


class TestMain:

    def test_load_cases_requires_cases(self, tmp_path):
        path = tmp_path / "cases.json"
        path.write_text(json.dumps({"cases": {}}))
        with pytest.raises(ValueError):
            regression.load_cases(path)

    def test_report_written(self, tmp_path, monkeypatch):
        cases = tmp_path / "cases.json"
        cases.write_text(json.dumps({
            "cases": {
                "cf": {"url": "https://cf.example", "expected": {"detected": True, "waf_type": "Cloudflare"}},
                "plain": {"url": "https://plain.example", "expected": {"detected": False}},
            }
        }))

        def fake_http_json(method, url, timeout=60):
            detected = "cf.example" in url
            return {
                "detection": {"detected": detected, "waf_type": "Cloudflare" if detected else "Unknown", "confidence": 75},
                "bypass_opportunities": {},
            }

        monkeypatch.setattr(regression, "http_json", fake_http_json)
        output = tmp_path / "report.json"
        assert regression.main(["--cases", str(cases), "--output", str(output), "--release", "v0.1.0"]) == 0

        report = json.loads(output.read_text())
        assert report["release"] == "v0.1.0"
        assert report["cases"] == ["cf", "plain"]
        assert report["summary"]["accuracy"] == 1.0

    def test_unknown_case_name(self, tmp_path):
        cases = tmp_path / "cases.json"
        cases.write_text(json.dumps({"cases": {"a": {"url": "https://a.example"}}}))
        with pytest.raises(ValueError, match="Unknown case"):
            regression.main(["--cases", str(cases), "--only", "b"])
