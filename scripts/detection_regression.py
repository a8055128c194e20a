#!/usr/bin/env python3
"""
Detection regression harness.

Runs WAF detection against a set of known targets through the backend API
and computes TP/FP/FN metrics from a cases file so each release can be
compared.
"""

from __future__ import annotations

import argparse
import json
import time
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List

import httpx
from rich.console import Console
from rich.table import Table

console = Console()


def load_cases(path: Path) -> Dict[str, Dict[str, Any]]:
    """Read the `cases` mapping (name -> {url, expected}) from a JSON file."""
    data = json.loads(path.read_text(encoding="utf-8"))
    cases = data.get("cases") if isinstance(data, dict) else None
    if not isinstance(cases, dict) or not cases:
        raise ValueError(f"{path}: expected an object with a non-empty 'cases' mapping")
    return cases


def http_json(method: str, url: str, timeout: int = 60) -> Dict[str, Any]:
    # Targets behind test WAFs often sit on self-signed certs, and so may the backend.
    try:
        resp = httpx.request(method.upper(), url, timeout=timeout, verify=False,
                             headers={"Accept": "application/json"})
        resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise RuntimeError(f"{url} answered {exc.response.status_code}: {exc.response.text[:300]}") from exc
    except httpx.HTTPError as exc:
        raise RuntimeError(f"{url} unreachable: {exc}") from exc
    return resp.json() if resp.content.strip() else {}


def classify(detection: Dict[str, Any], expected: Dict[str, Any]) -> str:
    """One of tp, fp, fn, tn for a single target.

    A detection naming the wrong vendor counts as a false positive. When the
    case sets `actively_blocking`, that flag must match too.
    """
    want = bool(expected.get("detected", False))
    got = bool(detection.get("detected", False))

    if not want:
        return "fp" if got else "tn"
    if not got:
        return "fn"

    waf_type = str(expected.get("waf_type", "") or "").strip().lower()
    if waf_type and waf_type != str(detection.get("waf_type", "")).lower():
        return "fp"
    if "actively_blocking" in expected:
        if bool(expected["actively_blocking"]) != bool(detection.get("is_actively_blocking")):
            return "fp"
    return "tp"


def score_cases(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    counts = Counter(r["verdict"] for r in results)
    tp, fp, fn, tn = (counts[v] for v in ("tp", "fp", "fn", "tn"))

    def ratio(num: int, den: int) -> float:
        return round(num / den, 4) if den else 0.0

    precision = ratio(tp, tp + fp)
    recall = ratio(tp, tp + fn)
    f1 = round(2 * precision * recall / (precision + recall), 4) if precision + recall else 0.0
    return {
        "tp": tp, "fp": fp, "fn": fn, "tn": tn,
        "precision": precision,
        "recall": recall,
        "f1": f1,
        "accuracy": ratio(tp + tn, len(results)),
        "mismatches": [r for r in results if r["verdict"] in ("fp", "fn")][:100],
    }


def run_case(api_base: str, name: str, case: Dict[str, Any], timeout_s: int) -> Dict[str, Any]:
    url = str(case.get("url", "")).strip()
    if not url:
        raise ValueError(f"Case '{name}' requires url")

    started = time.time()
    endpoint = httpx.URL(f"{api_base.rstrip('/')}/api/waf-detect", params={"url": url})
    report = http_json("GET", str(endpoint), timeout=timeout_s)
    detection = report.get("detection", {}) or {}
    expected = case.get("expected", {}) or {}
    return {
        "case": name,
        "url": url,
        "verdict": classify(detection, expected),
        "expected": expected,
        "detection": detection,
        "bypass_opportunities": report.get("bypass_opportunities", {}),
        "elapsed_s": round(time.time() - started, 3),
    }


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Score /api/waf-detect against targets with known WAF verdicts.")
    parser.add_argument("--api-base", default="http://127.0.0.1:8088", help="wafcheck backend to query")
    parser.add_argument("--cases", default="regression/detection_cases.example.json", help="case definitions (JSON)")
    parser.add_argument("--only", default="", help="comma-separated subset of case names")
    parser.add_argument("--timeout", type=int, default=120, help="seconds allowed per detection")
    parser.add_argument("--release", default="", help="label stored in the report")
    parser.add_argument("--output", default="regression/reports/detection_latest.json", help="report destination")
    return parser.parse_args(argv)


def select_cases(cases: Dict[str, Dict[str, Any]], only: str) -> List[str]:
    wanted = [name.strip() for name in only.split(",") if name.strip()]
    unknown = sorted(set(wanted) - set(cases))
    if unknown:
        raise ValueError(f"Unknown case(s): {', '.join(unknown)}")
    return wanted or sorted(cases)


def print_summary(results: List[Dict[str, Any]], summary: Dict[str, Any]) -> None:
    table = Table(title="WAF detection regression")
    for column in ("case", "verdict", "waf_type", "confidence", "elapsed"):
        table.add_column(column)
    styles = {"tp": "green", "tn": "green", "fp": "red", "fn": "yellow"}
    for r in results:
        d = r["detection"]
        table.add_row(
            r["case"],
            f"[{styles[r['verdict']]}]{r['verdict'].upper()}[/]",
            str(d.get("waf_type", "-")),
            str(d.get("confidence", "-")),
            f"{r['elapsed_s']}s",
        )
    console.print(table)
    console.print(
        f"precision {summary['precision']:.4f}  recall {summary['recall']:.4f}  "
        f"f1 {summary['f1']:.4f}  accuracy {summary['accuracy']:.4f}"
    )


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    cases_path = Path(args.cases)
    cases = load_cases(cases_path)
    names = select_cases(cases, args.only)

    results = []
    for name in names:
        console.print(f"[dim]running {name}...[/dim]")
        results.append(run_case(args.api_base, name, cases[name], timeout_s=args.timeout))

    summary = score_cases(results)
    print_summary(results, summary)

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps({
        "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "release": args.release,
        "api_base": args.api_base,
        "cases_file": str(cases_path),
        "cases": names,
        "summary": summary,
        "results": results,
    }, indent=2), encoding="utf-8")
    console.print(f"report written to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
