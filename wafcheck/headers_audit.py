"""
WAF Checker - Security headers audit
Grades a target's response headers: which hardening headers are present,
which are missing, and which leak server details.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Tuple

import httpx

from wafcheck.requester import fetch_once


AUDIT_USER_AGENT = "Mozilla/5.0 (compatible; WAF-Checker/1.0)"

SECURITY_HEADERS: Dict[str, Dict[str, str]] = {
    "content-security-policy": {
        "description": "Controls resources the browser is allowed to load. Prevents XSS and data injection attacks.",
        "severity": "critical",
        "recommendation": "Add a Content-Security-Policy header (e.g., default-src 'self'; script-src 'self')",
    },
    "strict-transport-security": {
        "description": "Forces HTTPS connections and prevents SSL stripping attacks.",
        "severity": "critical",
        "recommendation": "Add Strict-Transport-Security: max-age=31536000; includeSubDomains; preload",
    },
    "x-frame-options": {
        "description": "Prevents clickjacking by controlling iframe embedding.",
        "severity": "high",
        "recommendation": "Add X-Frame-Options: DENY or SAMEORIGIN",
    },
    "x-content-type-options": {
        "description": "Prevents MIME-type sniffing attacks.",
        "severity": "medium",
        "recommendation": "Add X-Content-Type-Options: nosniff",
    },
    "referrer-policy": {
        "description": "Controls how much referrer information is shared with other sites.",
        "severity": "medium",
        "recommendation": "Add Referrer-Policy: strict-origin-when-cross-origin",
    },
    "permissions-policy": {
        "description": "Controls which browser features can be used (camera, mic, geolocation, etc.).",
        "severity": "medium",
        "recommendation": "Add Permissions-Policy: camera=(), microphone=(), geolocation=()",
    },
    "x-xss-protection": {
        "description": "Legacy XSS filter for older browsers. Modern CSP is preferred.",
        "severity": "low",
        "recommendation": "Add X-XSS-Protection: 1; mode=block (or rely on CSP)",
    },
    "cross-origin-opener-policy": {
        "description": "Prevents cross-origin windows from interacting with your page.",
        "severity": "medium",
        "recommendation": "Add Cross-Origin-Opener-Policy: same-origin",
    },
    "cross-origin-resource-policy": {
        "description": "Prevents other origins from reading your resources.",
        "severity": "medium",
        "recommendation": "Add Cross-Origin-Resource-Policy: same-origin",
    },
    "cross-origin-embedder-policy": {
        "description": "Controls cross-origin resource loading for added isolation.",
        "severity": "low",
        "recommendation": "Add Cross-Origin-Embedder-Policy: require-corp",
    },
}

INFORMATION_DISCLOSURE_HEADERS = (
    "server",
    "x-powered-by",
    "x-aspnet-version",
    "x-aspnetmvc-version",
    "x-generator",
    "x-drupal-cache",
    "x-varnish",
)

GRADES: Tuple[Tuple[int, str], ...] = ((90, "A+"), (80, "A"), (70, "B"), (55, "C"), (40, "D"))


@dataclass
class HeadersAudit:
    url: str
    status: int
    response_time_ms: int
    score: int
    grade: str
    present: List[dict] = field(default_factory=list)
    missing: List[dict] = field(default_factory=list)
    information_disclosure: List[dict] = field(default_factory=list)
    total_checked: int = len(SECURITY_HEADERS)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "status": self.status,
            "response_time_ms": self.response_time_ms,
            "score": self.score,
            "grade": self.grade,
            "present": self.present,
            "missing": self.missing,
            "information_disclosure": self.information_disclosure,
            "total_checked": self.total_checked,
            "timestamp": self.timestamp,
        }


def grade_for(score: int) -> str:
    for threshold, grade in GRADES:
        if score >= threshold:
            return grade
    return "F"


def evaluate_headers(headers: Mapping[str, str]) -> Tuple[int, List[dict], List[dict], List[dict]]:
    """Score lower-cased response headers. Returns (score, present, missing, disclosure)."""
    present, missing, disclosure = [], [], []
    for name, info in SECURITY_HEADERS.items():
        value = headers.get(name)
        if value:
            present.append({"header": name, "value": value, "description": info["description"], "severity": info["severity"]})
        else:
            missing.append({
                "header": name,
                "description": info["description"],
                "severity": info["severity"],
                "recommendation": info["recommendation"],
            })
    for name in INFORMATION_DISCLOSURE_HEADERS:
        value = headers.get(name)
        if value:
            disclosure.append({"header": name, "value": value})

    critical_missing = sum(1 for h in missing if h["severity"] == "critical")
    high_missing = sum(1 for h in missing if h["severity"] == "high")
    score = int(len(present) / len(SECURITY_HEADERS) * 100 + 0.5)
    score = max(0, score - critical_missing * 15 - high_missing * 8)
    score = max(0, score - len(disclosure) * 3)
    return score, present, missing, disclosure


async def audit_security_headers(client: httpx.AsyncClient, url: str, timeout: float = 15.0) -> HeadersAudit:
    """Fetch `url` following redirects and grade its headers. Raises TransportError."""
    resp = await fetch_once(
        client,
        "GET",
        url,
        headers={"User-Agent": AUDIT_USER_AGENT},
        timeout=timeout,
        follow_redirects=True,
    )
    score, present, missing, disclosure = evaluate_headers(resp.headers)
    return HeadersAudit(
        url=url,
        status=resp.status,
        response_time_ms=resp.elapsed_ms,
        score=score,
        grade=grade_for(score),
        present=present,
        missing=missing,
        information_disclosure=disclosure,
    )
