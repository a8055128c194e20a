"""
WAF Checker - Signature matcher
Scores a response against every WAF signature and keeps the best match.

Two weight presets exist. Passive matching (clean request) only looks at
headers and cookies. Probe matching also scores status and block-page body,
and discounts headers that were already present in the clean baseline so
that CDN infrastructure is not mistaken for blocking.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional

from wafcheck.signatures import HeaderMatcher, Signature, WAF_SIGNATURES


UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ScoringWeights:
    header: int
    header_in_baseline: int = 0
    status: int = 0
    body: int = 0
    cookie: int = 0


PASSIVE_WEIGHTS = ScoringWeights(header=25, cookie=15)
PROBE_WEIGHTS = ScoringWeights(header=35, header_in_baseline=5, status=15, body=25, cookie=15)


@dataclass
class SignatureMatch:
    vendor: str = UNKNOWN
    confidence: int = 0
    evidence: List[str] = field(default_factory=list)

    @property
    def detected(self) -> bool:
        return self.confidence > 0


def header_matches(matcher: HeaderMatcher, value: str) -> bool:
    if isinstance(matcher, str):
        return matcher.lower() in value.lower()
    return matcher.search(value) is not None


def _score_signature(
    sig: Signature,
    status: int,
    headers: Mapping[str, str],
    body: str,
    weights: ScoringWeights,
    baseline_headers: Optional[Mapping[str, str]],
) -> SignatureMatch:
    confidence = 0
    evidence: List[str] = []
    probe_mode = baseline_headers is not None

    for name, matcher in sig.headers:
        value = headers.get(name)
        if not value or not header_matches(matcher, value):
            continue
        if probe_mode and name in baseline_headers:
            confidence += weights.header_in_baseline
            evidence.append(f"Header {name}: {value} (also in clean response, infrastructure)")
        elif probe_mode:
            confidence += weights.header
            evidence.append(f"Header {name}: {value} (new in blocked response)")
        else:
            confidence += weights.header
            evidence.append(f"Header {name}: {value}")

    if weights.status and status in sig.status_codes:
        confidence += weights.status
        evidence.append(f"Blocked with status: {status}")

    if weights.body and body:
        for pattern in sig.body_patterns:
            if pattern.search(body):
                confidence += weights.body
                evidence.append(f"Block page pattern: {pattern.pattern}")

    if weights.cookie and sig.cookie_patterns:
        cookies = headers.get("set-cookie", "")
        if cookies:
            label = "WAF cookie" if probe_mode else "Cookie"
            for pattern in sig.cookie_patterns:
                if pattern.search(cookies):
                    confidence += weights.cookie
                    evidence.append(f"{label}: {pattern.pattern}")

    return SignatureMatch(vendor=sig.name, confidence=confidence, evidence=evidence)


def score_response(
    status: int,
    headers: Mapping[str, str],
    body: str = "",
    weights: ScoringWeights = PASSIVE_WEIGHTS,
    baseline_headers: Optional[Mapping[str, str]] = None,
    signatures: Iterable[Signature] = WAF_SIGNATURES,
) -> SignatureMatch:
    """Best-scoring signature for a response. `headers` keys must be lower-case.

    Ties keep the earlier signature. No match gives vendor "Unknown", 0.
    """
    best = SignatureMatch()
    for sig in signatures:
        candidate = _score_signature(sig, status, headers, body, weights, baseline_headers)
        if candidate.confidence > best.confidence:
            best = candidate
    return best


def match_passive(response) -> SignatureMatch:
    """Header and cookie match on a clean response."""
    return score_response(response.status, response.headers, weights=PASSIVE_WEIGHTS)


def match_probe(response, baseline_headers: Mapping[str, str]) -> SignatureMatch:
    """Full match on a blocked probe response, discounting baseline headers."""
    return score_response(
        response.status,
        response.headers,
        body=response.body,
        weights=PROBE_WEIGHTS,
        baseline_headers=baseline_headers,
    )
