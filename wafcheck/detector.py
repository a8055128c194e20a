"""
WAF Checker - Phased WAF detection
Three-stage probing of a target:

1. Passive: a clean browser-like GET identifies CDN/WAF infrastructure.
2. Active: obvious attack probes; a probe is blocked when the clean
   request was < 400 and the probe is >= 400.
3. Evasion confirm: obfuscated probes separate configured WAF rules from a
   CDN's default security, which blocks only the obvious patterns.

Detection never raises; network failures degrade into a low-confidence
verdict.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import httpx

from wafcheck.config import ProbeConfig
from wafcheck.errors import TransportError
from wafcheck.logger import log_debug, log_info, log_warning
from wafcheck.matcher import UNKNOWN, SignatureMatch, match_passive, match_probe
from wafcheck.requester import browser_headers, fetch_once
from wafcheck.signatures import suggested_bypass_techniques


ACTIVE_PROBES: Tuple[str, ...] = (
    "' OR '1'='1",
    "<script>alert(1)</script>",
    "../../../etc/passwd",
    "UNION SELECT 1,2,3--",
)

# Slip past pattern-matching default security, caught by configured rules
EVASION_PROBES: Tuple[str, ...] = (
    "1 un/**/ion se/**/lect 1,2,3--",
    "1' || 1=1--",
    "<Img Src=x OnError=prompt(1)>",
    "....//....//....//etc/passwd",
)

EVASION_CONFIRM_THRESHOLD = 3


@dataclass(frozen=True)
class BaselineSnapshot:
    """Result of the clean request. Headers are lower-cased."""
    detected: bool
    name: str
    confidence: int
    evidence: Tuple[str, ...]
    status: int
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def unreachable(cls) -> "BaselineSnapshot":
        return cls(detected=False, name=UNKNOWN, confidence=0, evidence=(), status=0, headers={})


@dataclass
class DetectionResult:
    detected: bool
    waf_type: str
    confidence: int
    evidence: List[str] = field(default_factory=list)
    suggested_bypass_techniques: List[str] = field(default_factory=list)
    is_actively_blocking: bool = False
    has_default_security: bool = False
    baseline_status: int = 0
    probe_status: int = 0
    infrastructure: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "waf_type": self.waf_type,
            "confidence": self.confidence,
            "evidence": list(self.evidence),
            "suggested_bypass_techniques": list(self.suggested_bypass_techniques),
            "is_actively_blocking": self.is_actively_blocking,
            "has_default_security": self.has_default_security,
            "baseline_status": self.baseline_status,
            "probe_status": self.probe_status,
            "infrastructure": self.infrastructure,
        }


@dataclass
class BypassOpportunities:
    http_methods_bypass: bool = False
    header_bypass: bool = False
    encoding_bypass: bool = False
    parameter_pollution: bool = False

    def to_dict(self) -> dict:
        return {
            "http_methods_bypass": self.http_methods_bypass,
            "header_bypass": self.header_bypass,
            "encoding_bypass": self.encoding_bypass,
            "parameter_pollution": self.parameter_pollution,
        }


class WAFDetector:
    """Runs the passive → active → evasion pipeline against one URL."""

    def __init__(self, client: httpx.AsyncClient, probe_cfg: Optional[ProbeConfig] = None):
        self.client = client
        self.probe_cfg = probe_cfg or ProbeConfig()

    async def _get(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None, method: str = "GET"):
        return await fetch_once(
            self.client,
            method,
            url,
            headers=headers,
            params=params,
            timeout=self.probe_cfg.detection_timeout,
        )

    # ── Phase 1 ──────────────────────────────────────────────────

    async def passive_detection(self, url: str) -> BaselineSnapshot:
        """Clean GET, headers and cookies only."""
        try:
            resp = await self._get(url, headers=browser_headers(self.probe_cfg))
        except TransportError as e:
            log_warning("Detector", f"Passive detection failed for {url}: {e}")
            return BaselineSnapshot.unreachable()

        match = match_passive(resp)
        return BaselineSnapshot(
            detected=match.confidence > 0,
            name=match.vendor,
            confidence=match.confidence,
            evidence=tuple(match.evidence),
            status=resp.status,
            headers=dict(resp.headers),
        )

    # ── Phase 2 + 3 ──────────────────────────────────────────────

    async def detect(self, url: str) -> DetectionResult:
        passive = await self.passive_detection(url)
        log_info(
            "Detector",
            f"Passive: {passive.name} (confidence {passive.confidence}, baseline status {passive.status})",
        )

        probe_blocked = False
        probe_status = 0
        best_probe = SignatureMatch()

        for payload in ACTIVE_PROBES:
            try:
                resp = await self._get(url, params={"test": payload})
            except TransportError as e:
                log_debug("Detector", f"Active probe failed: {e}")
                continue
            if passive.status < 400 and resp.status >= 400:
                probe_blocked = True
                probe_status = resp.status
                match = match_probe(resp, passive.headers)
                if match.confidence > best_probe.confidence:
                    best_probe = match

        confirmed = True
        if probe_blocked and passive.detected:
            log_info("Detector", "Probes blocked by detected CDN, running evasion confirmation probes")
            confirmed = await self._confirm_active_waf(url, passive.status)
            log_info(
                "Detector",
                "Evasion confirmation: " + ("active WAF rules" if confirmed else "default security only"),
            )

        return self._build_final_result(passive, probe_blocked, probe_status, best_probe, confirmed)

    async def _confirm_active_waf(self, url: str, baseline_status: int) -> bool:
        blocked = 0
        headers = {"User-Agent": self.probe_cfg.user_agent}
        for payload in EVASION_PROBES:
            try:
                resp = await self._get(url, params={"q": payload}, headers=headers)
            except TransportError:
                # Dropped connections count as network-level blocking
                blocked += 1
                continue
            if resp.status >= 400 and baseline_status < 400:
                blocked += 1
        return blocked >= EVASION_CONFIRM_THRESHOLD

    def _build_final_result(
        self,
        passive: BaselineSnapshot,
        probe_blocked: bool,
        probe_status: int,
        probe_match: SignatureMatch,
        confirmed_active: bool,
    ) -> DetectionResult:
        infrastructure = passive.name if passive.detected else None

        # Case 1: configured WAF rules
        if probe_blocked and confirmed_active:
            if probe_match.confidence >= 40:
                waf_type = probe_match.vendor
                confidence = min(probe_match.confidence, 100)
                evidence = list(probe_match.evidence)
            elif passive.detected:
                waf_type = passive.name
                confidence = min(passive.confidence + 20, 100)
                evidence = [
                    *passive.evidence,
                    f"Probes blocked ({passive.status} → {probe_status})",
                    "Evasion probes also blocked, active WAF rules confirmed",
                    f"Infrastructure {passive.name} has configured WAF rules",
                ]
            else:
                waf_type = probe_match.vendor if probe_match.vendor != UNKNOWN else "Unknown WAF"
                confidence = max(probe_match.confidence, 30)
                evidence = [
                    f"Probes blocked ({passive.status} → {probe_status})",
                    *probe_match.evidence,
                ]
            return DetectionResult(
                detected=True,
                waf_type=waf_type,
                confidence=confidence,
                evidence=evidence,
                suggested_bypass_techniques=suggested_bypass_techniques(waf_type),
                is_actively_blocking=True,
                has_default_security=False,
                baseline_status=passive.status,
                probe_status=probe_status,
                infrastructure=infrastructure,
            )

        # Case 2: CDN default security only
        if probe_blocked:
            cdn_name = passive.name if passive.detected else "Unknown CDN"
            return DetectionResult(
                detected=True,
                waf_type=cdn_name,
                confidence=min(passive.confidence, 50),
                evidence=[
                    *passive.evidence,
                    f"Obvious probes blocked ({passive.status} → {probe_status})",
                    "Evasion probes passed through, no active WAF rules detected",
                    f"{cdn_name} default/standard security is blocking obvious attack patterns",
                    "This is normal CDN behavior, not a configured WAF",
                ],
                is_actively_blocking=False,
                has_default_security=True,
                baseline_status=passive.status,
                probe_status=probe_status,
                infrastructure=infrastructure,
            )

        # Case 3: infrastructure present, not blocking
        if passive.detected and passive.confidence >= 25:
            return DetectionResult(
                detected=True,
                waf_type=passive.name,
                confidence=min(passive.confidence, 70),
                evidence=[
                    *passive.evidence,
                    "Infrastructure detected but probes were NOT blocked",
                    f"Baseline status: {passive.status}, Probe status: same (not blocked)",
                ],
                baseline_status=passive.status,
                probe_status=passive.status,
                infrastructure=passive.name,
            )

        # Case 4: nothing
        return DetectionResult(
            detected=False,
            waf_type=UNKNOWN,
            confidence=0,
            evidence=[
                f"Baseline status: {passive.status}",
                "No WAF signatures found in headers",
                "Probes were not blocked",
            ],
            baseline_status=passive.status,
            probe_status=passive.status,
        )

    # ── Bypass opportunities ─────────────────────────────────────

    async def detect_bypass_opportunities(self, url: str) -> BypassOpportunities:
        """Quick checks for classic WAF blind spots. Each check tolerates failure."""
        found = BypassOpportunities()

        try:
            resp = await self._get(url, method="TRACE")
            found.http_methods_bypass = resp.status != 405
        except TransportError as e:
            log_debug("Detector", f"TRACE check failed: {e}")

        try:
            resp = await self._get(url, headers={"X-Original-URL": "/admin"})
            found.header_bypass = resp.status == 200
        except TransportError as e:
            log_debug("Detector", f"X-Original-URL check failed: {e}")

        try:
            resp = await self._get(_append_query(url, "test=%2527%2520OR%25201%253D1"))
            found.encoding_bypass = resp.status == 200
        except TransportError as e:
            log_debug("Detector", f"Encoding check failed: {e}")

        try:
            resp = await self._get(_append_query(url, "test=safe&test=malicious"))
            found.parameter_pollution = resp.status == 200
        except TransportError as e:
            log_debug("Detector", f"Parameter pollution check failed: {e}")

        return found


def _append_query(url: str, raw_query: str) -> str:
    """Append a pre-encoded query string verbatim."""
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{raw_query}"
