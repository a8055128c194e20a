"""
WAF Checker - Test matrix builder
Expands a scan configuration into the ordered list of individual probes:
categories × payloads × variations × methods.
"""

import hashlib
import json
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

from wafcheck.payloads import (
    FILE_CHECK,
    HEADER_CHECK,
    PARAM_CHECK,
    PayloadSource,
    PayloadStore,
    parse_custom_payloads,
)
from wafcheck.variations import (
    HTTPManipulationOptions,
    VariantStrategy,
    VariationGateway,
    first_bypass_variant,
    resolve_strategy,
)


PLACEHOLDER = "{PAYLOAD}"
DEFAULT_METHODS = ["GET"]


@dataclass
class ScanConfig:
    """Per-scan options shared by paginated, streaming and batch modes."""
    methods: List[str] = field(default_factory=lambda: list(DEFAULT_METHODS))
    categories: Optional[List[str]] = None
    payload_template: Optional[str] = None
    follow_redirect: bool = False
    custom_headers: Optional[str] = None
    false_positive_test: bool = False
    case_sensitive_test: bool = False
    use_enhanced_payloads: bool = False
    use_advanced_payloads: bool = False
    auto_detect_waf: bool = False
    use_encoding_variations: bool = False
    detected_waf: Optional[str] = None
    http_manipulation: HTTPManipulationOptions = field(default_factory=HTTPManipulationOptions)
    custom_payloads: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        self.methods = [m.upper() for m in (self.methods or []) if m] or list(DEFAULT_METHODS)
        if isinstance(self.http_manipulation, Mapping):
            self.http_manipulation = HTTPManipulationOptions(**self.http_manipulation)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TestRequestSpec:
    """One probe. `payload` is reported, `send_payload` goes on the wire."""
    __test__ = False

    category: str
    payload: str
    original_payload: str
    method: str
    check_type: str
    url: str
    headers: Optional[Dict[str, str]] = None
    send_payload: Optional[str] = None

    @property
    def wire_payload(self) -> str:
        return self.payload if self.send_payload is None else self.send_payload


@dataclass
class TestMatrix:
    __test__ = False

    url: str
    base_url: str
    requests: List[TestRequestSpec]
    vendor: Optional[str] = None
    strategy: VariantStrategy = VariantStrategy.USE_ORIGINAL_ONLY

    def __len__(self):
        return len(self.requests)


# ── Helpers ──────────────────────────────────────────────────────

def random_uppercase(text: str, rng: random.Random) -> str:
    """Flip the case of roughly half the ASCII letters."""
    out = []
    for ch in text:
        if ch.isascii() and ch.isalpha() and rng.random() > 0.5:
            out.append(ch.upper() if ch.islower() else ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def parse_header_block(block: Optional[str]) -> Dict[str, str]:
    """`Name: Value` lines to a dict. Lines without a name are skipped."""
    headers: Dict[str, str] = {}
    if not block or not block.strip():
        return headers
    for line in block.splitlines():
        idx = line.find(":")
        if idx > 0:
            headers[line[:idx].strip()] = line[idx + 1:].strip()
    return headers


def process_custom_headers(block: Optional[str], payload: Optional[str] = None) -> Dict[str, str]:
    headers = parse_header_block(block)
    if payload:
        headers = {k: v.replace(PLACEHOLDER, payload) for k, v in headers.items()}
    return headers


def substitute_payload(obj: Any, payload: str) -> Any:
    """Replace {PAYLOAD} in every string of a nested JSON value."""
    if isinstance(obj, str):
        return obj.replace(PLACEHOLDER, payload)
    if isinstance(obj, list):
        return [substitute_payload(item, payload) for item in obj]
    if isinstance(obj, dict):
        return {key: substitute_payload(value, payload) for key, value in obj.items()}
    return obj


def base_origin(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}"


def randomize_host(url: str, rng: random.Random) -> str:
    parts = urlsplit(url)
    if not parts.hostname:
        return random_uppercase(url, rng)
    # hostname comes back lower-cased; locate it in the original netloc
    start = parts.netloc.lower().rfind(parts.hostname)
    end = start + len(parts.hostname)
    netloc = parts.netloc[:start] + random_uppercase(parts.netloc[start:end], rng) + parts.netloc[end:]
    return urlunsplit(parts._replace(netloc=netloc))


def matrix_seed(url: str, config: ScanConfig) -> int:
    """Stable seed for a (url, config) pair so paginated rebuilds agree."""
    raw = json.dumps({"url": url, "config": config.to_dict()}, sort_keys=True, default=str)
    return int.from_bytes(hashlib.sha256(raw.encode("utf-8")).digest()[:8], "big")


def resolve_vendor(config: ScanConfig, detection=None) -> Optional[str]:
    if config.detected_waf:
        return config.detected_waf
    if detection is not None and detection.detected:
        return detection.waf_type
    return None


def build_payload_source(config: ScanConfig, store: PayloadStore) -> PayloadSource:
    return store.build_source(
        use_enhanced=config.use_enhanced_payloads,
        use_advanced=config.use_advanced_payloads,
        custom=parse_custom_payloads(config.custom_payloads),
    )


# ── Builder ──────────────────────────────────────────────────────

def build_test_matrix(
    target_url: str,
    config: ScanConfig,
    payload_source: PayloadSource,
    gateway: VariationGateway,
    vendor: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> TestMatrix:
    """Ordered probe list. Order is stable for a fixed config and rng state."""
    rng = rng or random.Random()
    url = target_url
    if config.case_sensitive_test:
        url = randomize_host(url, rng)
    base_url = base_origin(url)

    strategy = resolve_strategy(vendor, config.use_encoding_variations)
    pollute = config.http_manipulation.enable_parameter_pollution
    wanted = set(config.categories) if config.categories else None

    requests: List[TestRequestSpec] = []
    for category, info in payload_source.items():
        if wanted is not None and category not in wanted:
            continue
        payloads = info.false_payloads if config.false_positive_test else info.payloads

        for payload in payloads:
            if config.case_sensitive_test:
                payload = random_uppercase(payload, rng)

            if info.check_type == FILE_CHECK:
                file_url = base_url.rstrip("/") + "/" + payload.lstrip("/")
                headers = process_custom_headers(config.custom_headers, payload) or None
                requests.append(TestRequestSpec(
                    category=category,
                    payload=payload,
                    original_payload=payload,
                    method="GET",
                    check_type=FILE_CHECK,
                    url=file_url,
                    headers=headers,
                ))

            elif info.check_type == HEADER_CHECK:
                headers = parse_header_block(payload)
                headers.update(process_custom_headers(config.custom_headers, payload))
                for method in config.methods:
                    requests.append(TestRequestSpec(
                        category=category,
                        payload=payload,
                        original_payload=payload,
                        method=method,
                        check_type=HEADER_CHECK,
                        url=url,
                        headers=dict(headers),
                    ))

            else:
                if strategy is VariantStrategy.USE_VENDOR_VARIANTS:
                    variations = gateway.vendor_bypass_variants(vendor, payload) or [payload]
                elif strategy is VariantStrategy.USE_GENERIC_ENCODING:
                    variations = gateway.generic_encoded_variants(payload, category) or [payload]
                else:
                    variations = [payload]

                for current in variations:
                    send_payload = None
                    if pollute:
                        polluted = gateway.http_manipulation_variants(current, "pollution")
                        send_payload = first_bypass_variant(polluted, current)
                    headers = process_custom_headers(config.custom_headers, current) or None
                    for method in config.methods:
                        requests.append(TestRequestSpec(
                            category=category,
                            payload=current,
                            original_payload=payload,
                            method=method,
                            check_type=PARAM_CHECK,
                            url=url,
                            headers=headers,
                            send_payload=send_payload,
                        ))

    return TestMatrix(url=url, base_url=base_url, requests=requests, vendor=vendor, strategy=strategy)
