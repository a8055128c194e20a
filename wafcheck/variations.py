"""
WAF Checker - Payload variation gateway
Narrow interface to the bypass/encoding generators, plus the built-in
generators the service ships with.

vendor_bypass_variants() always returns the unmodified payload at index 0;
indexes >= 1 are vendor-targeted mutations. All generators here are
deterministic so that a rebuilt test matrix is identical between calls.
"""

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol
from urllib.parse import quote, urlsplit, urlunsplit


class VariantStrategy(enum.Enum):
    USE_VENDOR_VARIANTS = "vendor"
    USE_GENERIC_ENCODING = "encoding"
    USE_ORIGINAL_ONLY = "original"


def resolve_strategy(vendor: Optional[str], use_encoding_variations: bool) -> VariantStrategy:
    """Pick the variant source once per matrix build. A known vendor wins."""
    if vendor:
        return VariantStrategy.USE_VENDOR_VARIANTS
    if use_encoding_variations:
        return VariantStrategy.USE_GENERIC_ENCODING
    return VariantStrategy.USE_ORIGINAL_ONLY


@dataclass
class HTTPManipulationOptions:
    enable_verb_tampering: bool = False
    enable_parameter_pollution: bool = False
    enable_content_type_confusion: bool = False
    enable_host_header_injection: bool = False

    @classmethod
    def all_enabled(cls) -> "HTTPManipulationOptions":
        return cls(True, True, True, True)


@dataclass
class ManipulatedRequest:
    """Request descriptor produced by the HTTP manipulation generator."""
    technique: str
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "technique": self.technique,
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
            "body": self.body,
        }


class VariationGateway(Protocol):
    def vendor_bypass_variants(self, vendor: str, payload: str) -> List[str]: ...

    def generic_encoded_variants(self, payload: str, category: str) -> List[str]: ...

    def http_manipulation_variants(self, payload: str, mode: str) -> List[str]: ...

    def build_manipulated_requests(
        self, url: str, method: str, payload: str, options: HTTPManipulationOptions
    ) -> List[ManipulatedRequest]: ...


def first_bypass_variant(variants: List[str], original: str) -> str:
    """Index 1 of a variant list, or the original when no variant exists."""
    return variants[1] if len(variants) > 1 else original


# ── Built-in transforms ──────────────────────────────────────────

def alternate_case(payload: str) -> str:
    out = []
    upper = True
    for ch in payload:
        if ch.isalpha():
            out.append(ch.upper() if upper else ch.lower())
            upper = not upper
        else:
            out.append(ch)
    return "".join(out)


def url_encode(payload: str) -> str:
    return quote(payload, safe="")


def double_url_encode(payload: str) -> str:
    return quote(quote(payload, safe=""), safe="")


def unicode_escape(payload: str) -> str:
    return "".join(f"\\u{ord(ch):04x}" if not ch.isalnum() else ch for ch in payload)


def html_entity_encode(payload: str) -> str:
    return "".join(f"&#{ord(ch)};" for ch in payload)


def hex_encode(payload: str) -> str:
    return "".join(f"\\x{ord(ch):02x}" for ch in payload)


def comment_split(payload: str) -> str:
    return payload.replace(" ", "/**/")


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


_VENDOR_MUTATIONS = {
    "Cloudflare": lambda p: [
        p + "%0a",
        p.replace("'", "’"),
        p.replace(" ", "\t"),
        double_url_encode(p),
    ],
    "ModSecurity": lambda p: [
        p.replace("SELECT", "/*!50000SELECT*/").replace("UNION", "/*!UNION*/"),
        p + "%00",
        comment_split(p),
    ],
    "AWS WAF": lambda p: [
        alternate_case(p),
        double_url_encode(p),
        unicode_escape(p),
    ],
    "Akamai": lambda p: [
        p + "&" + p,
        p.replace("<", "\\x3c"),
    ],
    "Imperva": lambda p: [
        url_encode(p),
        alternate_case(p),
        p.replace(" ", "%09"),
    ],
    "F5 BIG-IP": lambda p: [
        p.replace(" ", "+"),
        double_url_encode(p),
    ],
}


class DefaultVariationGateway:
    """Small deterministic generators, enough to run without external packs."""

    def vendor_bypass_variants(self, vendor: str, payload: str) -> List[str]:
        mutate = _VENDOR_MUTATIONS.get(vendor)
        if mutate is None:
            extra = [
                comment_split(payload),
                payload.replace("'", "%27"),
                payload.replace("<", "%3C"),
                payload.upper(),
            ]
        else:
            extra = mutate(payload)
        # index 0 stays the original even if a mutation happens to equal it
        return [payload] + [v for v in _dedupe(extra) if v != payload]

    def generic_encoded_variants(self, payload: str, category: str) -> List[str]:
        variants = [
            payload,
            url_encode(payload),
            double_url_encode(payload),
            alternate_case(payload),
        ]
        if category == "SQL Injection":
            variants.append(comment_split(payload))
        elif category == "XSS":
            variants.append(html_entity_encode(payload))
            variants.append(unicode_escape(payload))
        else:
            variants.append(hex_encode(payload))
        return _dedupe(variants)

    def http_manipulation_variants(self, payload: str, mode: str) -> List[str]:
        if mode == "pollution":
            return [
                payload,
                f"safe&test={payload}",
                f"{payload}&test=safe",
                f"safe,{payload}",
            ]
        if mode == "encoding":
            return [payload, url_encode(payload), double_url_encode(payload)]
        return [payload]

    def build_manipulated_requests(
        self, url: str, method: str, payload: str, options: HTTPManipulationOptions
    ) -> List[ManipulatedRequest]:
        encoded = url_encode(payload)
        sep = "&" if "?" in url else "?"
        base_url = f"{url}{sep}test={encoded}"
        requests: List[ManipulatedRequest] = []

        if options.enable_verb_tampering:
            for verb in ("POST", "PUT", "PATCH", "OPTIONS", "HEAD"):
                if verb != method:
                    requests.append(ManipulatedRequest("verb_tampering", verb, base_url))
            requests.append(ManipulatedRequest(
                "method_override", "POST", base_url, headers={"X-HTTP-Method-Override": method},
            ))

        if options.enable_parameter_pollution:
            for polluted in self.http_manipulation_variants(payload, "pollution")[1:]:
                requests.append(ManipulatedRequest(
                    "parameter_pollution", method, f"{url}{sep}test={polluted}",
                ))

        if options.enable_content_type_confusion:
            body = f"test={encoded}"
            for ctype in ("application/json", "text/plain", "application/xml", "multipart/form-data"):
                requests.append(ManipulatedRequest(
                    "content_type_confusion", "POST", url, headers={"Content-Type": ctype}, body=body,
                ))

        if options.enable_host_header_injection:
            parts = urlsplit(url)
            for header, value in (
                ("X-Forwarded-Host", "localhost"),
                ("X-Host", "127.0.0.1"),
                ("X-Forwarded-For", "127.0.0.1"),
                ("X-Original-URL", parts.path or "/"),
                ("X-Rewrite-URL", parts.path or "/"),
            ):
                requests.append(ManipulatedRequest(
                    "host_header_injection", method,
                    urlunsplit(parts._replace(query=f"test={encoded}")), headers={header: value},
                ))

        return requests
