"""
WAF Checker - WAF fingerprint database
Vendor signatures used by the matcher, plus per-vendor bypass suggestions.

Header matchers are either a plain string (case-insensitive substring) or a
compiled regex (searched). The table is immutable and loaded once.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Pattern, Tuple, Union


HeaderMatcher = Union[str, Pattern]


@dataclass(frozen=True)
class Signature:
    """WAF/CDN detection signature."""
    name: str
    headers: Tuple[Tuple[str, HeaderMatcher], ...]
    status_codes: Tuple[int, ...] = ()
    body_patterns: Tuple[Pattern, ...] = ()
    cookie_patterns: Tuple[Pattern, ...] = ()


def _sig(name, headers, status_codes=(), body=(), cookies=()) -> Signature:
    return Signature(
        name=name,
        headers=tuple((k.lower(), v) for k, v in headers.items()),
        status_codes=tuple(status_codes),
        body_patterns=tuple(body),
        cookie_patterns=tuple(cookies),
    )


_ANY = re.compile(r".*")

WAF_SIGNATURES: Tuple[Signature, ...] = (
    _sig(
        "Cloudflare",
        {
            "server": re.compile(r"cloudflare", re.I),
            "cf-ray": re.compile(r"^[a-f0-9]+-[A-Z]{3}$"),
            "cf-cache-status": _ANY,
            "cf-request-id": _ANY,
        },
        status_codes=(403, 429),
        body=(
            re.compile(r"cloudflare", re.I),
            re.compile(r"attention required! \| cloudflare", re.I),
            re.compile(r"ray id: [a-f0-9]+-[A-Z]{3}", re.I),
        ),
    ),
    _sig(
        "AWS WAF",
        {
            "server": re.compile(r"CloudFront", re.I),
            "x-amz-cf-id": _ANY,
            "x-amz-cf-pop": _ANY,
            "x-cache": re.compile(r"^(Hit|Miss) from cloudfront$", re.I),
        },
        status_codes=(403,),
        body=(
            re.compile(r"forbidden.*you don't have permission to access.*on this server", re.I),
            re.compile(r"request blocked", re.I),
        ),
    ),
    _sig(
        "Imperva",
        {
            "x-iinfo": _ANY,
            "x-cdn": re.compile(r"Incapsula", re.I),
            "set-cookie": re.compile(r"incap_ses_|visid_incap_", re.I),
        },
        status_codes=(403,),
        body=(
            re.compile(r"incapsula", re.I),
            re.compile(r"request unsuccessful. incapsula incident id", re.I),
        ),
        cookies=(
            re.compile(r"incap_ses_\d+"),
            re.compile(r"visid_incap_\d+"),
        ),
    ),
    _sig(
        "F5 BIG-IP",
        {
            "server": re.compile(r"BIG-IP", re.I),
            "x-wa-info": _ANY,
            "f5-trace-id": _ANY,
        },
        status_codes=(403,),
        body=(
            re.compile(r"the requested url was rejected", re.I),
            re.compile(r"please consult with your administrator", re.I),
            re.compile(r"your support id is", re.I),
        ),
    ),
    _sig(
        "ModSecurity",
        {"server": re.compile(r"mod_security|apache", re.I)},
        status_codes=(403, 406),
        body=(
            re.compile(r"mod_security", re.I),
            re.compile(r"not acceptable", re.I),
            re.compile(r"apache.*forbidden", re.I),
            re.compile(r"request blocked by security policy", re.I),
        ),
    ),
    _sig(
        "Akamai",
        {
            "server": re.compile(r"AkamaiGHost", re.I),
            "akamai-origin-hop": _ANY,
            "x-akamai-transformed": _ANY,
        },
        status_codes=(403,),
        body=(
            re.compile(r"access denied", re.I),
            re.compile(r"akamai", re.I),
            re.compile(r"reference #[0-9a-f]+", re.I),
        ),
    ),
    _sig(
        "Barracuda",
        {
            "server": re.compile(r"Barracuda", re.I),
            "x-barracuda-url": _ANY,
        },
        status_codes=(403,),
        body=(re.compile(r"barracuda", re.I),),
    ),
    _sig(
        "Sucuri",
        {
            "server": re.compile(r"Sucuri", re.I),
            "x-sucuri-id": _ANY,
            "x-sucuri-cache": _ANY,
        },
        status_codes=(403,),
        body=(
            re.compile(r"sucuri website firewall - access denied", re.I),
            re.compile(r"questions\? contact us at cloudproxy@sucuri\.net", re.I),
        ),
    ),
    _sig(
        "Fastly",
        {
            "via": re.compile(r"fastly", re.I),
            "x-served-by": re.compile(r"cache-.*-fastly", re.I),
            "x-cache": re.compile(r"(HIT|MISS).*fastly", re.I),
        },
        status_codes=(403,),
    ),
    _sig(
        "KeyCDN",
        {
            "server": re.compile(r"keycdn-engine", re.I),
            "x-edge-location": _ANY,
        },
        status_codes=(403,),
    ),
    _sig(
        "StackPath",
        {
            "server": re.compile(r"NetDNA-cache|stackpath", re.I),
            "x-hw": _ANY,
        },
        status_codes=(403,),
    ),
    _sig(
        "DenyAll",
        {"server": re.compile(r"denyall", re.I)},
        status_codes=(403,),
        body=(re.compile(r"denyall", re.I),),
    ),
    _sig(
        "FortiWeb",
        {"server": re.compile(r"Fortigate|FortiWeb", re.I)},
        status_codes=(403,),
        body=(
            re.compile(r"web filter violation", re.I),
            re.compile(r"fortigate", re.I),
        ),
    ),
    _sig(
        "Wallarm",
        {
            "server": re.compile(r"nginx-wallarm", re.I),
            "x-wallarm-instance": _ANY,
        },
        status_codes=(403, 500),
    ),
    _sig(
        "Radware",
        {
            "server": re.compile(r"Radware|AppWall", re.I),
            "x-origin-requestid": _ANY,
        },
        status_codes=(403,),
    ),
    _sig(
        "Varnish",
        {
            "server": re.compile(r"varnish", re.I),
            "x-varnish": _ANY,
            "via": re.compile(r"varnish", re.I),
        },
        status_codes=(403,),
    ),
)

SIGNATURE_NAMES: List[str] = [s.name for s in WAF_SIGNATURES]


# Bypass suggestions per vendor
BYPASS_TECHNIQUES: Dict[str, List[str]] = {
    "Cloudflare": [
        "Unicode encoding (\\u0027 instead of ')",
        "Double URL encoding (%2527 instead of %27)",
        "Mixed case keywords (uNiOn instead of UNION)",
        "Alternative space characters (\\u00A0)",
        "Comment-based obfuscation (/**/)",
    ],
    "AWS WAF": [
        "Unicode normalization bypasses",
        "Character set encoding variations",
        "Request method variations",
        "Content-Type manipulation",
    ],
    "Imperva": [
        "Parameter pollution",
        "HTTP verb tampering",
        "Custom header injection",
        "Encoding combinations",
    ],
    "F5 BIG-IP": [
        "Request smuggling techniques",
        "HTTP/1.0 downgrade",
        "Custom User-Agent strings",
    ],
    "ModSecurity": [
        "Comment-based SQL obfuscation",
        "Case sensitivity exploits",
        "Regex pattern bypasses",
        "Alternative operators",
    ],
    "Akamai": [
        "IP-based bypasses",
        "Origin server direct access",
        "Cache poisoning techniques",
    ],
    "Generic WAF": [
        "Double URL encoding",
        "Unicode encoding",
        "Mixed case obfuscation",
        "Comment insertion",
        "Parameter pollution",
        "HTTP verb tampering",
    ],
}


def suggested_bypass_techniques(waf_type: str) -> List[str]:
    """Bypass hints for a vendor, falling back to the generic list."""
    return list(BYPASS_TECHNIQUES.get(waf_type) or BYPASS_TECHNIQUES["Generic WAF"])
