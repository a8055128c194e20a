"""
WAF Checker - Payload sources
Built-in payload categories, the enhanced (pre-encoded) and advanced sets,
custom caller categories and the optional remote payload pack.

Sources are merged by category name with union semantics: a later source
adds its payloads to an existing category instead of replacing it.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from wafcheck.logger import log_info, log_success, log_warning
from wafcheck.variations import double_url_encode, url_encode


PARAM_CHECK = "ParamCheck"
FILE_CHECK = "FileCheck"
HEADER_CHECK = "Header"
CHECK_TYPES = (PARAM_CHECK, FILE_CHECK, HEADER_CHECK)


@dataclass
class PayloadCategory:
    check_type: str = PARAM_CHECK
    payloads: List[str] = field(default_factory=list)
    false_payloads: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.check_type,
            "payloads": list(self.payloads),
            "false_payloads": list(self.false_payloads),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PayloadCategory":
        check_type = data.get("type") or data.get("check_type") or PARAM_CHECK
        if check_type not in CHECK_TYPES:
            check_type = PARAM_CHECK
        false_payloads = data.get("false_payloads", data.get("falsePayloads")) or []
        return cls(
            check_type=check_type,
            payloads=[str(p) for p in (data.get("payloads") or [])],
            false_payloads=[str(p) for p in false_payloads],
        )

    def copy(self) -> "PayloadCategory":
        return PayloadCategory(self.check_type, list(self.payloads), list(self.false_payloads))


PayloadSource = Dict[str, PayloadCategory]


BASE_PAYLOADS: PayloadSource = {
    "SQL Injection": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "' OR '1'='1",
            "' OR 1=1--",
            "\" OR \"1\"=\"1",
            "' UNION SELECT NULL--",
            "1; DROP TABLE users--",
            "' AND SLEEP(5)--",
            "admin'--",
            "' OR 1=1#",
        ],
        false_payloads=[
            "O'Reilly",
            "select a plan",
            "union station",
            "1 or 2 items",
        ],
    ),
    "XSS": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "<script>alert(1)</script>",
            "<img src=x onerror=alert(1)>",
            "<svg/onload=alert(1)>",
            "\"><script>alert(1)</script>",
            "javascript:alert(1)",
            "<body onload=alert(1)>",
            "<iframe src=javascript:alert(1)>",
        ],
        false_payloads=[
            "<b>bold text</b>",
            "a < b and c > d",
            "script writer",
            "alert me later",
        ],
    ),
    "Path Traversal": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "../../../etc/passwd",
            "..\\..\\..\\windows\\win.ini",
            "....//....//etc/passwd",
            "%2e%2e%2f%2e%2e%2fetc%2fpasswd",
            "/etc/passwd%00",
        ],
        false_payloads=[
            "docs/readme.txt",
            "images/logo.png",
            "2024/01/report",
        ],
    ),
    "Command Injection": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "; ls -la",
            "| cat /etc/passwd",
            "`id`",
            "$(whoami)",
            "&& ping -c 1 127.0.0.1",
        ],
        false_payloads=[
            "rock & roll",
            "price | quantity",
            "cost: $10",
        ],
    ),
    "SSTI": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "{{7*7}}",
            "${7*7}",
            "<%= 7*7 %>",
            "{{config.items()}}",
            "#{7*7}",
        ],
        false_payloads=[
            "{braces}",
            "50% off",
            "price ${amount}",
        ],
    ),
    "LDAP Injection": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "*)(uid=*))(|(uid=*",
            "admin)(&)",
            "*)(|(objectClass=*)",
        ],
        false_payloads=[
            "john.doe",
            "(555) 123-4567",
        ],
    ),
    "Sensitive Files": PayloadCategory(
        FILE_CHECK,
        payloads=[
            ".env",
            ".git/config",
            "wp-config.php.bak",
            ".htaccess",
            "config.php~",
            "backup.sql",
            "server-status",
        ],
        false_payloads=[
            "robots.txt",
            "favicon.ico",
        ],
    ),
    "Header Injection": PayloadCategory(
        HEADER_CHECK,
        payloads=[
            "X-Forwarded-For: 127.0.0.1",
            "X-Original-URL: /admin",
            "User-Agent: sqlmap/1.7",
            "X-Forwarded-Host: evil.example\nX-Forwarded-For: ' OR '1'='1",
            "Referer: <script>alert(1)</script>",
        ],
        false_payloads=[
            "Accept-Language: en-US",
            "X-Requested-With: XMLHttpRequest",
        ],
    ),
}


ADVANCED_PAYLOADS: PayloadSource = {
    "SQL Injection": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "'/**/OR/**/1=1--",
            "'/*!50000OR*/1=1--",
            "'||'1'='1",
            "' UnIoN SeLeCt NULL--",
            "' /*!50000UNION*/ /*!50000SELECT*/ NULL--",
            "'\tOR\t1=1--",
        ],
    ),
    "XSS": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "<ScRiPt>alert(1)</ScRiPt>",
            "<svg><animate onbegin=alert(1) attributeName=x>",
            "<img/src/onerror=alert(1)>",
            "<details open ontoggle=alert(1)>",
            "<script>alert`1`</script>",
            "<img src=x onerror=eval(atob('YWxlcnQoMSk='))>",
        ],
    ),
    "Path Traversal": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            "..%252f..%252f..%252fetc%252fpasswd",
            "..%c0%af..%c0%afetc/passwd",
            "/%2e%2e/%2e%2e/etc/passwd",
        ],
    ),
    "Command Injection": PayloadCategory(
        PARAM_CHECK,
        payloads=[
            ";${IFS}cat${IFS}/etc/passwd",
            "$(printf${IFS}id)",
            "%0aid",
        ],
    ),
}


def enhanced_payloads(source: Mapping[str, PayloadCategory]) -> PayloadSource:
    """Source plus "<name> (Encoded)" categories holding URL/double-URL encodings."""
    result: PayloadSource = {name: cat.copy() for name, cat in source.items()}
    for name, cat in source.items():
        if cat.check_type != PARAM_CHECK:
            continue
        encoded: List[str] = []
        for payload in cat.payloads:
            encoded.append(url_encode(payload))
            encoded.append(double_url_encode(payload))
        result[f"{name} (Encoded)"] = PayloadCategory(
            PARAM_CHECK,
            payloads=_union([], encoded),
            false_payloads=list(cat.false_payloads),
        )
    return result


def _union(existing: Iterable[str], extra: Iterable[str]) -> List[str]:
    return list(dict.fromkeys([*existing, *extra]))


def merge_payload_sources(*sources: Optional[Mapping[str, PayloadCategory]]) -> PayloadSource:
    """Merge sources left to right; same-name categories get their lists unioned."""
    merged: PayloadSource = {}
    for source in sources:
        if not source:
            continue
        for name, cat in source.items():
            current = merged.get(name)
            if current is None:
                merged[name] = cat.copy()
                continue
            merged[name] = PayloadCategory(
                check_type=current.check_type,
                payloads=_union(current.payloads, cat.payloads),
                false_payloads=_union(current.false_payloads, cat.false_payloads),
            )
    return merged


def parse_custom_payloads(raw: Optional[Mapping[str, Any]]) -> PayloadSource:
    """Caller-supplied categories. Entries flagged deleted are dropped."""
    result: PayloadSource = {}
    if not raw:
        return result
    for name, data in raw.items():
        if not isinstance(data, Mapping):
            continue
        if data.get("_deleted") or data.get("deleted"):
            continue
        result[str(name)] = PayloadCategory.from_dict(data)
    return result


def check_remote_shape(data: Any):
    """Raise ValueError unless `data` looks like a payload pack (object of category objects)."""
    if not isinstance(data, Mapping):
        raise ValueError(f"payload pack must be a JSON object, got {type(data).__name__}")
    for key in ("payloads", "advancedPayloads", "advanced_payloads"):
        section = data.get(key)
        if section is not None and not isinstance(section, Mapping):
            raise ValueError(f"'{key}' must be a JSON object, got {type(section).__name__}")


class PayloadStore:
    """Process-wide payload catalogue, optionally refreshed from a remote pack."""

    def __init__(self):
        self.base: PayloadSource = {k: v.copy() for k, v in BASE_PAYLOADS.items()}
        self.advanced: PayloadSource = {k: v.copy() for k, v in ADVANCED_PAYLOADS.items()}
        self.enhanced: PayloadSource = enhanced_payloads(self.base)
        self.loaded_remote = False
        self.last_error: Optional[str] = None
        self.loaded_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def build_source(
        self,
        use_enhanced: bool = False,
        use_advanced: bool = False,
        custom: Optional[Mapping[str, PayloadCategory]] = None,
    ) -> PayloadSource:
        source = self.enhanced if use_enhanced else self.base
        return merge_payload_sources(
            source,
            self.advanced if use_advanced else None,
            custom,
        )

    def catalogue(self, include_enhanced: bool = False, include_advanced: bool = False) -> PayloadSource:
        return self.build_source(use_enhanced=include_enhanced, use_advanced=include_advanced)

    async def load_remote(self, client: httpx.AsyncClient, url: str, timeout: float = 10.0) -> bool:
        """Pull the remote payload pack once. Failure keeps the built-in set and allows a retry."""
        async with self._lock:
            if self.loaded_remote:
                return True
            log_info("Payloads", f"Loading payloads from {url}")
            try:
                resp = await client.get(url, timeout=timeout, follow_redirects=True)
                resp.raise_for_status()
                data = resp.json()
                check_remote_shape(data)
            except (httpx.HTTPError, ValueError) as e:
                self.last_error = str(e) or type(e).__name__
                log_warning("Payloads", f"Remote payload load failed: {self.last_error}")
                return False
            self.apply_remote(data)
            return True

    def apply_remote(self, data: Mapping[str, Any]):
        for name, raw in (data.get("payloads") or {}).items():
            if isinstance(raw, Mapping):
                self.base[name] = PayloadCategory.from_dict(raw)
        for name, raw in (data.get("advancedPayloads") or data.get("advanced_payloads") or {}).items():
            if isinstance(raw, Mapping):
                cat = PayloadCategory.from_dict(raw)
                self.base[name] = cat
                self.advanced[name] = cat.copy()
        self.enhanced = enhanced_payloads(self.base)
        self.loaded_remote = True
        self.loaded_at = time.time()
        self.last_error = None
        log_success(
            "Payloads",
            f"Payloads loaded: {len(self.base)} categories, {sum(len(c.payloads) for c in self.base.values())} payloads",
        )

    def status(self) -> dict:
        return {
            "loaded": self.loaded_remote,
            "loaded_at": self.loaded_at,
            "last_error": self.last_error,
            "categories": len(self.base),
            "total_payloads": sum(len(c.payloads) for c in self.base.values()),
            "advanced_categories": len(self.advanced),
            "enhanced_categories": len(self.enhanced),
        }
