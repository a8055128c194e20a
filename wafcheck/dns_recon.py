"""
WAF Checker - DNS infrastructure recon
Resolves a target's records over DNS-over-HTTPS (JSON API) and fingerprints
CDN / WAF / hosting providers from the A, CNAME, NS and other answers.
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import httpx

from wafcheck.config import ReconConfig
from wafcheck.logger import log_debug, log_info


RECORD_TYPES = ["A", "AAAA", "CNAME", "MX", "NS", "TXT", "SOA"]

DOH_ACCEPT = "application/dns-json"

# (pattern, provider, kind) - first match per provider wins
INFRA_PATTERNS: List[Tuple[re.Pattern, str, str]] = [
    (re.compile(r"cloudflare", re.I), "Cloudflare", "CDN/WAF"),
    (re.compile(r"akamai|edgekey|edgesuite", re.I), "Akamai", "CDN/WAF"),
    (re.compile(r"fastly", re.I), "Fastly", "CDN"),
    (re.compile(r"amazonaws|aws|cloudfront", re.I), "AWS", "Cloud/CDN"),
    (re.compile(r"azure|microsoft", re.I), "Azure", "Cloud"),
    (re.compile(r"google|ghs\.googlehosted", re.I), "Google Cloud", "Cloud"),
    (re.compile(r"incapsula|imperva", re.I), "Imperva", "WAF"),
    (re.compile(r"sucuri", re.I), "Sucuri", "WAF"),
    (re.compile(r"stackpath|highwinds", re.I), "StackPath", "CDN/WAF"),
    (re.compile(r"ovh", re.I), "OVH", "Hosting"),
    (re.compile(r"hetzner", re.I), "Hetzner", "Hosting"),
    (re.compile(r"digitalocean", re.I), "DigitalOcean", "Cloud"),
    (re.compile(r"vercel", re.I), "Vercel", "Platform"),
    (re.compile(r"netlify", re.I), "Netlify", "Platform"),
    (re.compile(r"wpengine", re.I), "WP Engine", "Hosting"),
]


@dataclass
class DNSRecon:
    hostname: str
    records: Dict[str, List[dict]] = field(default_factory=dict)
    reverse_dns: Optional[str] = None
    dmarc: Optional[str] = None
    failed_lookups: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def values(self, rtype: str) -> List[str]:
        return [str(r.get("data", "")) for r in self.records.get(rtype, [])]

    @property
    def nameservers(self) -> List[str]:
        return [v.rstrip(".") for v in self.values("NS")]

    @property
    def mail_servers(self) -> List[dict]:
        servers = []
        for value in self.values("MX"):
            priority, _, server = value.partition(" ")
            servers.append({
                "priority": int(priority) if priority.isdigit() else 0,
                "server": server.strip().rstrip("."),
            })
        return sorted(servers, key=lambda s: s["priority"])

    @property
    def txt_records(self) -> List[str]:
        return [unquote_txt(v) for v in self.values("TXT")]

    @property
    def spf(self) -> Optional[str]:
        return next((t for t in self.txt_records if t.startswith("v=spf1")), None)

    def to_dict(self) -> dict:
        return {
            "hostname": self.hostname,
            "root_domain": root_domain(self.hostname),
            "ip_addresses": self.values("A"),
            "ipv6_addresses": self.values("AAAA"),
            "reverse_dns": self.reverse_dns,
            "nameservers": self.nameservers,
            "mail_servers": self.mail_servers,
            "txt_records": self.txt_records,
            "dns_records": self.records,
            "infrastructure": detect_infrastructure(self.records),
            "email_security": {
                "spf": self.spf,
                "dmarc": self.dmarc,
                "has_spf": self.spf is not None,
                "has_dmarc": self.dmarc is not None,
            },
            "failed_lookups": self.failed_lookups,
            "timestamp": self.timestamp,
        }


def unquote_txt(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def root_domain(hostname: str) -> str:
    """Last two labels ("sub.example.com" -> "example.com")."""
    labels = hostname.split(".")
    return ".".join(labels[-2:]) if len(labels) > 2 else hostname


def reverse_pointer(ip: str) -> Optional[str]:
    octets = ip.split(".")
    if len(octets) != 4 or not all(o.isdigit() for o in octets):
        return None
    return ".".join(reversed(octets)) + ".in-addr.arpa"


def detect_infrastructure(records: Dict[str, List[dict]]) -> List[dict]:
    """Providers recognised in record data, each reported once with its first evidence."""
    detected, seen = [], set()
    for rtype, answers in records.items():
        for answer in answers:
            value = str(answer.get("data", ""))
            for pattern, provider, kind in INFRA_PATTERNS:
                if provider not in seen and pattern.search(value):
                    seen.add(provider)
                    detected.append({"type": kind, "provider": provider, "evidence": f"{rtype} record: {value}"})
    return detected


class DNSResolver:
    """DoH JSON client. A lookup that cannot be answered yields no records."""

    def __init__(self, client: httpx.AsyncClient, cfg: Optional[ReconConfig] = None):
        self.client = client
        self.cfg = cfg or ReconConfig()
        self.failures = 0

    async def resolve(self, name: str, rtype: str) -> List[dict]:
        try:
            resp = await self.client.get(
                self.cfg.doh_url,
                params={"name": name, "type": rtype},
                headers={"Accept": DOH_ACCEPT},
                timeout=self.cfg.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            self.failures += 1
            log_debug("DNS", f"{rtype} lookup for {name} failed: {e}")
            return []
        answers = data.get("Answer") if isinstance(data, dict) else None
        return [a for a in answers if isinstance(a, dict)] if isinstance(answers, list) else []


async def dns_recon(client: httpx.AsyncClient, hostname: str, cfg: Optional[ReconConfig] = None) -> DNSRecon:
    resolver = DNSResolver(client, cfg)
    answers = await asyncio.gather(*(resolver.resolve(hostname, t) for t in RECORD_TYPES))
    recon = DNSRecon(hostname=hostname)
    recon.records = {t: a for t, a in zip(RECORD_TYPES, answers) if a}

    ips = recon.values("A")
    pointer = reverse_pointer(ips[0]) if ips else None
    ptr_answers, dmarc_answers = await asyncio.gather(
        resolver.resolve(pointer, "PTR") if pointer else asyncio.sleep(0, result=[]),
        resolver.resolve(f"_dmarc.{hostname}", "TXT"),
    )
    if ptr_answers:
        recon.reverse_dns = str(ptr_answers[0].get("data", "")).rstrip(".") or None
    if dmarc_answers:
        recon.dmarc = unquote_txt(str(dmarc_answers[0].get("data", "")))
    recon.failed_lookups = resolver.failures

    log_info("DNS", f"{hostname}: {len(recon.records)} record types, {resolver.failures} failed lookups")
    return recon
