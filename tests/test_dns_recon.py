"""
Tests for DNS-over-HTTPS recon and provider fingerprinting.
"""

import httpx

from conftest import FakeTarget, doh_resolver
from wafcheck.dns_recon import (
    DNSResolver,
    detect_infrastructure,
    dns_recon,
    reverse_pointer,
    root_domain,
)


HOST = "www.shop.example"

ZONE = {
    (HOST, "A"): ["104.16.1.1", "104.16.2.2"],
    (HOST, "CNAME"): ["www.shop.example.cdn.cloudflare.net."],
    (HOST, "NS"): ["ns2.example-dns.net.", "ns1.example-dns.net."],
    (HOST, "MX"): ["20 alt.mail.example.", "10 mx.mail.example."],
    (HOST, "TXT"): ['"v=spf1 include:_spf.mail.example ~all"', '"site-verification=abc"'],
    ("1.1.16.104.in-addr.arpa", "PTR"): ["edge-1.cloudflare.com."],
    (f"_dmarc.{HOST}", "TXT"): ['"v=DMARC1; p=reject"'],
}


class TestHelpers:

    def test_root_domain(self):
        assert root_domain("a.b.example.com") == "example.com"
        assert root_domain("example.com") == "example.com"

    def test_reverse_pointer(self):
        assert reverse_pointer("192.0.2.10") == "10.2.0.192.in-addr.arpa"
        assert reverse_pointer("2001:db8::1") is None

    def test_each_provider_reported_once(self):
        records = {
            "CNAME": [{"data": "x.cdn.cloudflare.net."}],
            "NS": [{"data": "kim.ns.cloudflare.com."}, {"data": "ns-1.awsdns-01.org."}],
        }
        found = detect_infrastructure(records)
        assert [f["provider"] for f in found] == ["Cloudflare", "AWS"]
        assert found[0] == {"type": "CDN/WAF", "provider": "Cloudflare", "evidence": "CNAME record: x.cdn.cloudflare.net."}

    def test_nothing_recognised(self):
        assert detect_infrastructure({"A": [{"data": "192.0.2.1"}]}) == []


class TestResolver:

    async def test_query_shape(self, make_client):
        resolver_target = doh_resolver(ZONE)
        resolver = DNSResolver(make_client(resolver_target))
        answers = await resolver.resolve(HOST, "A")
        assert [a["data"] for a in answers] == ["104.16.1.1", "104.16.2.2"]
        sent = resolver_target.requests[0]
        assert sent.url.host == "cloudflare-dns.com"
        assert sent.headers["Accept"] == "application/dns-json"

    async def test_failures_yield_no_records(self, make_client):
        bad_json = FakeTarget(lambda request: httpx.Response(200, text="<html>"))
        resolver = DNSResolver(make_client(bad_json))
        assert await resolver.resolve(HOST, "A") == []
        odd_shape = FakeTarget(lambda request: httpx.Response(200, json={"Answer": "nope"}))
        assert await DNSResolver(make_client(odd_shape)).resolve(HOST, "A") == []
        assert resolver.failures == 1


class TestDNSRecon:

    async def test_full_report(self, make_client):
        recon = await dns_recon(make_client(doh_resolver(ZONE)), HOST)
        data = recon.to_dict()

        assert data["root_domain"] == "shop.example"
        assert data["ip_addresses"] == ["104.16.1.1", "104.16.2.2"]
        assert data["ipv6_addresses"] == []
        assert set(data["dns_records"]) == {"A", "CNAME", "NS", "MX", "TXT"}
        assert data["reverse_dns"] == "edge-1.cloudflare.com"
        assert data["nameservers"] == ["ns2.example-dns.net", "ns1.example-dns.net"]
        assert data["mail_servers"] == [
            {"priority": 10, "server": "mx.mail.example"},
            {"priority": 20, "server": "alt.mail.example"},
        ]
        assert data["email_security"] == {
            "spf": "v=spf1 include:_spf.mail.example ~all",
            "dmarc": "v=DMARC1; p=reject",
            "has_spf": True,
            "has_dmarc": True,
        }
        assert [i["provider"] for i in data["infrastructure"]] == ["Cloudflare"]
        assert data["failed_lookups"] == 0

    async def test_unknown_host(self, make_client):
        target = doh_resolver({})
        data = (await dns_recon(make_client(target), "nothing.example")).to_dict()
        assert data["dns_records"] == {}
        assert data["reverse_dns"] is None
        assert data["email_security"]["has_spf"] is False
        # seven record types plus DMARC, no PTR without an A record
        assert len(target.requests) == 8
