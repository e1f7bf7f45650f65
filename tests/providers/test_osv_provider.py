import json
import unittest

import httpx

from raiz.core.model import (
    DependencyCoordinate,
    Ecosystem,
    ExploitMaturity,
    MatchQuality,
    Severity,
    Source,
)
from raiz.providers.osv import OsvProvider

COORD = DependencyCoordinate(Ecosystem.MAVEN, "org.apache.logging.log4j", "log4j-core", "2.14.1")

LOG4SHELL = {
    "id": "GHSA-jfh8-c2jp-5v3q",
    "summary": "Remote code injection in Log4j",
    "details": "Apache Log4j2 JNDI features do not protect against attacker controlled LDAP endpoints.",
    "aliases": ["CVE-2021-44228"],
    "published": "2021-12-10T00:40:56Z",
    "database_specific": {"severity": "CRITICAL"},
    "severity": [{"type": "CVSS_V3", "score": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:C/C:H/I:H/A:H"}],
    "affected": [
        {
            "package": {"name": "org.apache.logging.log4j:log4j-core", "ecosystem": "Maven"},
            "ranges": [{"type": "ECOSYSTEM", "events": [{"introduced": "2.0-beta9"}, {"fixed": "2.15.0"}]}],
            "versions": ["2.13.0", "2.14.0", "2.14.1"],
        }
    ],
    "references": [{"type": "ADVISORY", "url": "https://nvd.nist.gov/vuln/detail/CVE-2021-44228"}],
}


def client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestOsvProvider(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.provider = OsvProvider("https://osv.test/v1")

    async def test_query_maps_record(self):
        def handler(request):
            self.assertEqual(request.url.path, "/v1/query")
            body = json.loads(request.content)
            self.assertEqual(body["package"], {"name": "org.apache.logging.log4j:log4j-core", "ecosystem": "Maven"})
            self.assertEqual(body["version"], "2.14.1")
            return httpx.Response(200, json={"vulns": [LOG4SHELL]})

        async with client(handler) as c:
            vulns = await self.provider.query(COORD, c)

        self.assertEqual(len(vulns), 1)
        v = vulns[0]
        self.assertEqual(v.id, "GHSA-jfh8-c2jp-5v3q")
        self.assertEqual(v.source, Source.OSV)
        self.assertEqual(v.severity, Severity.CRITICAL)
        self.assertEqual(v.aliases, frozenset({"CVE-2021-44228"}))
        self.assertEqual(v.affected_version_range, ">=2.0-beta9, <2.15.0")
        self.assertEqual(v.match_quality, MatchQuality.EXACT)
        self.assertEqual(v.exploit_maturity, ExploitMaturity.NONE)
        self.assertEqual(v.cvss_score, 10.0)
        self.assertEqual(v.published_at.year, 2021)

    async def test_range_match_and_evidence_reference(self):
        record = dict(LOG4SHELL, affected=[dict(LOG4SHELL["affected"][0], versions=[])],
                      references=[{"type": "EVIDENCE", "url": "https://example.test/poc"}])
        v = self.provider.to_vulnerability(record, COORD)
        self.assertEqual(v.match_quality, MatchQuality.RANGE)
        self.assertEqual(v.exploit_maturity, ExploitMaturity.POC)

    async def test_severity_from_cvss_when_label_missing(self):
        record = dict(LOG4SHELL, database_specific={})
        self.assertEqual(self.provider.to_vulnerability(record, COORD).severity, Severity.CRITICAL)

    async def test_bare_ids_are_hydrated(self):
        def handler(request):
            if request.url.path == "/v1/query":
                return httpx.Response(200, json={"vulns": [{"id": "GHSA-jfh8-c2jp-5v3q", "modified": "2024-01-01"}]})
            self.assertEqual(request.url.path, "/v1/vulns/GHSA-jfh8-c2jp-5v3q")
            return httpx.Response(200, json=LOG4SHELL)

        async with client(handler) as c:
            vulns = await self.provider.query(COORD, c)
        self.assertEqual(vulns[0].title, "Remote code injection in Log4j")

    async def test_pagination(self):
        pages = []

        def handler(request):
            body = json.loads(request.content)
            pages.append(body.get("page_token"))
            if "page_token" not in body:
                return httpx.Response(200, json={"vulns": [LOG4SHELL], "next_page_token": "p2"})
            return httpx.Response(200, json={"vulns": [dict(LOG4SHELL, id="GHSA-7rjr-3q55-vv33", aliases=[])]})

        async with client(handler) as c:
            vulns = await self.provider.query(COORD, c)
        self.assertEqual(pages, [None, "p2"])
        self.assertEqual(len(vulns), 2)

    async def test_rate_limit_is_absorbed(self):
        async with client(lambda request: httpx.Response(429)) as c:
            outcome = await self.provider.fetch(COORD, c)
        self.assertEqual(outcome.vulnerabilities, [])
        self.assertIn("rate limited", outcome.error)

    async def test_repeated_failures_mark_unhealthy(self):
        provider = OsvProvider("https://osv.test/v1", failure_threshold=2, cooldown=60)
        async with client(lambda request: httpx.Response(500)) as c:
            await provider.fetch(COORD, c)
            self.assertTrue(provider.is_healthy())
            await provider.fetch(COORD, c)
        self.assertFalse(provider.is_healthy())


if __name__ == "__main__":
    unittest.main()
