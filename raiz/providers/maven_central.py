from typing import List, Optional

import httpx

from raiz.core import versions
from raiz.core.model import DependencyCoordinate, ExploitMaturity, MatchQuality, Severity, Source, Vulnerability
from raiz.providers.base import VulnerabilityProvider, exploit_from_cvss, severity_from_score, summary_fallback

OSSINDEX_URL = "https://ossindex.sonatype.org/api/v3"


class MavenCentralProvider(VulnerabilityProvider):
    """
    Component metadata for Maven Central artifacts, from Sonatype OSS Index.

    Reports carry a CVSS score but no publication date, and the lowest
    reliability weight of the four sources.
    """

    def __init__(self, base_url: str = OSSINDEX_URL, user: str = "", token: str = "", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.user = user
        self.token = token

    @property
    def name(self) -> str:
        return "Maven Central"

    @property
    def source_id(self) -> Source:
        return Source.MAVEN_CENTRAL

    def _auth(self) -> Optional[httpx.BasicAuth]:
        return httpx.BasicAuth(self.user, self.token) if self.user and self.token else None

    async def _query(self, client: httpx.AsyncClient, coordinate: DependencyCoordinate) -> List[Vulnerability]:
        kwargs = {"json": {"coordinates": [coordinate.purl]}}
        auth = self._auth()
        if auth is not None:
            kwargs["auth"] = auth
        response = await client.post(f"{self.base_url}/component-report", **kwargs)
        self._check(response)

        vulns = []
        for report in response.json():
            for item in report.get("vulnerabilities", []):
                if item.get("id"):
                    vulns.append(self.to_vulnerability(item, coordinate))
        return vulns

    def to_vulnerability(self, item: dict, coordinate: DependencyCoordinate) -> Vulnerability:
        score = item.get("cvssScore")
        affected_range = ",".join(item.get("versionRanges") or [])
        match = MatchQuality.RANGE
        if affected_range and versions.contains(affected_range, coordinate.version) is False:
            match = MatchQuality.FUZZY

        aliases = {item["cve"]} if item.get("cve") else set()
        display = item.get("displayName")
        if display:
            aliases.add(display)
        aliases.discard(item["id"])

        description = item.get("description", "")
        return Vulnerability(
            id=item["id"],
            source=Source.MAVEN_CENTRAL,
            severity=severity_from_score(score) or Severity.INFO,
            affected_version_range=affected_range,
            exploit_maturity=exploit_from_cvss(item.get("cvssVector")) or ExploitMaturity.NONE,
            title=item.get("title") or summary_fallback(description),
            description=description,
            aliases=frozenset(aliases),
            match_quality=match,
            references=tuple(filter(None, [item.get("reference")] + list(item.get("externalReferences") or []))),
            cvss_score=score,
        )
