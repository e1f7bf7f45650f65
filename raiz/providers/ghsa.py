from typing import List

import httpx

from raiz.core.model import DependencyCoordinate, ExploitMaturity, MatchQuality, Severity, Source, Vulnerability
from raiz.providers.base import (
    VulnerabilityProvider,
    exploit_from_cvss,
    parse_timestamp,
    severity_from_label,
    severity_from_score,
)

GITHUB_API_URL = "https://api.github.com"


class GhsaProvider(VulnerabilityProvider):
    """GitHub Advisory Database, global advisories REST endpoint."""

    def __init__(self, base_url: str = GITHUB_API_URL, token: str = "", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.token = token

    @property
    def name(self) -> str:
        return "GitHub Advisory"

    @property
    def source_id(self) -> Source:
        return Source.GHSA

    def headers(self) -> dict:
        headers = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _query(self, client: httpx.AsyncClient, coordinate: DependencyCoordinate) -> List[Vulnerability]:
        params = {
            "ecosystem": "maven",
            "affects": f"{coordinate.key}@{coordinate.version}",
            "per_page": 100,
        }
        response = await client.get(f"{self.base_url}/advisories", params=params, headers=self.headers())
        self._check(response)
        return [
            self.to_vulnerability(adv, coordinate)
            for adv in response.json()
            if adv.get("ghsa_id") and not adv.get("withdrawn_at")
        ]

    def to_vulnerability(self, adv: dict, coordinate: DependencyCoordinate) -> Vulnerability:
        cvss = adv.get("cvss") or {}
        score = cvss.get("score")
        severity = severity_from_label(adv.get("severity")) or severity_from_score(score) or Severity.INFO

        ranges = [
            v.get("vulnerable_version_range", "")
            for v in adv.get("vulnerabilities", [])
            if (v.get("package") or {}).get("name") == coordinate.key and v.get("vulnerable_version_range")
        ]
        affected_range = " || ".join(ranges)
        exact = any(r.replace(" ", "") == f"={coordinate.version}" for r in ranges)

        aliases = {i["value"] for i in adv.get("identifiers", []) if i.get("value")}
        if adv.get("cve_id"):
            aliases.add(adv["cve_id"])
        aliases.discard(adv["ghsa_id"])

        return Vulnerability(
            id=adv["ghsa_id"],
            source=Source.GHSA,
            severity=severity,
            affected_version_range=affected_range,
            exploit_maturity=exploit_from_cvss(cvss.get("vector_string")) or ExploitMaturity.NONE,
            published_at=parse_timestamp(adv.get("published_at")),
            title=adv.get("summary", ""),
            description=adv.get("description", ""),
            aliases=frozenset(aliases),
            match_quality=MatchQuality.EXACT if exact else MatchQuality.RANGE,
            references=tuple(adv.get("references") or ()),
            cvss_score=score,
        )
