from typing import List, Optional, Tuple

import httpx

from raiz.core import versions
from raiz.core.model import DependencyCoordinate, ExploitMaturity, MatchQuality, Severity, Source, Vulnerability
from raiz.providers.base import (
    VulnerabilityProvider,
    exploit_from_cvss,
    parse_timestamp,
    severity_from_label,
    severity_from_score,
    summary_fallback,
)

NVD_URL = "https://services.nvd.nist.gov/rest/json/cves/2.0"
RESULTS_PER_PAGE = 200

_METRIC_KEYS = ("cvssMetricV31", "cvssMetricV30", "cvssMetricV2")


class NvdProvider(VulnerabilityProvider):
    """
    NVD CVE API 2.0, matched by CPE (``cpe:2.3:a:*:<artifactId>:<version>``).

    NVD products are not Maven coordinates, so a hit whose configuration
    does not name the exact version or a range holding it counts as fuzzy.
    """

    def __init__(self, base_url: str = NVD_URL, api_key: str = "", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    @property
    def name(self) -> str:
        return "NVD"

    @property
    def source_id(self) -> Source:
        return Source.NVD

    def headers(self) -> dict:
        return {"apiKey": self.api_key} if self.api_key else {}

    async def _query(self, client: httpx.AsyncClient, coordinate: DependencyCoordinate) -> List[Vulnerability]:
        params = {
            "virtualMatchString": f"cpe:2.3:a:*:{coordinate.artifact_id}:{coordinate.version}",
            "resultsPerPage": RESULTS_PER_PAGE,
        }
        response = await client.get(self.base_url, params=params, headers=self.headers())
        self._check(response)
        items = response.json().get("vulnerabilities", [])
        return [self.to_vulnerability(item["cve"], coordinate) for item in items if item.get("cve", {}).get("id")]

    def to_vulnerability(self, cve: dict, coordinate: DependencyCoordinate) -> Vulnerability:
        severity, score, vector = self._severity(cve.get("metrics", {}))
        affected_range, match = self._match(cve.get("configurations", []), coordinate)

        tags = {t for ref in cve.get("references", []) for t in ref.get("tags", [])}
        if cve.get("cisaExploitAdd"):
            exploit = ExploitMaturity.WEAPONIZED
        elif "Exploit" in tags:
            exploit = ExploitMaturity.POC
        else:
            exploit = exploit_from_cvss(vector) or ExploitMaturity.THEORETICAL

        description = next(
            (d["value"] for d in cve.get("descriptions", []) if d.get("lang") == "en"), ""
        )
        return Vulnerability(
            id=cve["id"],
            source=Source.NVD,
            severity=severity,
            affected_version_range=affected_range,
            exploit_maturity=exploit,
            published_at=parse_timestamp(cve.get("published")),
            title=summary_fallback(description),
            description=description,
            match_quality=match,
            references=tuple(r["url"] for r in cve.get("references", []) if r.get("url")),
            cvss_score=score,
        )

    @staticmethod
    def _severity(metrics: dict) -> Tuple[Severity, Optional[float], Optional[str]]:
        for key in _METRIC_KEYS:
            entries = metrics.get(key) or []
            if not entries:
                continue
            primary = next((m for m in entries if m.get("type") == "Primary"), entries[0])
            data = primary.get("cvssData", {})
            score = data.get("baseScore")
            label = data.get("baseSeverity") or primary.get("baseSeverity")
            severity = severity_from_label(label) or severity_from_score(score) or Severity.INFO
            return severity, score, data.get("vectorString")
        return Severity.INFO, None, None

    @staticmethod
    def _match(configurations: list, coordinate: DependencyCoordinate) -> Tuple[str, MatchQuality]:
        branches = []
        best = MatchQuality.FUZZY
        for config in configurations:
            for node in config.get("nodes", []):
                for cpe in node.get("cpeMatch", []):
                    if not cpe.get("vulnerable"):
                        continue
                    parts = cpe.get("criteria", "").split(":")
                    if len(parts) < 6 or parts[4] != coordinate.artifact_id:
                        continue
                    cpe_version = parts[5]
                    if cpe_version not in ("*", "-", ""):
                        branches.append(f"={cpe_version}")
                        if versions.Version(cpe_version) == versions.Version(coordinate.version):
                            best = MatchQuality.EXACT
                        continue
                    branch = versions.format_constraints(
                        (">=", cpe.get("versionStartIncluding")),
                        (">", cpe.get("versionStartExcluding")),
                        ("<=", cpe.get("versionEndIncluding")),
                        ("<", cpe.get("versionEndExcluding")),
                    )
                    if not branch:
                        continue
                    branches.append(branch)
                    if best != MatchQuality.EXACT and versions.contains(branch, coordinate.version):
                        best = MatchQuality.RANGE
        return " || ".join(branches), best
