import asyncio
import logging
from typing import List, Optional

import httpx

from raiz.core import versions
from raiz.core.model import DependencyCoordinate, ExploitMaturity, MatchQuality, Severity, Source, Vulnerability
from raiz.providers.base import (
    VulnerabilityProvider,
    cvss_base_score,
    exploit_from_cvss,
    parse_timestamp,
    severity_from_label,
    severity_from_score,
    summary_fallback,
)

OSV_URL = "https://api.osv.dev/v1"
MAX_PAGES = 10


class OsvProvider(VulnerabilityProvider):
    def __init__(self, base_url: str = OSV_URL, **kwargs) -> None:
        super().__init__(base_url, **kwargs)

    @property
    def name(self) -> str:
        return "OSV"

    @property
    def source_id(self) -> Source:
        return Source.OSV

    async def _query(self, client: httpx.AsyncClient, coordinate: DependencyCoordinate) -> List[Vulnerability]:
        payload = {
            "package": {"name": coordinate.key, "ecosystem": coordinate.ecosystem.value},
            "version": coordinate.version,
        }
        raw_vulns = []
        for _ in range(MAX_PAGES):
            response = await client.post(f"{self.base_url}/query", json=payload)
            self._check(response)
            body = response.json()
            raw_vulns.extend(body.get("vulns", []))
            token = body.get("next_page_token")
            if not token:
                break
            payload["page_token"] = token

        # Batch endpoints return bare ids; fill those in from /vulns/{id}
        pending = [i for i, v in enumerate(raw_vulns) if not v.get("summary") and not v.get("details")]
        if pending:
            hydrated = await asyncio.gather(*(self._hydrate(client, raw_vulns[i].get("id")) for i in pending))
            for i, data in zip(pending, hydrated):
                if data:
                    raw_vulns[i] = data

        return [self.to_vulnerability(v, coordinate) for v in raw_vulns if v.get("id")]

    async def _hydrate(self, client: httpx.AsyncClient, vuln_id: Optional[str]):
        if not vuln_id:
            return None
        try:
            resp = await client.get(f"{self.base_url}/vulns/{vuln_id}")
            if resp.status_code == 200:
                return resp.json()
        except httpx.HTTPError as e:
            logging.warning(f"Failed to hydrate {vuln_id}: {e}")
        return None

    def to_vulnerability(self, data: dict, coordinate: DependencyCoordinate) -> Vulnerability:
        vector = None
        score = None
        for entry in data.get("severity", []):
            if entry.get("type", "").startswith("CVSS_V3"):
                vector = entry.get("score")
                score = cvss_base_score(vector or "")
                break

        severity = severity_from_label(data.get("database_specific", {}).get("severity"))
        if severity is None:
            severity = severity_from_score(score) or Severity.INFO

        affected_range, affected_versions = self._affected(data, coordinate)
        if coordinate.version in affected_versions:
            match = MatchQuality.EXACT
        elif versions.contains(affected_range, coordinate.version):
            match = MatchQuality.RANGE
        else:
            # OSV matched it server-side on data we could not evaluate locally
            match = MatchQuality.FUZZY

        exploit = exploit_from_cvss(vector)
        if exploit is None:
            ref_types = {r.get("type") for r in data.get("references", [])}
            exploit = ExploitMaturity.POC if "EVIDENCE" in ref_types else ExploitMaturity.NONE

        details = data.get("details", "")
        return Vulnerability(
            id=data["id"],
            source=Source.OSV,
            severity=severity,
            affected_version_range=affected_range,
            exploit_maturity=exploit,
            published_at=parse_timestamp(data.get("published")),
            title=data.get("summary") or summary_fallback(details),
            description=details,
            aliases=frozenset(a for a in data.get("aliases", []) if a != data["id"]),
            match_quality=match,
            references=tuple(r["url"] for r in data.get("references", []) if r.get("url")),
            cvss_score=score,
        )

    @staticmethod
    def _affected(data: dict, coordinate: DependencyCoordinate):
        branches = []
        affected_versions = set()
        for affected in data.get("affected", []):
            pkg = affected.get("package", {})
            if pkg.get("name") != coordinate.key:
                continue
            affected_versions.update(affected.get("versions", []))
            for rng in affected.get("ranges", []):
                if rng.get("type") not in ("ECOSYSTEM", "SEMVER"):
                    continue
                introduced = None
                for event in rng.get("events", []):
                    if "introduced" in event:
                        introduced = event["introduced"]
                    elif "fixed" in event or "last_affected" in event:
                        upper = ("<", event["fixed"]) if "fixed" in event else ("<=", event["last_affected"])
                        lower = introduced if introduced not in (None, "0") else None
                        branches.append(versions.format_constraints((">=", lower), upper))
                        introduced = None
                if introduced is not None:
                    branches.append(versions.format_constraints((">=", introduced if introduced != "0" else "0")))
        return " || ".join(b for b in branches if b), affected_versions
