import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from cvss import CVSS2, CVSS3

from raiz.core.model import (
    SOURCE_WEIGHTS,
    DependencyCoordinate,
    ExploitMaturity,
    Severity,
    Source,
    Vulnerability,
)
from raiz.errors import ProviderError

DEFAULT_TIMEOUT = 15.0

SEVERITY_LABELS = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "important": Severity.HIGH,
    "moderate": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "low": Severity.LOW,
    "info": Severity.INFO,
    "informational": Severity.INFO,
    "none": Severity.INFO,
}

# CVSS temporal "Exploit Code Maturity" metric
_CVSS_EXPLOIT = {
    "H": ExploitMaturity.WEAPONIZED,
    "F": ExploitMaturity.WEAPONIZED,
    "P": ExploitMaturity.POC,
    "U": ExploitMaturity.THEORETICAL,
    "POC": ExploitMaturity.POC,
}
_CVSS_EXPLOIT_RE = re.compile(r"(?:^|/)E:(H|F|P|U|POC)(?:/|$)")


@dataclass
class ProviderOutcome:
    provider: str
    vulnerabilities: List[Vulnerability] = field(default_factory=list)
    error: str = ""


def severity_from_label(label: Optional[str]) -> Optional[Severity]:
    if not label:
        return None
    return SEVERITY_LABELS.get(str(label).strip().lower())


def severity_from_score(score: Optional[float]) -> Optional[Severity]:
    if score is None:
        return None
    if score >= 9.0:
        return Severity.CRITICAL
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    if score > 0.0:
        return Severity.LOW
    return Severity.INFO


def cvss_base_score(vector: str) -> Optional[float]:
    """Base score of a CVSS v3.x or v2 vector, None when the vector is not understood."""
    try:
        if vector.startswith("CVSS:3"):
            return float(CVSS3(vector).base_score)
        if vector.startswith("AV:"):
            return float(CVSS2(vector).base_score)
    except Exception as e:
        logging.debug(f"Unparseable CVSS vector {vector!r}: {e}")
    return None


def exploit_from_cvss(vector: Optional[str]) -> Optional[ExploitMaturity]:
    if not vector:
        return None
    match = _CVSS_EXPLOIT_RE.search(vector)
    return _CVSS_EXPLOIT[match.group(1)] if match else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def summary_fallback(details: str) -> str:
    if details:
        return f"{details[:100]}..." if len(details) > 100 else details
    return "No description available."


class VulnerabilityProvider(ABC):
    """
    Adapter for one vulnerability database.

    ``fetch`` and ``query`` never raise for local failures: network errors,
    bad payloads and rate limits end up as an empty result (and an error
    string on the outcome). After ``failure_threshold`` consecutive failures
    the provider reports itself unhealthy for ``cooldown`` seconds.
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT,
                 failure_threshold: int = 3, cooldown: float = 300.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._failures = 0
        self._unhealthy_until = 0.0

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def source_id(self) -> Source:
        pass

    @property
    def reliability(self) -> float:
        return SOURCE_WEIGHTS[self.source_id]

    def headers(self) -> dict:
        return {}

    def fingerprint(self) -> str:
        """Identifies the provider configuration in cache keys."""
        return f"{self.name}@{self.base_url}"

    def is_healthy(self) -> bool:
        return time.monotonic() >= self._unhealthy_until

    def mark_failure(self) -> None:
        self._failures += 1
        if self._failures >= self.failure_threshold:
            self._unhealthy_until = time.monotonic() + self.cooldown
            self._failures = 0
            logging.warning(f"{self.name} marked unhealthy for {self.cooldown}s")

    async def fetch(self, coordinate: DependencyCoordinate,
                    client: Optional[httpx.AsyncClient] = None) -> ProviderOutcome:
        try:
            if client is None:
                async with httpx.AsyncClient(timeout=self.timeout) as own_client:
                    vulns = await self._query(own_client, coordinate)
            else:
                vulns = await self._query(client, coordinate)
        except Exception as e:
            # Absorbed: one failing source must never abort the aggregate step
            self.mark_failure()
            logging.error(f"{self.name} query failed for {coordinate}: {e}")
            return ProviderOutcome(self.name, [], str(e) or type(e).__name__)

        self._failures = 0
        logging.debug(f"{self.name}: {len(vulns)} vulns for {coordinate}")
        return ProviderOutcome(self.name, vulns)

    async def query(self, coordinate: DependencyCoordinate,
                    client: Optional[httpx.AsyncClient] = None) -> List[Vulnerability]:
        return (await self.fetch(coordinate, client)).vulnerabilities

    def _check(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            raise ProviderError(self.name, "rate limited (HTTP 429)")
        if response.status_code != 200:
            raise ProviderError(self.name, f"HTTP {response.status_code}: {response.text[:200]}")

    @abstractmethod
    async def _query(self, client: httpx.AsyncClient, coordinate: DependencyCoordinate) -> List[Vulnerability]:
        pass
