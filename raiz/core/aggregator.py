"""
Fan-out / fan-in over every healthy vulnerability provider.

Each provider writes into its own result slot; merging runs once, after all
slots are filled, and its output does not depend on arrival order.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Hashable, Iterable, List, Optional, Protocol, Sequence, Tuple

import httpx

from raiz.core.model import DependencyCoordinate, Vulnerability
from raiz.providers.base import ProviderOutcome, VulnerabilityProvider

DEFAULT_PROVIDER_TIMEOUT = 15.0
DEFAULT_BATCH_TIMEOUT = 300.0
DEFAULT_MAX_WORKERS = 8

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ResultCache(Protocol):
    def get(self, key: Hashable) -> Optional[List[Vulnerability]]:
        ...

    def put(self, key: Hashable, value: List[Vulnerability]) -> None:
        ...


class MemoryCache:
    """Process-local cache; durable caching is left to the caller."""

    def __init__(self) -> None:
        self._data: Dict[Hashable, List[Vulnerability]] = {}

    def get(self, key: Hashable) -> Optional[List[Vulnerability]]:
        return self._data.get(key)

    def put(self, key: Hashable, value: List[Vulnerability]) -> None:
        self._data[key] = list(value)

    def clear(self) -> None:
        self._data.clear()


@dataclass
class CoordinateResult:
    coordinate: DependencyCoordinate
    vulnerabilities: List[Vulnerability] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)
    from_cache: bool = False


@dataclass
class ScanResult:
    results: Dict[DependencyCoordinate, CoordinateResult] = field(default_factory=dict)
    diagnostics: List[str] = field(default_factory=list)


def _normalize(identifier: str) -> str:
    return identifier.strip().upper()


def _precedence(v: Vulnerability):
    # highest reliability first, then newest publication; the rest only makes the order total
    published = v.published_at or _EPOCH
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    return (-v.reliability, -published.timestamp(), v.source.value, v.id, v.title, v.description)


def _canonical_id(identifiers: Iterable[str], winner: Vulnerability) -> str:
    ids = sorted(set(identifiers))
    for prefix in ("CVE-", "GHSA-"):
        preferred = [i for i in ids if i.upper().startswith(prefix)]
        if preferred:
            return preferred[0]
    return winner.id


def _merge_group(group: Sequence[Vulnerability]) -> Vulnerability:
    ordered = sorted(group, key=_precedence)
    winner = ordered[0]

    identifiers = set()
    sources = set()
    references: Dict[str, None] = {}
    for v in ordered:
        identifiers.update(v.identifiers)
        sources.update(v.sources)
        references.update(dict.fromkeys(v.references))

    canonical = _canonical_id(identifiers, winner)

    def first(attr, default):
        return next((getattr(v, attr) for v in ordered if getattr(v, attr)), default)

    return Vulnerability(
        id=canonical,
        source=winner.source,
        severity=winner.severity,
        affected_version_range=first("affected_version_range", ""),
        exploit_maturity=winner.exploit_maturity,
        published_at=winner.published_at,
        title=first("title", ""),
        description=winner.description or first("description", ""),
        aliases=frozenset(i for i in identifiers if i != canonical),
        sources=frozenset(sources),
        match_quality=max((v.match_quality for v in ordered), key=float),
        references=tuple(references),
        cvss_score=next((v.cvss_score for v in ordered if v.cvss_score is not None), None),
    )


def merge_vulnerabilities(vulns: Iterable[Vulnerability]) -> List[Vulnerability]:
    """
    Deduplicate advisories across sources.

    Two records are the same advisory when they share any normalized
    identifier (own id or alias); grouping is transitive. Conflicting fields
    come from the most reliable source, ties going to the newest publication.
    The result is sorted by id and merging it again yields the same list.
    """
    vulns = list(vulns)
    parent = list(range(len(vulns)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    owner: Dict[str, int] = {}
    for i, v in enumerate(vulns):
        for ident in v.identifiers:
            key = _normalize(ident)
            if key in owner:
                a, b = find(i), find(owner[key])
                if a != b:
                    parent[max(a, b)] = min(a, b)
            else:
                owner[key] = i

    groups: Dict[int, List[Vulnerability]] = {}
    for i, v in enumerate(vulns):
        groups.setdefault(find(i), []).append(v)

    merged = [_merge_group(g) for g in groups.values()]
    return sorted(merged, key=lambda v: v.id)


class Aggregator:
    def __init__(
        self,
        providers: Sequence[VulnerabilityProvider],
        provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        batch_timeout: float = DEFAULT_BATCH_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cache: Optional[ResultCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.providers = list(providers)
        self.provider_timeout = provider_timeout
        self.batch_timeout = batch_timeout
        self.max_workers = max_workers
        self.cache = cache
        self.transport = transport

    def cache_key(self, coordinate: DependencyCoordinate) -> Tuple:
        return coordinate, tuple(sorted(p.fingerprint() for p in self.providers))

    def client(self) -> httpx.AsyncClient:
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=100)
        return httpx.AsyncClient(timeout=self.provider_timeout, limits=limits, transport=self.transport)

    async def query_coordinate(self, coordinate: DependencyCoordinate,
                               client: Optional[httpx.AsyncClient] = None,
                               refresh: bool = False) -> CoordinateResult:
        key = self.cache_key(coordinate)
        if self.cache is not None and not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return CoordinateResult(coordinate, list(cached), from_cache=True)

        if client is None:
            async with self.client() as own_client:
                return await self.query_coordinate(coordinate, own_client, refresh=True)

        healthy = [p for p in self.providers if p.is_healthy()]
        diagnostics = [f"{p.name} skipped for {coordinate}: provider unhealthy"
                       for p in self.providers if p not in healthy]

        slots: List[Optional[ProviderOutcome]] = [None] * len(healthy)

        async def run(index: int, provider: VulnerabilityProvider) -> None:
            try:
                slots[index] = await asyncio.wait_for(provider.fetch(coordinate, client), self.provider_timeout)
            except asyncio.TimeoutError:
                provider.mark_failure()
                logging.warning(f"{provider.name} timed out for {coordinate}")
                slots[index] = ProviderOutcome(provider.name, [], f"timed out after {self.provider_timeout}s")

        await asyncio.gather(*(run(i, p) for i, p in enumerate(healthy)))

        collected: List[Vulnerability] = []
        for outcome in slots:
            if outcome.error:
                diagnostics.append(f"{outcome.provider} failed for {coordinate}: {outcome.error}")
            collected.extend(outcome.vulnerabilities)

        merged = merge_vulnerabilities(collected)
        # Partial answers are not cached: the next run should ask the failed source again.
        if self.cache is not None and not diagnostics:
            self.cache.put(key, merged)
        return CoordinateResult(coordinate, merged, diagnostics)

    async def scan(self, coordinates: Iterable[DependencyCoordinate], refresh: bool = False) -> ScanResult:
        unique = list(dict.fromkeys(coordinates))
        result = ScanResult()
        if not unique:
            return result

        logging.info(f"Scanning {len(unique)} coordinates with {len(self.providers)} providers "
                     f"(workers={self.max_workers})...")
        semaphore = asyncio.Semaphore(self.max_workers)

        async with self.client() as client:
            async def worker(coordinate: DependencyCoordinate) -> CoordinateResult:
                async with semaphore:
                    return await self.query_coordinate(coordinate, client, refresh)

            tasks = {asyncio.ensure_future(worker(c)): c for c in unique}
            try:
                done, pending = await asyncio.wait(tasks, timeout=self.batch_timeout)
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                result.diagnostics.append(
                    f"Batch deadline of {self.batch_timeout}s reached; {len(pending)} dependencies not checked"
                )

        for task in done:
            coordinate = tasks[task]
            if task.exception() is not None:
                result.diagnostics.append(f"Vulnerability lookup failed for {coordinate}: {task.exception()}")
                continue
            outcome = task.result()
            result.results[coordinate] = outcome
            result.diagnostics.extend(outcome.diagnostics)
        return result
