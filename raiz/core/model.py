import hashlib
import weakref
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, FrozenSet, Tuple


class Ecosystem(str, Enum):
    MAVEN = "Maven"


class Scope(str, Enum):
    COMPILE = "compile"
    RUNTIME = "runtime"
    PROVIDED = "provided"
    TEST = "test"
    SYSTEM = "system"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


class ExploitMaturity(str, Enum):
    POC = "POC"
    WEAPONIZED = "WEAPONIZED"
    THEORETICAL = "THEORETICAL"
    NONE = "NONE"


class Source(str, Enum):
    OSV = "OSV"
    NVD = "NVD"
    GHSA = "GHSA"
    MAVEN_CENTRAL = "MAVEN_CENTRAL"


# Reliability weight of each source, used for merge precedence and confidence.
SOURCE_WEIGHTS = {
    Source.NVD: 1.0,
    Source.GHSA: 1.0,
    Source.OSV: 0.8,
    Source.MAVEN_CENTRAL: 0.6,
}


class MatchQuality(float, Enum):
    EXACT = 1.0
    RANGE = 0.8
    FUZZY = 0.5


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Likelihood(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ResolutionMode(str, Enum):
    SAFE = "safe"
    FULL = "full"


class ResolverConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


@dataclass(frozen=True)
class DependencyCoordinate:
    ecosystem: Ecosystem
    group_id: str
    artifact_id: str
    version: str
    classifier: str = ""

    @property
    def key(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"

    @property
    def purl(self) -> str:
        purl = f"pkg:maven/{self.group_id}/{self.artifact_id}@{self.version}"
        if self.classifier:
            purl += f"?classifier={self.classifier}"
        return purl

    def __str__(self) -> str:
        parts = [self.group_id, self.artifact_id, self.version]
        if self.classifier:
            parts.append(self.classifier)
        return ":".join(parts)


@dataclass(eq=False)
class DependencyNode:
    coordinate: DependencyCoordinate
    scope: Scope = Scope.COMPILE
    depth: int = 0
    optional: bool = False
    _parent: Optional["weakref.ReferenceType[DependencyNode]"] = field(default=None, repr=False)

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"depth must be >= 0, got {self.depth}")

    @property
    def parent(self) -> Optional["DependencyNode"]:
        return self._parent() if self._parent is not None else None

    @parent.setter
    def parent(self, node: Optional["DependencyNode"]) -> None:
        self._parent = weakref.ref(node) if node is not None else None


@dataclass(frozen=True)
class Vulnerability:
    id: str
    source: Source
    severity: Severity = Severity.INFO
    affected_version_range: str = ""
    exploit_maturity: ExploitMaturity = ExploitMaturity.NONE
    published_at: Optional[datetime] = None
    title: str = ""
    description: str = ""

    aliases: FrozenSet[str] = frozenset()
    # Sources that reported this advisory; more than one means cross-source confirmation.
    sources: FrozenSet[Source] = frozenset()
    match_quality: MatchQuality = MatchQuality.RANGE
    references: Tuple[str, ...] = ()
    cvss_score: Optional[float] = None

    def __post_init__(self):
        if not self.sources:
            object.__setattr__(self, "sources", frozenset({self.source}))

    @property
    def identifiers(self) -> FrozenSet[str]:
        return frozenset({self.id}) | self.aliases

    @property
    def reliability(self) -> float:
        return max(SOURCE_WEIGHTS[s] for s in self.sources)


@dataclass(frozen=True)
class VulnerabilityFinding:
    dependency_node: DependencyNode
    vulnerability: Vulnerability
    confidence_score: int
    confidence_level: ConfidenceLevel
    risk_score: float
    false_positive_indicators: Tuple[str, ...] = ()
    false_positive_likelihood: Likelihood = Likelihood.LOW
    reachability: str = "unknown"
    suppressed: bool = False

    def __post_init__(self):
        if not 0 <= self.confidence_score <= 100:
            raise ValueError(f"confidence_score out of range: {self.confidence_score}")
        if not 0 <= self.risk_score <= 100:
            raise ValueError(f"risk_score out of range: {self.risk_score}")

    @property
    def coordinate(self) -> DependencyCoordinate:
        return self.dependency_node.coordinate

    @property
    def finding_id(self) -> str:
        """Content-derived key, stable across runs for the same coordinate and advisory."""
        raw = f"{self.coordinate.purl}|{self.vulnerability.id}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


@dataclass
class ResolutionResult:
    nodes: List[DependencyNode]
    resolver_used: str
    diagnostics: List[str] = field(default_factory=list)

    def coordinates(self) -> List[DependencyCoordinate]:
        seen = {}
        for node in self.nodes:
            seen.setdefault(node.coordinate, None)
        return list(seen)

    def children_of(self, node: Optional[DependencyNode]) -> List[DependencyNode]:
        return [n for n in self.nodes if n.parent is node]


@dataclass
class AnalysisReport:
    findings: List[VulnerabilityFinding]
    diagnostics: List[str] = field(default_factory=list)
    resolution: Optional[ResolutionResult] = None

    def audit_view(self, store=None) -> List[VulnerabilityFinding]:
        """Every finding, with the suppression overlay applied from ``store``."""
        if store is None:
            return list(self.findings)
        return [replace(f, suppressed=store.is_suppressed(f.finding_id)) for f in self.findings]

    def active_findings(self, store=None) -> List[VulnerabilityFinding]:
        return [f for f in self.audit_view(store) if not f.suppressed]
