"""
Heuristic false-positive annotations.

The analyzer only describes why a human reviewer might doubt a finding. It
never drops a finding, never suppresses it and never touches the risk or
confidence scores.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from raiz.core import versions
from raiz.core.model import DependencyNode, Likelihood, Scope, Vulnerability

MAX_INDICATORS = 8
BROAD_RANGE_MAJOR_SPAN = 5
REACHABILITY_UNKNOWN = "unknown"

SHADED_MARKERS = ("shaded", "shade", "repackaged", "relocated", "uber", "jar-with-dependencies")

# artifactId -> groupId of the upstream project publishing it
KNOWN_UPSTREAM_GROUPS: Dict[str, str] = {
    "guava": "com.google.guava",
    "jackson-databind": "com.fasterxml.jackson.core",
    "jackson-core": "com.fasterxml.jackson.core",
    "log4j-core": "org.apache.logging.log4j",
    "log4j-api": "org.apache.logging.log4j",
    "commons-text": "org.apache.commons",
    "commons-collections4": "org.apache.commons",
    "snakeyaml": "org.yaml",
    "netty-all": "io.netty",
    "netty-handler": "io.netty",
    "protobuf-java": "com.google.protobuf",
    "gson": "com.google.code.gson",
    "spring-core": "org.springframework",
    "spring-web": "org.springframework",
    "h2": "com.h2database",
    "xstream": "com.thoughtworks.xstream",
}

# Reason weights; their sum decides the likelihood band.
WEIGHTS = {
    "scope": 2,
    "optional": 1,
    "shaded": 2,
    "broad_range": 1,
}


@dataclass
class FalsePositiveAssessment:
    indicators: List[str] = field(default_factory=list)
    likelihood: Likelihood = Likelihood.LOW
    reachability: str = REACHABILITY_UNKNOWN


def _shaded_reason(node: DependencyNode):
    coord = node.coordinate
    tokens = set(re.split(r"[-_.]", coord.artifact_id.lower()))
    classifier = coord.classifier.lower()
    for marker in SHADED_MARKERS:
        if marker in tokens:
            return f"artifact '{coord.artifact_id}' looks repackaged ('{marker}' marker)"
        if classifier and marker in classifier:
            return f"classifier '{coord.classifier}' looks repackaged ('{marker}' marker)"

    upstream = KNOWN_UPSTREAM_GROUPS.get(coord.artifact_id)
    if upstream and coord.group_id != upstream and not coord.group_id.startswith(upstream + "."):
        return f"groupId '{coord.group_id}' differs from upstream '{upstream}' (possible relocated copy)"
    return None


def _broad_range_reason(vuln: Vulnerability, version: str, span_threshold: int):
    branch = versions.matching_branch(vuln.affected_version_range, version)
    if not branch:
        return None
    lower = [v for op, v in branch if op in (">", ">=")]
    upper = [v for op, v in branch if op in ("<", "<=")]
    exact = [v for op, v in branch if op == "="]
    if exact:
        return None
    if not lower or all(v.major == 0 and not v.tokens[1:] for v in lower):
        return f"affected range '{vuln.affected_version_range}' has no lower bound"
    if upper and max(upper).major - min(lower).major >= span_threshold:
        return (f"affected range '{vuln.affected_version_range}' spans "
                f"{max(upper).major - min(lower).major} major versions")
    return None


def analyze(node: DependencyNode, vuln: Vulnerability,
            span_threshold: int = BROAD_RANGE_MAJOR_SPAN) -> FalsePositiveAssessment:
    found: List[Tuple[str, str]] = []

    if node.scope in (Scope.TEST, Scope.PROVIDED):
        found.append(("scope", f"dependency scope is '{node.scope.value}' (not shipped at runtime)"))

    if node.optional:
        found.append(("optional", "dependency is marked optional"))

    shaded = _shaded_reason(node)
    if shaded:
        found.append(("shaded", shaded))

    broad = _broad_range_reason(vuln, node.coordinate.version, span_threshold)
    if broad:
        found.append(("broad_range", broad))

    total = sum(WEIGHTS[kind] for kind, _ in found)
    if total >= 3:
        likelihood = Likelihood.HIGH
    elif total >= 1:
        likelihood = Likelihood.MEDIUM
    else:
        likelihood = Likelihood.LOW

    if found:
        logging.debug(f"FP hints for {node.coordinate} / {vuln.id}: {[k for k, _ in found]}")

    return FalsePositiveAssessment(
        indicators=[reason for _, reason in found][:MAX_INDICATORS],
        likelihood=likelihood,
    )
