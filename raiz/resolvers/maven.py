import asyncio
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

import httpx

from raiz.core.model import (
    DependencyCoordinate,
    DependencyNode,
    Ecosystem,
    ResolutionMode,
    ResolutionResult,
    ResolverConfidence,
    Scope,
)
from raiz.errors import ResolutionError, ResolutionErrorKind
from raiz.resolvers.base import DependencyResolver, NodeCollector

DEFAULT_REPOSITORY = "https://repo.maven.apache.org/maven2"

_PROPERTY_RE = re.compile(r"\$\{([^}]+)\}")

# (scope declared on the edge to the parent, scope declared inside the parent's POM) -> effective scope
SCOPE_PROPAGATION = {
    (Scope.COMPILE, Scope.COMPILE): Scope.COMPILE,
    (Scope.COMPILE, Scope.RUNTIME): Scope.RUNTIME,
    (Scope.PROVIDED, Scope.COMPILE): Scope.PROVIDED,
    (Scope.PROVIDED, Scope.RUNTIME): Scope.PROVIDED,
    (Scope.RUNTIME, Scope.COMPILE): Scope.RUNTIME,
    (Scope.RUNTIME, Scope.RUNTIME): Scope.RUNTIME,
    (Scope.TEST, Scope.COMPILE): Scope.TEST,
    (Scope.TEST, Scope.RUNTIME): Scope.TEST,
}

Exclusions = FrozenSet[Tuple[str, str]]


@dataclass
class PomDependency:
    group_id: str
    artifact_id: str
    version: str = ""
    scope: str = ""
    optional: bool = False
    classifier: str = ""
    type: str = "jar"
    exclusions: Exclusions = frozenset()

    @property
    def key(self) -> str:
        return f"{self.group_id}:{self.artifact_id}"


@dataclass
class Pom:
    group_id: str = ""
    artifact_id: str = ""
    version: str = ""
    packaging: str = "jar"
    parent: Optional[Tuple[str, str, str, str]] = None
    properties: Dict[str, str] = field(default_factory=dict)
    dependencies: List[PomDependency] = field(default_factory=list)
    managed: List[PomDependency] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)


def _text(el, tag: str) -> str:
    child = el.find(tag)
    return child.text.strip() if child is not None and child.text else ""


def _parse_dependency(el) -> PomDependency:
    exclusions = set()
    for ex in el.findall("exclusions/exclusion"):
        exclusions.add((_text(ex, "groupId"), _text(ex, "artifactId")))
    return PomDependency(
        group_id=_text(el, "groupId"),
        artifact_id=_text(el, "artifactId"),
        version=_text(el, "version"),
        scope=_text(el, "scope"),
        optional=_text(el, "optional").lower() == "true",
        classifier=_text(el, "classifier"),
        type=_text(el, "type") or "jar",
        exclusions=frozenset(exclusions),
    )


def parse_pom(content: Union[str, bytes]) -> Pom:
    """Parse raw POM XML (no inheritance, no interpolation)."""
    root = ET.fromstring(content)
    for el in root.iter():
        if isinstance(el.tag, str) and "}" in el.tag:
            el.tag = el.tag.split("}", 1)[1]

    pom = Pom(
        group_id=_text(root, "groupId"),
        artifact_id=_text(root, "artifactId"),
        version=_text(root, "version"),
        packaging=_text(root, "packaging") or "jar",
    )

    parent = root.find("parent")
    if parent is not None:
        pom.parent = (
            _text(parent, "groupId"),
            _text(parent, "artifactId"),
            _text(parent, "version"),
            _text(parent, "relativePath") if parent.find("relativePath") is not None else "../pom.xml",
        )
        pom.group_id = pom.group_id or pom.parent[0]
        pom.version = pom.version or pom.parent[2]

    props = root.find("properties")
    if props is not None:
        for prop in props:
            if isinstance(prop.tag, str):
                pom.properties[prop.tag] = (prop.text or "").strip()

    pom.dependencies = [_parse_dependency(d) for d in root.findall("dependencies/dependency")]
    pom.managed = [_parse_dependency(d) for d in root.findall("dependencyManagement/dependencies/dependency")]
    pom.modules = [(m.text or "").strip() for m in root.findall("modules/module") if m.text]
    return pom


def _interpolate(value: str, props: Dict[str, str]) -> str:
    for _ in range(10):
        new = _PROPERTY_RE.sub(lambda m: props.get(m.group(1), m.group(0)), value)
        if new == value:
            break
        value = new
    return value


def _is_concrete(version: str) -> bool:
    return bool(version) and "${" not in version and version[0] not in "[("


class PomRepository:
    """Downloads and caches effective POMs from a Maven repository."""

    def __init__(self, client: httpx.AsyncClient, concurrency: int = 16) -> None:
        self.client = client
        self.semaphore = asyncio.Semaphore(concurrency)
        self._effective: Dict[Tuple[str, str, str], Optional[Pom]] = {}
        self._locks: Dict[Tuple[str, str, str], asyncio.Lock] = {}
        self.diagnostics: List[str] = []

    @staticmethod
    def pom_path(group_id: str, artifact_id: str, version: str) -> str:
        return f"/{group_id.replace('.', '/')}/{artifact_id}/{version}/{artifact_id}-{version}.pom"

    async def fetch_raw(self, group_id: str, artifact_id: str, version: str) -> Optional[Pom]:
        url = self.pom_path(group_id, artifact_id, version)
        async with self.semaphore:
            try:
                response = await self.client.get(url)
            except httpx.HTTPError as e:
                self.diagnostics.append(f"Could not download POM {group_id}:{artifact_id}:{version}: {e}")
                logging.warning(f"POM download failed for {url}: {e}")
                return None

        if response.status_code != 200:
            self.diagnostics.append(
                f"POM {group_id}:{artifact_id}:{version} not available (HTTP {response.status_code})"
            )
            return None
        try:
            return parse_pom(response.content)
        except ET.ParseError as e:
            self.diagnostics.append(f"Malformed POM {group_id}:{artifact_id}:{version}: {e}")
            return None

    async def effective(self, group_id: str, artifact_id: str, version: str,
                        chain: Tuple[str, ...] = ()) -> Optional[Pom]:
        gav = (group_id, artifact_id, version)
        if ":".join(gav) in chain:
            self.diagnostics.append(f"POM inheritance cycle through {':'.join(gav)}, ignored")
            return None
        lock = self._locks.setdefault(gav, asyncio.Lock())
        async with lock:
            if gav not in self._effective:
                raw = await self.fetch_raw(*gav)
                self._effective[gav] = await build_effective(raw, self, _chain=chain) if raw else None
            return self._effective[gav]


async def build_effective(pom: Pom, repo: Optional[PomRepository], base_dir: Optional[Path] = None,
                          _chain: Tuple[str, ...] = ()) -> Pom:
    """Apply parent inheritance, property interpolation, BOM imports and dependency management."""
    ident = f"{pom.group_id}:{pom.artifact_id}:{pom.version}"
    if ident in _chain:
        raise ResolutionError(ResolutionErrorKind.PARSE_FAILED, f"POM parent cycle at {ident}")
    chain = _chain + (ident,)

    parent_eff: Optional[Pom] = None
    if pom.parent:
        parent_eff = await _load_parent(pom, repo, base_dir, chain)

    props: Dict[str, str] = {}
    managed: Dict[str, PomDependency] = {}
    deps: Dict[str, PomDependency] = {}
    if parent_eff:
        props.update(parent_eff.properties)
        managed.update({d.key: d for d in parent_eff.managed})
        deps.update({d.key: d for d in parent_eff.dependencies})

    props.update(pom.properties)
    for prefix in ("project", "pom"):
        props[f"{prefix}.groupId"] = pom.group_id
        props[f"{prefix}.artifactId"] = pom.artifact_id
        props[f"{prefix}.version"] = pom.version
    if pom.parent:
        props["project.parent.groupId"] = pom.parent[0]
        props["project.parent.version"] = pom.parent[2]
        props["parent.version"] = pom.parent[2]

    def interp(d: PomDependency) -> PomDependency:
        return PomDependency(
            group_id=_interpolate(d.group_id, props),
            artifact_id=_interpolate(d.artifact_id, props),
            version=_interpolate(d.version, props),
            scope=_interpolate(d.scope, props),
            optional=d.optional,
            classifier=_interpolate(d.classifier, props),
            type=d.type,
            exclusions=d.exclusions,
        )

    own_managed = [interp(d) for d in pom.managed]
    for d in own_managed:
        if d.scope == "import" and d.type == "pom":
            continue
        managed[d.key] = d

    # BOM imports never override what this POM or its parents manage explicitly.
    for bom in (d for d in own_managed if d.scope == "import" and d.type == "pom"):
        if repo is None or not _is_concrete(bom.version):
            continue
        bom_eff = await repo.effective(bom.group_id, bom.artifact_id, bom.version, chain)
        if bom_eff:
            for d in bom_eff.managed:
                managed.setdefault(d.key, d)

    for d in (interp(d) for d in pom.dependencies):
        m = managed.get(d.key)
        if m:
            if not d.version:
                d.version = m.version
            if not d.scope:
                d.scope = m.scope
            d.exclusions = d.exclusions | m.exclusions
        deps[d.key] = d

    return Pom(
        group_id=pom.group_id,
        artifact_id=pom.artifact_id,
        version=pom.version,
        packaging=pom.packaging,
        parent=pom.parent,
        properties=props,
        dependencies=list(deps.values()),
        managed=list(managed.values()),
        modules=pom.modules,
    )


async def _load_parent(pom: Pom, repo: Optional[PomRepository], base_dir: Optional[Path],
                       chain: Tuple[str, ...]) -> Optional[Pom]:
    g, a, v, relative = pom.parent
    if base_dir is not None and relative:
        candidate = (base_dir / relative)
        if candidate.is_dir():
            candidate = candidate / "pom.xml"
        if candidate.is_file():
            try:
                local = parse_pom(candidate.read_bytes())
            except (OSError, ET.ParseError) as e:
                logging.warning(f"Local parent {candidate} is unreadable, trying the repository: {e}")
                local = None
            if local is not None and local.group_id == g and local.artifact_id == a:
                return await build_effective(local, repo, candidate.parent, chain)
    if repo is not None and g and a and v:
        return await repo.effective(g, a, v, chain)
    return None


def _excluded(dep: PomDependency, exclusions: Exclusions) -> bool:
    for g, a in exclusions:
        if (g in ("*", dep.group_id)) and (a in ("*", dep.artifact_id)):
            return True
    return False


def _scope(raw: str) -> Scope:
    try:
        return Scope(raw or "compile")
    except ValueError:
        return Scope.COMPILE


class MavenResolver(DependencyResolver):
    """
    Resolves the full transitive graph from pom.xml without running Maven.

    Dependency POMs are downloaded from a Maven repository and walked breadth
    first, which gives Maven's nearest-wins mediation for free.
    """

    def __init__(self, repository_url: str = DEFAULT_REPOSITORY, max_depth: int = 10,
                 concurrency: int = 16, timeout: float = 20.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.repository_url = repository_url.rstrip("/")
        self.max_depth = max_depth
        self.concurrency = concurrency
        self.timeout = timeout
        self.transport = transport

    @property
    def name(self) -> str:
        return "Maven"

    @property
    def build_files(self) -> List[str]:
        return ["pom.xml"]

    def confidence(self) -> ResolverConfidence:
        return ResolverConfidence.HIGH

    def priority(self) -> int:
        return 100

    async def resolve(self, path: Union[str, Path], mode: ResolutionMode = ResolutionMode.SAFE) -> ResolutionResult:
        project = self.project_dir(path)
        pom_file = Path(path) if Path(path).is_file() else project / "pom.xml"
        logging.debug(f"Reading {pom_file} ...")

        try:
            root_pom = parse_pom(pom_file.read_bytes())
        except (OSError, ET.ParseError) as e:
            raise ResolutionError(ResolutionErrorKind.PARSE_FAILED, f"{pom_file}: {e}") from e

        async with httpx.AsyncClient(base_url=self.repository_url, timeout=self.timeout,
                                     transport=self.transport, follow_redirects=True) as client:
            repo = PomRepository(client, self.concurrency)
            diagnostics: List[str] = []

            modules = [await build_effective(root_pom, repo, project)]
            modules += await self._load_modules(root_pom, project, repo, diagnostics)
            reactor = {(m.group_id, m.artifact_id) for m in modules}

            collector = NodeCollector()
            await self._walk(modules, reactor, repo, collector, diagnostics)

        diagnostics.extend(repo.diagnostics)
        nodes = collector.nodes()
        logging.info(f"Maven graph: {len(nodes)} nodes, max depth {max((n.depth for n in nodes), default=0)}")
        return ResolutionResult(nodes=nodes, resolver_used=self.name, diagnostics=diagnostics)

    async def _load_modules(self, root_pom: Pom, project: Path, repo: PomRepository,
                            diagnostics: List[str]) -> List[Pom]:
        modules = []
        for module in root_pom.modules:
            module_pom = project / module / "pom.xml"
            if not module_pom.is_file():
                diagnostics.append(f"Module '{module}' has no pom.xml, skipped")
                continue
            try:
                raw = parse_pom(module_pom.read_bytes())
            except ET.ParseError as e:
                diagnostics.append(f"Module '{module}' has a malformed pom.xml: {e}")
                continue
            modules.append(await build_effective(raw, repo, module_pom.parent))
        return modules

    async def _walk(self, modules: List[Pom], reactor, repo: PomRepository,
                    collector: NodeCollector, diagnostics: List[str]) -> None:
        root_managed: Dict[str, PomDependency] = {}
        for m in modules:
            for d in m.managed:
                root_managed.setdefault(d.key, d)

        seen: Dict[str, DependencyNode] = {}
        # (parent node, dependency, effective scope, exclusions in force)
        level: List[Tuple[Optional[DependencyNode], PomDependency, Scope, Exclusions]] = []
        for m in modules:
            for d in m.dependencies:
                level.append((None, d, _scope(d.scope), d.exclusions))

        depth = 0
        while level:
            expand: List[Tuple[DependencyNode, PomDependency, Exclusions]] = []
            for parent, dep, scope, exclusions in level:
                if (dep.group_id, dep.artifact_id) in reactor or dep.key in seen:
                    continue
                if depth > 0 and dep.key in root_managed and root_managed[dep.key].version:
                    dep = replace(dep, version=root_managed[dep.key].version)
                if not dep.version:
                    diagnostics.append(f"No version for {dep.key}, skipped")
                    continue

                coordinate = DependencyCoordinate(Ecosystem.MAVEN, dep.group_id, dep.artifact_id,
                                                  dep.version, dep.classifier)
                node = collector.add(coordinate, scope, parent=parent, optional=dep.optional)
                seen[dep.key] = node

                if not _is_concrete(dep.version):
                    diagnostics.append(f"Version '{dep.version}' of {dep.key} is not concrete, transitives skipped")
                    continue
                if scope == Scope.SYSTEM or depth >= self.max_depth:
                    continue
                expand.append((node, dep, exclusions))

            poms = await asyncio.gather(*(
                repo.effective(d.group_id, d.artifact_id, d.version) for _, d, _ in expand
            ))

            level = []
            for (node, dep, exclusions), pom in zip(expand, poms):
                if pom is None:
                    continue
                for child in pom.dependencies:
                    if child.optional or _excluded(child, exclusions):
                        continue
                    child_scope = SCOPE_PROPAGATION.get((node.scope, _scope(child.scope)))
                    if child_scope is None:
                        continue
                    level.append((node, child, child_scope, exclusions | child.exclusions))
            depth += 1
