import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from raiz.core.model import (
    DependencyCoordinate,
    Ecosystem,
    ResolutionMode,
    ResolutionResult,
    ResolverConfidence,
    Scope,
)
from raiz.core.sandbox import SandboxExecutor
from raiz.errors import ResolutionError, ResolutionErrorKind, SandboxError, SandboxTimeout
from raiz.resolvers.base import DependencyResolver, NodeCollector

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

BUILD_FILES = ["build.gradle", "build.gradle.kts"]
SETTINGS_FILES = ["settings.gradle", "settings.gradle.kts"]
DEFAULT_TIMEOUT = 30.0
DEFAULT_OUTPUT_CAP = 4 * 1024 * 1024

# Declared configurations (build files) and resolved classpaths (dependencies task output)
CONFIG_SCOPES = {
    "api": Scope.COMPILE,
    "implementation": Scope.COMPILE,
    "compile": Scope.COMPILE,
    "compileClasspath": Scope.COMPILE,
    "runtimeOnly": Scope.RUNTIME,
    "runtime": Scope.RUNTIME,
    "runtimeClasspath": Scope.RUNTIME,
    "compileOnly": Scope.PROVIDED,
    "compileOnlyApi": Scope.PROVIDED,
    "providedCompile": Scope.PROVIDED,
    "providedRuntime": Scope.PROVIDED,
    "annotationProcessor": Scope.PROVIDED,
    "kapt": Scope.PROVIDED,
    "testImplementation": Scope.TEST,
    "testCompile": Scope.TEST,
    "testRuntimeOnly": Scope.TEST,
    "testCompileOnly": Scope.TEST,
    "testCompileClasspath": Scope.TEST,
    "testRuntimeClasspath": Scope.TEST,
    "androidTestImplementation": Scope.TEST,
}

_CONFIG = r"(?P<config>\w+)\s*\(?\s*"
_STRING_NOTATION = re.compile(_CONFIG + r"""(?P<q>['"])(?P<gav>[^'"\s]+:[^'"\s]+)(?P=q)""")
_MAP_NOTATION = re.compile(
    _CONFIG
    + r"""group\s*[:=]\s*['"](?P<group>[^'"]+)['"]\s*,\s*name\s*[:=]\s*['"](?P<name>[^'"]+)['"]"""
    + r"""(?:\s*,\s*version\s*[:=]\s*['"](?P<version>[^'"]+)['"])?"""
)
_CATALOG_NOTATION = re.compile(_CONFIG + r"libs\.(?P<alias>[\w.]+)")
_VARIABLE = re.compile(r"""^\s*(?:ext\.|def\s+|val\s+|var\s+|project\.ext\.)?(\w+)\s*=\s*['"]([^'"$]+)['"]""", re.M)
_SET_VARIABLE = re.compile(r"""set\(\s*['"](\w+)['"]\s*,\s*['"]([^'"$]+)['"]\s*\)""")
_INTERPOLATION = re.compile(r"\$\{?([\w.]+)\}?")
_INCLUDE = re.compile(r"^\s*include\b(.*)$", re.M)

_TREE_ENTRY = re.compile(r"^(?P<prefix>[|\s]*)[+\\]--- (?P<entry>.+)$")
_SECTION_HEADER = re.compile(r"^(?P<config>[A-Za-z]\w*)(?: - .*)?$")


class GradleResolver(DependencyResolver):
    def __init__(self, executor: Optional[SandboxExecutor] = None, timeout: float = DEFAULT_TIMEOUT,
                 output_cap: int = DEFAULT_OUTPUT_CAP) -> None:
        self.executor = executor or SandboxExecutor()
        self.timeout = timeout
        self.output_cap = output_cap

    @property
    def name(self) -> str:
        return "Gradle"

    @property
    def build_files(self) -> List[str]:
        return BUILD_FILES

    def confidence(self) -> ResolverConfidence:
        # tree output is parsed heuristically and changes between Gradle versions
        return ResolverConfidence.MEDIUM

    def priority(self) -> int:
        return 50

    async def resolve(self, path: Union[str, Path], mode: ResolutionMode = ResolutionMode.SAFE) -> ResolutionResult:
        project = self.project_dir(path)
        if mode == ResolutionMode.FULL:
            try:
                return await self._resolve_full(project)
            except (ResolutionError, SandboxError) as e:
                logging.warning(f"Gradle full mode failed, falling back to safe mode: {e}")
                result = self._resolve_safe(project)
                result.diagnostics.insert(0, f"Full resolution failed ({e}); fell back to build file parsing")
                return result
        return self._resolve_safe(project)

    # --- FULL MODE ---

    def command(self, project: Path) -> List[str]:
        wrapper = project / "gradlew"
        launcher = str(wrapper) if wrapper.is_file() and os.access(wrapper, os.X_OK) else "gradle"
        return [launcher, "dependencies", "--console=plain", "--no-daemon"]

    async def _resolve_full(self, project: Path) -> ResolutionResult:
        argv = self.command(project)
        try:
            run = await self.executor.execute(argv, project, self.timeout, self.output_cap,
                                              home_env_vars=("GRADLE_USER_HOME",))
        except SandboxTimeout as e:
            raise ResolutionError(ResolutionErrorKind.SANDBOX_TIMEOUT, str(e)) from e
        except SandboxError as e:
            raise ResolutionError(ResolutionErrorKind.EXECUTION_FAILED, str(e)) from e

        if run.exit_code != 0:
            tail = run.output.strip().splitlines()[-1:] or [""]
            raise ResolutionError(ResolutionErrorKind.EXECUTION_FAILED,
                                  f"'{' '.join(argv[:2])}' exited with {run.exit_code}: {tail[0]}")

        collector, diagnostics = parse_dependency_tree(run.output)
        if run.truncated:
            diagnostics.append(f"Gradle output truncated at {self.output_cap} bytes; graph may be incomplete")
        if not len(collector):
            raise ResolutionError(ResolutionErrorKind.PARSE_FAILED, "no dependencies found in Gradle output")

        return ResolutionResult(nodes=collector.nodes(), resolver_used=f"{self.name} (full)",
                                diagnostics=diagnostics)

    # --- SAFE MODE ---

    def _resolve_safe(self, project: Path) -> ResolutionResult:
        diagnostics: List[str] = []
        build_files = self._build_files(project, diagnostics)
        if not build_files:
            raise ResolutionError(ResolutionErrorKind.PARSE_FAILED, f"No Gradle build file in {project}")

        variables = self._read_properties(project / "gradle.properties", diagnostics)
        catalog = self._read_catalog(project / "gradle" / "libs.versions.toml", diagnostics)
        collector = NodeCollector()

        for build_file in build_files:
            logging.debug(f"Parsing {build_file} ...")
            content = _read_text(build_file, diagnostics)
            if content is None:
                continue
            file_vars = dict(variables)
            file_vars.update(self._read_variables(content))
            for config, group, artifact, version, classifier in self._declarations(content, file_vars, catalog):
                if not version or "$" in version:
                    diagnostics.append(f"{group}:{artifact} in {build_file.name} has no resolvable version, skipped")
                    continue
                coordinate = DependencyCoordinate(Ecosystem.MAVEN, group, artifact, version, classifier)
                collector.add(coordinate, CONFIG_SCOPES[config], depth=0)

        if not len(collector):
            diagnostics.append("No dependency declarations found in Gradle build files")
        return ResolutionResult(nodes=collector.nodes(), resolver_used=f"{self.name} (safe)", diagnostics=diagnostics)

    def _build_files(self, project: Path, diagnostics: List[str]) -> List[Path]:
        files = [project / f for f in BUILD_FILES if (project / f).is_file()]
        for sub in self._subprojects(project, diagnostics):
            files.extend(sub / f for f in BUILD_FILES if (sub / f).is_file())
        return files

    @staticmethod
    def _subprojects(project: Path, diagnostics: List[str]) -> List[Path]:
        dirs = []
        for name in SETTINGS_FILES:
            settings = project / name
            if not settings.is_file():
                continue
            content = _read_text(settings, diagnostics)
            if content is None:
                continue
            for match in _INCLUDE.finditer(content):
                for path in re.findall(r"""['"]:?([\w\-:]+)['"]""", match.group(1)):
                    candidate = project.joinpath(*path.split(":"))
                    if candidate.resolve().is_relative_to(project.resolve()) and candidate.is_dir():
                        dirs.append(candidate)
        return dirs

    @staticmethod
    def _read_properties(path: Path, diagnostics: List[str]) -> Dict[str, str]:
        props = {}
        content = _read_text(path, diagnostics) if path.is_file() else None
        if content is not None:
            for line in content.splitlines():
                line = line.strip()
                if not line or line.startswith(("#", "!")) or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                props[key.strip()] = value.strip()
        return props

    @staticmethod
    def _read_variables(content: str) -> Dict[str, str]:
        found = dict(_VARIABLE.findall(content))
        found.update(_SET_VARIABLE.findall(content))
        return found

    @staticmethod
    def _read_catalog(path: Path, diagnostics: List[str]) -> Dict[str, Tuple[str, str, str]]:
        """libs.versions.toml -> {accessor alias: (group, name, version)}"""
        if not path.is_file():
            return {}
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logging.warning(f"Ignoring version catalog {path}: {e}")
            diagnostics.append(f"Cannot parse version catalog {path.name}: {e}")
            return {}

        versions = data.get("versions", {})

        def version_of(spec) -> str:
            if isinstance(spec, str):
                return spec
            if isinstance(spec, dict):
                if "ref" in spec:
                    return version_of(versions.get(spec["ref"], ""))
                for key in ("strictly", "require", "prefer"):
                    if key in spec:
                        return spec[key]
            return ""

        catalog = {}
        for alias, lib in data.get("libraries", {}).items():
            if isinstance(lib, str):
                parts = lib.split(":")
                if len(parts) < 2:
                    continue
                group, name, version = parts[0], parts[1], parts[2] if len(parts) > 2 else ""
            else:
                if "module" in lib:
                    group, _, name = lib["module"].partition(":")
                else:
                    group, name = lib.get("group", ""), lib.get("name", "")
                version = version_of(lib.get("version", ""))
                if not version and "version.ref" in lib:
                    version = version_of(versions.get(lib["version.ref"], ""))
            catalog[re.sub(r"[-_]", ".", alias)] = (group, name, version)
        return catalog

    @staticmethod
    def _interpolate(value: str, variables: Dict[str, str]) -> str:
        return _INTERPOLATION.sub(lambda m: variables.get(m.group(1).split(".")[-1], m.group(0)), value)

    def _declarations(self, content: str, variables: Dict[str, str], catalog: Dict[str, Tuple[str, str, str]]):
        for match in _STRING_NOTATION.finditer(content):
            config = match.group("config")
            if config not in CONFIG_SCOPES:
                continue
            gav = self._interpolate(match.group("gav"), variables)
            parts = gav.split("@")[0].split(":")
            if len(parts) < 2:
                continue
            version = parts[2] if len(parts) > 2 else ""
            classifier = parts[3] if len(parts) > 3 else ""
            yield config, parts[0], parts[1], version, classifier

        for match in _MAP_NOTATION.finditer(content):
            config = match.group("config")
            if config not in CONFIG_SCOPES:
                continue
            version = self._interpolate(match.group("version") or "", variables)
            yield config, match.group("group"), match.group("name"), version, ""

        for match in _CATALOG_NOTATION.finditer(content):
            config = match.group("config")
            alias = match.group("alias")
            if config not in CONFIG_SCOPES or alias not in catalog:
                continue
            group, name, version = catalog[alias]
            yield config, group, name, version, ""


def _read_text(path: Path, diagnostics: List[str]) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logging.warning(f"Cannot read {path}: {e}")
        diagnostics.append(f"Cannot read {path.name}: {e}")
        return None


def _parse_entry(entry: str) -> Optional[Tuple[str, str, str]]:
    """'g:a:1.0 -> 1.1 (*)' -> (g, a, 1.1); None for project or unresolved entries."""
    entry = re.sub(r"\s+\((\*|c|n|selected by rule)\)$", "", entry.strip())
    if entry.startswith("project ") or entry.endswith("FAILED"):
        return None

    requested, _, selected = entry.partition(" -> ")
    parts = requested.split(":")
    if len(parts) < 2:
        return None
    version = selected.strip().split(" ")[0] if selected else (parts[2] if len(parts) > 2 else "")
    rich_version = re.match(r"^\{\w+\s+([^}]+)\}$", version)
    if rich_version:
        version = rich_version.group(1).strip()
    if not version:
        return None
    return parts[0], parts[1], version


def parse_dependency_tree(output: str) -> Tuple[NodeCollector, List[str]]:
    """
    Parse ``gradle dependencies`` output.

    Depth comes from the indentation of each entry (5 characters per level),
    scope from the configuration header the tree sits under. ``project :x``
    entries are transparent: their children count as children of whatever
    node encloses the project entry.
    """
    collector = NodeCollector()
    diagnostics: List[str] = []
    scope: Optional[Scope] = None
    stack: List[Tuple[int, Optional[object]]] = []

    for line in output.splitlines():
        entry_match = _TREE_ENTRY.match(line)
        if not entry_match:
            header = _SECTION_HEADER.match(line.strip()) if line and not line[0].isspace() else None
            if header:
                scope = CONFIG_SCOPES.get(header.group("config"))
                stack = []
            continue
        if scope is None:
            continue

        level = len(entry_match.group("prefix")) // 5
        entry = entry_match.group("entry")
        while stack and stack[-1][0] >= level:
            stack.pop()

        if entry.rstrip().endswith(("(c)", "(n)")):
            stack.append((level, None))
            continue

        parsed = _parse_entry(entry)
        if parsed is None:
            if entry.rstrip().endswith("FAILED"):
                diagnostics.append(f"Gradle could not resolve {entry.strip()}")
            stack.append((level, None))
            continue

        ancestors = [n for _, n in stack if n is not None]
        parent = ancestors[-1] if ancestors else None
        coordinate = DependencyCoordinate(Ecosystem.MAVEN, *parsed)
        node = collector.add(coordinate, scope, parent=parent, depth=len(ancestors))
        stack.append((level, node))

    return collector, diagnostics
