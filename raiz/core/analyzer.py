import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Union

from raiz.core import confidence, false_positive, risk
from raiz.core.aggregator import Aggregator, ResultCache
from raiz.core.model import (
    AnalysisReport,
    DependencyNode,
    ResolutionMode,
    Vulnerability,
    VulnerabilityFinding,
)
from raiz.errors import ConfigurationError
from raiz.logs import correlation_scope


def parse_mode(mode: Union[str, ResolutionMode]) -> ResolutionMode:
    if isinstance(mode, ResolutionMode):
        return mode
    try:
        return ResolutionMode(str(mode).strip().lower())
    except ValueError:
        raise ConfigurationError(f"Invalid mode '{mode}'. Use 'safe' (parse build files) or 'full' (run the build tool).")


def validate_path(path: Union[str, Path]) -> Path:
    if path is None or not str(path).strip():
        raise ConfigurationError("A project directory or build file path is required.")
    project = Path(path).expanduser()
    if not project.exists():
        raise ConfigurationError(f"Path does not exist: {project}")
    if not (project.is_dir() or project.is_file()):
        raise ConfigurationError(f"Not a directory or build file: {project}")
    return project


def build_finding(node: DependencyNode, vuln: Vulnerability, depth_table=risk.DEPTH_SCORES,
                  span_threshold: int = false_positive.BROAD_RANGE_MAJOR_SPAN) -> VulnerabilityFinding:
    conf_score, conf_level = confidence.assess(vuln)
    fp = false_positive.analyze(node, vuln, span_threshold)
    return VulnerabilityFinding(
        dependency_node=node,
        vulnerability=vuln,
        confidence_score=conf_score,
        confidence_level=conf_level,
        risk_score=risk.risk_score(vuln.severity, node.depth, node.scope, vuln.exploit_maturity,
                                   depth_table=depth_table),
        false_positive_indicators=tuple(fp.indicators),
        false_positive_likelihood=fp.likelihood,
        reachability=fp.reachability,
    )


class Analyzer:
    """resolve -> aggregate -> score, for one project at a time."""

    def __init__(self, registry, aggregator: Aggregator, settings=None) -> None:
        self.registry = registry
        self.aggregator = aggregator
        self.depth_table = tuple(settings.depth_scores) if settings else risk.DEPTH_SCORES
        self.span_threshold = settings.broad_range_major_span if settings else false_positive.BROAD_RANGE_MAJOR_SPAN

    @classmethod
    def from_settings(cls, settings, cache: Optional[ResultCache] = None) -> "Analyzer":
        from raiz.providers import build_providers
        from raiz.resolvers import build_registry

        aggregator = Aggregator(
            build_providers(settings),
            provider_timeout=settings.provider_timeout,
            batch_timeout=settings.batch_timeout,
            max_workers=settings.max_workers,
            cache=cache,
        )
        return cls(build_registry(settings), aggregator, settings)

    async def analyze(self, path: Union[str, Path], mode: Union[str, ResolutionMode] = ResolutionMode.SAFE,
                      refresh: bool = False, deadline: Optional[float] = None) -> AnalysisReport:
        """
        Run the whole pipeline. ``deadline`` (seconds) bounds the run; on expiry
        the build tool process group is killed, provider requests are aborted and
        asyncio.TimeoutError propagates.
        """
        mode = parse_mode(mode)
        project = validate_path(path)

        with correlation_scope() as run_id:
            logging.info(f"Analysis {run_id} started: {project} (mode={mode.value})")
            if deadline is not None:
                report = await asyncio.wait_for(self._run(project, mode, refresh), timeout=deadline)
            else:
                report = await self._run(project, mode, refresh)
            logging.info(f"Analysis {run_id} done: {len(report.findings)} findings, "
                         f"{len(report.diagnostics)} diagnostics")
            return report

    async def _run(self, project: Path, mode: ResolutionMode, refresh: bool) -> AnalysisReport:
        resolution = await self.registry.resolve(project, mode)
        diagnostics: List[str] = [f"[{resolution.resolver_used}] {d}" for d in resolution.diagnostics]

        scan = await self.aggregator.scan(resolution.coordinates(), refresh=refresh)
        diagnostics.extend(scan.diagnostics)

        findings = []
        for node in resolution.nodes:
            coordinate_result = scan.results.get(node.coordinate)
            if coordinate_result is None:
                continue
            for vuln in coordinate_result.vulnerabilities:
                findings.append(build_finding(node, vuln, self.depth_table, self.span_threshold))

        findings.sort(key=lambda f: (-f.risk_score, -f.confidence_score, str(f.coordinate), f.vulnerability.id))
        return AnalysisReport(findings=findings, diagnostics=diagnostics, resolution=resolution)


async def analyze(path: Union[str, Path], mode: Union[str, ResolutionMode] = ResolutionMode.SAFE,
                  settings=None, refresh: bool = False, deadline: Optional[float] = None) -> AnalysisReport:
    if settings is None:
        from raiz.config import Settings
        settings = Settings()
    return await Analyzer.from_settings(settings).analyze(path, mode, refresh=refresh, deadline=deadline)
