import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from raiz.core.model import ResolutionMode, ResolutionResult
from raiz.core.sandbox import SandboxExecutor
from raiz.errors import ResolutionError, ResolutionErrorKind
from .base import DependencyResolver
from .gradle import GradleResolver
from .maven import MavenResolver


def select_resolver(resolvers: Sequence[DependencyResolver], path: Union[str, Path]) -> DependencyResolver:
    """Highest priority resolver that supports ``path``; ties go to the one declared first."""
    best = None
    for resolver in resolvers:
        if resolver.supports(path) and (best is None or resolver.priority() > best.priority()):
            best = resolver
    if best is None:
        raise ResolutionError(ResolutionErrorKind.NO_RESOLVER_AVAILABLE, f"No supported build file found at {path}")
    return best


class ResolverRegistry:
    def __init__(self, resolvers: Sequence[DependencyResolver]) -> None:
        self.resolvers: List[DependencyResolver] = list(resolvers)

    def select(self, path: Union[str, Path]) -> DependencyResolver:
        return select_resolver(self.resolvers, path)

    async def resolve(self, path: Union[str, Path], mode: ResolutionMode = ResolutionMode.SAFE) -> ResolutionResult:
        resolver = self.select(path)
        logging.info(f"Resolver: {resolver.name} (priority {resolver.priority()}, mode {mode.value})")
        return await resolver.resolve(path, mode)


def build_registry(settings=None, executor: Optional[SandboxExecutor] = None) -> ResolverRegistry:
    if settings is None:
        return ResolverRegistry([MavenResolver(), GradleResolver(executor)])

    executor = executor or SandboxExecutor(grace_period=settings.sandbox_grace_period)
    return ResolverRegistry([
        MavenResolver(
            repository_url=settings.maven_repository_url,
            max_depth=settings.maven_max_depth,
            concurrency=settings.maven_fetch_concurrency,
        ),
        GradleResolver(executor, timeout=settings.gradle_timeout, output_cap=settings.sandbox_output_cap),
    ])


__all__ = [
    "DependencyResolver",
    "GradleResolver",
    "MavenResolver",
    "ResolverRegistry",
    "build_registry",
    "select_resolver",
]
