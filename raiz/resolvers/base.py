from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from raiz.core.model import (
    DependencyCoordinate,
    DependencyNode,
    ResolutionMode,
    ResolutionResult,
    ResolverConfidence,
    Scope,
)

# Lower is stronger; used when the same coordinate shows up under several scopes.
SCOPE_RANK = {
    Scope.COMPILE: 0,
    Scope.RUNTIME: 1,
    Scope.PROVIDED: 2,
    Scope.SYSTEM: 3,
    Scope.TEST: 4,
}


class DependencyResolver(ABC):
    """Base class inherited by all build-tool resolvers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Friendly build tool name (e.g., Maven, Gradle)."""
        pass

    @property
    @abstractmethod
    def build_files(self) -> List[str]:
        """Exact filenames that mark a project this resolver understands."""
        pass

    def supports(self, path: Union[str, Path]) -> bool:
        """
        Returns True if this resolver can handle ``path``.
        ``path`` is either a project directory or a build file inside one.
        """
        path = Path(path)
        if path.is_file():
            return path.name in self.build_files
        if path.is_dir():
            return any((path / f).is_file() for f in self.build_files)
        return False

    @abstractmethod
    def confidence(self) -> ResolverConfidence:
        pass

    @abstractmethod
    def priority(self) -> int:
        pass

    @abstractmethod
    async def resolve(self, path: Union[str, Path], mode: ResolutionMode = ResolutionMode.SAFE) -> ResolutionResult:
        pass

    @staticmethod
    def project_dir(path: Union[str, Path]) -> Path:
        path = Path(path)
        return path.parent if path.is_file() else path


class NodeCollector:
    """
    Keeps one node per coordinate.

    A coordinate reached through several paths keeps its minimum observed depth
    (and the parent on that path) and the strongest scope. A parent is always
    shallower than its child, so re-parenting can never close a cycle.
    """

    def __init__(self) -> None:
        self._nodes: Dict[DependencyCoordinate, DependencyNode] = {}

    def add(self, coordinate: DependencyCoordinate, scope: Scope, parent: Optional[DependencyNode] = None,
            depth: Optional[int] = None, optional: bool = False) -> DependencyNode:
        if depth is None:
            depth = parent.depth + 1 if parent is not None else 0

        node = self._nodes.get(coordinate)
        if node is None:
            node = DependencyNode(coordinate, scope, depth, optional)
            node.parent = parent
            self._nodes[coordinate] = node
            return node

        if depth < node.depth and (parent is None or parent.depth < depth):
            node.depth = depth
            node.parent = parent
            self._reparent_descendants(node)
        if SCOPE_RANK[scope] < SCOPE_RANK[node.scope]:
            node.scope = scope
        node.optional = node.optional and optional
        return node

    def _reparent_descendants(self, moved: DependencyNode) -> None:
        """Pull the subtree under a node that just moved closer to a root up with it."""
        pending = [moved]
        while pending:
            current = pending.pop()
            for child in self._nodes.values():
                if child.parent is current and child.depth > current.depth + 1:
                    child.depth = current.depth + 1
                    pending.append(child)

    def __contains__(self, coordinate: DependencyCoordinate) -> bool:
        return coordinate in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def nodes(self) -> List[DependencyNode]:
        return sorted(self._nodes.values(), key=lambda n: n.depth)
