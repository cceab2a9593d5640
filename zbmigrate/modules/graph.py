# zbmigrate/modules/graph.py
"""
Dependency graph between installed packages.

Nodes are package names from the inventory; an edge A -> B means "A depends
on B". Dependencies that are not themselves in the inventory (already
provided by the target manager or by the system) are dropped: they impose no
ordering constraint.
"""

from typing import Dict, Iterable, List, Set, Tuple

from zbmigrate.modules.errors import GraphError
from zbmigrate.modules.package import PackageRecord


class DependencyGraph:
    """
    Represents the dependency graph between packages.
    Used to order migrations and detect cycles.
    """

    def __init__(self):
        self.graph: Dict[str, Set[str]] = {}  # {package: {dependencies}}

    def add_package(self, package: str, dependencies: Iterable[str] = ()):
        """Add a package node and its edges. Edges to unknown names are kept
        until prune() runs; build_graph() calls it once every node exists."""
        self.graph.setdefault(package, set()).update(d for d in dependencies if d != package)

    def prune(self):
        """Drop every edge whose target is not a node."""
        for deps in self.graph.values():
            deps.intersection_update(self.graph.keys())

    @property
    def nodes(self) -> List[str]:
        return sorted(self.graph)

    def dependencies_of(self, package: str) -> List[str]:
        return sorted(self.graph.get(package, ()))

    def dependents_of(self, package: str) -> List[str]:
        return sorted(p for p, deps in self.graph.items() if package in deps)

    def edges(self) -> List[Tuple[str, str]]:
        return [(p, d) for p in self.nodes for d in self.dependencies_of(p)]

    def transitive_dependencies(self, package: str) -> Set[str]:
        seen: Set[str] = set()
        stack = list(self.graph.get(package, ()))
        while stack:
            dep = stack.pop()
            if dep in seen:
                continue
            seen.add(dep)
            stack.extend(self.graph.get(dep, ()))
        return seen

    def __contains__(self, package):
        return package in self.graph

    def __len__(self):
        return len(self.graph)

    # -----------------------
    # ordering
    # -----------------------
    def topo_levels(self) -> List[List[str]]:
        """
        Levelize the graph: each level holds the nodes whose dependencies are
        all in earlier levels, sorted by name. Raises GraphError when the
        remaining nodes cannot make progress.
        """
        remaining = {p: set(deps) for p, deps in self.graph.items()}
        levels: List[List[str]] = []
        while remaining:
            ready = sorted(p for p, deps in remaining.items() if not deps)
            if not ready:
                cycles = self._find_cycles(remaining)
                members = sorted({name for cycle in cycles for name in cycle})
                raise GraphError(members or sorted(remaining))
            for p in ready:
                del remaining[p]
            for deps in remaining.values():
                deps.difference_update(ready)
            levels.append(ready)
        return levels

    def topo_sort(self) -> List[str]:
        """
        Return the install order: dependencies always come before the
        packages that need them. Ties are broken by name, so identical graphs
        always give identical orders.
        """
        order: List[str] = []
        for level in self.topo_levels():
            order.extend(level)
        return order

    def detect_cycles(self) -> List[List[str]]:
        """Detect dependency cycles in the graph."""
        return self._find_cycles(self.graph)

    @staticmethod
    def _find_cycles(graph: Dict[str, Set[str]]) -> List[List[str]]:
        white, gray, black = 0, 1, 2
        color = {p: white for p in graph}
        cycles: List[List[str]] = []
        seen_cycles = set()

        for start in sorted(graph):
            if color[start] != white:
                continue
            path = [start]
            stack = [iter(sorted(graph[start]))]
            color[start] = gray
            while stack:
                dep = next(stack[-1], None)
                if dep is None:
                    color[path.pop()] = black
                    stack.pop()
                    continue
                if dep not in color:
                    continue
                if color[dep] == gray:
                    cycle = path[path.index(dep):]
                    key = frozenset(cycle)
                    if key not in seen_cycles:
                        seen_cycles.add(key)
                        cycles.append(cycle)
                elif color[dep] == white:
                    color[dep] = gray
                    path.append(dep)
                    stack.append(iter(sorted(graph[dep])))
        return cycles


def build_graph(records: Iterable[PackageRecord]) -> DependencyGraph:
    """Build the graph for the non-cask records of an inventory."""
    graph = DependencyGraph()
    for record in records:
        if record.is_cask:
            continue
        graph.add_package(record.name, record.dependencies)
    graph.prune()
    return graph
