"""Grafo de dependências de um lote (aresta: dependente -> dependência)."""
from __future__ import annotations

from typing import Dict, Generic, Hashable, Iterator, List, Optional, Set, TypeVar

from .errors import CycleDetected

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class DependencyGraph(Generic[K, V]):
    def __init__(self) -> None:
        self._values: Dict[K, V] = {}
        self._children: Dict[K, List[K]] = {}   # dependências
        self._parents: Dict[K, List[K]] = {}    # dependentes

    def add_vertex(self, key: K, value: V) -> None:
        if key in self._values:
            raise KeyError(f"vértice duplicado: {key}")
        self._values[key] = value
        self._children[key] = []
        self._parents[key] = []

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[K]:
        return iter(self._values)

    def value(self, key: K) -> V:
        return self._values[key]

    def children(self, key: K) -> List[K]:
        return list(self._children[key])

    def parents(self, key: K) -> List[K]:
        return list(self._parents[key])

    def _path(self, start: K, goal: K) -> Optional[List[K]]:
        # DFS seguindo arestas de dependência
        stack = [(start, [start])]
        seen: Set[K] = set()
        while stack:
            node, path = stack.pop()
            if node == goal:
                return path
            if node in seen:
                continue
            seen.add(node)
            for child in self._children[node]:
                stack.append((child, path + [child]))
        return None

    def add_edge(self, dependent: K, dependency: K) -> None:
        """Adiciona a aresta; rejeita qualquer aresta que feche um ciclo."""
        for k in (dependent, dependency):
            if k not in self._values:
                raise KeyError(f"vértice desconhecido: {k}")
        if dependency in self._children[dependent]:
            return
        back = self._path(dependency, dependent)
        if back is not None:
            raise CycleDetected([dependent] + back)
        self._children[dependent].append(dependency)
        self._parents[dependency].append(dependent)

    def sinks(self) -> List[K]:
        """Vértices sem dependências dentro do lote."""
        return [k for k in self._values if not self._children[k]]

    def topological_order(self) -> List[K]:
        """Dependências antes dos dependentes."""
        temp: Set[K] = set()
        perm: Set[K] = set()
        order: List[K] = []

        def dfs(n: K) -> None:
            if n in perm:
                return
            if n in temp:
                raise CycleDetected([n])
            temp.add(n)
            for d in self._children[n]:
                dfs(d)
            temp.remove(n)
            perm.add(n)
            order.append(n)

        for n in self._values:
            dfs(n)
        return order
