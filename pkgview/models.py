"""Data models for the package dependency graph."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class PackageType(enum.Enum):
    STD_LIB = "std"
    EXT_LIB = "ext"
    LOCAL = "loc"
    ERR = "err"


@dataclass(frozen=True)
class Node:
    import_path: str
    name: str
    pkg_type: PackageType


@dataclass(frozen=True)
class Edge:
    """``from_path`` imports ``to_path``."""
    from_path: str
    to_path: str


@dataclass(frozen=True)
class PackageInfo:
    """Result from the import resolver."""
    import_path: str
    name: str
    directory: Path | None
    goroot: bool = False  # part of the standard distribution
    imports: tuple[str, ...] = ()


@dataclass(frozen=True)
class Graph:
    """Finished dependency graph, nodes and edges in discovery order.

    Edges are the source of truth for topology. An edge may point at an
    import path that has no node, so ``node()`` lookups are best-effort.
    """
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()

    def node(self, import_path: str) -> Node | None:
        for n in self.nodes:
            if n.import_path == import_path:
                return n
        return None

    def nodes_by_type(self) -> dict[PackageType, list[Node]]:
        grouped: dict[PackageType, list[Node]] = {t: [] for t in PackageType}
        for n in self.nodes:
            grouped[n.pkg_type].append(n)
        return grouped

    def to_dict(self) -> dict[str, Any]:
        """Wire payload consumed by the web viewer."""
        return {
            "nodes": [
                {"ImportPath": n.import_path, "Name": n.name, "PkgType": n.pkg_type.value}
                for n in self.nodes
            ],
            "edges": [{"From": e.from_path, "To": e.to_path} for e in self.edges],
        }


@dataclass
class GraphConfig:
    """Configuration for one graph build."""
    root: Path = field(default_factory=lambda: Path("."))
    gomod: Path | None = None  # defaults to <root>/go.mod
    max_workers: int = 20
    goroot: Path | None = None

    @property
    def gomod_path(self) -> Path:
        if self.gomod is not None:
            return self.gomod
        return self.root / "go.mod"
