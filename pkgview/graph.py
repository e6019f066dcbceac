"""Concurrent dependency graph builder.

Starting from the root package, every local package's imports are resolved
on a bounded thread pool. Each import path is resolved at most once per
build, no matter how many packages import it or how many threads discover
it at the same time. Standard and external packages are recorded as leaves;
only local packages are expanded.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pkgview.errors import BuildCancelled, ConcurrencyInvariantViolation, ResolutionError
from pkgview.manifest import build_index, parse_go_mod
from pkgview.models import Edge, Graph, GraphConfig, Node, PackageInfo, PackageType
from pkgview.resolver import GoSourceResolver, ImportResolver, detect_goroot, is_relative_import
from pkgview.trie import PathTrie

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 20
ROOT_PACKAGE = "."


class _InFlight:
    """Wait group over scheduled tasks that have not finished yet."""

    def __init__(self):
        self._count = 0
        self._cond = threading.Condition()

    def add(self) -> None:
        with self._cond:
            self._count += 1

    def done(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def wait(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._count == 0)


class _GraphAccumulator:
    """Shared build state. Every field is guarded by the one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._visited: set[str] = set()
        self._recorded: set[str] = set()
        self._nodes: list[Node] = []
        self._edges: list[Edge] = []
        self._errors: list[Exception] = []

    def claim(self, import_path: str) -> bool:
        """Mark a path as dispatched. False if it already was."""
        with self._lock:
            if import_path in self._visited:
                return False
            self._visited.add(import_path)
            return True

    def add_node(self, node: Node) -> None:
        with self._lock:
            if node.import_path in self._recorded:
                raise ConcurrencyInvariantViolation(f"node recorded twice: {node.import_path}")
            self._recorded.add(node.import_path)
            self._nodes.append(node)

    def add_edge(self, edge: Edge) -> None:
        with self._lock:
            self._edges.append(edge)

    def add_error(self, exc: Exception) -> None:
        with self._lock:
            self._errors.append(exc)

    def first_error(self) -> Exception | None:
        with self._lock:
            return self._errors[0] if self._errors else None

    def snapshot(self) -> Graph:
        with self._lock:
            return Graph(nodes=tuple(self._nodes), edges=tuple(self._edges))


def visit_key(identifier: str, src_dir: Path) -> str:
    """Key under which an import is claimed in the visited set.

    Relative imports name a directory, so the same identifier seen from two
    packages can be two different packages.
    """
    if is_relative_import(identifier):
        return (Path(src_dir) / identifier).resolve().as_posix()
    return identifier


class GraphBuilder:
    """Build the import graph of a module with bounded parallelism.

    Args:
        resolver: Resolves import identifiers; called from many threads.
        index: Prefix index over the module's declared requirements. Only
            read during a build.
        max_workers: Maximum number of resolutions running at once.
    """

    def __init__(self, resolver: ImportResolver, index: PathTrie, max_workers: int = DEFAULT_MAX_WORKERS):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.resolver = resolver
        self.index = index
        self.max_workers = max_workers

    def classify(self, info: PackageInfo) -> PackageType:
        if info.goroot:
            return PackageType.STD_LIB
        if self.index.has_prefix(info.import_path):
            return PackageType.EXT_LIB
        return PackageType.LOCAL

    def build(
        self,
        root_dir: Path,
        root: str = ROOT_PACKAGE,
        cancel: threading.Event | None = None,
    ) -> Graph:
        """Resolve everything reachable from ``root`` and return the graph.

        Returns only after every spawned task has finished. If ``cancel`` is
        set mid-build, queued tasks are abandoned and ``BuildCancelled`` is
        raised instead of returning a partial graph.
        """
        acc = _GraphAccumulator()
        in_flight = _InFlight()

        logger.info("Creating graph from %s (max %d workers)", root_dir, self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pkgview-resolve") as pool:
            run = _BuildRun(self, pool, acc, in_flight, cancel)
            run.schedule(root, Path(root_dir))
            in_flight.wait()

        if cancel is not None and cancel.is_set():
            raise BuildCancelled("graph build cancelled")
        error = acc.first_error()
        if error is not None:
            raise error

        graph = acc.snapshot()
        logger.info("Graph created: %d nodes, %d edges", len(graph.nodes), len(graph.edges))
        return graph


class _BuildRun:
    """Task scheduling for one build."""

    def __init__(
        self,
        builder: GraphBuilder,
        pool: ThreadPoolExecutor,
        acc: _GraphAccumulator,
        in_flight: _InFlight,
        cancel: threading.Event | None,
    ):
        self.builder = builder
        self.pool = pool
        self.acc = acc
        self.in_flight = in_flight
        self.cancel = cancel

    def schedule(self, identifier: str, src_dir: Path) -> None:
        key = visit_key(identifier, src_dir)
        if not self.acc.claim(key):
            return
        self.in_flight.add()
        try:
            self.pool.submit(self.visit, identifier, src_dir, key)
        except RuntimeError:
            self.in_flight.done()
            raise

    def visit(self, identifier: str, src_dir: Path, key: str) -> None:
        try:
            if self.cancel is not None and self.cancel.is_set():
                return
            self._visit(identifier, src_dir, key)
        except Exception as e:
            logger.exception("Unexpected error while resolving %s", identifier)
            self.acc.add_error(e)
        finally:
            self.in_flight.done()

    def _visit(self, identifier: str, src_dir: Path, key: str) -> None:
        logger.debug("resolving %s from %s", identifier, src_dir)
        try:
            info = self.builder.resolver.resolve(identifier, src_dir)
        except ResolutionError as e:
            logger.warning("failed to import %s: %s", identifier, e.cause)
            # The same relative import may fail from several directories
            if identifier != key and not self.acc.claim(identifier):
                return
            self.acc.add_node(Node(import_path=identifier, name=f"[err] {identifier}", pkg_type=PackageType.ERR))
            return

        # The root is requested as "." but recorded under its real import path
        if info.import_path != key and not self.acc.claim(info.import_path):
            logger.debug("%s resolved to already visited %s", identifier, info.import_path)
            return

        pkg_type = self.builder.classify(info)
        self.acc.add_node(Node(import_path=info.import_path, name=info.name, pkg_type=pkg_type))

        # Standard and external packages stay leaves
        if pkg_type is not PackageType.LOCAL:
            return

        next_dir = info.directory if info.directory is not None else src_dir
        for imp in info.imports:
            self.acc.add_edge(Edge(from_path=info.import_path, to_path=imp))
            self.schedule(imp, next_dir)


def build_graph(
    config: GraphConfig,
    resolver: ImportResolver | None = None,
    cancel: threading.Event | None = None,
) -> Graph:
    """Parse go.mod, build the requirement index, and build the graph.

    Raises:
        ManifestError: go.mod is missing or malformed.
    """
    gomod_path = config.gomod_path
    gomod = parse_go_mod(gomod_path)
    index = build_index(gomod.require_paths())

    if resolver is None:
        goroot = config.goroot if config.goroot is not None else detect_goroot()
        resolver = GoSourceResolver(gomod_path.parent, gomod, goroot=goroot)

    builder = GraphBuilder(resolver, index, max_workers=config.max_workers)
    return builder.build(Path(config.root).resolve(), cancel=cancel)
