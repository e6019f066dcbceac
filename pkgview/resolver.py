"""Import resolution: turn an import identifier into package metadata.

``GoSourceResolver`` reads Go sources straight from disk: the module tree,
the standard library under GOROOT, and the module cache. File headers are
parsed with tree-sitter, and files whose build constraints exclude the target
GOOS/GOARCH are left out, as the go tool does. The resolver keeps no mutable
state after construction, so one instance can serve many threads.
"""

from __future__ import annotations

import abc
import logging
import os
import re
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from pkgview.constraint import Expr, from_lines as constraint_from_lines, is_go_build
from pkgview.errors import ConstraintError, ResolutionError
from pkgview.manifest import GoMod
from pkgview.models import PackageInfo

try:
    from tree_sitter_language_pack import get_parser
except ImportError as _err:
    raise ImportError(
        "tree-sitter-language-pack is required. Install with: "
        "pip install tree-sitter-language-pack"
    ) from _err

logger = logging.getLogger(__name__)

# Newest go1.N release tag treated as satisfied
GO_RELEASE = 25

_KNOWN_OS = frozenset({
    "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos", "ios",
    "js", "linux", "nacl", "netbsd", "openbsd", "plan9", "solaris", "wasip1",
    "windows", "zos",
})
_UNIX_OS = frozenset({
    "aix", "android", "darwin", "dragonfly", "freebsd", "hurd", "illumos", "ios",
    "linux", "netbsd", "openbsd", "solaris",
})
_KNOWN_ARCH = frozenset({
    "386", "amd64", "amd64p32", "arm", "armbe", "arm64", "arm64be", "loong64",
    "mips", "mipsle", "mips64", "mips64le", "mips64p32", "mips64p32le", "ppc",
    "ppc64", "ppc64le", "riscv", "riscv64", "s390", "s390x", "sparc", "sparc64",
    "wasm",
})
# GOOS values that also satisfy another OS tag
_IMPLIED_OS = {"android": "linux", "illumos": "solaris", "ios": "darwin"}

_RELEASE_TAG_RE = re.compile(r"^go1\.([0-9]+)$")
_MAJOR_VERSION_RE = re.compile(r"^v[0-9]+$")
_GOPKG_VERSION_RE = re.compile(r"\.v[0-9]+$")

_parsers = threading.local()


class ImportResolver(abc.ABC):
    """Resolves one import identifier into package metadata."""

    @abc.abstractmethod
    def resolve(self, identifier: str, src_dir: Path) -> PackageInfo:
        """Resolve ``identifier`` as imported from ``src_dir``.

        Raises:
            ResolutionError: the identifier cannot be resolved.
        """


@dataclass(frozen=True)
class GoFileHeader:
    package: str
    imports: tuple[str, ...]
    constraint: Expr | None = None


class GoSourceResolver(ImportResolver):
    """Resolver for a Go module laid out on disk.

    ``tags`` are extra build tags treated as satisfied, like ``go build
    -tags``.
    """

    def __init__(
        self,
        module_root: Path,
        gomod: GoMod,
        goroot: Path | None = None,
        modcache: Path | None = None,
        goos: str | None = None,
        goarch: str | None = None,
        tags: Iterable[str] = (),
    ):
        self.module_root = Path(module_root).resolve()
        self.module_path = gomod.module
        self.goroot = goroot
        self.modcache = modcache if modcache is not None else default_modcache()
        self.goos = goos or os.environ.get("GOOS", "linux")
        self.goarch = goarch or os.environ.get("GOARCH", "amd64")
        self.tags = frozenset(tags)
        # Longest module path first so nested modules win
        self._requires = sorted(
            ((r.path, r.version) for r in gomod.requires),
            key=lambda pv: len(pv[0]),
            reverse=True,
        )

    def resolve(self, identifier: str, src_dir: Path) -> PackageInfo:
        if identifier == "C":
            # cgo pseudo-package
            return PackageInfo(import_path="C", name="C", directory=None, goroot=True)

        if is_relative_import(identifier):
            return self._resolve_relative(identifier, Path(src_dir))

        if identifier == self.module_path or identifier.startswith(self.module_path + "/"):
            rest = identifier[len(self.module_path):].lstrip("/")
            return self._read_local(identifier, self.module_root / rest)

        std = self._resolve_std(identifier)
        if std is not None:
            return std

        for mod_path, version in self._requires:
            if identifier == mod_path or identifier.startswith(mod_path + "/"):
                return self._resolve_external(identifier, mod_path, version)

        raise ResolutionError(identifier, f"cannot find package {identifier!r} in module or GOROOT")

    # ── Resolution strategies ──────────────────────────────

    def _resolve_relative(self, identifier: str, src_dir: Path) -> PackageInfo:
        directory = (src_dir / identifier).resolve()
        try:
            rel = directory.relative_to(self.module_root)
        except ValueError:
            raise ResolutionError(identifier, f"{directory} is outside module root {self.module_root}") from None
        import_path = self.module_path
        if rel.parts:
            import_path = f"{self.module_path}/{rel.as_posix()}"
        return self._read_local(import_path, directory)

    def _read_local(self, import_path: str, directory: Path) -> PackageInfo:
        if not directory.is_dir():
            raise ResolutionError(import_path, f"cannot find package in {directory}")
        header = self.read_package(import_path, directory)
        return PackageInfo(
            import_path=import_path,
            name=header.package,
            directory=directory,
            imports=header.imports,
        )

    def _resolve_std(self, identifier: str) -> PackageInfo | None:
        if self.goroot is None:
            # Reserved namespace: std paths never have a dot in the first element
            if "." in identifier.split("/", 1)[0]:
                return None
            return PackageInfo(
                import_path=identifier,
                name=identifier.rsplit("/", 1)[-1],
                directory=None,
                goroot=True,
            )

        directory = self.goroot / "src" / identifier
        if not directory.is_dir():
            return None
        header = self.read_package(identifier, directory)
        return PackageInfo(
            import_path=identifier,
            name=header.package,
            directory=directory,
            goroot=True,
            imports=header.imports,
        )

    def _resolve_external(self, identifier: str, mod_path: str, version: str) -> PackageInfo:
        rest = identifier[len(mod_path):].lstrip("/")
        if self.modcache is not None:
            directory = self.modcache / f"{escape_path(mod_path)}@{escape_path(version)}" / rest
            if directory.is_dir():
                try:
                    header = self.read_package(identifier, directory)
                except ResolutionError as e:
                    logger.debug("module cache copy of %s unusable: %s", identifier, e.cause)
                else:
                    return PackageInfo(
                        import_path=identifier,
                        name=header.package,
                        directory=directory,
                        imports=header.imports,
                    )
        # Not downloaded; external packages are leaves, so a guessed name is enough
        return PackageInfo(import_path=identifier, name=guess_package_name(identifier), directory=None)

    # ── Reading package sources ────────────────────────────

    def read_package(self, import_path: str, directory: Path) -> GoFileHeader:
        """Parse the buildable ``.go`` files of one directory."""
        names: dict[str, str] = {}
        imports: set[str] = set()

        for path in sorted(directory.glob("*.go")):
            if not path.is_file() or not self._buildable_name(path.name):
                continue
            try:
                source = path.read_bytes()
            except OSError as e:
                raise ResolutionError(import_path, e) from e
            try:
                header = parse_go_header(source)
            except ConstraintError as e:
                raise ResolutionError(import_path, f"{path}: {e}") from e
            if not header.package:
                raise ResolutionError(import_path, f"{path}: expected 'package' clause")
            if not self.satisfies(header.constraint):
                logger.debug("%s excluded by build constraint %s", path, header.constraint)
                continue
            names.setdefault(header.package, path.name)
            imports.update(header.imports)

        if not names:
            raise ResolutionError(import_path, f"no buildable Go source files in {directory}")
        if len(names) > 1:
            found = ", ".join(f"{pkg} ({fname})" for pkg, fname in names.items())
            raise ResolutionError(import_path, f"found packages {found} in {directory}")

        return GoFileHeader(package=next(iter(names)), imports=tuple(sorted(imports)))

    # ── Build constraints ──────────────────────────────────

    def match_tag(self, tag: str) -> bool:
        """Whether one build tag holds for this resolver's target."""
        if tag in self.tags or tag in (self.goos, self.goarch, "gc"):
            return True
        if _IMPLIED_OS.get(self.goos) == tag:
            return True
        if tag == "unix":
            return self.goos in _UNIX_OS
        m = _RELEASE_TAG_RE.match(tag)
        if m:
            return int(m.group(1)) <= GO_RELEASE
        return False

    def satisfies(self, constraint: Expr | None) -> bool:
        return constraint is None or constraint.eval(self.match_tag)

    def _buildable_name(self, filename: str) -> bool:
        if filename.startswith(("_", ".")) or filename.endswith("_test.go"):
            return False
        parts = filename[:-len(".go")].split("_")
        if len(parts) >= 3 and parts[-2] in _KNOWN_OS and parts[-1] in _KNOWN_ARCH:
            return self.match_tag(parts[-2]) and self.match_tag(parts[-1])
        if len(parts) >= 2 and (parts[-1] in _KNOWN_OS or parts[-1] in _KNOWN_ARCH):
            return self.match_tag(parts[-1])
        return True


def parse_go_header(source: str | bytes) -> GoFileHeader:
    """Read the build constraint, package clause and imports of one Go file.

    Only the file header is looked at: scanning stops at the first top-level
    node that is neither a comment, the package clause nor an import
    declaration.

    Raises:
        ConstraintError: a build constraint comment is malformed.
    """
    source_bytes = source.encode("utf-8") if isinstance(source, str) else source
    tree = _go_parser().parse(source_bytes)

    leading = []
    package_clause = None
    imports: list[str] = []
    for child in tree.root_node.children:
        if not child.is_named:
            # ";" and newline terminators
            continue
        if child.type == "comment":
            if package_clause is None:
                leading.append(child)
            continue
        if child.type == "package_clause" and package_clause is None:
            package_clause = child
            continue
        if child.type == "import_declaration" and package_clause is not None:
            imports.extend(_import_paths(child))
            continue
        break

    if package_clause is None:
        return GoFileHeader(package="", imports=())

    constraint = constraint_from_lines(_constraint_lines(source_bytes, leading, package_clause))
    return GoFileHeader(
        package=_package_name(package_clause),
        imports=tuple(imp for imp in imports if imp),
        constraint=constraint,
    )


def _go_parser():
    # A parser must not be shared between threads
    parser = getattr(_parsers, "go", None)
    if parser is None:
        parser = _parsers.go = get_parser("go")
    return parser


def _node_text(node) -> str:
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def _package_name(clause) -> str:
    for child in clause.children:
        if child.type == "package_identifier":
            return _node_text(child)
    return ""


def _import_paths(decl):
    specs = []
    for child in decl.children:
        if child.type == "import_spec":
            specs.append(child)
        elif child.type == "import_spec_list":
            specs.extend(c for c in child.children if c.type == "import_spec")
    for spec in specs:
        path = spec.child_by_field_name("path")
        if path is not None:
            # Import paths never contain escapes, so both literal forms just drop quotes
            yield _node_text(path)[1:-1]


def _constraint_lines(source_bytes: bytes, leading, package_clause) -> list[str]:
    """Line comments in the header that may carry build constraints.

    A ``//go:build`` line counts anywhere before the package clause. Legacy
    ``// +build`` lines only count above the last blank line before it, so
    the package doc comment is never read as a constraint.
    """
    lines = source_bytes.decode("utf-8", errors="replace").splitlines()
    package_row = package_clause.start_point[0]
    blank_rows = [row for row in range(min(package_row, len(lines))) if not lines[row].strip()]
    cutoff = blank_rows[-1] if blank_rows else -1

    found = []
    for comment in leading:
        text = _node_text(comment).rstrip()
        if not text.startswith("//"):
            continue
        if is_go_build(text) or comment.end_point[0] < cutoff:
            found.append(text)
    return found


def is_relative_import(identifier: str) -> bool:
    return identifier in (".", "..") or identifier.startswith(("./", "../"))


def escape_path(path: str) -> str:
    """Module cache escaping: upper case letters become ``!`` + lower case."""
    return "".join(f"!{c.lower()}" if c.isupper() else c for c in path)


def guess_package_name(import_path: str) -> str:
    """Best guess at a package name from its import path alone."""
    elems = import_path.split("/")
    name = elems[-1]
    if _MAJOR_VERSION_RE.match(name) and len(elems) > 1:
        name = elems[-2]
    name = _GOPKG_VERSION_RE.sub("", name)
    if name.startswith("go-"):
        name = name[len("go-"):]
    return name.replace("-", "_").replace(".", "_")


def default_modcache() -> Path | None:
    if os.environ.get("GOMODCACHE"):
        return Path(os.environ["GOMODCACHE"])
    gopath = os.environ.get("GOPATH", "")
    if gopath:
        return Path(gopath.split(os.pathsep)[0]) / "pkg" / "mod"
    return Path.home() / "go" / "pkg" / "mod"


def detect_goroot() -> Path | None:
    """Locate GOROOT from the environment or the ``go`` tool."""
    env = os.environ.get("GOROOT")
    if env and Path(env).is_dir():
        return Path(env)

    go = shutil.which("go")
    if go is None:
        logger.info("go toolchain not found; standard packages detected by path shape")
        return None
    try:
        out = subprocess.run(
            [go, "env", "GOROOT"], capture_output=True, text=True, timeout=10, check=True,
        ).stdout.strip()
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("go env GOROOT failed: %s", e)
        return None
    return Path(out) if out and Path(out).is_dir() else None
