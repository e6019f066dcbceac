"""go.mod parser: module path, requirements, and the requirement prefix index."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from pkgview.errors import ManifestError
from pkgview.trie import PathTrie

logger = logging.getLogger(__name__)

_DIRECTIVES = frozenset({
    "module", "go", "toolchain", "godebug",
    "require", "exclude", "replace", "retract",
})

_TOKEN_RE = re.compile(r'//.*|"(?:[^"\\]|\\.)*"|`[^`]*`|[()]|[^\s()"`]+')


@dataclass(frozen=True)
class Requirement:
    path: str
    version: str
    indirect: bool = False


@dataclass(frozen=True)
class Replacement:
    old_path: str
    old_version: str | None
    new_path: str
    new_version: str | None


@dataclass
class GoMod:
    """Parsed go.mod contents."""
    module: str = ""
    go_version: str | None = None
    toolchain: str | None = None
    requires: list[Requirement] = field(default_factory=list)
    excludes: list[Requirement] = field(default_factory=list)
    replaces: list[Replacement] = field(default_factory=list)

    def require_paths(self) -> list[str]:
        return [r.path for r in self.requires]


def parse_go_mod(path: Path) -> GoMod:
    """Read and parse a go.mod file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"failed to read {path}: {e}") from e
    return parse_go_mod_text(text, filename=str(path))


def parse_requirements(path: Path) -> list[str]:
    """Required module paths from a go.mod file, in declaration order."""
    return parse_go_mod(path).require_paths()


def build_index(paths: list[str]) -> PathTrie:
    """Build the prefix index over declared requirement paths."""
    index = PathTrie()
    for p in paths:
        index.put(p)
    return index


def parse_go_mod_text(text: str, filename: str = "go.mod") -> GoMod:
    mod = GoMod()
    block: str | None = None
    block_start = 0

    for lineno, raw in enumerate(text.splitlines(), 1):
        tokens, comment = _tokenize(raw, filename, lineno)
        if not tokens:
            continue

        if block is not None:
            if tokens == [")"]:
                block = None
                continue
            _apply(mod, block, tokens, comment, filename, lineno)
            continue

        verb, args = tokens[0], tokens[1:]
        if verb not in _DIRECTIVES:
            raise ManifestError(f"{filename}:{lineno}: unknown directive: {verb}")
        if args == ["("]:
            block, block_start = verb, lineno
            continue
        if args == ["(", ")"]:
            continue
        _apply(mod, verb, args, comment, filename, lineno)

    if block is not None:
        raise ManifestError(f"{filename}:{block_start}: unterminated {block} block")
    if not mod.module:
        raise ManifestError(f"{filename}: no module declaration")

    logger.debug("parsed %s: module %s, %d requirement(s)", filename, mod.module, len(mod.requires))
    return mod


def _apply(mod: GoMod, verb: str, args: list[str], comment: str, filename: str, lineno: int) -> None:
    where = f"{filename}:{lineno}"

    if verb == "module":
        if len(args) != 1:
            raise ManifestError(f"{where}: usage: module module/path")
        if mod.module:
            raise ManifestError(f"{where}: repeated module statement")
        mod.module = args[0]
    elif verb == "go":
        if len(args) != 1:
            raise ManifestError(f"{where}: usage: go 1.23")
        mod.go_version = args[0]
    elif verb == "toolchain":
        if len(args) != 1:
            raise ManifestError(f"{where}: usage: toolchain go1.23.1")
        mod.toolchain = args[0]
    elif verb in ("require", "exclude"):
        if len(args) != 2:
            raise ManifestError(f"{where}: usage: {verb} module/path v1.2.3")
        indirect = comment == "indirect" or comment.startswith("indirect;")
        target = mod.requires if verb == "require" else mod.excludes
        target.append(Requirement(path=args[0], version=args[1], indirect=indirect))
    elif verb == "replace":
        mod.replaces.append(_parse_replace(args, where))
    # godebug and retract carry nothing the graph needs


def _parse_replace(args: list[str], where: str) -> Replacement:
    if "=>" not in args:
        raise ManifestError(f"{where}: usage: replace module/path [v1.2.3] => other/module v1.4")
    arrow = args.index("=>")
    old, new = args[:arrow], args[arrow + 1:]
    if len(old) not in (1, 2) or len(new) not in (1, 2):
        raise ManifestError(f"{where}: usage: replace module/path [v1.2.3] => other/module v1.4")
    return Replacement(
        old_path=old[0],
        old_version=old[1] if len(old) == 2 else None,
        new_path=new[0],
        new_version=new[1] if len(new) == 2 else None,
    )


def _tokenize(line: str, filename: str, lineno: int) -> tuple[list[str], str]:
    """Split one go.mod line into tokens and its trailing ``//`` comment."""
    tokens: list[str] = []
    comment = ""
    for m in _TOKEN_RE.finditer(line):
        tok = m.group(0)
        if tok.startswith("//"):
            comment = tok[2:].strip()
            break
        if tok.startswith('"'):
            try:
                tok = json.loads(tok)
            except ValueError:
                raise ManifestError(f"{filename}:{lineno}: invalid quoted string {tok}") from None
        elif tok.startswith("`"):
            tok = tok[1:-1]
        tokens.append(tok)
    return tokens, comment
