"""Prefix tree over slash-separated import paths.

Lookups cost O(m) in the path length, independent of how many paths were
inserted. Used to decide whether an import path belongs to a module
declared in go.mod.
"""

from __future__ import annotations

from typing import Iterator


class PathTrie:
    """Trie keyed by path segments.

    A node's ``children`` stays ``None`` until something is inserted below
    it, which is how leaves are told apart from interior nodes. The root
    starts with an empty mapping so that an empty trie matches nothing.
    """

    __slots__ = ("children",)

    def __init__(self, _root: bool = True):
        self.children: dict[str, PathTrie] | None = {} if _root else None

    def put(self, import_path: str) -> None:
        """Insert a path. Inserting the same path twice is a no-op."""
        node = self
        for seg in segments(import_path):
            if node.children is None:
                node.children = {}
            child = node.children.get(seg)
            if child is None:
                child = PathTrie(_root=False)
                node.children[seg] = child
            node = child

    def has_prefix(self, import_path: str) -> bool:
        """Check whether a path exists, or could exist, in the trie.

        With ``a/b/c`` inserted:

        - ``a/b`` is True (ancestor of an entry).
        - ``a/b/c/d`` is True (continuation below a leaf).
        - ``a/b/f`` is False (``b`` has children, none of them ``/f``).

        go.mod lists ``github.com/a/b`` but code imports
        ``github.com/a/b/baz``, which is still part of that module.
        """
        if not import_path:
            return False
        node = self
        for seg in segments(import_path):
            if node.children is None:
                return True
            child = node.children.get(seg)
            if child is None:
                return False
            node = child
        return True

    def count(self) -> int:
        """Total number of nodes, root included."""
        total = 1
        for child in (self.children or {}).values():
            total += child.count()
        return total

    def __str__(self) -> str:
        lines: list[str] = []
        _draw(lines, self, "", True, "(root)")
        return "\n".join(lines) + "\n"


def segments(path: str) -> Iterator[str]:
    """Split ``a/b/c`` into ``a``, ``/b``, ``/c``.

    Every segment after the first keeps its leading slash, so ``a/bc`` and
    ``a/b`` + ``c`` never collide. ``/a/b`` yields ``/a``, ``/b``.
    """
    start = 0
    while start < len(path):
        end = path.find("/", start + 1)
        if end == -1:
            yield path[start:]
            return
        yield path[start:end]
        start = end


def _draw(lines: list[str], node: PathTrie, prefix: str, is_last: bool, label: str) -> None:
    lines.append(prefix + ("└── " if is_last else "├── ") + label)
    keys = sorted(node.children or {})
    child_prefix = prefix + ("    " if is_last else "│   ")
    for i, key in enumerate(keys):
        _draw(lines, node.children[key], child_prefix, i == len(keys) - 1, key)
