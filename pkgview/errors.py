"""Exception hierarchy for graph building."""

from __future__ import annotations


class PkgviewError(Exception):
    """Base class for all pkgview errors."""


class ManifestError(PkgviewError):
    """The module descriptor (go.mod) is missing or malformed."""


class ResolutionError(PkgviewError):
    """A single package identifier could not be resolved."""

    def __init__(self, identifier: str, cause: str | BaseException):
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"failed to import {identifier}: {cause}")


class ConstraintError(PkgviewError):
    """A //go:build or // +build comment is malformed."""


class ConcurrencyInvariantViolation(PkgviewError):
    """An import path was recorded twice during one build."""


class BuildCancelled(PkgviewError):
    """The build was cancelled before all tasks finished."""
