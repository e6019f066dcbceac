"""pkgview: visualize the package dependency graph of a Go module."""

__version__ = "0.3.0"
