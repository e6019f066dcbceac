"""Web front end serving the dependency graph."""

from pkgview.web.app import create_app

__all__ = ["create_app"]
