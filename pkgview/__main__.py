"""Allow running as `python -m pkgview`."""

from pkgview.cli import cli

cli()
