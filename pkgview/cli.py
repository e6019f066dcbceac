"""Click CLI with serve, graph, and requires subcommands."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from pkgview import __version__
from pkgview.errors import PkgviewError
from pkgview.graph import DEFAULT_MAX_WORKERS, build_graph
from pkgview.manifest import build_index, parse_go_mod
from pkgview.models import Graph, GraphConfig

_DIR = click.Path(exists=True, file_okay=False, path_type=Path)
_FILE = click.Path(dir_okay=False, path_type=Path)


def _build_options(func):
    """Options shared by every command that builds a graph."""
    options = [
        click.option("--root", type=_DIR, default=".", envvar="GO_PKGVIEW_ROOT",
                     show_default=True, help="Package directory to start from"),
        click.option("--gomod", type=_FILE, envvar="GO_PKGVIEW_GOMOD",
                     help="Path to go.mod used to detect external dependencies [default: <root>/go.mod]"),
        click.option("--goroot", type=_DIR, envvar="GOROOT",
                     help="Go installation used to detect standard packages"),
        click.option("--max-workers", type=click.IntRange(min=1), default=DEFAULT_MAX_WORKERS,
                     envvar="GO_PKGVIEW_MAX_WORKERS", show_default=True,
                     help="Maximum number of packages resolved in parallel"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build(root: Path, gomod: Path | None, goroot: Path | None, max_workers: int) -> Graph:
    config = GraphConfig(root=root, gomod=gomod, max_workers=max_workers, goroot=goroot)
    try:
        return build_graph(config)
    except PkgviewError as e:
        raise click.ClickException(f"failed to build graph: {e}")


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Log every resolved package")
def cli(verbose: bool):
    """pkgview: Show the package dependencies of a Go module."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@cli.command()
@_build_options
@click.option("--port", "-p", default=8420, envvar="GO_PKGVIEW_PORT", help="Port number")
@click.option("--host", default="127.0.0.1", envvar="GO_PKGVIEW_HOST", help="Host address")
@click.option("--open/--no-open", default=True, help="Open browser automatically")
@click.option("--skip-browser", is_flag=True, envvar="GO_PKGVIEW_SKIP_BROWSER", hidden=True)
def serve(root: Path, gomod: Path | None, goroot: Path | None, max_workers: int,
          port: int, host: str, open: bool, skip_browser: bool):
    """Build the graph and serve it in the web viewer."""
    import uvicorn

    from pkgview.web import create_app

    graph = _build(root, gomod, goroot, max_workers)
    click.echo(f"Serving {len(graph.nodes)} packages at http://{host}:{port}")

    if open and not skip_browser:
        import threading
        import webbrowser
        threading.Timer(1.0, lambda: webbrowser.open(f"http://{host}:{port}")).start()

    uvicorn.run(create_app(graph), host=host, port=port, log_level="info")


@cli.command()
@_build_options
@click.option("-o", "--output", "output", type=_FILE, help="Write JSON here instead of stdout")
@click.option("--indent", type=int, default=None, help="Pretty-print with this indent")
def graph(root: Path, gomod: Path | None, goroot: Path | None, max_workers: int,
          output: Path | None, indent: int | None):
    """Build the graph and print it as JSON."""
    result = _build(root, gomod, goroot, max_workers)
    payload = json.dumps(result.to_dict(), indent=indent)

    if output is None:
        click.echo(payload)
        return
    output.write_text(payload + "\n", encoding="utf-8")
    click.echo(f"Wrote {len(result.nodes)} nodes and {len(result.edges)} edges to {output}", err=True)


@cli.command()
@click.argument("gomod", type=_FILE, default="go.mod")
def requires(gomod: Path):
    """List the requirements of a go.mod and their prefix index."""
    try:
        mod = parse_go_mod(gomod)
    except PkgviewError as e:
        raise click.ClickException(str(e))

    click.echo(click.style(mod.module, fg="cyan"))
    if not mod.requires:
        click.echo("No requirements declared.")
        return

    for req in mod.requires:
        note = click.style("  // indirect", dim=True) if req.indirect else ""
        click.echo(f"  {req.path} {req.version}{note}")

    index = build_index(mod.require_paths())
    click.echo(f"\nIndex ({index.count()} nodes):")
    click.echo(str(index), nl=False)


if __name__ == "__main__":
    cli()
