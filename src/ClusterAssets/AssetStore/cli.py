"""Typer CLI for fetching and inspecting cluster assets.

Example:
    $ cluster-assets fetch "https://example.org/releases/app.tar.gz"
    $ cluster-assets fetch --match 'bin/server$' "sha256:<hex>@https://example.org/app.tgz"
    $ cluster-assets config show
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .errors import AssetStoreError
from .logging_utils import setup_logging
from .settings import get_default_settings
from .sources import source_to_mapping
from .store import AssetStore

_console = Console()
_err_console = Console(stderr=True)

app = typer.Typer(
    name="cluster-assets",
    help="Fetch, verify, and inspect content-addressed cluster assets",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Inspect effective settings", no_args_is_help=True)
app.add_typer(config_app, name="config")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cluster-assets {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR); defaults to settings",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Cluster asset store CLI."""

    logging_config = get_default_settings().logging
    setup_logging(
        level=log_level or logging_config.level,
        log_dir=logging_config.log_dir,
        max_log_size_mb=logging_config.max_log_size_mb,
    )


@app.command()
def fetch(
    identifiers: List[str] = typer.Argument(
        ..., help="Asset identifiers: URL[,URL...] or HASH@URL[,URL...]"
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, "--cache-dir", help="Cache directory (defaults to settings)"
    ),
    match: Optional[str] = typer.Option(
        None, "--match", help="Resolve exactly one asset whose path matches this regex"
    ),
    as_json: bool = typer.Option(False, "--json", help="Emit a JSON provenance manifest"),
) -> None:
    """Register IDENTIFIERS in order and report the resulting assets."""

    store = AssetStore(cache_dir)
    try:
        for identifier in identifiers:
            store.add(identifier)
        if match is not None:
            _, resource = store.find_match(match)
            assets = [resource.asset]
        else:
            assets = list(store.assets)
    except AssetStoreError as exc:
        _err_console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise typer.Exit(1) from exc

    if as_json:
        manifest = [
            {
                "key": asset.key,
                "asset_path": asset.asset_path,
                "source": source_to_mapping(asset.source) if asset.source else None,
            }
            for asset in assets
        ]
        typer.echo(json.dumps(manifest, indent=2))
        return

    table = Table(title=f"Assets in {store.cache_dir}")
    table.add_column("Key", style="cyan")
    table.add_column("Asset path")
    table.add_column("Source", style="dim")
    for asset in assets:
        table.add_row(asset.key, asset.asset_path, str(asset.source) if asset.source else "-")
    _console.print(table)


@config_app.command("show")
def config_show() -> None:
    """Print the effective settings as JSON."""

    typer.echo(get_default_settings().model_dump_json(indent=2))


__all__ = ["app", "config_show", "fetch", "main"]
