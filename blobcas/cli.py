"""CLI for blobcas.

Commands:
    serve            - Run the HTTP server
    put <file>       - Store a local file
    ls               - List stored entries
    verify           - Check stored content against its identifiers
    prune            - Remove dangling alias links and stale staging files
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Optional

import anyio
import typer
from rich.console import Console
from rich.table import Table

from blobcas.config import settings
from blobcas.errors import AliasConflict, BlobStoreError
from blobcas.ingestor import ContentIngestor
from blobcas.repository import BlobRepository
from blobcas.store_entry import StoreEntry

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="blobcas",
    help="blobcas — content-addressed blob store",
    no_args_is_help=True,
)
console = Console()

DataDirOption = Annotated[
    Optional[Path],
    typer.Option("--data-dir", "-d", help="Storage directory (default: $DATA_DIR)"),
]


def _repository(data_dir: Path | None) -> BlobRepository:
    return BlobRepository(data_dir or settings.data_dir)


def _configure_logging() -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )


@app.command()
def serve(
    data_dir: DataDirOption = None,
    host: Annotated[Optional[str], typer.Option(help="Listen host")] = None,
    port: Annotated[Optional[int], typer.Option(help="Listen port")] = None,
):
    """Run the HTTP server, over TLS when USE_HTTPS is set."""
    import uvicorn

    from blobcas.app import create_app

    _configure_logging()

    overrides = {
        key: value
        for key, value in {"data_dir": data_dir, "host": host, "port": port}.items()
        if value is not None
    }
    server_settings = settings.model_copy(update=overrides)

    ssl_options = {}
    if server_settings.use_https:
        if not server_settings.ssl_key_path.is_file():
            logger.error("SSL private key not found: %s", server_settings.ssl_key_path)
            logger.error(
                "To generate a self-signed certificate for testing:\n"
                "  mkdir -p ssl\n"
                "  openssl req -x509 -newkey rsa:4096 -keyout ssl/private.key "
                "-out ssl/certificate.crt -days 365 -nodes"
            )
            raise typer.Exit(1)
        if not server_settings.ssl_cert_path.is_file():
            logger.error("SSL certificate not found: %s", server_settings.ssl_cert_path)
            raise typer.Exit(1)

        ssl_options["ssl_keyfile"] = str(server_settings.ssl_key_path)
        ssl_options["ssl_certfile"] = str(server_settings.ssl_cert_path)
        if server_settings.ssl_ca_path and server_settings.ssl_ca_path.is_file():
            ssl_options["ssl_ca_certs"] = str(server_settings.ssl_ca_path)

    scheme = "https" if ssl_options else "http"
    logger.info(
        "Serving %s on %s://%s:%d",
        server_settings.data_dir,
        scheme,
        server_settings.host,
        server_settings.port,
    )
    uvicorn.run(
        create_app(server_settings),
        host=server_settings.host,
        port=server_settings.port,
        log_level=server_settings.log_level.lower(),
        **ssl_options,
    )


@app.command()
def put(
    path: Annotated[Path, typer.Argument(help="File to store")],
    secret: Annotated[
        Optional[str], typer.Option("--secret", "-s", help="Alphanumeric alias")
    ] = None,
    data_dir: DataDirOption = None,
):
    """Store a local file and print its identifier."""
    if not path.is_file():
        console.print(f"[red]Error:[/red] Not a file: {path}")
        raise typer.Exit(1)

    ingestor = ContentIngestor(_repository(data_dir), chunk_size=settings.chunk_size)

    try:
        # blank secrets count as absent, as over HTTP
        entry = anyio.run(ingestor.ingest_path, path.resolve(), secret or None)
    except AliasConflict as exc:
        console.print(f"[yellow]Warning:[/yellow] {exc}")
        console.print(exc.entry.identifier)
        raise typer.Exit(1)
    except BlobStoreError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    if entry.is_duplicate:
        console.print(f"[yellow]{entry.name} was already stored[/yellow]")
    console.print(entry.identifier)


@app.command("ls")
def list_entries(data_dir: DataDirOption = None):
    """List stored entries."""
    repository = _repository(data_dir)

    async def _collect() -> list[StoreEntry]:
        return [entry async for entry in repository]

    entries = sorted(anyio.run(_collect), key=lambda entry: entry.name)

    table = Table(title=f"Entries in {repository.root}")
    table.add_column("ID")
    table.add_column("Alias")
    table.add_column("Size", justify="right")
    for entry in entries:
        table.add_row(entry.identifier, entry.alias or "", str(entry.size))
    console.print(table)
    console.print(f"[bold]Total:[/bold] {len(entries)} entries, {sum(e.size or 0 for e in entries)} bytes")


@app.command()
def verify(data_dir: DataDirOption = None):
    """Recompute checksums of stored content and report mismatches."""
    repository = _repository(data_dir)

    async def _verify() -> tuple[list[tuple[StoreEntry, str]], list[str]]:
        corrupted = [item async for item in repository.corrupted()]
        dangling = [name async for name in repository.dangling_links()]
        return corrupted, dangling

    corrupted, dangling = anyio.run(_verify)

    for entry, actual in corrupted:
        console.print(f"[red]CORRUPT[/red] {entry.name} (content hashes to {actual})")
    for name in dangling:
        console.print(f"[yellow]DANGLING[/yellow] {name}")

    if corrupted:
        raise typer.Exit(1)
    console.print("[green]OK[/green]")


@app.command()
def prune(
    max_age: Annotated[
        float, typer.Option(help="Remove staging files older than this, in seconds")
    ] = 3600,
    data_dir: DataDirOption = None,
):
    """Remove dangling alias links and stale staging files."""
    removed = anyio.run(_repository(data_dir).prune, max_age)
    console.print(f"Removed {removed} file(s)")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
