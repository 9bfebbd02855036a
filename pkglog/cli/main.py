"""
pkglog CLI - read-only diagnostics over a local storage directory.

    pkglog checkpoint           last trusted checkpoint
    pkglog packages             tracked package logs
    pkglog log <package>        records and releases of one package
"""

import json
import os
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from pkglog import __version__
from pkglog.config import ClientConfig
from pkglog.core.errors import PkglogError
from pkglog.core.ids import PackageId
from pkglog.storage.file_store import FileRegistryStorage

app = typer.Typer(
    name="pkglog",
    help="Transparency log registry client diagnostics",
    add_completion=False,
)

console = Console()

StorageOption = typer.Option(
    None,
    "--storage",
    "-s",
    help="Storage directory (default: $PKGLOG_STORAGE_DIR or ~/.pkglog)",
)
JsonOption = typer.Option(False, "--json", help="Output as JSON")


def _registry(storage: Optional[str]) -> FileRegistryStorage:
    root = storage or ClientConfig.from_env().storage_dir
    path = os.path.join(root, "registry")
    if not os.path.isdir(path):
        raise FileNotFoundError(path)
    return FileRegistryStorage(path)


def _fail(message: str, json_output: bool, code: int = 2) -> None:
    if json_output:
        print(json.dumps({"error": message}))
    else:
        console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code)


@app.command()
def checkpoint(storage: Optional[str] = StorageOption, json_output: bool = JsonOption):
    """
    Show the last trusted checkpoint.

    Examples:
        pkglog checkpoint
        pkglog checkpoint --json
    """
    try:
        cp = _registry(storage).load_checkpoint()
    except FileNotFoundError as e:
        _fail(f"storage not found: {e}", json_output)
    except PkglogError as e:
        _fail(str(e), json_output)

    if cp is None:
        if json_output:
            print(json.dumps({"checkpoint": None}))
        else:
            console.print("[yellow]No checkpoint recorded yet[/yellow]")
        raise typer.Exit(0)

    if json_output:
        print(json.dumps({"checkpoint": cp.to_dict()}, indent=2))
        raise typer.Exit(0)

    table = Table(show_header=False, box=None)
    table.add_row("[bold]Length[/bold]", str(cp.length))
    table.add_row("[bold]Root[/bold]", str(cp.root))
    table.add_row("[bold]Timestamp[/bold]", str(cp.checkpoint.timestamp))
    table.add_row("[bold]Signed by[/bold]", cp.key_id)
    table.add_row("[bold]Received at[/bold]", str(cp.received_at) if cp.received_at else "N/A")
    console.print(table)


@app.command()
def packages(storage: Optional[str] = StorageOption, json_output: bool = JsonOption):
    """
    List tracked package logs.

    Examples:
        pkglog packages
        pkglog packages --json
    """
    try:
        states = _registry(storage).load_packages()
    except FileNotFoundError as e:
        _fail(f"storage not found: {e}", json_output)
    except PkglogError as e:
        _fail(str(e), json_output)

    if json_output:
        print(
            json.dumps(
                {
                    "packages": [
                        {
                            "package_id": str(s.package_id),
                            "records": len(s.records),
                            "head": str(s.head) if s.head else None,
                            "status": s.status.to_dict(),
                        }
                        for s in states
                    ],
                    "count": len(states),
                },
                indent=2,
            )
        )
        raise typer.Exit(0)

    if not states:
        console.print("[yellow]No packages tracked[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Tracked packages")
    table.add_column("Package", style="cyan")
    table.add_column("Records", justify="right")
    table.add_column("Latest", style="green")
    table.add_column("Status", style="yellow")
    for s in states:
        latest = s.find_latest_release()
        table.add_row(
            str(s.package_id),
            str(len(s.records)),
            latest.version if latest else "-",
            s.status.kind.value,
        )
    console.print(table)


@app.command()
def log(
    package: str = typer.Argument(..., help="Package id (namespace:name)"),
    storage: Optional[str] = StorageOption,
    json_output: bool = JsonOption,
):
    """
    Show records and releases of one package log.

    Examples:
        pkglog log acme:widgets
        pkglog log acme:widgets --json
    """
    try:
        package_id = PackageId.parse(package)
        state = _registry(storage).load_package(package_id)
    except ValueError as e:
        _fail(str(e), json_output)
    except FileNotFoundError as e:
        _fail(f"storage not found: {e}", json_output)
    except PkglogError as e:
        _fail(str(e), json_output)

    if state is None:
        _fail(f"package `{package}` is not tracked", json_output, code=1)

    if json_output:
        print(json.dumps(state.to_dict(), indent=2))
        raise typer.Exit(0)

    records = Table(title=f"Log: {package_id}")
    records.add_column("#", style="cyan")
    records.add_column("Record", style="dim")
    records.add_column("Timestamp")
    records.add_column("Entries", style="green")
    for idx, envelope in enumerate(state.records):
        kinds = ", ".join(e.kind for e in envelope.contents.entries)
        records.add_row(
            str(idx),
            envelope.record_id.digest.hex[:16],
            str(envelope.contents.timestamp),
            kinds,
        )
    console.print(records)

    releases = Table(title="Releases")
    releases.add_column("Version", style="cyan")
    releases.add_column("Content", style="dim")
    releases.add_column("Yanked", style="red")
    for info in state.released_versions():
        releases.add_row(info.version, str(info.content), "yes" if info.yanked else "")
    console.print(releases)
    console.print(f"\n[bold]Status:[/bold] {state.status.kind.value}")
    if state.status.reason:
        console.print(f"[bold]Reason:[/bold] {state.status.reason}")


@app.command()
def version():
    """Show version information."""
    table = Table(show_header=False, box=None)
    table.add_row("[bold]pkglog[/bold]", f"v{__version__}")
    console.print(table)


def main():
    """Main entrypoint."""
    app()


if __name__ == "__main__":
    main()
