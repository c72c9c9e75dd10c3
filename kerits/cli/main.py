# kerits/cli/main.py
"""
CLI for inspecting, verifying, importing and exporting KERI event logs.
"""

import os
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from kerits.chain.importer import EXPORT_FORMATS, export_log, import_events
from kerits.chain.registry import Registry
from kerits.codec.stream import parse_stream
from kerits.core import said as saids
from kerits.core.canon import canonical_json_str, loads
from kerits.core.errors import KeritsError
from kerits.core.events import decode_event
from kerits.core.log import LOG_LEVEL_ENV, configure_logging
from kerits.core.types import LogKind
from kerits.storage import SQLiteStorage
from kerits.storage.sqlite import DB_PATH_ENV
from kerits.verify.anchor import verify_registry_anchoring
from kerits.verify.verifier import LogVerifier

app = typer.Typer(
    name="kerits",
    help="Inspect, verify, import and export KERI key and credential registry logs",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def get_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. KERITS_DB_PATH environment variable
    3. Default: ~/.kerits/kerits.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        env_path = os.environ.get(DB_PATH_ENV)
        if env_path:
            path = Path(env_path).resolve()
        else:
            path = Path.home() / ".kerits" / "kerits.db"

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def open_db(db: Optional[Path], must_exist: bool = True) -> SQLiteStorage:
    db_path = get_db_path(db)

    if must_exist and not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Import a log first: kerits import events.cesr --db /path/to/kerits.db")
        console.print(f"  • Or set env var: export {DB_PATH_ENV}=/path/to/your.db")
        raise typer.Exit(1)

    try:
        return SQLiteStorage(db_path)
    except Exception as e:
        console.print(f"[red]Failed to open database: {str(e)}[/]")
        console.print("[yellow]The file may be corrupted or not a valid SQLite DB.[/]")
        raise typer.Exit(1)


@app.callback()
def main(
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help=f"Path to SQLite database (overrides {DB_PATH_ENV} env var)",
    ),
):
    """Manage KERI identifier and credential registry logs."""
    configure_logging(level=os.environ.get(LOG_LEVEL_ENV, "WARNING"))


@app.command()
def logs(
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """List all stored logs (KELs first) with their event counts."""
    storage = open_db(db)

    log_ids = storage.list_logs()
    if not log_ids:
        console.print("[yellow]No logs found in database.[/]")
        console.print("  (DB exists but nothing has been imported yet)")
        return

    table = Table(title="Stored Logs")
    table.add_column("Log ID", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Events")

    for log_id in log_ids:
        kind = storage.get_log_kind(log_id)
        table.add_row(log_id, kind.value.upper() if kind else "?", str(storage.get_event_count(log_id)))

    console.print(table)


@app.command()
def events(
    log_id: str = typer.Argument(..., help="Identifier or registry ID to display"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent events to show"),
):
    """Show the most recent events of a log."""
    storage = open_db(db)

    records = storage.load_events(log_id)
    if not records:
        console.print(f"[yellow]No events found for '{log_id}'[/]")
        return

    for record in records[-limit:]:
        body = loads(record.raw)
        console.print(f"[bold cyan]{record.sn:4d} | {record.ilk:3} | {record.said}[/]")
        if "p" in body:
            console.print(f"  prior: {body['p']}")
        if record.ilk in ("iss", "rev"):
            console.print(f"  credential: {body['i']}")
        if record.ilk in ("icp", "rot"):
            console.print(f"  keys: {', '.join(body['k'])}")
        if record.kind == LogKind.ACDC:
            console.print(f"  issuer: {body['i']}")
            console.print(f"  schema: {body['s']}")
        for seal in body.get("a") or []:
            if isinstance(seal, dict) and "i" in seal and "d" in seal:
                console.print(f"  seal: {seal['i']} @ {seal['d']}")
        if record.signatures:
            console.print(f"  signatures: {len(record.signatures)}")
        console.print("  " + "─" * 90)


@app.command()
def verify(
    log_id: str = typer.Argument(..., help="Identifier or registry ID to verify"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Verify a log (SAIDs, sequence, hash chain, key commitments, signatures)."""
    storage = open_db(db)

    result = LogVerifier().verify_from_storage(log_id, storage)

    if result.is_valid:
        console.print(f"[green]✓ Log '{log_id}' is valid[/]")
        console.print(f"  {result.message}")
    else:
        console.print(f"[red]✗ Verification failed for '{log_id}'[/]")
        for failure in result.failures:
            console.print(f"  • [{failure.index}] {failure.category}: {failure.message}")
        raise typer.Exit(1)

    if storage.get_log_kind(log_id) == LogKind.TEL:
        vcp = decode_event(loads(storage.get_event(log_id, 0).raw))
        kel = [loads(r.raw) for r in storage.load_events(vcp.issuer)]
        parent = [loads(r.raw) for r in storage.load_events(vcp.parent)] if vcp.parent else None
        try:
            anchored = bool(kel) and verify_registry_anchoring(vcp, kel, parent)
        except KeritsError as e:
            console.print(f"[yellow]Anchoring not checked: {e}[/]")
            return
        if anchored:
            console.print(f"  Anchored in issuer KEL {vcp.issuer}")
        else:
            console.print(f"[red]✗ Registry is not anchored by issuer {vcp.issuer}[/]")
            raise typer.Exit(1)


@app.command()
def status(
    registry_id: str = typer.Argument(..., help="Registry ID"),
    credential_said: str = typer.Argument(..., help="Credential SAID"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Show the issued/revoked status of a credential in a registry."""
    storage = open_db(db)

    try:
        registry = Registry(registry_id=registry_id, storage=storage)
    except KeritsError as e:
        console.print(f"[red]{str(e)}[/]")
        raise typer.Exit(1)

    state = registry.status(credential_said)
    color = {"issued": "green", "revoked": "red"}.get(state.value, "yellow")
    console.print(f"[{color}]{state.value}[/]")


@app.command()
def export(
    log_id: str = typer.Argument(..., help="Identifier or registry ID to export"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
    fmt: str = typer.Option("cesr", "--format", "-f", help=f"One of: {', '.join(EXPORT_FORMATS)}"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: <log_id>.<format>)"),
    credentials: bool = typer.Option(False, "--credentials", help="Append the stored bodies of credentials a registry issued"),
):
    """Export a log as a CESR-style stream or a JSON array."""
    storage = open_db(db)

    if fmt not in EXPORT_FORMATS:
        console.print(f"[red]Unknown format '{fmt}'. Use one of: {', '.join(EXPORT_FORMATS)}[/]")
        raise typer.Exit(1)

    try:
        data = export_log(storage, log_id, fmt, include_credentials=credentials)
    except KeritsError as e:
        console.print(f"[red]Failed to export '{log_id}': {str(e)}[/]")
        raise typer.Exit(1)

    out_path = output or Path(f"{log_id}.{fmt}")
    if isinstance(data, bytes):
        out_path.write_bytes(data)
    else:
        out_path.write_text(data, encoding="utf-8")

    count = storage.get_event_count(log_id)
    extra = len(parse_stream(data)) - count
    console.print(f"[green]Exported {count} events to {out_path}[/]")
    if extra:
        console.print(f"  plus {extra} credential(s)")


@app.command(name="import")
def import_(
    source: Path = typer.Argument(..., help="CESR-style stream or JSON array file", exists=True, dir_okay=False),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Import events in order, stopping at the first invalid one."""
    storage = open_db(db, must_exist=False)

    report = import_events(source.read_bytes(), storage)

    console.print(f"Accepted: {report.accepted}  Duplicates: {report.duplicates}")
    if report.credentials:
        console.print(f"Credentials: {len(report.credentials)}")
    if not report.ok:
        console.print(f"[red]✗ Import halted at event {report.failed_position}: "
                      f"{report.error_type}: {report.error}[/]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Imported {len(report.logs)} log(s)[/]")


@app.command()
def saidify(
    source: Path = typer.Argument(..., help="JSON file holding one object", exists=True, dir_okay=False),
    label: str = typer.Option("d", "--label", "-l", help="Field that receives the SAID"),
):
    """Compute the SAID of a JSON object and print the finished body."""
    try:
        body = loads(source.read_text(encoding="utf-8"))
    except ValueError as e:
        console.print(f"[red]Invalid JSON: {str(e)}[/]")
        raise typer.Exit(1)
    if not isinstance(body, dict):
        console.print("[red]Expected a JSON object[/]")
        raise typer.Exit(1)

    labels = ("i",) if body.get("t") in ("icp", "vcp") else ()
    try:
        if "v" in body:
            proto = saids.deversify(body["v"])[0]
            result = saids.sized(body, label, labels, proto=proto)
        else:
            result = saids.saidify(body, label, labels)
    except KeritsError as e:
        console.print(f"[red]{str(e)}[/]")
        raise typer.Exit(1)

    print(canonical_json_str(result))


if __name__ == "__main__":
    app()
