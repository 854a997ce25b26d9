"""
Command Line Interface for Control Center.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..lifecycle.errors import ControlCenterError
from ..lifecycle.issues import IssueService
from ..lifecycle.merge import MergeOutcomeApplier
from ..lifecycle.publish_ledger import PublishLedger
from ..lifecycle.schemas import MergeOutcome
from ..lifecycle.timeline import TimelineStore

app = typer.Typer(help="Control Center - issue lifecycle orchestration")
console = Console()

STATUS_STYLES = {
    "CREATED": "white",
    "SPEC_READY": "cyan",
    "IMPLEMENTING_PREP": "yellow",
    "REVIEW_READY": "magenta",
    "HOLD": "bright_black",
    "DONE": "green",
    "FAILED": "red",
}


@contextmanager
def _session() -> Iterator[Session]:
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


def _fail(exc: ControlCenterError) -> None:
    console.print(f"❌ {exc.code}: {exc.message}")
    raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    reload = reload or settings.debug
    rprint(Panel.fit("Starting Control Center", style="bold blue"))
    uvicorn.run(
        "control_center.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        workers=1 if reload else settings.api_workers,
    )


@app.command("init-db")
def init_db():
    """Create tables and append-only triggers."""
    init_database()
    console.print("✅ Database initialized")


@app.command("show-issue")
def show_issue(
    identifier: str = typer.Argument(..., help="UUID, 8-hex public id or canonical id"),
):
    """Show an issue and its next pipeline step."""
    with _session() as db:
        service = IssueService(db)
        try:
            issue = service.get_by_identifier(identifier)
        except ControlCenterError as exc:
            _fail(exc)
        step = service.next_step(issue.id)

        table = Table(title=f"Issue {issue.public_id}", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        style = STATUS_STYLES.get(issue.status, "white")
        table.add_row("Title", issue.title)
        table.add_row("Status", f"[{style}]{issue.status}[/{style}]")
        table.add_row("UUID", issue.id)
        table.add_row("Canonical id", issue.canonical_id or "-")
        table.add_row("Pull request", issue.pr_url or "-")
        if step.blocked:
            table.add_row("Next step", f"blocked: {step.blocker_code.value}")
        else:
            table.add_row("Next step", step.step.value)
        console.print(table)


@app.command()
def timeline(
    identifier: str = typer.Argument(..., help="Issue identifier"),
    event_type: Optional[str] = typer.Option(None, help="Filter by event type"),
    limit: int = typer.Option(100, help="Maximum number of events"),
    offset: int = typer.Option(0, help="Events to skip"),
):
    """List timeline events for an issue."""
    with _session() as db:
        try:
            issue = IssueService(db).get_by_identifier(identifier)
            page = TimelineStore(db).list_by_issue(
                issue.id, event_type=event_type, limit=limit, offset=offset
            )
        except ControlCenterError as exc:
            _fail(exc)

        table = Table(
            title=f"Timeline {issue.public_id} ({page.total} events)",
            show_header=True,
            header_style="bold magenta",
        )
        table.add_column("#", justify="right")
        table.add_column("Occurred at", style="cyan")
        table.add_column("Event", style="green")
        table.add_column("Actor")
        table.add_column("Data")
        for event in page.events:
            data = event.to_dict()
            table.add_row(
                str(data["id"]),
                data["occurred_at"],
                data["event_type"],
                f"{data['actor']} ({data['actor_type']})",
                json.dumps(data["event_data"], sort_keys=True),
            )
        console.print(table)


@app.command("apply-merge")
def apply_merge(
    issue_id: Optional[str] = typer.Option(None, help="Issue identifier"),
    repository: Optional[str] = typer.Option(None, help="owner/repo"),
    pr_number: Optional[int] = typer.Option(None, help="Pull request number"),
    pr_url: Optional[str] = typer.Option(None, help="Pull request URL"),
    merge_sha: str = typer.Option(..., help="Merge commit SHA"),
    request_id: Optional[str] = typer.Option(None, help="Request id for tracing"),
):
    """Apply a merged pull request to its issue (operator fallback for webhooks)."""
    try:
        outcome = MergeOutcome(
            issue_id=issue_id,
            repository=repository,
            pr_number=pr_number,
            pr_url=pr_url,
            merge_sha=merge_sha,
            merged_at=datetime.now(timezone.utc),
            request_id=request_id,
            source="cli",
        )
    except ValueError as exc:
        console.print(f"❌ Invalid merge outcome: {exc}")
        raise typer.Exit(code=2)

    with _session() as db:
        result = MergeOutcomeApplier(db).apply_outcome(outcome)

    if not result.ok:
        reason = result.details.get("reason", "")
        console.print(f"❌ {result.code} {reason}".rstrip())
        raise typer.Exit(code=1)
    if result.idempotent:
        console.print(f"✅ Issue {result.issue_id} already DONE (no-op)")
    else:
        console.print(f"✅ Issue {result.issue_id} moved to DONE")


@app.command()
def batches(
    session_id: str = typer.Argument(..., help="Publish session id"),
    limit: int = typer.Option(50, help="Maximum number of batches"),
    include_items: bool = typer.Option(False, help="Show items of each batch"),
):
    """List publish batches for a session, newest first."""
    with _session() as db:
        try:
            page = PublishLedger(db).query_batches_by_session(
                session_id, limit=limit, include_items=include_items
            )
        except ControlCenterError as exc:
            _fail(exc)

        if not page.batches:
            console.print("No batches recorded")
            return

        table = Table(title=f"Publish batches for {session_id}", show_header=True)
        table.add_column("Batch", style="cyan")
        table.add_column("Created at")
        table.add_column("Total", justify="right")
        table.add_column("Created", justify="right", style="green")
        table.add_column("Updated", justify="right", style="yellow")
        table.add_column("Skipped", justify="right")
        for batch in page.batches:
            table.add_row(
                batch.id,
                batch.to_dict()["created_at"],
                str(batch.total_items),
                str(batch.created_count),
                str(batch.updated_count),
                str(batch.skipped_count),
            )
            if page.items is not None:
                for item in page.items.get(batch.id, []):
                    flag = " (truncated)" if item.truncated else ""
                    table.add_row(
                        f"  #{item.position}",
                        item.canonical_id or item.issue_id or "-",
                        item.action,
                        "",
                        "",
                        (item.reason or "") + flag,
                    )
        console.print(table)


@app.command()
def version():
    """Show version information."""
    import importlib.metadata

    console.print(f"Control Center v{importlib.metadata.version('control-center')}")


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
