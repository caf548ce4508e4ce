"""
Junto CLI - Command line interface for the delivery scheduler.

Usage:
    junto --help                    Show all commands
    junto check-scheduled           Run one delivery pass now
    junto diagnose                  Show who is due right now, without sending
    junto diagnose --user-id ID     Evaluate a single user
    junto send-now EMAIL            Send a digest to one user immediately
    junto runs                      Show recent scheduler runs
"""

import asyncio

import typer

app = typer.Typer(
    name="junto",
    help="Junto CLI - Digest delivery scheduler",
    no_args_is_help=True,
)

_OUTCOME_ICONS = {
    "sent": "✅",
    "sent_unrecorded": "⚠️",
    "deferred": "⏭️",
    "invalid": "🚫",
    "failed": "❌",
    "timed_out": "⏱️",
    "not_due": "🕒",
}


# --- Printer helpers ---


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def _print_result(result: dict) -> None:
    icon = _OUTCOME_ICONS.get(result["outcome"], "•")
    line = f"  {icon} {result['email']} ({result['outcome']})"
    if result.get("error"):
        line += f": {result['error']}"
    if result.get("warning"):
        line += f" [{result['warning']}]"
    typer.echo(line)


@app.command()
def check_scheduled():
    """Run one delivery pass (what the cron endpoint does)."""
    from junto.core.exceptions import StorageUnavailable
    from junto.jobs.check_scheduled import main

    typer.echo("\n📬 Checking scheduled deliveries...")

    try:
        summary = asyncio.run(main())
    except StorageUnavailable as e:
        _print_error(f"Storage unavailable: {e}")
        raise typer.Exit(1) from e

    typer.echo(
        f"\n  Checked {summary.candidates_checked} | due {summary.matched_count} | "
        f"sent {summary.sent_count} | errors {summary.error_count}"
    )
    for result in summary.results:
        _print_result(result.to_dict())
    typer.echo("")

    if summary.error_count:
        raise typer.Exit(1)


@app.command()
def diagnose(
    user_id: str | None = typer.Option(None, "--user-id", "-u", help="Only evaluate this user"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every gate"),
):
    """Show how each user evaluates right now, without sending anything."""
    from junto.core.logging import setup_logging
    from junto.services.digest_dispatch import create_dispatcher

    setup_logging()
    evaluations = asyncio.run(create_dispatcher().diagnose(user_id=user_id))

    if not evaluations:
        _print_warning("No matching users")
        return

    for evaluation in evaluations:
        verdict = evaluation.verdict.value.upper()
        reason = f" ({evaluation.reason.value})" if evaluation.reason else ""
        fallback = " [timezone fallback]" if evaluation.timezone_fallback else ""
        typer.echo(
            f"\n{evaluation.email}: {verdict}{reason}\n"
            f"  {evaluation.weekday} {evaluation.local_date} "
            f"{evaluation.local_time:%H:%M} {evaluation.timezone}{fallback}"
        )
        if verbose:
            for gate in evaluation.gates:
                mark = "✓" if gate.passed else "✗"
                typer.echo(f"    {mark} {gate.name}: {gate.detail}")

    due = sum(1 for e in evaluations if e.is_due)
    typer.echo(f"\n{due}/{len(evaluations)} due\n")


@app.command()
def send_now(email: str = typer.Argument(..., help="Recipient's account email")):
    """Send a digest to one user immediately, bypassing the schedule."""
    from junto.core.exceptions import UserNotFound
    from junto.core.logging import setup_logging
    from junto.services.digest_dispatch import Outcome, create_dispatcher

    setup_logging()
    typer.echo(f"\n📧 Sending digest to {email}...")

    try:
        result = asyncio.run(create_dispatcher().send_now(email))
    except UserNotFound as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    _print_result(result.to_dict())
    typer.echo("")

    if result.outcome not in (Outcome.SENT, Outcome.SENT_UNRECORDED):
        raise typer.Exit(1)


@app.command()
def runs(limit: int = typer.Option(10, "--limit", "-l", help="Number of runs to show")):
    """Show recent scheduler runs."""
    from junto.core.database import AsyncSessionLocal
    from junto.services.stores import SQLAuditLog

    recent = asyncio.run(SQLAuditLog(AsyncSessionLocal).list_runs(limit=limit))

    if not recent:
        _print_warning("No runs recorded yet")
        return

    for run in recent:
        typer.echo(
            f"{run.started_at:%Y-%m-%d %H:%M:%S}  {run.status:<9}  "
            f"checked={run.candidates_checked} due={run.matched_count} "
            f"sent={run.sent_count} errors={run.error_count}"
        )
        if run.error:
            typer.echo(f"    {run.error}")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "junto.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
