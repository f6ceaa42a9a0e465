"""
Developer CLI for running clinical conversations against the orchestrator.

Usage:
    python -m clinical_core.cli chat
    python -m clinical_core.cli chat --session-id demo --log-level DEBUG
    python -m clinical_core.cli health
"""

import asyncio
import uuid
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from clinical_core.config import Settings
from clinical_core.models import TurnResult
from clinical_core.orchestrator import ConversationOrchestrator, build_orchestrator
from clinical_core.utils.logger import setup_logging

# Initialize
console = Console()
app = typer.Typer(
    name="clinical-core",
    help="Multi-turn clinical extraction and decision orchestration",
    no_args_is_help=True
)

CONFIRM_COMMAND = "/confirm"
QUIT_COMMANDS = {"/quit", "/exit"}


def _record_table(result: TurnResult) -> Table:
    table = Table(title=f"Iteration {result.iteration}", show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    record = result.record
    if record is None:
        table.add_row("record", "[dim]nothing extracted yet[/dim]")
        return table

    demo = record.demographics
    clinical = record.clinical_presentation
    ctx = record.symptom_characteristics
    meta = record.extraction_metadata
    table.add_row("age", str(demo.patient_age_years))
    table.add_row("gender", demo.patient_gender)
    table.add_row("chief complaint", clinical.chief_complaint)
    table.add_row("symptoms", ", ".join(clinical.primary_symptoms or []) or "-")
    table.add_row("duration", ctx.duration_description)
    table.add_row("pain scale", str(ctx.pain_intensity_scale or "-"))
    table.add_row("completeness", f"{meta.overall_completeness_percentage}%")
    table.add_row("compliant", "yes" if meta.compliant else "no")
    return table


def _print_turn(result: TurnResult) -> None:
    if result.cancelled:
        console.print("[yellow]Turn cancelled[/yellow]")
        return

    console.print(_record_table(result))
    if result.stop_decision is not None:
        console.print(f"[bold]Next step:[/bold] {result.stop_decision.action.value}")
    if result.urgency is not None:
        console.print(f"[bold red]Urgency:[/bold red] {result.urgency.level.value}")
    if result.validation is not None:
        for issue in result.validation.issues:
            if issue.severity.value == "critical":
                console.print(f"[red]✗[/red] {issue.field}: {issue.message}")
    console.print(f"\n[green]Assistant:[/green] {result.assistant_message}\n")


async def _chat_loop(orchestrator: ConversationOrchestrator, session_id: str) -> None:
    while True:
        text = await asyncio.to_thread(typer.prompt, "Clinician")
        text = text.strip()
        if text in QUIT_COMMANDS:
            break

        confirm = False
        if text.startswith(CONFIRM_COMMAND):
            confirm = True
            text = text[len(CONFIRM_COMMAND):].strip() or "Confirmed."

        result = await orchestrator.submit_turn(session_id, text, confirm=confirm)
        _print_turn(result)

    snapshot = await orchestrator.get_session(session_id)
    if snapshot is not None:
        console.print(f"[dim]Session {session_id}: phase={snapshot.phase.value}, "
                      f"SOAP progress={snapshot.soap_progress}%[/dim]")


@app.command()
def chat(
    session_id: Annotated[
        Optional[str],
        typer.Option(
            "--session-id",
            help="Session identifier (default: random UUID)"
        )
    ] = None,
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)"
        )
    ] = "WARNING"
):
    """
    Interactive multi-turn conversation.

    Type a clinical message per turn. Prefix a message with /confirm to
    escalate a borderline record; /quit ends the session.

    Examples:
        python -m clinical_core.cli chat
        python -m clinical_core.cli chat --session-id demo --log-level DEBUG
    """
    load_dotenv()
    setup_logging(log_level, use_context=True)
    settings = Settings()

    if not settings.openai_api_key:
        console.print("[yellow]Warning:[/yellow] OPENAI_API_KEY not set, providers are unavailable")
        console.print("Every turn will return the human-review fallback\n")

    session_id = session_id or str(uuid.uuid4())
    console.print(f"[cyan]Session:[/cyan] {session_id}")
    console.print(f"[dim]Providers: {settings.default_provider} -> "
                  f"{', '.join(settings.fallback_providers)}[/dim]\n")

    async def run() -> None:
        orchestrator, store = build_orchestrator(settings)
        await store.start()
        try:
            await _chat_loop(orchestrator, session_id)
        finally:
            await store.shutdown()

    asyncio.run(run())


@app.command()
def health(
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)"
        )
    ] = "WARNING"
):
    """Probe every configured provider and show breaker state."""
    load_dotenv()
    setup_logging(log_level, use_context=False)
    settings = Settings()

    async def run():
        orchestrator, _ = build_orchestrator(settings)
        return await orchestrator.engine.system_health()

    report = asyncio.run(run())

    table = Table(title="Providers", show_header=True)
    table.add_column("Provider", style="cyan")
    table.add_column("Available")
    table.add_column("Healthy")
    table.add_column("Circuit")
    for name, status in report.items():
        table.add_row(
            name,
            "yes" if status["available"] else "no",
            "[green]yes[/green]" if status["healthy"] else "[red]no[/red]",
            status["circuit"],
        )
    console.print(table)

    if not any(status["healthy"] for status in report.values()):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
