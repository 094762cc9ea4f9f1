"""Command-line interface for the research orchestrator."""

import asyncio
import json
from typing import Annotated

import typer

from .config.loader import load_config
from .config.factory import open_service
from .document import ResearchDocument, format_document_for_agent
from .exceptions import CortexError
from .orchestration.events import EventType, ProgressEvent

app = typer.Typer(
    name="cortex",
    help="Autonomous research: plan questions, search the web, synthesize an answer.",
    add_completion=False,
)

ProfileOption = Annotated[
    str,
    typer.Option("--profile", "-p", help="Configuration profile (default: MODEL_PROFILE or dev)"),
]
FormatOption = Annotated[
    str,
    typer.Option("--format", "-f", help="Output format: text or json"),
]


def _check_format(output_format: str) -> None:
    if output_format not in ("text", "json"):
        typer.echo("Error: Format must be one of: text, json", err=True)
        raise typer.Exit(1)


def _describe(event: ProgressEvent) -> str | None:
    """One progress line per event worth showing; None hides it."""
    p = event.payload
    target = f"[{event.question_id}] " if event.question_id else ""
    if event.type == EventType.QUESTION_SPAWNED:
        return f"+ {p['question_id']} {p['name']}: {p['question']}"
    if event.type == EventType.QUESTION_STARTED:
        return f"  {target}started"
    if event.type == EventType.QUESTION_SEARCH_COMPLETED:
        return f"  {target}searched '{p['query']}' ({p['sources']} sources)"
    if event.type == EventType.QUESTION_REFLECTION:
        return f"  {target}{p['delta']}: {p['thought']}"
    if event.type == EventType.QUESTION_COMPLETED:
        return f"  {target}done (confidence={p['confidence']}, {p['recommendation']})"
    if event.type == EventType.BRAIN_STRATEGY:
        return f"Strategy: {p['strategy']}"
    if event.type == EventType.BRAIN_EVALUATING:
        return "Evaluating progress..."
    if event.type == EventType.BRAIN_DECISION:
        return f"Decision: {p['action']}\n  " + p["reasoning"].replace("\n", "\n  ")
    if event.type == EventType.SYNTHESIZING_STARTED:
        return "Synthesizing final answer..."
    if event.type == EventType.RESEARCH_STOPPED:
        return "Research stopped."
    return None


def _document_json(doc: ResearchDocument) -> str:
    return json.dumps(
        {
            "session_id": doc.id,
            "objective": doc.objective,
            "status": doc.status.value,
            "final_answer": doc.final_answer,
            "final_confidence": doc.final_confidence.value if doc.final_confidence else None,
            "questions": [
                {
                    "id": q.id,
                    "name": q.name,
                    "question": q.question,
                    "status": q.status.value,
                    "cycles": q.cycles,
                    "recommendation": q.recommendation.value if q.recommendation else None,
                }
                for q in doc.questions
            ],
            "decisions": len(doc.decision_log),
        },
        indent=2,
    )


def _print_result(doc: ResearchDocument, output_format: str) -> None:
    if output_format == "json":
        typer.echo(_document_json(doc))
        return

    typer.echo()
    if doc.final_answer:
        typer.echo("=" * 60)
        typer.echo(doc.final_answer)
        typer.echo("=" * 60)
    else:
        typer.echo(f"Session {doc.id} is {doc.status.value}; no final answer yet.")
        typer.echo(f"Resume with: cortex resume {doc.id}")


async def _follow(service, handle, output_format: str) -> ResearchDocument:
    if output_format == "text":
        typer.echo(f"Session: {handle.session_id}\n")
    async for event in handle.events:
        if output_format == "text":
            line = _describe(event)
            if line:
                typer.echo(line)
        else:
            typer.echo(json.dumps(event.to_dict()), err=True)
    return await service.wait(handle.session_id)


@app.command()
def run(
    objective: Annotated[str, typer.Argument(help="The research objective")],
    criteria: Annotated[
        list[str],
        typer.Option("--criterion", "-c", help="Success criterion (can specify multiple)"),
    ] = None,
    profile: ProfileOption = None,
    output_format: FormatOption = "text",
):
    """
    Run a research session to completion.

    Examples:

        cortex run "Which battery chemistries dominate grid storage?" -c "Top chemistries by share"

        cortex run "History of the transistor" -c "Key inventors" -c "Key dates" --format json
    """
    _check_format(output_format)
    asyncio.run(_run_async(objective, criteria or [], profile, output_format))


async def _run_async(objective: str, criteria: list[str], profile: str | None, output_format: str):
    """Async implementation of run."""
    config = load_config(profile)
    try:
        async with open_service(config) as service:
            handle = await service.start_research(objective, criteria)
            doc = await _follow(service, handle, output_format)
    except (CortexError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    _print_result(doc, output_format)


@app.command()
def resume(
    session_id: Annotated[str, typer.Argument(help="Session to resume")],
    profile: ProfileOption = None,
    output_format: FormatOption = "text",
):
    """Resume a stopped or interrupted session."""
    _check_format(output_format)
    asyncio.run(_resume_async(session_id, profile, output_format))


async def _resume_async(session_id: str, profile: str | None, output_format: str):
    """Async implementation of resume."""
    config = load_config(profile)
    try:
        async with open_service(config) as service:
            handle = await service.resume(session_id)
            doc = await _follow(service, handle, output_format)
    except (CortexError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    _print_result(doc, output_format)


@app.command()
def show(
    session_id: Annotated[str, typer.Argument(help="Session to show")],
    profile: ProfileOption = None,
    output_format: FormatOption = "text",
):
    """Print the stored snapshot of a session."""
    _check_format(output_format)
    asyncio.run(_show_async(session_id, profile, output_format))


async def _show_async(session_id: str, profile: str | None, output_format: str):
    """Async implementation of show."""
    config = load_config(profile)
    try:
        async with open_service(config) as service:
            doc = await service.get_snapshot(session_id)
    except (CortexError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if output_format == "json":
        typer.echo(_document_json(doc))
        return

    typer.echo(format_document_for_agent(doc))
    if doc.final_answer:
        typer.echo("\nFINAL ANSWER:\n")
        typer.echo(doc.final_answer)


@app.command()
def sessions(profile: ProfileOption = None):
    """List stored sessions."""
    asyncio.run(_sessions_async(profile))


async def _sessions_async(profile: str | None):
    """Async implementation of sessions."""
    config = load_config(profile)
    try:
        async with open_service(config) as service:
            session_ids = await service.list_sessions()
            if not session_ids:
                typer.echo("No sessions found.")
                return

            typer.echo(f"Found {len(session_ids)} sessions:\n")
            for session_id in session_ids:
                doc = await service.get_snapshot(session_id)
                done = len(doc.done_questions)
                typer.echo(f"  {doc.id}  [{doc.status.value}]  {done}/{len(doc.questions)} done")
                typer.echo(f"    {doc.objective}")
    except CortexError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def profiles():
    """List available configuration profiles."""
    from .config.loader import DEFAULT_CONFIG_PATH, load_config_file

    config_file = load_config_file(DEFAULT_CONFIG_PATH)

    typer.echo("Available profiles:\n")
    for name, profile in config_file.profiles.items():
        typer.echo(f"  {name}")
        typer.echo(f"    Generator: {profile.generator.backend} ({profile.generator.model or 'default model'})")
        typer.echo(f"    Retrieval: {profile.retrieval.backend}")
        typer.echo(f"    Storage: {profile.storage.backend}")
        typer.echo(f"    Max steps: {profile.research.orchestrator.max_steps}")
        typer.echo()


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
