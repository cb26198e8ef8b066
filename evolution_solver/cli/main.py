"""Main CLI entry point for evolution-solver."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from evolution_solver import __version__
from evolution_solver.analytics import summarize_job
from evolution_solver.config.settings import USER_CONFIG_FILE, get_settings, init_user_config
from evolution_solver.core.errors import EvolutionError
from evolution_solver.core.types import (
    PHASE_ORDER,
    EnrichmentStrategy,
    Job,
    JobStatus,
    Solution,
)
from evolution_solver.service import EvolutionService
from evolution_solver.store import BaseJobStore, create_store

app = typer.Typer(
    name="evolution-solver",
    help="Multi-generation evolutionary search for business solutions.",
    add_completion=False,
)

console = Console()

STATUS_STYLES = {
    JobStatus.PENDING: "dim",
    JobStatus.PROCESSING: "yellow",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"evolution-solver version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Show info-level events when verbose, warnings and above otherwise."""
    level = logging.INFO if verbose else logging.WARNING
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-V", callback=version_callback, is_eager=True),
    ] = False,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show progress logs")
    ] = False,
) -> None:
    """Evolution Solver: evolve, enrich and rank business solutions."""
    configure_logging(verbose)


def get_store(data_dir: Path | None = None) -> BaseJobStore:
    """Build the job store from settings."""
    settings = get_settings()
    return create_store(settings.store_backend, data_dir or settings.data_dir)


def _load_job(job_id: str, data_dir: Path | None) -> Job:
    job = asyncio.run(get_store(data_dir).get(job_id))
    if job is None:
        console.print(f"[red]Job not found:[/red] {job_id}")
        raise typer.Exit(1)
    return job


# =============================================================================
# Run Command
# =============================================================================


@app.command()
def run(
    problem: Annotated[str, typer.Argument(help="Business problem to solve")],
    generations: Annotated[
        int, typer.Option("--generations", "-g", help="Number of generations")
    ] = 10,
    population: Annotated[
        int, typer.Option("--population", "-p", help="Candidates per generation")
    ] = 5,
    offspring_ratio: Annotated[
        float, typer.Option("--offspring-ratio", help="Share of offspring among new ideas")
    ] = 0.7,
    top_ratio: Annotated[
        float, typer.Option("--top-ratio", help="Share of ranked ideas kept as top performers")
    ] = 0.3,
    max_capex: Annotated[
        float, typer.Option("--max-capex", help="Preferred maximum CAPEX ($M)")
    ] = 100000.0,
    min_profits: Annotated[
        float, typer.Option("--min-profits", help="Preferred minimum NPV ($M)")
    ] = 0.0,
    concurrency: Annotated[
        int, typer.Option("--concurrency", "-c", help="Enrichment fan-out width")
    ] = 25,
    strategy: Annotated[
        EnrichmentStrategy, typer.Option("--strategy", help="Enrichment strategy")
    ] = EnrichmentStrategy.PER_IDEA,
    hard_filter: Annotated[
        bool, typer.Option("--hard-filter", help="Drop ideas breaching preferences")
    ] = False,
    model: Annotated[
        Optional[str], typer.Option("--model", "-m", help="Oracle model override")
    ] = None,
    backend: Annotated[
        Optional[str], typer.Option("--backend", help="Dispatch backend: queue | workflow")
    ] = None,
    output: Annotated[
        Optional[Path], typer.Option("--output", "-o", help="Save the job as JSON")
    ] = None,
    top: Annotated[int, typer.Option("--top", "-t", help="Show top N solutions")] = 5,
) -> None:
    """Run an evolution job to completion."""
    config = {
        "generations": generations,
        "population_size": population,
        "offspring_ratio": offspring_ratio,
        "top_performer_ratio": top_ratio,
        "max_capex": max_capex,
        "min_profits": min_profits,
        "enrichment_concurrency": concurrency,
        "enrichment_strategy": strategy,
        "hard_filter_preferences": hard_filter,
        "model": model,
    }

    console.print(Panel(f"[bold]Problem:[/bold] {problem}", title="Evolution Solver"))

    try:
        with console.status("[bold green]Evolving solutions..."):
            job = asyncio.run(_run_async(problem, config, backend))
    except EvolutionError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)

    _print_status(job)
    if job.result and job.result.top_solutions:
        _display_solutions(job.result.top_solutions[:top])

    if output:
        output.write_text(
            json.dumps(job.model_dump(mode="json"), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        console.print(f"\n[green]Saved job to {output}[/green]")

    if job.status == JobStatus.FAILED:
        raise typer.Exit(1)


async def _run_async(problem: str, config: dict, backend: str | None) -> Job:
    """Run the job asynchronously."""
    service = EvolutionService(dispatch_backend=backend)
    try:
        return await service.run(problem, config)
    finally:
        await service.close()


# =============================================================================
# Inspection Commands
# =============================================================================


@app.command()
def status(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    data_dir: Annotated[
        Optional[Path], typer.Option("--data-dir", help="Job data directory")
    ] = None,
) -> None:
    """Show the status and phase progress of a job."""
    job = _load_job(job_id, data_dir)
    _print_status(job)

    table = Table(title="Generations")
    table.add_column("Gen", justify="right")
    table.add_column("Variator")
    table.add_column("Enricher")
    table.add_column("Ranker")
    table.add_column("Top score", justify="right")

    for number in sorted(job.generations):
        record = job.generations[number]
        cells = []
        for state in (record.phase(p) for p in PHASE_ORDER):
            if state.complete:
                cells.append("[green]done[/green]")
            elif state.started:
                cells.append(f"[yellow]running[/yellow] (x{state.attempts})")
            elif state.error:
                cells.append("[red]error[/red]")
            else:
                cells.append("[dim]-[/dim]")
        top_score = f"{record.top_score:.3f}" if record.top_score is not None else "-"
        table.add_row(str(number), *cells, top_score)

    console.print(table)


@app.command()
def show(
    job_id: Annotated[str, typer.Argument(help="Job ID")],
    top: Annotated[int, typer.Option("--top", "-t", help="Show top N solutions")] = 10,
    data_dir: Annotated[
        Optional[Path], typer.Option("--data-dir", help="Job data directory")
    ] = None,
) -> None:
    """Show ranked results and analytics of a job."""
    job = _load_job(job_id, data_dir)
    analytics = summarize_job(job)

    console.print(
        Panel(
            f"[bold]Status:[/bold] {analytics.status.value}\n"
            f"[bold]Generations:[/bold] {analytics.current_generation}/{analytics.total_generations}\n"
            f"[bold]Solutions:[/bold] {analytics.total_solutions}\n"
            f"[bold]Best score:[/bold] {_fmt(analytics.best_score)}\n"
            f"[bold]Average score:[/bold] {_fmt(analytics.overall_avg_score)}\n"
            f"[bold]Phase retries:[/bold] {analytics.phase_retries}\n"
            f"[bold]Elapsed:[/bold] {analytics.elapsed_minutes:.1f} min",
            title=f"Job {job.id}",
        )
    )

    table = Table(title="Generation Analytics")
    table.add_column("Gen", justify="right")
    table.add_column("Solutions", justify="right")
    table.add_column("Top", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Enriched/Failed", justify="right")
    table.add_column("Pref. violations", justify="right")
    for gen in analytics.generations:
        table.add_row(
            str(gen.generation),
            str(gen.solution_count),
            _fmt(gen.top_score),
            _fmt(gen.avg_score),
            f"{gen.enriched_count}/{gen.failed_enrichments}",
            str(gen.preference_violations),
        )
    console.print(table)

    if job.result and job.result.top_solutions:
        _display_solutions(job.result.top_solutions[:top])
    elif analytics.error:
        console.print(f"[red]{escape(analytics.error)}[/red]")


@app.command("list")
def list_jobs(
    data_dir: Annotated[
        Optional[Path], typer.Option("--data-dir", help="Job data directory")
    ] = None,
) -> None:
    """List stored jobs."""
    jobs = asyncio.run(get_store(data_dir).list_jobs())
    if not jobs:
        console.print("[dim]No jobs found.[/dim]")
        return

    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Problem")
    table.add_column("Status")
    table.add_column("Gen", justify="right")
    table.add_column("Created")

    for job in jobs:
        style = STATUS_STYLES.get(job.status, "")
        table.add_row(
            job.id,
            job.problem_context[:40] + ("..." if len(job.problem_context) > 40 else ""),
            f"[{style}]{job.status.value}[/{style}]",
            f"{job.current_generation}/{job.config.generations}",
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


def _fmt(value: float | None) -> str:
    return f"{value:.3f}" if value is not None else "-"


def _print_status(job: Job) -> None:
    style = STATUS_STYLES.get(job.status, "")
    console.print(
        f"\n[bold]Job:[/bold] {job.id}  "
        f"[bold]Status:[/bold] [{style}]{job.status.value}[/{style}]  "
        f"[bold]Generation:[/bold] {job.current_generation}/{job.config.generations}"
    )
    if job.error:
        message = f"[{job.error.kind.value}] job {job.id}: {job.error.message}"
        console.print(f"[red]{escape(message)}[/red]")


def _display_solutions(solutions: list[Solution]) -> None:
    """Display solutions as panels."""
    console.print(f"\n[bold]Top {len(solutions)} Solutions[/bold]\n")

    for solution in solutions:
        bc = solution.business_case
        content = f"[bold]{solution.title or solution.id}[/bold]\n\n{solution.description}\n"
        if solution.core_mechanism:
            content += f"\n[dim]Mechanism:[/dim] {solution.core_mechanism}\n"
        if bc is not None:
            content += (
                f"\n[dim]NPV:[/dim] ${bc.npv_success:g}M  "
                f"[dim]CAPEX:[/dim] ${bc.capex_est:g}M  "
                f"[dim]Likelihood:[/dim] {bc.likelihood:.0%}  "
                f"[dim]Timeline:[/dim] {bc.timeline_months} months"
            )
        if solution.violates_preferences and solution.preference_note:
            content += f"\n[yellow]{solution.preference_note}[/yellow]"

        score = solution.score if solution.score is not None else 0.0
        console.print(
            Panel(
                content,
                title=f"#{solution.rank} [Score: {score:.3f}] G{solution.generation}",
                border_style="blue" if solution.rank == 1 else "dim",
            )
        )


# =============================================================================
# Config Commands
# =============================================================================

config_app = typer.Typer(help="Manage configuration")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show() -> None:
    """Show current configuration."""
    settings = get_settings()

    def _mask_key(raw_key: str) -> str:
        if not raw_key:
            return "[red]Not set[/red]"
        return raw_key[:10] + "..." + raw_key[-4:] if len(raw_key) > 14 else "***"

    console.print(Panel("[bold]Evolution Solver Configuration[/bold]"))

    console.print("\n[bold]Config Files:[/bold]")
    console.print(f"  User config: {USER_CONFIG_FILE}")
    console.print(f"  Exists: {USER_CONFIG_FILE.exists()}")

    console.print("\n[bold]General:[/bold]")
    console.print(f"  Default Provider: {settings.default_provider}")
    console.print(f"  Dispatch Backend: {settings.dispatch_backend}")
    console.print(f"  Store: {settings.store_backend} ({settings.data_dir})")

    console.print("\n[bold]OpenAI:[/bold]")
    console.print(f"  Base URL: {settings.openai.base_url}")
    console.print(f"  API Key: {_mask_key(settings.openai.api_key.get_secret_value())}")

    console.print("\n[bold]OpenRouter:[/bold]")
    console.print(f"  Base URL: {settings.openrouter.base_url}")
    console.print(f"  API Key: {_mask_key(settings.openrouter.api_key.get_secret_value())}")

    console.print("\n[bold]Orchestrator:[/bold]")
    orch = settings.orchestrator
    console.print(
        f"  Phase timeouts: variator={orch.phase_timeouts.variator:g}s "
        f"enricher={orch.phase_timeouts.enricher:g}s ranker={orch.phase_timeouts.ranker:g}s"
    )
    console.print(f"  Backoff: base={orch.backoff_base:g}s max={orch.backoff_max:g}s")
    console.print(f"  Max check attempts: {orch.max_check_attempts}")

    console.print("\n[bold]Model Routing:[/bold]")
    for task in ("variation", "enrichment"):
        config = settings.get_model_config(task)
        console.print(f"  {task}:")
        console.print(f"    Model: {config.model}")
        console.print(f"    Fallback: {', '.join(config.fallback) or '-'}")


@config_app.command("init")
def config_init() -> None:
    """Initialize user configuration file.

    Creates ~/.config/evolution-solver/config.yaml with a template.
    """
    config_path = init_user_config()
    console.print(f"[green]Configuration file created at:[/green] {config_path}")
    console.print("\nEdit this file to set your API key and other options.")
    console.print("Environment variables will override settings in this file.")


@config_app.command("path")
def config_path() -> None:
    """Show the path to the user configuration file."""
    console.print(f"User config file: {USER_CONFIG_FILE}")
    if USER_CONFIG_FILE.exists():
        console.print("[green]File exists[/green]")
    else:
        console.print(
            "[yellow]File does not exist. Run 'evolution-solver config init' to create it.[/yellow]"
        )


if __name__ == "__main__":
    app()
