"""CLI entry point for the outreach research pipeline."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from outreach_research.config import Config, load_config
from outreach_research.db.database import Database
from outreach_research.db.migrations import run_migrations
from outreach_research.models import CronSummary, ResearchRunResult
from outreach_research.pipeline import ResearchPipeline

console = Console(force_terminal=True)


def _open_pipeline(config: Config) -> tuple[Database, ResearchPipeline]:
    db = Database(config.database_path)
    db.connect()
    run_migrations(db)
    return db, ResearchPipeline(db, config)


def _run(config: Config, action):
    """Run ``action(pipeline)`` to completion, including queued scoring."""
    db, pipeline = _open_pipeline(config)

    async def runner():
        try:
            return await action(pipeline)
        finally:
            if pipeline.scoring_queue.pending:
                console.print(f"[dim]Waiting for {pipeline.scoring_queue.pending} scoring task(s)...[/dim]")
            await pipeline.close()

    try:
        return asyncio.run(runner())
    finally:
        db.close()


def _print_run(result: ResearchRunResult) -> None:
    if result.success:
        console.print(f"[green]Run {result.run_id} completed: {result.item_count} items scheduled[/green]")
    else:
        suffix = f" (run {result.run_id})" if result.run_id else ""
        console.print(f"[red]Research failed{suffix}: {result.error}[/red]")
        sys.exit(1)


def _print_summary(summary: CronSummary) -> None:
    if not summary.success:
        console.print(f"[red]{summary.message}[/red]")
        sys.exit(1)
    console.print(f"[bold]{summary.message}[/bold]")
    if summary.cleaned_cache:
        console.print(f"  Expired cache entries removed: {summary.cleaned_cache}")
    for entry in summary.results:
        name = entry.get("name") or entry.get("business_id")
        if entry.get("success"):
            console.print(f"  [green]- {name}[/green]")
        else:
            console.print(f"  [red]- {name}: {entry.get('error')}[/red]")


@click.group()
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose debug logging",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Keyword research, staggered reveal and cached lead research."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, show_time=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    ctx.obj = load_config()


@main.command()
@click.argument("business_id")
@click.pass_obj
def initial(config: Config, business_id: str) -> None:
    """Run initial research for BUSINESS_ID."""
    result = _run(config, lambda p: p.trigger_initial_research(business_id))
    _print_run(result)


@main.command()
@click.argument("business_id")
@click.pass_obj
def weekly(config: Config, business_id: str) -> None:
    """Run weekly research for BUSINESS_ID."""
    result = _run(config, lambda p: p.trigger_weekly_research(business_id))
    _print_run(result)


@main.command("weekly-all")
@click.pass_obj
def weekly_all(config: Config) -> None:
    """Weekly research for every active business (the weekly cron job)."""
    _print_summary(_run(config, lambda p: p.run_weekly_research()))


@main.command("process-targets")
@click.pass_obj
def process_targets(config: Config) -> None:
    """Sweep the cache and fulfil one pending target per business."""
    _print_summary(_run(config, lambda p: p.run_pending_targets()))


@main.command("sweep-cache")
@click.pass_obj
def sweep_cache(config: Config) -> None:
    """Delete expired scrape cache entries."""
    db, pipeline = _open_pipeline(config)
    try:
        removed = pipeline.cache.cleanup_expired()
        stats = pipeline.cache.stats()
    finally:
        db.close()
    console.print(f"Removed {removed} expired entries ({stats['live']} live remain)")


@main.command("lead-stats")
@click.pass_obj
def lead_stats(config: Config) -> None:
    """Show verified lead counts by country and industry."""
    db, pipeline = _open_pipeline(config)
    try:
        leads = pipeline.leads.lead_list_stats()
        cache = pipeline.cache.stats()
    finally:
        db.close()

    console.print(
        f"[bold]{leads['total_leads']} verified leads in {leads['total_lists']} lists[/bold] "
        f"({cache['live']} live cache entries)"
    )
    table = Table(title="Leads by industry")
    table.add_column("Industry")
    table.add_column("Leads", justify="right")
    for industry, count in sorted(leads["by_industry"].items(), key=lambda kv: -kv[1]):
        table.add_row(industry, str(count))
    console.print(table)

    table = Table(title="Leads by country")
    table.add_column("Country")
    table.add_column("Leads", justify="right")
    for country, count in sorted(leads["by_country"].items(), key=lambda kv: -kv[1]):
        table.add_row(country, str(count))
    console.print(table)


@main.command()
@click.argument("business_id")
@click.pass_obj
def stats(config: Config, business_id: str) -> None:
    """Show reveal progress and target status for BUSINESS_ID."""
    db, pipeline = _open_pipeline(config)
    try:
        research = pipeline.get_research_stats(business_id)
        targets = pipeline.get_target_status(business_id)
    finally:
        db.close()

    if not research.success:
        console.print(f"[red]{research.error}[/red]")
        sys.exit(1)

    table = Table(title=f"Research stats: {business_id}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total results", str(research.total_results))
    table.add_row("Revealed", str(research.revealed_count))
    table.add_row("Pending reveal", str(research.pending_count))
    table.add_row("Last run", str(research.last_run_at or "-"))
    table.add_row("Next reveal", str(research.next_reveal_at or "-"))
    table.add_row("Targets fulfilled", f"{targets.fulfilled}/{len(targets.targets)}")
    console.print(table)


@main.command()
@click.option("--host", default=None, help="Bind address (default: WEB_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: WEB_PORT)")
@click.pass_obj
def serve(config: Config, host: str | None, port: int | None) -> None:
    """Serve the HTTP API."""
    import uvicorn

    uvicorn.run(
        "outreach_research.web.app:app",
        host=host or config.web_host,
        port=port or config.web_port,
    )


if __name__ == "__main__":
    main()
