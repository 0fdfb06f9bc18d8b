"""blueprint CLI: build and maintain the agent-context directory.

Commands:
- build   Create agent-context/ from scratch (scan, summarize, profile every table)
- sync    Re-profile selected (or all) models, skipping unchanged ones
- ls      Show which models a selection resolves to
- status  Show the hash cache

Examples:
    blueprint build
    blueprint sync --select "+dim_customers" --exclude "tag:deprecated"
    blueprint ls --select "path:marts"
"""
from __future__ import annotations

import logging
from typing import Optional

import typer

from blueprint import observability
from blueprint.console import print_cache, print_info, print_status, print_summary
from blueprint.context.builder import ContextBuilder
from blueprint.context.changes import cache_path_for, load_cache
from blueprint.context.manifest import DbtIntegration
from blueprint.context.scanner import scan_models
from blueprint.context.selector import select_models
from blueprint.errors import BlueprintError
from blueprint.settings import Settings, load_settings
from blueprint.warehouse import create_warehouse_client

app = typer.Typer(help="blueprint CLI - Build and sync agent context for a dbt project")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _setup(verbose: bool = False) -> Settings:
    """Load settings and configure logging and tracing."""
    settings = load_settings()
    level = logging.DEBUG if verbose else getattr(logging, settings.advanced.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    observability.configure()
    return settings


def _fail(e: BlueprintError) -> None:
    print_status("FAIL", f"{e.code}: {e.message}", err=True)
    raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Context commands
# ---------------------------------------------------------------------------


@app.command()
def build(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing agent-context/"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Build the agent context from scratch.

    Example:
        blueprint build
        blueprint build --force
    """
    try:
        settings = _setup(verbose)
        client = create_warehouse_client(settings.connection)
        try:
            builder = ContextBuilder.from_settings(settings, client)
            summary = builder.build(force=force)
        finally:
            client.close()
    except BlueprintError as e:
        _fail(e)
        return

    print_summary(summary)
    print_status("PASS", f"Agent context written to {settings.context_path}")


@app.command()
def sync(
    select: Optional[str] = typer.Option(
        None, "--select", "-s", help="Models to re-profile (e.g. 'fct_*', '+dim_customers', 'tag:finance')",
    ),
    exclude: Optional[str] = typer.Option(None, "--exclude", help="Models to leave out"),
    profiles_only: bool = typer.Option(False, "--profiles-only", help="Skip summary.md and modelling.md"),
    force: bool = typer.Option(False, "--force", "-f", help="Re-profile even if nothing changed"),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="dbt target for compile/parse"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Update the agent context.

    Example:
        blueprint sync
        blueprint sync --select "stg_customers+" --force
    """
    try:
        settings = _setup(verbose)
        client = create_warehouse_client(settings.connection)
        try:
            builder = ContextBuilder.from_settings(settings, client, dbt_target=target)
            summary = builder.update(select=select, exclude=exclude, profiles_only=profiles_only, force=force)
        finally:
            client.close()
    except BlueprintError as e:
        _fail(e)
        return

    print_summary(summary)
    print_status("PASS", "Agent context updated")


@app.command("ls")
def list_models(
    select: Optional[str] = typer.Option(None, "--select", "-s", help="Selection pattern"),
    exclude: Optional[str] = typer.Option(None, "--exclude", help="Exclusion pattern"),
) -> None:
    """List the models a selection resolves to, without profiling."""
    try:
        settings = load_settings()
        graph = scan_models(settings.dbt_project_path, models_dir=settings.advanced.models_dir)
        manifest = DbtIntegration(settings.dbt_project_path).load_manifest()
        selected = select_models(graph, select, exclude, manifest=manifest)
    except BlueprintError as e:
        _fail(e)
        return

    for model in selected:
        typer.echo(f"{model.name}\t{model.relative_path}")
    print_info(f"{len(selected)} of {graph.model_count} models selected")


@app.command()
def status() -> None:
    """Show recorded model fingerprints and the last sync time."""
    try:
        settings = load_settings()
    except BlueprintError as e:
        _fail(e)
        return

    if not settings.context_path.exists():
        print_status("WARN", f"{settings.context_path.name}/ not found. Run 'blueprint build' first.")
        raise typer.Exit(code=1)
    print_cache(load_cache(cache_path_for(settings.context_path)))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
