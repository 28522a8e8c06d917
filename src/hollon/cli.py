"""Command line entry point for the hollon orchestrator."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .config import OrchestratorConfig
from .decomposition import DependencyGraph
from .errors import HollonError
from .main import HollonSystem, setup_logging
from .models.planning_models import DecisionOptions, PivotContext, PivotOptions, PivotType
from .models.task_models import Document, Task, Team, Worker
from .planning import PivotImpactAnalyzer, UncertaintyAnalyzer, WorkerMatcher
from .repositories import RepositoryRegistry

logger = logging.getLogger(__name__)

_SNAPSHOT_COLLECTIONS = (
    ("tasks", Task),
    ("workers", Worker),
    ("teams", Team),
    ("documents", Document),
)


async def load_snapshot(path: str) -> RepositoryRegistry:
    """
    Fill in-memory repositories from a JSON snapshot.

    Format: {"tasks": [...], "workers": [...], "teams": [...], "documents": [...]},
    every key optional.
    """
    data = json.loads(Path(path).read_text())
    repositories = RepositoryRegistry()

    for key, model in _SNAPSHOT_COLLECTIONS:
        repository = getattr(repositories, key)
        for item in data.get(key, []):
            await repository.create(model.model_validate(item))

    return repositories


async def save_snapshot(repositories: RepositoryRegistry, path: str) -> None:
    data = {}
    for key, _ in _SNAPSHOT_COLLECTIONS:
        entities = await getattr(repositories, key).find()
        data[key] = [entity.model_dump(mode="json") for entity in entities]

    Path(path).write_text(json.dumps(data, indent=2))
    logger.info(f"Snapshot written to {path}")


def _run(ctx: click.Context, coro) -> None:
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        pass
    except (HollonError, OSError, ValueError) as e:
        if ctx.obj["verbose"]:
            logger.exception("Command failed")
        else:
            click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """
    Hollon orchestrator tools over a JSON snapshot of tasks, workers and teams.

    Plan execution order:
        hollon plan snapshot.json

    Run one task in an isolated worktree:
        hollon execute snapshot.json TASK_ID WORKER_ID --repo ~/src/widgets --save
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--project", help="Only tasks of this project")
@click.pass_context
def plan(ctx: click.Context, snapshot: str, project: Optional[str]) -> None:
    """Validate dependencies and print execution batches."""

    async def run() -> None:
        repositories = await load_snapshot(snapshot)
        filters = {"project_id": project} if project else {}
        graph = DependencyGraph(await repositories.tasks.find(**filters))

        validation = graph.validate()
        for missing in validation.missing_dependencies:
            click.echo(f"Missing dependency: {missing}")
        if validation.has_cycles:
            for cycle in validation.cycles:
                click.echo(f"Cycle: {' -> '.join(cycle)}")
            raise HollonError("Dependency graph contains cycles")

        def label(task_id: str) -> str:
            task = graph.get_task(task_id)
            return f"{task.title} [{task_id[:8]}]" if task else task_id

        for number, batch in enumerate(graph.execution_batches(), start=1):
            click.echo(f"Batch {number}:")
            for task_id in batch:
                click.echo(f"  - {label(task_id)}")

        critical = graph.critical_path()
        if critical:
            click.echo("Critical path: " + " -> ".join(label(t) for t in critical))

    _run(ctx, run())


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--project", help="Only tasks of this project")
@click.option("--save", is_flag=True, help="Write assignments back to the snapshot")
@click.pass_context
def assign(ctx: click.Context, snapshot: str, project: Optional[str], save: bool) -> None:
    """Assign unassigned tasks to their best matching workers."""

    async def run() -> None:
        repositories = await load_snapshot(snapshot)
        matcher = WorkerMatcher(repositories, OrchestratorConfig())
        result = await matcher.assign_project(project_id=project)

        for assignment in result.assignments:
            click.echo(
                f"{assignment.task.title} -> {assignment.worker.name} "
                f"({assignment.match_score:.0f})"
            )
        click.echo(
            f"Assigned {result.assigned_tasks}, unassigned {result.unassigned_tasks}, "
            f"average match {result.average_match_score:.1f}"
        )
        for warning in result.warnings:
            click.echo(f"Warning: {warning}")

        if save:
            await save_snapshot(repositories, snapshot)

    _run(ctx, run())


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--project", help="Only tasks of this project")
@click.option("--spikes", is_flag=True, help="Create research spikes for uncertain tasks")
@click.option("--save", is_flag=True, help="Write created spikes back to the snapshot")
@click.pass_context
def uncertainty(
    ctx: click.Context, snapshot: str, project: Optional[str], spikes: bool, save: bool
) -> None:
    """Report ambiguous pending tasks."""

    async def run() -> None:
        repositories = await load_snapshot(snapshot)
        analyzer = UncertaintyAnalyzer(repositories.tasks, OrchestratorConfig())

        result = await analyzer.detect_uncertainty(
            options=DecisionOptions(auto_generate_spikes=spikes), project_id=project
        )

        for entry in result.uncertain_tasks:
            click.echo(
                f"[{entry.uncertainty_level.value}] {entry.task.title}: "
                f"{', '.join(entry.uncertainty_factors)} -> {entry.recommended_action.value}"
            )
        for spike in result.spikes_generated:
            click.echo(f"Spike: {spike.title} ({spike.timebox_hours}h)")
        for recommendation in result.recommendations:
            click.echo(recommendation)

        if save:
            await save_snapshot(repositories, snapshot)

    _run(ctx, run())


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.option("--from", "old_direction", required=True, help="Current direction")
@click.option("--to", "new_direction", required=True, help="New direction")
@click.option("--area", "areas", multiple=True, help="Limit to tasks tagged with an area")
@click.option(
    "--type",
    "pivot_type",
    type=click.Choice([t.value for t in PivotType]),
    default=PivotType.STRATEGIC.value,
)
@click.option("--project", help="Only tasks of this project")
@click.option("--apply", is_flag=True, help="Cancel discarded tasks and create replacements")
@click.option("--save", is_flag=True, help="Write changes back to the snapshot")
@click.pass_context
def pivot(
    ctx: click.Context,
    snapshot: str,
    old_direction: str,
    new_direction: str,
    areas: Tuple[str, ...],
    pivot_type: str,
    project: Optional[str],
    apply: bool,
    save: bool,
) -> None:
    """Analyze the impact of a change of direction on open tasks."""

    async def run() -> None:
        repositories = await load_snapshot(snapshot)
        analyzer = PivotImpactAnalyzer(repositories.tasks)

        context = PivotContext(
            pivot_type=PivotType(pivot_type),
            old_direction=old_direction,
            new_direction=new_direction,
            affected_areas=list(areas),
        )
        options = PivotOptions(
            dry_run=not apply,
            auto_archive_tasks=apply,
            auto_create_replacements=apply,
        )

        result = await analyzer.analyze_pivot(context, options=options, project_id=project)

        for entry in result.affected_tasks:
            click.echo(
                f"[{entry.impact_level.value}] {entry.task.title}: "
                f"alignment {entry.alignment_score:.0f}, cost {entry.adaptation_cost:.0f} "
                f"-> {entry.recommendation.value}"
            )
        click.echo(
            f"Impact score {result.total_impact_score:.1f}, "
            f"transition ~{result.estimated_transition_hours}h"
        )
        if apply:
            click.echo(
                f"Cancelled {len(result.cancelled_task_ids)}, "
                f"created {len(result.created_task_ids)}"
            )
        for warning in result.warnings:
            click.echo(f"Warning: {warning}")
        for recommendation in result.recommendations:
            click.echo(recommendation)

        if save:
            await save_snapshot(repositories, snapshot)

    _run(ctx, run())


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.argument("task_id")
@click.argument("worker_id")
@click.option(
    "--repo",
    "repository_path",
    type=click.Path(exists=True, file_okay=False),
    help="Repository the worker operates on (defaults to the task's project path)",
)
@click.option("--save", is_flag=True, help="Write task state back to the snapshot")
@click.pass_context
def execute(
    ctx: click.Context,
    snapshot: str,
    task_id: str,
    worker_id: str,
    repository_path: Optional[str],
    save: bool,
) -> None:
    """Execute one task in an isolated worktree and print the outcome."""

    async def run() -> None:
        repositories = await load_snapshot(snapshot)
        system = HollonSystem(repositories=repositories, repository_path=repository_path)

        outcome = await system.execute_task(task_id, worker_id)
        click.echo(outcome.model_dump_json(indent=2))

        if save:
            await save_snapshot(repositories, snapshot)

    _run(ctx, run())


@main.command()
@click.argument("snapshot", type=click.Path(exists=True, dir_okay=False))
@click.argument("task_id")
@click.pass_context
def complete(ctx: click.Context, snapshot: str, task_id: str) -> None:
    """Mark a reviewed task completed, unblock its dependents and save."""

    async def run() -> None:
        repositories = await load_snapshot(snapshot)
        system = HollonSystem(repositories=repositories)

        await system.complete_task(task_id)
        await save_snapshot(repositories, snapshot)
        click.echo(f"Task {task_id} completed")

    _run(ctx, run())


if __name__ == "__main__":
    main()
