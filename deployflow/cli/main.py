"""Command-line interface for deployflow.

Provides CLI commands for running, planning and pruning pipeline builds.
"""

import logging
import sys
from typing import Optional

import click


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("deployflow.cli")


def _load_config(path: str):
    from deployflow.pipeline import PipelineConfig

    pipeline_config = PipelineConfig(path)
    pipeline_config.load()
    pipeline_config.parse_stages()

    valid, errors = pipeline_config.validate()
    if not valid:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(2)
    return pipeline_config


@click.group()
@click.version_option(version="0.1.0", prog_name="deployflow")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """deployflow: staged build/deploy/visualize pipeline runner.

    Runs the stages declared in a pipeline YAML file as external commands,
    with a global timeout, post-run hooks, artifact retention and failure
    notification.

    Examples:

        # Show the stages and commands without running them
        deployflow plan --config pipeline.yaml

        # Run the pipeline
        deployflow run --config pipeline.yaml

        # Keep only the five most recent builds
        deployflow prune --config pipeline.yaml --keep 5
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Pipeline configuration file (YAML)")
@click.option("--build-number", type=int, default=None,
              help="Explicit build number (must exceed the last one)")
@click.option("--timeout-minutes", type=float, default=None,
              help="Override the global timeout")
@click.option("--strict", is_flag=True, help="Exit with code 3 when the run is UNSTABLE")
@click.pass_context
def run(
    ctx: click.Context,
    config: str,
    build_number: Optional[int],
    timeout_minutes: Optional[float],
    strict: bool,
) -> None:
    """Run the pipeline once.

    Exit codes: 0 SUCCESS or UNSTABLE, 1 FAILURE, 2 invalid configuration,
    3 UNSTABLE with --strict.
    """
    verbose = ctx.obj["verbose"] or ctx.obj["debug"]

    from deployflow.pipeline import PipelineLogger, PipelineOrchestrator, RunStatus

    pipeline_config = _load_config(config)

    pipeline_logger = PipelineLogger(log_level="DEBUG" if verbose else "INFO")
    pipeline_logger.setup()

    orchestrator = PipelineOrchestrator.from_config(pipeline_config, pipeline_logger)
    timeout = timeout_minutes * 60 if timeout_minutes is not None else None

    try:
        result = orchestrator.run(build_number=build_number, timeout_seconds=timeout)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    click.echo(f"Build #{result.build_number}: {result.status.value}")
    if result.status is RunStatus.FAILURE:
        sys.exit(1)
    if result.status is RunStatus.UNSTABLE and strict:
        sys.exit(3)


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Pipeline configuration file (YAML)")
def plan(config: str) -> None:
    """Show the execution plan without running anything."""
    pipeline_config = _load_config(config)

    order = pipeline_config.get_execution_order()
    click.echo(f"Pipeline stages: {' -> '.join(order)}")
    click.echo(f"Global timeout: {pipeline_config.timeout_seconds:.0f}s")
    for stage_id in order:
        stage = pipeline_config.stages[stage_id]
        flags = []
        if stage.non_fatal:
            flags.append("non-fatal")
        if stage.record_metrics:
            flags.append("metrics")
        suffix = f" ({', '.join(flags)})" if flags else ""
        click.echo(f"  {stage_id}: {stage.name}{suffix}")
        for step in stage.steps:
            marker = " || true" if step.allow_failure else ""
            click.echo(f"    - {step.name}: {step.display_command()}{marker}")
        if stage.service is not None:
            click.echo(f"    - service: {stage.service.pattern}")


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Pipeline configuration file (YAML)")
@click.option("--keep", type=int, default=None, help="Builds to keep (default from config)")
@click.pass_context
def prune(ctx: click.Context, config: str, keep: Optional[int]) -> None:
    """Delete logs and artifacts of all but the most recent builds."""
    from deployflow.io import ArtifactArchiver

    pipeline_config = _load_config(config)
    keep = keep if keep is not None else pipeline_config.keep_builds

    archiver = ArtifactArchiver(
        pipeline_config.artifacts_dir, workspace=pipeline_config.workspace
    )
    removed = archiver.prune(keep, extra_roots=[pipeline_config.logs_dir])
    for path in removed:
        ctx.obj["logger"].info(f"Removed {path}")
    click.echo(f"Pruned {len(removed)} build director(ies), kept {keep}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
