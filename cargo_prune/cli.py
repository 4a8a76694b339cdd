"""CLI entry point: cargo-prune.

    cargo-prune                      # analyze the workspace in the current directory
    cargo-prune path/to/ws --fix     # remove unused / move misplaced dependencies
    cargo-prune -p core --format json
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
import structlog

from cargo_prune import __version__
from cargo_prune.config import OUTPUT_FORMATS, PruneOptions, default_jobs
from cargo_prune.core.logging import setup_logging
from cargo_prune.exceptions import PruneError
from cargo_prune.orchestrator import PruneOrchestrator
from cargo_prune.progress import PhaseProgress
from cargo_prune.reporter import EXIT_FATAL, emit

log = structlog.get_logger("cargo_prune.cli")


def _echo_phase(phase: PhaseProgress) -> None:
    if phase.status == "running":
        click.echo(f"cargo-prune: {phase.phase}...", err=True)


@click.command()
@click.argument(
    "path",
    type=click.Path(exists=True, path_type=Path),
    default=".",
    required=False,
)
@click.option("--fix", is_flag=True, help="Apply fixes to the manifests")
@click.option("--expand", is_flag=True, help="Also scan macro-expanded code (needs nightly)")
@click.option(
    "-p",
    "--package",
    "packages",
    multiple=True,
    help="Only analyze this package (repeatable)",
)
@click.option("--exclude", multiple=True, help="Skip this package (repeatable)")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default="human",
    show_default=True,
    help="Report format",
)
@click.option(
    "--metadata-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read `cargo metadata` output from a file instead of running cargo",
)
@click.option(
    "-j",
    "--jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Packages analyzed in parallel [default: CPU count]",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="cargo-prune")
def main(
    path: Path,
    fix: bool,
    expand: bool,
    packages: tuple[str, ...],
    exclude: tuple[str, ...],
    output_format: str,
    metadata_file: Path | None,
    jobs: int | None,
    verbose: bool,
) -> None:
    """Find unused and misplaced dependencies and unlinked files in a Cargo workspace."""
    setup_logging(verbose)
    options = PruneOptions(
        path=path.resolve(),
        fix=fix,
        expand=expand,
        packages=packages,
        exclude=exclude,
        format=output_format,
        metadata_file=metadata_file,
        jobs=jobs or default_jobs(),
        verbose=verbose,
    )

    orchestrator = PruneOrchestrator(options)
    if verbose:
        orchestrator.progress.callbacks.append(_echo_phase)
    try:
        result = orchestrator.run()
    except PruneError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FATAL)
    except Exception as e:
        log.error("cli.unexpected_error", exc_info=True)
        click.echo(f"Error: unexpected failure: {e}", err=True)
        sys.exit(EXIT_FATAL)
    finally:
        if verbose:
            for line in orchestrator.progress.lines():
                click.echo(line, err=True)

    emit(result.findings, result.workspace.root, options.format)
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
