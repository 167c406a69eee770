"""Command-line interface for requirement contradiction analysis.

Usage:
    reqconflict --help
    reqconflict analyze requirements.txt
    reqconflict analyze requirements.txt --similarity-threshold 0.5 --json
    reqconflict warm-models
    reqconflict task-status TASK_ID

Environment Variables:
    HUGGINGFACE_API_KEY: Inference API token (required for analyze/warm-models)
    REQCONFLICT_API_URL: API base URL for task-status (default: http://localhost:8000)
"""

import asyncio
import json
import os
import sys
from pathlib import Path

import click
import httpx
from pydantic import ValidationError

from reqconflict.core.backoff import BackoffCaller
from reqconflict.core.config import get_settings
from reqconflict.core.logging import configure_logging
from reqconflict.engines.contradiction.analyzer import PairwiseAnalyzer
from reqconflict.engines.contradiction.scorer import InferenceScorer
from reqconflict.engines.contradiction.warmup import ModelWarmer
from reqconflict.models.contradiction import AnalysisOptions, AnalysisResponse
from reqconflict.services.analysis_service import ContradictionAnalysisService
from reqconflict.services.comparison_store import InMemoryComparisonStore

API_URL = os.getenv("REQCONFLICT_API_URL", "http://localhost:8000")


def read_requirements(path: Path) -> list[str]:
    """Read one requirement per non-blank line."""
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


async def _analyze(requirements: list[str], options: AnalysisOptions) -> AnalysisResponse:
    scorer = InferenceScorer()
    try:
        service = ContradictionAnalysisService(
            analyzer=PairwiseAnalyzer(scorer),
            store=InMemoryComparisonStore(),
            dispatch_mode="inline",
        )
        return await service.analyze(requirements, options)
    finally:
        await scorer.aclose()


def _print_response(response: AnalysisResponse) -> None:
    click.echo(
        f"Analyzed {response.requirements_analyzed} requirements: "
        f"{response.comparisons_made} comparisons, "
        f"{response.nli_checks_made} NLI checks, "
        f"{response.processing_time_seconds:.1f}s"
    )
    if response.requirements_truncated_from is not None:
        click.echo(f"Input truncated from {response.requirements_truncated_from} requirements")
    if response.skipped_short_requirements:
        skipped = ", ".join(str(i + 1) for i in response.skipped_short_requirements)
        click.echo(f"Skipped (too short): lines {skipped}")

    if not response.contradictions:
        click.echo("No contradictions found.")
    else:
        click.echo(f"\nContradictions ({len(response.contradictions)}):")
        for finding in response.contradictions:
            click.echo("-" * 60)
            click.echo(
                f"  #{finding.requirement1.index + 1} vs #{finding.requirement2.index + 1}  "
                f"similarity={finding.similarity_score:.2f}  "
                f"contradiction={finding.contradiction_score:.2f}"
            )
            click.echo(f"  A: {finding.requirement1.text}")
            click.echo(f"  B: {finding.requirement2.text}")

    if response.errors:
        click.echo(f"\nErrors: {response.errors}", err=True)


@click.group()
@click.version_option(version="1.0.0", prog_name="reqconflict")
def cli():
    """Requirement contradiction analysis."""
    configure_logging(stream=sys.stderr)


@cli.command("analyze")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--similarity-threshold",
    type=float,
    default=lambda: get_settings().contradiction_similarity_threshold,
    show_default="CONTRADICTION_SIMILARITY_THRESHOLD",
)
@click.option(
    "--contradiction-threshold",
    type=float,
    default=lambda: get_settings().contradiction_nli_threshold,
    show_default="CONTRADICTION_NLI_THRESHOLD",
)
@click.option(
    "--max-requirements",
    type=int,
    default=lambda: get_settings().contradiction_max_requirements,
    show_default="CONTRADICTION_MAX_REQUIREMENTS",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON response")
def analyze(
    file: Path,
    similarity_threshold: float,
    contradiction_threshold: float,
    max_requirements: int,
    as_json: bool,
):
    """Analyze a file of requirements (one per line) for contradictions."""
    try:
        options = AnalysisOptions(
            similarity_threshold=similarity_threshold,
            contradiction_threshold=contradiction_threshold,
            max_requirements=max_requirements,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    requirements = read_requirements(file)
    if len(requirements) < 2:
        click.echo("Need at least two requirements to compare.", err=True)
        sys.exit(1)

    response = asyncio.run(_analyze(requirements, options))

    if as_json:
        click.echo(response.model_dump_json(by_alias=True, indent=2))
    else:
        _print_response(response)


@cli.command("warm-models")
def warm_models():
    """Send a minimal request to each inference model."""

    async def _warm():
        async with BackoffCaller() as caller:
            return await ModelWarmer(caller=caller).warm_all()

    results = asyncio.run(_warm())
    for result in results:
        mark = "OK" if result.success else "FAILED"
        suffix = f" ({result.error})" if result.error else ""
        click.echo(f"{mark:7} {result.model}{suffix}")

    if not all(r.success for r in results):
        sys.exit(1)


@cli.command("task-status")
@click.argument("task_id")
def task_status(task_id: str):
    """Show the status of a background analysis task via the API."""
    url = f"{API_URL}/api/contradictions/tasks/{task_id}"

    try:
        response = httpx.get(url, timeout=30.0)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        click.echo(f"API Error: {e.response.status_code}", err=True)
        try:
            error = e.response.json().get("error", {})
            click.echo(f"  {error.get('code')}: {error.get('message')}", err=True)
        except (ValueError, AttributeError):
            click.echo(f"  Response: {e.response.text}", err=True)
        sys.exit(1)
    except httpx.RequestError as e:
        click.echo(f"Request Error: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(response.json(), indent=2))


if __name__ == "__main__":
    cli()
