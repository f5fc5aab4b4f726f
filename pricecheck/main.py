"""Command line entrypoint for the pricing pipeline"""

import asyncio
import json
import logging
from pathlib import Path
import sys
from typing import List, Optional

import structlog
from structlog.stdlib import LoggerFactory
import typer
from rich.console import Console
from rich.table import Table

from pricecheck.config import Config, load_config
from pricecheck.errors import PricingError
from pricecheck.models import FlatModel
from pricecheck.notify import build_notifier
from pricecheck.pipeline import PricingPipeline, RunReport, run_once, submissions_path
from pricecheck.scoring import compare as compare_models
from pricecheck.scoring import flatten, search_models, top_charts
from pricecheck.sources.extraction import BatchItem
from pricecheck.sources.registry import build_extraction_adapter
from pricecheck.sources.submission import SubmissionQueue, parse_submission
from pricecheck.store import build_store
from pricecheck.utils import load_batch_file

app = typer.Typer(help="LLM pricing reconciliation pipeline")
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog through stdlib logging on stderr"""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _config() -> Config:
    config = load_config()
    configure_logging(config.log_level, config.log_json)
    return config


def _print_report(report: RunReport) -> None:
    console.print(
        f"Observations: {len(report.observations)}  "
        f"Changes: {len(report.changes)}  "
        f"New models: {len(report.new_models)}  "
        f"Models in dataset: {report.total_models}"
    )

    if report.changes:
        table = Table(title="Significant price changes")
        for column in ("Provider", "Model", "Field", "Old", "New", "Change", "Conf."):
            table.add_column(column)
        for change in report.changes:
            table.add_row(
                change.provider,
                change.model,
                change.field.replace("_per_million", ""),
                f"${change.old_value:.2f}",
                f"${change.new_value:.2f}",
                f"{change.change_percent:+}%",
                f"{change.confidence * 100:.0f}%",
            )
        console.print(table)

    for line in report.diff_lines:
        console.print(f"  {line}")
    for anomaly in report.anomalies:
        console.print(f"[yellow]![/] {anomaly}")
    for name in report.failed_sources:
        console.print(f"[yellow]Source failed:[/] {name}")

    if report.published:
        console.print("[green]✓[/] Published to the canonical dataset")
    if report.pending_review:
        held = ", ".join(d.provider for d in report.held)
        console.print(
            f"[yellow]⚠[/] Held for review: {held}. Run `pricecheck approve` to publish."
        )


def _model_table(title: str, models: List[FlatModel]) -> Table:
    table = Table(title=title)
    for column in ("Provider", "Model", "Input $/M", "Output $/M", "Context", "Free tier", "Score"):
        table.add_column(column)
    for m in models:
        table.add_row(
            m.provider,
            m.name,
            f"{m.input_per_million:g}",
            f"{m.output_per_million:g}",
            f"{m.context_window:,}",
            m.free_tier or "",
            str(m.score),
        )
    return table


def _load_models(config: Config) -> List[FlatModel]:
    dataset = build_store(config).load()
    if dataset is None or not dataset.model_count():
        _fail("No pricing data found. Run `pricecheck seed` or `pricecheck update` first.")
    return flatten(dataset)


@app.command()
def update(
    auto_publish: bool = typer.Option(
        False, "--auto-publish", help="Publish even when confidence is below the threshold"
    ),
):
    """Run the scheduled update: aggregator, verified overlay and queued submissions."""
    config = _config()

    try:
        report = asyncio.run(run_once(config, auto_publish=auto_publish))
    except PricingError as e:
        logger.error("update_failed", error=str(e))
        _fail(str(e))

    _print_report(report)
    sys.exit(EXIT_CODE_OK)


@app.command()
def extract(
    target: str = typer.Argument(..., help="Documentation URL, or a batch file with --batch"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider name hint"),
    batch: bool = typer.Option(False, "--batch", "-b", help="Treat TARGET as a JSON/YAML batch file"),
    merge: bool = typer.Option(False, "--merge", help="Merge results through the publish policy"),
    auto_publish: bool = typer.Option(False, "--auto-publish", help="Publish regardless of confidence"),
):
    """Extract pricing from documentation pages with an LLM."""
    config = _config()

    try:
        if batch:
            items = [BatchItem(**item) for item in load_batch_file(target)]
        else:
            items = [BatchItem(url=target, provider=provider)]

        adapter = build_extraction_adapter(config, items)
        pipeline = PricingPipeline(
            config,
            build_store(config),
            [adapter],
            notifier=build_notifier(config),
        )

        async def _run():
            try:
                return await pipeline.extract(
                    adapter,
                    url=None if batch else target,
                    provider_hint=provider,
                    merge=merge,
                    auto_publish=auto_publish,
                )
            finally:
                await pipeline.aclose()

        report = asyncio.run(_run())
    except PricingError as e:
        logger.error("extraction_failed", target=target, error=str(e))
        _fail(str(e))

    console.print_json(
        json.dumps([o.model_dump(mode="json") for o in report.observations])
    )
    if batch:
        console.print(f"Extracted {len(report.observations)}/{len(items)} URLs")
    if merge:
        _print_report(report)
    sys.exit(EXIT_CODE_OK)


@app.command()
def merge(
    provider_id: str = typer.Argument(..., help="Provider id, e.g. 'openai'"),
    payload: str = typer.Argument(..., help="Provider JSON, or a path to a JSON file"),
):
    """Merge a provider payload into the canonical dataset."""
    config = _config()

    path = Path(payload)
    if not payload.lstrip().startswith("{") and path.is_file():
        payload = path.read_text(encoding="utf-8")

    try:
        pipeline = PricingPipeline(config, build_store(config))
        result = pipeline.merge_payload(provider_id, payload)
    except PricingError as e:
        _fail(str(e))

    if result.new_provider:
        console.print(f"[green]✓[/] Added new provider {provider_id} ({len(result.added)} models)")
    else:
        for name in result.added:
            console.print(f"  + {name}")
        for line in result.diff_lines:
            console.print(f"  {line}")
        for name in result.removed:
            console.print(f"  - {name}")
    console.print(
        f"[green]✓[/] Merged {provider_id}. "
        f"Total models: {result.dataset.metadata.total_model_count}"
    )
    sys.exit(EXIT_CODE_OK)


@app.command()
def approve():
    """Publish the dataset held for review."""
    config = _config()

    try:
        dataset = PricingPipeline(config, build_store(config)).approve_pending()
    except PricingError as e:
        _fail(str(e))

    console.print(f"[green]✓[/] Approved. Total models: {dataset.metadata.total_model_count}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def seed():
    """Create the initial dataset from the verified constants."""
    config = _config()

    try:
        dataset = PricingPipeline(config, build_store(config)).seed()
    except PricingError as e:
        _fail(str(e))

    if dataset is None:
        console.print("Dataset already exists, nothing to seed")
    else:
        console.print(f"[green]✓[/] Seeded {dataset.metadata.total_model_count} models")
    sys.exit(EXIT_CODE_OK)


@app.command()
def compare():
    """Show the best overall, best free, best value and hidden gem picks."""
    config = _config()

    try:
        result = compare_models(_load_models(config))
    except PricingError as e:
        _fail(str(e))

    picks = [
        ("Best overall", result.best_overall),
        ("Best free", result.best_free),
        ("Best value", result.best_value),
        ("Hidden gem", result.hidden_gem),
    ]
    table = Table(title="Highlights")
    for column in ("Pick", "Provider", "Model", "Total $/M", "Score"):
        table.add_column(column)
    for label, model in picks:
        if model is None:
            table.add_row(label, "-", "-", "-", "-")
        else:
            table.add_row(label, model.provider, model.name, f"{model.total_cost:g}", str(model.score))
    console.print(table)
    console.print(_model_table("All models", result.all_models))
    sys.exit(EXIT_CODE_OK)


@app.command()
def top(limit: int = typer.Option(5, "--limit", "-n", min=1, help="Entries per chart")):
    """Show the cheapest, fastest and best-benchmarked models."""
    config = _config()

    try:
        charts = top_charts(_load_models(config), limit=limit)
    except PricingError as e:
        _fail(str(e))

    console.print(_model_table("Cheapest", charts["price"]))
    if charts["speed"]:
        console.print(_model_table("Fastest", charts["speed"]))
    if charts["benchmark"]:
        console.print(_model_table("Best benchmark", charts["benchmark"]))
    sys.exit(EXIT_CODE_OK)


@app.command()
def search(query: str = typer.Argument(..., help="Provider or model name fragment")):
    """Search models by provider or model name."""
    config = _config()

    try:
        matches = search_models(_load_models(config), query)
    except PricingError as e:
        _fail(str(e))

    if not matches:
        console.print(f"No models match '{query}'")
    else:
        console.print(_model_table(f"Results for '{query}'", matches))
    sys.exit(EXIT_CODE_OK)


@app.command()
def submit(
    provider_name: str = typer.Option("", "--provider", help="Provider name"),
    website: str = typer.Option("", "--website", help="Provider pricing page"),
    model_name: Optional[str] = typer.Option(None, "--model", help="Model name"),
    input_price: Optional[str] = typer.Option(None, "--input", help="Input price per 1M tokens"),
    output_price: Optional[str] = typer.Option(None, "--output", help="Output price per 1M tokens"),
    context_window: Optional[int] = typer.Option(None, "--context", help="Context window in tokens"),
    user_email: Optional[str] = typer.Option(None, "--email", help="Contact email"),
):
    """Queue a pricing submission for the next update."""
    config = _config()

    try:
        submission = parse_submission(
            {
                "provider_name": provider_name,
                "website": website,
                "model_name": model_name,
                "input_price": input_price,
                "output_price": output_price,
                "context_window": context_window,
                "user_email": user_email,
            }
        )
        position = SubmissionQueue(submissions_path(config)).add(submission)
    except PricingError as e:
        _fail(str(e))

    console.print(f"[green]✓[/] Submission received. {position} in queue.")
    sys.exit(EXIT_CODE_OK)


def main():
    """Console script entry point"""
    app()


if __name__ == "__main__":
    main()
