"""Command-line entry point for Referent."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.markup import escape

from referent.dependencies import get_article_pipeline_service
from referent.logging_config import configure_cli_logging
from referent.services.article_extractor import ParsedArticle
from referent.services.article_pipeline_service import ArticleSession
from referent.services.stage_errors import TRANSFORM_STAGES, ErrorInfo, PipelineStage

console = Console()

_STAGE_CHOICES = [stage.value for stage in TRANSFORM_STAGES]


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline activity to stderr.")
def main(verbose: bool) -> None:
    """Referent - fetch an article and turn it into a translation, summary or post."""
    configure_cli_logging(verbose=verbose)


@main.command()
@click.argument("url")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
def parse(url: str, as_json: bool) -> None:
    """Fetch URL and print the extracted title, date and text."""
    outcome = get_article_pipeline_service().parse_article(url)
    if outcome.error is not None:
        _fail(outcome.error, as_json=as_json)
    assert outcome.article is not None

    if as_json:
        click.echo(json.dumps(outcome.article.as_payload(), ensure_ascii=False, indent=2))
        return
    _print_article(outcome.article)


@main.command()
@click.argument("url")
@click.option(
    "--stage",
    "-s",
    "stages",
    type=click.Choice(_STAGE_CHOICES, case_sensitive=False),
    multiple=True,
    required=True,
    help="Transform to run. Repeat to run several against one download.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the results as JSON.")
def run(url: str, stages: tuple[str, ...], as_json: bool) -> None:
    """Fetch URL once and run each requested transform on it."""
    service = get_article_pipeline_service()
    session = ArticleSession()
    results: dict[str, str] = {}

    for stage_name in stages:
        stage = PipelineStage.from_transform_name(stage_name)
        outcome = service.run(stage, url, session=session)
        if outcome.error is not None:
            _fail(outcome.error, as_json=as_json)
        assert outcome.result is not None
        results[stage.value] = outcome.result
        if not as_json:
            console.print(f"\n[bold cyan]{stage.value.upper()}[/bold cyan]\n")
            console.print(escape(outcome.result))

    if as_json:
        click.echo(json.dumps(results, ensure_ascii=False, indent=2))


def _print_article(article: ParsedArticle) -> None:
    console.print(f"\n[bold]{escape(article.title)}[/bold]")
    console.print(f"[dim]{escape(article.date)}[/dim]\n")
    console.print(escape(article.content))


def _fail(error: ErrorInfo, *, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(error.as_payload(), ensure_ascii=False))
    else:
        console.print(f"[red]{escape(error.message)}[/red]")
    raise SystemExit(1)


if __name__ == "__main__":
    main()
