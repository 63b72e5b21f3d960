import asyncio
import json
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fetchbrain.cli.callbacks import json_data_callback
from fetchbrain.client import KnowledgeClient
from fetchbrain.config import API_KEY_ENV_VAR, BASE_URL_ENV_VAR, FetchBrainConfig
from fetchbrain.logging import logging_context, setup_logging
from fetchbrain.models import IntelligenceLevel, KnowledgeResult

app = typer.Typer(no_args_is_help=True)
console = Console()

ApiKeyOption = Annotated[
    str | None,
    typer.Option(
        "--api-key",
        envvar=API_KEY_ENV_VAR,
        help="API key for the knowledge service",
        rich_help_panel="Connection",
    ),
]
BaseUrlOption = Annotated[
    str | None,
    typer.Option(
        "--base-url",
        envvar=BASE_URL_ENV_VAR,
        help="Base URL of the knowledge service",
        rich_help_panel="Connection",
    ),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", help="Request timeout in seconds", rich_help_panel="Connection"),
]
DebugOption = Annotated[bool, typer.Option("--debug", help="Enable debug logging")]
JsonLogsOption = Annotated[bool, typer.Option("--json-logs", help="Log one JSON object per line")]


def build_client(**options) -> KnowledgeClient:
    values = {key: value for key, value in options.items() if value is not None}
    try:
        config = FetchBrainConfig(**values)
    except ValueError as error:
        typer.echo(f"Invalid configuration: {error}", err=True)
        raise typer.Exit(1) from error
    return KnowledgeClient(config=config)


def print_results(results: dict[str, KnowledgeResult]):
    table = Table("URL", "Known", "Confidence", "Data", title="Knowledge")
    for url, result in results.items():
        if result.fallback:
            known = "[yellow]unavailable[/yellow]"
        elif result.known:
            known = "[green]yes[/green]"
        else:
            known = "[red]no[/red]"
        table.add_row(
            url,
            known,
            f"{result.confidence:.2f}" if result.confidence is not None else "-",
            json.dumps(result.data) if result.data else "-",
        )
    console.print(table)


@app.command(name="query")
def query_urls(
    urls: Annotated[list[str], typer.Argument(help="URLs to look up")],
    intelligence: Annotated[
        IntelligenceLevel,
        typer.Option("-i", "--intelligence", help="Intelligence level to query with"),
    ] = IntelligenceLevel.high,
    api_key: ApiKeyOption = None,
    base_url: BaseUrlOption = None,
    timeout: TimeoutOption = 5.0,
    debug: DebugOption = False,
    json_logs: JsonLogsOption = False,
):
    """Ask whether the knowledge service knows URLs"""
    setup_logging(debug=debug, json_logs=json_logs)
    client = build_client(
        api_key=api_key,
        base_url=base_url,
        intelligence_level=intelligence,
        timeout_seconds=timeout,
        debug=debug,
    )

    async def run() -> dict[str, KnowledgeResult]:
        try:
            return await client.query_bulk(urls)
        finally:
            await client.close()

    with logging_context(command="query"):
        results = asyncio.run(run())
    print_results(results=results)
    if any(result.fallback for result in results.values()):
        raise typer.Exit(1)


@app.command(name="teach")
def teach_url(
    url: Annotated[str, typer.Argument(help="URL the data was scraped from")],
    data: Annotated[
        str,
        typer.Option("--data", help="Scraped data as a JSON object", callback=json_data_callback),
    ],
    api_key: ApiKeyOption = None,
    base_url: BaseUrlOption = None,
    timeout: TimeoutOption = 5.0,
    debug: DebugOption = False,
    json_logs: JsonLogsOption = False,
):
    """Teach the knowledge service data scraped from a URL"""
    setup_logging(debug=debug, json_logs=json_logs)
    client = build_client(api_key=api_key, base_url=base_url, timeout_seconds=timeout, debug=debug)

    async def run():
        try:
            return await client.teach(url, data)  # type: ignore[arg-type]
        finally:
            await client.close()

    with logging_context(command="teach"):
        response = asyncio.run(run())
    color = "green" if response.accepted else "red"
    values = f"Status: [{color}]{response.status}[/{color}]\nLearned: {response.learned}"
    if response.verification is not None and response.verification.warnings:
        values += "\nWarnings: " + ", ".join(response.verification.warnings)
    console.print(Panel(values, title=url, expand=False, highlight=True))
    if not response.accepted:
        raise typer.Exit(1)


@app.command(name="stats")
def show_stats(
    api_key: ApiKeyOption = None,
    base_url: BaseUrlOption = None,
    timeout: TimeoutOption = 5.0,
    debug: DebugOption = False,
    json_logs: JsonLogsOption = False,
):
    """Show usage statistics"""
    setup_logging(debug=debug, json_logs=json_logs)
    client = build_client(api_key=api_key, base_url=base_url, timeout_seconds=timeout, debug=debug)

    async def run():
        try:
            return await client.stats()
        finally:
            await client.close()

    with logging_context(command="stats"):
        stats = asyncio.run(run())
    if stats is None:
        typer.echo("Knowledge service unavailable", err=True)
        raise typer.Exit(1)
    values = "\n".join(
        [
            f"Period: {stats.period}",
            f"Queries: {stats.queries}",
            f"Recognized: {stats.recognized}",
            f"Recognition Rate: {stats.recognition_rate:.1%}",
            f"Learned: {stats.learned}",
        ]
    )
    console.print(Panel(values, title="Usage", expand=False, highlight=True))
