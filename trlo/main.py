"""Main entry point for the trlo application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Coroutine, Dict, Optional

import typer
from typing_extensions import Annotated

from trlo import __version__

# --- Core Layer ---
from trlo.core.command_handler import CommandHandler
from trlo.core.services.batch_service import BatchService

# --- Infrastructure Layer ---
from trlo.infrastructure.cli.display import ConsoleDisplay
from trlo.infrastructure.config.settings import (
    get_batch_defaults, get_config, get_max_concurrency, get_rate_limit_policy, get_retry_policy,
    get_trello_api_key, get_trello_base_url, get_trello_token, load_configuration,
)
from trlo.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, parse_log_level, setup_logging
from trlo.infrastructure.resilience.api_retry import ApiRetryService
from trlo.infrastructure.resilience.rate_limiter import RateLimiter
from trlo.infrastructure.trello.trello_client import TrelloClient

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


# --- Dependency Injection Container (Manual) ---

def create_dependencies(api_key: Optional[str] = None, token: Optional[str] = None,
                        verbose: bool = False) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.

    Args:
        api_key: Trello API key overriding configuration.
        token: Trello API token overriding configuration.
        verbose: Force DEBUG logging and echo batch progress.
    """
    dependencies: Dict[str, Any] = {}

    # 1. Load Configuration First, then logging
    load_configuration()
    log_level = logging.DEBUG if verbose else parse_log_level(get_config("logging.level"))
    setup_logging(
        log_level=log_level,
        log_format=get_config("logging.format", DEFAULT_LOG_FORMAT),
        log_file=get_config("logging.file"),
    )
    logger.debug("Configuration and logging initialized.")

    # 2. Infrastructure adapters & resilience
    ui = ConsoleDisplay(show_progress=verbose)
    dependencies["ui"] = ui
    rate_policy = get_rate_limit_policy()
    dependencies["rate_limiter"] = RateLimiter(
        capacity=rate_policy["capacity"], refill_rate=rate_policy["refill_rate"],
    )
    retry_policy = get_retry_policy()
    dependencies["api_retry_service"] = ApiRetryService(
        rate_limiter=dependencies["rate_limiter"],
        max_retries=retry_policy["max_retries"],
        initial_backoff_s=retry_policy["initial_delay"],
        backoff_factor=retry_policy["factor"],
        max_backoff_s=retry_policy["max_delay"],
        jitter_s=retry_policy["jitter"],
        event_listener=ui.display_event,
    )

    # 3. Remote client (optional: dry runs work without credentials)
    key = api_key or get_trello_api_key()
    secret = token or get_trello_token()
    if key and secret:
        dependencies["client"] = TrelloClient(api_key=key, token=secret, base_url=get_trello_base_url())
    else:
        logger.warning("Trello credentials not found; only dry runs are possible.")
        dependencies["client"] = None

    # 4. Core services
    dependencies["batch_service"] = BatchService(
        client=dependencies["client"],
        api_retry_service=dependencies["api_retry_service"],
        defaults=get_batch_defaults(),
        event_listener=ui.display_event,
        max_concurrency=get_max_concurrency(),
    )

    # 5. Command handler
    dependencies["command_handler"] = CommandHandler(batch_service=dependencies["batch_service"], ui=ui)
    logger.debug("All dependencies initialized successfully.")
    return dependencies


def _get_handler(api_key: Optional[str] = None, token: Optional[str] = None,
                 verbose: bool = False) -> CommandHandler:
    try:
        return create_dependencies(api_key=api_key, token=token, verbose=verbose)["command_handler"]
    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
        raise typer.Exit(code=1)


# --- Typer App Definition ---
app = typer.Typer(
    name="trlo",
    help="trlo: run dependency-aware batches of Trello operations.",
    add_completion=False,
)
batch_app = typer.Typer(help="Run a batch of operations from a file or stdin.")
app.add_typer(batch_app, name="batch")


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, int]) -> int:
    """Runs an async command handler from a sync Typer command and returns its exit code."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        return EXIT_INTERRUPTED


# --- CLI Options ---

class OutputFormat(str, Enum):
    table = "table"
    json = "json"
    markdown = "markdown"


ConcurrencyOption = Annotated[
    Optional[int],
    typer.Option("--concurrency", "-c", min=1, help="Maximum number of API calls in flight.")
]
ContinueOnErrorOption = Annotated[
    Optional[bool],
    typer.Option("--continue-on-error/--stop-on-error",
                 help="Keep running independent operations after a failure.")
]
DryRunOption = Annotated[
    Optional[bool],
    typer.Option("--dry-run/--no-dry-run", help="Validate and plan without calling the API.")
]
TimeoutOption = Annotated[
    Optional[str],
    typer.Option("--timeout", "-t", help="Per-operation timeout, e.g. 30, 500ms, 10s, 2m. 'none' disables it.")
]
FormatOption = Annotated[
    OutputFormat,
    typer.Option("--format", "-f", case_sensitive=False, help="Report format.")
]
QuietOption = Annotated[bool, typer.Option("--quiet", "-q", help="Suppress the results table.")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging and live progress.")]
ApiKeyOption = Annotated[Optional[str], typer.Option("--api-key", help="Trello API key (overrides config).")]
TokenOption = Annotated[Optional[str], typer.Option("--token", help="Trello API token (overrides config).")]


def _overrides(concurrency: Optional[int], continue_on_error: Optional[bool],
               dry_run: Optional[bool], timeout: Optional[str]) -> Dict[str, Any]:
    return {
        "concurrency": concurrency,
        "continue_on_error": continue_on_error,
        "dry_run": dry_run,
        "timeout_per_operation": timeout,
    }


# --- CLI Commands ---

@batch_app.command("file")
def batch_file(
    path: Annotated[Path, typer.Argument(help="Batch document (JSON or YAML).")],
    concurrency: ConcurrencyOption = None,
    continue_on_error: ContinueOnErrorOption = None,
    dry_run: DryRunOption = None,
    timeout: TimeoutOption = None,
    output_format: FormatOption = OutputFormat.table,
    quiet: QuietOption = False,
    verbose: VerboseOption = False,
    api_key: ApiKeyOption = None,
    token: TokenOption = None,
):
    """Run a batch document from a file."""
    handler = _get_handler(api_key, token, verbose)
    code = run_async(handler.handle_batch_file(
        str(path), _overrides(concurrency, continue_on_error, dry_run, timeout), output_format.value, quiet,
    ))
    raise typer.Exit(code=code)


@batch_app.command("stdin")
def batch_stdin(
    concurrency: ConcurrencyOption = None,
    continue_on_error: ContinueOnErrorOption = None,
    dry_run: DryRunOption = None,
    timeout: TimeoutOption = None,
    output_format: FormatOption = OutputFormat.table,
    quiet: QuietOption = False,
    verbose: VerboseOption = False,
    api_key: ApiKeyOption = None,
    token: TokenOption = None,
):
    """Run a batch document read from standard input."""
    handler = _get_handler(api_key, token, verbose)
    text = typer.get_text_stream("stdin").read()
    code = run_async(handler.handle_batch_stdin(
        text, _overrides(concurrency, continue_on_error, dry_run, timeout), output_format.value, quiet,
    ))
    raise typer.Exit(code=code)


@app.command("operations")
def list_operations():
    """List the supported operation types and their required parameters."""
    handler = _get_handler()
    raise typer.Exit(code=handler.handle_list_operations())


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"trlo {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit.")
    ] = None,
):
    """trlo: run dependency-aware batches of Trello operations."""


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
