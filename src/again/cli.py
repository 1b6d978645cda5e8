"""CLI interface for again"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional, Tuple

import click

from again.application.engine import RetryEngine
from again.domain.backoff import backoff_schedule
from again.domain.config.options import RetryOptions
from again.domain.errors import CommandFailedError, ConfigurationError
from again.domain.models.result import RetryResult
from again.domain.models.signal import CancellationSignal
from again.infrastructure.command import CommandOperation
from again.infrastructure.config.config_manager import ConfigManager

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    logging.getLogger().setLevel(level)
    for logger_name in logging.Logger.manager.loggerDict:
        logging.getLogger(logger_name).setLevel(level)


def _die(message: str, verbose: bool = False, exc: Optional[Exception] = None) -> None:
    """Exit with a user-friendly error message"""
    if exc is not None:
        logger.error(message, exc_info=verbose)
    else:
        logger.error(message)
    raise click.ClickException(message)


def retry_options(func):
    """Attach the shared retry option flags to a command"""
    decorators = [
        click.option("--max-attempts", type=float, help="Total attempts allowed ('inf' for no limit)"),
        click.option("--max-elapsed", type=float, help="Time budget in seconds ('inf' for no limit)"),
        click.option("--min-wait", type=float, help="Base delay between attempts in seconds"),
        click.option("--max-wait", type=float, help="Maximum delay between attempts in seconds"),
        click.option("--growth-factor", type=float, help="Exponential backoff base"),
        click.option("--linear/--no-linear", default=None, help="Multiply the delay by the retry count"),
        click.option("--jitter/--no-jitter", default=None, help="Randomize delays within [1x, 2x)"),
        click.option("--concurrency", type=int, help="Invocations raced per attempt"),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _load_options(ctx: click.Context, **values) -> RetryOptions:
    """Resolve options from config file, environment and CLI flags

    Args:
        ctx: Click context holding the --config path
        **values: Option values from the command line (None = not given)

    Returns:
        Resolved RetryOptions
    """
    config_manager = ConfigManager(config_path=ctx.obj.get("config_path"))
    return config_manager.get_options(
        max_attempts=values.get("max_attempts"),
        max_elapsed=values.get("max_elapsed"),
        min_wait=values.get("min_wait"),
        max_wait=values.get("max_wait"),
        growth_factor=values.get("growth_factor"),
        use_linear_growth=values.get("linear"),
        use_jitter=values.get("jitter"),
        concurrency_per_attempt=values.get("concurrency"),
        should_retry=values.get("should_retry"),
        cancellation_signal=values.get("cancellation_signal"),
    )


async def _run_with_signals(operation: CommandOperation, options: RetryOptions) -> RetryResult:
    """Run the engine with SIGINT/SIGTERM wired to the cancellation signal"""
    loop = asyncio.get_running_loop()
    cancel = options.cancellation_signal
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.cancel, InterruptedError(f"Received {sig.name}"))
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install handler for {sig.name} on this platform")
    try:
        return await RetryEngine(operation, options).run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _exit_code(result: RetryResult) -> int:
    """Map a terminal result to a process exit status"""
    if result.ok:
        return 0
    if result.cancelled:
        return EXIT_CANCELLED
    for error in reversed(result.context.errors):
        if isinstance(error, CommandFailedError):
            return error.returncode
    return 1


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to .again.yml config file",
)
@click.pass_context
def cli(ctx, verbose: bool, config: Path):
    """again - retry commands and operations with backoff"""
    ctx.ensure_object(dict)
    setup_logging(verbose)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@retry_options
@click.option("--timeout", type=float, help="Per-attempt timeout in seconds")
@click.option(
    "--stop-on-exit-code",
    type=int,
    multiple=True,
    help="Exit code that stops retrying immediately (repeatable)",
)
@click.option(
    "--retry-on-exit-code",
    type=int,
    multiple=True,
    help="Only retry these exit codes (repeatable, default: any non-zero)",
)
@click.pass_context
def run(
    ctx,
    command: Tuple[str, ...],
    timeout: Optional[float],
    stop_on_exit_code: Tuple[int, ...],
    retry_on_exit_code: Tuple[int, ...],
    **values,
):
    """Run COMMAND until it succeeds.

    COMMAND: Command to run, e.g. `again run -- curl -fsS http://localhost/health`
    """
    verbose = ctx.obj.get("verbose", False)

    try:
        operation = CommandOperation(
            command,
            stop_on=stop_on_exit_code,
            retry_on=retry_on_exit_code,
            timeout=timeout,
        )
        options = _load_options(
            ctx,
            should_retry=operation.should_retry,
            cancellation_signal=CancellationSignal(),
            **values,
        )
    except ConfigurationError as e:
        _die(str(e), verbose=verbose, exc=e)

    logger.info(f"Running {' '.join(command)} with up to {options.max_attempts} attempts")
    result = asyncio.run(_run_with_signals(operation, options))

    code = _exit_code(result)
    if result.ok:
        click.echo(f"Succeeded after {result.context.attempts} attempt(s)", err=True)
    else:
        click.echo(
            f"Gave up after {result.context.attempts} attempt(s) "
            f"({result.state.value}): {result.error}",
            err=True,
        )
    ctx.exit(code)


@cli.command()
@retry_options
@click.option("--retries", "-n", type=int, default=5, show_default=True, help="Number of retries to show")
@click.pass_context
def delays(ctx, retries: int, **values):
    """Print the backoff schedule for the resolved options."""
    verbose = ctx.obj.get("verbose", False)

    try:
        options = _load_options(ctx, **values)
    except ConfigurationError as e:
        _die(str(e), verbose=verbose, exc=e)

    if options.use_jitter:
        click.echo("Note: jitter is enabled, delays below are one random sample")
    for consumed, delay in enumerate(backoff_schedule(options, retries)):
        click.echo(f"retry {consumed + 1}: {delay:.3f}s")


def main():
    """Main entry point"""
    cli(obj={})


if __name__ == "__main__":
    main()
