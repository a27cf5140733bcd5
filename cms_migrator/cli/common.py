"""Shared CLI infrastructure: option decorators, error handlers, and the CLI group."""

from __future__ import annotations

import logging
from typing import Callable, ClassVar

import click
import requests

import cms_migrator
from cms_migrator.constants import (
    HTTP_FORBIDDEN,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MIN,
    HTTP_UNAUTHORIZED,
)
from cms_migrator.exceptions import ConfigError, MigratorError, SourceEnumerationError
from cms_migrator.utils.api import status_of_error
from cms_migrator.utils.logging import log_with_context

# ---------------------------------------------------------------------------
# Custom click.Group that defaults to ``migrate``.
# When the first CLI token is a flag rather than a subcommand the group
# prepends ``migrate``, so ``cms-migrator --collection posts`` works.
# ---------------------------------------------------------------------------


class DefaultGroup(click.Group):
    """Click group that defaults to the ``migrate`` subcommand."""

    # Flags that belong to the group itself and should NOT trigger the
    # ``migrate`` default.
    _GROUP_FLAGS: ClassVar[set[str]] = {"--help", "--version", "-h"}

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        """Prepend ``migrate`` when the first token is a flag.

        Args:
            ctx: The current Click context.
            args: Raw CLI argument list.

        Returns:
            The (possibly modified) argument list for further parsing.
        """
        if args and args[0].startswith("-") and args[0] not in self._GROUP_FLAGS:
            args = ["migrate", *args]
        return super().parse_args(ctx, args)


# ---------------------------------------------------------------------------
# Shared option decorator
# ---------------------------------------------------------------------------


def common_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds options shared across subcommands.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function with common options attached.
    """
    f = click.option(
        "--collection",
        required=True,
        help="Collection to migrate (destination folder and type namespace)",
    )(f)
    f = click.option(
        "--config",
        default="config.yaml",
        show_default=True,
        type=click.Path(dir_okay=False),
        help="Path to config YAML",
    )(f)
    f = click.option(
        "--upload-images",
        "upload_images",
        is_flag=True,
        default=False,
        help="Download, transcode and upload images to storage instead of keeping original URLs",
    )(f)
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        default=False,
        help="Enable verbose console logging (shows DEBUG level messages)",
    )(f)
    f = click.option(
        "--debug-api",
        "debug_api",
        is_flag=True,
        default=False,
        help="Enable detailed API request/response logging (creates very large log files)",
    )(f)
    return f


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    cls=DefaultGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=cms_migrator.__version__, prog_name="cms-migrator")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Legacy CMS collection and image migration tool.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_http_error(e: Exception) -> None:
    """Explain an HTTP failure that reached the top level.

    Args:
        e: A ``requests`` or Google API HTTP error.
    """
    status = status_of_error(e)
    if status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
        log_with_context(logging.ERROR, f"Authentication failed ({status}): {e}")
        log_with_context(
            logging.INFO,
            "Check SOURCE_API_TOKEN, DESTINATION_API_KEY and the storage service account.",
        )
    elif status == HTTP_RATE_LIMIT:
        log_with_context(logging.ERROR, f"Rate limit exceeded: {e}")
        log_with_context(
            logging.INFO,
            "Lower the batch concurrency or raise the batch delays, then re-run.",
        )
    elif status is not None and status >= HTTP_SERVER_ERROR_MIN:
        log_with_context(logging.ERROR, f"Server error: {e}")
        log_with_context(
            logging.INFO, "This is likely a temporary issue. Please try again later."
        )
    else:
        log_with_context(logging.ERROR, f"API error during migration: {e}")


def handle_exception(e: BaseException) -> None:
    """Turn an exception that ended the run into operator guidance.

    Args:
        e: The exception to handle.
    """
    from googleapiclient.errors import HttpError

    if isinstance(e, ConfigError):
        log_with_context(logging.ERROR, str(e))
        log_with_context(
            logging.INFO, "Fix the configuration and run 'cms-migrator validate'."
        )
    elif isinstance(e, SourceEnumerationError):
        log_with_context(logging.ERROR, str(e))
        log_with_context(
            logging.INFO, "Nothing was written. Check the source API and try again."
        )
    elif isinstance(e, MigratorError):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, (HttpError, requests.HTTPError)):
        handle_http_error(e)
    elif isinstance(e, FileNotFoundError):
        log_with_context(logging.ERROR, f"File not found: {e}")
        log_with_context(
            logging.INFO,
            "Please check that all required files exist and paths are correct.",
        )
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Migration interrupted by user.")
        log_with_context(
            logging.INFO,
            "Check the partial migration report in the output directory.",
        )
        log_with_context(
            logging.INFO,
            "Re-run with --retry-failed <report> or simply re-run: finished items are skipped.",
        )
    else:
        log_with_context(logging.ERROR, f"Migration failed: {e}", exc_info=e)
