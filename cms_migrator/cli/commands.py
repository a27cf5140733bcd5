"""
Command-line entry point for the CMS asset migration tool.

Importing the subcommand modules registers them on the click group.
"""

from cms_migrator.cli import migrate_cmd, validate_cmd  # noqa: F401
from cms_migrator.cli.common import cli


def main() -> None:
    """Run the ``cms-migrator`` command group."""
    cli()


if __name__ == "__main__":
    main()
