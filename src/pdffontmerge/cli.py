# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Click-based CLI for pdffontmerge.

This module provides the command-line interface for merging PDF
files into one document with consolidated fonts.
"""

# Standard Library
import logging
import sys
from pathlib import Path

# Third Party
import click
from colorama import Fore, Style, init

# Local
from . import __version__
from .config import DEFAULT_MISMATCH_BUDGET, MergeSettings
from .exceptions import MergeError, UnsupportedPDFError
from .merger import MergeResult, merge_pdfs
from .utils import setup_logging

EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_FILE_NOT_FOUND = 2
EXIT_MERGE_FAILED = 3
EXIT_PERMISSION_ERROR = 5

logger = logging.getLogger(__name__)


def print_success(msg: str) -> None:
    """Prints a success message in green.

    Args:
        msg: The message to output.
    """
    click.echo(f"{Fore.GREEN}✓{Style.RESET_ALL} {msg}")


def print_error(msg: str) -> None:
    """Prints an error message in red.

    Args:
        msg: The error message to output.
    """
    click.echo(f"{Fore.RED}✗ Error:{Style.RESET_ALL} {msg}", err=True)


def print_warning(msg: str) -> None:
    """Prints a warning in yellow.

    Args:
        msg: The warning to output.
    """
    click.echo(f"{Fore.YELLOW}⚠{Style.RESET_ALL} {msg}")


def _print_result(result: MergeResult, quiet: bool) -> None:
    if quiet:
        return
    print_success(
        f"Merged {len(result.input_paths)} file(s) -> {result.output_path.name} "
        f"({result.page_count} pages, {result.merged_font_count} merged fonts, "
        f"{result.processing_time:.2f}s)"
    )
    if result.forked_font_count:
        click.echo(
            f"  {result.forked_font_count} font(s) kept apart despite a shared name"
        )
    for warning in result.warnings:
        print_warning(warning)


@click.command()
@click.argument("inputs", nargs=-1, type=click.Path())
@click.option(
    "-o",
    "--output",
    type=click.Path(),
    help="Path of the merged PDF",
)
@click.option(
    "-f",
    "--force",
    is_flag=True,
    help="Overwrite existing files",
)
@click.option(
    "--merge-fonts/--no-merge-fonts",
    default=True,
    help="Consolidate shared embedded fonts (default: enabled)",
)
@click.option(
    "--mismatch-budget",
    type=click.IntRange(min=0),
    default=DEFAULT_MISMATCH_BUDGET,
    show_default=True,
    help="Byte differences tolerated per glyph when comparing fonts",
)
@click.option(
    "--compare-from",
    type=click.Choice(["head", "tail"]),
    default="tail",
    show_default=True,
    help="Direction of the glyph byte comparison",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Only output errors",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Detailed output",
)
@click.version_option(version=__version__)
def main(
    inputs: tuple[str, ...],
    output: str | None,
    force: bool,
    merge_fonts: bool,
    mismatch_budget: int,
    compare_from: str,
    quiet: bool,
    verbose: bool,
) -> None:
    """Merges PDF files into one document, sharing embedded fonts.

    INPUTS are the PDF files to merge, in order.
    """
    # Initialize colorama for Windows compatibility
    init()

    if not inputs or output is None:
        click.echo(click.get_current_context().get_help())
        sys.exit(EXIT_GENERAL_ERROR)

    setup_logging(verbose=verbose, quiet=quiet)

    output_path = Path(output)
    if output_path.exists() and not force:
        print_error(
            f"Output file already exists: {output_path}. Use --force to overwrite."
        )
        sys.exit(EXIT_GENERAL_ERROR)

    settings = MergeSettings(
        merge_fonts=merge_fonts,
        mismatch_budget=mismatch_budget,
        compare_from_tail=compare_from == "tail",
    )

    try:
        if not quiet:
            click.echo(f"Merging {len(inputs)} file(s) -> {output_path.name}...")
        result = merge_pdfs(
            [Path(p) for p in inputs],
            output_path,
            settings,
            show_progress=not quiet,
        )
        _print_result(result, quiet)
        exit_code = EXIT_SUCCESS

    except FileNotFoundError as e:
        print_error(str(e))
        exit_code = EXIT_FILE_NOT_FOUND
    except PermissionError as e:
        print_error(f"Access denied: {e}")
        exit_code = EXIT_PERMISSION_ERROR
    except (MergeError, UnsupportedPDFError) as e:
        print_error(str(e))
        exit_code = EXIT_MERGE_FAILED
    except Exception as e:
        logger.exception("Unexpected error")
        print_error(f"Unexpected error: {e}")
        exit_code = EXIT_GENERAL_ERROR

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
