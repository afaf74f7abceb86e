"""pytestgen CLI - generate table-driven tests for Python source files.

Usage::

    python -m pytestgen [options] PATH [PATH ...]

Options::

    --only REGEX               Only functions whose qualified name matches
    --excl REGEX               Skip functions whose qualified name matches
    --exported                 Only functions without a leading underscore
    --all                      All functions that do not have a test yet
    -i / --print-inputs        Print arguments in assertion messages
    --no-subtests              Check every case inside one test
    --parallel                 Run the cases of a test concurrently
    -w / --write               Write tests to test_<name>.py files
    --template NAME            Built-in template set (pytest, unittest)
    --template-dir DIR         Custom template set directory
    --template-params-file F   JSON or TOML file of template parameters
    --template-params JSON     Inline JSON object of template parameters
    --verbose / -v             Enable verbose logging

Set DEBUG_GENERATED=1 to print the intermediate source when formatting a
generated module fails.
"""

import argparse
import logging
import sys

from pytestgen.config import Options
from pytestgen.generate import run
from pytestgen.models import PytestgenError
from pytestgen.templates import available_template_sets


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pytestgen",
        description=(
            "pytestgen - generate table-driven tests from Python source.\n\n"
            "Prints generated tests to stdout unless --write is given."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "paths",
        nargs="*",
        metavar="PATH",
        help="Source file or directory to generate tests for",
    )
    parser.add_argument(
        "--only",
        default="",
        metavar="REGEX",
        help="Generate tests only for functions matching the regex",
    )
    parser.add_argument(
        "--excl",
        default="",
        metavar="REGEX",
        help="Skip functions matching the regex",
    )
    parser.add_argument(
        "--exported",
        action="store_true",
        default=False,
        help="Generate tests for public functions and methods only",
    )
    parser.add_argument(
        "--all",
        dest="all_funcs",
        action="store_true",
        default=False,
        help="Generate tests for all functions and methods",
    )
    parser.add_argument(
        "-i", "--print-inputs",
        action="store_true",
        default=False,
        help="Print test inputs in assertion messages",
    )
    parser.add_argument(
        "--no-subtests",
        action="store_true",
        default=False,
        help="Check all cases inside a single test instead of one subtest each",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        default=False,
        help="Run the cases of each test concurrently",
    )
    parser.add_argument(
        "-w", "--write",
        action="store_true",
        default=False,
        help="Write output to test files instead of stdout",
    )
    parser.add_argument(
        "--template",
        default="",
        metavar="NAME",
        help=(
            "Built-in template set to use "
            f"({', '.join(available_template_sets())})"
        ),
    )
    parser.add_argument(
        "--template-dir",
        default="",
        metavar="DIR",
        help="Directory holding a custom template set; overrides --template",
    )
    parser.add_argument(
        "--template-params-file",
        default="",
        metavar="FILE",
        help="JSON or TOML file of parameters passed to templates",
    )
    parser.add_argument(
        "--template-params",
        default="",
        metavar="JSON",
        help="Inline JSON object of template parameters",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.  Returns exit code (0=success, 1=failure)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    options = Options(
        only=args.only,
        exclude=args.excl,
        exported=args.exported,
        all_funcs=args.all_funcs,
        print_inputs=args.print_inputs,
        subtests=not args.no_subtests,
        parallel=args.parallel,
        write_output=args.write,
        template=args.template,
        template_dir=args.template_dir,
        template_params_path=args.template_params_file,
        template_params=args.template_params,
    )

    try:
        run(args.paths, options)
    except PytestgenError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0
