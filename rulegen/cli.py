#!/usr/bin/env python3
"""
RULEGEN Command-Line Interface

Compiles a rules file into a Python module defining a rewrite procedure.

Usage:
    rulegen generic.rules rewrite_generic                 # Write to stdout
    rulegen generic.rules rewrite_generic rewrite.py      # Write to a file
    rulegen generic.rules rewrite_generic --list          # Show rule groups
    rulegen -i "from ir import Op, TypeInvalid" generic.rules rewrite_generic

Any error (unreadable rules file, malformed rule or expression, generated
code that does not compile, unwritable output) prints a diagnostic and
exits with status 1. Nothing is written on failure.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .errors import MalformedExpression, RulegenError, RuleSourceError
from .generator import DEFAULT_IMPORTS, RuleGenerator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rulegen",
        description="RULEGEN - compile term rewrite rules into a Python matcher",
        epilog="Examples:\n"
               "  rulegen generic.rules rewrite_generic              Print to stdout\n"
               "  rulegen generic.rules rewrite_generic out.py       Write out.py\n"
               "  rulegen generic.rules rewrite_generic --list       List rule groups\n",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument("rulefile", help="Rules file to compile (.rules)")
    parser.add_argument("function", help="Name of the generated procedure")
    parser.add_argument(
        "output",
        nargs="?",
        help="Output file (default: standard output)"
    )

    parser.add_argument(
        "-i", "--import",
        dest="imports",
        action="append",
        default=None,
        help="Import line for the generated module (can be specified multiple times)"
    )

    parser.add_argument(
        "--no-imports",
        action="store_true",
        help="Emit no import lines"
    )

    parser.add_argument(
        "--op-prefix",
        default="Op.",
        help="Prefix for operator constants (default: %(default)s)"
    )

    parser.add_argument(
        "--invalid-type",
        default="TypeInvalid",
        help="Type given to newly allocated values (default: %(default)s)"
    )

    parser.add_argument(
        "--allocator",
        default="v.block.new_value",
        help="Expression that allocates a value (default: %(default)s)"
    )

    parser.add_argument(
        "--list",
        action="store_true",
        help="List rule groups instead of generating code"
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Quiet mode (suppress non-essential output)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log compilation details"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    return parser


def describe_error(e: RulegenError) -> str:
    """One-line diagnostic for a generation failure."""
    if isinstance(e, MalformedExpression) and e.lineno is not None:
        return f"line {e.lineno}: {e}"
    return str(e)


def write_output(text: str, output: Optional[str]) -> None:
    """Write text to the output path, or stdout when none is given."""
    if output is None:
        sys.stdout.write(text)
        return
    path = Path(output)
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise RuleSourceError(path, f"can't write output file: {e}") from e
    logger.debug("wrote %d bytes to %s", len(text), path)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.no_imports:
        imports = []
    else:
        imports = args.imports if args.imports is not None else list(DEFAULT_IMPORTS)

    generator = RuleGenerator(
        op_prefix=args.op_prefix,
        imports=imports,
        invalid_type=args.invalid_type,
        allocator=args.allocator,
    )

    cmdline = sys.argv[1:] if argv is None else list(argv)
    try:
        generator.load_file(args.rulefile)
        if args.list:
            for line in generator.list_rules():
                print(line)
            return 0
        text = generator.generate(args.function, source=args.rulefile, argv=cmdline)
        write_output(text, args.output)
    except RulegenError as e:
        print(f"rulegen: {describe_error(e)}", file=sys.stderr)
        return 1

    if args.output and not args.quiet:
        print(f"Wrote {args.function} ({len(generator)} rules) to {args.output}",
              file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
