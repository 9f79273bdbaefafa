"""Main CLI entry point for bomgraph."""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import BuildOptions, OutputFormat
from .errors import BomGraphError
from .evidence import load_evidence_file
from .formatters import OutputFormatter
from .parsers import BomParser
from .pipeline import build_solution_graph

logger = logging.getLogger(__name__)

SCOPE_CHOICES = ['required', 'optional', 'excluded']


def setup_logging(verbose: bool = False, log_level: Optional[str] = None):
    """Configure logging based on verbosity flags."""
    if log_level:
        level = getattr(logging, log_level.upper(), logging.WARNING)
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s'
    )


def write_output(output: str, output_file: str) -> int:
    try:
        if output_file == '-':
            print(output, end='')
        else:
            with open(output_file, 'w') as f:
                f.write(output)
            logger.info(f"Output written to: {output_file}")
            print(f"Output written to: {output_file}", file=sys.stderr)
    except OSError as e:
        logger.error(f"Error writing output: {e}")
        print(f"Error writing output: {e}", file=sys.stderr)
        return 1
    return 0


def handle_create(args):
    """Handle the 'create' subcommand."""
    setup_logging(args.verbose, args.loglevel)

    try:
        options = BuildOptions.from_namespace(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info(f"Input: {args.input}")
    logger.info(f"Output: {args.output} (format={options.output_format.value})")

    try:
        evidence = load_evidence_file(args.input)
        graph = build_solution_graph(evidence, options)
        output = OutputFormatter.format(graph, options.output_format)
    except (OSError, BomGraphError) as e:
        logger.error(f"Error building BOM: {e}")
        print(f"Error building BOM: {e}", file=sys.stderr)
        return 1

    for anomaly in graph.anomalies:
        logger.warning(f"Anomaly: {anomaly}")
    if graph.anomalies:
        print(f"{len(graph.anomalies)} anomalies recorded while building the BOM", file=sys.stderr)

    return write_output(output, args.output)


def handle_convert(args):
    """Handle the 'convert' subcommand: re-emit a BOM in another format."""
    setup_logging(args.verbose, args.loglevel)

    try:
        graph = BomParser.parse_file(args.input)
        output = OutputFormatter.format(graph, OutputFormat(args.format))
    except (OSError, BomGraphError) as e:
        logger.error(f"Error converting BOM: {e}")
        print(f"Error converting BOM: {e}", file=sys.stderr)
        return 1

    return write_output(output, args.output)


def handle_stats(args):
    """Handle the 'stats' subcommand."""
    from .commands.stats import show_stats

    setup_logging(args.verbose, args.loglevel)
    try:
        show_stats(args.input, args.scope)
    except (OSError, BomGraphError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def handle_validate(args):
    """Handle the 'validate' subcommand."""
    from .commands.validate import validate_bom

    setup_logging(args.verbose, args.loglevel)
    try:
        valid = validate_bom(args.input)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0 if valid else 1


def handle_compare(args):
    """Handle the 'compare' subcommand."""
    from .commands.compare import compare_boms

    setup_logging(args.verbose, args.loglevel)
    try:
        compare_boms(args.first, args.second, args.scope)
    except (OSError, BomGraphError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--loglevel', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Set log level')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='bomgraph',
        description='Build CycloneDX BOMs from dependency evidence'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Subcommands')

    # Create command
    create_parser = subparsers.add_parser('create', help='Generate a BOM from an evidence file')
    create_parser.add_argument('input', help='Evidence file (JSON)')
    create_parser.add_argument('output', nargs='?', default='-',
                               help='Output file (default: stdout, use - for stdout)')
    create_parser.add_argument('--format', default='json', choices=[f.value for f in OutputFormat],
                               help='Output format (json, xml). Default: json')
    create_parser.add_argument('--project-name', help='Root component name (default: from evidence)')
    create_parser.add_argument('--project-version', help='Root component version (default: from evidence)')
    create_parser.add_argument('--project-type',
                               help='CycloneDX type of the root component. Default: from the template, else application')
    create_parser.add_argument('--ecosystem', default='nuget',
                               help='Package URL type for records without one. Default: nuget')
    create_parser.add_argument('--exclude-dev', action='store_true',
                               help='Leave development-only dependencies out of the BOM')
    create_parser.add_argument('--remove-orphans', action='store_true',
                               help='Leave components unreachable from the root out of the BOM')
    create_parser.add_argument('--exclude-filter',
                               help='Comma separated name or name@version entries to leave out')
    create_parser.add_argument('--timestamp',
                               help='Fixed ISO-8601 document timestamp. Default: SOURCE_DATE_EPOCH, else the '
                                    'current time (output then differs between runs)')
    create_parser.add_argument('--import-metadata', metavar='TEMPLATE',
                               help='CycloneDX JSON or XML template whose metadata component describes the root')
    create_parser.add_argument('--no-serial-number', action='store_true',
                               help='Leave the serial number out of the BOM')
    create_parser.add_argument('--max-workers', type=int, default=4,
                               help='Parallel project builds. Default: 4')
    _add_logging_arguments(create_parser)
    create_parser.set_defaults(func=handle_create)

    # Convert command
    convert_parser = subparsers.add_parser('convert', help='Convert a BOM between JSON and XML')
    convert_parser.add_argument('input', help='Input BOM file (JSON or XML)')
    convert_parser.add_argument('output', nargs='?', default='-', help='Output file (default: stdout)')
    convert_parser.add_argument('--format', default='json', choices=[f.value for f in OutputFormat],
                                help='Output format (json, xml). Default: json')
    _add_logging_arguments(convert_parser)
    convert_parser.set_defaults(func=handle_convert)

    # Stats command
    stats_parser = subparsers.add_parser('stats', help='Show BOM statistics')
    stats_parser.add_argument('input', help='Input BOM file')
    stats_parser.add_argument('--scope', choices=SCOPE_CHOICES, help='Only count components with this scope')
    _add_logging_arguments(stats_parser)
    stats_parser.set_defaults(func=handle_stats)

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate BOM structure and scopes')
    validate_parser.add_argument('input', help='Input BOM file')
    _add_logging_arguments(validate_parser)
    validate_parser.set_defaults(func=handle_validate)

    # Compare command
    compare_parser = subparsers.add_parser('compare', help='Compare two BOMs')
    compare_parser.add_argument('first', help='First BOM file')
    compare_parser.add_argument('second', help='Second BOM file')
    compare_parser.add_argument('--scope', choices=SCOPE_CHOICES, help='Only compare components with this scope')
    _add_logging_arguments(compare_parser)
    compare_parser.set_defaults(func=handle_compare)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
