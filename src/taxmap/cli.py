"""taxmap command-line interface.

This module provides the command-line interface functionality for taxmap.
It includes the argument parser and command dispatching logic.
"""

import argparse
import json
import logging
import sys
import time
from typing import List, Optional

from taxmap import __version__
from taxmap.cache_manager import cached, clear_cache, get_cache_stats, set_cache_namespace
from taxmap.config import config
from taxmap.constants import SUPPORTED_FORMATS
from taxmap.data_handler import read_input_file
from taxmap.errors import TaxMapError
from taxmap.logging_config import setup_logging
from taxmap.output_manager import load_manifest, read_taxmap, write_taxmap
from taxmap.tax_map import TaxMap, build
from taxmap.types.data_classes import ExtractionConfig, MappingRule, MatchPolicy

logger = logging.getLogger(__name__)

QUERY_COMMANDS = ("subtaxa", "supertaxa", "roots", "leaves", "observations")


# -----------------------------------------------------------------------------
# Parser Setup
# -----------------------------------------------------------------------------
def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set logging level"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Optional file to write logs to (in addition to console output)"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser with the 'build', 'attach' and 'query' commands."""
    parser = argparse.ArgumentParser(
        description="taxmap: Build taxonomic trees from classification text and map datasets onto them.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Global options for cache management and application metadata
    parser.add_argument(
        "--cache-stats",
        action="store_true",
        default=False,
        help="Display statistics about the cache and exit"
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        default=False,
        help="Clear the taxmap build cache. May be used in isolation."
    )
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Show current configuration and exit"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version number and exit"
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- 'build' command ---
    parser_build = subparsers.add_parser(
        "build", help="Build a taxonomy from a table of classifications"
    )
    parser_build.add_argument(
        "-i", "--input",
        type=str,
        required=True,
        help="Path to input CSV, TSV or Parquet file"
    )
    parser_build.add_argument(
        "-o", "--output-dir",
        type=str,
        required=True,
        help="Directory to save the taxonomy and datasets"
    )
    parser_build.add_argument(
        "--output-format",
        choices=SUPPORTED_FORMATS,
        default=config.output_format,
        help="Output file format"
    )
    _add_logging_arguments(parser_build)
    parser_build.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars"
    )
    extraction_group = parser_build.add_argument_group("Classification Parsing")
    extraction_group.add_argument(
        "--column",
        dest="columns",
        action="append",
        required=True,
        help="Column holding classification text; repeat for several columns, root first"
    )
    extraction_group.add_argument(
        "--sep",
        dest="separators",
        action="append",
        default=[],
        help="Separator between ranks; repeat for alternative separators"
    )
    extraction_group.add_argument(
        "--sep-regex",
        action="store_true",
        help="Treat separators as regular expressions"
    )
    extraction_group.add_argument(
        "--regex",
        type=str,
        help="Extraction regex with one capture group per role"
    )
    extraction_group.add_argument(
        "--roles",
        type=str,
        help="Comma-separated capture-group roles: taxon_name, taxon_rank, info:<field>, discard"
    )
    extraction_group.add_argument(
        "--reverse",
        action="store_true",
        help="Classifications list the most specific rank first"
    )
    extraction_group.add_argument(
        "--rank-from-column",
        action="store_true",
        help="Use the column name as rank when no rank is captured"
    )
    extraction_group.add_argument(
        "--name-column",
        type=str,
        help="Column holding record names, used by {{name}} mapping rules"
    )
    cache_group = parser_build.add_argument_group("Cache Management")
    cache_group.add_argument(
        "--refresh-cache",
        action="store_true",
        default=False,
        help="Rebuild even if a cached build of this input exists"
    )

    # --- 'attach' command ---
    parser_attach = subparsers.add_parser(
        "attach", help="Map a dataset onto a built taxonomy"
    )
    parser_attach.add_argument(
        "-d", "--taxmap-dir",
        type=str,
        required=True,
        help="Directory written by 'taxmap build'"
    )
    parser_attach.add_argument(
        "-i", "--input",
        type=str,
        required=True,
        help="Path to the dataset (CSV, TSV or Parquet)"
    )
    parser_attach.add_argument(
        "--name",
        type=str,
        required=True,
        help="Name to store the dataset under"
    )
    parser_attach.add_argument(
        "--rule",
        dest="rules",
        action="append",
        default=[],
        help="Mapping rule SOURCE=DEST (e.g. 'my_id=id' or '{{index}}'); repeat for fallbacks"
    )
    parser_attach.add_argument(
        "--on-ambiguous",
        choices=[policy.value for policy in MatchPolicy],
        default=MatchPolicy.FIRST.value,
        help="What to do when a row matches records bound to different taxa"
    )
    _add_logging_arguments(parser_attach)

    # --- 'query' command ---
    parser_query = subparsers.add_parser(
        "query", help="Query a built taxonomy"
    )
    parser_query.add_argument(
        "-d", "--taxmap-dir",
        type=str,
        required=True,
        help="Directory written by 'taxmap build'"
    )
    parser_query.add_argument(
        "operation",
        choices=QUERY_COMMANDS,
        help="Query to run"
    )
    parser_query.add_argument(
        "--taxon",
        type=int,
        help="Taxon ID (required by subtaxa, supertaxa and observations)"
    )
    parser_query.add_argument(
        "--include-self",
        action="store_true",
        help="Include the taxon itself in subtaxa/supertaxa"
    )
    parser_query.add_argument(
        "--dataset",
        type=str,
        help="Dataset name for observations (defaults to the primary dataset)"
    )
    parser_query.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )
    _add_logging_arguments(parser_query)

    return parser


# -----------------------------------------------------------------------------
# Build
# -----------------------------------------------------------------------------
def extraction_config_from_args(args: argparse.Namespace) -> ExtractionConfig:
    """Create the extraction configuration described by command-line arguments."""
    roles = [role.strip() for role in args.roles.split(",")] if args.roles else []
    return ExtractionConfig(
        separators=tuple(args.separators),
        sep_is_regex=args.sep_regex,
        regex=args.regex,
        roles=tuple(roles),
        source_columns=tuple(args.columns),
        reverse=args.reverse,
        rank_from_column=args.rank_from_column,
        name_column=args.name_column,
    )


@cached(prefix="build", key_args=["input_file", "config_key"])
def build_from_file(input_file: str, config_key: str, extraction: ExtractionConfig, progress: bool = False) -> TaxMap:
    """Read an input table and build its TaxMap.

    ``config_key`` identifies ``extraction`` in the cache key.
    """
    records = read_input_file(input_file)
    return build(records, extraction, progress=progress)


def run_build(args: argparse.Namespace) -> int:
    """Run the taxonomy build workflow."""
    extraction = extraction_config_from_args(args)
    config_key = json.dumps(extraction.to_dict(), sort_keys=True)

    set_cache_namespace(f"build_v{__version__}")
    start_time = time.time()
    logger.info(f"Starting taxmap build with input: {args.input}")

    taxmap = build_from_file(
        args.input,
        config_key,
        extraction,
        progress=config.progress,
        refresh_cache=args.refresh_cache,
    )
    written = write_taxmap(taxmap, args.output_dir, config.output_format)

    taxonomy = taxmap.taxonomy
    print(f"Taxa: {len(taxonomy):,} ({len(taxonomy.roots()):,} roots, {len(taxonomy.leaves()):,} leaves)")
    print(f"Records: {len(taxmap.record_taxon_ids):,} ({len(taxmap.unassociated_records()):,} unassociated)")
    print(f"Rank/info conflicts ignored: {len(taxmap.conflicts):,}")
    logger.info(f"Wrote {len(written)} files to {args.output_dir}")
    logger.info(f"Processing completed in {time.time() - start_time:.2f} seconds")
    return 0


# -----------------------------------------------------------------------------
# Attach
# -----------------------------------------------------------------------------
def run_attach(args: argparse.Namespace) -> int:
    """Map a dataset file onto a persisted taxonomy and save it alongside."""
    taxmap = read_taxmap(args.taxmap_dir)
    output_format = load_manifest(args.taxmap_dir)["output_format"]
    dataset = read_input_file(args.input)
    rules = [MappingRule.parse(rule) for rule in args.rules] or None

    result = taxmap.attach(args.name, dataset, rules=rules, on_ambiguous=MatchPolicy(args.on_ambiguous))
    write_taxmap(taxmap, args.taxmap_dir, output_format)

    print(f"Mapped {result.n_matched:,} of {result.dataset.height:,} rows of '{args.name}'")
    if result.unmatched:
        preview = ", ".join(str(row) for row in result.unmatched[:10])
        more = " ..." if result.n_unmatched > 10 else ""
        print(f"Unmatched rows ({result.n_unmatched:,}): {preview}{more}")
    return 0


# -----------------------------------------------------------------------------
# Query
# -----------------------------------------------------------------------------
def _describe(taxmap: TaxMap, taxon_ids: List[int]) -> List[dict]:
    return [taxmap.taxonomy.taxon(taxon_id).to_dict() for taxon_id in taxon_ids]


def run_query(args: argparse.Namespace) -> int:
    """Run a read-only query and print its result."""
    taxmap = read_taxmap(args.taxmap_dir)
    operation = args.operation
    if operation in ("subtaxa", "supertaxa", "observations") and args.taxon is None:
        logger.error(f"'{operation}' requires --taxon")
        return 1

    if operation == "observations":
        rows = taxmap.observations(args.dataset or taxmap.primary_name, args.taxon)
        if args.format == "json":
            print(json.dumps(rows.to_dicts(), indent=4, default=str))
        else:
            print(rows)
        return 0

    if operation == "subtaxa":
        taxon_ids = taxmap.subtaxa(args.taxon, include_self=args.include_self)
    elif operation == "supertaxa":
        taxon_ids = taxmap.supertaxa(args.taxon, include_self=args.include_self)
    elif operation == "roots":
        taxon_ids = taxmap.roots()
    else:
        taxon_ids = taxmap.leaves()

    if args.format == "json":
        print(json.dumps(_describe(taxmap, taxon_ids), indent=4))
    else:
        for taxon in _describe(taxmap, taxon_ids):
            print(f"{taxon['taxon_id']}\t{taxon['name']}\t{taxon['rank'] or ''}")
    return 0


# -----------------------------------------------------------------------------
# Main Entry Point
# -----------------------------------------------------------------------------
def main(args: Optional[List[str]] = None) -> int:
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    # Handle global commands before subcommand dispatch
    if parsed_args.show_config:
        print(config.get_config_summary())
        return 0

    if parsed_args.cache_stats:
        set_cache_namespace(f"build_v{__version__}")
        print("\ntaxmap Cache Statistics:")
        for key, value in get_cache_stats().items():
            print(f"  {key}: {value}")
        return 0

    if parsed_args.clear_cache:
        set_cache_namespace(f"build_v{__version__}")
        count = clear_cache()
        print(f"\nCleared {count} cache entries")
        if parsed_args.command is None:
            return 0

    if parsed_args.command is None:
        parser.error("a command is required: build, attach or query")

    config.update_from_args(vars(parsed_args))
    config.ensure_directories()
    setup_logging(parsed_args.log_level, parsed_args.log_file)

    commands = {"build": run_build, "attach": run_attach, "query": run_query}
    try:
        return commands[parsed_args.command](parsed_args)
    except (TaxMapError, ValueError, KeyError, FileNotFoundError) as e:
        logger.error(f"{parsed_args.command} failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Error running {parsed_args.command}: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
