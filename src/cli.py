"""
Command-line entry point: download swissdamed UDI data, write CSV/SQLite,
diff two exports, or map UDI rows onto MiGeL positions.

Usage:
    migel-mapper                        # download, write CSV + SQLite
    migel-mapper --csv -f export.json   # from a saved JSON export
    migel-mapper --diff OLD.csv NEW.csv
    migel-mapper --migel --catalog migel.xlsx -f export.json
"""

import argparse
import logging
import sys

from catalog import MIGEL_FILE, MIGEL_URL, CatalogError, download_catalog, load_catalog
from export import (
    DEFAULT_SCP_TARGET,
    DeployError,
    DiffError,
    date_stamp,
    deploy_file,
    diff_csv_files,
    output_filename,
    write_csv,
    write_sqlite,
)
from matcher import DEFAULT_CONFIG, build_index, load_match_config, matched_rows, run_matching
from udi import DEFAULT_PAGE_SIZE, UdiSourceError, download_all_pages, flatten_records, load_json_file

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='migel-mapper',
        description="Download Swiss DAMED UDI data, convert to CSV/SQLite and map onto MiGeL codes",
    )
    parser.add_argument('--csv', action='store_true', help="Output as CSV file")
    parser.add_argument('--sqlite', action='store_true', help="Output as SQLite database")
    parser.add_argument('-f', '--file', help="Use an existing JSON file instead of downloading")
    parser.add_argument('--page-size', type=int, default=DEFAULT_PAGE_SIZE,
                        help="Page size for API requests (default: %(default)s)")
    parser.add_argument('--deploy', action='store_true', help="Deploy SQLite DB to remote server via scp")
    parser.add_argument('--scp', default=DEFAULT_SCP_TARGET, help="Remote scp target")
    parser.add_argument('--diff', nargs=2, metavar=('OLD_CSV', 'NEW_CSV'),
                        help="Diff two CSV files and output changes to diff/ folder")
    parser.add_argument('--migel', action='store_true',
                        help="Match UDI entries against MiGeL codes and output matched results")
    parser.add_argument('--catalog', help="Use a local MiGeL XLSX instead of downloading it")
    parser.add_argument('--config', help="YAML file overriding matching thresholds / stop words")
    parser.add_argument('-v', '--verbose', action='store_true', help="Debug logging")
    return parser


def load_values(args) -> list:
    if args.file:
        logger.info("Loading from file: %s", args.file)
        return load_json_file(args.file)
    return download_all_pages(args.page_size)


def run_migel(args) -> int:
    values = load_values(args)
    if not values:
        logger.info("No data found.")
        return 0
    df_rows = flatten_records(values)

    config = load_match_config(args.config) if args.config else DEFAULT_CONFIG
    catalog_path = args.catalog or download_catalog(MIGEL_URL, MIGEL_FILE)
    logger.info("Parsing MiGeL items...")
    items = load_catalog(catalog_path, config)
    index = build_index(items)
    logger.info("Built keyword index with %d unique keywords", len(index))

    df_matched = matched_rows(run_matching(df_rows, items, index, config))
    if df_matched.empty:
        logger.info("No MiGeL matches found.")
        return 0

    db_filename = f"swissdamed_migel_{date_stamp()}.db"
    write_sqlite(df_matched, db_filename)
    logger.info("SQLite written: %s", db_filename)
    return 0


def run_export(args) -> int:
    # --deploy implies --sqlite; no flag at all means both formats
    if not args.csv and not args.sqlite:
        do_csv, do_sqlite = True, True
    else:
        do_csv, do_sqlite = args.csv, args.sqlite or args.deploy

    values = load_values(args)
    if not values:
        logger.info("No data found.")
        return 0
    df_rows = flatten_records(values)

    if do_csv:
        filename = output_filename('csv')
        write_csv(df_rows, filename)
        logger.info("CSV written: %s", filename)

    if do_sqlite:
        filename = output_filename('db')
        write_sqlite(df_rows, filename)
        logger.info("SQLite written: %s", filename)
        if args.deploy:
            deploy_file(filename, args.scp)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        if args.diff:
            diff_csv_files(args.diff[0], args.diff[1])
            return 0
        if args.migel:
            return run_migel(args)
        return run_export(args)
    except (CatalogError, UdiSourceError, DiffError, DeployError, ValueError, OSError) as e:
        logger.error("%s", e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
