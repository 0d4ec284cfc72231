"""
Command Line Entry Point for the Hourly Sepsis Dataset

Builds the hourly feature/label table from a MIMIC-IV DuckDB database and
writes it as CSV:

1. Load the PipelineConfig (defaults < JSON config file < CLI flags)
2. Open the DuckDB source
3. Export the hourly rows batch by batch to the output CSV
4. Optionally build the data quality reports over the exported table

Usage:
    extract-sepsis-data --database_path mimiciv.duckdb --batch_size 500 --num_workers 4 --report
"""
import argparse
import logging

import pandas as pd

from .cohort_data import build_cohort
from .config import load_config
from .data_extraction import DuckDBSource
from .logging_utils import logger
from .pipeline import export_hourly_rows
from .reporting import build_report, log_report


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Build the hourly MIMIC-IV sepsis dataset')
    parser.add_argument('--config_file', type=str, default=None,
                        help='JSON config file overriding the default settings')
    parser.add_argument('--database_path', type=str, default=None,
                        help='DuckDB database holding the MIMIC-IV schemas')
    parser.add_argument('--output_path', type=str, default=None,
                        help='CSV file the hourly table is written to')
    parser.add_argument('--batch_size', type=int, default=None,
                        help='Number of ICU stays processed per batch')
    parser.add_argument('--num_workers', type=int, default=None,
                        help='Worker processes across stay batches')
    parser.add_argument('--memory_limit', type=str, default=None,
                        help='DuckDB memory limit, e.g. 8GB')
    parser.add_argument('--threads', type=int, default=None,
                        help='DuckDB threads per connection')
    parser.add_argument('--report', action='store_true',
                        help='Log data quality reports over the exported table')
    return parser.parse_args(argv)


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    config = load_config(
        args.config_file,
        database_path=args.database_path,
        output_path=args.output_path,
        batch_size=args.batch_size,
        num_workers=args.num_workers,
        memory_limit=args.memory_limit,
        threads=args.threads,
    )
    if config.database_path is None:
        raise ValueError("A database_path is required (--database_path or config file)")
    logger.info(f"Using configuration: {config.to_dict()}")

    logger.log_start("main")
    source = DuckDBSource(config.database_path, settings=config.duckdb_settings())
    try:
        export_hourly_rows(source, config)

        if args.report:
            cohort = build_cohort(source.get_stays())
            df = pd.read_csv(config.output_path, parse_dates=["hour"])
            log_report(build_report(df, cohort))
    finally:
        source.close()
    logger.log_end("main")


if __name__ == "__main__":
    main()
