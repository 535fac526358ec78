#!/usr/bin/env python3
"""
Shift analysis report: summarises interpolated election results and the
per-target share shift between two elections.

This script provides the CLI interface and writes a markdown summary for one
configured shift comparison, using the CSVs written by run_pipeline.py.

Usage:
    python run_analysis.py --shift dem_shift_2016_2020
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from src.models.data_loader import load_and_validate_results, load_shift_results
from src.models.reporting import (
    append_section,
    create_summary_header,
    save_markdown_table,
    shift_summary_table,
    summarize_shift,
    summarize_totals,
)
from src.pipelines import config

# Logging configuration - INFO level for progress tracking
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Main execution function."""
    parser = argparse.ArgumentParser(
        description='Summarise an interpolated share shift',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '--shift',
        type=str,
        required=True,
        choices=sorted(config.SHIFT_CONFIGS),
        help='Shift comparison to summarise'
    )

    parser.add_argument(
        '--results-dir',
        type=str,
        default=str(config.DATA_FINAL),
        help='Directory containing the pipeline CSV outputs'
    )

    parser.add_argument(
        '--out-dir',
        type=str,
        default='reports',
        help='Output directory for the markdown summary'
    )

    parser.add_argument(
        '--top',
        type=int,
        default=5,
        help='Number of largest increases/decreases to list'
    )

    args = parser.parse_args()

    shift = config.SHIFT_CONFIGS[args.shift]
    key_attribute = shift["key_attribute"]
    id_column = shift.get("id_column", "GEOID")
    results_dir = Path(args.results_dir)
    out_dir = Path(args.out_dir)

    logger.info("=" * 70)
    logger.info(f"SHIFT ANALYSIS: {shift['name']}")
    logger.info("=" * 70)

    shift_csv = config.shift_output_path(args.shift, results_dir)
    if not shift_csv.exists():
        logger.error(f"CSV file not found: {shift_csv}")
        logger.error("Run `python run_pipeline.py --all` first")
        return 1

    shifts = load_shift_results(shift_csv, key_attribute, id_column=id_column)
    shift_column = f"{key_attribute}_shift"
    summary = summarize_shift(shifts, shift_column, id_column=id_column, top_n=args.top)

    report_path = out_dir / f"shift_summary_{args.shift}.md"
    create_summary_header(report_path, shift["name"], summary["n_ids"])
    save_markdown_table(shift_summary_table(summary), report_path, f"{shift_column} statistics")

    for label, rows in (("Largest increases", summary["top_increase"]),
                        ("Largest decreases", summary["top_decrease"])):
        save_markdown_table(
            {id_column: [r[0] for r in rows], shift_column: [f"{r[1]:+.4f}" for r in rows]},
            report_path,
            label
        )

    # Interpolated count totals for each compared run
    for analysis_key in (shift["analysis_a"], shift["analysis_b"]):
        analysis = config.ANALYSIS_CONFIGS[analysis_key]
        results = load_and_validate_results(
            config.interpolated_output_path(analysis_key, results_dir),
            id_column=analysis["target_id"],
            required_columns=analysis["attributes"],
        )
        save_markdown_table(
            summarize_totals(results, analysis["attributes"]),
            report_path,
            f"Interpolated totals: {analysis['name']}"
        )

    append_section(
        report_path,
        "Notes",
        f"Shift is {key_attribute} in '{shift['analysis_a']}' minus '{shift['analysis_b']}'. "
        f"{summary['n_missing']} targets appear in only one run and have no shift."
    )

    logger.info(f"Report written to {report_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
