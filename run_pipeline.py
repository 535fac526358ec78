#!/usr/bin/env python3
"""Main entry point for running the spatial analysis pipelines.

This script orchestrates the configured runs that:
1. Interpolate precinct-level vote counts onto census tracts (areal weighting)
2. Compare two interpolated elections as per-tract share shifts
3. Sample a raster/NetCDF time series along a dated point path

Usage:
    # Run the default analysis (ANALYSIS env var, else election_2020)
    python run_pipeline.py

    # Run a specific analysis
    python run_pipeline.py --analysis election_2016

    # Run every analysis, then every shift comparison
    python run_pipeline.py --all

    # Sample a raster time series along a track with 4 threads
    python run_pipeline.py --raster track_sst --workers 4

Environment Variables:
    ANALYSIS: Analysis to run when --analysis is not given
    GRID_SIZE: Precision grid for overlay operations (default: full precision)
    AREA_EPSILON: Area at or below which fragments count as empty
    MAX_WORKERS: Default thread count for raster extraction
"""
import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to Python path to enable imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

# Load environment variables from .env file (must happen before local imports)
load_dotenv()

# Import after path setup and environment loading
from src.pipelines import config
from src.pipelines.build import (
    build_interpolated_dataset,
    build_path_extraction,
    build_shift_dataset,
)
from src.pipelines.errors import SpatialAnalysisError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def run_single(label: str, build_fn, *args, **kwargs) -> tuple[bool, str]:
    """
    Run one pipeline step, classifying failures instead of raising.

    Parameters
    ----------
    label : str
        Name of the run, used in log messages
    build_fn : callable
        Build function returning the output path (or a tuple starting with it)

    Returns
    -------
    tuple[bool, str]
        (success, output_path or error_message)
    """
    try:
        output = build_fn(*args, **kwargs)
        output_path = output[0] if isinstance(output, tuple) else output
        return True, str(output_path)
    except SpatialAnalysisError as e:
        # CRS/geometry problems in the input layers; weights would be meaningless
        return False, f"Spatial data error: {type(e).__name__}: {e}"
    except (ValueError, KeyError) as e:
        # Handle data validation errors (missing columns, unknown config keys)
        return False, f"Data validation error: {type(e).__name__}: {e}"
    except (FileNotFoundError, IOError, OSError) as e:
        # Handle file system errors (missing files, permission issues)
        return False, f"File system error: {type(e).__name__}: {e}"
    except Exception as e:
        # Catch unexpected errors with full type information
        logger.error(f"Unexpected error in {label}: {type(e).__name__}: {e}", exc_info=True)
        return False, f"Unexpected error: {type(e).__name__}: {e}"


def main():
    """Execute the configured pipelines."""
    parser = argparse.ArgumentParser(
        description='Run the areal interpolation and raster extraction pipelines',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '--analysis',
        choices=sorted(config.ANALYSIS_CONFIGS),
        default=None,
        help='Interpolation run to execute (default: ANALYSIS env var)'
    )
    parser.add_argument(
        '--all',
        action='store_true',
        help='Run every interpolation, then every shift comparison'
    )
    parser.add_argument(
        '--raster',
        choices=sorted(config.RASTER_CONFIGS),
        default=None,
        help='Raster path extraction to execute instead of an interpolation'
    )
    parser.add_argument(
        '--workers',
        type=int,
        default=config.MAX_WORKERS,
        help='Threads for raster extraction (one task per date)'
    )
    parser.add_argument(
        '--out-dir',
        type=str,
        default=str(config.DATA_FINAL),
        help='Output directory for result CSVs'
    )
    args = parser.parse_args()
    out_dir = Path(args.out_dir)
    geometry_config = config.geometry_config_from_env()

    logger.info("=" * 70)
    logger.info("Areal Interpolation Pipeline")
    logger.info("=" * 70)
    logger.info(f"Geometry settings: {geometry_config}")

    # Raster extraction mode
    if args.raster:
        success, message = run_single(
            args.raster, build_path_extraction, args.raster,
            output_dir=out_dir, max_workers=args.workers
        )
        if success:
            logger.info(f"✓ {args.raster} completed: {message}")
            return 0
        logger.error(f"✗ {args.raster} failed: {message}")
        return 1

    if args.all:
        analyses = list(config.ANALYSIS_CONFIGS)
        logger.info(f"\nRunning all analyses: {', '.join(analyses)}")

        results = []
        for analysis_key in analyses:
            logger.info("\n" + "=" * 70)
            logger.info(f"Processing: {analysis_key}")
            logger.info("=" * 70)
            success, message = run_single(
                analysis_key, build_interpolated_dataset, analysis_key,
                geometry_config=geometry_config, output_dir=out_dir
            )
            results.append((analysis_key, success, message))

        # Shift comparisons need both of their analyses to have succeeded
        succeeded = {key for key, success, _ in results if success}
        for shift_key, shift in config.SHIFT_CONFIGS.items():
            if not {shift["analysis_a"], shift["analysis_b"]} <= succeeded:
                results.append((shift_key, False, "Skipped: an input analysis failed"))
                continue
            success, message = run_single(
                shift_key, build_shift_dataset, shift_key, output_dir=out_dir
            )
            results.append((shift_key, success, message))

        # Summary
        logger.info("\n" + "=" * 70)
        logger.info("Pipeline Execution Summary")
        logger.info("=" * 70)

        success_count = sum(1 for _, success, _ in results if success)
        logger.info(f"Successful: {success_count} / {len(results)}")

        failed = [(key, message) for key, success, message in results if not success]
        if failed:
            logger.error("\nFailed run details:")
            for key, message in failed:
                logger.error(f"  {key}: {message}")
            return 1

        logger.info("All pipelines completed successfully!")
        logger.info("\nOutput files:")
        for _, _, message in results:
            logger.info(f"  {message}")
        return 0

    # Single analysis mode
    analysis_key = args.analysis or config.SELECTED_ANALYSIS
    logger.info(f"\nAnalysis: {analysis_key}")

    success, message = run_single(
        analysis_key, build_interpolated_dataset, analysis_key,
        geometry_config=geometry_config, output_dir=out_dir
    )
    if success:
        logger.info("\n" + "=" * 70)
        logger.info("Pipeline completed successfully!")
        logger.info(f"Output: {message}")
        logger.info("=" * 70)
        return 0

    logger.error("\n" + "=" * 70)
    logger.error("Pipeline failed with error:")
    logger.error(f"  {message}")
    logger.error("=" * 70)
    return 1


if __name__ == "__main__":
    sys.exit(main())
