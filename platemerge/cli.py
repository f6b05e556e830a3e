"""
cli.py — Command-line entry point (console script ``platemerge``).

Usage:
    platemerge                                  # config/pipeline_config.yaml
    platemerge --config run.yaml                # explicit config
    platemerge --plates PlateA PlateB           # only these plates
    platemerge --workers 4                      # parallel plate loading
    platemerge --dry-run                        # show plan without executing

Exit status: 0 on success, 1 on any pipeline error (reported with the
offending plate and file), 2 on usage errors.
"""

import argparse
import logging
import sys

from platemerge import __version__
from platemerge.config import load_config
from platemerge.errors import PipelineError
from platemerge.pipeline import run_pipeline

logger = logging.getLogger("platemerge")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="platemerge",
        description="Merge per-plate single-cell count matrices into one annotated matrix",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Steps:
  1  Load index table               5  Join annotations
  2  Discover plates                6  Quality filters
  3  Resolve genes + barcodes       7  Label subset
  4  Align and merge plates         8  Write .h5ad + manifest
""",
    )
    parser.add_argument('-c', '--config', default=None,
                        help='Path to pipeline_config.yaml (default: search config/)')
    parser.add_argument('--plates', nargs='+', default=None,
                        help='Only merge these plate IDs')
    parser.add_argument('--workers', type=int, default=None,
                        help='Worker processes for plate loading (default: from config)')
    parser.add_argument('-o', '--output-dir', default=None,
                        help='Output directory (default: from config)')
    parser.add_argument('--skip-missing', action='store_true',
                        help='Skip plates with missing files instead of aborting')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show plates and files without executing')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose logging')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    return parser


def _overrides(args) -> dict:
    overrides = {}
    if args.plates:
        overrides.setdefault("inputs", {})["plates"] = args.plates
    if args.workers is not None:
        overrides.setdefault("runtime", {})["workers"] = args.workers
    if args.output_dir:
        overrides.setdefault("output", {})["dir"] = args.output_dir
    if args.skip_missing:
        overrides.setdefault("validation", {})["on_missing_plate_file"] = "skip"
    return overrides


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
    )
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config, overrides=_overrides(args))
        run_pipeline(config, dry_run=args.dry_run)
    except PipelineError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
