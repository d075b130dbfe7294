#!/usr/bin/env python3
"""
Climate Disturbance Stack - Main Entry Point

Derives the climate disturbance stack products from TerraClimate monthly data
over the western NEON domains:

- Monthly climatological means of every variable (one raster per month)
- Annual extrema of every variable with the month they occurred in, combined
  into one 12-band raster per year
- Zonal statistics at buffered validation points

Usage Examples:
    # Run every stage with the default configuration
    python main.py run --input-dir /data/terraclimate --output-dir output

    # Only the annual extrema for a short period, without writing files
    python main.py extremes --start-year 2000 --end-year 2005 --no-export

    # Write a configuration file to edit
    python main.py sample-config --output climate_stack.yaml
"""

import argparse
import logging
import sys
from typing import Optional

from climate_stack.config import ClimateStackConfig, create_sample_config, load_config
from climate_stack.shared.exceptions import ClimateStackError
from climate_stack.workflow.disturbance_workflow import DisturbanceStackWorkflow

logger = logging.getLogger(__name__)

COMMAND_STAGES = {
    'run': ('means', 'extremes', 'points'),
    'means': ('means',),
    'extremes': ('extremes',),
    'points': ('points',),
}


def setup_logging(level: str = "INFO",
                  log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                  log_file: Optional[str] = None,
                  console_output: bool = True):
    """Setup logging for CLI operations."""
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {level}')

    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=numeric_level, format=log_format, handlers=handlers or None, force=True)


def apply_overrides(config: ClimateStackConfig, args) -> ClimateStackConfig:
    """Apply command line overrides on top of the loaded configuration."""
    if args.input_dir:
        config.paths.input_data_dir = args.input_dir
    if args.output_dir:
        config.paths.output_base_dir = args.output_dir
    if args.domain_catalog:
        config.paths.domain_catalog = args.domain_catalog
    if args.max_workers is not None:
        config.processing.max_workers = args.max_workers
    if args.start_year is not None:
        config.processing.start_year = args.start_year
    if args.end_year is not None:
        config.processing.end_year = args.end_year
    if args.variables:
        config.processing.variables = list(args.variables)
    if args.log_level:
        config.logging.level = args.log_level.upper()
    if args.rich_progress:
        config.processing.use_rich_progress = True
    if args.no_export:
        config.export.enabled = False
    return config.validate()


def stack_command(args) -> int:
    """Run the workflow stages of ``args.command``."""
    config = apply_overrides(load_config(args.config), args)
    setup_logging(config.logging.level, config.logging.format,
                  config.logging.log_file, config.logging.console_output)

    stages = COMMAND_STAGES[args.command]
    logger.info(f"🚀 Starting command: {args.command} (stages: {', '.join(stages)})")

    workflow = DisturbanceStackWorkflow(config)
    result = workflow.run(stages=stages)
    report = result.report

    if report.duration_seconds is not None:
        logger.info(f"⏱️  Finished in {report.duration_seconds:.1f}s")
    if report.is_complete:
        logger.info(f"✅ Command '{args.command}' completed successfully")
        return 0

    logger.error(f"❌ Command '{args.command}' finished with {len(report.failures)} failed unit(s)")
    return 2


def sample_config_command(args) -> int:
    """Create a sample configuration file."""
    setup_logging(args.log_level or "INFO")
    config_file = create_sample_config(args.output)
    logger.info(f"✅ Sample configuration created: {config_file}")
    return 0


def _add_run_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--config', '-c', help='YAML configuration file')
    parser.add_argument('--input-dir', help='Directory of TerraClimate_{var}_{year}.nc files '
                                            '(default: remote OPeNDAP aggregation)')
    parser.add_argument('--output-dir', help='Base directory for exported products')
    parser.add_argument('--domain-catalog', help='Vector file of NEON domains')
    parser.add_argument('--variables', nargs='+', help='Variables to process (default: all six)')
    parser.add_argument('--max-workers', type=int, help='Maximum number of concurrent units')
    parser.add_argument('--start-year', type=int, help='First year (inclusive)')
    parser.add_argument('--end-year', type=int, help='Last year (inclusive)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level')
    parser.add_argument('--rich-progress', action='store_true', help='Show a rich progress display')
    parser.add_argument('--no-export', action='store_true', help='Compute products without writing files')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Climate Disturbance Stack - TerraClimate data wrangling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run --input-dir /data/terraclimate        # All products
  %(prog)s means --no-export                         # Monthly means only
  %(prog)s points --start-year 2010 --end-year 2021  # Validation point table
  %(prog)s sample-config -o climate_stack.yaml       # Write default settings
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    descriptions = {
        'run': 'Run every stage',
        'means': 'Monthly climatological means',
        'extremes': 'Annual extrema and per-year combined rasters',
        'points': 'Zonal statistics at the validation points',
    }
    for command, help_text in descriptions.items():
        _add_run_arguments(subparsers.add_parser(command, help=help_text))

    config_parser = subparsers.add_parser('sample-config', help='Create sample configuration file')
    config_parser.add_argument('--output', '-o', default='climate_stack.yaml',
                               help='Output configuration file name')
    config_parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])

    return parser


def main(argv=None) -> int:
    """Main entry point with argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == 'sample-config':
            return sample_config_command(args)
        return stack_command(args)
    except KeyboardInterrupt:
        logger.info("🛑 Processing interrupted by user")
        return 1
    except (ClimateStackError, OSError, ValueError) as e:
        logger.error(f"💥 Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
