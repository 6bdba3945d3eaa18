"""
Main entry point for the popularity selection pipeline.

Loads config.yaml, configures logging and runs the driver once:
load -> validate -> preprocess -> PCA -> select/fit/evaluate per variant -> compare.
"""

import argparse
import sys
import logging
import os
from typing import Dict, Any

from src.data_load.data_loader import load_config
from src.exceptions import DataLoadError, PipelineError
from src.pipeline.driver import run_pipeline, validate_pipeline_config

# Module-level logger; configured by setup_logging
logger = logging.getLogger(__name__)


def setup_logging(logging_config: Dict[str, Any], default_log_file: str = "logs/pipeline.log"):
    """Set up logging for the application based on configuration."""
    log_file = logging_config.get("log_file", default_log_file)
    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    log_format_str = logging_config.get("format", "%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(message)s")
    date_format_str = logging_config.get("datefmt", "%Y-%m-%d %H:%M:%S")
    log_level_name = logging_config.get("level", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    # Clear existing root handlers to prevent duplicate logs
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    logging.basicConfig(
        level=log_level,
        format=log_format_str,
        datefmt=date_format_str,
        handlers=[
            logging.FileHandler(log_file, mode='a'),
            logging.StreamHandler(sys.stdout)
        ]
    )
    logging.getLogger(__name__).setLevel(log_level)
    logger.info(f"Logging configured. Level: {log_level_name}, File: {log_file}")


def main(argv=None) -> int:
    """Parse arguments and run the pipeline. Returns the process exit code."""
    parser = argparse.ArgumentParser(
        description="Song popularity variable-selection pipeline.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--config", type=str, default="config.yaml",
        help="Path to the main YAML configuration file."
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"CRITICAL: Could not load configuration '{args.config}': {e}", file=sys.stderr)
        return 1

    setup_logging(config.get("logging", {}))
    logger.info(f"Pipeline execution started. Config: '{args.config}'")

    try:
        validate_pipeline_config(config)
    except (KeyError, ValueError) as e:
        logger.critical(f"Configuration validation failed: {e}")
        return 1

    try:
        result = run_pipeline(config)
    except DataLoadError as e:
        logger.critical(f"Pipeline aborted, input data unusable: {e}", exc_info=True)
        return 1
    except PipelineError as e:
        logger.critical(f"Pipeline failed: {e}", exc_info=True)
        return 1

    for failure in result.failures:
        logger.warning(
            f"Excluded candidate {failure.variant}/{failure.policy} at {failure.stage}: {failure.message}"
        )
    logger.info(
        f"Pipeline execution completed. Winner: '{result.winner.name}' "
        f"with '{result.winner.best.model.formula}' (test {result.selection_metric}="
        f"{getattr(result.winner.test_report, result.selection_metric):.4f})"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
