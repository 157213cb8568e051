import copy
import logging
import sys
from datetime import datetime
from pathlib import Path

import yaml

# Set up paths
PACKAGE_DIR = Path(__file__).resolve().parent
RESOURCES_DIR = PACKAGE_DIR / "resources"
DEFAULT_CONFIG_PATH = RESOURCES_DIR / "analysis_config.yaml"
DEFAULT_OUTPUT_DIR = Path("output") / "report"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def _deep_merge(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path=None, overrides=None) -> dict:
    """
    Load the analysis configuration.

    Args:
        path: YAML file to read, defaults to the bundled analysis_config.yaml
        overrides: Nested dictionary merged on top of the file contents

    Returns:
        dict: The merged configuration
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    if overrides:
        config = _deep_merge(config, overrides)
    return config


def setup_logging(output_dir=None, level=logging.INFO):
    """Configure logging to the console and, when given a directory, a timestamped log file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = None
    if output_dir is not None:
        log_dir = Path(output_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"benefits_analysis_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    return log_file


def log_section(section_name, log=None):
    """Log a section header to improve log readability."""
    (log or logger).info(f"\n{'=' * 40}\n{section_name}\n{'=' * 40}")
