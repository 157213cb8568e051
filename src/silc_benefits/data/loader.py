"""
Load the bundled EU-SILC style survey table.

The table is a synthetic person-level extract with one row per respondent.
Household size is stored as a leveled (categorical) column of printed
labels, the same way the survey distributes it.
"""

import logging
from pathlib import Path

import pandas as pd

from silc_benefits.config import RESOURCES_DIR

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = "eusilc_synthetic.csv"

SURVEY_DTYPES = {
    "db030": "int64",
    "hsize": "category",
    "rb030": "int64",
    "age": "int64",
    "pl030": "Int64",
    "py010n": "float64",
    "py090n": "float64",
    "rb050": "float64",
}


def resolve_data_path(path=None, config=None) -> Path:
    """Return the survey file location from an explicit path or the configuration."""
    if path is not None:
        return Path(path)
    file_name = DEFAULT_DATA_FILE
    if config is not None:
        file_name = config.get("data", {}).get("file", DEFAULT_DATA_FILE)
    file_path = Path(file_name)
    if not file_path.is_absolute():
        file_path = RESOURCES_DIR / file_path
    return file_path


def load_survey_data(path=None, config=None) -> pd.DataFrame:
    """
    Load the survey table.

    Args:
        path: Optional CSV path overriding the configured file
        config: Analysis configuration

    Returns:
        pd.DataFrame: Raw survey records
    """
    file_path = resolve_data_path(path, config)
    logger.info(f"Loading survey data from {file_path}")

    if not file_path.exists():
        logger.error(f"File not found: {file_path}")
        raise FileNotFoundError(f"Survey data not found: {file_path}")

    df = pd.read_csv(file_path, dtype=SURVEY_DTYPES)

    logger.info(f"Loaded {len(df)} records with {len(df.columns)} columns")
    return df
