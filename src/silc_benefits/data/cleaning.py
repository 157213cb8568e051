"""
Filter and clean the raw survey table.

Steps:
1. Keep the configured regions
2. Project to the five analysis columns, renaming the benefits column
3. Convert household size from its leveled labels to integers
4. Check that missing values coincide exactly with respondents under 16
5. Drop the under-16 respondents

Every step returns a new DataFrame. Five-number summaries are recorded
after each step so the report can show how the data changed.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from silc_benefits.analysis.descriptive_statistics import numeric_summary
from silc_benefits.config import log_section

logger = logging.getLogger(__name__)


class MissingnessAssumptionError(ValueError):
    """Raised when missing values are not fully explained by respondent age."""


@dataclass(frozen=True)
class MissingnessAudit:
    """Comparison of rows with missing values against rows below the age threshold."""

    missing_index: frozenset
    underage_index: frozenset
    min_age: int

    @property
    def explained(self) -> bool:
        return self.missing_index == self.underage_index

    @property
    def missing_not_underage(self) -> frozenset:
        return self.missing_index - self.underage_index

    @property
    def underage_not_missing(self) -> frozenset:
        return self.underage_index - self.missing_index


@dataclass
class CleaningResult:
    data: pd.DataFrame
    audit: MissingnessAudit
    stage_summaries: Dict[str, pd.DataFrame] = field(default_factory=dict)
    stage_rows: Dict[str, int] = field(default_factory=dict)
    missing_regions: List[str] = field(default_factory=list)
    hsize_lookup: Dict[str, int] = field(default_factory=dict)


def filter_regions(df: pd.DataFrame, regions, region_column: str = "db040") -> pd.DataFrame:
    """Keep only the rows belonging to the given regions."""
    present = set(df[region_column].dropna().unique())
    for region in regions:
        if region not in present:
            logger.warning(f"Configured region not present in data: {region}")

    filtered = df[df[region_column].isin(list(regions))].copy()
    logger.info(f"Filtered to {len(filtered)} of {len(df)} records in {len(regions)} regions")
    return filtered


def select_columns(df: pd.DataFrame, columns, rename: Optional[dict] = None) -> pd.DataFrame:
    """Project to exactly the given columns, applying an optional rename."""
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise KeyError(f"Columns not found in survey data: {', '.join(missing)}")

    selected = df[list(columns)].copy()
    if rename:
        selected = selected.rename(columns=rename)
    return selected


def household_size_lookup(series: pd.Series) -> Dict[str, int]:
    """
    Build the label -> integer lookup for a household size column.

    The lookup is keyed by the printed label of each level. The categorical
    codes are positions in the sorted level list and do not equal the size.
    """
    if isinstance(series.dtype, pd.CategoricalDtype):
        labels = series.cat.categories
    else:
        labels = series.dropna().unique()

    lookup = {}
    for label in labels:
        text = str(label).strip()
        try:
            value = float(text)
        except ValueError:
            raise ValueError(f"Household size label is not numeric: {label!r}") from None
        if not value.is_integer():
            raise ValueError(f"Household size label is not an integer: {label!r}")
        lookup[label] = int(value)
    return lookup


def coerce_household_size(series: pd.Series) -> pd.Series:
    """Convert household size labels to integers through the label lookup."""
    lookup = household_size_lookup(series)
    values = series.astype(object).map(lookup)
    if values.isna().any():
        return values.astype("Int64")
    return values.astype("int64")


def apply_categorical_levels(df: pd.DataFrame, levels: Optional[dict]) -> pd.DataFrame:
    """Give categorical columns a fixed level order for tables and plots."""
    if not levels:
        return df
    result = df.copy()
    for col, col_levels in levels.items():
        if col in result.columns:
            result[col] = pd.Categorical(result[col], categories=list(col_levels))
    return result


def audit_missingness(df: pd.DataFrame, age_column: str = "age", min_age: int = 16) -> MissingnessAudit:
    """Compare the rows with any missing field against the rows with age below min_age."""
    missing_index = frozenset(df.index[df.isna().any(axis=1)])
    underage_index = frozenset(df.index[df[age_column] < min_age])
    audit = MissingnessAudit(missing_index, underage_index, min_age)

    logger.info(f"Rows with missing values: {len(missing_index)}")
    logger.info(f"Rows with {age_column} < {min_age}: {len(underage_index)}")
    if audit.explained:
        logger.info("Missing values coincide exactly with respondents below the age threshold")
    else:
        logger.warning(
            f"Missingness not explained by age: {len(audit.missing_not_underage)} missing rows are of age, "
            f"{len(audit.underage_not_missing)} underage rows are complete"
        )
    return audit


def drop_ineligible(df: pd.DataFrame, audit: MissingnessAudit, age_column: str = "age") -> pd.DataFrame:
    """
    Drop respondents below the age threshold.

    Dropping is only valid because the missing person-level fields belong to
    respondents who were never eligible for the personal questionnaire. If
    the audit shows any other missingness the analysis stops.
    """
    if not audit.explained:
        raise MissingnessAssumptionError(
            f"{len(audit.missing_not_underage)} rows have missing values at age >= {audit.min_age} and "
            f"{len(audit.underage_not_missing)} rows below age {audit.min_age} are complete"
        )

    cleaned = df[df[age_column] >= audit.min_age].copy()
    logger.info(f"Dropped {len(df) - len(cleaned)} records below age {audit.min_age}")
    return cleaned


def summarize_stage(df: pd.DataFrame) -> pd.DataFrame:
    """Five-number summary plus mean of every numeric column."""
    numeric_cols = [col for col in df.columns if pd.api.types.is_numeric_dtype(df[col])]
    return pd.DataFrame({col: numeric_summary(df[col]) for col in numeric_cols}).T


def clean_survey(raw: pd.DataFrame, config: dict) -> CleaningResult:
    """
    Run the full cleaning sequence.

    Args:
        raw: Survey table as loaded
        config: Analysis configuration

    Returns:
        CleaningResult: Cleaned data, the missingness audit and per-stage summaries
    """
    log_section("Filter & Clean", logger)
    data_cfg = config["data"]
    cleaning_cfg = config["cleaning"]
    age_column = cleaning_cfg.get("age_column", "age")
    min_age = cleaning_cfg.get("min_age", 16)

    summaries = {"raw": summarize_stage(raw)}
    rows = {"raw": len(raw)}

    regional = filter_regions(raw, data_cfg["regions"], data_cfg.get("region_column", "db040"))
    summaries["regions"] = summarize_stage(regional)
    rows["regions"] = len(regional)
    present = set(raw[data_cfg.get("region_column", "db040")].dropna().unique())
    missing_regions = [region for region in data_cfg["regions"] if region not in present]

    selected = select_columns(regional, data_cfg["columns"], data_cfg.get("rename"))
    lookup = household_size_lookup(selected["hsize"])
    logger.info(f"Household size labels: {lookup}")
    selected = selected.assign(hsize=coerce_household_size(selected["hsize"]))
    summaries["selected"] = summarize_stage(selected)
    rows["selected"] = len(selected)
    logger.info(f"Selected columns: {', '.join(selected.columns)}")

    audit = audit_missingness(selected, age_column, min_age)
    cleaned = drop_ineligible(selected, audit, age_column)
    cleaned = apply_categorical_levels(cleaned, data_cfg.get("categorical_levels"))
    cleaned = cleaned.reset_index(drop=True)

    if cleaned.isna().any().any():
        raise MissingnessAssumptionError("Cleaned data still contains missing values")

    summaries["cleaned"] = summarize_stage(cleaned)
    rows["cleaned"] = len(cleaned)
    logger.info(f"Cleaned dataset has {len(cleaned)} records")

    return CleaningResult(
        data=cleaned,
        audit=audit,
        stage_summaries=summaries,
        stage_rows=rows,
        missing_regions=missing_regions,
        hsize_lookup={str(k): v for k, v in lookup.items()},
    )
