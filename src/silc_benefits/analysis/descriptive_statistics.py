"""
Descriptive statistics for the survey variables.

Numeric variables get the five-number summary plus the mean, categorical
variables a frequency table per level. Nothing here modifies its input.
"""

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SUMMARY_FIELDS = ["n", "n_missing", "min", "q1", "median", "mean", "q3", "max"]


def numeric_summary(series: pd.Series) -> dict:
    """
    Five-number summary and mean of a numeric series.

    Quartiles use linear interpolation between order statistics.
    """
    values = pd.to_numeric(series, errors="coerce").astype(float)
    present = values.dropna()
    if present.empty:
        summary = {key: np.nan for key in SUMMARY_FIELDS}
        summary.update({"n": 0, "n_missing": int(values.isna().sum())})
        return summary

    return {
        "n": int(len(present)),
        "n_missing": int(values.isna().sum()),
        "min": float(present.min()),
        "q1": float(present.quantile(0.25)),
        "median": float(present.median()),
        "mean": float(present.mean()),
        "q3": float(present.quantile(0.75)),
        "max": float(present.max()),
    }


def categorical_summary(series: pd.Series) -> pd.DataFrame:
    """Count and share of each level, keeping declared but unused levels."""
    counts = series.value_counts(sort=False, dropna=True)
    if isinstance(series.dtype, pd.CategoricalDtype):
        counts = counts.reindex(series.cat.categories, fill_value=0)
    else:
        counts = counts.sort_index()

    total = counts.sum()
    table = pd.DataFrame({
        "count": counts.astype(int),
        "share": counts / total if total else counts.astype(float),
    })
    table.index.name = series.name
    return table


def grouped_summary(df: pd.DataFrame, outcome: str, group: str) -> pd.DataFrame:
    """Numeric summary of the outcome for every level of the grouping variable."""
    rows = {}
    for level, values in df.groupby(group, observed=False)[outcome]:
        rows[level] = numeric_summary(values)
    table = pd.DataFrame(rows).T[SUMMARY_FIELDS]
    table.index.name = group
    return table


def nonzero_subset(df: pd.DataFrame, column: str = "benefits") -> pd.DataFrame:
    """Rows where the column is not zero."""
    return df[df[column] != 0]


def zero_share(series: pd.Series) -> dict:
    n_zero = int((series == 0).sum())
    n = int(series.notna().sum())
    return {
        "n": n,
        "n_zero": n_zero,
        "n_nonzero": n - n_zero,
        "share_zero": n_zero / n if n else np.nan,
    }


def univariate_summaries(df: pd.DataFrame, config: dict) -> dict:
    """
    Summaries for each of the five analysis variables.

    Args:
        df: Cleaned survey data
        config: Analysis configuration

    Returns:
        dict: Variable name -> summary. Numeric variables map to a summary
        dict, categorical ones to a frequency table. The outcome also gets
        its non-zero summary and zero share.
    """
    variables = config["variables"]
    outcome = variables["outcome"]
    results = {}

    for var in variables["continuous_predictors"]:
        results[var] = numeric_summary(df[var])
        logger.info(f"{var}: {format_summary(results[var])}")

    for var in variables["categorical_predictors"]:
        results[var] = categorical_summary(df[var])
        logger.info(f"{var} levels: {results[var]['count'].to_dict()}")

    # Household size is discrete, so it is also tabulated
    if "hsize" in df.columns:
        results["hsize_counts"] = categorical_summary(df["hsize"])

    results[outcome] = numeric_summary(df[outcome])
    results[f"{outcome}_nonzero"] = numeric_summary(nonzero_subset(df, outcome)[outcome])
    results[f"{outcome}_zero_share"] = zero_share(df[outcome])
    logger.info(f"{outcome} (non-zero): {format_summary(results[f'{outcome}_nonzero'])}")

    return results


def format_summary(summary: dict, precision: int = 2) -> str:
    return ", ".join(
        f"{key}={summary[key]:.{precision}f}" for key in ["min", "q1", "median", "mean", "q3", "max"]
    )


def summary_table(summaries: dict) -> pd.DataFrame:
    """Stack several numeric summaries into one table, one row per entry."""
    return pd.DataFrame(summaries).T[SUMMARY_FIELDS]
