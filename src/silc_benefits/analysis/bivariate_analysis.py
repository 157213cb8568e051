"""
Bivariate analysis of benefits against each predictor, and of the
predictors against each other.

Benefit amounts are analysed on the non-zero subset: a zero means the
respondent receives no unemployment benefit, so mixing those rows in would
compare take-up rather than amounts.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd
import statsmodels.api as sm

from silc_benefits.analysis.descriptive_statistics import grouped_summary, nonzero_subset
from silc_benefits.analysis.hypothesis_tests import MeanComparison, compare_means
from silc_benefits.config import log_section

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrendLine:
    x: str
    y: str
    slope: float
    intercept: float
    r_squared: float
    p_value: float
    nobs: int


@dataclass
class BivariateResults:
    group_summaries: Dict[str, pd.DataFrame] = field(default_factory=dict)
    comparisons: Dict[str, MeanComparison] = field(default_factory=dict)
    trends: Dict[str, TrendLine] = field(default_factory=dict)
    predictor_summaries: Dict[str, pd.DataFrame] = field(default_factory=dict)
    crosstabs: Dict[str, pd.DataFrame] = field(default_factory=dict)
    uptake: Dict[str, pd.DataFrame] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    @property
    def limitations(self) -> List[str]:
        comparisons = [f"{c.outcome} by {c.group}: {c.limitation}" for c in self.comparisons.values() if c.limitation]
        return comparisons + self.notes


def ols_trend(df: pd.DataFrame, x: str, y: str) -> TrendLine:
    """Ordinary least squares line of y on x."""
    subset = df[[x, y]].dropna()
    if len(subset) < 3:
        raise ValueError(f"Not enough observations for a trend line of {y} on {x}")
    X = sm.add_constant(subset[x].astype(float))
    model = sm.OLS(subset[y].astype(float), X).fit()
    return TrendLine(
        x=x,
        y=y,
        slope=float(model.params[x]),
        intercept=float(model.params["const"]),
        r_squared=float(model.rsquared),
        p_value=float(model.pvalues[x]),
        nobs=int(model.nobs),
    )


def uptake_by_group(df: pd.DataFrame, outcome: str, group: str) -> pd.DataFrame:
    """Share of respondents with a non-zero outcome in each group."""
    table = df.groupby(group, observed=False)[outcome].agg(
        n="size",
        n_nonzero=lambda s: int((s != 0).sum()),
    )
    table["share_nonzero"] = table["n_nonzero"] / table["n"].replace(0, np.nan)
    return table


def analyze_bivariate(df: pd.DataFrame, config: dict) -> BivariateResults:
    """
    Group summaries, mean comparisons and trend lines for each predictor.

    Args:
        df: Cleaned survey data
        config: Analysis configuration

    Returns:
        BivariateResults: Tables and test results keyed by predictor
    """
    log_section("Bivariate Analysis", logger)
    variables = config["variables"]
    outcome = variables["outcome"]
    alpha = config["tests"]["alpha"]
    min_size = config["tests"].get("min_group_size", 2)
    nonzero = nonzero_subset(df, outcome)
    logger.info(f"Analysing {len(nonzero)} respondents with non-zero {outcome}")

    results = BivariateResults()
    grouping = list(variables["categorical_predictors"]) + ["hsize"]
    for group in grouping:
        results.group_summaries[group] = grouped_summary(nonzero, outcome, group)
        results.comparisons[group] = compare_means(nonzero, outcome, group, alpha, min_size)
        results.uptake[group] = uptake_by_group(df, outcome, group)

    for var in variables["continuous_predictors"]:
        try:
            trend = ols_trend(nonzero, var, outcome)
        except ValueError as e:
            results.notes.append(f"{outcome} ~ {var}: {e}; no trend line fitted")
            continue
        results.trends[var] = trend
        logger.info(f"{outcome} ~ {var}: slope={trend.slope:.3f}, R-squared={trend.r_squared:.4f}, p={trend.p_value:.4g}")

    # Predictor pairs
    gender, citizenship = variables["categorical_predictors"][:2]
    results.predictor_summaries[f"age_by_{gender}"] = grouped_summary(df, "age", gender)
    results.predictor_summaries[f"age_by_{citizenship}"] = grouped_summary(df, "age", citizenship)
    results.predictor_summaries[f"hsize_by_{citizenship}"] = grouped_summary(df, "hsize", citizenship)
    results.crosstabs[f"{gender}_x_{citizenship}"] = pd.crosstab(df[gender], df[citizenship], dropna=False)

    for limitation in results.limitations:
        logger.warning(limitation)
    return results
