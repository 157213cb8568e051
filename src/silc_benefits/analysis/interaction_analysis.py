"""
Three-way summaries of benefits with two predictors at a time.

For a continuous x the benefits-on-x slope is fitted per group within each
facet; for a categorical x the cell means are tabulated. A pattern is
flagged as an apparent interaction when the slopes of two groups point in
opposite directions or differ by at least the configured ratio, or when
the ordering of group means flips between levels of x.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from silc_benefits.analysis.descriptive_statistics import nonzero_subset
from silc_benefits.config import log_section

logger = logging.getLogger(__name__)


@dataclass
class InteractionPattern:
    outcome: str
    x: str
    group: str
    facet: Optional[str]
    table: pd.DataFrame
    apparent: bool
    narrative: List[str] = field(default_factory=list)

    @property
    def title(self) -> str:
        facet = f" | {self.facet}" if self.facet else ""
        return f"{self.outcome} ~ {self.x} x {self.group}{facet}"


def _slope(x, y) -> float:
    if len(x) < 2 or np.ptp(np.asarray(x, dtype=float)) == 0:
        return np.nan
    slope, _ = np.polyfit(np.asarray(x, dtype=float), np.asarray(y, dtype=float), 1)
    return float(slope)


def slopes_differ(slopes, ratio: float = 2.0) -> bool:
    """True when any two finite slopes have opposite signs or a magnitude ratio of at least ratio."""
    finite = [s for s in slopes if np.isfinite(s)]
    for i, a in enumerate(finite):
        for b in finite[i + 1:]:
            if a * b < 0:
                return True
            small, large = sorted([abs(a), abs(b)])
            if small == 0 and large > 0:
                return True
            if small > 0 and large / small >= ratio:
                return True
    return False


def orderings_cross(means: pd.DataFrame) -> bool:
    """True when the group with the highest mean changes between rows of a cell-mean table."""
    complete = means.dropna(how="any")
    if len(complete) < 2 or complete.shape[1] < 2:
        return False
    leaders = complete.idxmax(axis=1)
    return leaders.nunique() > 1


def continuous_interaction(df: pd.DataFrame, outcome: str, x: str, group: str, facet: Optional[str] = None,
                           ratio: float = 2.0) -> InteractionPattern:
    """Per-group slopes of outcome on x, within each facet level."""
    facets = [(None, df)] if facet is None else list(df.groupby(facet, observed=True))
    rows = []
    apparent = False
    narrative = []
    for facet_level, facet_df in facets:
        slopes = {}
        for level, cell in facet_df.groupby(group, observed=True):
            slopes[level] = _slope(cell[x], cell[outcome])
            rows.append({"facet": facet_level, group: level, "n": len(cell), "slope": slopes[level]})
        differ = slopes_differ(list(slopes.values()), ratio)
        apparent = apparent or differ
        where = f"For {facet}={facet_level}" if facet else "Overall"
        desc = ", ".join(f"{k}: {v:+.1f}" for k, v in slopes.items())
        narrative.append(
            f"{where}, the slope of {outcome} on {x} by {group} is {desc}"
            + (" - the lines are not parallel." if differ else " - the lines are roughly parallel.")
        )

    table = pd.DataFrame(rows)
    return InteractionPattern(outcome, x, group, facet, table, apparent, narrative)


def categorical_interaction(df: pd.DataFrame, outcome: str, x: str, group: str) -> InteractionPattern:
    """Cell means of outcome for each combination of x and group."""
    means = df.pivot_table(index=x, columns=group, values=outcome, aggfunc="mean", observed=True)
    counts = df.pivot_table(index=x, columns=group, values=outcome, aggfunc="size", observed=True)
    means.columns = [str(c) for c in means.columns]
    counts.columns = [str(c) for c in counts.columns]
    crossing = orderings_cross(means)

    narrative = []
    complete = means.dropna(how="any")
    if not complete.empty:
        leaders = complete.idxmax(axis=1)
        for level, leader in leaders.items():
            narrative.append(f"At {x}={level} the highest mean {outcome} is in {group}={leader}.")
    narrative.append(
        f"The ordering of {group} changes across {x}, suggesting an interaction."
        if crossing else f"The ordering of {group} is the same across {x}."
    )

    table = means.add_prefix("mean_").join(counts.add_prefix("n_"))
    return InteractionPattern(outcome, x, group, None, table, crossing, narrative)


def analyze_interactions(df: pd.DataFrame, config: dict) -> List[InteractionPattern]:
    """
    Summaries for the three-way combinations shown in the report.

    Args:
        df: Cleaned survey data
        config: Analysis configuration

    Returns:
        list: One InteractionPattern per combination
    """
    log_section("Joint / Interaction Analysis", logger)
    variables = config["variables"]
    outcome = variables["outcome"]
    gender, citizenship = variables["categorical_predictors"][:2]
    ratio = config.get("interactions", {}).get("ratio", 2.0)
    nonzero = nonzero_subset(df, outcome)

    patterns = [
        continuous_interaction(nonzero, outcome, "age", gender, citizenship, ratio),
        categorical_interaction(nonzero, outcome, "hsize", gender),
        categorical_interaction(nonzero, outcome, citizenship, gender),
    ]
    for pattern in patterns:
        for line in pattern.narrative:
            logger.info(line)
    return patterns
