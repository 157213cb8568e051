"""
Model descriptors and the comparisons between them.

A model is described by its outcome column and a set of terms. A term is a
tuple of predictor names: main effects have one name, two-way interactions
two. Fitting turns a term set into a FittedModel whose ModelDescriptor holds
the fit statistics. Every comparison (nested F-test, AIC, adjusted R-squared
preference) is a plain function of descriptors, so each transition of the
model sequence can be checked on its own.
"""

import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.stats.anova import anova_lm

logger = logging.getLogger(__name__)

Term = Tuple[str, ...]

DIRECTIONS = ("both", "forward", "backward")


@dataclass(frozen=True)
class ModelDescriptor:
    name: str
    outcome: str
    terms: Tuple[Term, ...]
    nobs: int
    n_params: int
    rss: float
    df_resid: float
    r_squared: float
    adj_r_squared: float
    aic: float
    step_aic: float
    rank_deficient: bool = False
    transform: str = "identity"
    lambda_: Optional[float] = None

    @property
    def formula(self) -> str:
        return build_formula(self.outcome, self.terms)

    @property
    def interaction_terms(self) -> Tuple[Term, ...]:
        return tuple(term for term in self.terms if len(term) > 1)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "formula": self.formula,
            "transform": self.transform,
            "lambda": self.lambda_,
            "nobs": self.nobs,
            "n_params": self.n_params,
            "rss": self.rss,
            "df_resid": self.df_resid,
            "r_squared": self.r_squared,
            "adj_r_squared": self.adj_r_squared,
            "aic": self.aic,
            "step_aic": self.step_aic,
            "rank_deficient": self.rank_deficient,
        }


@dataclass
class FittedModel:
    descriptor: ModelDescriptor
    results: object

    @property
    def name(self) -> str:
        return self.descriptor.name


@dataclass(frozen=True)
class FTestResult:
    restricted: str
    full: str
    f_statistic: float
    df_num: float
    df_denom: float
    p_value: float

    def significant(self, alpha: float = 0.05) -> bool:
        return self.p_value < alpha


@dataclass(frozen=True)
class StepRecord:
    action: str
    term: Optional[Term]
    step_aic: float
    terms: Tuple[Term, ...]


@dataclass
class StepwiseResult:
    direction: str
    final: FittedModel
    path: List[StepRecord] = field(default_factory=list)

    @property
    def term_set(self) -> frozenset:
        return frozenset(self.final.descriptor.terms)


@dataclass(frozen=True)
class ConvergenceCheck:
    term_sets: Dict[str, frozenset]
    reference_terms: frozenset

    @property
    def converged(self) -> bool:
        return len(set(self.term_sets.values())) == 1

    @property
    def matches_reference(self) -> bool:
        return self.converged and next(iter(self.term_sets.values())) == self.reference_terms


def canonical_terms(terms, order: Optional[Sequence[str]] = None) -> Tuple[Term, ...]:
    """Sort names within each term and the terms themselves into a stable order."""
    def position(name):
        if order is not None and name in order:
            return (0, list(order).index(name), name)
        return (1, 0, name)

    cleaned = set()
    for term in terms:
        if isinstance(term, str):
            term = tuple(term.split(":"))
        cleaned.add(tuple(sorted(term, key=position)))
    return tuple(sorted(cleaned, key=lambda t: (len(t), [position(n) for n in t])))


def main_effects(predictors: Sequence[str]) -> Tuple[Term, ...]:
    return tuple((p,) for p in predictors)


def pairwise_interactions(predictors: Sequence[str]) -> Tuple[Term, ...]:
    """All two-way interaction terms between the predictors."""
    return tuple(itertools.combinations(predictors, 2))


def term_label(term: Term) -> str:
    return ":".join(term)


def build_formula(outcome: str, terms) -> str:
    """Formula string for an outcome and a set of terms."""
    if not terms:
        return f"{outcome} ~ 1"
    return f"{outcome} ~ " + " + ".join(term_label(term) for term in terms)


def fit_model(data: pd.DataFrame, outcome: str, terms, name: str, transform: str = "identity",
              lambda_: Optional[float] = None, order: Optional[Sequence[str]] = None) -> FittedModel:
    """
    Fit an OLS model and describe it.

    Args:
        data: Model data holding the outcome and every predictor column
        outcome: Outcome column
        terms: Iterable of terms
        name: Label used in logs and the report
        transform: Name of the outcome transform, for the report
        lambda_: Box-Cox parameter of the outcome, if any
        order: Predictor order used to normalise term names

    Returns:
        FittedModel: The descriptor and the statsmodels results object
    """
    terms = canonical_terms(terms, order)
    formula = build_formula(outcome, terms)
    results = smf.ols(formula, data=data).fit()

    exog = results.model.exog
    rank = np.linalg.matrix_rank(exog)
    rank_deficient = bool(rank < exog.shape[1])
    if rank_deficient:
        logger.warning(f"{name}: design matrix is rank deficient ({rank} of {exog.shape[1]} columns)")

    nobs = int(results.nobs)
    rss = float(results.ssr)
    n_params = int(round(nobs - results.df_resid))
    descriptor = ModelDescriptor(
        name=name,
        outcome=outcome,
        terms=terms,
        nobs=nobs,
        n_params=n_params,
        rss=rss,
        df_resid=float(results.df_resid),
        r_squared=float(results.rsquared),
        adj_r_squared=float(results.rsquared_adj),
        aic=float(results.aic),
        step_aic=stepwise_criterion(rss, nobs, n_params),
        rank_deficient=rank_deficient,
        transform=transform,
        lambda_=lambda_,
    )
    return FittedModel(descriptor, results)


def stepwise_criterion(rss: float, nobs: int, n_params: int, k: float = 2.0) -> float:
    """AIC up to an additive constant: n log(RSS / n) + k p."""
    if rss <= 0:
        return -math.inf
    return nobs * math.log(rss / nobs) + k * n_params


def same_outcome_scale(a: ModelDescriptor, b: ModelDescriptor) -> bool:
    return a.outcome == b.outcome and a.nobs == b.nobs and a.transform == b.transform and a.lambda_ == b.lambda_


def is_nested(restricted: ModelDescriptor, full: ModelDescriptor) -> bool:
    """True when restricted uses a subset of full's terms on the same outcome."""
    return same_outcome_scale(restricted, full) and set(restricted.terms) < set(full.terms)


def nested_f_test(restricted: ModelDescriptor, full: ModelDescriptor) -> FTestResult:
    """F-test of the extra terms in full, comparing residual sums of squares."""
    if not is_nested(restricted, full):
        raise ValueError(f"{restricted.name} is not nested in {full.name}")

    df_num = restricted.df_resid - full.df_resid
    if df_num <= 0:
        raise ValueError(f"{full.name} has no additional degrees of freedom over {restricted.name}")

    if full.df_resid <= 0:
        raise ValueError(f"{full.name} has no residual degrees of freedom")

    # Rounding can leave the larger model with the larger RSS
    numerator = max(restricted.rss - full.rss, 0.0) / df_num
    if full.rss > 0:
        f_stat = numerator / (full.rss / full.df_resid)
    else:
        f_stat = math.inf if numerator > 0 else 0.0
    p_value = float(stats.f.sf(f_stat, df_num, full.df_resid))
    return FTestResult(restricted.name, full.name, float(f_stat), float(df_num), float(full.df_resid), p_value)


def compare_aic(a: ModelDescriptor, b: ModelDescriptor) -> dict:
    """AIC comparison of two models fitted to the same outcome."""
    if not same_outcome_scale(a, b):
        raise ValueError(f"AIC of {a.name} and {b.name} is not comparable: different outcome scale")
    preferred = a if a.aic <= b.aic else b
    return {
        "model_a": a.name,
        "model_b": b.name,
        "aic_a": a.aic,
        "aic_b": b.aic,
        "difference": a.aic - b.aic,
        "preferred": preferred.name,
    }


def prefer_by_adjusted_r2(candidate: ModelDescriptor, incumbent: ModelDescriptor,
                          materiality: float = 0.01) -> ModelDescriptor:
    """
    Return the candidate only if it improves adjusted R-squared by more than materiality.

    Without a material improvement the model with fewer parameters wins,
    with ties going to the incumbent.
    """
    gain = candidate.adj_r_squared - incumbent.adj_r_squared
    if gain > materiality:
        return candidate
    if gain >= -materiality and candidate.n_params < incumbent.n_params:
        return candidate
    return incumbent


def significant_interactions(fitted: FittedModel, alpha: float = 0.05,
                             order: Optional[Sequence[str]] = None):
    """
    Interaction terms significant in a Type-II ANOVA of the model.

    Returns:
        tuple: (terms, table) with the significant interaction terms and the
        ANOVA table itself
    """
    table = anova_lm(fitted.results, typ=2)
    selected = []
    for label, row in table.iterrows():
        if label == "Residual":
            continue
        term = tuple(str(label).split(":"))
        p_value = row.get("PR(>F)", np.nan)
        if len(term) > 1 and pd.notna(p_value) and p_value < alpha:
            selected.append(term)
    return canonical_terms(selected, order), table


def _droppable(current, lower):
    lower = set(lower)
    candidates = []
    for term in current:
        if term in lower:
            continue
        if any(other != term and set(term) < set(other) for other in current):
            continue
        candidates.append(term)
    return candidates


def _addable(current, upper):
    current = set(current)
    upper_set = set(upper)
    candidates = []
    for term in upper:
        if term in current:
            continue
        subterms = [
            sub for size in range(1, len(term))
            for sub in itertools.combinations(term, size)
        ]
        if all(sub in current for sub in subterms if sub in upper_set):
            candidates.append(term)
    return candidates


def stepwise_aic(data: pd.DataFrame, outcome: str, lower, upper, start=None, direction: str = "both",
                 order: Optional[Sequence[str]] = None, name: str = "stepwise",
                 transform: str = "identity", lambda_: Optional[float] = None) -> StepwiseResult:
    """
    Stepwise term selection by AIC.

    Each step tries every allowed single-term drop and/or addition and moves
    to the one with the lowest AIC, stopping when nothing lowers it. A term
    cannot be dropped while a higher-order term containing it remains and
    cannot be added before its lower-order terms.

    Args:
        data: Model data
        outcome: Outcome column
        lower: Terms that are always kept
        upper: Largest term set considered
        start: Starting terms; defaults to upper for "both" and "backward",
            lower for "forward"
        direction: "both", "forward" or "backward"

    Returns:
        StepwiseResult: The final model and the path taken
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"Unknown stepwise direction: {direction}")

    lower = canonical_terms(lower, order)
    upper = canonical_terms(upper, order)
    if not set(lower) <= set(upper):
        raise ValueError("Lower scope must be contained in the upper scope")
    if start is None:
        start = lower if direction == "forward" else upper
    current = canonical_terms(start, order)
    if not set(lower) <= set(current) <= set(upper):
        raise ValueError("Starting model must lie between the lower and upper scope")

    fits = {}

    def fit(terms):
        key = frozenset(terms)
        if key not in fits:
            fits[key] = fit_model(data, outcome, terms, name, transform, lambda_, order)
        return fits[key]

    current_fit = fit(current)
    path = [StepRecord("start", None, current_fit.descriptor.step_aic, current)]
    logger.info(f"Stepwise ({direction}) start: {current_fit.descriptor.formula} "
                f"AIC={current_fit.descriptor.step_aic:.3f}")

    while True:
        candidates = []
        if direction in ("both", "backward"):
            for term in _droppable(current, lower):
                candidates.append(("-", term, tuple(t for t in current if t != term)))
        if direction in ("both", "forward"):
            for term in _addable(current, upper):
                candidates.append(("+", term, current + (term,)))
        if not candidates:
            break

        scored = [(fit(terms).descriptor.step_aic, action, term, terms) for action, term, terms in candidates]
        best_aic, action, term, terms = min(scored, key=lambda item: item[0])
        if best_aic >= current_fit.descriptor.step_aic - 1e-7:
            break

        current = canonical_terms(terms, order)
        current_fit = fit(current)
        path.append(StepRecord(action, term, best_aic, current))
        logger.info(f"Stepwise ({direction}) {action} {term_label(term)}: AIC={best_aic:.3f}")

    logger.info(f"Stepwise ({direction}) final: {current_fit.descriptor.formula}")
    return StepwiseResult(direction, current_fit, path)


def verify_stepwise_convergence(results: Dict[str, StepwiseResult], reference_terms) -> ConvergenceCheck:
    """Check that all stepwise runs ended at the same terms and whether those equal the reference."""
    check = ConvergenceCheck(
        term_sets={direction: result.term_set for direction, result in results.items()},
        reference_terms=frozenset(reference_terms),
    )
    if not check.converged:
        logger.warning("Stepwise directions did not converge to the same model")
    elif not check.matches_reference:
        logger.warning("Stepwise model differs from the reduced interaction model")
    else:
        logger.info("All stepwise directions converged to the reduced interaction model")
    return check


def descriptor_table(models: List[FittedModel]) -> pd.DataFrame:
    return pd.DataFrame([m.descriptor.to_dict() for m in models]).set_index("name")
