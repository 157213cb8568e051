#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Linear Regression Models

Fits the fixed sequence of candidate models for unemployment benefits:

1. Baseline: benefits ~ age + hsize + rb090 + pb220a
2. log(1 + benefits) on the same predictors
3. Box-Cox transformed benefits, lambda estimated once on benefits + 1
5. Box-Cox transformed continuous predictors, kept only if adjusted
   R-squared improves materially over model 3
6. All two-way interactions
7. Main effects plus the interactions significant in a Type-II ANOVA of 6
8. AIC stepwise selection between the main effects and model 6, run in
   both, forward and backward direction

Every model gets the same residual diagnostics. Problems found along the
way are collected as limitations for the report; the sequence itself never
loops back to try further transforms.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.diagnostic import het_breuschpagan
from statsmodels.stats.stattools import jarque_bera

from silc_benefits.analysis.model_selection import (
    ConvergenceCheck,
    FittedModel,
    FTestResult,
    StepwiseResult,
    compare_aic,
    fit_model,
    is_nested,
    main_effects,
    nested_f_test,
    pairwise_interactions,
    prefer_by_adjusted_r2,
    same_outcome_scale,
    significant_interactions,
    stepwise_aic,
    term_label,
    verify_stepwise_convergence,
)
from silc_benefits.analysis.transformations import (
    BoxCoxEstimate,
    boxcox_transform,
    estimate_boxcox_lambda,
    log1p_transform,
)
from silc_benefits.config import log_section

logger = logging.getLogger(__name__)

STATE_LABELS = {
    "baseline": (1, "Baseline"),
    "log1p": (2, "log(1 + outcome)"),
    "boxcox": (3, "Box-Cox outcome"),
    "predictor_boxcox": (5, "Box-Cox predictors"),
    "full_interaction": (6, "All two-way interactions"),
    "reduced_interaction": (7, "Significant interactions"),
    "stepwise": (8, "Stepwise AIC"),
}


@dataclass
class Diagnostics:
    model: str
    studentized: pd.Series
    fitted_values: pd.Series
    pearson_residuals: pd.Series
    qq_correlation: float
    jarque_bera: Dict[str, float]
    breusch_pagan: Dict[str, float]
    flagged_index: pd.Index
    flagged_profile: Dict[str, float]
    threshold: float

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "qq_correlation": self.qq_correlation,
            "jarque_bera": self.jarque_bera["statistic"],
            "jarque_bera_p": self.jarque_bera["p_value"],
            "breusch_pagan": self.breusch_pagan["statistic"],
            "breusch_pagan_p": self.breusch_pagan["p_value"],
            "n_flagged": self.flagged_profile["n_flagged"],
            "share_flagged": self.flagged_profile["share_flagged"],
        }


@dataclass
class ModelState:
    key: str
    fitted: FittedModel
    diagnostics: Diagnostics
    note: str = ""

    @property
    def step(self) -> int:
        return STATE_LABELS[self.key][0]

    @property
    def label(self) -> str:
        return STATE_LABELS[self.key][1]

    @property
    def descriptor(self):
        return self.fitted.descriptor


@dataclass
class ModelSequence:
    data: pd.DataFrame
    states: Dict[str, ModelState]
    outcome_lambda: BoxCoxEstimate
    predictor_lambdas: Dict[str, BoxCoxEstimate]
    predictor_transform_accepted: bool
    anova_table: pd.DataFrame
    f_tests: List[FTestResult]
    aic_comparisons: List[dict]
    stepwise: Dict[str, StepwiseResult]
    convergence: ConvergenceCheck
    terminal_accepted: bool
    limitations: List[str] = field(default_factory=list)

    @property
    def terminal(self) -> ModelState:
        return self.states["stepwise"]

    def summary_table(self) -> pd.DataFrame:
        rows = []
        for state in self.states.values():
            row = {"step": state.step, "model": state.label}
            row.update(state.descriptor.to_dict())
            row.update({k: v for k, v in state.diagnostics.to_dict().items() if k != "model"})
            rows.append(row)
        return pd.DataFrame(rows).set_index("step")


def pearson_residuals(results) -> pd.Series:
    """Residuals scaled by the square root of the prior weights; raw residuals for unweighted OLS."""
    weights = getattr(results.model, "weights", 1.0)
    return results.resid * np.sqrt(weights)


def qq_correlation(values) -> float:
    """Correlation of the normal probability plot; 1 means a perfectly straight QQ plot."""
    (_, _), (_, _, r) = stats.probplot(np.asarray(values, dtype=float), dist="norm")
    return float(r)


def evaluate_diagnostics(fitted: FittedModel, data: pd.DataFrame, threshold: float = 0.2,
                         outcome: str = "benefits", age_column: str = "age") -> Diagnostics:
    """
    Residual diagnostics for a fitted model.

    Args:
        fitted: Model to check
        data: Model data, used to profile the flagged observations
        threshold: Absolute Pearson residual above which an observation is flagged
        outcome: Untransformed outcome column
        age_column: Age column

    Returns:
        Diagnostics: Studentized residuals, normality and heteroscedasticity
        tests, and the flagged observations
    """
    results = fitted.results
    influence = results.get_influence()
    studentized = pd.Series(influence.resid_studentized_internal, index=results.resid.index)
    pearson = pearson_residuals(results)

    jb_stat, jb_pval, _, _ = jarque_bera(results.resid)
    bp_stat, bp_pval, _, _ = het_breuschpagan(results.resid, results.model.exog)

    flagged = pearson.index[pearson.abs() > threshold]
    rows = data.loc[flagged]
    rest = data.drop(index=flagged)
    profile = {
        "n_flagged": int(len(flagged)),
        "share_flagged": float(len(flagged) / len(pearson)) if len(pearson) else np.nan,
        "share_nonzero_outcome": float((rows[outcome] != 0).mean()) if len(rows) else np.nan,
        "mean_outcome_flagged": float(rows[outcome].mean()) if len(rows) else np.nan,
        "mean_age_flagged": float(rows[age_column].mean()) if len(rows) else np.nan,
        "mean_age_other": float(rest[age_column].mean()) if len(rest) else np.nan,
    }

    name = fitted.descriptor.name
    if jb_pval < 0.05:
        logger.warning(f"{name}: residuals may not be normally distributed (Jarque-Bera p-value: {jb_pval:.4g})")
    else:
        logger.info(f"{name}: residuals appear to be normally distributed (Jarque-Bera p-value: {jb_pval:.4g})")
    if bp_pval < 0.05:
        logger.warning(f"{name}: heteroscedasticity detected (Breusch-Pagan p-value: {bp_pval:.4g})")
    logger.info(f"{name}: {len(flagged)} observations with |Pearson residual| > {threshold}")

    return Diagnostics(
        model=name,
        studentized=studentized,
        fitted_values=results.fittedvalues,
        pearson_residuals=pearson,
        qq_correlation=qq_correlation(studentized),
        jarque_bera={"statistic": float(jb_stat), "p_value": float(jb_pval)},
        breusch_pagan={"statistic": float(bp_stat), "p_value": float(bp_pval)},
        flagged_index=flagged,
        flagged_profile=profile,
        threshold=threshold,
    )


def log_model(fitted: FittedModel):
    d = fitted.descriptor
    logger.info(f"{d.name}: {d.formula}")
    logger.info(f"  R-squared: {d.r_squared:.4f}, Adjusted R-squared: {d.adj_r_squared:.4f}, AIC: {d.aic:.2f}")


def accept_terminal(terminal: ModelState, predecessors: List[ModelState], tolerance: float = 0.005) -> bool:
    """
    The terminal model is accepted when its QQ correlation is no worse than
    that of any predecessor on the same outcome scale.
    """
    comparable = [
        state for state in predecessors
        if same_outcome_scale(state.descriptor, terminal.descriptor)
    ]
    if not comparable:
        return True
    best = max(state.diagnostics.qq_correlation for state in comparable)
    return terminal.diagnostics.qq_correlation >= best - tolerance


def run_model_sequence(data: pd.DataFrame, config: dict) -> ModelSequence:
    """
    Fit the full model sequence on the cleaned data.

    Args:
        data: Cleaned survey data
        config: Analysis configuration

    Returns:
        ModelSequence: Every fitted state with its diagnostics, the tests
        between them and the limitations found
    """
    log_section("Regression Modeling", logger)
    variables = config["variables"]
    modeling = config["modeling"]
    alpha = config["tests"]["alpha"]
    bc = modeling["boxcox"]
    threshold = modeling["residual_threshold"]
    age_column = config["cleaning"].get("age_column", "age")

    outcome = variables["outcome"]
    continuous = list(variables["continuous_predictors"])
    categorical = list(variables["categorical_predictors"])
    predictors = continuous + categorical
    limitations = []
    states = {}

    def add_state(key, fitted, model_data, note=""):
        log_model(fitted)
        diagnostics = evaluate_diagnostics(fitted, model_data, threshold, outcome, age_column)
        states[key] = ModelState(key, fitted, diagnostics, note)
        if fitted.descriptor.rank_deficient:
            limitations.append(f"Model {STATE_LABELS[key][0]} ({fitted.name}) has a rank deficient design matrix.")
        return states[key]

    # 1. Baseline
    add_state("baseline", fit_model(data, outcome, main_effects(predictors), "baseline", order=predictors), data)

    # 2. log(1 + outcome)
    log_outcome = f"{outcome}_log1p"
    model_data = data.assign(**{log_outcome: log1p_transform(data[outcome])})
    add_state("log1p", fit_model(model_data, log_outcome, main_effects(predictors), "log1p",
                                 transform="log1p", order=predictors), model_data)

    # 3. Box-Cox outcome
    outcome_lambda = estimate_boxcox_lambda(model_data[outcome], outcome, bc["lambda_min"], bc["lambda_max"], bc["step"])
    if outcome_lambda.at_boundary:
        limitations.append(
            f"The Box-Cox lambda for {outcome} ({outcome_lambda.lambda_:.2f}) lies on the edge of the "
            f"search range [{bc['lambda_min']}, {bc['lambda_max']}]."
        )
    bc_outcome = f"{outcome}_boxcox"
    model_data = model_data.assign(**{bc_outcome: boxcox_transform(model_data[outcome], outcome_lambda.lambda_)})
    boxcox_state = add_state(
        "boxcox",
        fit_model(model_data, bc_outcome, main_effects(predictors), "boxcox",
                  transform="boxcox", lambda_=outcome_lambda.lambda_, order=predictors),
        model_data,
    )

    # 5. Box-Cox continuous predictors
    predictor_lambdas = {}
    transformed = {}
    for var in continuous:
        estimate = estimate_boxcox_lambda(model_data[var], var, bc["lambda_min"], bc["lambda_max"], bc["step"])
        predictor_lambdas[var] = estimate
        transformed[f"{var}_boxcox"] = boxcox_transform(model_data[var], estimate.lambda_)
        if estimate.at_boundary:
            limitations.append(
                f"The Box-Cox lambda for {var} ({estimate.lambda_:.2f}) lies on the edge of the search range."
            )
    model_data = model_data.assign(**transformed)
    transformed_predictors = [f"{var}_boxcox" for var in continuous] + categorical
    predictor_state = add_state(
        "predictor_boxcox",
        fit_model(model_data, bc_outcome, main_effects(transformed_predictors), "predictor_boxcox",
                  transform="boxcox", lambda_=outcome_lambda.lambda_, order=transformed_predictors),
        model_data,
    )
    chosen = prefer_by_adjusted_r2(predictor_state.descriptor, boxcox_state.descriptor, modeling["materiality"])
    predictor_transform_accepted = chosen is predictor_state.descriptor
    gain = predictor_state.descriptor.adj_r_squared - boxcox_state.descriptor.adj_r_squared
    if predictor_transform_accepted:
        predictor_state.note = f"Accepted: adjusted R-squared improves by {gain:.4f}."
        retained, retained_state = transformed_predictors, predictor_state
    else:
        predictor_state.note = (
            f"Rejected: adjusted R-squared changes by {gain:.4f}, not more than {modeling['materiality']}; "
            f"model 3 is retained."
        )
        retained, retained_state = predictors, boxcox_state
    logger.info(predictor_state.note)

    base_terms = main_effects(retained)
    full_terms = base_terms + pairwise_interactions(retained)
    fit_kwargs = dict(transform="boxcox", lambda_=outcome_lambda.lambda_, order=retained)

    # 6. All two-way interactions
    full_state = add_state("full_interaction",
                           fit_model(model_data, bc_outcome, full_terms, "full_interaction", **fit_kwargs),
                           model_data)

    # 7. Significant interactions only
    selected, anova_table = significant_interactions(full_state.fitted, alpha, retained)
    reduced_state = add_state(
        "reduced_interaction",
        fit_model(model_data, bc_outcome, base_terms + selected, "reduced_interaction", **fit_kwargs),
        model_data,
        note="Interactions kept: " + (", ".join(term_label(t) for t in selected) or "none"),
    )

    # 8. Stepwise selection
    stepwise = {}
    for direction in ("both", "forward", "backward"):
        stepwise[direction] = stepwise_aic(
            model_data, bc_outcome, lower=base_terms, upper=full_terms,
            direction=direction, name=f"stepwise_{direction}", **fit_kwargs,
        )
    convergence = verify_stepwise_convergence(stepwise, reduced_state.descriptor.terms)
    final = stepwise["both"].final
    final = FittedModel(replace(final.descriptor, name="stepwise"), final.results)
    terminal = add_state("stepwise", final, model_data)

    if not convergence.converged:
        limitations.append("Forward, backward and bidirectional stepwise selection ended at different models.")
    elif not convergence.matches_reference:
        limitations.append("The stepwise model differs from the model built from the Type-II ANOVA.")

    # Transitions between nested models
    f_tests = []
    for restricted, full in [(retained_state, reduced_state), (reduced_state, full_state),
                             (retained_state, full_state), (terminal, full_state)]:
        if not is_nested(restricted.descriptor, full.descriptor):
            continue
        try:
            f_tests.append(nested_f_test(restricted.descriptor, full.descriptor))
        except ValueError as e:
            limitations.append(f"No F-test between {restricted.fitted.name} and {full.fitted.name}: {e}.")

    aic_comparisons = []
    for a, b in [(retained_state, full_state), (retained_state, reduced_state),
                 (reduced_state, full_state), (terminal, reduced_state)]:
        if a.descriptor.terms != b.descriptor.terms:
            aic_comparisons.append(compare_aic(a.descriptor, b.descriptor))

    predecessors = [state for key, state in states.items() if key != "stepwise"]
    terminal_accepted = accept_terminal(terminal, predecessors, modeling["normality_tolerance"])
    if terminal_accepted:
        terminal.note = "Accepted: residual normality is no worse than its predecessors."
    else:
        terminal.note = "Not accepted: residual normality is worse than a predecessor."
        limitations.append("The stepwise model's QQ plot is less straight than an earlier model's.")

    diag = terminal.diagnostics
    if diag.jarque_bera["p_value"] < alpha:
        limitations.append(
            f"Residuals of the final model are not normal (Jarque-Bera p = {diag.jarque_bera['p_value']:.3g})."
        )
    if diag.breusch_pagan["p_value"] < alpha:
        limitations.append(
            f"Residual variance of the final model is not constant "
            f"(Breusch-Pagan p = {diag.breusch_pagan['p_value']:.3g})."
        )

    for limitation in limitations:
        logger.warning(limitation)

    return ModelSequence(
        data=model_data,
        states=states,
        outcome_lambda=outcome_lambda,
        predictor_lambdas=predictor_lambdas,
        predictor_transform_accepted=predictor_transform_accepted,
        anova_table=anova_table,
        f_tests=f_tests,
        aic_comparisons=aic_comparisons,
        stepwise=stepwise,
        convergence=convergence,
        terminal_accepted=terminal_accepted,
        limitations=limitations,
    )
