"""
Tests for the regression model sequence and its diagnostics.
"""

from types import SimpleNamespace

import numpy as np
import pytest

from silc_benefits.analysis.model_selection import fit_model, same_outcome_scale
from silc_benefits.analysis.regression_models import (
    STATE_LABELS,
    accept_terminal,
    evaluate_diagnostics,
    pearson_residuals,
    qq_correlation,
    run_model_sequence,
)
from silc_benefits.config import load_config


@pytest.fixture(scope="module")
def sequence(cleaned, config):
    return run_model_sequence(cleaned, config)


def _state(descriptor, qq):
    return SimpleNamespace(descriptor=descriptor, diagnostics=SimpleNamespace(qq_correlation=qq))


def test_pearson_residuals_are_raw_residuals_for_ols(interaction_data):
    fitted = fit_model(interaction_data, "y", [("x1",), ("x2",)], "main")
    np.testing.assert_allclose(pearson_residuals(fitted.results), fitted.results.resid)


def test_qq_correlation_separates_normal_from_skewed(rng):
    assert qq_correlation(rng.normal(0, 1, 500)) > 0.99
    assert qq_correlation(rng.exponential(1.0, 500)) < qq_correlation(rng.normal(0, 1, 500))


def test_flagged_observations_use_threshold(interaction_data):
    fitted = fit_model(interaction_data, "y", [("x1",), ("x2",)], "main")
    data = interaction_data.assign(benefits=interaction_data["y"], age=interaction_data["x1"])
    diagnostics = evaluate_diagnostics(fitted, data, threshold=1.0)

    expected = int((fitted.results.resid.abs() > 1.0).sum())
    assert diagnostics.flagged_profile["n_flagged"] == expected
    assert len(diagnostics.flagged_index) == expected
    assert diagnostics.flagged_profile["share_flagged"] == pytest.approx(expected / 300)
    assert len(diagnostics.studentized) == 300


def test_accept_terminal_compares_same_scale_only(interaction_data):
    d = fit_model(interaction_data, "y", [("x1",), ("x2",)], "a", transform="boxcox", lambda_=0.3).descriptor
    other_scale = fit_model(interaction_data, "y", [("x1",)], "b").descriptor
    terminal = _state(d, 0.980)

    assert accept_terminal(terminal, [_state(d, 0.984)], tolerance=0.005)
    assert not accept_terminal(terminal, [_state(d, 0.990)], tolerance=0.005)
    assert accept_terminal(terminal, [_state(other_scale, 0.999)], tolerance=0.005)


def test_sequence_states(sequence):
    assert list(sequence.states) == list(STATE_LABELS)
    assert [state.step for state in sequence.states.values()] == [1, 2, 3, 5, 6, 7, 8]
    for state in sequence.states.values():
        assert state.descriptor.nobs == 2526
        assert -1.0 <= state.diagnostics.qq_correlation <= 1.0


def test_outcome_scales(sequence):
    states = sequence.states
    assert states["baseline"].descriptor.transform == "identity"
    assert states["log1p"].descriptor.transform == "log1p"
    lam = sequence.outcome_lambda.lambda_
    assert -2.0 <= lam <= 2.0
    for key in ["boxcox", "predictor_boxcox", "full_interaction", "reduced_interaction", "stepwise"]:
        assert states[key].descriptor.lambda_ == lam
        assert same_outcome_scale(states[key].descriptor, states["boxcox"].descriptor)


def test_interaction_models_are_nested(sequence):
    full = set(sequence.states["full_interaction"].descriptor.terms)
    reduced = set(sequence.states["reduced_interaction"].descriptor.terms)
    terminal = set(sequence.terminal.descriptor.terms)
    assert len(sequence.states["full_interaction"].descriptor.interaction_terms) == 6
    assert reduced <= full
    assert terminal <= full
    assert sequence.terminal.descriptor.terms == sequence.stepwise["both"].final.descriptor.terms


def test_predictor_transform_decision(sequence, config):
    gain = (sequence.states["predictor_boxcox"].descriptor.adj_r_squared
            - sequence.states["boxcox"].descriptor.adj_r_squared)
    full_terms = {name for term in sequence.states["full_interaction"].descriptor.terms for name in term}
    if sequence.predictor_transform_accepted:
        assert "age_boxcox" in full_terms
    else:
        assert gain <= config["modeling"]["materiality"]
        assert "age" in full_terms
    assert set(sequence.predictor_lambdas) == {"age", "hsize"}


def test_transition_tests_recorded(sequence):
    assert sequence.f_tests
    for test in sequence.f_tests:
        assert 0.0 <= test.p_value <= 1.0
        assert test.df_num > 0
    for comparison in sequence.aic_comparisons:
        assert comparison["preferred"] in (comparison["model_a"], comparison["model_b"])


def test_convergence_and_limitations_reported(sequence):
    assert set(sequence.stepwise) == {"both", "forward", "backward"}
    assert isinstance(sequence.convergence.converged, bool)
    if not sequence.convergence.converged:
        assert any("stepwise" in item.lower() for item in sequence.limitations)
    assert all(isinstance(item, str) for item in sequence.limitations)


def test_summary_table(sequence):
    table = sequence.summary_table()
    assert list(table.index) == [1, 2, 3, 5, 6, 7, 8]
    assert {"adj_r_squared", "aic", "qq_correlation", "n_flagged"} <= set(table.columns)


def test_flagged_profile_uses_age_column_whatever_predictor_order(cleaned):
    config = load_config(overrides={"variables": {"continuous_predictors": ["hsize", "age"]}})
    reordered = run_model_sequence(cleaned, config)
    profile = reordered.states["baseline"].diagnostics.flagged_profile
    assert profile["n_flagged"] > 0
    assert profile["mean_age_flagged"] >= 16


def test_narrow_boxcox_range_reports_edge_lambda(cleaned):
    config = load_config(overrides={"modeling": {"boxcox": {"lambda_min": 0.5, "lambda_max": 1.0, "step": 0.01}}})
    narrow = run_model_sequence(cleaned, config)
    assert narrow.outcome_lambda.at_boundary
    assert narrow.outcome_lambda.lambda_ == pytest.approx(0.5)
    assert any("edge of the search range" in item for item in narrow.limitations)


def test_collinear_predictor_reports_rank_deficiency(cleaned):
    data = cleaned.assign(age2=2 * cleaned["age"])
    config = load_config(overrides={"variables": {"continuous_predictors": ["age", "hsize", "age2"]}})
    collinear = run_model_sequence(data, config)
    assert collinear.states["baseline"].descriptor.rank_deficient
    assert any("rank deficient" in item for item in collinear.limitations)
