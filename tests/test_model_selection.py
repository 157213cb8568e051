"""
Tests for model descriptors and the comparisons between them.
"""

from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from silc_benefits.analysis.model_selection import (
    FittedModel,
    StepwiseResult,
    _addable,
    _droppable,
    build_formula,
    canonical_terms,
    compare_aic,
    fit_model,
    is_nested,
    main_effects,
    nested_f_test,
    pairwise_interactions,
    prefer_by_adjusted_r2,
    significant_interactions,
    stepwise_aic,
    stepwise_criterion,
    verify_stepwise_convergence,
)

ORDER = ["x1", "x2"]
MAIN = (("x1",), ("x2",))
FULL = (("x1",), ("x2",), ("x1", "x2"))


def test_build_formula():
    assert build_formula("y", FULL) == "y ~ x1 + x2 + x1:x2"
    assert build_formula("y", ()) == "y ~ 1"


def test_canonical_terms_orders_names_and_terms():
    terms = canonical_terms(["x2:x1", ("x2",), ("x1",)], ORDER)
    assert terms == FULL


def test_pairwise_interactions():
    assert pairwise_interactions(["a", "b", "c"]) == (("a", "b"), ("a", "c"), ("b", "c"))


def test_fit_model_descriptor(interaction_data):
    fitted = fit_model(interaction_data, "y", FULL, "full", order=ORDER)
    d = fitted.descriptor

    assert d.nobs == 300
    assert d.n_params == 4
    assert d.rss == pytest.approx(float(np.sum(fitted.results.resid ** 2)))
    assert d.step_aic == pytest.approx(300 * np.log(d.rss / 300) + 2 * 4)
    assert not d.rank_deficient
    assert d.formula == "y ~ x1 + x2 + x1:x2"


def test_rank_deficiency_detected(interaction_data):
    data = interaction_data.assign(x3=2.0 * interaction_data["x1"])
    fitted = fit_model(data, "y", [("x1",), ("x3",)], "collinear")
    assert fitted.descriptor.rank_deficient


def test_nested_f_test_matches_statsmodels(interaction_data):
    restricted = fit_model(interaction_data, "y", MAIN, "main", order=ORDER)
    full = fit_model(interaction_data, "y", FULL, "full", order=ORDER)

    assert is_nested(restricted.descriptor, full.descriptor)
    assert not is_nested(full.descriptor, restricted.descriptor)

    result = nested_f_test(restricted.descriptor, full.descriptor)
    f_stat, p_value, df_diff = full.results.compare_f_test(restricted.results)
    assert result.f_statistic == pytest.approx(f_stat)
    assert result.p_value == pytest.approx(p_value)
    assert result.df_num == df_diff
    assert result.significant(0.05)

    with pytest.raises(ValueError):
        nested_f_test(full.descriptor, restricted.descriptor)


def test_nested_f_test_degenerate_fits(interaction_data):
    restricted = fit_model(interaction_data, "y", MAIN, "main", order=ORDER).descriptor
    full = fit_model(interaction_data, "y", FULL, "full", order=ORDER).descriptor

    worse = nested_f_test(restricted, replace(full, rss=restricted.rss + 1.0))
    assert worse.f_statistic == 0.0
    assert worse.p_value == pytest.approx(1.0)

    perfect = nested_f_test(restricted, replace(full, rss=0.0))
    assert perfect.f_statistic == np.inf
    assert perfect.p_value == 0.0

    assert nested_f_test(replace(restricted, rss=0.0), replace(full, rss=0.0)).f_statistic == 0.0

    with pytest.raises(ValueError):
        nested_f_test(replace(restricted, df_resid=1.0), replace(full, df_resid=0.0))


def test_comparisons_require_same_outcome_scale(interaction_data):
    a = fit_model(interaction_data, "y", MAIN, "a", order=ORDER).descriptor
    b = replace(fit_model(interaction_data, "y", FULL, "b", order=ORDER).descriptor, transform="boxcox", lambda_=0.5)

    assert not is_nested(a, b)
    with pytest.raises(ValueError):
        compare_aic(a, b)
    with pytest.raises(ValueError):
        nested_f_test(a, b)


def test_compare_aic_prefers_lower(interaction_data):
    a = fit_model(interaction_data, "y", MAIN, "main", order=ORDER).descriptor
    b = fit_model(interaction_data, "y", FULL, "full", order=ORDER).descriptor
    comparison = compare_aic(a, b)
    assert comparison["preferred"] == "full"
    assert comparison["difference"] == pytest.approx(a.aic - b.aic)


def test_prefer_by_adjusted_r2(interaction_data):
    base = fit_model(interaction_data, "y", MAIN, "incumbent", order=ORDER).descriptor
    bigger = replace(base, name="candidate", n_params=base.n_params + 1)

    assert prefer_by_adjusted_r2(replace(bigger, adj_r_squared=base.adj_r_squared + 0.02), base).name == "candidate"
    assert prefer_by_adjusted_r2(replace(bigger, adj_r_squared=base.adj_r_squared + 0.005), base).name == "incumbent"

    smaller = replace(base, name="candidate", n_params=base.n_params - 1, adj_r_squared=base.adj_r_squared - 0.005)
    assert prefer_by_adjusted_r2(smaller, base).name == "candidate"
    assert prefer_by_adjusted_r2(replace(base, name="candidate"), base).name == "incumbent"


def test_significant_interactions_finds_product_term(interaction_data):
    full = fit_model(interaction_data, "y", FULL, "full", order=ORDER)
    selected, table = significant_interactions(full, 0.05, ORDER)
    assert selected == (("x1", "x2"),)
    assert "Residual" in table.index


def test_marginality_of_candidate_moves():
    assert _droppable(FULL, lower=()) == [("x1", "x2")]
    assert _droppable(MAIN, lower=()) == [("x1",), ("x2",)]
    assert _addable((("x1",),), FULL) == [("x2",)]
    assert _addable(MAIN, FULL) == [("x1", "x2")]


@pytest.mark.parametrize("direction", ["both", "forward", "backward"])
def test_stepwise_keeps_strong_interaction(interaction_data, direction):
    result = stepwise_aic(interaction_data, "y", lower=MAIN, upper=FULL, direction=direction, order=ORDER)
    assert set(result.final.descriptor.terms) == set(FULL)
    assert result.path[0].action == "start"


def test_stepwise_directions_converge(interaction_data):
    results = {
        direction: stepwise_aic(interaction_data, "y", lower=MAIN, upper=FULL, direction=direction, order=ORDER)
        for direction in ["both", "forward", "backward"]
    }
    check = verify_stepwise_convergence(results, FULL)
    assert check.converged
    assert check.matches_reference
    assert results["forward"].path[-1].action == "+"


def test_stepwise_directions_agree_without_interaction(rng):
    n = 400
    x1 = rng.normal(0, 1, n)
    x2 = rng.normal(0, 1, n)
    data = pd.DataFrame({"y": 1 + 2 * x1 + 3 * x2 + rng.normal(0, 1, n), "x1": x1, "x2": x2})
    backward = stepwise_aic(data, "y", lower=MAIN, upper=FULL, direction="backward", order=ORDER)
    forward = stepwise_aic(data, "y", lower=MAIN, upper=FULL, direction="forward", order=ORDER)
    assert set(backward.final.descriptor.terms) == set(forward.final.descriptor.terms)


def test_stepwise_rejects_bad_arguments(interaction_data):
    with pytest.raises(ValueError):
        stepwise_aic(interaction_data, "y", lower=MAIN, upper=FULL, direction="sideways")
    with pytest.raises(ValueError):
        stepwise_aic(interaction_data, "y", lower=FULL, upper=MAIN)
    with pytest.raises(ValueError):
        stepwise_aic(interaction_data, "y", lower=MAIN, upper=FULL, start=(("x1",),))


def test_convergence_check_reports_divergence(interaction_data):
    main = fit_model(interaction_data, "y", MAIN, "main", order=ORDER)
    full = fit_model(interaction_data, "y", FULL, "full", order=ORDER)
    check = verify_stepwise_convergence(
        {"both": StepwiseResult("both", full), "forward": StepwiseResult("forward", main)}, FULL
    )
    assert not check.converged
    assert not check.matches_reference

    check = verify_stepwise_convergence(
        {"both": StepwiseResult("both", main), "forward": StepwiseResult("forward", FittedModel(main.descriptor, None))},
        FULL,
    )
    assert check.converged
    assert not check.matches_reference


def test_stepwise_criterion():
    assert stepwise_criterion(50.0, 100, 3) == pytest.approx(100 * np.log(0.5) + 6)
    assert main_effects(["a", "b"]) == (("a",), ("b",))
