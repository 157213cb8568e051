"""
Tests for the Bartlett-gated group comparisons.

Tests verify that:
    - Unequal variances lead to Welch procedures with fractional df
    - Equal variances lead to the pooled t-test or classical ANOVA
    - Groups with fewer than two observations are excluded and reported
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from silc_benefits.analysis.hypothesis_tests import (
    ONEWAY_ANOVA,
    POOLED_T,
    WELCH_ANOVA,
    WELCH_T,
    compare_means,
    group_samples,
    select_mean_test,
    variance_homogeneity_test,
    welch_satterthwaite_df,
)


def _frame(samples):
    return pd.DataFrame({
        "group": np.concatenate([[name] * len(values) for name, values in samples.items()]),
        "y": np.concatenate(list(samples.values())),
    })


def test_unequal_variances_use_welch_t(rng):
    df = _frame({"a": rng.normal(0, 1, 200), "b": rng.normal(0, 5, 200)})
    result = compare_means(df, "y", "group")

    assert result.bartlett.p_value < 0.05
    assert not result.bartlett.equal_variances
    assert result.method == WELCH_T
    assert result.df_denom < 398
    assert result.df_denom != pytest.approx(round(result.df_denom))

    a = df.loc[df["group"] == "a", "y"]
    b = df.loc[df["group"] == "b", "y"]
    expected = stats.ttest_ind(a, b, equal_var=False)
    assert result.statistic == pytest.approx(expected.statistic)
    assert result.p_value == pytest.approx(expected.pvalue)


def test_equal_variances_use_pooled_t():
    base = np.arange(10, dtype=float)
    df = _frame({"a": base, "b": base + 5.0})
    result = compare_means(df, "y", "group")

    assert result.bartlett.equal_variances
    assert result.method == POOLED_T
    assert result.df_denom == 18
    assert result.significant


def test_k_groups_unequal_variances_use_welch_anova(rng):
    df = _frame({"a": rng.normal(0, 1, 60), "b": rng.normal(1, 5, 40), "c": rng.normal(2, 10, 50)})
    result = compare_means(df, "y", "group")

    assert result.method == WELCH_ANOVA
    assert result.df_num == pytest.approx(2)
    assert result.df_denom != pytest.approx(round(result.df_denom))
    assert result.df_denom < 147


def test_k_groups_equal_variances_use_oneway_anova():
    base = np.arange(10, dtype=float)
    df = _frame({"a": base, "b": base + 1.0, "c": base + 2.0})
    result = compare_means(df, "y", "group")

    assert result.method == ONEWAY_ANOVA
    assert (result.df_num, result.df_denom) == (2, 27)
    expected = stats.f_oneway(base, base + 1.0, base + 2.0)
    assert result.statistic == pytest.approx(expected.statistic)


def test_singleton_group_is_excluded():
    base = np.arange(10, dtype=float)
    df = _frame({"a": base, "b": base + 3.0, "c": np.array([100.0])})
    result = compare_means(df, "y", "group")

    assert result.excluded_groups == {"c": 1}
    assert set(result.group_sizes) == {"a", "b"}
    assert result.method == POOLED_T
    assert "c (n=1)" in result.limitation


def test_zero_variance_group_reported():
    df = _frame({"a": np.array([1.0, 1.0, 1.0]), "b": np.array([1.0, 2.0, 3.0])})
    result = compare_means(df, "y", "group")

    assert result.method is not None
    assert "zero variance in y: a;" in result.limitation


def test_fewer_than_two_groups_reports_limitation():
    df = _frame({"a": np.arange(5, dtype=float), "b": np.array([1.0])})
    result = compare_means(df, "y", "group")

    assert result.method is None
    assert result.bartlett is None
    assert not result.significant
    assert result.limitation
    assert np.isnan(result.p_value)


def test_group_samples_keeps_empty_categories_out():
    df = pd.DataFrame({
        "group": pd.Categorical(["a", "a", "b", "b"], categories=["a", "b", "c"]),
        "y": [1.0, 2.0, 3.0, 5.0],
    })
    samples, excluded = group_samples(df, "y", "group")
    assert set(samples) == {"a", "b"}
    assert excluded == {"c": 0}


def test_select_mean_test_rule():
    assert select_mean_test(2, True) == POOLED_T
    assert select_mean_test(2, False) == WELCH_T
    assert select_mean_test(4, True) == ONEWAY_ANOVA
    assert select_mean_test(4, False) == WELCH_ANOVA
    with pytest.raises(ValueError):
        select_mean_test(1, True)


def test_bartlett_rejects_small_groups():
    with pytest.raises(ValueError):
        variance_homogeneity_test({"a": np.array([1.0, 2.0]), "b": np.array([3.0])})
    with pytest.raises(ValueError):
        variance_homogeneity_test({"a": np.array([1.0, 2.0])})


def test_welch_df_between_bounds(rng):
    a = rng.normal(0, 1, 12)
    b = rng.normal(0, 3, 30)
    dof = welch_satterthwaite_df(a, b)
    assert min(len(a), len(b)) - 1 <= dof <= len(a) + len(b) - 2
