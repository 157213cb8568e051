"""
Report sections, one function per analysis stage.

Each function appends narrative, tables and figure links to a
ReportGenerator. Numbers in the narrative are taken from the stage results.
"""

import pandas as pd

from silc_benefits.analysis.descriptive_statistics import summary_table
from silc_benefits.analysis.hypothesis_tests import comparison_table
from silc_benefits.analysis.model_selection import descriptor_table, term_label

STAGE_TITLES = {
    "raw": "Raw table",
    "regions": "After the region filter",
    "selected": "After column selection",
    "cleaned": "After removing ineligible rows",
}


def _fmt_p(p: float) -> str:
    return "< 0.001" if p < 0.001 else f"{p:.3f}"


def write_cleaning_section(report, cleaning, config):
    data_cfg = config["data"]
    min_age = config["cleaning"]["min_age"]
    report.heading("1. Data and cleaning")
    report.text(
        f"The survey table is restricted to the regions {', '.join(data_cfg['regions'])} and to the columns "
        f"{', '.join(data_cfg['columns'])}. The benefits column `py090n` is renamed to `benefits`. "
        f"Household size arrives as a leveled variable; it is converted through the printed label of each "
        f"level, not through the level position."
    )
    if cleaning.missing_regions:
        report.text(f"**Configured regions missing from the data:** {', '.join(cleaning.missing_regions)}")
    report.table(pd.DataFrame({"rows": cleaning.stage_rows}).rename_axis("stage"))
    if cleaning.hsize_lookup:
        lookup = pd.DataFrame({
            "label": list(cleaning.hsize_lookup),
            "level_position": range(len(cleaning.hsize_lookup)),
            "household_size": list(cleaning.hsize_lookup.values()),
        })
        report.table(lookup, index=False)

    audit = cleaning.audit
    report.heading("Missing values", 3)
    report.text(
        f"{len(audit.missing_index)} rows have at least one missing field and {len(audit.underage_index)} rows "
        f"belong to respondents younger than {min_age}. The two sets are "
        f"{'identical' if audit.explained else 'different'}."
    )
    report.text(
        f"The missing fields are the personal-questionnaire variables, which are not collected below age "
        f"{min_age}. Dropping these rows is therefore a restriction to the eligible population rather than "
        f"the removal of missing data; it would not be justified if the missingness had any other source."
    )

    report.heading("Audit summaries", 3)
    for stage, table in cleaning.stage_summaries.items():
        report.text(f"**{STAGE_TITLES.get(stage, stage)}:**")
        report.table(table)


def write_univariate_section(report, summaries, figures, config):
    outcome = config["variables"]["outcome"]
    report.heading("2. Univariate summaries")

    numeric = {var: summaries[var] for var in config["variables"]["continuous_predictors"]}
    numeric[outcome] = summaries[outcome]
    numeric[f"{outcome} (non-zero)"] = summaries[f"{outcome}_nonzero"]
    report.table(summary_table(numeric))

    share = summaries[f"{outcome}_zero_share"]
    report.text(
        f"{share['n_zero']} of {share['n']} respondents ({share['share_zero']:.1%}) receive no unemployment "
        f"benefit. Benefit amounts are therefore described on the {share['n_nonzero']} non-zero values."
    )
    for var in config["variables"]["categorical_predictors"]:
        report.text(f"**{config['variables']['labels'].get(var, var)}**")
        report.table(summaries[var])
    report.text("**Household size**")
    report.table(summaries["hsize_counts"])

    for caption, path in figures.items():
        report.figure(path, caption)


def write_bivariate_section(report, bivariate, figures, config):
    outcome = config["variables"]["outcome"]
    alpha = config["tests"]["alpha"]
    report.heading("3. Bivariate analysis")
    report.text(
        f"Group differences in non-zero {outcome} are tested after Bartlett's test for equal variances "
        f"(alpha = {alpha}). With unequal variances the Welch t-test or Welch ANOVA is used, otherwise the "
        f"pooled t-test or classical one-way ANOVA. Groups with fewer than two observations are excluded."
    )
    report.table(comparison_table(list(bivariate.comparisons.values())).set_index("group"))

    lines = []
    for group, comparison in bivariate.comparisons.items():
        if comparison.method is None:
            lines.append(f"{group}: no test performed. {comparison.limitation}")
            continue
        verdict = "differ significantly" if comparison.significant else "do not differ significantly"
        lines.append(
            f"{group}: {comparison.method}, statistic = {comparison.statistic:.3f}, "
            f"df = ({comparison.df_num:.2f}, {comparison.df_denom:.2f}), p = {_fmt_p(comparison.p_value)}; "
            f"the group means {verdict}."
        )
    report.bullets(lines)

    for group, table in bivariate.group_summaries.items():
        report.text(f"**Non-zero {outcome} by {group}**")
        report.table(table)
        report.text(f"**Share receiving benefits by {group}**")
        report.table(bivariate.uptake[group])

    for var, trend in bivariate.trends.items():
        report.text(
            f"Trend of {outcome} on {var}: slope = {trend.slope:.2f} per unit, R² = {trend.r_squared:.3f}, "
            f"p = {_fmt_p(trend.p_value)} (n = {trend.nobs})."
        )

    report.heading("Predictor pairs", 3)
    for name, table in bivariate.predictor_summaries.items():
        report.text(f"**{name}**")
        report.table(table)
    for name, table in bivariate.crosstabs.items():
        report.text(f"**{name}**")
        report.table(table)

    for caption, path in figures.items():
        report.figure(path, caption)


def write_interaction_section(report, patterns, figures):
    report.heading("4. Joint patterns")
    for pattern in patterns:
        report.heading(pattern.title, 3)
        report.table(pattern.table)
        report.bullets(pattern.narrative)
        if pattern.apparent:
            report.text("*An interaction is visually apparent; it is examined in the regression models.*")
    for caption, path in figures.items():
        report.figure(path, caption)


def write_regression_section(report, sequence, figures, config):
    modeling = config["modeling"]
    alpha = config["tests"]["alpha"]
    report.heading("5. Regression models")

    table = sequence.summary_table()[[
        "model", "formula", "n_params", "r_squared", "adj_r_squared", "aic",
        "qq_correlation", "jarque_bera_p", "breusch_pagan_p", "n_flagged",
    ]]
    report.table(table)
    report.text(
        "AIC values are only comparable between models with the same outcome scale (models 3 to 8 share "
        "the Box-Cox outcome)."
    )

    est = sequence.outcome_lambda
    report.heading("Box-Cox transformation", 3)
    report.text(
        f"The Box-Cox parameter for benefits + 1 is λ = {est.lambda_:.2f} "
        f"(search range [{est.lambda_min}, {est.lambda_max}])"
        + (", on the boundary of the search range." if est.at_boundary else ".")
    )
    report.bullets(
        f"{var}: λ = {e.lambda_:.2f}" + (" (boundary)" if e.at_boundary else "")
        for var, e in sequence.predictor_lambdas.items()
    )
    report.text(sequence.states["predictor_boxcox"].note)

    report.heading("Interaction terms", 3)
    report.text("Type-II ANOVA of the full two-way interaction model:")
    report.table(sequence.anova_table)
    report.text(sequence.states["reduced_interaction"].note)

    report.heading("Nested model tests", 3)
    report.table(pd.DataFrame([vars(t) for t in sequence.f_tests]), index=False)
    report.bullets(
        f"{t.restricted} vs {t.full}: F = {t.f_statistic:.3f}, p = {_fmt_p(t.p_value)} - "
        + ("the extra terms are significant." if t.significant(alpha) else "the extra terms are not significant.")
        for t in sequence.f_tests
    )
    report.table(pd.DataFrame(sequence.aic_comparisons), index=False)

    report.heading("Stepwise selection", 3)
    for direction, result in sequence.stepwise.items():
        steps = [f"{r.action}{term_label(r.term)}" for r in result.path if r.term is not None]
        report.text(
            f"**{direction}:** {result.final.descriptor.formula} "
            f"({len(steps)} step(s): {', '.join(steps) or 'none'})"
        )
    conv = sequence.convergence
    report.text(
        f"All directions reach the same model: **{'yes' if conv.converged else 'no'}**. "
        f"It equals the ANOVA-based reduced model: **{'yes' if conv.matches_reference else 'no'}**."
    )
    report.text(sequence.terminal.note)

    report.heading("Flagged observations", 3)
    report.text(
        f"Observations with |Pearson residual| > {modeling['residual_threshold']} are inspected separately."
    )
    profiles = pd.DataFrame({
        state.label: state.diagnostics.flagged_profile for state in sequence.states.values()
    }).T
    report.table(profiles)

    report.text("**Final model**")
    report.parts.append("```\n" + str(sequence.terminal.fitted.results.summary()) + "\n```\n")

    for caption, path in figures.items():
        report.figure(path, caption)
    report.table(descriptor_table([s.fitted for s in sequence.states.values()]).drop(columns=["formula"]))


def write_limitations_section(report, limitations):
    report.heading("6. Limitations")
    if limitations:
        report.bullets(limitations)
    else:
        report.text("No limitations were detected by the automated checks.")
    report.text(
        "The models describe associations in a synthetic survey extract and do not establish causal effects."
    )
