#!/usr/bin/env python3
"""
Pipeline to run the complete benefits analysis and write the report.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from silc_benefits.analysis.bivariate_analysis import analyze_bivariate
from silc_benefits.analysis.descriptive_statistics import nonzero_subset, univariate_summaries
from silc_benefits.analysis.interaction_analysis import analyze_interactions
from silc_benefits.analysis.regression_models import run_model_sequence
from silc_benefits.config import DEFAULT_OUTPUT_DIR, load_config, log_section, setup_logging
from silc_benefits.data.cleaning import clean_survey
from silc_benefits.data.loader import load_survey_data
from silc_benefits.reporting.report_generation import ReportGenerator, save_results
from silc_benefits.reporting.report_sections import (
    write_bivariate_section,
    write_cleaning_section,
    write_interaction_section,
    write_limitations_section,
    write_regression_section,
    write_univariate_section,
)
from silc_benefits.visualization.statistical_visualization import StatisticalVisualization

logger = logging.getLogger(__name__)


class Pipeline:
    """Pipeline class to manage the analysis workflow."""

    def __init__(self, config: Optional[dict] = None, output_dir=None, data_path=None):
        """Initialize the pipeline.

        Args:
            config (dict): Analysis configuration, defaults to the bundled file
            output_dir: Directory receiving the report, figures and results
            data_path: Survey CSV, defaults to the configured data file
        """
        self.config = config if config is not None else load_config()
        self.output_dir = Path(output_dir) if output_dir is not None else DEFAULT_OUTPUT_DIR
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.data_path = data_path

        self.visualizer = StatisticalVisualization(self.output_dir / "figures", self.config)
        self.report = ReportGenerator(self.output_dir)
        self.results = {}
        self.output_files = {}

    def load_and_clean(self):
        raw = load_survey_data(self.data_path, self.config)
        cleaning = clean_survey(raw, self.config)
        self.results["cleaning"] = {
            "stage_rows": cleaning.stage_rows,
            "missing_rows": len(cleaning.audit.missing_index),
            "underage_rows": len(cleaning.audit.underage_index),
            "missingness_explained": cleaning.audit.explained,
            "missing_regions": cleaning.missing_regions,
            "hsize_lookup": cleaning.hsize_lookup,
        }
        write_cleaning_section(self.report, cleaning, self.config)
        return cleaning

    def describe(self, df):
        log_section("Univariate Analysis", logger)
        outcome = self.config["variables"]["outcome"]
        summaries = univariate_summaries(df, self.config)
        viz = self.visualizer

        figures = {
            "Age": viz.plot_numeric_distribution(df["age"], "univariate_age"),
            "Household size": viz.plot_discrete_distribution(df["hsize"], "univariate_hsize"),
            f"Non-zero {outcome}": viz.plot_numeric_distribution(
                nonzero_subset(df, outcome)[outcome], f"univariate_{outcome}_nonzero"
            ),
        }
        for var in self.config["variables"]["categorical_predictors"]:
            figures[viz.label(var)] = viz.plot_categorical_distribution(summaries[var], var, f"univariate_{var}")

        self.results["univariate"] = {
            key: value for key, value in summaries.items() if isinstance(value, dict)
        }
        write_univariate_section(self.report, summaries, figures, self.config)
        return summaries

    def compare(self, df):
        outcome = self.config["variables"]["outcome"]
        bivariate = analyze_bivariate(df, self.config)
        nonzero = nonzero_subset(df, outcome)
        viz = self.visualizer

        figures = {}
        for group, comparison in bivariate.comparisons.items():
            annotation = None
            if comparison.method is not None:
                annotation = f"{comparison.method}, p = {comparison.p_value:.3g}"
            figures[f"{outcome} by {group}"] = viz.plot_group_boxplot(
                nonzero, outcome, group, f"bivariate_{outcome}_by_{group}", annotation
            )
        for var, trend in bivariate.trends.items():
            figures[f"{outcome} vs {var}"] = viz.plot_scatter_trend(
                nonzero, var, outcome, trend.slope, trend.intercept, f"bivariate_{outcome}_vs_{var}", trend.r_squared
            )
        gender, citizenship = self.config["variables"]["categorical_predictors"][:2]
        figures[f"age by {gender}"] = viz.plot_group_boxplot(df, "age", gender, f"bivariate_age_by_{gender}")
        figures[f"age by {citizenship}"] = viz.plot_group_boxplot(df, "age", citizenship,
                                                                  f"bivariate_age_by_{citizenship}")
        for name, table in bivariate.crosstabs.items():
            figures[name] = viz.plot_crosstab(table, f"bivariate_{name}")

        self.results["bivariate"] = {
            "comparisons": {group: c.to_dict() for group, c in bivariate.comparisons.items()},
            "trends": {var: vars(t) for var, t in bivariate.trends.items()},
        }
        write_bivariate_section(self.report, bivariate, figures, self.config)
        return bivariate

    def explore_interactions(self, df):
        outcome = self.config["variables"]["outcome"]
        patterns = analyze_interactions(df, self.config)
        nonzero = nonzero_subset(df, outcome)
        gender, citizenship = self.config["variables"]["categorical_predictors"][:2]
        viz = self.visualizer

        figures = {
            f"{outcome} by age and {gender}, per {citizenship}": viz.plot_faceted_scatter(
                nonzero, "age", outcome, gender, citizenship, f"joint_age_{gender}_{citizenship}"
            ),
            f"{outcome} by household size and {gender}": viz.plot_grouped_boxplot(
                nonzero, "hsize", outcome, gender, f"joint_hsize_{gender}"
            ),
            f"{outcome} by {citizenship} and {gender}": viz.plot_grouped_boxplot(
                nonzero, citizenship, outcome, gender, f"joint_{citizenship}_{gender}"
            ),
        }
        self.results["interactions"] = [
            {"pattern": p.title, "apparent": p.apparent, "narrative": p.narrative} for p in patterns
        ]
        write_interaction_section(self.report, patterns, figures)
        return patterns

    def model(self, df):
        sequence = run_model_sequence(df, self.config)
        viz = self.visualizer

        figures = {
            f"Box-Cox profile: {sequence.outcome_lambda.variable}": viz.plot_boxcox_profile(
                sequence.outcome_lambda.profile, sequence.outcome_lambda.lambda_,
                sequence.outcome_lambda.variable, "boxcox_profile_outcome",
            )
        }
        for var, estimate in sequence.predictor_lambdas.items():
            figures[f"Box-Cox profile: {var}"] = viz.plot_boxcox_profile(
                estimate.profile, estimate.lambda_, var, f"boxcox_profile_{var}"
            )
        for key, state in sequence.states.items():
            title = f"Model {state.step}: {state.label}"
            diag = state.diagnostics
            figures[f"{title} QQ"] = viz.plot_qq(diag.studentized, title, f"model{state.step}_{key}_qq")
            figures[f"{title} residuals"] = viz.plot_residual_diagnostics(
                diag.fitted_values, diag.studentized, diag.flagged_index, title, f"model{state.step}_{key}_residuals"
            )
        figures["QQ comparison"] = viz.plot_qq_comparison(
            {f"{s.step}. {s.label}": s.diagnostics.studentized for s in sequence.states.values()},
            "model_qq_comparison",
        )

        self.results["models"] = {
            key: {**state.descriptor.to_dict(), **state.diagnostics.to_dict(), "note": state.note}
            for key, state in sequence.states.items()
        }
        self.results["boxcox"] = {
            "outcome": {"lambda": sequence.outcome_lambda.lambda_, "at_boundary": sequence.outcome_lambda.at_boundary},
            "predictors": {
                var: {"lambda": e.lambda_, "at_boundary": e.at_boundary}
                for var, e in sequence.predictor_lambdas.items()
            },
            "predictor_transform_accepted": sequence.predictor_transform_accepted,
        }
        self.results["f_tests"] = [vars(t) for t in sequence.f_tests]
        self.results["aic_comparisons"] = sequence.aic_comparisons
        self.results["stepwise"] = {
            direction: result.final.descriptor.formula for direction, result in sequence.stepwise.items()
        }
        self.results["convergence"] = {
            "converged": sequence.convergence.converged,
            "matches_reference": sequence.convergence.matches_reference,
        }
        self.results["terminal_accepted"] = sequence.terminal_accepted
        write_regression_section(self.report, sequence, figures, self.config)
        return sequence

    def run(self) -> Path:
        """Run the complete analysis; returns the path of the Markdown report."""
        logger.info("Starting benefits analysis pipeline...")
        book = self.visualizer.start_book(self.output_dir / "figures.pdf")
        try:
            cleaning = self.load_and_clean()
            df = cleaning.data
            self.describe(df)
            bivariate = self.compare(df)
            self.explore_interactions(df)
            sequence = self.model(df)
        finally:
            self.visualizer.finish_book()
        self.output_files["figures_pdf"] = book

        limitations = bivariate.limitations + sequence.limitations
        if cleaning.missing_regions:
            limitations.append(f"Configured regions absent from the data: {', '.join(cleaning.missing_regions)}")
        self.results["limitations"] = limitations
        write_limitations_section(self.report, limitations)

        log_section("Report Generation", logger)
        report_path = self.report.write()
        self.output_files["report"] = report_path
        self.output_files["results"] = save_results(self.results, self.output_dir / "model_results.json")

        logger.info("Pipeline completed successfully!")
        for name, path in self.output_files.items():
            logger.info(f"  - {name}: {path}")
        return report_path


def main(argv=None):
    """Main function to run the pipeline."""
    parser = argparse.ArgumentParser(description="Run the unemployment benefits analysis")
    parser.add_argument("--output-dir", default=str(DEFAULT_OUTPUT_DIR),
                        help="Directory for the report, figures and results")
    parser.add_argument("--config", default=None,
                        help="Path to an analysis configuration YAML file")
    parser.add_argument("--data", default=None,
                        help="Path to the survey CSV file")
    args = parser.parse_args(argv)

    log_file = setup_logging(args.output_dir)
    logger.info(f"Logging to {log_file}")

    try:
        config = load_config(args.config)
        pipeline = Pipeline(config, args.output_dir, args.data)
        report_path = pipeline.run()
    except Exception as e:
        logger.error(f"Pipeline failed: {str(e)}", exc_info=True)
        raise

    logger.info(f"Report written to {report_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
