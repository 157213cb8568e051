import logging
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import matplotlib.ticker as mticker
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.backends.backend_pdf import PdfPages
from statsmodels.graphics.gofplots import ProbPlot
from statsmodels.nonparametric.smoothers_lowess import lowess

logger = logging.getLogger(__name__)


class StatisticalVisualization:
    """Class for generating the charts of the benefits report."""

    def __init__(self, output_dir: str = "output/report/figures", config: Optional[dict] = None):
        """
        Initialize the StatisticalVisualization class.

        Args:
            output_dir: Directory to save visualizations
            config: Analysis configuration; only the plots section is used
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        plots = (config or {}).get("plots", {})
        self.labels = (config or {}).get("variables", {}).get("labels", {})
        self.dpi = plots.get("dpi", 150)
        self.age_tick_step = plots.get("age_tick_step", 10)
        self.age_binwidth = plots.get("age_binwidth", 5)
        self.benefits_tick_step = plots.get("benefits_tick_step", 2000)
        self.benefits_binwidth = plots.get("benefits_binwidth", 1000)

        self.saved_paths: List[Path] = []
        self._book = None

        # Set style for visualizations
        plt.style.use(plots.get("style", "seaborn-v0_8-whitegrid"))
        sns.set_palette(plots.get("palette", "viridis"))

    def label(self, column: str) -> str:
        return self.labels.get(column, column)

    def tick_step(self, column: str) -> Optional[float]:
        """Fixed tick spacing for axes that are compared across charts."""
        if column.startswith("benefits"):
            return self.benefits_tick_step
        if column.startswith("age"):
            return self.age_tick_step
        return None

    def _apply_ticks(self, axis, column: str):
        step = self.tick_step(column)
        if step:
            axis.set_major_locator(mticker.MultipleLocator(step))

    def start_book(self, path) -> Path:
        """Collect every following figure into one PDF as well."""
        path = Path(path)
        self._book = PdfPages(path)
        return path

    def finish_book(self):
        if self._book is not None:
            self._book.close()
            self._book = None

    def _save(self, fig, name: str) -> Path:
        path = self.output_dir / f"{name}.png"
        fig.savefig(path, dpi=self.dpi, bbox_inches="tight")
        if self._book is not None:
            self._book.savefig(fig, bbox_inches="tight")
        plt.close(fig)
        self.saved_paths.append(path)
        logger.info(f"Saved {path.name}")
        return path

    # Univariate

    def plot_numeric_distribution(self, series: pd.Series, name: str, binwidth: Optional[float] = None) -> Path:
        """Histogram with a boxplot underneath on the same x axis."""
        column = str(series.name)
        if binwidth is None:
            binwidth = self.benefits_binwidth if column.startswith("benefits") else self.age_binwidth

        fig, (ax_hist, ax_box) = plt.subplots(
            2, 1, figsize=(10, 7), sharex=True, gridspec_kw={"height_ratios": [3, 1]}
        )
        sns.histplot(series.dropna(), binwidth=binwidth, ax=ax_hist, edgecolor="white")
        ax_hist.set_ylabel("Count")
        ax_hist.set_title(f"Distribution of {self.label(column)} (n={series.notna().sum()})")
        sns.boxplot(x=series.dropna(), ax=ax_box, color="lightgray")
        ax_box.set_xlabel(self.label(column))
        self._apply_ticks(ax_box.xaxis, column)
        fig.tight_layout()
        return self._save(fig, name)

    def plot_categorical_distribution(self, counts: pd.DataFrame, column: str, name: str) -> Path:
        """Bar chart of level counts from a categorical summary."""
        fig, ax = plt.subplots(figsize=(8, 6))
        labels = [str(level) for level in counts.index]
        bars = ax.bar(labels, counts["count"].values, color=sns.color_palette(n_colors=len(labels)))
        for bar, share in zip(bars, counts["share"].values):
            ax.annotate(f"{share:.1%}", (bar.get_x() + bar.get_width() / 2, bar.get_height()),
                        ha="center", va="bottom", fontsize=10)
        ax.set_xlabel(self.label(column))
        ax.set_ylabel("Count")
        ax.set_title(f"{self.label(column)}: respondents per level")
        fig.tight_layout()
        return self._save(fig, name)

    def plot_discrete_distribution(self, series: pd.Series, name: str) -> Path:
        """Bar chart of each value with a boxplot, for small integer variables."""
        column = str(series.name)
        counts = series.value_counts().sort_index()
        fig, (ax_bar, ax_box) = plt.subplots(
            2, 1, figsize=(10, 7), sharex=True, gridspec_kw={"height_ratios": [3, 1]}
        )
        ax_bar.bar(counts.index, counts.values, width=0.8)
        ax_bar.set_ylabel("Count")
        ax_bar.set_title(f"Distribution of {self.label(column)}")
        ax_box.boxplot(series.dropna(), orientation="horizontal", widths=0.6)
        ax_box.set_yticks([])
        ax_box.set_xlabel(self.label(column))
        ax_box.xaxis.set_major_locator(mticker.MultipleLocator(1))
        fig.tight_layout()
        return self._save(fig, name)

    # Bivariate

    def plot_group_boxplot(self, df: pd.DataFrame, outcome: str, group: str, name: str,
                           annotation: Optional[str] = None) -> Path:
        fig, ax = plt.subplots(figsize=(10, 6))
        sns.boxplot(data=df, x=group, y=outcome, ax=ax, color="lightsteelblue")
        sns.stripplot(data=df, x=group, y=outcome, ax=ax, color="black", alpha=0.3, size=3)
        ax.set_xlabel(self.label(group))
        ax.set_ylabel(self.label(outcome))
        self._apply_ticks(ax.yaxis, outcome)
        title = f"{self.label(outcome)} by {self.label(group)}"
        if annotation:
            title += f"\n{annotation}"
        ax.set_title(title)
        fig.tight_layout()
        return self._save(fig, name)

    def plot_crosstab(self, table: pd.DataFrame, name: str) -> Path:
        """Grouped bar chart of a two-way frequency table."""
        fig, ax = plt.subplots(figsize=(10, 6))
        table.plot(kind="bar", ax=ax, rot=0)
        ax.set_xlabel(self.label(str(table.index.name)))
        ax.set_ylabel("Count")
        ax.legend(title=self.label(str(table.columns.name)))
        ax.set_title(f"{self.label(str(table.index.name))} by {self.label(str(table.columns.name))}")
        fig.tight_layout()
        return self._save(fig, name)

    def plot_scatter_trend(self, df: pd.DataFrame, x: str, y: str, slope: float, intercept: float,
                           name: str, r_squared: Optional[float] = None) -> Path:
        """Scatter plot with the fitted OLS line drawn over it."""
        fig, ax = plt.subplots(figsize=(10, 6))
        ax.scatter(df[x], df[y], alpha=0.5, edgecolor="none")
        xs = np.linspace(df[x].min(), df[x].max(), 100)
        label = "OLS fit" if r_squared is None else f"OLS fit (R² = {r_squared:.3f})"
        ax.plot(xs, intercept + slope * xs, color="red", linewidth=2, label=label)
        ax.set_xlabel(self.label(x))
        ax.set_ylabel(self.label(y))
        self._apply_ticks(ax.xaxis, x)
        self._apply_ticks(ax.yaxis, y)
        ax.legend()
        ax.set_title(f"{self.label(y)} vs {self.label(x)}")
        fig.tight_layout()
        return self._save(fig, name)

    # Joint

    def plot_faceted_scatter(self, df: pd.DataFrame, x: str, y: str, hue: str, facet: str, name: str) -> Path:
        """Scatter with one OLS line per hue level, one panel per facet level, shared axes."""
        grid = sns.lmplot(data=df, x=x, y=y, hue=hue, col=facet, ci=None, height=4.5, aspect=1.0,
                          scatter_kws={"alpha": 0.5, "s": 20}, facet_kws={"sharex": True, "sharey": True})
        for ax in grid.axes.flat:
            self._apply_ticks(ax.xaxis, x)
            self._apply_ticks(ax.yaxis, y)
        grid.set_axis_labels(self.label(x), self.label(y))
        grid.figure.suptitle(f"{self.label(y)} by {self.label(x)} and {self.label(hue)}, per {self.label(facet)}",
                             y=1.03)
        return self._save(grid.figure, name)

    def plot_grouped_boxplot(self, df: pd.DataFrame, x: str, y: str, hue: str, name: str) -> Path:
        fig, ax = plt.subplots(figsize=(12, 6))
        sns.boxplot(data=df, x=x, y=y, hue=hue, ax=ax)
        ax.set_xlabel(self.label(x))
        ax.set_ylabel(self.label(y))
        self._apply_ticks(ax.yaxis, y)
        ax.legend(title=self.label(hue))
        ax.set_title(f"{self.label(y)} by {self.label(x)} and {self.label(hue)}")
        fig.tight_layout()
        return self._save(fig, name)

    # Regression

    def plot_boxcox_profile(self, profile: pd.DataFrame, lambda_: float, variable: str, name: str) -> Path:
        fig, ax = plt.subplots(figsize=(8, 5))
        ax.plot(profile["lambda"], profile["llf"], color="navy")
        ax.axvline(lambda_, color="red", linestyle="--", label=f"λ = {lambda_:.2f}")
        ax.set_xlabel("λ")
        ax.set_ylabel("Log-likelihood")
        ax.set_title(f"Box-Cox profile log-likelihood: {self.label(variable)} + 1")
        ax.legend()
        fig.tight_layout()
        return self._save(fig, name)

    def plot_qq(self, studentized: pd.Series, title: str, name: str) -> Path:
        """QQ plot of studentized residuals against the standard normal."""
        fig, ax = plt.subplots(figsize=(7, 7))
        ProbPlot(np.asarray(studentized)).qqplot(line="45", ax=ax, alpha=0.5)
        ax.set_title(f"Normal Q-Q: {title}")
        fig.tight_layout()
        return self._save(fig, name)

    def plot_residual_diagnostics(self, fitted_values: pd.Series, studentized: pd.Series,
                                  flagged: pd.Index, title: str, name: str) -> Path:
        """Residuals vs fitted with a LOWESS line; flagged observations highlighted."""
        fig, axes = plt.subplots(1, 2, figsize=(14, 6))

        axes[0].scatter(fitted_values, studentized, alpha=0.4, edgecolor="none")
        is_flagged = studentized.index.isin(flagged)
        axes[0].scatter(fitted_values[is_flagged], studentized[is_flagged], facecolor="none",
                        edgecolor="red", label=f"Flagged (n={is_flagged.sum()})")
        axes[0].axhline(0, color="black", linestyle="--")
        smoothed = lowess(studentized.values, fitted_values.values, frac=0.5)
        axes[0].plot(smoothed[:, 0], smoothed[:, 1], "r-", linewidth=2)
        axes[0].set_xlabel("Fitted Values")
        axes[0].set_ylabel("Studentized Residuals")
        axes[0].set_title("Residuals vs Fitted Values")
        axes[0].legend()

        sqrt_abs = np.sqrt(np.abs(studentized))
        axes[1].scatter(fitted_values, sqrt_abs, alpha=0.4, edgecolor="none")
        smoothed = lowess(sqrt_abs.values, fitted_values.values, frac=0.5)
        axes[1].plot(smoothed[:, 0], smoothed[:, 1], "r-", linewidth=2)
        axes[1].set_xlabel("Fitted Values")
        axes[1].set_ylabel("√|Studentized Residuals|")
        axes[1].set_title("Scale-Location Plot")

        fig.suptitle(title, fontsize=14)
        fig.tight_layout(rect=[0, 0, 1, 0.95])
        return self._save(fig, name)

    def plot_qq_comparison(self, residuals: Dict[str, pd.Series], name: str) -> Path:
        """QQ plots of several models side by side."""
        n = len(residuals)
        n_cols = min(n, 4)
        n_rows = (n + n_cols - 1) // n_cols
        fig, axes = plt.subplots(n_rows, n_cols, figsize=(4 * n_cols, 4 * n_rows), squeeze=False)
        axes = axes.flatten()
        for ax, (title, values) in zip(axes, residuals.items()):
            ProbPlot(np.asarray(values)).qqplot(line="45", ax=ax, alpha=0.4, markersize=3)
            ax.set_title(title, fontsize=10)
        for ax in axes[n:]:
            ax.set_visible(False)
        fig.tight_layout()
        return self._save(fig, name)
