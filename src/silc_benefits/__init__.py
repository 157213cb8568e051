"""
Unemployment benefits analysis for an EU-SILC style survey.

Exploratory data analysis, hypothesis tests and a sequence of linear
regression models with model selection, rendered into a single report.
"""

__version__ = "0.1.0"
