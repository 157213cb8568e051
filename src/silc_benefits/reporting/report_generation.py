import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import markdown
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: Arial, sans-serif; max-width: 1100px; margin: 2em auto; line-height: 1.5; color: #222; }}
table {{ border-collapse: collapse; margin: 1em 0; font-size: 0.9em; }}
th, td {{ border: 1px solid #ccc; padding: 4px 8px; text-align: right; }}
th {{ background: #f0f0f0; }}
img {{ max-width: 100%; }}
code, pre {{ background: #f7f7f7; }}
</style>
</head>
<body>
{body}
</body>
</html>
"""


class ReportGenerator:
    """Builds the analysis report as Markdown and renders it to HTML."""

    def __init__(self, output_dir: Path, title: str = "Unemployment Benefits Analysis"):
        """
        Initialize the ReportGenerator.

        Args:
            output_dir (Path): Directory to save the report
            title (str): Report title
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.title = title
        self.parts: List[str] = [
            f"# {title}\n",
            f"*Generated on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}*\n",
        ]

    def heading(self, text: str, level: int = 2):
        self.parts.append(f"{'#' * level} {text}\n")

    def text(self, text: str):
        self.parts.append(f"{text}\n")

    def bullets(self, items):
        items = list(items)
        if items:
            self.parts.append("\n".join(f"- {item}" for item in items) + "\n")

    def table(self, df: pd.DataFrame, floatfmt: str = ".4g", index: bool = True):
        if df is None or df.empty:
            self.text("*No data.*")
            return
        self.parts.append(df.to_markdown(floatfmt=floatfmt, index=index) + "\n")

    def figure(self, path: Optional[Path], caption: str = ""):
        if path is None:
            return
        relative = os.path.relpath(Path(path), self.output_dir)
        self.parts.append(f"![{caption}]({Path(relative).as_posix()})\n")

    def markdown_text(self) -> str:
        return "\n".join(self.parts)

    def write(self, name: str = "benefits_analysis_report") -> Path:
        """Write the Markdown report and its HTML rendering; returns the Markdown path."""
        report_path = self.output_dir / f"{name}.md"
        content = self.markdown_text()
        with open(report_path, "w", encoding="utf-8") as f:
            f.write(content)
        logger.info(f"Report generated: {report_path}")

        html_path = self.output_dir / f"{name}.html"
        body = markdown.markdown(content, extensions=["tables", "fenced_code"])
        with open(html_path, "w", encoding="utf-8") as f:
            f.write(HTML_TEMPLATE.format(title=self.title, body=body))
        logger.info(f"HTML report generated: {html_path}")
        return report_path


def _json_default(value):
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return float(value)
    if isinstance(value, (np.bool_,)):
        return bool(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def save_results(results: dict, path: Path) -> Path:
    """Save model results as JSON."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(results, f, indent=2, default=_json_default)
    logger.info(f"Model results saved: {path}")
    return path
