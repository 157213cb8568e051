"""
End-to-end tests of the analysis pipeline.
"""

import json

import pytest

from silc_benefits.config import load_config
from silc_benefits.data.cleaning import MissingnessAssumptionError
from silc_benefits.pipeline import Pipeline, main


@pytest.fixture(scope="module")
def report_dir(tmp_path_factory):
    output_dir = tmp_path_factory.mktemp("report")
    config = load_config(overrides={"plots": {"dpi": 40}})
    report_path = Pipeline(config, output_dir).run()
    assert report_path == output_dir / "benefits_analysis_report.md"
    return output_dir


def test_report_files_written(report_dir):
    assert (report_dir / "benefits_analysis_report.md").exists()
    assert (report_dir / "benefits_analysis_report.html").exists()
    assert (report_dir / "figures.pdf").stat().st_size > 0
    assert list((report_dir / "figures").glob("model8_stepwise_qq.png"))


def test_report_sections(report_dir):
    content = (report_dir / "benefits_analysis_report.md").read_text(encoding="utf-8")
    for heading in ["1. Data and cleaning", "2. Univariate summaries", "3. Bivariate analysis",
                    "4. Joint patterns", "5. Regression models", "6. Limitations"]:
        assert f"## {heading}" in content
    assert "186 non-zero values" in content
    assert "**After the region filter:**" in content


def test_results_json(report_dir):
    results = json.loads((report_dir / "model_results.json").read_text(encoding="utf-8"))
    assert results["cleaning"]["stage_rows"]["cleaned"] == 2526
    assert results["univariate"]["benefits_nonzero"]["n"] == 186
    assert list(results["models"]) == [
        "baseline", "log1p", "boxcox", "predictor_boxcox", "full_interaction", "reduced_interaction", "stepwise",
    ]
    assert set(results["stepwise"]) == {"both", "forward", "backward"}
    assert isinstance(results["limitations"], list)


def test_main_fails_on_missing_data(tmp_path, restore_logging):
    with pytest.raises(FileNotFoundError):
        main(["--output-dir", str(tmp_path), "--data", str(tmp_path / "missing.csv")])
    assert list(tmp_path.glob("benefits_analysis_*.log"))


def test_unexplained_missingness_stops_pipeline(tmp_path, raw_survey):
    raw = raw_survey.copy()
    adult = raw.index[(raw["age"] >= 16) & (raw["db040"] == "Styria")][0]
    raw.loc[adult, "py090n"] = float("nan")
    data_path = tmp_path / "survey.csv"
    raw.to_csv(data_path, index=False)

    with pytest.raises(MissingnessAssumptionError):
        Pipeline(load_config(), tmp_path / "out", data_path).run()
