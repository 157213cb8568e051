import logging

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from silc_benefits.config import load_config
from silc_benefits.data.cleaning import clean_survey
from silc_benefits.data.loader import load_survey_data


@pytest.fixture(scope="session")
def config():
    return load_config()


@pytest.fixture(scope="session")
def raw_survey(config):
    return load_survey_data(config=config)


@pytest.fixture(scope="session")
def cleaning_result(raw_survey, config):
    return clean_survey(raw_survey, config)


@pytest.fixture(scope="session")
def cleaned(cleaning_result):
    return cleaning_result.data


@pytest.fixture
def rng():
    return np.random.default_rng(20240501)


@pytest.fixture
def interaction_data(rng):
    """Two continuous predictors with a strong product term."""
    n = 300
    x1 = rng.normal(0, 1, n)
    x2 = rng.normal(0, 1, n)
    y = 1.0 + 2.0 * x1 + 3.0 * x2 + 4.0 * x1 * x2 + rng.normal(0, 1, n)
    return pd.DataFrame({"y": y, "x1": x1, "x2": x2})


@pytest.fixture
def small_survey():
    """Selected-stage rows: missing person fields for exactly the under-16 respondents."""
    return pd.DataFrame({
        "rb090": ["male", "female", "male", "female", "female"],
        "pb220a": ["AT", "EU", None, "Other", None],
        "hsize": pd.Categorical(["2", "3", "3", "1", "4"]),
        "age": [45, 30, 10, 67, 4],
        "benefits": [0.0, 1200.0, np.nan, 0.0, np.nan],
    })


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
