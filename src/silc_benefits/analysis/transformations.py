import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy import stats

logger = logging.getLogger(__name__)

# |lambda| below this is treated as the log transform
LAMBDA_ZERO_TOL = 1e-12


@dataclass(frozen=True)
class BoxCoxEstimate:
    """Maximum likelihood Box-Cox parameter found by a grid search."""

    variable: str
    lambda_: float
    llf: float
    lambda_min: float
    lambda_max: float
    profile: pd.DataFrame

    @property
    def at_boundary(self) -> bool:
        return bool(np.isclose(self.lambda_, self.lambda_min) or np.isclose(self.lambda_, self.lambda_max))


def log1p_transform(values):
    """log(1 + value)."""
    return np.log1p(values)


def boxcox_transform(values, lam: float):
    """Box-Cox transform of value + 1."""
    shifted = np.asarray(values, dtype=float) + 1.0
    if np.any(shifted <= 0):
        raise ValueError("Box-Cox transform requires values greater than -1")
    if abs(lam) < LAMBDA_ZERO_TOL:
        result = np.log(shifted)
    else:
        result = (np.power(shifted, lam) - 1.0) / lam
    if isinstance(values, pd.Series):
        return pd.Series(result, index=values.index, name=values.name)
    return result


def inverse_boxcox_transform(transformed, lam: float):
    """Undo boxcox_transform, returning values on the original scale."""
    t = np.asarray(transformed, dtype=float)
    if abs(lam) < LAMBDA_ZERO_TOL:
        result = np.exp(t) - 1.0
    else:
        result = np.power(t * lam + 1.0, 1.0 / lam) - 1.0
    if isinstance(transformed, pd.Series):
        return pd.Series(result, index=transformed.index, name=transformed.name)
    return result


def boxcox_profile(values, lambda_min: float = -2.0, lambda_max: float = 2.0,
                   step: float = 0.01) -> pd.DataFrame:
    """Profile log-likelihood of the Box-Cox fit of value + 1 over a grid of lambdas."""
    shifted = np.asarray(values, dtype=float) + 1.0
    if np.any(shifted <= 0):
        raise ValueError("Box-Cox search requires values greater than -1")
    if lambda_max <= lambda_min or step <= 0:
        raise ValueError("Invalid Box-Cox search range")

    n_steps = int(round((lambda_max - lambda_min) / step))
    grid = np.linspace(lambda_min, lambda_max, n_steps + 1)
    llf = np.array([stats.boxcox_llf(lam, shifted) for lam in grid])
    return pd.DataFrame({"lambda": grid, "llf": llf})


def estimate_boxcox_lambda(values, variable: str = "", lambda_min: float = -2.0,
                           lambda_max: float = 2.0, step: float = 0.01) -> BoxCoxEstimate:
    """
    Find the lambda maximising the Box-Cox log-likelihood of value + 1.

    Args:
        values: Non-negative values to transform
        variable: Name used in logs and the report
        lambda_min: Lower end of the search range
        lambda_max: Upper end of the search range
        step: Grid spacing

    Returns:
        BoxCoxEstimate: The chosen lambda and the full profile
    """
    profile = boxcox_profile(values, lambda_min, lambda_max, step)
    if not np.isfinite(profile["llf"]).any():
        raise ValueError(f"Box-Cox log-likelihood is undefined for {variable or 'values'}")

    best = profile["llf"].idxmax()
    lam = float(round(profile.loc[best, "lambda"], 10))
    estimate = BoxCoxEstimate(
        variable=variable,
        lambda_=lam,
        llf=float(profile.loc[best, "llf"]),
        lambda_min=lambda_min,
        lambda_max=lambda_max,
        profile=profile,
    )

    logger.info(f"Box-Cox lambda for {variable or 'values'}: {lam:.2f} (llf={estimate.llf:.2f})")
    if estimate.at_boundary:
        logger.warning(
            f"Box-Cox lambda for {variable or 'values'} is at the edge of the search range "
            f"[{lambda_min}, {lambda_max}]"
        )
    return estimate
