"""
Generate the bundled synthetic EU-SILC style survey table.

The public EU-SILC microdata cannot be redistributed, so the package ships a
synthetic person-level extract with the same column names, coding and
missingness pattern:

    - Household size is a printed label, shared by every member
    - Person fields (pl030, pb220a, py010n, py090n) are empty below age 16
    - Benefits are zero for most respondents and log-normal otherwise

Draws come from a Park-Miller minimal standard generator so that the table
can be regenerated exactly from its seed on any platform.
"""

import argparse
import logging
import math
from pathlib import Path

import pandas as pd

from silc_benefits.config import RESOURCES_DIR, setup_logging
from silc_benefits.data.loader import DEFAULT_DATA_FILE

logger = logging.getLogger(__name__)

DEFAULT_SEED = 20190611
DEFAULT_HOUSEHOLDS = 2600

COLUMNS = ["db030", "hsize", "db040", "rb030", "age", "rb090", "pl030", "pb220a", "py010n", "py090n", "rb050"]

# Cumulative probabilities
REGIONS = [
    ("Burgenland", 0.035),
    ("Carinthia", 0.10),
    ("Lower Austria", 0.29),
    ("Salzburg", 0.35),
    ("Styria", 0.49),
    ("Tyrol", 0.57),
    ("Upper Austria", 0.73),
    ("Vienna", 0.95),
    ("Vorarlberg", 1.0),
]
HOUSEHOLD_SIZES = [
    (1, 0.26), (2, 0.55), (3, 0.72), (4, 0.87), (5, 0.945),
    (6, 0.975), (7, 0.99), (8, 0.997), (9, 1.0),
]

# Economic status (pl030) thresholds for respondents under 65
STATUS_THRESHOLDS = [(1, 0.52), (2, 0.64), (3, 0.71), (4, 0.80), (6, 0.86), (7, 0.95)]
RETIRED = 5
UNEMPLOYED = 3

BENEFIT_LOG_MEAN = 8.08
BENEFIT_LOG_SD = 0.78


class ParkMillerRandom:
    """Minimal standard linear congruential generator (multiplier 48271)."""

    MODULUS = 2147483647
    MULTIPLIER = 48271

    def __init__(self, seed):
        if not 0 < seed < self.MODULUS:
            raise ValueError(f"Seed must lie in (0, {self.MODULUS}), got {seed}")
        self.state = seed

    def uniform(self):
        self.state = (self.state * self.MULTIPLIER) % self.MODULUS
        return self.state / self.MODULUS

    def normal(self):
        # Box-Muller, cosine branch only
        u1 = self.uniform()
        u2 = self.uniform()
        return math.sqrt(-2 * math.log(u1)) * math.cos(6.283185307179586 * u2)

    def pick(self, cumulative):
        draw = self.uniform()
        for value, bound in cumulative:
            if draw <= bound:
                return value
        return cumulative[-1][0]


def _economic_status(rng, age, citizenship):
    if age >= 65:
        return RETIRED
    draw = rng.uniform()
    status = RETIRED
    for code, bound in STATUS_THRESHOLDS:
        if draw < bound:
            status = code
            break
    if citizenship == "Other" and rng.uniform() < 0.08:
        status = UNEMPLOYED
    return status


def _benefit_log_mean(age, gender, citizenship, hsize, status):
    mu = (BENEFIT_LOG_MEAN + 0.012 * (age - 40) + (0.22 if gender == "male" else 0)
          + (-0.18 if citizenship == "Other" else (-0.05 if citizenship == "EU" else 0)) + 0.04 * hsize)
    if gender == "male":
        mu += 0.006 * (age - 40)
    if status != UNEMPLOYED:
        mu -= 0.9
    return mu


def generate_survey(seed=DEFAULT_SEED, households=DEFAULT_HOUSEHOLDS) -> pd.DataFrame:
    """
    Generate the synthetic survey table.

    Args:
        seed: Generator seed
        households: Number of households to draw

    Returns:
        pd.DataFrame: One row per person, formatted as in the bundled CSV
    """
    rng = ParkMillerRandom(seed)
    rows = []
    person = 0

    for household in range(1, households + 1):
        region = rng.pick(REGIONS)
        hsize = rng.pick(HOUSEHOLD_SIZES)
        draw = rng.uniform()
        citizenship = "AT" if draw < 0.86 else ("EU" if draw < 0.93 else "Other")
        weight = f"{450 + rng.uniform() * 1100:.4f}"

        for member in range(1, hsize + 1):
            person += 1
            if member <= 2:
                age = int(18 + rng.uniform() * 72)
            else:
                age = int(rng.uniform() * 39)
            if member == 2 and age < 16:
                age = 16 + int(rng.uniform() * 30)
            gender = "male" if rng.uniform() < 0.5 else "female"
            person_citizenship = citizenship
            if rng.uniform() < 0.03:
                person_citizenship = "EU" if citizenship == "AT" else "AT"

            row = {
                "db030": household, "hsize": hsize, "db040": region, "rb030": person * 100 + 1,
                "age": age, "rb090": gender, "pl030": "", "pb220a": "", "py010n": "", "py090n": "",
                "rb050": weight,
            }
            if age >= 16:
                status = _economic_status(rng, age, person_citizenship)
                income = 0.0
                if status == 1:
                    income = math.exp(9.9 + 0.35 * rng.normal())
                elif status == 2:
                    income = math.exp(9.2 + 0.4 * rng.normal())
                benefits = 0.0
                if status == UNEMPLOYED or (status != RETIRED and rng.uniform() < 0.035):
                    mu = _benefit_log_mean(age, gender, person_citizenship, hsize, status)
                    benefits = math.exp(mu + BENEFIT_LOG_SD * rng.normal())
                row.update({
                    "pl030": status, "pb220a": person_citizenship,
                    "py010n": f"{income:.2f}", "py090n": f"{benefits:.2f}",
                })
            rows.append(row)

    df = pd.DataFrame(rows, columns=COLUMNS)
    logger.info(f"Generated {len(df)} respondents in {households} households (seed {seed})")
    return df


def write_survey(path, seed=DEFAULT_SEED, households=DEFAULT_HOUSEHOLDS) -> Path:
    """Generate the table and write it as CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    generate_survey(seed, households).to_csv(path, index=False)
    logger.info(f"Survey table written to {path}")
    return path


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate the synthetic EU-SILC style survey table")
    parser.add_argument("--output", type=Path, default=RESOURCES_DIR / DEFAULT_DATA_FILE,
                        help="CSV file to write")
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED)
    parser.add_argument("--households", type=int, default=DEFAULT_HOUSEHOLDS)
    args = parser.parse_args(argv)

    setup_logging()
    write_survey(args.output, args.seed, args.households)
    return 0


if __name__ == "__main__":
    main()
