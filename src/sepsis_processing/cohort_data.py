"""
ICU Stay Cohort Definition

This module selects the ICU stays that enter the hourly dataset and computes
the stay-level attributes replicated onto every hourly row.

The cohort selection follows these inclusion criteria:
- ICU length of stay >= 8 hours
- Age at admission between 18 and 89 years (inclusive)

Age is the patient's anchor age shifted by the number of years between the
anchor year and the admission year. Stays failing a criterion are silently
excluded.

Derived attributes:
- age: age at hospital admission (years)
- unit1 / unit2: first care unit matches MICU / SICU
- hospadmtime: hours from hospital admission to ICU admission
- iculos: ICU length of stay in hours
"""
import pandas as pd

from .logging_utils import logger
from .utils import get_hour_difference, get_year_difference

# Cohort inclusion criteria constants
MIN_AGE = 18            # Minimum patient age in years
MAX_AGE = 89            # Maximum patient age in years
MIN_ICU_LOS_HOURS = 8   # Minimum ICU length of stay in hours

# Care unit name patterns, one per flag
UNIT1_PATTERN = "MICU"
UNIT2_PATTERN = "SICU"

COHORT_COLUMNS = [
    "stay_id", "subject_id", "hadm_id", "intime", "outtime",
    "unit1", "unit2", "iculos", "gender", "age", "hospadmtime",
]


def build_cohort(stays: pd.DataFrame) -> pd.DataFrame:
    """
    Apply the inclusion criteria and compute stay-level attributes.

    Args:
        stays (pd.DataFrame): cleaned stays feed (one row per ICU stay with
            patient and admission columns joined in)

    Returns:
        pd.DataFrame: eligible stays with COHORT_COLUMNS, sorted by
            (subject_id, stay_id)
    """
    logger.log_start("build_cohort")

    df = stays.copy()
    df["iculos"] = get_hour_difference(df["outtime"], df["intime"])
    df["age"] = df["anchor_age"] + get_year_difference(df["admittime"], df["anchor_year"])
    df["hospadmtime"] = get_hour_difference(df["intime"], df["admittime"])

    careunit = df["first_careunit"].fillna("").astype(str)
    df["unit1"] = careunit.str.contains(UNIT1_PATTERN, regex=False).astype(int)
    df["unit2"] = careunit.str.contains(UNIT2_PATTERN, regex=False).astype(int)

    los_ok = df["iculos"] >= MIN_ICU_LOS_HOURS
    age_ok = df["age"].between(MIN_AGE, MAX_AGE)
    df = df[los_ok & age_ok]

    logger.info(f"{len(df)} of {len(stays)} stays eligible")

    df = df[COHORT_COLUMNS].sort_values(["subject_id", "stay_id"]).reset_index(drop=True)

    logger.log_end("build_cohort")
    return df
