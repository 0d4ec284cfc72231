"""
Final Hourly Row Assembly

Joins the stay-level cohort attributes, the merged hourly features and the
sepsis label into the output table.

Key processing steps:
- Attach cohort attributes to every merged (stay_id, hour) row
- Keep only hours inside [intime, outtime]
- MAP fallback: (sbp + 2 * dbp) / 3 when MAP is missing but both pressures exist
- Antibiotic flag/count default to 0 for hours without an administration
- Label each row and order by (subject_id, stay_id, hour)
"""
import pandas as pd

from .antibiotics_data import ANTIBIOTIC_COLUMNS
from .labs_data import LAB_COLUMNS
from .logging_utils import logger
from .sepsis_labels import assign_sepsis_labels
from .vitals_data import VITAL_COLUMNS

STAY_COLUMNS = [
    "subject_id", "hadm_id", "stay_id", "gender", "age",
    "unit1", "unit2", "hospadmtime", "iculos", "hour",
]

FINAL_COLUMNS = STAY_COLUMNS + VITAL_COLUMNS + LAB_COLUMNS + ANTIBIOTIC_COLUMNS + ["sepsislabel"]


def impute_mean_arterial_pressure(df: pd.DataFrame) -> pd.Series:
    """
    Measured MAP, or (sbp + 2 * dbp) / 3 where MAP is missing.

    The derived value is null unless both sbp and dbp are present.

    Example:
        >>> impute_mean_arterial_pressure(pd.DataFrame({'sbp': [120.0], 'dbp': [60.0], 'map': [None]}))
        0    80.0
        Name: map, dtype: float64
    """
    derived = (df["sbp"] + 2 * df["dbp"]) / 3
    return df["map"].astype(float).fillna(derived).rename("map")


def assemble_hourly_rows(features: pd.DataFrame, cohort: pd.DataFrame, onsets: pd.DataFrame) -> pd.DataFrame:
    """
    Build the final hourly rows of one batch of stays.

    Args:
        features (pd.DataFrame): merged hourly features keyed by (stay_id, hour)
        cohort (pd.DataFrame): eligible stays with their attributes
        onsets (pd.DataFrame): qualifying sepsis onsets (derive_sepsis_onsets)

    Returns:
        pd.DataFrame: FINAL_COLUMNS, one row per (stay_id, hour) with at
            least one contributing source inside the stay bounds
    """
    logger.log_start("assemble_hourly_rows")

    df = features.merge(cohort, on="stay_id", how="inner")
    in_stay = (df["hour"] >= df["intime"]) & (df["hour"] <= df["outtime"])
    dropped = int((~in_stay).sum())
    if dropped:
        logger.info(f"{dropped} hourly rows outside the stay bounds")
    df = df[in_stay].copy()

    for col in VITAL_COLUMNS + LAB_COLUMNS:
        if col not in df.columns:
            df[col] = float("nan")
    df[VITAL_COLUMNS + LAB_COLUMNS] = df[VITAL_COLUMNS + LAB_COLUMNS].astype(float)
    if "antibiotics_used" not in df.columns:
        df["antibiotics_used"] = None
    # object dtype with None for missing names, whatever the batch holds
    names = df["antibiotics_used"].astype(object)
    df["antibiotics_used"] = names.where(names.notna(), None)

    df["map"] = impute_mean_arterial_pressure(df)

    for col in ["antibiotic_flag", "antibiotic_count"]:
        if col not in df.columns:
            df[col] = 0
        df[col] = df[col].fillna(0).astype(int)

    df["sepsislabel"] = assign_sepsis_labels(df, onsets)

    df = df.sort_values(["subject_id", "stay_id", "hour"]).reset_index(drop=True)

    logger.info(f"{len(df)} hourly rows, {int(df['sepsislabel'].sum())} labeled positive")
    logger.log_end("assemble_hourly_rows")
    return df[FINAL_COLUMNS]
