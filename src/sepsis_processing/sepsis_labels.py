"""
Sepsis-3 Onset and Hourly Label Derivation

Onset definition:
- A stay qualifies only if it is flagged septic and has both a suspected
  infection time and an organ dysfunction (SOFA) time
- The SOFA time must lie within [-24h, +12h] of the suspicion time (inclusive)
- Onset time (sepsis_time) = min(suspicion time, SOFA time)
- Onsets earlier than intime + 4h are excluded from the positive set

Hourly label:
- label = 1 iff hour >= sepsis_time - 6h and hour >= intime + 4h
- stays without a qualifying onset are labeled 0 for every hour

The label is monotone over the hours of a stay: both conditions are lower
bounds on the hour.
"""
from typing import Optional

import numpy as np
import pandas as pd

from .logging_utils import logger
from .utils import get_hour_difference

# Sepsis-3 validity window: SOFA time relative to suspicion time
VALIDITY_WINDOW_BEFORE = pd.Timedelta(hours=24)
VALIDITY_WINDOW_AFTER = pd.Timedelta(hours=12)

# Onsets before intime + MIN_ONSET_DELAY are treated as present on admission
MIN_ONSET_DELAY = pd.Timedelta(hours=4)

# Hours are labeled positive from sepsis_time - LABEL_LOOKBACK onwards
LABEL_LOOKBACK = pd.Timedelta(hours=6)

ONSET_COLUMNS = [
    "stay_id", "sepsis_time", "suspicion_time", "sofa_time",
    "time_window_valid", "time_diff_hours",
]


def derive_sepsis_onsets(sepsis: pd.DataFrame, cohort: pd.DataFrame) -> pd.DataFrame:
    """
    Compute the qualifying sepsis onset of each cohort stay.

    Args:
        sepsis (pd.DataFrame): cleaned sepsis feed (stay_id,
            suspected_infection_time, sofa_time, sepsis3)
        cohort (pd.DataFrame): eligible stays with intime

    Returns:
        pd.DataFrame: ONSET_COLUMNS, one row per stay with a qualifying
            episode (the earliest one if the feed holds several)
    """
    logger.log_start("derive_sepsis_onsets")

    df = sepsis.merge(cohort[["stay_id", "intime"]], on="stay_id", how="inner")
    df = df.rename(columns={"suspected_infection_time": "suspicion_time"})

    flagged = df["sepsis3"].fillna(False).astype(bool)
    complete = df["suspicion_time"].notna() & df["sofa_time"].notna()
    df = df[flagged & complete].copy()
    if df.empty:
        logger.info("0 stays with a qualifying sepsis onset")
        logger.log_end("derive_sepsis_onsets")
        return pd.DataFrame(columns=ONSET_COLUMNS)

    df["sepsis_time"] = df[["suspicion_time", "sofa_time"]].min(axis=1)
    df["time_window_valid"] = df["sofa_time"].between(
        df["suspicion_time"] - VALIDITY_WINDOW_BEFORE,
        df["suspicion_time"] + VALIDITY_WINDOW_AFTER,
    )
    df["time_diff_hours"] = get_hour_difference(df["sofa_time"], df["suspicion_time"])

    late_enough = df["sepsis_time"] >= df["intime"] + MIN_ONSET_DELAY
    df = df[df["time_window_valid"] & late_enough]

    df = df.sort_values(["stay_id", "sepsis_time"]).drop_duplicates("stay_id", keep="first")

    logger.info(f"{len(df)} stays with a qualifying sepsis onset")
    logger.log_end("derive_sepsis_onsets")
    return df[ONSET_COLUMNS].reset_index(drop=True)


def sepsis_label(hour: pd.Timestamp, intime: pd.Timestamp, sepsis_time: Optional[pd.Timestamp]) -> int:
    """
    Label of one hourly row.

    Example:
        >>> t0 = pd.Timestamp("2150-01-01 00:00")
        >>> sepsis_label(t0 + pd.Timedelta(hours=4), t0, t0 + pd.Timedelta(hours=10))
        1
    """
    if sepsis_time is None or pd.isna(sepsis_time):
        return 0
    return int(hour >= sepsis_time - LABEL_LOOKBACK and hour >= intime + MIN_ONSET_DELAY)


def assign_sepsis_labels(rows: pd.DataFrame, onsets: pd.DataFrame) -> pd.Series:
    """
    Vectorized ``sepsis_label`` over hourly rows.

    Args:
        rows (pd.DataFrame): hourly rows with stay_id, hour and intime
        onsets (pd.DataFrame): output of derive_sepsis_onsets

    Returns:
        pd.Series: 0/1 labels aligned with ``rows``
    """
    if onsets.empty:
        return pd.Series(0, index=rows.index, name="sepsislabel")

    sepsis_time = pd.to_datetime(rows["stay_id"].map(onsets.set_index("stay_id")["sepsis_time"]))
    positive = (
        sepsis_time.notna()
        & (rows["hour"] >= sepsis_time - LABEL_LOOKBACK)
        & (rows["hour"] >= rows["intime"] + MIN_ONSET_DELAY)
    )
    return pd.Series(np.where(positive, 1, 0), index=rows.index, name="sepsislabel")
