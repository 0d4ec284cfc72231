"""
Hourly Antibiotic Exposure

Administration intervals are expanded into the clock hours they cover and
summarized per (stay, hour):
- antibiotic_flag: 1 for every hour covered by at least one administration
- antibiotic_count: number of distinct substances active in that hour
- antibiotics_used: sorted distinct substance names joined with "; "

Record selection, per stay:
- the administration must overlap the ICU stay (starttime < outtime and
  stop > intime, where a missing stoptime means "until outtime")
- starttime must lie within +/- tolerance hours of the stay bounds

Covered hours run from the truncated max(starttime, intime) to the truncated
min(stop, outtime), both inclusive.
"""
import pandas as pd

from .logging_utils import logger
from .utils import HOUR, truncate_to_hour

ANTIBIOTIC_TOLERANCE_HOURS = 24
ANTIBIOTIC_NAME_SEPARATOR = "; "
ANTIBIOTIC_COLUMNS = ["antibiotic_flag", "antibiotic_count", "antibiotics_used"]


def join_antibiotic_names(names: pd.Series) -> str:
    return ANTIBIOTIC_NAME_SEPARATOR.join(sorted(set(names)))


def expand_administration_hours(antibiotics: pd.DataFrame, cohort: pd.DataFrame,
                                tolerance_hours: int = ANTIBIOTIC_TOLERANCE_HOURS) -> pd.DataFrame:
    """
    One row per (stay_id, antibiotic, hour) covered by a qualifying administration.

    Args:
        antibiotics (pd.DataFrame): cleaned antibiotic feed
        cohort (pd.DataFrame): eligible stays with intime/outtime
        tolerance_hours (int): selection window around the stay bounds

    Returns:
        pd.DataFrame: columns stay_id, antibiotic, hour
    """
    tolerance = pd.Timedelta(hours=tolerance_hours)

    df = antibiotics.dropna(subset=["antibiotic"])
    df = df.merge(cohort[["stay_id", "intime", "outtime"]], on="stay_id", how="inner")

    stop = df["stoptime"].fillna(df["outtime"])
    overlaps = (df["starttime"] < df["outtime"]) & (stop > df["intime"])
    near_stay = df["starttime"].between(df["intime"] - tolerance, df["outtime"] + tolerance)
    keep = overlaps & near_stay

    df = df[keep].copy()
    if df.empty:
        return pd.DataFrame(columns=["stay_id", "antibiotic", "hour"])

    first_hour = truncate_to_hour(df[["starttime", "intime"]].max(axis=1))
    last_hour = truncate_to_hour(pd.concat([stop[keep], df["outtime"]], axis=1).min(axis=1))

    df["hour"] = [
        list(pd.date_range(first, last, freq=HOUR))
        for first, last in zip(first_hour, last_hour)
    ]
    df = df.explode("hour").dropna(subset=["hour"])
    df["hour"] = pd.to_datetime(df["hour"])

    return df[["stay_id", "antibiotic", "hour"]].reset_index(drop=True)


def get_antibiotic_exposure(antibiotics: pd.DataFrame, cohort: pd.DataFrame,
                            tolerance_hours: int = ANTIBIOTIC_TOLERANCE_HOURS) -> pd.DataFrame:
    """
    Summarize antibiotic exposure per (stay_id, hour).

    Returns:
        pd.DataFrame: stay_id, hour, antibiotic_flag, antibiotic_count,
            antibiotics_used; only hours with at least one active antibiotic
    """
    logger.log_start("get_antibiotic_exposure")

    hours = expand_administration_hours(antibiotics, cohort, tolerance_hours)
    if hours.empty:
        logger.log_end("get_antibiotic_exposure")
        return pd.DataFrame(columns=["stay_id", "hour"] + ANTIBIOTIC_COLUMNS)

    grouped = hours.groupby(["stay_id", "hour"])["antibiotic"]
    exposure = grouped.agg(antibiotic_count="nunique", antibiotics_used=join_antibiotic_names).reset_index()
    exposure["antibiotic_flag"] = 1
    exposure["antibiotic_count"] = exposure["antibiotic_count"].astype(int)

    logger.info(f"{len(exposure)} stay-hours with antibiotic exposure")
    logger.log_end("get_antibiotic_exposure")
    return exposure[["stay_id", "hour"] + ANTIBIOTIC_COLUMNS]
