"""
Data Quality Reports over the Final Hourly Table

Read-only aggregations used to validate an extraction run:
- sepsis label summary and early-label validation (expected 0)
- antibiotic usage, its relationship to the label, and the most frequent
  antibiotic combinations
- time-window consistency against the stay bounds
- final dataset summary

Percentages are rounded to 2 decimals. A rate over zero rows is NaN.
"""
from typing import Dict, Union

import numpy as np
import pandas as pd

from .logging_utils import logger
from .sepsis_labels import MIN_ONSET_DELAY

TOP_COMBINATIONS = 10

Report = Union[Dict[str, object], pd.DataFrame]


def safe_percentage(numerator, denominator) -> float:
    """
    ``numerator / denominator`` in percent, rounded to 2 decimals.

    Example:
        >>> safe_percentage(1, 3)
        33.33
        >>> safe_percentage(0, 0)
        nan
    """
    if denominator == 0:
        return np.nan
    return round(float(numerator) * 100.0 / float(denominator), 2)


def _stays_where(df: pd.DataFrame, mask: pd.Series) -> int:
    return int(df.loc[mask, "stay_id"].nunique())


def sepsis_label_summary(df: pd.DataFrame) -> Dict[str, object]:
    positive = df[df["sepsislabel"] == 1]
    return {
        "total_sepsis_hours": len(positive),
        "sepsis_stays": int(positive["stay_id"].nunique()),
        "earliest_positive_label": positive["hour"].min() if len(positive) else pd.NaT,
        "latest_positive_label": positive["hour"].max() if len(positive) else pd.NaT,
    }


def early_label_validation(df: pd.DataFrame, cohort: pd.DataFrame) -> Dict[str, object]:
    """Positive rows before intime + 4h; anything but 0 is a labeling bug."""
    rows = df.merge(cohort[["stay_id", "intime"]], on="stay_id", how="inner")
    early = (rows["sepsislabel"] == 1) & (rows["hour"] < rows["intime"] + MIN_ONSET_DELAY)
    return {"invalid_early_labels": int(early.sum())}


def antibiotic_validation(df: pd.DataFrame) -> Dict[str, object]:
    with_antibiotics = df["antibiotic_flag"] == 1
    return {
        "total_records": len(df),
        "records_with_antibiotics": int(df["antibiotic_flag"].sum()),
        "stays_with_antibiotics": _stays_where(df, with_antibiotics),
        "antibiotic_usage_rate_percent": safe_percentage(df["antibiotic_flag"].sum(), len(df)),
        "max_concurrent_antibiotics": int(df["antibiotic_count"].max()) if len(df) else 0,
    }


def antibiotic_label_relationship(df: pd.DataFrame) -> pd.DataFrame:
    rows = []
    for label, group in df.groupby("sepsislabel", sort=True):
        rows.append({
            "sepsislabel": int(label),
            "total_records": len(group),
            "records_with_antibiotics": int(group["antibiotic_flag"].sum()),
            "antibiotic_rate_percent": safe_percentage(group["antibiotic_flag"].sum(), len(group)),
        })
    return pd.DataFrame(rows, columns=[
        "sepsislabel", "total_records", "records_with_antibiotics", "antibiotic_rate_percent",
    ])


def time_window_consistency(df: pd.DataFrame, cohort: pd.DataFrame) -> Dict[str, object]:
    rows = df.merge(cohort[["stay_id", "intime", "outtime"]], on="stay_id", how="inner")
    valid = int(((rows["hour"] >= rows["intime"]) & (rows["hour"] <= rows["outtime"])).sum())
    return {
        "total_records": len(rows),
        "valid_time_records": valid,
        "time_consistency_percentage": safe_percentage(valid, len(rows)),
    }


def final_data_summary(df: pd.DataFrame) -> Dict[str, object]:
    return {
        "total_stays": int(df["stay_id"].nunique()),
        "total_records": len(df),
        "positive_labels": int(df["sepsislabel"].sum()),
        "sepsis_stays": _stays_where(df, df["sepsislabel"] == 1),
        "positive_rate_percent": safe_percentage(df["sepsislabel"].sum(), len(df)),
        "antibiotic_records": int(df["antibiotic_flag"].sum()),
        "antibiotic_stays": _stays_where(df, df["antibiotic_flag"] == 1),
        "antibiotic_rate_percent": safe_percentage(df["antibiotic_flag"].sum(), len(df)),
    }


def antibiotic_usage_details(df: pd.DataFrame) -> pd.DataFrame:
    """Rows and stays per concurrent antibiotic count, over hours with antibiotics."""
    exposed = df[df["antibiotic_flag"] == 1]
    details = exposed.groupby("antibiotic_count").agg(
        record_count=("stay_id", "size"),
        stay_count=("stay_id", "nunique"),
    ).reset_index()
    details["percentage"] = [safe_percentage(n, len(exposed)) for n in details["record_count"]]
    return details.sort_values("antibiotic_count").reset_index(drop=True)


def top_antibiotic_combinations(df: pd.DataFrame, n: int = TOP_COMBINATIONS) -> pd.DataFrame:
    used = df[df["antibiotics_used"].notna()]
    combos = used.groupby("antibiotics_used").agg(
        usage_count=("stay_id", "size"),
        unique_stays=("stay_id", "nunique"),
    ).reset_index()
    combos["percentage"] = [safe_percentage(count, len(used)) for count in combos["usage_count"]]
    combos = combos.sort_values(["usage_count", "antibiotics_used"], ascending=[False, True])
    return combos.head(n).reset_index(drop=True)


def build_report(df: pd.DataFrame, cohort: pd.DataFrame) -> Dict[str, Report]:
    """
    Run every quality check on the final hourly table.

    Args:
        df (pd.DataFrame): final hourly rows
        cohort (pd.DataFrame): cohort the rows were built from (stay bounds)

    Returns:
        Dict[str, Report]: report name -> dict of scalars or DataFrame
    """
    logger.log_start("build_report")
    report = {
        "sepsis_label_summary": sepsis_label_summary(df),
        "early_label_validation": early_label_validation(df, cohort),
        "antibiotic_validation": antibiotic_validation(df),
        "antibiotic_label_relationship": antibiotic_label_relationship(df),
        "time_window_consistency": time_window_consistency(df, cohort),
        "final_data_summary": final_data_summary(df),
        "antibiotic_usage_details": antibiotic_usage_details(df),
        "top_antibiotic_combinations": top_antibiotic_combinations(df),
    }
    logger.log_end("build_report")
    return report


def log_report(report: Dict[str, Report]) -> None:
    for name, result in report.items():
        logger.info(f"--- {name} ---")
        if isinstance(result, pd.DataFrame):
            for line in result.to_string(index=False).splitlines():
                logger.info(line)
        else:
            for key, value in result.items():
                logger.info(f"{key}: {value}")

    invalid = report["early_label_validation"]["invalid_early_labels"]
    if invalid:
        logger.warning(f"{invalid} positive labels before intime + 4h")
