"""
Hourly Reduction of Vital Sign and Laboratory Events

This module turns raw per-variable event streams into one value per
(stay, hour, variable).

Key processing steps:
- Stay resolution: vitals carry their stay id, lab events are matched to the
  cohort stays of the same admission
- Window restriction: only events with intime <= charttime <= outtime
- Quality filtering using clinically reasonable value ranges, with unit
  conversion (Fahrenheit to Celsius) before the range check where needed
- Temporal bucketing by clock hour (charttime truncated to the hour)
- Median reduction of all valid readings in each hour

Out-of-range readings are treated as absent. An hour with no valid reading
for a variable leaves that variable null; an hour with no valid reading for
any variable of a group produces no row.
"""
from typing import Iterator, List, Tuple

import pandas as pd

from .logging_utils import logger
from .utils import median, truncate_to_hour

KEY_COLUMNS = ["stay_id", "hour"]
EVENT_COLUMNS = ["stay_id", "charttime", "itemid", "valuenum"]


def iter_metadata_groups(metadata: List[dict]) -> Iterator[Tuple[int, List[dict]]]:
    """Yield (group, entries) pairs in ascending group order."""
    for group in sorted({entry["group"] for entry in metadata}):
        yield group, [entry for entry in metadata if entry["group"] == group]


def get_metadata_itemids(metadata: List[dict]) -> List[int]:
    return [entry["itemid"] for entry in metadata]


def get_metadata_names(metadata: List[dict]) -> List[str]:
    """Feature names in first-appearance order."""
    return list(dict.fromkeys(entry["name"] for entry in metadata))


def attach_lab_stay_ids(labs: pd.DataFrame, cohort: pd.DataFrame) -> pd.DataFrame:
    """
    Resolve lab events to ICU stays.

    A lab event belongs to every cohort stay of the same (subject_id, hadm_id)
    whose [intime, outtime] contains its charttime. Events that match no stay
    are dropped.

    Returns:
        pd.DataFrame: events with EVENT_COLUMNS
    """
    stays = cohort[["stay_id", "subject_id", "hadm_id", "intime", "outtime"]]
    labs = labs.reset_index(drop=True)
    df = labs.reset_index().merge(stays, on=["subject_id", "hadm_id"], how="inner")
    df = df[df["charttime"].between(df["intime"], df["outtime"])]

    unresolved = len(labs) - df["index"].nunique()
    if unresolved > 0:
        logger.info(f"labs: {unresolved} events outside every cohort stay")

    return df[EVENT_COLUMNS].reset_index(drop=True)


def restrict_to_stay_window(events: pd.DataFrame, cohort: pd.DataFrame) -> pd.DataFrame:
    """Keep events of cohort stays whose charttime lies in [intime, outtime]."""
    df = events.merge(cohort[["stay_id", "intime", "outtime"]], on="stay_id", how="inner")
    df = df[df["charttime"].between(df["intime"], df["outtime"])]
    return df[EVENT_COLUMNS].reset_index(drop=True)


def apply_metadata_bounds(events: pd.DataFrame, metadata: List[dict]) -> pd.DataFrame:
    """
    Map itemids to feature names and keep only physiologically valid values.

    Entries with a ``convert`` function are first range checked on the raw
    value (``source_min``/``source_max``), converted, and then checked
    against ``min``/``max`` like every other entry.

    Returns:
        pd.DataFrame: columns stay_id, charttime, name, value
    """
    meta = pd.DataFrame(metadata).reindex(columns=["itemid", "name", "min", "max", "source_min", "source_max"])
    df = events.merge(meta, on="itemid", how="inner")

    raw_ok = df["source_min"].isna() | df["valuenum"].between(df["source_min"], df["source_max"])
    df = df[raw_ok].copy()

    df["value"] = df["valuenum"].astype(float)
    for entry in metadata:
        if "convert" in entry:
            mask = df["itemid"] == entry["itemid"]
            df.loc[mask, "value"] = entry["convert"](df.loc[mask, "valuenum"].astype(float))

    df = df[df["value"].between(df["min"], df["max"])]
    return df[["stay_id", "charttime", "name", "value"]].reset_index(drop=True)


def reduce_hourly(events: pd.DataFrame, cohort: pd.DataFrame, metadata: List[dict]) -> pd.DataFrame:
    """
    Reduce one group's events to hourly medians per stay.

    Args:
        events (pd.DataFrame): events with EVENT_COLUMNS (stay ids resolved)
        cohort (pd.DataFrame): eligible stays with intime/outtime
        metadata (List[dict]): entries of one co-aggregated group

    Returns:
        pd.DataFrame: one row per (stay_id, hour) with at least one valid
            reading, one column per feature name of the group
    """
    names = get_metadata_names(metadata)

    windowed = restrict_to_stay_window(events, cohort)
    df = apply_metadata_bounds(windowed, metadata)
    discarded = len(windowed) - len(df)
    if discarded > 0:
        logger.info(f"{discarded} readings out of range for {names}")
    if df.empty:
        return pd.DataFrame(columns=KEY_COLUMNS + names)

    df["hour"] = truncate_to_hour(df["charttime"])

    reduced = df.groupby(KEY_COLUMNS + ["name"])["value"].agg(median)
    table = reduced.unstack("name").reindex(columns=names)
    table.columns.name = None
    table = table.reset_index()
    table[names] = table[names].astype(float)
    return table

