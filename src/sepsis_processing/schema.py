"""
Column contracts for the input feeds and row-level cleaning.

A feed missing a declared column, or holding an unreadable flag value,
aborts the run (SchemaError). Rows that cannot be keyed (missing join key or
unparseable timestamp) are dropped and counted, never propagated.
"""
from typing import Dict, List

import pandas as pd

from .logging_utils import logger


class SchemaError(ValueError):
    """Raised when an input feed lacks a required column or holds an unreadable flag."""


# Required columns per feed, in the order the sources return them
FEED_COLUMNS: Dict[str, List[str]] = {
    "stays": [
        "stay_id", "subject_id", "hadm_id", "first_careunit", "intime", "outtime",
        "gender", "anchor_age", "anchor_year", "admittime",
    ],
    "vitals": ["stay_id", "charttime", "itemid", "valuenum"],
    "labs": ["subject_id", "hadm_id", "charttime", "itemid", "valuenum"],
    "antibiotics": ["stay_id", "antibiotic", "starttime", "stoptime"],
    "sepsis": ["stay_id", "suspected_infection_time", "sofa_time", "sepsis3"],
}

# Columns that must hold a timestamp for the row to be usable
FEED_TIMESTAMPS: Dict[str, List[str]] = {
    "stays": ["intime", "outtime", "admittime"],
    "vitals": ["charttime"],
    "labs": ["charttime"],
    "antibiotics": ["starttime"],
    "sepsis": [],
}

# Timestamps that may legitimately be null
FEED_OPTIONAL_TIMESTAMPS: Dict[str, List[str]] = {
    "antibiotics": ["stoptime"],
    "sepsis": ["suspected_infection_time", "sofa_time"],
}

# Numeric columns, malformed values are coerced to NaN
FEED_NUMERIC: Dict[str, List[str]] = {
    "stays": ["anchor_age", "anchor_year"],
    "vitals": ["valuenum"],
    "labs": ["valuenum"],
}

# Boolean flags, exports spell them as t/f, true/false or 1/0; null reads as false
FEED_FLAGS: Dict[str, List[str]] = {
    "sepsis": ["sepsis3"],
}

FLAG_VALUES = {
    "t": True, "true": True, "1": True, "1.0": True,
    "f": False, "false": False, "0": False, "0.0": False,
}

# Join keys that must be present for the row to be usable
FEED_KEYS: Dict[str, List[str]] = {
    "stays": ["stay_id", "subject_id", "hadm_id"],
    "vitals": ["stay_id", "itemid"],
    "labs": ["subject_id", "hadm_id", "itemid"],
    "antibiotics": ["stay_id"],
    "sepsis": ["stay_id"],
}


def validate_columns(df: pd.DataFrame, feed: str) -> None:
    """
    Check that ``df`` carries every column declared for ``feed``.

    Raises:
        SchemaError: listing the missing columns
    """
    missing = [col for col in FEED_COLUMNS[feed] if col not in df.columns]
    if missing:
        raise SchemaError(f"Feed '{feed}' is missing required columns: {missing}")


def parse_flag(values: pd.Series, feed: str) -> pd.Series:
    """
    Read a boolean flag column spelled any way in FLAG_VALUES.

    Raises:
        SchemaError: listing the values that are not a recognized spelling

    Example:
        >>> parse_flag(pd.Series(['t', 'f', None, 1]), 'sepsis').tolist()
        [True, False, False, True]
    """
    parsed = values.map(lambda v: False if pd.isna(v) else FLAG_VALUES.get(str(v).strip().lower()))
    unknown = values[parsed.isna()]
    if len(unknown):
        raise SchemaError(
            f"Feed '{feed}' column '{values.name}' holds unrecognized flag values: "
            f"{sorted(unknown.astype(str).unique())}"
        )
    return parsed.astype(bool)


def clean_feed(df: pd.DataFrame, feed: str) -> pd.DataFrame:
    """
    Validate and normalize one feed.

    - lowercases column names and keeps the declared columns
    - parses timestamp columns, coercing malformed values to NaT
    - coerces numeric columns, malformed values become NaN
    - reads flag columns as booleans (unrecognized spellings raise SchemaError)
    - drops rows without a join key, a required timestamp or a value

    Returns:
        pd.DataFrame: cleaned copy of ``df`` with a fresh index
    """
    df = df.rename(columns=str.lower)
    validate_columns(df, feed)
    df = df[FEED_COLUMNS[feed]].copy()

    for col in FEED_TIMESTAMPS[feed] + FEED_OPTIONAL_TIMESTAMPS.get(feed, []):
        df[col] = pd.to_datetime(df[col], errors="coerce")
    for col in FEED_NUMERIC.get(feed, []):
        df[col] = pd.to_numeric(df[col], errors="coerce")
    for col in FEED_FLAGS.get(feed, []):
        df[col] = parse_flag(df[col], feed)

    required = FEED_KEYS[feed] + FEED_TIMESTAMPS[feed] + FEED_NUMERIC.get(feed, [])
    usable = df[required].notna().all(axis=1)
    dropped = int((~usable).sum())
    if dropped:
        logger.warning(f"{feed}: dropped {dropped} rows with a missing key, value or malformed timestamp")

    df = df[usable].reset_index(drop=True)
    for key in FEED_KEYS[feed]:
        df[key] = df[key].astype("int64")
    return df
