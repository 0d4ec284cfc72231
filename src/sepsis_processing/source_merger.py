"""
Merging of Independently Aggregated Hourly Tables

Vitals, labs and antibiotic exposure (and the sub-groups inside vitals and
labs) are each reduced to their own (stay_id, hour) keyed table. This module
unions them into one table with exactly one row per key present in any
input.

The merge keys every row by (stay_id, hour) in a sparse map whose values hold
the feature fields contributed so far. A key is never formed by coalescing
the keys of a subset of the inputs, so the result holds the full set of
distinct hours across all sources regardless of how the inputs overlap, and
the result does not depend on the order or grouping of the inputs.
"""
from typing import Dict, List, Sequence, Tuple

import pandas as pd

from .timeseries_data import KEY_COLUMNS


def merge_hourly_tables(tables: Sequence[pd.DataFrame]) -> pd.DataFrame:
    """
    Full outer union of hourly tables on (stay_id, hour).

    Args:
        tables: hourly tables keyed by KEY_COLUMNS with disjoint feature columns

    Returns:
        pd.DataFrame: KEY_COLUMNS followed by every feature column in input
            order, sorted by key; a field is null when no input supplied it

    Raises:
        ValueError: if two inputs share a feature column or one input holds a
            key twice
    """
    columns: List[str] = []
    merged: Dict[Tuple[int, pd.Timestamp], dict] = {}

    for table in tables:
        features = [col for col in table.columns if col not in KEY_COLUMNS]
        shared = sorted(set(features) & set(columns))
        if shared:
            raise ValueError(f"Feature columns supplied by more than one table: {shared}")
        columns.extend(features)

        seen = set()
        for record in table.to_dict("records"):
            key = (int(record.pop("stay_id")), pd.Timestamp(record.pop("hour")))
            if key in seen:
                raise ValueError(f"Duplicate hourly key {key}")
            seen.add(key)
            merged.setdefault(key, {}).update(record)

    rows = [
        {"stay_id": stay_id, "hour": hour, **merged[(stay_id, hour)]}
        for stay_id, hour in sorted(merged)
    ]
    df = pd.DataFrame(rows, columns=KEY_COLUMNS + columns)
    df["stay_id"] = df["stay_id"].astype("int64")
    df["hour"] = pd.to_datetime(df["hour"])
    return df
