"""
Time and aggregation helpers shared across the pipeline.

This module provides helper functions for time differences, hourly window
keys and the median reduction used by the variable reducers.
"""
from typing import Iterable

import numpy as np
import pandas as pd

HOUR = pd.Timedelta(hours=1)


def get_hour_difference(end: pd.Series, start: pd.Series) -> pd.Series:
    """
    Calculate the difference between two datetime series in hours.

    Args:
        end (pd.Series): Later datetime series (minuend)
        start (pd.Series): Earlier datetime series (subtrahend)

    Returns:
        pd.Series: Time difference in hours as float values

    Example:
        >>> time1 = pd.Series([pd.Timestamp('2150-01-02 12:30:00')])
        >>> time2 = pd.Series([pd.Timestamp('2150-01-01 12:00:00')])
        >>> get_hour_difference(time1, time2)
        0    24.5
        dtype: float64
    """
    return (end - start) / HOUR


def get_year_difference(end: pd.Series, start: pd.Series) -> pd.Series:
    """
    Calculate the difference between two series in calendar years.

    Either series may hold datetimes or plain year numbers. Only the year
    counts, months and days are ignored.

    Args:
        end (pd.Series): Later datetimes or years (minuend)
        start (pd.Series): Earlier datetimes or years (subtrahend)

    Returns:
        pd.Series: Year difference

    Example:
        >>> admittime = pd.Series([pd.Timestamp('2155-06-01 08:00:00')])
        >>> get_year_difference(admittime, pd.Series([2150]))
        0    5
        dtype: int64
    """
    return _year(end) - _year(start)


def _year(values: pd.Series) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(values):
        return values.dt.year
    return values


def truncate_to_hour(timestamps: pd.Series) -> pd.Series:
    """Truncate timestamps to the start of their clock hour (the hourly window key)."""
    return timestamps.dt.floor("h")


def median(values: Iterable[float]) -> float:
    """
    Median of the non-null values by sort-and-midpoint.

    Odd counts return the middle value, even counts the mean of the two middle
    values. Returns NaN when there is nothing to reduce. The result does not
    depend on the order of ``values``.

    Example:
        >>> median([72.0, 68.0])
        70.0
    """
    ordered = sorted(float(v) for v in values if pd.notna(v))
    n = len(ordered)
    if n == 0:
        return np.nan
    mid = n // 2
    if n % 2 == 1:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2.0
