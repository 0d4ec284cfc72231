"""
Vital sign metadata for the hourly reducer.

Each entry maps one MIMIC-IV chartevents itemid to a feature name, the
co-aggregation group it is extracted with, and its physiologically valid
closed range. Several itemids may feed one feature (invasive and
non-invasive monitoring). Bounds apply to the value in the feature's unit;
entries with ``convert`` are range checked on the raw value against
``source_min``/``source_max`` first, converted, then checked against
``min``/``max``.
"""
from typing import List


def fahrenheit_to_celsius(values):
    return (values - 32) * 5.0 / 9.0


VITAL_METADATA = [
    # Group 1: heart rate, oxygen saturation, temperature
    {'itemid': 220045, 'name': 'hr', 'group': 1, 'min': 20, 'max': 300},         # Heart rate (bpm)
    {'itemid': 220227, 'name': 'o2sat', 'group': 1, 'min': 0, 'max': 100},       # SpO2 (arterial, %)
    {'itemid': 220277, 'name': 'o2sat', 'group': 1, 'min': 0, 'max': 100},       # SpO2 (pulse oximetry, %)
    {'itemid': 223762, 'name': 'temp', 'group': 1, 'min': 30, 'max': 45},        # Temperature (Celsius)
    {'itemid': 223761, 'name': 'temp', 'group': 1, 'min': 30, 'max': 45,         # Temperature (Fahrenheit)
     'source_min': 86, 'source_max': 113, 'convert': fahrenheit_to_celsius},
    # Group 2: blood pressure
    {'itemid': 220050, 'name': 'sbp', 'group': 2, 'min': 40, 'max': 300},        # Arterial systolic (mmHg)
    {'itemid': 220179, 'name': 'sbp', 'group': 2, 'min': 40, 'max': 300},        # Non-invasive systolic (mmHg)
    {'itemid': 220051, 'name': 'dbp', 'group': 2, 'min': 20, 'max': 200},        # Arterial diastolic (mmHg)
    {'itemid': 220180, 'name': 'dbp', 'group': 2, 'min': 20, 'max': 200},        # Non-invasive diastolic (mmHg)
    {'itemid': 220052, 'name': 'map', 'group': 2, 'min': 20, 'max': 200},        # Arterial mean (mmHg)
    {'itemid': 220181, 'name': 'map', 'group': 2, 'min': 20, 'max': 200},        # Non-invasive mean (mmHg)
    # Group 3: respiratory rate, end-tidal CO2, FiO2
    {'itemid': 220210, 'name': 'resp', 'group': 3, 'min': 0, 'max': 70},         # Respiratory rate (insp/min)
    {'itemid': 224690, 'name': 'resp', 'group': 3, 'min': 0, 'max': 70},         # Respiratory rate total
    {'itemid': 228640, 'name': 'etco2', 'group': 3, 'min': 0, 'max': 100},       # EtCO2 (mmHg)
    {'itemid': 223835, 'name': 'fio2', 'group': 3, 'min': 21, 'max': 100},       # Inspired O2 fraction (%)
]

# Vital feature columns in output order
VITAL_COLUMNS: List[str] = ['hr', 'o2sat', 'temp', 'sbp', 'dbp', 'resp', 'etco2', 'map', 'fio2']
