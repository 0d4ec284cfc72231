"""
Unit tests for the hourly sepsis dataset stages

Covers, stage by stage:
- Time and median helpers
- Cohort selection criteria and stay attributes
- Hourly reduction of vitals and labs (range filtering, unit conversion)
- Hourly antibiotic exposure
- Merge of hourly tables on (stay_id, hour)
- Sepsis onset derivation and hourly labels
- Row assembly (MAP fallback, antibiotic defaults, stay bounds)
- Feed schema checks, configuration and reporting
"""
import json

import numpy as np
import pandas as pd
import pytest

from sepsis_processing.antibiotics_data import expand_administration_hours, get_antibiotic_exposure
from sepsis_processing.cohort_data import MAX_AGE, MIN_AGE, MIN_ICU_LOS_HOURS, build_cohort
from sepsis_processing.config import PipelineConfig, load_config
from sepsis_processing.labs_data import LAB_COLUMNS, LAB_METADATA
from sepsis_processing.reporting import (
    antibiotic_validation,
    final_data_summary,
    safe_percentage,
    top_antibiotic_combinations,
)
from sepsis_processing.row_assembler import FINAL_COLUMNS, assemble_hourly_rows, impute_mean_arterial_pressure
from sepsis_processing.schema import SchemaError, clean_feed
from sepsis_processing.sepsis_labels import ONSET_COLUMNS, assign_sepsis_labels, derive_sepsis_onsets, sepsis_label
from sepsis_processing.source_merger import merge_hourly_tables
from sepsis_processing.timeseries_data import attach_lab_stay_ids, reduce_hourly
from sepsis_processing.utils import get_hour_difference, get_year_difference, median
from sepsis_processing.vitals_data import VITAL_COLUMNS, VITAL_METADATA

T0 = pd.Timestamp("2150-01-01 10:00")


def _ts(s: str) -> pd.Timestamp:
    """Helper to create timestamps."""
    return pd.Timestamp(s)


def _hours(n: float) -> pd.Timedelta:
    return pd.Timedelta(hours=n)


def _stay(stay_id=1, subject_id=10, hadm_id=100, intime=T0, los_hours=24,
          careunit="Medical Intensive Care Unit (MICU)", anchor_age=60):
    """One row of the stays feed."""
    return {
        "stay_id": stay_id,
        "subject_id": subject_id,
        "hadm_id": hadm_id,
        "first_careunit": careunit,
        "intime": intime,
        "outtime": intime + _hours(los_hours),
        "gender": "F",
        "anchor_age": anchor_age,
        "anchor_year": 2150,
        "admittime": intime - _hours(2),
    }


def _cohort(*stays) -> pd.DataFrame:
    return build_cohort(clean_feed(pd.DataFrame(list(stays) or [_stay()]), "stays"))


def _vitals(rows) -> pd.DataFrame:
    return clean_feed(pd.DataFrame(rows, columns=["stay_id", "charttime", "itemid", "valuenum"]), "vitals")


def _group(metadata, group):
    return [entry for entry in metadata if entry["group"] == group]


class TestUtils:
    """Time and median helpers."""

    def test_median_odd_and_even_counts(self):
        assert median([3.0, 1.0, 2.0]) == 2.0
        assert median([72.0, 68.0]) == 70.0
        assert median([4.0, 1.0, 3.0, 2.0]) == 2.5

    def test_median_ignores_nulls_and_order(self):
        assert median([np.nan, 5.0, 1.0]) == median([1.0, 5.0]) == 3.0
        assert median([9.0, 1.0, 5.0]) == median([5.0, 9.0, 1.0])

    def test_median_of_nothing_is_nan(self):
        assert np.isnan(median([]))
        assert np.isnan(median([np.nan]))

    def test_hour_difference(self):
        result = get_hour_difference(pd.Series([_ts("2150-01-02 12:30")]), pd.Series([_ts("2150-01-01 12:00")]))
        assert result.iloc[0] == 24.5

    def test_year_difference(self):
        admittime = pd.Series([_ts("2155-06-01 08:00"), _ts("2150-12-31 23:00")])
        assert get_year_difference(admittime, pd.Series([2150, 2150])).tolist() == [5, 0]
        assert get_year_difference(admittime, pd.Series([_ts("2149-01-01"), _ts("2150-01-01")])).tolist() == [6, 0]


class TestCohort:
    """Cohort inclusion criteria and stay-level attributes."""

    def test_constants(self):
        assert MIN_AGE == 18
        assert MAX_AGE == 89
        assert MIN_ICU_LOS_HOURS == 8

    def test_length_of_stay_bound(self):
        cohort = _cohort(
            _stay(stay_id=1, los_hours=8),
            _stay(stay_id=2, subject_id=20, los_hours=7.5),
        )
        assert cohort["stay_id"].tolist() == [1]
        assert cohort.loc[0, "iculos"] == 8.0

    def test_age_bounds_use_admission_year_offset(self):
        cohort = _cohort(
            _stay(stay_id=1, subject_id=1, anchor_age=18),
            _stay(stay_id=2, subject_id=2, anchor_age=17),
            _stay(stay_id=3, subject_id=3, anchor_age=89),
            _stay(stay_id=4, subject_id=4, anchor_age=88, intime=_ts("2152-03-01 10:00")),
        )
        assert cohort["stay_id"].tolist() == [1, 3]

    def test_age_shift(self):
        cohort = _cohort(_stay(anchor_age=50, intime=_ts("2155-06-01 10:00")))
        assert cohort.loc[0, "age"] == 55

    def test_stay_attributes(self):
        cohort = _cohort(
            _stay(stay_id=1, subject_id=1),
            _stay(stay_id=2, subject_id=2, careunit="Surgical Intensive Care Unit (SICU)"),
            _stay(stay_id=3, subject_id=3, careunit="Cardiac Vascular Intensive Care Unit (CVICU)"),
        )
        flags = cohort.set_index("stay_id")[["unit1", "unit2"]]
        assert flags.loc[1].tolist() == [1, 0]
        assert flags.loc[2].tolist() == [0, 1]
        assert flags.loc[3].tolist() == [0, 0]
        assert (cohort["hospadmtime"] == 2.0).all()

    def test_sorted_by_subject_then_stay(self):
        cohort = _cohort(
            _stay(stay_id=5, subject_id=2),
            _stay(stay_id=9, subject_id=1),
            _stay(stay_id=3, subject_id=2),
        )
        assert cohort["stay_id"].tolist() == [9, 3, 5]


class TestVariableReducer:
    """Hourly median reduction with physiological range filtering."""

    def setup_method(self):
        self.cohort = _cohort()

    def test_out_of_range_reading_excluded_from_median(self):
        events = _vitals([
            (1, T0 + pd.Timedelta(minutes=5), 220045, 72.0),
            (1, T0 + pd.Timedelta(minutes=20), 220045, 400.0),
            (1, T0 + pd.Timedelta(minutes=40), 220045, 68.0),
        ])
        table = reduce_hourly(events, self.cohort, _group(VITAL_METADATA, 1))
        assert len(table) == 1
        assert table.loc[0, "hour"] == T0
        assert table.loc[0, "hr"] == 70.0
        assert np.isnan(table.loc[0, "o2sat"])

    def test_fahrenheit_converted_before_range_check(self):
        events = _vitals([
            (1, T0 + _hours(1.2), 223761, 98.6),
            (1, T0 + _hours(1.5), 223762, 37.4),
            (1, T0 + _hours(2.2), 223761, 120.0),
            (1, T0 + _hours(3.2), 223762, 46.0),
        ])
        table = reduce_hourly(events, self.cohort, _group(VITAL_METADATA, 1))
        assert table["hour"].tolist() == [T0 + _hours(1)]
        assert table.loc[0, "temp"] == pytest.approx(37.2)

    def test_fahrenheit_raw_range_applies(self):
        # 80F converts to 26.7C, already outside the Fahrenheit source range
        events = _vitals([(1, T0 + _hours(1.1), 223761, 80.0)])
        table = reduce_hourly(events, self.cohort, _group(VITAL_METADATA, 1))
        assert table.empty
        assert list(table.columns) == ["stay_id", "hour", "hr", "o2sat", "temp"]

    def test_several_itemids_feed_one_variable(self):
        events = _vitals([
            (1, T0 + _hours(2.1), 220050, 110.0),
            (1, T0 + _hours(2.3), 220179, 130.0),
        ])
        table = reduce_hourly(events, self.cohort, _group(VITAL_METADATA, 2))
        assert table.loc[0, "sbp"] == 120.0

    def test_events_outside_stay_window_dropped(self):
        events = _vitals([
            (1, T0 - _hours(0.5), 220045, 90.0),
            (1, T0 + _hours(25), 220045, 90.0),
            (2, T0 + _hours(1), 220045, 90.0),
        ])
        table = reduce_hourly(events, self.cohort, _group(VITAL_METADATA, 1))
        assert table.empty

    def test_boundary_values_are_valid(self):
        events = _vitals([
            (1, T0 + _hours(1.1), 220045, 20.0),
            (1, T0 + _hours(2.1), 220045, 300.0),
        ])
        table = reduce_hourly(events, self.cohort, _group(VITAL_METADATA, 1))
        assert table["hr"].tolist() == [20.0, 300.0]

    def test_lab_events_resolved_to_stay_of_same_admission(self):
        cohort = _cohort(
            _stay(stay_id=1, hadm_id=100, intime=T0, los_hours=10),
            _stay(stay_id=2, hadm_id=100, intime=T0 + _hours(20), los_hours=10),
        )
        labs = clean_feed(pd.DataFrame({
            "subject_id": [10, 10, 10, 10],
            "hadm_id": [100, 100, 100, 999],
            "charttime": [T0 + _hours(1), T0 + _hours(22), T0 + _hours(15), T0 + _hours(1)],
            "itemid": [50813, 50813, 50813, 50813],
            "valuenum": [1.5, 2.5, 3.5, 4.5],
        }), "labs")
        events = attach_lab_stay_ids(labs, cohort)
        assert sorted(zip(events["stay_id"], events["valuenum"])) == [(1, 1.5), (2, 2.5)]

        table = reduce_hourly(events, cohort, _group(LAB_METADATA, 3))
        assert table.set_index("stay_id")["lactate"].to_dict() == {1: 1.5, 2: 2.5}

    def test_metadata_columns_match_output_columns(self):
        assert sorted(VITAL_COLUMNS) == sorted({entry["name"] for entry in VITAL_METADATA})
        assert sorted(LAB_COLUMNS) == sorted({entry["name"] for entry in LAB_METADATA})


class TestAntibiotics:
    """Hourly antibiotic exposure."""

    def setup_method(self):
        self.cohort = _cohort()

    def _antibiotics(self, rows):
        return clean_feed(pd.DataFrame(rows, columns=["stay_id", "antibiotic", "starttime", "stoptime"]), "antibiotics")

    def test_hours_and_distinct_names(self):
        antibiotics = self._antibiotics([
            (1, "vancomycin", T0 + _hours(0.5), T0 + _hours(3.25)),
            (1, "cefepime", T0 + _hours(2), T0 + _hours(2.5)),
            (1, "vancomycin", T0 + _hours(2.1), T0 + _hours(2.2)),
        ])
        exposure = get_antibiotic_exposure(antibiotics, self.cohort).set_index("hour")

        assert exposure.index.tolist() == [T0 + _hours(h) for h in range(4)]
        assert exposure.loc[T0 + _hours(2), "antibiotic_count"] == 2
        assert exposure.loc[T0 + _hours(2), "antibiotics_used"] == "cefepime; vancomycin"
        assert exposure.loc[T0 + _hours(3), "antibiotics_used"] == "vancomycin"
        assert (exposure["antibiotic_flag"] == 1).all()
        assert (exposure["antibiotic_count"] >= 1).all()

    def test_missing_stoptime_runs_until_outtime(self):
        antibiotics = self._antibiotics([(1, "meropenem", T0 + _hours(20), None)])
        hours = expand_administration_hours(antibiotics, self.cohort)
        assert hours["hour"].tolist() == [T0 + _hours(h) for h in range(20, 25)]

    def test_clipped_to_stay_bounds(self):
        antibiotics = self._antibiotics([(1, "cefazolin", T0 - _hours(3), T0 + _hours(1.5))])
        hours = expand_administration_hours(antibiotics, self.cohort)
        assert hours["hour"].tolist() == [T0, T0 + _hours(1)]

    def test_start_outside_tolerance_excluded(self):
        antibiotics = self._antibiotics([
            (1, "cefazolin", T0 - _hours(30), T0 + _hours(2)),
            (1, "linezolid", T0 + _hours(30), T0 + _hours(31)),
        ])
        assert get_antibiotic_exposure(antibiotics, self.cohort).empty

    def test_null_name_dropped(self):
        antibiotics = self._antibiotics([(1, None, T0 + _hours(1), T0 + _hours(2))])
        assert expand_administration_hours(antibiotics, self.cohort).empty


class TestSourceMerger:
    """Union of hourly tables on (stay_id, hour)."""

    def setup_method(self):
        self.vitals = pd.DataFrame({
            "stay_id": [1, 1, 2],
            "hour": [T0, T0 + _hours(1), T0],
            "hr": [80.0, 82.0, 90.0],
        })
        self.labs = pd.DataFrame({
            "stay_id": [1, 1],
            "hour": [T0 + _hours(1), T0 + _hours(2)],
            "lactate": [2.0, 2.5],
        })
        self.antibiotics = pd.DataFrame({
            "stay_id": [1, 2],
            "hour": [T0 + _hours(3), T0],
            "antibiotic_flag": [1, 1],
            "antibiotic_count": [1, 2],
            "antibiotics_used": ["vancomycin", "cefepime; vancomycin"],
        })

    def test_one_row_per_key_of_any_source(self):
        merged = merge_hourly_tables([self.vitals, self.labs, self.antibiotics])
        keys = list(zip(merged["stay_id"], merged["hour"]))
        assert keys == [
            (1, T0), (1, T0 + _hours(1)), (1, T0 + _hours(2)), (1, T0 + _hours(3)), (2, T0),
        ]
        row = merged.set_index(["stay_id", "hour"]).loc[(1, T0 + _hours(1))]
        assert row["hr"] == 82.0 and row["lactate"] == 2.0
        assert np.isnan(row["antibiotic_flag"])

    def test_order_and_grouping_independent(self):
        flat = merge_hourly_tables([self.vitals, self.labs, self.antibiotics])
        reordered = merge_hourly_tables([self.antibiotics, self.labs, self.vitals])
        left = merge_hourly_tables([merge_hourly_tables([self.vitals, self.labs]), self.antibiotics])
        right = merge_hourly_tables([self.vitals, merge_hourly_tables([self.labs, self.antibiotics])])

        for other in (reordered, left, right):
            pd.testing.assert_frame_equal(flat, other, check_like=True)

    def test_empty_table_contributes_nothing(self):
        empty = pd.DataFrame(columns=["stay_id", "hour", "sbp"])
        merged = merge_hourly_tables([self.vitals, empty])
        assert len(merged) == len(self.vitals)
        assert merged["sbp"].isna().all()

    def test_shared_feature_column_rejected(self):
        with pytest.raises(ValueError):
            merge_hourly_tables([self.vitals, self.vitals.iloc[:1]])

    def test_duplicate_key_rejected(self):
        duplicated = pd.concat([self.labs, self.labs.iloc[:1]], ignore_index=True)
        with pytest.raises(ValueError):
            merge_hourly_tables([duplicated])


class TestSepsisLabels:
    """Onset derivation and the hourly label rule."""

    def setup_method(self):
        self.cohort = _cohort()

    def _sepsis(self, suspicion, sofa, flag=True, stay_id=1):
        return clean_feed(pd.DataFrame({
            "stay_id": [stay_id],
            "suspected_infection_time": [suspicion],
            "sofa_time": [sofa],
            "sepsis3": [flag],
        }), "sepsis")

    def _rows(self, hours, stay_id=1):
        return pd.DataFrame({
            "stay_id": [stay_id] * len(hours),
            "hour": [T0 + _hours(h) for h in hours],
            "intime": [T0] * len(hours),
        })

    def test_onset_is_earlier_candidate(self):
        onsets = derive_sepsis_onsets(self._sepsis(T0 + _hours(10), T0 + _hours(12)), self.cohort)
        assert len(onsets) == 1
        assert onsets.loc[0, "sepsis_time"] == T0 + _hours(10)
        assert onsets.loc[0, "time_diff_hours"] == 2.0
        assert bool(onsets.loc[0, "time_window_valid"])

    def test_label_boundaries(self):
        onsets = derive_sepsis_onsets(self._sepsis(T0 + _hours(10), T0 + _hours(12)), self.cohort)
        labels = assign_sepsis_labels(self._rows([3, 4, 5]), onsets)
        assert labels.tolist() == [0, 1, 1]

        assert sepsis_label(T0 + _hours(3), T0, T0 + _hours(10)) == 0
        assert sepsis_label(T0 + _hours(4), T0, T0 + _hours(10)) == 1
        assert sepsis_label(T0 + _hours(5), T0, None) == 0

    def test_lookback_before_onset(self):
        onsets = derive_sepsis_onsets(self._sepsis(T0 + _hours(15), T0 + _hours(14)), self.cohort)
        labels = assign_sepsis_labels(self._rows(range(12)), onsets)
        # onset T0+14h, positive from T0+8h
        assert labels.tolist() == [0] * 8 + [1] * 4

    def test_early_onset_excluded(self):
        onsets = derive_sepsis_onsets(self._sepsis(T0 + _hours(2), T0 + _hours(3)), self.cohort)
        assert onsets.empty
        labels = assign_sepsis_labels(self._rows(range(24)), onsets)
        assert (labels == 0).all()

    def test_validity_window_is_inclusive(self):
        inside = derive_sepsis_onsets(self._sepsis(T0 + _hours(10), T0 + _hours(22)), self.cohort)
        assert len(inside) == 1
        before = derive_sepsis_onsets(self._sepsis(T0 + _hours(40), T0 + _hours(16)), self.cohort)
        assert len(before) == 1
        assert before.loc[0, "sepsis_time"] == T0 + _hours(16)

        after = derive_sepsis_onsets(self._sepsis(T0 + _hours(10), T0 + _hours(23)), self.cohort)
        assert after.empty
        too_early = derive_sepsis_onsets(self._sepsis(T0 + _hours(41), T0 + _hours(16)), self.cohort)
        assert too_early.empty

    def test_unflagged_or_incomplete_episode_excluded(self):
        assert derive_sepsis_onsets(self._sepsis(T0 + _hours(10), T0 + _hours(12), flag=False), self.cohort).empty
        assert derive_sepsis_onsets(self._sepsis(T0 + _hours(10), None), self.cohort).empty
        assert derive_sepsis_onsets(self._sepsis(None, T0 + _hours(10)), self.cohort).empty

    def test_text_flags(self):
        assert derive_sepsis_onsets(self._sepsis(T0 + _hours(10), T0 + _hours(12), flag="f"), self.cohort).empty
        assert len(derive_sepsis_onsets(self._sepsis(T0 + _hours(10), T0 + _hours(12), flag="t"), self.cohort)) == 1

    def test_earliest_qualifying_onset_wins(self):
        sepsis = pd.concat([
            self._sepsis(T0 + _hours(20), T0 + _hours(21)),
            self._sepsis(T0 + _hours(9), T0 + _hours(8)),
        ], ignore_index=True)
        onsets = derive_sepsis_onsets(sepsis, self.cohort)
        assert onsets["sepsis_time"].tolist() == [T0 + _hours(8)]

    def test_labels_monotone(self):
        onsets = derive_sepsis_onsets(self._sepsis(T0 + _hours(12), T0 + _hours(11)), self.cohort)
        labels = assign_sepsis_labels(self._rows(range(25)), onsets).tolist()
        assert labels == sorted(labels)
        assert labels[-1] == 1


class TestRowAssembler:
    """Final hourly rows."""

    def setup_method(self):
        self.cohort = _cohort(_stay(intime=T0 + pd.Timedelta(minutes=30)))

    def test_map_imputation(self):
        df = pd.DataFrame({
            "sbp": [120.0, 120.0, 120.0, np.nan],
            "dbp": [60.0, 60.0, np.nan, 60.0],
            "map": [np.nan, 95.0, np.nan, np.nan],
        })
        result = impute_mean_arterial_pressure(df)
        assert result.iloc[0] == 80.0
        assert result.iloc[1] == 95.0
        assert result.iloc[2:].isna().all()

    def test_assembly(self):
        features = pd.DataFrame({
            "stay_id": [1, 1, 1],
            "hour": [T0, T0 + _hours(1), T0 + _hours(2)],
            "sbp": [120.0, 120.0, np.nan],
            "dbp": [60.0, 60.0, np.nan],
            "antibiotic_flag": [np.nan, 1, np.nan],
            "antibiotic_count": [np.nan, 2, np.nan],
            "antibiotics_used": [None, "cefepime; vancomycin", None],
        })
        rows = assemble_hourly_rows(features, self.cohort, pd.DataFrame(columns=ONSET_COLUMNS))

        assert list(rows.columns) == FINAL_COLUMNS
        # first partial hour starts before intime
        assert rows["hour"].tolist() == [T0 + _hours(1), T0 + _hours(2)]
        assert rows["map"].iloc[0] == 80.0
        assert rows["antibiotic_flag"].tolist() == [1, 0]
        assert rows["antibiotic_count"].tolist() == [2, 0]
        assert (rows["sepsislabel"] == 0).all()
        assert rows["hr"].isna().all()
        assert rows["unit1"].tolist() == [1, 1]

    def test_antibiotic_names_dtype_independent_of_batch(self):
        features = pd.DataFrame({
            "stay_id": [1, 1],
            "hour": [T0 + _hours(1), T0 + _hours(2)],
            "hr": [80.0, 82.0],
        })
        with_names = features.assign(
            antibiotic_flag=[1, np.nan],
            antibiotic_count=[1, np.nan],
            antibiotics_used=pd.Series(["vancomycin", None], dtype="string"),
        )
        onsets = pd.DataFrame(columns=ONSET_COLUMNS)
        named = assemble_hourly_rows(with_names, self.cohort, onsets)
        unnamed = assemble_hourly_rows(features, self.cohort, onsets)

        assert named["antibiotics_used"].dtype == object
        assert unnamed["antibiotics_used"].dtype == object
        assert named["antibiotics_used"].iloc[0] == "vancomycin"
        assert pd.isna(named["antibiotics_used"].iloc[1])
        assert unnamed["antibiotics_used"].isna().all()


class TestSchema:
    """Feed contracts and row cleaning."""

    def test_missing_column_aborts(self):
        with pytest.raises(SchemaError) as excinfo:
            clean_feed(pd.DataFrame({"stay_id": [1], "charttime": [T0], "itemid": [220045]}), "vitals")
        assert "valuenum" in str(excinfo.value)
        assert isinstance(excinfo.value, ValueError)

    def test_malformed_rows_dropped(self):
        df = pd.DataFrame({
            "STAY_ID": [1, None, 3, 4],
            "CHARTTIME": ["2150-01-01 10:00", "2150-01-01 11:00", "not a time", "2150-01-01 12:00"],
            "ITEMID": [220045, 220045, 220045, 220045],
            "VALUENUM": [80, 81, 82, "n/a"],
        })
        cleaned = clean_feed(df, "vitals")
        assert cleaned["stay_id"].tolist() == [1]
        assert cleaned["stay_id"].dtype == "int64"
        assert cleaned.loc[0, "charttime"] == _ts("2150-01-01 10:00")

    def test_optional_timestamps_kept_when_null(self):
        df = pd.DataFrame({
            "stay_id": [1],
            "antibiotic": ["vancomycin"],
            "starttime": [T0],
            "stoptime": [None],
        })
        cleaned = clean_feed(df, "antibiotics")
        assert len(cleaned) == 1
        assert pd.isna(cleaned.loc[0, "stoptime"])


    def test_flag_spellings(self):
        df = pd.DataFrame({
            "stay_id": [1, 2, 3, 4, 5, 6, 7],
            "suspected_infection_time": [T0] * 7,
            "sofa_time": [T0] * 7,
            "sepsis3": ["t", "f", "TRUE", "false", 1, 0, None],
        })
        cleaned = clean_feed(df, "sepsis")
        assert cleaned["sepsis3"].dtype == bool
        assert cleaned["sepsis3"].tolist() == [True, False, True, False, True, False, False]

    def test_unrecognized_flag_aborts(self):
        df = pd.DataFrame({
            "stay_id": [1, 2],
            "suspected_infection_time": [T0, T0],
            "sofa_time": [T0, T0],
            "sepsis3": ["t", "maybe"],
        })
        with pytest.raises(SchemaError) as excinfo:
            clean_feed(df, "sepsis")
        assert "maybe" in str(excinfo.value)


class TestConfig:
    """PipelineConfig validation and loading."""

    def test_defaults(self):
        config = PipelineConfig()
        assert config.batch_size == 500
        assert config.num_workers == 1
        assert config.antibiotic_tolerance_hours == 24
        assert config.duckdb_settings() == {}

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            PipelineConfig(batch_size=0)
        with pytest.raises(ValueError):
            PipelineConfig(num_workers=0)

    def test_file_then_overrides(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"batch_size": 50, "memory_limit": "4GB", "threads": 2}))

        config = load_config(str(config_file), batch_size=None, num_workers=3)
        assert config.batch_size == 50
        assert config.num_workers == 3
        assert config.duckdb_settings() == {"memory_limit": "4GB", "threads": 2}

    def test_unknown_key_rejected(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"batch_sise": 50}))
        with pytest.raises(ValueError):
            load_config(str(config_file))


class TestReporting:
    """Read-only quality aggregations."""

    def _rows(self):
        return pd.DataFrame({
            "stay_id": [1, 1, 2, 2],
            "hour": [T0, T0 + _hours(1), T0, T0 + _hours(1)],
            "sepsislabel": [0, 1, 0, 0],
            "antibiotic_flag": [1, 1, 0, 1],
            "antibiotic_count": [1, 2, 0, 1],
            "antibiotics_used": ["vancomycin", "cefepime; vancomycin", None, "vancomycin"],
        })

    def test_safe_percentage(self):
        assert safe_percentage(1, 3) == 33.33
        assert np.isnan(safe_percentage(0, 0))

    def test_summaries(self):
        summary = final_data_summary(self._rows())
        assert summary["total_stays"] == 2
        assert summary["positive_labels"] == 1
        assert summary["sepsis_stays"] == 1
        assert summary["positive_rate_percent"] == 25.0
        assert summary["antibiotic_rate_percent"] == 75.0

        validation = antibiotic_validation(self._rows())
        assert validation["stays_with_antibiotics"] == 2
        assert validation["max_concurrent_antibiotics"] == 2

    def test_top_combinations(self):
        combos = top_antibiotic_combinations(self._rows())
        assert combos["antibiotics_used"].tolist() == ["vancomycin", "cefepime; vancomycin"]
        assert combos["usage_count"].tolist() == [2, 1]
        assert combos["percentage"].tolist() == [66.67, 33.33]

    def test_rates_over_zero_rows_are_nan(self):
        empty = pd.DataFrame(columns=FINAL_COLUMNS)
        assert np.isnan(final_data_summary(empty)["positive_rate_percent"])
        assert np.isnan(antibiotic_validation(empty)["antibiotic_usage_rate_percent"])
