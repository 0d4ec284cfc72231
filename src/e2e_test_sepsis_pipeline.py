import duckdb  # type: ignore
import pandas as pd
import pytest

from sepsis_processing import pipeline
from sepsis_processing.cohort_data import build_cohort
from sepsis_processing.config import PipelineConfig
from sepsis_processing.data_extraction import DuckDBSource, FrameSource
from sepsis_processing.pipeline import export_hourly_rows, run_pipeline
from sepsis_processing.reporting import build_report
from sepsis_processing.row_assembler import FINAL_COLUMNS
from sepsis_processing.schema import SchemaError

T1 = pd.Timestamp("2150-01-01 10:00")   # septic stay
T2 = pd.Timestamp("2150-03-01 00:00")   # onset too early to count
T3 = pd.Timestamp("2150-05-01 00:00")   # too short
T4 = pd.Timestamp("2150-07-01 00:00")   # too young


def _at(base: pd.Timestamp, hours: float) -> pd.Timestamp:
    return base + pd.Timedelta(hours=hours)


def _frames():
    stays = pd.DataFrame([
        # stay_id, subject_id, hadm_id, first_careunit, intime, outtime
        (101, 1, 11, "Medical Intensive Care Unit (MICU)", T1, _at(T1, 24)),
        (202, 2, 22, "Surgical Intensive Care Unit (SICU)", T2, _at(T2, 12)),
        (303, 3, 33, "Medical Intensive Care Unit (MICU)", T3, _at(T3, 6)),
        (404, 4, 44, "Medical Intensive Care Unit (MICU)", T4, _at(T4, 48)),
    ], columns=["stay_id", "subject_id", "hadm_id", "first_careunit", "intime", "outtime"])

    patients = pd.DataFrame([
        (1, "M", 65, 2150),
        (2, "F", 45, 2150),
        (3, "F", 70, 2150),
        (4, "M", 17, 2150),
    ], columns=["subject_id", "gender", "anchor_age", "anchor_year"])

    admissions = pd.DataFrame([
        (1, 11, _at(T1, -5)),
        (2, 22, _at(T2, -1)),
        (3, 33, _at(T3, -1)),
        (4, 44, _at(T4, -1)),
    ], columns=["subject_id", "hadm_id", "admittime"])

    chartevents = [
        # heart rate 72/400/68 in the first hour, 400 is out of range
        (1, 11, 101, _at(T1, 0.25), 220045, 72.0),
        (1, 11, 101, _at(T1, 0.5), 220045, 400.0),
        (1, 11, 101, _at(T1, 0.75), 220045, 68.0),
        (1, 11, 101, _at(T1, 3.1), 220045, 80.0),
        (1, 11, 101, _at(T1, 3.3), 223761, 98.6),
        (1, 11, 101, _at(T1, 4.1), 220045, 82.0),
        # blood pressure without a measured MAP
        (1, 11, 101, _at(T1, 5.2), 220179, 120.0),
        (1, 11, 101, _at(T1, 5.2), 220180, 60.0),
        # before intime
        (1, 11, 101, _at(T1, -2), 220045, 75.0),
        # excluded stays
        (3, 33, 303, _at(T3, 1), 220045, 90.0),
        (4, 44, 404, _at(T4, 1), 220045, 90.0),
    ]
    chartevents += [(2, 22, 202, _at(T2, h + 0.5), 220045, 100.0 + h) for h in range(12)]
    chartevents = pd.DataFrame(chartevents, columns=["subject_id", "hadm_id", "stay_id", "charttime", "itemid", "valuenum"])

    labevents = pd.DataFrame([
        (1, 11, _at(T1, 6.5), 50813, 2.1),
        (1, 11, _at(T1, 6.6), 50971, 4.2),
        # outside the stay
        (1, 11, _at(T1, -3), 50813, 5.0),
    ], columns=["subject_id", "hadm_id", "charttime", "itemid", "valuenum"])

    antibiotic = pd.DataFrame([
        (101, "vancomycin", _at(T1, 7.5), _at(T1, 9.2)),
        (101, "cefepime", _at(T1, 8.1), _at(T1, 8.4)),
        (303, "vancomycin", _at(T3, 1), _at(T3, 2)),
    ], columns=["stay_id", "antibiotic", "starttime", "stoptime"])

    sepsis3 = pd.DataFrame([
        (101, _at(T1, 10), _at(T1, 12), True),
        (202, _at(T2, 2), _at(T2, 3), True),
    ], columns=["stay_id", "suspected_infection_time", "sofa_time", "sepsis3"])

    return {
        "mimiciv_icu.icustays": stays,
        "mimiciv_hosp.patients": patients,
        "mimiciv_hosp.admissions": admissions,
        "mimiciv_icu.chartevents": chartevents,
        "mimiciv_hosp.labevents": labevents,
        "mimiciv_derived.antibiotic": antibiotic,
        "mimiciv_derived.sepsis3": sepsis3,
    }


def _feeds():
    """The seed tables as the five FrameSource feeds."""
    frames = _frames()
    stays = (
        frames["mimiciv_icu.icustays"]
        .merge(frames["mimiciv_hosp.patients"], on="subject_id")
        .merge(frames["mimiciv_hosp.admissions"], on=["subject_id", "hadm_id"])
    )
    return {
        "stays": stays,
        "vitals": frames["mimiciv_icu.chartevents"],
        "labs": frames["mimiciv_hosp.labevents"],
        "antibiotics": frames["mimiciv_derived.antibiotic"],
        "sepsis": frames["mimiciv_derived.sepsis3"],
    }


def create_mimic(database: str = ":memory:"):

    con = duckdb.connect(database=database)

    for schema in ["mimiciv_icu", "mimiciv_hosp", "mimiciv_derived"]:
        con.execute(f"CREATE SCHEMA {schema};")

    con.execute(
        """
        CREATE TABLE mimiciv_icu.icustays (
            stay_id INTEGER,
            subject_id INTEGER,
            hadm_id INTEGER,
            first_careunit VARCHAR,
            intime TIMESTAMP,
            outtime TIMESTAMP
        );
        """
    )
    con.execute(
        """
        CREATE TABLE mimiciv_hosp.patients (
            subject_id INTEGER,
            gender VARCHAR,
            anchor_age INTEGER,
            anchor_year INTEGER
        );
        """
    )
    con.execute(
        """
        CREATE TABLE mimiciv_hosp.admissions (
            subject_id INTEGER,
            hadm_id INTEGER,
            admittime TIMESTAMP
        );
        """
    )
    con.execute(
        """
        CREATE TABLE mimiciv_icu.chartevents (
            subject_id INTEGER,
            hadm_id INTEGER,
            stay_id INTEGER,
            charttime TIMESTAMP,
            itemid INTEGER,
            valuenum DOUBLE
        );
        """
    )
    con.execute(
        """
        CREATE TABLE mimiciv_hosp.labevents (
            subject_id INTEGER,
            hadm_id INTEGER,
            charttime TIMESTAMP,
            itemid INTEGER,
            valuenum DOUBLE
        );
        """
    )
    con.execute(
        """
        CREATE TABLE mimiciv_derived.antibiotic (
            stay_id INTEGER,
            antibiotic VARCHAR,
            starttime TIMESTAMP,
            stoptime TIMESTAMP
        );
        """
    )
    con.execute(
        """
        CREATE TABLE mimiciv_derived.sepsis3 (
            stay_id INTEGER,
            suspected_infection_time TIMESTAMP,
            sofa_time TIMESTAMP,
            sepsis3 BOOLEAN
        );
        """
    )

    for table, df in _frames().items():
        con.register("tmp_seed", df)
        con.execute(f"INSERT INTO {table} SELECT * FROM tmp_seed")
        con.unregister("tmp_seed")

    return con


class TestEndToEnd:

    def setup_method(self):
        self.con = create_mimic()
        self.source = DuckDBSource(con=self.con)
        self.config = PipelineConfig(batch_size=1)
        self.df = run_pipeline(self.source, self.config)
        self.cohort = build_cohort(self.source.get_stays())

    def teardown_method(self):
        self.con.close()

    def _stay_rows(self, stay_id: int) -> pd.DataFrame:
        return self.df[self.df["stay_id"] == stay_id].set_index("hour")

    def test_columns_and_order(self):
        assert list(self.df.columns) == FINAL_COLUMNS
        ordered = self.df.sort_values(["subject_id", "stay_id", "hour"]).reset_index(drop=True)
        pd.testing.assert_frame_equal(self.df, ordered)
        assert not self.df.duplicated(["stay_id", "hour"]).any()

    def test_cohort_stays_only(self):
        assert set(self.df["stay_id"]) == {101, 202}

    def test_hours_within_stay_bounds(self):
        rows = self.df.merge(self.cohort[["stay_id", "intime", "outtime"]], on="stay_id")
        assert ((rows["hour"] >= rows["intime"]) & (rows["hour"] <= rows["outtime"])).all()

    def test_every_contributing_hour_present(self):
        # vitals 0, 3, 4, 5; labs 6; antibiotics 7, 8, 9
        expected = [_at(T1, h) for h in [0, 3, 4, 5, 6, 7, 8, 9]]
        assert self._stay_rows(101).index.tolist() == expected
        assert len(self._stay_rows(202)) == 12

    def test_reduced_values(self):
        rows = self._stay_rows(101)
        assert rows.loc[_at(T1, 0), "hr"] == 70.0
        assert rows.loc[_at(T1, 3), "temp"] == pytest.approx(37.0)
        assert rows.loc[_at(T1, 5), "map"] == 80.0
        assert rows.loc[_at(T1, 6), "lactate"] == 2.1
        assert rows.loc[_at(T1, 6), "potassium"] == 4.2
        assert pd.isna(rows.loc[_at(T1, 6), "hr"])

    def test_stay_attributes(self):
        row = self.df[self.df["stay_id"] == 101].iloc[0]
        assert row["age"] == 65
        assert row["gender"] == "M"
        assert (row["unit1"], row["unit2"]) == (1, 0)
        assert row["hospadmtime"] == 5.0
        assert row["iculos"] == 24.0

    def test_antibiotic_exposure(self):
        rows = self._stay_rows(101)
        assert rows.loc[_at(T1, 7), "antibiotics_used"] == "vancomycin"
        assert rows.loc[_at(T1, 8), "antibiotics_used"] == "cefepime; vancomycin"
        assert rows.loc[_at(T1, 8), "antibiotic_count"] == 2
        assert rows.loc[_at(T1, 5), "antibiotic_flag"] == 0
        assert ((self.df["antibiotic_flag"] == 1) == (self.df["antibiotic_count"] >= 1)).all()

    def test_sepsis_labels(self):
        rows = self._stay_rows(101)
        assert rows.loc[_at(T1, 3), "sepsislabel"] == 0
        assert rows.loc[_at(T1, 4), "sepsislabel"] == 1
        assert rows.loc[_at(T1, 5), "sepsislabel"] == 1

        for _, labels in self.df.groupby("stay_id")["sepsislabel"]:
            assert labels.is_monotonic_increasing

        assert (self._stay_rows(202)["sepsislabel"] == 0).all()

    def test_batch_size_does_not_change_result(self):
        whole = run_pipeline(self.source, PipelineConfig(batch_size=100))
        pd.testing.assert_frame_equal(self.df, whole)

    def test_frame_source_matches_database(self):
        result = run_pipeline(FrameSource(_feeds()), self.config)
        pd.testing.assert_frame_equal(self.df, result, check_dtype=False)

    def test_csv_feeds_with_text_flags(self, tmp_path):
        def write(feeds, name):
            paths = {}
            for feed, df in feeds.items():
                paths[feed] = tmp_path / f"{name}_{feed}.csv"
                df.to_csv(paths[feed], index=False)
            return paths

        feeds = _feeds()
        feeds["sepsis"] = feeds["sepsis"].assign(sepsis3=["t", "f"])
        result = run_pipeline(FrameSource.from_csv(write(feeds, "flagged")), self.config)
        assert result["sepsislabel"].tolist() == self.df["sepsislabel"].tolist()

        feeds["sepsis"] = feeds["sepsis"].assign(sepsis3=["f", "f"])
        result = run_pipeline(FrameSource.from_csv(write(feeds, "unflagged")), self.config)
        assert len(result) == len(self.df)
        assert result["sepsislabel"].sum() == 0
        assert self.df["sepsislabel"].sum() > 0

    def test_report(self):
        report = build_report(self.df, self.cohort)
        assert report["early_label_validation"]["invalid_early_labels"] == 0
        assert report["time_window_consistency"]["time_consistency_percentage"] == 100.0
        assert report["sepsis_label_summary"]["sepsis_stays"] == 1
        assert report["sepsis_label_summary"]["earliest_positive_label"] == _at(T1, 4)
        assert report["antibiotic_validation"]["max_concurrent_antibiotics"] == 2

    def test_export_matches_in_memory_table(self, tmp_path):
        output_path = tmp_path / "out" / "hourly.csv"
        config = PipelineConfig(batch_size=1, output_path=str(output_path))

        written = export_hourly_rows(self.source, config)
        exported = pd.read_csv(output_path, parse_dates=["hour"])

        assert written == len(self.df) == len(exported)
        assert list(exported.columns) == FINAL_COLUMNS
        assert exported["sepsislabel"].tolist() == self.df["sepsislabel"].tolist()


def test_process_pool_matches_sequential(tmp_path):
    database = str(tmp_path / "mimic.duckdb")
    create_mimic(database).close()

    source = DuckDBSource(database)
    try:
        sequential = run_pipeline(source, PipelineConfig(batch_size=1))
        parallel = run_pipeline(source, PipelineConfig(batch_size=1, num_workers=2))
    finally:
        source.close()

    pd.testing.assert_frame_equal(sequential, parallel)


def test_frame_source_process_pool_matches_sequential():
    source = FrameSource(_feeds())
    sequential = run_pipeline(source, PipelineConfig(batch_size=1))
    parallel = run_pipeline(source, PipelineConfig(batch_size=1, num_workers=2))
    pd.testing.assert_frame_equal(sequential, parallel)


class _InlineExecutor:
    """Stands in for the process pool, running its initializer and jobs here."""

    def __init__(self, max_workers, initializer, initargs):
        self.initargs = initargs
        self.jobs = []
        initializer(*initargs)
        _InlineExecutor.last = self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def map(self, fn, batches):
        for batch in batches:
            self.jobs.append(fn)
            yield fn(batch)


def test_source_reaches_workers_once(monkeypatch):
    monkeypatch.setattr(pipeline, "ProcessPoolExecutor", _InlineExecutor)
    monkeypatch.setattr(pipeline, "_worker_source", None)
    source = FrameSource(_feeds())

    parallel = run_pipeline(source, PipelineConfig(batch_size=1, num_workers=2))

    executor = _InlineExecutor.last
    assert executor.initargs == (source,)
    assert len(executor.jobs) == parallel["stay_id"].nunique() == 2
    for job in executor.jobs:
        assert all(arg is not source for arg in job.args)
        assert all(arg is not source for arg in job.keywords.values())
    pd.testing.assert_frame_equal(parallel, run_pipeline(source, PipelineConfig(batch_size=1)))


def test_frame_source_missing_column():
    with pytest.raises(SchemaError):
        FrameSource({"vitals": pd.DataFrame({"stay_id": [1], "charttime": [T1]})})
