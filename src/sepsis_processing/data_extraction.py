"""
Input Feeds for the Hourly Sepsis Pipeline

Two interchangeable sources provide the five input feeds (stays, vitals,
labs, antibiotics, sepsis):

- DuckDBSource reads a MIMIC-IV DuckDB database. Event feeds are queried per
  batch of stay ids and per variable sub-group; the ids are registered as a
  temporary relation and joined in SQL so only one batch is materialized.
- FrameSource serves the same feeds from pandas DataFrames (CSV exports,
  tests).

Every feed passes through ``clean_feed`` so both sources return the same
column contract; a missing column raises SchemaError.
"""
from typing import Dict, List, Optional

import duckdb
import pandas as pd

from .logging_utils import logger
from .schema import FEED_COLUMNS, clean_feed

STAYS_SQL = """
SELECT
    i.stay_id::BIGINT AS stay_id,
    i.subject_id::BIGINT AS subject_id,
    i.hadm_id::BIGINT AS hadm_id,
    i.first_careunit AS first_careunit,
    i.intime::TIMESTAMP AS intime,
    i.outtime::TIMESTAMP AS outtime,
    p.gender AS gender,
    p.anchor_age::INTEGER AS anchor_age,
    p.anchor_year::INTEGER AS anchor_year,
    a.admittime::TIMESTAMP AS admittime
FROM mimiciv_icu.icustays i
JOIN mimiciv_hosp.patients p ON i.subject_id = p.subject_id
JOIN mimiciv_hosp.admissions a ON i.hadm_id = a.hadm_id
"""

VITALS_SQL = """
SELECT
    c.stay_id::BIGINT AS stay_id,
    c.charttime::TIMESTAMP AS charttime,
    c.itemid::INTEGER AS itemid,
    c.valuenum::DOUBLE AS valuenum
FROM mimiciv_icu.chartevents c
JOIN mimiciv_icu.icustays i ON c.stay_id = i.stay_id
WHERE c.stay_id IN (SELECT stay_id FROM tmp_stay_ids)
  AND c.itemid IN (SELECT itemid FROM tmp_itemids)
  AND c.valuenum IS NOT NULL
  AND c.charttime BETWEEN i.intime AND i.outtime
"""

LABS_SQL = """
SELECT
    l.subject_id::BIGINT AS subject_id,
    l.hadm_id::BIGINT AS hadm_id,
    l.charttime::TIMESTAMP AS charttime,
    l.itemid::INTEGER AS itemid,
    l.valuenum::DOUBLE AS valuenum
FROM mimiciv_hosp.labevents l
WHERE l.itemid IN (SELECT itemid FROM tmp_itemids)
  AND l.valuenum IS NOT NULL
  AND EXISTS (
      SELECT 1 FROM tmp_lab_windows w
      WHERE w.subject_id = l.subject_id
        AND w.hadm_id = l.hadm_id
        AND l.charttime BETWEEN w.intime AND w.outtime
  )
"""

ANTIBIOTICS_SQL = """
SELECT
    ab.stay_id::BIGINT AS stay_id,
    ab.antibiotic AS antibiotic,
    ab.starttime::TIMESTAMP AS starttime,
    ab.stoptime::TIMESTAMP AS stoptime
FROM mimiciv_derived.antibiotic ab
WHERE ab.stay_id IN (SELECT stay_id FROM tmp_stay_ids)
"""

SEPSIS_SQL = """
SELECT
    s.stay_id::BIGINT AS stay_id,
    s.suspected_infection_time::TIMESTAMP AS suspected_infection_time,
    s.sofa_time::TIMESTAMP AS sofa_time,
    s.sepsis3::BOOLEAN AS sepsis3
FROM mimiciv_derived.sepsis3 s
WHERE s.stay_id IN (SELECT stay_id FROM tmp_stay_ids)
"""


class DuckDBSource:
    """
    MIMIC-IV feeds read from a DuckDB database.

    The connection is opened lazily. When the source is sent to a worker
    process the connection is dropped and reopened read-only from
    ``database_path`` on first use, so a source built around an existing
    connection (e.g. an in-memory database) can only be used in-process.

    Attributes:
        database_path (Optional[str]): DuckDB file, None when ``con`` is given
        settings (Dict): DuckDB connection config (memory_limit, threads)
    """

    def __init__(self, database_path: Optional[str] = None,
                 con: Optional[duckdb.DuckDBPyConnection] = None,
                 settings: Optional[Dict] = None):
        if database_path is None and con is None:
            raise ValueError("DuckDBSource needs a database_path or an open connection")
        self.database_path = database_path
        self.settings = settings or {}
        self._con = con

    def __getstate__(self):
        state = self.__dict__.copy()
        state["_con"] = None
        return state

    @property
    def con(self) -> duckdb.DuckDBPyConnection:
        if self._con is None:
            if self.database_path is None:
                raise ValueError("Connection was not carried over and no database_path is set")
            self._con = duckdb.connect(self.database_path, read_only=True, config=self.settings)
        return self._con

    def close(self) -> None:
        if self._con is not None:
            self._con.close()
            self._con = None

    def get_stays(self) -> pd.DataFrame:
        """All ICU stays with patient and admission attributes."""
        df = self.con.execute(STAYS_SQL).fetchdf()
        return clean_feed(df, "stays")

    def get_vital_events(self, stay_ids: List[int], itemids: List[int]) -> pd.DataFrame:
        self.con.register("tmp_stay_ids", pd.DataFrame({"stay_id": stay_ids}, dtype="int64"))
        self.con.register("tmp_itemids", pd.DataFrame({"itemid": itemids}, dtype="int64"))
        df = self.con.execute(VITALS_SQL).fetchdf()
        return clean_feed(df, "vitals")

    def get_lab_events(self, cohort: pd.DataFrame, itemids: List[int]) -> pd.DataFrame:
        """
        Lab events of the admissions of ``cohort`` inside any of its stay windows.

        Labs are keyed by (subject_id, hadm_id); resolving them to a stay is
        left to ``attach_lab_stay_ids``.
        """
        windows = cohort[["subject_id", "hadm_id", "intime", "outtime"]]
        self.con.register("tmp_lab_windows", windows)
        self.con.register("tmp_itemids", pd.DataFrame({"itemid": itemids}, dtype="int64"))
        df = self.con.execute(LABS_SQL).fetchdf()
        return clean_feed(df, "labs")

    def get_antibiotics(self, stay_ids: List[int]) -> pd.DataFrame:
        self.con.register("tmp_stay_ids", pd.DataFrame({"stay_id": stay_ids}, dtype="int64"))
        df = self.con.execute(ANTIBIOTICS_SQL).fetchdf()
        return clean_feed(df, "antibiotics")

    def get_sepsis(self, stay_ids: List[int]) -> pd.DataFrame:
        self.con.register("tmp_stay_ids", pd.DataFrame({"stay_id": stay_ids}, dtype="int64"))
        df = self.con.execute(SEPSIS_SQL).fetchdf()
        return clean_feed(df, "sepsis")


class FrameSource:
    """
    Feeds held in memory as pandas DataFrames.

    Args:
        frames (Dict[str, pd.DataFrame]): one frame per feed name
            ('stays', 'vitals', 'labs', 'antibiotics', 'sepsis'); a feed that
            is not given is treated as empty
    """

    def __init__(self, frames: Dict[str, pd.DataFrame]):
        self.frames = {feed: clean_feed(df, feed) for feed, df in frames.items()}
        missing = sorted({"stays", "vitals", "labs", "antibiotics", "sepsis"} - set(self.frames))
        if missing:
            logger.warning(f"FrameSource without feeds {missing}, treating them as empty")
            for feed in missing:
                self.frames[feed] = clean_feed(pd.DataFrame(columns=FEED_COLUMNS[feed]), feed)

    @classmethod
    def from_csv(cls, paths: Dict[str, str]) -> "FrameSource":
        return cls({feed: pd.read_csv(path) for feed, path in paths.items()})

    def close(self) -> None:
        pass

    def get_stays(self) -> pd.DataFrame:
        return self.frames["stays"].copy()

    def get_vital_events(self, stay_ids: List[int], itemids: List[int]) -> pd.DataFrame:
        df = self.frames["vitals"]
        return df[df["stay_id"].isin(stay_ids) & df["itemid"].isin(itemids)].reset_index(drop=True)

    def get_lab_events(self, cohort: pd.DataFrame, itemids: List[int]) -> pd.DataFrame:
        df = self.frames["labs"]
        admissions = cohort[["subject_id", "hadm_id"]].drop_duplicates()
        df = df[df["itemid"].isin(itemids)].merge(admissions, on=["subject_id", "hadm_id"], how="inner")
        return df.reset_index(drop=True)

    def get_antibiotics(self, stay_ids: List[int]) -> pd.DataFrame:
        df = self.frames["antibiotics"]
        return df[df["stay_id"].isin(stay_ids)].reset_index(drop=True)

    def get_sepsis(self, stay_ids: List[int]) -> pd.DataFrame:
        df = self.frames["sepsis"]
        return df[df["stay_id"].isin(stay_ids)].reset_index(drop=True)
