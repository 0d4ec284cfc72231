"""
Hourly Sepsis Dataset Pipeline

Orchestrates the stages for batches of ICU stays:

1. Cohort: eligible stays with stay-level attributes (once per run)
2. Per batch of stays:
   - vitals: one query and hourly reduction per vital group, merged
   - labs: one query and hourly reduction per lab group, merged
   - antibiotics: hourly exposure
   - merge of the three hourly tables on (stay_id, hour)
   - sepsis onsets and row assembly with labels
3. Concatenation (or CSV export) of the batch outputs in cohort order

Stays never share state, so batches may run in a process pool. Results are
consumed in submission order, keeping the output ordered by
(subject_id, stay_id, hour). A failing batch raises in the parent and aborts
the run.
"""
from concurrent.futures import ProcessPoolExecutor
from functools import partial
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd
from tqdm import tqdm

from .antibiotics_data import get_antibiotic_exposure
from .cohort_data import build_cohort
from .config import PipelineConfig
from .labs_data import LAB_METADATA
from .logging_utils import logger
from .row_assembler import FINAL_COLUMNS, assemble_hourly_rows
from .sepsis_labels import derive_sepsis_onsets
from .source_merger import merge_hourly_tables
from .timeseries_data import attach_lab_stay_ids, get_metadata_itemids, iter_metadata_groups, reduce_hourly
from .vitals_data import VITAL_METADATA


def build_vitals_table(source, cohort: pd.DataFrame) -> pd.DataFrame:
    """Hourly vital sign medians of the cohort stays, one query per vital group."""
    logger.log_start("build_vitals_table")

    stay_ids = cohort["stay_id"].tolist()
    tables = []
    for group, entries in iter_metadata_groups(VITAL_METADATA):
        events = source.get_vital_events(stay_ids, get_metadata_itemids(entries))
        logger.info(f"vital group {group}: {len(events)} events")
        tables.append(reduce_hourly(events, cohort, entries))

    vitals = merge_hourly_tables(tables)

    logger.log_end("build_vitals_table")
    return vitals


def build_labs_table(source, cohort: pd.DataFrame) -> pd.DataFrame:
    """Hourly lab medians of the cohort stays, one query per lab group."""
    logger.log_start("build_labs_table")

    tables = []
    for group, entries in iter_metadata_groups(LAB_METADATA):
        events = source.get_lab_events(cohort, get_metadata_itemids(entries))
        events = attach_lab_stay_ids(events, cohort)
        logger.info(f"lab group {group}: {len(events)} events")
        tables.append(reduce_hourly(events, cohort, entries))

    labs = merge_hourly_tables(tables)

    logger.log_end("build_labs_table")
    return labs


def process_stay_batch(source, cohort: pd.DataFrame, config: PipelineConfig) -> pd.DataFrame:
    """
    Run every per-stay stage for one batch of cohort stays.

    Args:
        source: DuckDBSource or FrameSource
        cohort (pd.DataFrame): the batch's rows of the cohort
        config (PipelineConfig): run settings

    Returns:
        pd.DataFrame: final hourly rows of the batch (FINAL_COLUMNS)
    """
    logger.log_start("process_stay_batch")

    stay_ids = cohort["stay_id"].tolist()

    vitals = build_vitals_table(source, cohort)
    labs = build_labs_table(source, cohort)
    antibiotics = get_antibiotic_exposure(
        source.get_antibiotics(stay_ids), cohort, config.antibiotic_tolerance_hours
    )
    features = merge_hourly_tables([vitals, labs, antibiotics])

    onsets = derive_sepsis_onsets(source.get_sepsis(stay_ids), cohort)
    rows = assemble_hourly_rows(features, cohort, onsets)

    logger.log_end("process_stay_batch")
    return rows


# Source of the current worker process, set once by the pool initializer
_worker_source = None


def _init_worker(source) -> None:
    global _worker_source
    _worker_source = source


def _process_batch_in_worker(cohort: pd.DataFrame, config: PipelineConfig) -> pd.DataFrame:
    return process_stay_batch(_worker_source, cohort, config)


def iter_stay_batches(cohort: pd.DataFrame, batch_size: int) -> Iterator[pd.DataFrame]:
    """Consecutive slices of at most ``batch_size`` stays, in cohort order."""
    for start in range(0, len(cohort), batch_size):
        yield cohort.iloc[start:start + batch_size].reset_index(drop=True)


def iter_hourly_rows(source, config: PipelineConfig,
                     cohort: Optional[pd.DataFrame] = None) -> Iterator[pd.DataFrame]:
    """
    Yield the final hourly rows batch by batch, in cohort order.

    With ``config.num_workers > 1`` batches run in a process pool. The source
    is handed to each worker once by the pool initializer, batches carry only
    their cohort rows. A DuckDBSource reopens its database in each worker, so
    it must have a database_path.
    """
    if cohort is None:
        cohort = build_cohort(source.get_stays())

    batches = list(iter_stay_batches(cohort, config.batch_size))
    logger.info(f"{len(cohort)} stays in {len(batches)} batches of up to {config.batch_size}")

    if config.num_workers == 1:
        for batch in tqdm(batches, desc="Stay batches"):
            yield process_stay_batch(source, batch, config)
        return

    job = partial(_process_batch_in_worker, config=config)
    with ProcessPoolExecutor(max_workers=config.num_workers,
                             initializer=_init_worker, initargs=(source,)) as executor:
        for rows in tqdm(executor.map(job, batches), total=len(batches), desc="Stay batches"):
            yield rows


def run_pipeline(source, config: PipelineConfig, cohort: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    """
    Build the complete hourly table in memory.

    ``cohort`` defaults to build_cohort over the source's stays.

    Returns:
        pd.DataFrame: FINAL_COLUMNS ordered by (subject_id, stay_id, hour)
    """
    logger.log_start("run_pipeline")

    frames = list(iter_hourly_rows(source, config, cohort))
    if frames:
        df = pd.concat(frames, ignore_index=True)
    else:
        df = pd.DataFrame(columns=FINAL_COLUMNS)

    logger.info(f"{len(df)} hourly rows for {df['stay_id'].nunique()} stays")
    logger.log_end("run_pipeline")
    return df


def export_hourly_rows(source, config: PipelineConfig) -> int:
    """
    Write the hourly table to ``config.output_path`` as CSV, one batch at a time.

    Returns:
        int: number of rows written
    """
    logger.log_start("export_hourly_rows")

    output_path = Path(config.output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    total = 0
    header = True
    with open(output_path, "w", newline="") as f:
        for rows in iter_hourly_rows(source, config):
            if header or len(rows):
                rows.to_csv(f, header=header, index=False)
                header = False
            total += len(rows)
        if header:
            pd.DataFrame(columns=FINAL_COLUMNS).to_csv(f, index=False)

    logger.info(f"Wrote {total} rows to {output_path}")
    logger.log_end("export_hourly_rows")
    return total
