"""
Pipeline configuration.

Resource and parallelism knobs are passed explicitly through PipelineConfig
instead of being set on a database session. A JSON file may override any of
the defaults (same pattern as the experiment runner's default config dict
updated from ``--config_file``).
"""
import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_OUTPUT_PATH = "data/mimiciv_sepsis_hourly_with_antibiotics.csv"


@dataclass
class PipelineConfig:
    """
    Settings for one batch run of the pipeline.

    Attributes:
        database_path: DuckDB file holding the MIMIC-IV schemas
        output_path: CSV file the final hourly table is written to
        batch_size: number of ICU stays processed together
        num_workers: worker processes across stay batches (1 = sequential)
        memory_limit: DuckDB memory ceiling per connection, e.g. "8GB"
        threads: DuckDB threads per connection
        antibiotic_tolerance_hours: window around the stay used to select
            antibiotic administration records
    """

    database_path: Optional[str] = None
    output_path: str = DEFAULT_OUTPUT_PATH
    batch_size: int = 500
    num_workers: int = 1
    memory_limit: Optional[str] = None
    threads: Optional[int] = None
    antibiotic_tolerance_hours: int = 24

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be positive, got {self.num_workers}")
        if self.threads is not None and self.threads < 1:
            raise ValueError(f"threads must be positive, got {self.threads}")

    def duckdb_settings(self) -> Dict[str, Any]:
        """Connection config passed to ``duckdb.connect``."""
        settings = {}
        if self.memory_limit is not None:
            settings["memory_limit"] = self.memory_limit
        if self.threads is not None:
            settings["threads"] = self.threads
        return settings

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_file: Optional[str] = None, **overrides) -> PipelineConfig:
    """
    Build a PipelineConfig from defaults, an optional JSON file and keyword overrides.

    Overrides whose value is None are ignored so CLI flags that were not given
    do not clobber values from the file.

    Raises:
        ValueError: if the file or the overrides name an unknown setting
    """
    known = {f.name for f in fields(PipelineConfig)}
    values: Dict[str, Any] = {}

    if config_file is not None:
        with open(Path(config_file), "r") as f:
            values.update(json.load(f))

    values.update({key: value for key, value in overrides.items() if value is not None})

    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    return PipelineConfig(**values)
