from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Tuple

DEFAULT_SOURCE_URL = "https://data.cityofnewyork.us/api/views/833y-fsy8/rows.csv?accessType=DOWNLOAD"
DEFAULT_OUTPUT_DIRNAME = "reports"

# Published NYPD Shooting Incident Data (Historic) header, in source order.
SOURCE_COLUMNS: Tuple[str, ...] = (
    "INCIDENT_KEY",
    "OCCUR_DATE",
    "OCCUR_TIME",
    "BORO",
    "LOC_OF_OCCUR_DESC",
    "PRECINCT",
    "JURISDICTION_CODE",
    "LOC_CLASSFCTN_DESC",
    "LOCATION_DESC",
    "STATISTICAL_MURDER_FLAG",
    "PERP_AGE_GROUP",
    "PERP_SEX",
    "PERP_RACE",
    "VIC_AGE_GROUP",
    "VIC_SEX",
    "VIC_RACE",
    "X_COORD_CD",
    "Y_COORD_CD",
    "Latitude",
    "Longitude",
    "Lon_Lat",
)

COLUMN_MAP: Dict[str, str] = {
    "INCIDENT_KEY": "incident_key",
    "OCCUR_DATE": "date_raw",
    "OCCUR_TIME": "time_raw",
    "BORO": "borough",
    "STATISTICAL_MURDER_FLAG": "murder_flag_raw",
    "VIC_AGE_GROUP": "victim_age_band",
    "VIC_SEX": "victim_sex",
    "VIC_RACE": "victim_race",
}

BOROUGHS: Tuple[str, ...] = ("BRONX", "BROOKLYN", "MANHATTAN", "QUEENS", "STATEN ISLAND")
WEEKDAYS: Tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
MURDER_FLAG_VALUES: Dict[str, bool] = {"TRUE": True, "FALSE": False, "Y": True, "N": False}

GROUP_KEYS: Tuple[str, ...] = (
    "year",
    "borough",
    "murder_flag",
    "victim_age_band",
    "victim_sex",
    "victim_race",
    "weekday",
)
MODEL_KEYS: Tuple[str, ...] = ("weekday", "borough")
COUNT_COLUMN = "incident_count"


@dataclass(frozen=True)
class SentinelRule:
    column: str
    token: str

    @property
    def name(self) -> str:
        return f"{self.column}~{self.token}"


DEFAULT_SENTINEL_RULES: Tuple[SentinelRule, ...] = (
    SentinelRule("victim_age_band", "UNKNOWN"),
    SentinelRule("victim_age_band", "1022"),
    SentinelRule("victim_race", "UNKNOWN"),
    SentinelRule("victim_sex", "U"),
)


@dataclass
class PipelineConfig:
    source: str = DEFAULT_SOURCE_URL
    output_dir: Path | None = None
    date_format: str = "%m/%d/%Y"
    time_format: str = "%H:%M:%S"
    fetch_timeout: float = 60.0
    strict_schema: bool = True
    on_parse_error: str = "raise"  # "raise" | "quarantine"
    sentinel_rules: Tuple[SentinelRule, ...] = field(default=DEFAULT_SENTINEL_RULES)
    make_figures: bool = True
    write_outputs: bool = True

    def __post_init__(self) -> None:
        if self.output_dir is None:
            self.output_dir = Path.cwd() / DEFAULT_OUTPUT_DIRNAME
        self.output_dir = Path(self.output_dir)
        if self.on_parse_error not in {"raise", "quarantine"}:
            raise ValueError(
                f"on_parse_error must be 'raise' or 'quarantine', got '{self.on_parse_error}'."
            )

    @property
    def figures_dir(self) -> Path:
        return self.output_dir / "figures"

    def output_paths(self) -> Dict[str, Path]:
        return {
            "groups": self.output_dir / "incident_groups.csv",
            "weekday_borough": self.output_dir / "weekday_borough_counts.csv",
            "monthly_trend": self.output_dir / "monthly_trend.csv",
            "rejected": self.output_dir / "rejected_records.csv",
            "model": self.output_dir / "count_model.json",
            "metrics": self.output_dir / "pipeline_metrics.json",
            "summary": self.output_dir / "eda_summary.md",
        }
