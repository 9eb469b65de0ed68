from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

from pathlib import Path
from typing import Callable, Dict, List

import pandas as pd
import pytest

from nypd_eda.config import BOROUGHS, SOURCE_COLUMNS, PipelineConfig
from nypd_eda.eda_pipeline import normalize_schema, parse_fields

# 2024-01-01 is a Monday, so this week covers every weekday once.
WEEK_DATES = [f"01/0{day}/2024" for day in range(1, 8)]


def _raw_row(**overrides: str) -> Dict[str, str]:
    row = {column: "" for column in SOURCE_COLUMNS}
    row.update(
        {
            "INCIDENT_KEY": "1000",
            "OCCUR_DATE": "01/07/2024",
            "OCCUR_TIME": "23:15:00",
            "BORO": "BROOKLYN",
            "PRECINCT": "75",
            "STATISTICAL_MURDER_FLAG": "false",
            "PERP_AGE_GROUP": "18-24",
            "PERP_SEX": "M",
            "PERP_RACE": "BLACK",
            "VIC_AGE_GROUP": "25-44",
            "VIC_SEX": "M",
            "VIC_RACE": "BLACK",
        }
    )
    row.update(overrides)
    return row


def _week_rows() -> List[Dict[str, str]]:
    rows = []
    key = 0
    for day_idx, date in enumerate(WEEK_DATES):
        for boro_idx, borough in enumerate(BOROUGHS):
            for _ in range((day_idx + boro_idx) % 3 + 1):
                key += 1
                rows.append(
                    _raw_row(
                        INCIDENT_KEY=str(key),
                        OCCUR_DATE=date,
                        BORO=borough,
                        STATISTICAL_MURDER_FLAG="true" if key % 4 == 0 else "false",
                        VIC_AGE_GROUP=["<18", "18-24", "25-44", "45-64"][key % 4],
                        VIC_SEX="F" if key % 5 == 0 else "M",
                        VIC_RACE=["BLACK", "WHITE HISPANIC", "BLACK HISPANIC"][key % 3],
                    )
                )
    return rows


@pytest.fixture()
def config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(output_dir=tmp_path / "reports", write_outputs=False, make_figures=False)


@pytest.fixture()
def raw_row() -> Callable[..., Dict[str, str]]:
    return _raw_row


@pytest.fixture()
def raw_frame() -> Callable[[List[Dict[str, str]]], pd.DataFrame]:
    def _build(rows: List[Dict[str, str]]) -> pd.DataFrame:
        return pd.DataFrame(rows, columns=list(SOURCE_COLUMNS))

    return _build


@pytest.fixture()
def week_rows() -> List[Dict[str, str]]:
    return _week_rows()


@pytest.fixture()
def parsed_frame(config: PipelineConfig) -> Callable[[List[Dict[str, str]]], pd.DataFrame]:
    def _build(rows: List[Dict[str, str]]) -> pd.DataFrame:
        raw = pd.DataFrame(rows, columns=list(SOURCE_COLUMNS))
        return parse_fields(normalize_schema(raw, config), config).frame

    return _build


@pytest.fixture()
def write_csv(tmp_path: Path) -> Callable[[List[Dict[str, str]]], Path]:
    def _write(rows: List[Dict[str, str]], name: str = "shootings.csv") -> Path:
        path = tmp_path / name
        pd.DataFrame(rows, columns=list(SOURCE_COLUMNS)).to_csv(path, index=False)
        return path

    return _write
