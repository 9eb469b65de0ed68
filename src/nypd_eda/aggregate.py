from __future__ import annotations

import logging
from typing import List, Sequence

import pandas as pd

from nypd_eda.config import COUNT_COLUMN, GROUP_KEYS, MODEL_KEYS, WEEKDAYS
from nypd_eda.errors import SchemaError

log = logging.getLogger(__name__)


def _check_keys(df: pd.DataFrame, keys: Sequence[str]) -> None:
    missing = [key for key in keys if key not in df.columns]
    if missing:
        raise SchemaError(f"Grouping keys not in table: {', '.join(missing)}", stage="aggregate")


def _empty_groups(df: pd.DataFrame, keys: List[str]) -> pd.DataFrame:
    empty = df.loc[:, keys].iloc[0:0].copy()
    empty[COUNT_COLUMN] = pd.Series(dtype="int64")
    return empty


def aggregate_incidents(df: pd.DataFrame, keys: Sequence[str] = GROUP_KEYS) -> pd.DataFrame:
    keys = list(keys)
    _check_keys(df, keys)
    if df.empty:
        return _empty_groups(df, keys)
    groups = (
        df.groupby(keys, dropna=False, sort=True)
        .size()
        .reset_index(name=COUNT_COLUMN)
        .astype({COUNT_COLUMN: "int64"})
    )
    log.info("Aggregated %s records into %s groups by %s", len(df), len(groups), ", ".join(keys))
    return groups


def rollup_counts(groups: pd.DataFrame, keys: Sequence[str] = MODEL_KEYS) -> pd.DataFrame:
    """Re-sum an aggregate over a coarser set of keys."""
    keys = list(keys)
    _check_keys(groups, keys + [COUNT_COLUMN])
    if groups.empty:
        return _empty_groups(groups, keys)
    return (
        groups.groupby(keys, dropna=False, sort=True)[COUNT_COLUMN]
        .sum()
        .reset_index()
        .astype({COUNT_COLUMN: "int64"})
    )


def aggregate_trend(df: pd.DataFrame) -> pd.DataFrame:
    return aggregate_incidents(df, keys=["year_month"])


def borough_weekday_matrix(groups: pd.DataFrame) -> pd.DataFrame:
    counts = rollup_counts(groups, MODEL_KEYS)
    if counts.empty:
        return pd.DataFrame(columns=list(WEEKDAYS), dtype="int64")
    matrix = (
        counts.pivot_table(
            index="borough",
            columns="weekday",
            values=COUNT_COLUMN,
            aggfunc="sum",
            fill_value=0,
        )
        .reindex(columns=list(WEEKDAYS), fill_value=0)
        .astype("int64")
    )
    matrix.columns.name = None
    return matrix

