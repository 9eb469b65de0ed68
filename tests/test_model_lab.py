"""
OLS count model tests: encoding, degrees of freedom, degenerate inputs, report.
"""
from __future__ import annotations

import json
import logging
import math

import pandas as pd
import pytest

from nypd_eda.config import BOROUGHS, COUNT_COLUMN, WEEKDAYS
from nypd_eda.errors import SchemaError, UnderdeterminedModelError
from nypd_eda.model_lab import fit_count_model, write_model_report

WEEKDAY_EFFECT = {day: idx * 2.0 for idx, day in enumerate(WEEKDAYS)}
BOROUGH_EFFECT = {"BRONX": 30.0, "BROOKLYN": 55.0, "MANHATTAN": 20.0, "QUEENS": 25.0, "STATEN ISLAND": 1.0}


def _make_counts(noise: bool = False) -> pd.DataFrame:
    rows = []
    for i, day in enumerate(WEEKDAYS):
        for j, borough in enumerate(BOROUGHS):
            count = 10 + WEEKDAY_EFFECT[day] + BOROUGH_EFFECT[borough]
            if noise:
                count += (i * 3 + j * 7) % 5 - 2
            rows.append({"weekday": day, "borough": borough, COUNT_COLUMN: int(count)})
    return pd.DataFrame(rows)


def test_full_grid_degrees_of_freedom():
    fit = fit_count_model(_make_counts(noise=True))
    assert fit.n_groups == 35
    assert fit.n_coefficients == 1 + 6 + 4
    assert fit.df_resid == 35 - 6 - 4 - 1


def test_adjusted_r_squared_formula():
    fit = fit_count_model(_make_counts(noise=True))
    n, p = fit.n_groups, fit.n_coefficients - 1
    expected = 1 - (1 - fit.r_squared) * (n - 1) / (n - p - 1)
    assert fit.adj_r_squared == pytest.approx(expected)
    assert fit.adj_r_squared < fit.r_squared <= 1


def test_reference_levels_are_dropped():
    fit = fit_count_model(_make_counts(noise=True))
    assert fit.reference_levels == {"weekday": "Friday", "borough": "BRONX"}
    assert "const" in fit.coefficients.index
    assert "weekday_Friday" not in fit.coefficients.index
    assert "borough_BRONX" not in fit.coefficients.index
    assert "borough_STATEN ISLAND" in fit.coefficients.index
    assert list(fit.std_errors.index) == list(fit.coefficients.index)


def test_additive_counts_are_recovered_exactly():
    fit = fit_count_model(_make_counts(noise=False))
    assert fit.r_squared == pytest.approx(1.0)
    expected_const = 10 + WEEKDAY_EFFECT["Friday"] + BOROUGH_EFFECT["BRONX"]
    assert fit.coefficients["const"] == pytest.approx(expected_const, abs=1e-6)
    assert fit.coefficients["weekday_Sunday"] == pytest.approx(
        WEEKDAY_EFFECT["Sunday"] - WEEKDAY_EFFECT["Friday"], abs=1e-6
    )
    assert fit.coefficients["borough_BROOKLYN"] == pytest.approx(
        BOROUGH_EFFECT["BROOKLYN"] - BOROUGH_EFFECT["BRONX"], abs=1e-6
    )


def test_sparse_groups_degrees_of_freedom():
    counts = _make_counts(noise=True)
    counts = counts[~((counts["weekday"] == "Monday") & counts["borough"].isin(["QUEENS", "BRONX"]))]
    counts = counts[~((counts["weekday"] == "Tuesday") & (counts["borough"] == "MANHATTAN"))]
    fit = fit_count_model(counts)
    w, b = counts["weekday"].nunique(), counts["borough"].nunique()
    assert fit.df_resid == len(counts) - (w - 1) - (b - 1) - 1 == 21


def test_empty_counts_raise_underdetermined():
    empty = pd.DataFrame(columns=["weekday", "borough", COUNT_COLUMN])
    with pytest.raises(UnderdeterminedModelError) as excinfo:
        fit_count_model(empty)
    assert excinfo.value.n_groups == 0
    assert excinfo.value.stage == "model"


def test_single_borough_is_saturated_and_raises():
    counts = _make_counts()
    with pytest.raises(UnderdeterminedModelError) as excinfo:
        fit_count_model(counts[counts["borough"] == "QUEENS"])
    assert excinfo.value.n_groups == 7
    assert excinfo.value.n_coefficients == 7


def test_missing_predictor_column_raises_schema_error():
    with pytest.raises(SchemaError):
        fit_count_model(_make_counts().drop(columns=["borough"]))


def test_model_report_is_written(tmp_path):
    fit = fit_count_model(_make_counts(noise=True))
    path = tmp_path / "out" / "count_model.json"
    write_model_report(fit, path)
    report = json.loads(path.read_text())
    model = report["model"]
    assert model["formula"] == "incident_count ~ weekday + borough"
    assert model["df_resid"] == 24
    assert len(model["coefficients"]) == 11
    assert {"term", "coefficient", "std_error", "t_value", "p_value"} <= set(model["coefficients"][0])
    assert report["meta"]["estimator"] == "OLS"


def test_constant_counts_leave_r_squared_undefined(caplog):
    counts = pd.DataFrame(
        [
            {"weekday": day, "borough": borough, COUNT_COLUMN: 5}
            for day in WEEKDAYS[:3]
            for borough in BOROUGHS[:3]
        ]
    )
    with caplog.at_level(logging.WARNING, logger="nypd_eda.model_lab"):
        fit = fit_count_model(counts)
    assert math.isnan(fit.r_squared)
    assert math.isnan(fit.adj_r_squared)
    assert fit.to_dict()["r_squared"] is None
    assert fit.to_dict()["adj_r_squared"] is None
    assert "R^2 is undefined" in caplog.text


def test_disconnected_pairs_warn_about_residual_df(caplog):
    rows = [
        {"weekday": day, "borough": borough, COUNT_COLUMN: 10 + i * 3 + j * 5 + (i * j) % 3}
        for i, day in enumerate(WEEKDAYS[:3])
        for j, borough in enumerate(("BRONX", "BROOKLYN", "MANHATTAN"))
    ]
    rows.append({"weekday": "Thursday", "borough": "QUEENS", COUNT_COLUMN: 40})
    with caplog.at_level(logging.WARNING, logger="nypd_eda.model_lab"):
        fit = fit_count_model(pd.DataFrame(rows))
    assert fit.n_groups == 10
    assert fit.n_coefficients == 7
    assert fit.df_resid == 3
    assert "rank deficient" in caplog.text


def test_full_grid_does_not_warn(caplog):
    with caplog.at_level(logging.WARNING, logger="nypd_eda.model_lab"):
        fit_count_model(_make_counts(noise=True))
    assert not [record for record in caplog.records if record.levelno >= logging.WARNING]
