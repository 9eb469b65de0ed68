from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence

import numpy as np
import pandas as pd
import sklearn
import statsmodels
import statsmodels.api as sm
from sklearn.preprocessing import OneHotEncoder

from nypd_eda.config import COUNT_COLUMN, MODEL_KEYS
from nypd_eda.errors import SchemaError, UnderdeterminedModelError

log = logging.getLogger(__name__)


@dataclass
class CountModelFit:
    coefficients: pd.Series
    std_errors: pd.Series
    t_values: pd.Series
    p_values: pd.Series
    df_resid: int
    r_squared: float
    adj_r_squared: float
    n_groups: int
    levels: Dict[str, List[str]]
    response: str = COUNT_COLUMN

    @property
    def reference_levels(self) -> Dict[str, str]:
        return {predictor: values[0] for predictor, values in self.levels.items() if values}

    @property
    def n_coefficients(self) -> int:
        return int(len(self.coefficients))

    def coefficient_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "coefficient": self.coefficients,
                "std_error": self.std_errors,
                "t_value": self.t_values,
                "p_value": self.p_values,
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        rows = [
            {"term": term, **{key: _finite(value) for key, value in row.items()}}
            for term, row in self.coefficient_table().iterrows()
        ]
        return {
            "formula": f"{self.response} ~ {' + '.join(self.levels)}",
            "n_groups": self.n_groups,
            "n_coefficients": self.n_coefficients,
            "df_resid": self.df_resid,
            "r_squared": _finite(self.r_squared),
            "adj_r_squared": _finite(self.adj_r_squared),
            "reference_levels": self.reference_levels,
            "coefficients": rows,
        }


def _finite(value: Any) -> float | None:
    value = float(value)
    return value if math.isfinite(value) else None


def _design_matrix(frame: pd.DataFrame, predictors: List[str], levels: Dict[str, List[str]]) -> pd.DataFrame:
    # drop="first" leaves the alphabetically first observed level as the reference.
    encoder = OneHotEncoder(
        categories=[levels[column] for column in predictors],
        drop="first",
        sparse_output=False,
    )
    encoded = encoder.fit_transform(frame[predictors].astype(str))
    design = pd.DataFrame(
        encoded,
        columns=encoder.get_feature_names_out(predictors),
        index=frame.index,
    )
    return sm.add_constant(design, has_constant="add")


def fit_count_model(
    counts: pd.DataFrame,
    predictors: Sequence[str] = MODEL_KEYS,
    response: str = COUNT_COLUMN,
) -> CountModelFit:
    """Fit ``response ~ predictors`` by OLS on a grouped count table.

    Each predictor is encoded with one indicator per non-reference level plus a
    shared intercept. Raises ``UnderdeterminedModelError`` when the number of
    groups does not exceed the number of coefficients.
    """
    predictors = list(predictors)
    missing = [column for column in predictors + [response] if column not in counts.columns]
    if missing:
        raise SchemaError(f"Model input is missing columns: {', '.join(missing)}", stage="model")

    working = counts.dropna(subset=predictors)
    levels = {column: sorted(working[column].astype(str).unique().tolist()) for column in predictors}
    n_groups = int(len(working))
    n_predictors = sum(max(len(values) - 1, 0) for values in levels.values())
    n_coefficients = n_predictors + 1
    if n_groups <= n_coefficients:
        raise UnderdeterminedModelError(n_groups, n_coefficients)

    design = _design_matrix(working, predictors, levels)
    y = working[response].astype(float)
    result = sm.OLS(y, design).fit()

    df_resid = n_groups - n_coefficients
    if int(result.df_resid) != df_resid:
        log.warning(
            "Design is rank deficient: residual df is %s but standard errors use %s",
            df_resid,
            int(result.df_resid),
        )
    if np.isclose(result.centered_tss, 0.0):
        log.warning("Counts are constant across groups; R^2 is undefined")
        r_squared = adj_r_squared = float("nan")
    else:
        r_squared = float(result.rsquared)
        adj_r_squared = 1 - (1 - r_squared) * (n_groups - 1) / (n_groups - n_predictors - 1)
    log.info(
        "OLS %s ~ %s: n=%s, k=%s, adj R^2=%.4f",
        response,
        " + ".join(predictors),
        n_groups,
        n_coefficients,
        adj_r_squared,
    )
    return CountModelFit(
        coefficients=result.params,
        std_errors=result.bse,
        t_values=result.tvalues,
        p_values=result.pvalues,
        df_resid=df_resid,
        r_squared=r_squared,
        adj_r_squared=adj_r_squared,
        n_groups=n_groups,
        levels=levels,
        response=response,
    )


def write_model_report(fit: CountModelFit, report_path: Path) -> Dict[str, Any]:
    report = {
        "meta": {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "statsmodels_version": statsmodels.__version__,
            "sklearn_version": sklearn.__version__,
            "estimator": "OLS",
        },
        "model": fit.to_dict(),
    }
    report_path = Path(report_path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", encoding="utf-8") as handle:
        json.dump(report, handle, indent=2)
    log.info("Model report written to %s", report_path)
    return report
