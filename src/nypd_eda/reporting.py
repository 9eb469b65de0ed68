from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, List

import pandas as pd
import seaborn as sns
from matplotlib import pyplot as plt

from nypd_eda.config import COUNT_COLUMN, WEEKDAYS
from nypd_eda.aggregate import borough_weekday_matrix, rollup_counts
from nypd_eda.model_lab import CountModelFit

log = logging.getLogger(__name__)

BAR_COLOR = "#0B5ED7"
ACCENT_COLOR = "#C43F3A"


def configure_matplotlib() -> None:
    sns.set_theme(style="whitegrid", context="talk")
    plt.rcParams.update({"axes.spines.right": False, "axes.spines.top": False})


def _save(fig: plt.Figure, figures_dir: Path, name: str) -> Path:
    path = figures_dir / f"{name}.png"
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def _totals(groups: pd.DataFrame, key: str) -> pd.Series:
    return rollup_counts(groups, [key]).set_index(key)[COUNT_COLUMN]


def plot_counts(
    counts: pd.Series,
    figures_dir: Path,
    name: str,
    title: str,
    xlabel: str,
    horizontal: bool = False,
) -> Path:
    fig, ax = plt.subplots(figsize=(12, 6))
    labels = [str(label) for label in counts.index]
    if horizontal:
        sns.barplot(y=labels, x=counts.values, color=BAR_COLOR, ax=ax)
        ax.set_xlabel("Incidents")
        ax.set_ylabel(xlabel)
    else:
        sns.barplot(x=labels, y=counts.values, color=BAR_COLOR, ax=ax)
        ax.set_xlabel(xlabel)
        ax.set_ylabel("Incidents")
    ax.set_title(title)
    return _save(fig, figures_dir, name)


def plot_murders_by_borough(groups: pd.DataFrame, figures_dir: Path) -> Path:
    by_flag = rollup_counts(groups, ["borough", "murder_flag"])
    by_flag["outcome"] = by_flag["murder_flag"].map({True: "Murder", False: "Non-fatal"})
    fig, ax = plt.subplots(figsize=(12, 6))
    sns.barplot(
        data=by_flag,
        x="borough",
        y=COUNT_COLUMN,
        hue="outcome",
        palette={"Non-fatal": BAR_COLOR, "Murder": ACCENT_COLOR},
        ax=ax,
    )
    ax.set_title("Shootings and Murders by Borough")
    ax.set_xlabel("")
    ax.set_ylabel("Incidents")
    return _save(fig, figures_dir, "murders_by_borough")


def run_eda_outputs(groups: pd.DataFrame, figures_dir: Path) -> Dict[str, str]:
    if groups.empty:
        log.warning("No incident groups to chart; skipping figures")
        return {}
    figures_dir.mkdir(parents=True, exist_ok=True)
    configure_matplotlib()
    weekday_totals = _totals(groups, "weekday").reindex(list(WEEKDAYS), fill_value=0)
    outputs = {
        "borough_counts": plot_counts(
            _totals(groups, "borough").sort_values(ascending=False),
            figures_dir,
            "incidents_by_borough",
            "Shooting Incidents by Borough",
            "Borough",
        ),
        "weekday_counts": plot_counts(
            weekday_totals,
            figures_dir,
            "incidents_by_weekday",
            "Shooting Incidents by Weekday",
            "Weekday",
        ),
        "year_counts": plot_counts(
            _totals(groups, "year"),
            figures_dir,
            "incidents_by_year",
            "Shooting Incidents per Year",
            "Year",
        ),
        "age_band_counts": plot_counts(
            _totals(groups, "victim_age_band"),
            figures_dir,
            "victims_by_age_band",
            "Victims by Age Band",
            "Age band",
        ),
        "race_counts": plot_counts(
            _totals(groups, "victim_race").sort_values(),
            figures_dir,
            "victims_by_race",
            "Victims by Race",
            "",
            horizontal=True,
        ),
        "murders_by_borough": plot_murders_by_borough(groups, figures_dir),
    }
    log.info("Rendered %s figures to %s", len(outputs), figures_dir)
    return {name: str(path) for name, path in outputs.items()}


def compute_insights(groups: pd.DataFrame) -> Dict[str, object]:
    total = int(groups[COUNT_COLUMN].sum()) if not groups.empty else 0
    if total == 0:
        return {"total_incidents": 0}

    borough = _totals(groups, "borough")
    weekday = _totals(groups, "weekday")
    year = _totals(groups, "year")
    murders = int(groups.loc[groups["murder_flag"].astype(bool), COUNT_COLUMN].sum())
    matrix = borough_weekday_matrix(groups)
    return {
        "total_incidents": total,
        "murders": murders,
        "murder_share": murders / total,
        "years": {"first": int(year.index.min()), "last": int(year.index.max())},
        "borough_peak": {"name": str(borough.idxmax()), "share": float(borough.max() / total)},
        "weekday_peak": {
            "name": str(weekday.idxmax()),
            "share": float(weekday.max() / total),
            "min_name": str(weekday.idxmin()),
            "min_share": float(weekday.min() / total),
        },
        "peak_year": {"year": int(year.idxmax()), "incidents": int(year.max())},
        "borough_weekday": {
            str(name): {day: int(count) for day, count in row.items()}
            for name, row in matrix.iterrows()
        },
    }


def _format_r_squared(value: float) -> str:
    return "undefined" if math.isnan(value) else f"{value:.3f}"


def format_coefficients(fit: CountModelFit) -> List[str]:
    table = fit.coefficient_table()
    lines = ["| Term | Coefficient | Std. error |", "|---|---:|---:|"]
    for term, row in table.iterrows():
        lines.append(f"| `{term}` | {row['coefficient']:,.2f} | {row['std_error']:,.2f} |")
    return lines


def build_summary_markdown(
    metrics: Dict[str, object],
    insights: Dict[str, object],
    fit: CountModelFit,
) -> str:
    md_lines = [
        "# NYPD Shooting Incidents — EDA & Count Model",
        "",
        "## Dataset Snapshot",
        f"- **Raw records:** {metrics['raw_records']:,}",
        f"- **Quarantined (unparseable):** {metrics['quarantined_records']:,}",
        f"- **Records after sentinel filter:** {metrics['filtered_records']:,}",
        f"- **Aggregate groups:** {metrics['groups']:,}",
        "",
        "## Sentinel Matches",
        *[f"- `{rule}` matched {count:,} records" for rule, count in metrics["sentinel_matches"].items()],
    ]
    if insights.get("total_incidents"):
        weekday_peak = insights["weekday_peak"]
        borough_peak = insights["borough_peak"]
        md_lines += [
            "",
            "## Highlights",
            f"- Coverage: {insights['years']['first']} to {insights['years']['last']}; "
            f"{insights['peak_year']['year']} was the peak year ({insights['peak_year']['incidents']:,} incidents).",
            f"- {borough_peak['name']} accounts for {borough_peak['share']:.1%} of incidents.",
            f"- {weekday_peak['name']} carries {weekday_peak['share']:.1%} of incidents; "
            f"{weekday_peak['min_name']} the least ({weekday_peak['min_share']:.1%}).",
            f"- {insights['murders']:,} incidents ({insights['murder_share']:.1%}) were flagged as murders.",
        ]
    md_lines += [
        "",
        f"## Model: `{fit.response} ~ {' + '.join(fit.levels)}`",
        f"- Groups: {fit.n_groups}, coefficients: {fit.n_coefficients}, residual df: {fit.df_resid}",
        f"- R²: {_format_r_squared(fit.r_squared)}, adjusted R²: {_format_r_squared(fit.adj_r_squared)}",
        f"- Reference levels: {', '.join(f'{k}={v}' for k, v in fit.reference_levels.items())}",
        "",
        *format_coefficients(fit),
        "",
    ]
    return "\n".join(md_lines)
