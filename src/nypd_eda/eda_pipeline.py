from __future__ import annotations

import argparse
import csv
import io
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Sequence

import numpy as np
import pandas as pd
import requests

from nypd_eda.config import (
    BOROUGHS,
    COLUMN_MAP,
    DEFAULT_SOURCE_URL,
    GROUP_KEYS,
    MODEL_KEYS,
    MURDER_FLAG_VALUES,
    SOURCE_COLUMNS,
    WEEKDAYS,
    PipelineConfig,
    SentinelRule,
)
from nypd_eda import reporting
from nypd_eda.aggregate import aggregate_incidents, aggregate_trend
from nypd_eda.errors import FetchError, FormatError, ParseError, PipelineError, SchemaError
from nypd_eda.model_lab import CountModelFit, fit_count_model, write_model_report

log = logging.getLogger(__name__)

RAW_FIELD_COLUMNS = ["date_raw", "time_raw", "murder_flag_raw"]


# Loader


def _read_source_text(source: str, timeout: float) -> str:
    if source.startswith(("http://", "https://")):
        try:
            response = requests.get(source, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"Could not fetch {source}: {exc}") from exc
        return response.text

    path = Path(source).expanduser()
    if not path.is_file():
        raise FetchError(f"Data file not found: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError(f"{path} is not UTF-8 delimited text: {exc}") from exc
    except OSError as exc:
        raise FetchError(f"Could not read {path}: {exc}") from exc


def _check_row_widths(text: str, source: str) -> int:
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader, None)
        if not header:
            raise FormatError(f"{source} is empty or has no header row.")
        width = len(header)
        for row in reader:
            if row and len(row) != width:
                raise FormatError(
                    f"{source} line {reader.line_num} has {len(row)} fields, expected {width}."
                )
    except csv.Error as exc:
        raise FormatError(f"{source} is not valid delimited text: {exc}") from exc
    return width


def load_raw_data(source: str, config: PipelineConfig) -> pd.DataFrame:
    text = _read_source_text(source, config.fetch_timeout)
    width = _check_row_widths(text, source)
    try:
        df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise FormatError(f"{source} could not be parsed as CSV: {exc}") from exc
    log.info("Loaded %s rows x %s columns from %s", len(df), width, source)
    return df


# Schema normalizer


def normalize_schema(df: pd.DataFrame, config: PipelineConfig) -> pd.DataFrame:
    missing = [col for col in COLUMN_MAP if col not in df.columns]
    if missing:
        raise SchemaError(f"Source is missing expected columns: {', '.join(missing)}")
    if config.strict_schema and df.shape[1] != len(SOURCE_COLUMNS):
        raise SchemaError(
            f"Source has {df.shape[1]} columns, expected the {len(SOURCE_COLUMNS)}-column published schema."
        )
    normalized = df.loc[:, list(COLUMN_MAP)].rename(columns=COLUMN_MAP)
    unexpected = sorted(set(normalized["borough"].dropna().astype(str)) - set(BOROUGHS) - {""})
    if unexpected:
        log.warning("Unrecognized borough values: %s", ", ".join(unexpected))
    log.info("Normalized schema: kept %s of %s columns", normalized.shape[1], df.shape[1])
    return normalized


# Field parser


@dataclass
class ParseResult:
    frame: pd.DataFrame
    rejected: pd.DataFrame

    @property
    def dropped(self) -> int:
        return int(len(self.rejected))


def _first_failure(df: pd.DataFrame, failures: Dict[str, pd.Series], bad: pd.Series) -> ParseError:
    pos = int(np.flatnonzero(bad.to_numpy())[0])
    column = next(name for name, failed in failures.items() if failed.iloc[pos])
    return ParseError(
        "Unparseable field",
        column=column,
        row=df.index[pos],
        value=df[column].iloc[pos],
    )


def parse_fields(df: pd.DataFrame, config: PipelineConfig) -> ParseResult:
    """Parse date/time/flag strings and derive year, year_month, month and weekday.

    Weekday names come from ``WEEKDAYS`` indexed by ``dayofweek`` so they never
    depend on the process locale.
    """
    dates = pd.to_datetime(df["date_raw"], format=config.date_format, errors="coerce")
    times = pd.to_datetime(df["time_raw"], format=config.time_format, errors="coerce")
    flags = df["murder_flag_raw"].astype(str).str.strip().str.upper().map(MURDER_FLAG_VALUES)

    failures = {
        "date_raw": dates.isna(),
        "time_raw": times.isna(),
        "murder_flag_raw": flags.isna(),
    }
    bad = failures["date_raw"] | failures["time_raw"] | failures["murder_flag_raw"]

    if bad.any() and config.on_parse_error == "raise":
        raise _first_failure(df, failures, bad)

    good = ~bad.to_numpy()
    rejected = df.loc[~good].copy()
    parsed = df.loc[good].drop(columns=RAW_FIELD_COLUMNS)
    parsed["date"] = dates.to_numpy()[good]
    parsed["time"] = times.dt.time.to_numpy()[good]
    parsed["murder_flag"] = flags.to_numpy()[good].astype(bool)
    parsed["year"] = parsed["date"].dt.year.astype("int64")
    parsed["month"] = parsed["date"].dt.month.astype("int64")
    parsed["year_month"] = parsed["year"] * 100 + parsed["month"]
    parsed["weekday"] = [WEEKDAYS[day] for day in parsed["date"].dt.dayofweek]

    if len(rejected):
        log.warning("Quarantined %s unparseable records", len(rejected))
    log.info("Parsed %s records", len(parsed))
    return ParseResult(frame=parsed, rejected=rejected)


# Row filter


def _sentinel_mask(df: pd.DataFrame, rule: SentinelRule) -> pd.Series:
    if rule.column not in df.columns:
        raise SchemaError(f"Sentinel rule column '{rule.column}' is not present.", stage="filter")
    return df[rule.column].str.contains(rule.token, regex=False, na=False)


def sentinel_audit(df: pd.DataFrame, config: PipelineConfig) -> Dict[str, int]:
    return {rule.name: int(_sentinel_mask(df, rule).sum()) for rule in config.sentinel_rules}


def filter_sentinels(df: pd.DataFrame, config: PipelineConfig) -> pd.DataFrame:
    keep = np.ones(len(df), dtype=bool)
    for rule in config.sentinel_rules:
        keep &= ~_sentinel_mask(df, rule).to_numpy()
    filtered = df.loc[keep].copy()
    log.info("Sentinel filter kept %s of %s records", len(filtered), len(df))
    return filtered


# Orchestration


@dataclass
class PipelineResult:
    raw_rows: int
    parsed: ParseResult
    filtered: pd.DataFrame
    groups: pd.DataFrame
    model_counts: pd.DataFrame
    fit: CountModelFit
    sentinel_matches: Dict[str, int]
    outputs: Dict[str, str] = field(default_factory=dict)


def export_tables(result: PipelineResult, config: PipelineConfig) -> Dict[str, str]:
    paths = config.output_paths()
    config.output_dir.mkdir(parents=True, exist_ok=True)
    result.groups.to_csv(paths["groups"], index=False)
    result.model_counts.to_csv(paths["weekday_borough"], index=False)
    aggregate_trend(result.filtered).to_csv(paths["monthly_trend"], index=False)
    written = {
        "groups": str(paths["groups"]),
        "weekday_borough": str(paths["weekday_borough"]),
        "monthly_trend": str(paths["monthly_trend"]),
    }
    if result.parsed.dropped:
        result.parsed.rejected.to_csv(paths["rejected"], index=False)
        written["rejected"] = str(paths["rejected"])
    return written


def run_pipeline(config: PipelineConfig) -> PipelineResult:
    raw_df = load_raw_data(config.source, config)
    normalized = normalize_schema(raw_df, config)
    parsed = parse_fields(normalized, config)
    matches = sentinel_audit(parsed.frame, config)
    filtered = filter_sentinels(parsed.frame, config)
    groups = aggregate_incidents(filtered, GROUP_KEYS)
    model_counts = aggregate_incidents(filtered, MODEL_KEYS)
    fit = fit_count_model(model_counts)

    result = PipelineResult(
        raw_rows=int(len(raw_df)),
        parsed=parsed,
        filtered=filtered,
        groups=groups,
        model_counts=model_counts,
        fit=fit,
        sentinel_matches=matches,
    )
    if not config.write_outputs:
        return result

    paths = config.output_paths()
    result.outputs = export_tables(result, config)
    write_model_report(fit, paths["model"])
    result.outputs["model"] = str(paths["model"])

    figures: Dict[str, str] = {}
    if config.make_figures:
        figures = reporting.run_eda_outputs(groups, config.figures_dir)
    insights = reporting.compute_insights(groups)
    metrics = {
        "source": config.source,
        "raw_records": result.raw_rows,
        "parsed_records": int(len(parsed.frame)),
        "quarantined_records": parsed.dropped,
        "filtered_records": int(len(filtered)),
        "groups": int(len(groups)),
        "sentinel_matches": matches,
        "figures": figures,
        "insights": insights,
    }
    paths["metrics"].write_text(json.dumps(metrics, indent=2, default=str), encoding="utf-8")
    paths["summary"].write_text(reporting.build_summary_markdown(metrics, insights, fit), encoding="utf-8")
    result.outputs.update(
        {"metrics": str(paths["metrics"]), "summary": str(paths["summary"]), **figures}
    )
    return result


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the NYPD shooting incident EDA pipeline.")
    parser.add_argument("--source", type=str, default=DEFAULT_SOURCE_URL, help="CSV URL or local path.")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for exported tables, figures and reports (default: ./reports).",
    )
    parser.add_argument(
        "--quarantine",
        action="store_true",
        help="Set aside unparseable records instead of aborting.",
    )
    parser.add_argument("--no-figures", action="store_true", help="Skip chart rendering.")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    config = PipelineConfig(
        source=args.source,
        output_dir=args.output_dir,
        on_parse_error="quarantine" if args.quarantine else "raise",
        make_figures=not args.no_figures,
    )
    try:
        result = run_pipeline(config)
    except PipelineError as exc:
        log.error("Pipeline aborted: %s", exc)
        raise SystemExit(1) from exc
    log.info(
        "Done: %s groups, adjusted R^2=%.3f, outputs in %s",
        len(result.groups),
        result.fit.adj_r_squared,
        config.output_dir,
    )


if __name__ == "__main__":
    main()
