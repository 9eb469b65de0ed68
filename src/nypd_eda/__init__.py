"""Load, clean, aggregate and model the NYPD shooting incident dataset."""
from nypd_eda.aggregate import (
    aggregate_incidents,
    aggregate_trend,
    borough_weekday_matrix,
    rollup_counts,
)
from nypd_eda.config import PipelineConfig, SentinelRule
from nypd_eda.eda_pipeline import (
    filter_sentinels,
    load_raw_data,
    normalize_schema,
    parse_fields,
    run_pipeline,
)
from nypd_eda.errors import (
    FetchError,
    FormatError,
    ParseError,
    PipelineError,
    SchemaError,
    UnderdeterminedModelError,
)
from nypd_eda.model_lab import CountModelFit, fit_count_model
