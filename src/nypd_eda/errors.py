from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base error; ``stage`` names the pipeline step that failed."""

    stage = "pipeline"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class FetchError(PipelineError):
    stage = "load"


class FormatError(PipelineError):
    stage = "load"


class SchemaError(PipelineError):
    stage = "normalize"


class ParseError(PipelineError):
    stage = "parse"

    def __init__(self, message: str, column: str, row: Any, value: Any) -> None:
        super().__init__(f"{message} (column={column!r}, row={row!r}, value={value!r})")
        self.column = column
        self.row = row
        self.value = value


class UnderdeterminedModelError(PipelineError):
    stage = "model"

    def __init__(self, n_groups: int, n_coefficients: int) -> None:
        super().__init__(
            f"Cannot fit model: {n_groups} groups for {n_coefficients} coefficients "
            "leaves no residual degrees of freedom."
        )
        self.n_groups = n_groups
        self.n_coefficients = n_coefficients
