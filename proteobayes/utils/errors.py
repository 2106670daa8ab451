"""Domain exceptions raised by the proteobayes pipeline.

All of them derive from ValueError so callers that already guard pipeline
calls with `except ValueError` keep working.
"""


class ProteobayesError(ValueError):
    """Base class for pipeline failures."""


class SchemaError(ProteobayesError):
    """Input table is missing expected columns (or labels cannot be parsed)."""


class EmptyResultError(ProteobayesError):
    """A pipeline stage removed every row."""

    def __init__(self, stage: str, message: str = ""):
        self.stage = stage
        text = f"[{stage}] no rows left"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


class ImputationError(ProteobayesError):
    """A missing cell has no informative neighbor to borrow a value from."""

    def __init__(self, row: int, column: int, message: str = ""):
        self.row = row
        self.column = column
        super().__init__(message or f"No neighbor has a value for row {row}, column {column}.")


class DesignError(ProteobayesError):
    """Design matrix is singular or does not match the samples."""
