"""
Exception taxonomy for the popularity pipeline.

Every stage raises one of these so the driver can decide whether a failure
aborts the run (data loading) or only excludes a single candidate model.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class DataLoadError(PipelineError):
    """Input file missing, unreadable or failing schema validation. Fatal."""


class FitError(PipelineError):
    """OLS fit impossible: missing columns, too few rows, zero variance or rank deficiency."""


class SchemaMismatchError(PipelineError):
    """Evaluation frame lacks a column the fitted model requires."""


class EmptyEvaluationSetError(PipelineError):
    """Evaluation frame has no rows."""


class SelectionCycleError(PipelineError):
    """Both-direction stepwise search revisited a predictor set."""
