"""
Forecast-accuracy evaluation utilities.

- Computes ME, RMSE, MAE, MPE and MAPE for a fitted model on a held-out frame.
- Errors are predicted minus actual; percentage metrics are in percent.
- Logs rounded metrics.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, mean_absolute_error

from src.exceptions import EmptyEvaluationSetError, SchemaMismatchError

# Initialize logger for this module.
# Assumes logging is configured by the calling script (e.g., src/main.py)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccuracyReport:
    me: float
    rmse: float
    mae: float
    mpe: float
    mape: float
    n_obs: int
    split_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _calculate_mpe(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Calculate Mean Percentage Error, skipping zeros in y_true."""
    y_true, y_pred = np.array(y_true, dtype=float), np.array(y_pred, dtype=float)
    mask = y_true != 0
    if not np.any(mask):
        logger.warning("MPE calculation failed: all true values are zero.")
        return np.nan
    return np.mean((y_pred[mask] - y_true[mask]) / y_true[mask]) * 100


def _calculate_mape(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Calculate Mean Absolute Percentage Error, handling zeros in y_true."""
    y_true, y_pred = np.array(y_true, dtype=float), np.array(y_pred, dtype=float)
    mask = y_true != 0
    if not np.any(mask):
        logger.warning("MAPE calculation failed: all true values are zero.")
        return np.nan
    return np.mean(np.abs((y_true[mask] - y_pred[mask]) / y_true[mask])) * 100


def round_metrics_dict(
        metrics_dict: Dict[str, Any], ndigits: int = 4) -> Dict[str, Any]:
    """Round float values in a metrics dictionary, descending into nested dicts and lists."""
    return {k: _round_value(v, ndigits) for k, v in metrics_dict.items()}


def _round_value(v: Any, ndigits: int) -> Any:
    if isinstance(v, dict):
        return round_metrics_dict(v, ndigits)
    if isinstance(v, (list, tuple)):
        return [_round_value(item, ndigits) for item in v]
    if isinstance(v, (float, np.floating)):
        return round(float(v), ndigits)
    return v


def calculate_accuracy(predicted, actual, split_label: Optional[str] = None) -> AccuracyReport:
    """
    Accuracy of `predicted` against `actual`.

    Args:
        predicted: Model predictions.
        actual: Observed response values, same length as `predicted`.
        split_label: Optional label for the evaluated set (e.g., "valid").

    Returns:
        AccuracyReport with raw (unrounded) values.
    """
    y_pred = np.asarray(predicted, dtype=float)
    y_true = np.asarray(actual, dtype=float)
    if len(y_true) != len(y_pred):
        raise ValueError(
            f"Length of actual ({len(y_true)}) and predicted ({len(y_pred)}) must be the same."
        )
    if len(y_true) == 0:
        raise EmptyEvaluationSetError(f"No observations to evaluate for '{split_label}' split.")

    zero_actuals = int(np.sum(y_true == 0))
    if zero_actuals:
        logger.warning(f"{zero_actuals} zero actual values skipped in percentage metrics.")

    return AccuracyReport(
        me=float(np.mean(y_pred - y_true)),
        rmse=float(np.sqrt(mean_squared_error(y_true, y_pred))),
        mae=float(mean_absolute_error(y_true, y_pred)),
        mpe=float(_calculate_mpe(y_true, y_pred)),
        mape=float(_calculate_mape(y_true, y_pred)),
        n_obs=len(y_true),
        split_label=split_label,
    )


def evaluate(model, eval_df: pd.DataFrame, split_label: Optional[str] = None) -> AccuracyReport:
    """
    Evaluate a fitted model on a held-out frame.

    Raises:
        SchemaMismatchError: a model predictor or the response is missing from `eval_df`.
        EmptyEvaluationSetError: `eval_df` has no rows.
    """
    formula = model.formula
    required = [formula.response] + list(formula.predictors)
    missing = [col for col in required if col not in eval_df.columns]
    if missing:
        logger.error(f"Cannot evaluate '{formula}' on '{split_label}' split, missing columns: {missing}")
        raise SchemaMismatchError(
            f"Evaluation frame for '{split_label}' split lacks columns required by '{formula}': {missing}"
        )
    if eval_df.empty:
        raise EmptyEvaluationSetError(f"Evaluation frame for '{split_label}' split has no rows.")

    predicted = model.predict(eval_df)
    report = calculate_accuracy(predicted, eval_df[formula.response], split_label=split_label)

    log_msg_split = f" for '{split_label}' split" if split_label else ""
    logger.info(f"Accuracy of '{formula}'{log_msg_split}: {round_metrics_dict(report.to_dict())}")
    return report
