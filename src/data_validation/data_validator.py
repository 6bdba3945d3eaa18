
"""
Data validation utilities for the popularity pipeline.

This module validates the raw tracks table against the column schema declared
in config.yaml and writes a JSON validation report.
"""
import logging
import os
import json
from typing import Dict, Any, List
import pandas as pd

from src.exceptions import DataLoadError

logger = logging.getLogger(__name__)


def _is_dtype_compatible(series, expected_dtype: str) -> bool:
    kind = series.dtype.kind
    if expected_dtype == "int":
        return kind in ("i", "u")
    elif expected_dtype == "float":
        # integral CSV columns are acceptable where floats are expected
        return kind in ("f", "i", "u")
    elif expected_dtype == "str":
        return kind in ("O", "U", "S")
    elif expected_dtype == "bool":
        return kind == "b" or (kind in ("i", "u") and series.isin([0, 1]).all())
    return False


def _validate_column(
    dataframe: pd.DataFrame,
    col_schema: Dict[str, Any],
    errors: List[str],
    warnings: List[str],
    report: Dict[str, Any]
) -> None:
    """Validate a single column in the dataframe according to the schema."""
    col = col_schema["name"]
    col_report = {}
    if col not in dataframe.columns:
        if col_schema.get("required", True):
            msg = f"Missing required column: {col}"
            errors.append(msg)
            col_report["status"] = "missing"
            col_report["error"] = msg
        else:
            col_report["status"] = "not present (optional)"
        report[col] = col_report
        return

    col_series = dataframe[col]
    col_report["status"] = "present"

    # Missing values check
    missing_count = int(col_series.isnull().sum())
    if missing_count > 0:
        msg = f"Column '{col}' has {missing_count} missing values; rows are dropped during preprocessing."
        warnings.append(msg)
        col_report["missing_count"] = missing_count
    col_series = col_series.dropna()

    # Type check
    dtype_expected = col_schema.get("dtype")
    if dtype_expected and not _is_dtype_compatible(col_series, dtype_expected):
        msg = f"Column '{col}' has dtype '{col_series.dtype}', expected '{dtype_expected}'"
        errors.append(msg)
        col_report["dtype"] = str(col_series.dtype)
        col_report["dtype_expected"] = dtype_expected
        col_report["error"] = msg
        report[col] = col_report
        return  # Stop further checks if dtype is wrong

    # Value checks: min, max
    if "min" in col_schema and col_schema["min"] is not None:
        min_val = col_schema["min"]
        below = int((col_series < min_val).sum())
        if below > 0:
            msg = f"Column '{col}' has {below} values below min ({min_val})"
            errors.append(msg)
            col_report["below_min"] = below
    if "max" in col_schema and col_schema["max"] is not None:
        max_val = col_schema["max"]
        above = int((col_series > max_val).sum())
        if above > 0:
            msg = f"Column '{col}' has {above} values above max ({max_val})"
            errors.append(msg)
            col_report["above_max"] = above
    report[col] = col_report


def _write_report(report_path: str, payload: Dict[str, Any]) -> None:
    dir_ = os.path.dirname(report_path)
    if dir_:
        os.makedirs(dir_, exist_ok=True)
    with open(report_path, "w", encoding="utf-8") as report_file:
        json.dump(payload, report_file, indent=2)


def validate_data(dataframe: pd.DataFrame, config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Validate dataframe against the schema defined in config.

    Returns the report payload. Raises DataLoadError when errors are found and
    ``data_validation.action_on_error`` is ``raise``.
    """
    dv_cfg = config_dict.get("data_validation", {})
    report_path = str(dv_cfg.get("report_path", "logs/validation_report.json"))
    errors, warnings = [], []
    report = {}

    if not dv_cfg.get("enabled", True):
        logger.info("Data validation is disabled in config.")
        return {"result": "skipped", "errors": [], "warnings": [], "details": {}}

    schema = dv_cfg.get("schema", {}).get("columns", [])
    if not schema:
        logger.warning(
            "No data_validation.schema.columns defined in config. "
            "Skipping validation."
        )
        payload = {"result": "pass", "errors": [], "warnings": [], "details": {}}
        _write_report(report_path, payload)
        return payload

    for col_schema in schema:
        _validate_column(dataframe, col_schema, errors, warnings, report)

    action_on_error = dv_cfg.get("action_on_error", "raise").lower()

    if errors:
        logger.error(
            "Data validation failed with %d errors. See %s",
            len(errors), report_path
        )
        for err in errors:
            logger.error("%s", err)
    if warnings:
        logger.warning("Data validation warnings: %d", len(warnings))
        for warn in warnings:
            logger.warning("%s", warn)

    payload = {
        "result": "fail" if errors else "pass",
        "errors": errors,
        "warnings": warnings,
        "details": report
    }
    _write_report(report_path, payload)

    if errors:
        if action_on_error == "raise":
            raise DataLoadError(
                f"Data validation failed with {len(errors)} errors. See {report_path} for details"
            )
        logger.warning("Data validation errors detected but proceeding as per config.")
    else:
        logger.info(f"Data validation passed for {len(schema)} columns.")
    return payload


if __name__ == "__main__":
    import sys
    import yaml
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    )
    if len(sys.argv) < 3:
        logger.error(
            "Usage: python -m src.data_validation.data_validator "
            "<tracks.csv> <config.yaml>"
        )
        sys.exit(1)
    data_path, config_path = sys.argv[1], sys.argv[2]
    df = pd.read_csv(data_path)
    with open(config_path, "r", encoding="utf-8") as config_file:
        config_dict = yaml.safe_load(config_file)
    validate_data(df, config_dict)
