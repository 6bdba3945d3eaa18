import os
import logging
import pytest
from unittest.mock import MagicMock, patch
import sys

TEST_DIR_MAIN = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT_MAIN = os.path.abspath(os.path.join(TEST_DIR_MAIN, '..'))
if PROJECT_ROOT_MAIN not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_MAIN)

from src import main
from src.exceptions import DataLoadError, PipelineError

VALID_CONFIG = {
    "data_source": {"tracks_path": "t.csv", "artists_path": "a.csv"},
    "preprocessing": {"min_year": 2010, "outlier_removal": {"enabled": False}},
    "features": {"response": "popularity", "columns": [{"name": "energy", "kind": "numeric"}]},
    "data_split": {"seed": 1},
    "selection": {"policies": ["forward"], "criterion": "aic"},
    "artifacts": {"metrics_path": "reports/metrics.json"},
}


@pytest.fixture(autouse=True)
def restore_root_handlers():
    saved = logging.root.handlers[:]
    yield
    for handler in logging.root.handlers[:]:
        if handler not in saved:
            handler.close()
    logging.root.handlers[:] = saved


@pytest.fixture
def logging_config(tmp_path):
    return {"level": "DEBUG", "log_file": str(tmp_path / "logs" / "pipeline.log")}


def test_setup_logging_installs_file_and_stream_handlers(logging_config):
    main.setup_logging(logging_config)
    handler_types = {type(h) for h in logging.root.handlers}
    assert logging.FileHandler in handler_types
    assert logging.StreamHandler in handler_types
    assert os.path.exists(logging_config["log_file"])
    assert logging.root.level == logging.DEBUG

def test_main_returns_1_for_missing_config(tmp_path):
    assert main.main(["--config", str(tmp_path / "nope.yaml")]) == 1

@patch("src.main.run_pipeline")
@patch("src.main.load_config")
def test_main_runs_pipeline(mock_load, mock_run, logging_config):
    mock_load.return_value = dict(VALID_CONFIG, logging=logging_config)
    result = MagicMock()
    result.failures = []
    result.selection_metric = "rmse"
    result.winner.test_report.rmse = 3.21
    mock_run.return_value = result

    assert main.main(["--config", "custom.yaml"]) == 0
    mock_load.assert_called_once_with("custom.yaml")
    mock_run.assert_called_once()

@patch("src.main.run_pipeline")
@patch("src.main.load_config")
def test_main_invalid_config_returns_1(mock_load, mock_run, logging_config):
    mock_load.return_value = {"logging": logging_config, "features": {}}
    assert main.main([]) == 1
    mock_run.assert_not_called()

@pytest.mark.parametrize("error", [DataLoadError("tracks file not found"), PipelineError("no candidate")])
@patch("src.main.run_pipeline")
@patch("src.main.load_config")
def test_main_pipeline_errors_return_1(mock_load, mock_run, error, logging_config):
    mock_load.return_value = dict(VALID_CONFIG, logging=logging_config)
    mock_run.side_effect = error
    assert main.main([]) == 1
