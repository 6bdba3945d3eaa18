import os
import sys
import numpy as np
import pandas as pd

TEST_DIR_PLOTS = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT_PLOTS = os.path.abspath(os.path.join(TEST_DIR_PLOTS, '..'))
if PROJECT_ROOT_PLOTS not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_PLOTS)

from src.evaluation import plots


def _pred_actual():
    rng = np.random.default_rng(4)
    actual = pd.Series(rng.uniform(10, 90, size=50))
    return actual + rng.normal(scale=3, size=50), actual


def test_plot_residual_histogram_writes_png(tmp_path):
    predicted, actual = _pred_actual()
    path = plots.plot_residual_histogram(predicted, actual, str(tmp_path / "figs"), "res.png")
    assert path == str(tmp_path / "figs" / "res.png")
    assert os.path.getsize(path) > 0

def test_plot_predicted_vs_actual_writes_png(tmp_path):
    predicted, actual = _pred_actual()
    path = plots.plot_predicted_vs_actual(predicted, actual, str(tmp_path), title="test split")
    assert path.endswith("predicted_vs_actual.png")
    assert os.path.exists(path)

def test_plot_explained_variance_writes_png(tmp_path):
    ev = pd.DataFrame({
        "PC": ["PC1", "PC2", "PC3"],
        "variance": [2.0, 0.7, 0.3],
        "explained_ratio": [0.667, 0.233, 0.1],
        "cumulative_ratio": [0.667, 0.9, 1.0],
    })
    path = plots.plot_explained_variance(ev, str(tmp_path))
    assert os.path.basename(path) == "pca_explained_variance.png"
    assert os.path.exists(path)
