"""
Diagnostic figures for the chosen models and the PCA summary.

Each function writes a PNG and returns its path.
"""
import logging
import os
from typing import Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402

logger = logging.getLogger(__name__)


def _save(fig, output_dir: str, filename: str) -> str:
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, filename)
    fig.tight_layout()
    fig.savefig(path, dpi=100)
    plt.close(fig)
    logger.info(f"Saved figure: {path}")
    return path


def plot_residual_histogram(
    predicted: pd.Series,
    actual: pd.Series,
    output_dir: str,
    filename: str = "residuals.png",
    title: Optional[str] = None
) -> str:
    """Histogram (with KDE) of predicted minus actual."""
    residuals = np.asarray(predicted, dtype=float) - np.asarray(actual, dtype=float)
    fig, ax = plt.subplots(figsize=(7, 4))
    sns.histplot(residuals, kde=True, ax=ax)
    ax.axvline(0.0, color="black", linestyle="--", linewidth=1)
    ax.set_xlabel("Predicted - actual")
    ax.set_title(title or "Residual distribution")
    return _save(fig, output_dir, filename)


def plot_predicted_vs_actual(
    predicted: pd.Series,
    actual: pd.Series,
    output_dir: str,
    filename: str = "predicted_vs_actual.png",
    title: Optional[str] = None
) -> str:
    predicted = np.asarray(predicted, dtype=float)
    actual = np.asarray(actual, dtype=float)
    fig, ax = plt.subplots(figsize=(5, 5))
    sns.scatterplot(x=actual, y=predicted, alpha=0.5, ax=ax)
    lo = float(min(actual.min(), predicted.min()))
    hi = float(max(actual.max(), predicted.max()))
    ax.plot([lo, hi], [lo, hi], color="red", linewidth=1)
    ax.set_xlabel("Actual")
    ax.set_ylabel("Predicted")
    ax.set_title(title or "Predicted vs actual")
    return _save(fig, output_dir, filename)


def plot_explained_variance(
    explained_variance: pd.DataFrame,
    output_dir: str,
    filename: str = "pca_explained_variance.png"
) -> str:
    """Scree plot: bars per component plus the cumulative ratio line."""
    fig, ax = plt.subplots(figsize=(7, 4))
    sns.barplot(data=explained_variance, x="PC", y="explained_ratio", color="steelblue", ax=ax)
    ax.plot(
        range(len(explained_variance)),
        explained_variance["cumulative_ratio"],
        color="darkorange",
        marker="o",
        label="cumulative",
    )
    ax.set_ylim(0, 1.05)
    ax.set_ylabel("Explained variance ratio")
    ax.legend()
    ax.set_title("PCA explained variance")
    return _save(fig, output_dir, filename)
