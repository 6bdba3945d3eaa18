"""PCA summary of the standardised audio-feature space."""
import logging
from dataclasses import dataclass
from typing import List, Optional

import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PCAResult:
    """PCA outputs for reporting.

    Attributes:
        explained_variance: one row per component with columns `PC`, `variance`,
            `explained_ratio` and `cumulative_ratio`.
        loadings: index = feature names, columns `PC1..PCk`; each column is a
            unit-length eigenvector of the correlation matrix (signs are arbitrary).
    """

    explained_variance: pd.DataFrame
    loadings: pd.DataFrame

    @property
    def n_components(self) -> int:
        return len(self.explained_variance)


def run_pca(df: pd.DataFrame, columns: List[str], n_components: Optional[int] = None) -> PCAResult:
    """Standardises `columns` and fits a PCA on them."""
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise KeyError(f"PCA columns missing from dataset: {missing}")
    if not columns:
        raise ValueError("No columns given for PCA.")
    if len(df) < 2:
        raise ValueError(f"PCA needs at least 2 rows, got {len(df)}.")

    scaled = StandardScaler().fit_transform(df.loc[:, columns].astype(float))
    model = PCA(n_components=n_components)
    model.fit(scaled)

    labels = [f"PC{i + 1}" for i in range(model.n_components_)]
    explained = pd.DataFrame(
        {
            "PC": labels,
            "variance": model.explained_variance_,
            "explained_ratio": model.explained_variance_ratio_,
            "cumulative_ratio": model.explained_variance_ratio_.cumsum(),
        }
    )
    loadings = pd.DataFrame(model.components_.T, index=list(columns), columns=labels)
    logger.info(
        f"PCA on {len(columns)} features: {model.n_components_} components, "
        f"first component explains {explained['explained_ratio'].iloc[0]:.3f} of the variance."
    )
    return PCAResult(explained_variance=explained, loadings=loadings)
