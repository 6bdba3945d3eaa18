"""
Config-driven design-frame encoding.

- Resolves the `features.columns` schema into ColumnSpec values once.
- Encodes booleans as 0/1, numerics as float and categoricals as k-1 dummies.
- Builds the two dataset variants (with and without artist popularity).
- Prunes predictors that are constant or collinear on a given partition.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Tuple

import numpy as np
import pandas as pd

# Module-level logger
logger = logging.getLogger(__name__)

VALID_KINDS = ("numeric", "categorical", "boolean")
WITHOUT_ARTIST = "without_artist_popularity"
WITH_ARTIST = "with_artist_popularity"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    kind: str


@dataclass(frozen=True, eq=False)
class DatasetVariant:
    """An encoded, all-numeric frame plus the ordered predictor universe drawn from it."""

    name: str
    frame: pd.DataFrame
    response: str
    universe: Tuple[str, ...]


def parse_column_specs(config: Dict[str, Any]) -> List[ColumnSpec]:
    """Reads `features.columns` into ColumnSpec values, rejecting unknown kinds."""
    columns_cfg = config.get("features", {}).get("columns")
    if not columns_cfg:
        raise KeyError("Config must define a non-empty 'features.columns' list.")

    specs = []
    for entry in columns_cfg:
        name = entry.get("name")
        kind = entry.get("kind", "numeric")
        if not name:
            raise ValueError(f"Column entry without a name in 'features.columns': {entry}")
        if kind not in VALID_KINDS:
            raise ValueError(f"Column '{name}' has unsupported kind '{kind}'. Expected one of {VALID_KINDS}.")
        specs.append(ColumnSpec(name=name, kind=kind))
    logger.info(f"Resolved {len(specs)} column specs: {[s.name for s in specs]}")
    return specs


def encode_design_frame(df: pd.DataFrame, specs: List[ColumnSpec], response: str) -> Tuple[pd.DataFrame, List[str]]:
    """Returns the numeric design frame (response first) and the ordered predictor names."""
    missing = [s.name for s in specs if s.name not in df.columns]
    if response not in df.columns:
        missing.insert(0, response)
    if missing:
        logger.error(f"Cannot encode design frame, columns missing: {missing}")
        raise KeyError(f"Columns missing from dataset: {missing}")

    parts = [df[[response]].astype(float)]
    universe: List[str] = []
    for spec in specs:
        col = df[spec.name]
        if spec.kind == "numeric":
            encoded = col.astype(float).to_frame()
        elif spec.kind == "boolean":
            encoded = col.astype(bool).astype(float).to_frame()
        else:
            encoded = pd.get_dummies(col, prefix=spec.name, drop_first=True, dtype=float)
            logger.info(f"Categorical '{spec.name}' expanded to dummies: {list(encoded.columns)}")
        parts.append(encoded)
        universe.extend(encoded.columns)

    design = pd.concat(parts, axis=1)
    logger.info(f"Design frame encoded: shape={design.shape}, {len(universe)} candidate predictors.")
    return design, universe


def build_variants(df: pd.DataFrame, config: Dict[str, Any]) -> List[DatasetVariant]:
    """Builds the dataset variant without, then with, the artist popularity predictor."""
    feat_cfg = config.get("features", {})
    response = feat_cfg.get("response", "popularity")
    artist_feature = feat_cfg.get("artist_feature", "artist_popularity")
    specs = parse_column_specs(config)

    variants = []
    for variant_name, keep_artist in ((WITHOUT_ARTIST, False), (WITH_ARTIST, True)):
        variant_specs = [s for s in specs if keep_artist or s.name != artist_feature]
        if keep_artist and artist_feature not in [s.name for s in specs]:
            variant_specs.append(ColumnSpec(name=artist_feature, kind="numeric"))
        frame, universe = encode_design_frame(df, variant_specs, response)
        variants.append(DatasetVariant(name=variant_name, frame=frame, response=response, universe=tuple(universe)))
        logger.info(f"Variant '{variant_name}': {len(universe)} predictors.")
    return variants


def prune_constant_predictors(train_df: pd.DataFrame, universe: List[str]) -> Tuple[List[str], List[str]]:
    """Splits the universe into predictors that vary on `train_df` and those that do not."""
    kept, dropped = [], []
    for name in universe:
        if train_df[name].nunique(dropna=True) > 1:
            kept.append(name)
        else:
            dropped.append(name)
    if dropped:
        logger.warning(f"Dropping predictors constant on the training partition: {dropped}")
    return kept, dropped


def prune_collinear_predictors(train_df: pd.DataFrame, universe: List[str]) -> Tuple[List[str], List[str]]:
    """
    Drops predictors that are a linear combination of the intercept and the
    predictors kept before them on `train_df`.

    Catches a categorical whose reference level is absent from training: its
    dummies then sum to the intercept and the last one is dropped.
    """
    basis = np.ones((len(train_df), 1))
    kept, dropped = [], []
    for name in universe:
        extended = np.column_stack([basis, train_df[name].to_numpy(dtype=float)])
        if np.linalg.matrix_rank(extended) > basis.shape[1]:
            basis = extended
            kept.append(name)
        else:
            dropped.append(name)
    if dropped:
        logger.warning(f"Dropping predictors collinear with earlier ones on the training partition: {dropped}")
    return kept, dropped
