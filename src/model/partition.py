"""
Deterministic train/validation/test partitioning.

A single seeded numpy Generator draws the training sample first and the
validation sample from what is left; the test partition is the remainder.
"""
import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Partition:
    train: np.ndarray
    valid: np.ndarray
    test: np.ndarray

    def sizes(self):
        return len(self.train), len(self.valid), len(self.test)

    def split(self, df: pd.DataFrame):
        """Returns the (train, valid, test) row subsets of `df`, selected by index label."""
        return df.loc[self.train], df.loc[self.valid], df.loc[self.test]


def partition(row_ids: Sequence, seed: int, train_frac: float = 0.6, valid_frac: float = 0.3) -> Partition:
    """Splits `row_ids` into disjoint train/valid/test id arrays covering every id exactly once."""
    for label, frac in (("train_frac", train_frac), ("valid_frac", valid_frac)):
        if not 0.0 <= frac <= 1.0:
            raise ValueError(f"{label} must be within [0, 1], got {frac}")
    if train_frac + valid_frac > 1.0 + 1e-12:
        raise ValueError(f"train_frac + valid_frac must not exceed 1, got {train_frac + valid_frac}")

    ids = np.asarray(row_ids)
    if len(pd.unique(ids)) != len(ids):
        raise ValueError("row_ids contains duplicates")

    n = len(ids)
    n_train = min(round(n * train_frac), n)
    n_valid = min(round(n * valid_frac), n - n_train)

    rng = np.random.default_rng(seed)
    train_pos = rng.choice(n, size=n_train, replace=False) if n_train else np.empty(0, dtype=int)

    remaining_mask = np.ones(n, dtype=bool)
    remaining_mask[train_pos] = False
    remaining_pos = np.flatnonzero(remaining_mask)

    if n_valid:
        valid_pos = np.sort(rng.choice(remaining_pos, size=n_valid, replace=False))
    else:
        valid_pos = np.empty(0, dtype=int)
    remaining_mask[valid_pos] = False
    test_pos = np.flatnonzero(remaining_mask)

    result = Partition(train=ids[train_pos], valid=ids[valid_pos], test=ids[test_pos])
    logger.info(f"Partitioned {n} rows with seed {seed}: train/valid/test = {result.sizes()}")
    return result
