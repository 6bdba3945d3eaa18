"""
Variable-selection policies over a fixed, ordered predictor universe.

- exhaustive: best subset per size by RSS, then the size with the highest
  adjusted R-squared (the smallest size wins ties).
- forward / backward / stepwise: greedy paths scored by AIC or BIC from the
  statsmodels fit, accepting strict improvements only.

Every policy returns a SelectionResult carrying the chosen Formula and the path
of sets it visited.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from src.exceptions import FitError, SelectionCycleError
from src.model.model import Formula, fit_ols

logger = logging.getLogger(__name__)

POLICIES = ("full", "exhaustive", "forward", "backward", "stepwise")
CRITERIA = ("aic", "bic")
TIE_TOLERANCE = 1e-12


@dataclass(frozen=True)
class SelectionStep:
    step: int
    predictors: Tuple[str, ...]
    score: float


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of one selection policy.

    Attributes:
        policy: name of the policy that produced the result.
        formula: the chosen model.
        score: criterion value of the chosen model (adjusted R-squared for
            exhaustive search, AIC/BIC otherwise).
        criterion: "adj_r2", "aic" or "bic".
        trail: visited sets in order; for exhaustive search one entry per size.
    """

    policy: str
    formula: Formula
    score: float
    criterion: str
    trail: Tuple[SelectionStep, ...] = ()

    @property
    def predictors(self) -> Tuple[str, ...]:
        return self.formula.predictors


def _fit_and_score(train: pd.DataFrame, response: str, predictors: Sequence[str], criterion: str) -> float:
    fitted = fit_ols(Formula(response, tuple(predictors)), train)
    return fitted.aic if criterion == "aic" else fitted.bic


def _check_criterion(criterion: str) -> None:
    if criterion not in CRITERIA:
        raise ValueError(f"criterion must be one of {CRITERIA}, got '{criterion}'")


# --------------------------------------------------------------------------- exhaustive


def pick_most_parsimonious(size_bests: Sequence[SelectionStep]) -> SelectionStep:
    """Highest-scoring step; on ties the one with the fewest predictors is kept."""
    if not size_bests:
        raise ValueError("No candidate subsets to choose from.")
    best = None
    for candidate in sorted(size_bests, key=lambda s: len(s.predictors)):
        if best is None or candidate.score > best.score + TIE_TOLERANCE:
            best = candidate
    return best


def exhaustive_search(
    train: pd.DataFrame,
    response: str,
    universe: Sequence[str],
    nvmax: Optional[int] = None
) -> SelectionResult:
    """
    Best-subset regression.

    For each size k = 1..min(nvmax, |universe|) the subset with the lowest RSS is
    kept (first in combinations order on ties). RSS comes from the centred Gram
    matrix, RSS(S) = yc'yc - g_S' G_SS^-1 g_S, so a candidate costs one k x k solve.
    """
    if nvmax is not None and nvmax < 1:
        raise ValueError(f"nvmax must be a positive integer or None, got {nvmax}.")
    universe = list(universe)
    formula = Formula(response)
    if not universe:
        logger.warning("Exhaustive search called with an empty universe; returning the intercept-only model.")
        return SelectionResult("exhaustive", formula, 0.0, "adj_r2", ())

    y = train[response].astype(float).to_numpy()
    X = train.loc[:, universe].astype(float).to_numpy()
    n = len(y)
    Xc = X - X.mean(axis=0)
    yc = y - y.mean()
    gram = Xc.T @ Xc
    cross = Xc.T @ yc
    tss = float(yc @ yc)
    if tss == 0.0:
        raise FitError(f"Response '{response}' is constant; adjusted R-squared is undefined.")

    max_size = min(len(universe) if nvmax is None else nvmax, len(universe), n - 2)
    if max_size < 1:
        raise FitError(f"Too few rows ({n}) for exhaustive search.")

    size_bests: List[SelectionStep] = []
    for k in range(1, max_size + 1):
        best_rss, best_subset = np.inf, None
        for subset in itertools.combinations(range(len(universe)), k):
            idx = list(subset)
            try:
                beta = np.linalg.solve(gram[np.ix_(idx, idx)], cross[idx])
            except np.linalg.LinAlgError:
                continue
            rss = tss - float(cross[idx] @ beta)
            if rss < best_rss:
                best_rss, best_subset = rss, idx
        if best_subset is None:
            logger.warning(f"Exhaustive search: every subset of size {k} is singular.")
            continue
        adj_r2 = 1.0 - (best_rss / tss) * (n - 1) / (n - k - 1)
        predictors = tuple(universe[i] for i in best_subset)
        size_bests.append(SelectionStep(step=k, predictors=predictors, score=adj_r2))
        logger.debug(f"Exhaustive size {k}: {list(predictors)} rss={best_rss:.4f} adj_r2={adj_r2:.4f}")

    if not size_bests:
        raise FitError("Exhaustive search found no non-singular subset.")
    chosen = pick_most_parsimonious(size_bests)
    logger.info(f"Exhaustive search chose {len(chosen.predictors)} predictors: {list(chosen.predictors)} (adj_r2={chosen.score:.4f})")
    return SelectionResult("exhaustive", formula.with_predictors(chosen.predictors), chosen.score, "adj_r2", tuple(size_bests))


# --------------------------------------------------------------------------- greedy paths


def _best_move(
    train: pd.DataFrame,
    response: str,
    moves: List[Tuple[str, ...]],
    criterion: str
) -> Tuple[Optional[Tuple[str, ...]], float]:
    """Lowest-scoring candidate set; earlier moves win ties. Unfittable moves are skipped."""
    best_set, best_score = None, np.inf
    for move in moves:
        try:
            score = _fit_and_score(train, response, move, criterion)
        except FitError as e:
            logger.warning(f"Skipping candidate {list(move)}: {e}")
            continue
        if score < best_score:
            best_set, best_score = move, score
    return best_set, best_score


def _greedy_path(
    policy: str,
    train: pd.DataFrame,
    response: str,
    universe: Sequence[str],
    criterion: str
) -> SelectionResult:
    _check_criterion(criterion)
    universe = tuple(universe)
    current = () if policy == "forward" else universe
    current_score = _fit_and_score(train, response, current, criterion)
    trail = [SelectionStep(0, current, current_score)]
    visited = {frozenset(current)}
    logger.info(f"{policy.capitalize()} selection start: {list(current)} {criterion}={current_score:.4f}")

    while True:
        moves: List[Tuple[str, ...]] = []
        if policy in ("backward", "stepwise"):
            moves.extend(tuple(p for p in current if p != drop) for drop in current)
        if policy in ("forward", "stepwise"):
            moves.extend(current + (add,) for add in universe if add not in current)
        if not moves:
            break

        best_set, best_score = _best_move(train, response, moves, criterion)
        if best_set is None or not best_score < current_score:
            break
        if frozenset(best_set) in visited:
            raise SelectionCycleError(
                f"{policy} selection revisited predictor set {sorted(best_set)} at step {len(trail)}"
            )
        current, current_score = best_set, best_score
        visited.add(frozenset(current))
        trail.append(SelectionStep(len(trail), current, current_score))
        logger.info(f"{policy.capitalize()} step {len(trail) - 1}: {list(current)} {criterion}={current_score:.4f}")

    formula = Formula(response, current)
    logger.info(f"{policy.capitalize()} selection finished with '{formula}' ({criterion}={current_score:.4f})")
    return SelectionResult(policy, formula, current_score, criterion, tuple(trail))


def forward_selection(train: pd.DataFrame, response: str, universe: Sequence[str], criterion: str = "aic") -> SelectionResult:
    """Start from the intercept-only model and add one predictor per step."""
    return _greedy_path("forward", train, response, universe, criterion)


def backward_selection(train: pd.DataFrame, response: str, universe: Sequence[str], criterion: str = "aic") -> SelectionResult:
    """Start from the full model and drop one predictor per step."""
    return _greedy_path("backward", train, response, universe, criterion)


def stepwise_selection(train: pd.DataFrame, response: str, universe: Sequence[str], criterion: str = "aic") -> SelectionResult:
    """
    Both-direction search from the full model.

    Each step considers every single removal and every re-addition of a removed
    predictor. Raises SelectionCycleError if the accepted move lands on a set
    already visited.
    """
    return _greedy_path("stepwise", train, response, universe, criterion)


def select(
    policy: str,
    train: pd.DataFrame,
    response: str,
    universe: Sequence[str],
    criterion: str = "aic",
    nvmax: Optional[int] = None
) -> SelectionResult:
    """Dispatch to the named selection policy."""
    if policy == "full":
        _check_criterion(criterion)
        full = Formula(response, tuple(universe))
        score = _fit_and_score(train, response, full.predictors, criterion)
        return SelectionResult("full", full, score, criterion, (SelectionStep(0, full.predictors, score),))
    if policy == "exhaustive":
        return exhaustive_search(train, response, universe, nvmax=nvmax)
    if policy == "forward":
        return forward_selection(train, response, universe, criterion)
    if policy == "backward":
        return backward_selection(train, response, universe, criterion)
    if policy == "stepwise":
        return stepwise_selection(train, response, universe, criterion)
    raise ValueError(f"Unknown selection policy '{policy}'. Expected one of {POLICIES}.")
