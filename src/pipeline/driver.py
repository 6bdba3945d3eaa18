"""
Pipeline driver: load, clean, encode, select, evaluate and compare.

For each dataset variant (without / with artist popularity) the driver
partitions the encoded frame, runs every configured selection policy on the
training partition, scores the fitted candidates on validation, keeps the one
with the lowest validation error and re-evaluates it on test. Per-candidate
failures are recorded and skipped; data-loading failures abort the run.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd

from src.data_load.data_loader import check_track_columns, load_tracks, load_artists
from src.data_validation.data_validator import validate_data
from src.evaluation.evaluator import AccuracyReport, evaluate, round_metrics_dict
from src.evaluation.plots import plot_explained_variance, plot_predicted_vs_actual, plot_residual_histogram
from src.exceptions import (
    EmptyEvaluationSetError,
    FitError,
    PipelineError,
    SchemaMismatchError,
    SelectionCycleError,
)
from src.features.features import (
    DatasetVariant,
    build_variants,
    parse_column_specs,
    prune_collinear_predictors,
    prune_constant_predictors,
)
from src.features.pca import PCAResult, run_pca
from src.model.model import FittedModel, fit_ols, validate_modeling_config
from src.model.partition import Partition, partition
from src.model.selection import POLICIES, SelectionResult, select
from src.preprocess.preprocessing import main_preprocessing, validate_preprocessing_config

logger = logging.getLogger(__name__)

REPORT_METRICS = ("me", "rmse", "mae", "mpe", "mape")


@dataclass(frozen=True)
class CandidateFailure:
    variant: str
    policy: str
    stage: str
    predictors: Tuple[str, ...]
    message: str


@dataclass(frozen=True)
class Candidate:
    policy: str
    selection: SelectionResult
    model: FittedModel
    valid_report: AccuracyReport


@dataclass
class VariantResult:
    name: str
    universe: Tuple[str, ...]
    dropped_predictors: List[str]
    sizes: Tuple[int, int, int]
    candidates: List[Candidate]
    failures: List[CandidateFailure]
    best: Candidate
    test_report: Optional[AccuracyReport] = None
    test_predictions: Optional[pd.Series] = None
    test_actuals: Optional[pd.Series] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.name,
            "universe": list(self.universe),
            "dropped_predictors": self.dropped_predictors,
            "partition_sizes": dict(zip(("train", "valid", "test"), self.sizes)),
            "candidates": [
                {
                    "policy": c.policy,
                    "formula": str(c.model.formula),
                    "selection_criterion": c.selection.criterion,
                    "selection_score": c.selection.score,
                    "fit": c.model.summary_dict(),
                    "valid": c.valid_report.to_dict(),
                }
                for c in self.candidates
            ],
            "best_policy": self.best.policy,
            "best_formula": str(self.best.model.formula),
            "test": self.test_report.to_dict() if self.test_report else None,
            "failures": [asdict(f) for f in self.failures],
        }


@dataclass
class PipelineResult:
    variants: List[VariantResult]
    winner: VariantResult
    selection_metric: str
    pca: Optional[PCAResult] = None
    figures: List[str] = field(default_factory=list)

    @property
    def failures(self) -> List[CandidateFailure]:
        return [f for v in self.variants for f in v.failures]

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "selection_metric": self.selection_metric,
            "winner": self.winner.name,
            "winner_policy": self.winner.best.policy,
            "winner_formula": str(self.winner.best.model.formula),
            "variants": [v.to_dict() for v in self.variants],
            "figures": self.figures,
        }
        if self.pca is not None:
            payload["pca"] = {
                "explained_ratio": self.pca.explained_variance.set_index("PC")["explained_ratio"].to_dict(),
                "cumulative_ratio": self.pca.explained_variance.set_index("PC")["cumulative_ratio"].to_dict(),
            }
        return payload


def validate_pipeline_config(config: Dict[str, Any]) -> None:
    """Validate the presence of essential keys across every stage."""
    logger.info("Validating pipeline configuration.")
    for key in ["data_source", "features", "data_split", "selection", "artifacts"]:
        if key not in config:
            raise KeyError(f"Missing required top-level config key: '{key}'")
    for key in ["tracks_path", "artists_path"]:
        if key not in config["data_source"]:
            raise KeyError(f"Missing '{key}' in 'data_source' config.")
    if "metrics_path" not in config["artifacts"]:
        raise KeyError("Missing 'metrics_path' in 'artifacts' config.")
    unknown = [p for p in config["selection"].get("policies", []) if p not in POLICIES]
    if unknown:
        raise KeyError(f"Unknown selection policies {unknown}. Expected a subset of {POLICIES}.")
    metric = config.get("evaluation", {}).get("selection_metric", "rmse")
    if metric not in REPORT_METRICS:
        raise KeyError(f"Unsupported 'evaluation.selection_metric': '{metric}'. Expected one of {REPORT_METRICS}.")
    validate_modeling_config(config)
    validate_preprocessing_config(config)
    parse_column_specs(config)
    logger.info("Pipeline configuration validation successful.")


def _metric_key(report: Optional[AccuracyReport], metric: str) -> float:
    """Lower is better; signed metrics compare by magnitude. NaN ranks last."""
    if report is None:
        return np.inf
    value = abs(getattr(report, metric))
    return np.inf if np.isnan(value) else value


def make_partition(frame: pd.DataFrame, config: Dict[str, Any]) -> Partition:
    split_cfg = config.get("data_split", {})
    return partition(
        frame.index,
        seed=split_cfg.get("seed", 1),
        train_frac=split_cfg.get("train_frac", 0.6),
        valid_frac=split_cfg.get("valid_frac", 0.3),
    )


def run_variant(variant: DatasetVariant, config: Dict[str, Any]) -> VariantResult:
    """Select, fit and validate every configured policy on one dataset variant."""
    sel_cfg = config.get("selection", {})
    policies = sel_cfg.get("policies", list(POLICIES))
    criterion = sel_cfg.get("criterion", "aic")
    nvmax = sel_cfg.get("nvmax")
    metric = config.get("evaluation", {}).get("selection_metric", "rmse")

    logger.info(f"=== Variant '{variant.name}': {len(variant.frame)} rows, {len(variant.universe)} predictors ===")
    parts = make_partition(variant.frame, config)
    train, valid, test = parts.split(variant.frame)
    universe, dropped = prune_constant_predictors(train, list(variant.universe))
    universe, collinear = prune_collinear_predictors(train, universe)
    dropped = dropped + collinear

    candidates: List[Candidate] = []
    failures: List[CandidateFailure] = []
    for policy in policies:
        stage, predictors = "select", tuple(universe)
        try:
            selection = select(policy, train, variant.response, universe, criterion=criterion, nvmax=nvmax)
            stage, predictors = "fit", selection.predictors
            model = fit_ols(selection.formula, train)
            stage = "evaluate"
            valid_report = evaluate(model, valid, split_label="valid")
        except (FitError, SelectionCycleError, SchemaMismatchError, EmptyEvaluationSetError) as e:
            logger.warning(f"[{variant.name}/{policy}] {stage} failed for {list(predictors)}: {e}")
            failures.append(CandidateFailure(variant.name, policy, stage, predictors, str(e)))
            continue
        candidates.append(Candidate(policy, selection, model, valid_report))
        logger.info(
            f"[{variant.name}/{policy}] '{model.formula}' valid {metric}={getattr(valid_report, metric):.4f}"
        )

    if not candidates:
        raise PipelineError(f"No candidate model survived for variant '{variant.name}'.")

    # min() keeps the first of equal keys, so policy order breaks ties
    best = min(candidates, key=lambda c: _metric_key(c.valid_report, metric))
    logger.info(f"[{variant.name}] Best on validation: {best.policy} '{best.model.formula}'")

    result = VariantResult(
        name=variant.name,
        universe=tuple(universe),
        dropped_predictors=dropped,
        sizes=parts.sizes(),
        candidates=candidates,
        failures=failures,
        best=best,
    )
    try:
        result.test_report = evaluate(best.model, test, split_label="test")
        result.test_predictions = best.model.predict(test)
        result.test_actuals = test[variant.response]
    except (SchemaMismatchError, EmptyEvaluationSetError) as e:
        logger.warning(f"[{variant.name}/{best.policy}] test evaluation failed: {e}")
        failures.append(CandidateFailure(variant.name, best.policy, "test", best.selection.predictors, str(e)))
    return result


def compare_variants(results: List[VariantResult], metric: str = "rmse") -> VariantResult:
    """Variant whose chosen model has the lowest test error; earlier variants win ties."""
    scored = [r for r in results if r.test_report is not None]
    if not scored:
        raise PipelineError("No variant produced a test evaluation; cannot compare variants.")
    winner = min(scored, key=lambda r: _metric_key(r.test_report, metric))
    for r in scored:
        logger.info(f"Variant '{r.name}' test {metric}={getattr(r.test_report, metric):.4f} ({r.best.policy})")
    logger.info(f"Winning variant: '{winner.name}' with '{winner.best.model.formula}'")
    return winner


def run_pca_summary(df: pd.DataFrame, config: Dict[str, Any]) -> Optional[PCAResult]:
    pca_cfg = config.get("pca", {})
    if not pca_cfg.get("enabled", False):
        logger.info("PCA summary disabled in config.")
        return None
    columns = pca_cfg.get("columns")
    if not columns:
        artist_feature = config.get("features", {}).get("artist_feature", "artist_popularity")
        columns = [
            s.name for s in parse_column_specs(config)
            if s.kind == "numeric" and s.name != artist_feature
        ]
    return run_pca(df, columns, pca_cfg.get("n_components"))


def render_figures(results: List[VariantResult], pca: Optional[PCAResult], config: Dict[str, Any]) -> List[str]:
    plots_cfg = config.get("plots", {})
    if not plots_cfg.get("enabled", False):
        return []
    output_dir = plots_cfg.get("output_dir", "reports/figures")
    paths = []
    for r in results:
        if r.test_predictions is None:
            continue
        title = f"{r.name} ({r.best.policy}) on test"
        paths.append(plot_residual_histogram(
            r.test_predictions, r.test_actuals, output_dir, f"{r.name}_residuals.png", title=title))
        paths.append(plot_predicted_vs_actual(
            r.test_predictions, r.test_actuals, output_dir, f"{r.name}_predicted_vs_actual.png", title=title))
    if pca is not None:
        paths.append(plot_explained_variance(pca.explained_variance, output_dir))
    return paths


def write_summary(result: PipelineResult, metrics_path: str) -> None:
    metrics_dir = os.path.dirname(metrics_path)
    if metrics_dir and not os.path.exists(metrics_dir):
        os.makedirs(metrics_dir, exist_ok=True)
    with open(metrics_path, "w") as f:
        json.dump(round_metrics_dict(result.to_dict()), f, indent=4)
    logger.info(f"Pipeline summary saved to: {metrics_path}")


def run_pipeline(config: Dict[str, Any]) -> PipelineResult:
    """Run the full pipeline once. Raises DataLoadError for unusable inputs."""
    validate_pipeline_config(config)

    tracks = load_tracks(config)
    check_track_columns(tracks, config)
    artists = load_artists(config)
    validate_data(tracks, config)

    clean = main_preprocessing(tracks, artists, config)
    if clean.empty:
        raise PipelineError("No tracks left after preprocessing.")
    pca = run_pca_summary(clean, config)

    metric = config.get("evaluation", {}).get("selection_metric", "rmse")
    results = [run_variant(variant, config) for variant in build_variants(clean, config)]
    winner = compare_variants(results, metric)

    result = PipelineResult(variants=results, winner=winner, selection_metric=metric, pca=pca)
    result.figures = render_figures(results, pca, config)
    write_summary(result, config["artifacts"]["metrics_path"])
    return result
