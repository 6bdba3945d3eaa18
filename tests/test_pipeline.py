import os
import sys
import json
import pytest
import numpy as np
import pandas as pd
from unittest.mock import patch

TEST_DIR_PIPE = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT_PIPE = os.path.abspath(os.path.join(TEST_DIR_PIPE, '..'))
if PROJECT_ROOT_PIPE not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_PIPE)

from src.pipeline import driver
from src.features.features import DatasetVariant
from src.exceptions import DataLoadError, FitError, PipelineError, SelectionCycleError
from src.model.selection import select as real_select


def write_synthetic_data(tmp_path, n_tracks=200, n_artists=50, seed=7):
    """Tracks whose popularity depends on energy and on the primary artist's popularity."""
    rng = np.random.default_rng(seed)
    artist_ids = [f"a{i}" for i in range(n_artists)]
    artist_pop = rng.integers(10, 81, size=n_artists)
    artists = pd.DataFrame({
        "id": artist_ids,
        "followers": rng.integers(100, 100000, size=n_artists),
        "genres": ["['pop']"] * n_artists,
        "name": [f"Artist {i}" for i in range(n_artists)],
        "popularity": artist_pop,
    })

    primary = rng.integers(0, n_artists, size=n_tracks)
    energy = rng.uniform(0, 1, size=n_tracks)
    popularity = np.round(20 + 30 * energy + 0.5 * artist_pop[primary] + rng.normal(scale=2, size=n_tracks))
    tracks = pd.DataFrame({
        "id": [f"t{i}" for i in range(n_tracks)],
        "name": [f"Track {i}" for i in range(n_tracks)],
        "popularity": popularity.astype(int),
        "duration_ms": rng.integers(180000, 240000, size=n_tracks),
        "explicit": rng.integers(0, 2, size=n_tracks),
        "artists": ["['X']"] * n_tracks,
        "id_artists": [f"['{artist_ids[p]}', 'a0']" for p in primary],
        "release_date": [f"{y}-06-01" for y in rng.integers(2010, 2021, size=n_tracks)],
        "danceability": rng.uniform(0, 1, size=n_tracks),
        "energy": energy,
        "key": rng.integers(0, 12, size=n_tracks),
        "loudness": rng.uniform(-20, -2, size=n_tracks),
        "mode": rng.integers(0, 2, size=n_tracks),
        "speechiness": rng.uniform(0, 0.5, size=n_tracks),
        "acousticness": rng.uniform(0, 1, size=n_tracks),
        "instrumentalness": rng.uniform(0, 1, size=n_tracks),
        "liveness": rng.uniform(0, 1, size=n_tracks),
        "valence": rng.uniform(0, 1, size=n_tracks),
        "tempo": rng.uniform(60, 180, size=n_tracks),
        "time_signature": rng.choice([3, 4, 5], size=n_tracks),
    })
    tracks_path = tmp_path / "tracks.csv"
    artists_path = tmp_path / "artists.csv"
    tracks.to_csv(tracks_path, index=False)
    artists.to_csv(artists_path, index=False)
    return str(tracks_path), str(artists_path)


@pytest.fixture
def pipeline_config(tmp_path):
    tracks_path, artists_path = write_synthetic_data(tmp_path)
    return {
        "data_source": {"tracks_path": tracks_path, "artists_path": artists_path},
        "data_validation": {
            "enabled": True,
            "action_on_error": "raise",
            "report_path": str(tmp_path / "logs" / "validation_report.json"),
            "schema": {"columns": [
                {"name": "popularity", "dtype": "int", "min": 0, "max": 100},
                {"name": "energy", "dtype": "float", "min": 0.0, "max": 1.0},
                {"name": "id_artists", "dtype": "str"},
                {"name": "release_date", "dtype": "str"},
            ]},
        },
        "preprocessing": {
            "min_year": 2010,
            "max_year": None,
            "drop_zero_popularity": True,
            "outlier_removal": {"enabled": True, "features": ["duration_ms"], "iqr_multiplier": 3.0},
        },
        "features": {
            "response": "popularity",
            "artist_feature": "artist_popularity",
            "columns": [
                {"name": "energy", "kind": "numeric"},
                {"name": "loudness", "kind": "numeric"},
                {"name": "danceability", "kind": "numeric"},
                {"name": "valence", "kind": "numeric"},
                {"name": "explicit", "kind": "boolean"},
                {"name": "time_signature", "kind": "categorical"},
                {"name": "artist_popularity", "kind": "numeric"},
            ],
        },
        "pca": {"enabled": True, "n_components": None},
        "data_split": {"seed": 1, "train_frac": 0.6, "valid_frac": 0.3},
        "selection": {"policies": ["full", "exhaustive", "forward", "backward", "stepwise"], "criterion": "aic", "nvmax": None},
        "evaluation": {"selection_metric": "rmse"},
        "plots": {"enabled": True, "output_dir": str(tmp_path / "figures")},
        "artifacts": {"metrics_path": str(tmp_path / "reports" / "metrics.json")},
    }


def test_run_pipeline_end_to_end(pipeline_config):
    result = driver.run_pipeline(pipeline_config)

    assert [v.name for v in result.variants] == ["without_artist_popularity", "with_artist_popularity"]
    assert result.winner.name == "with_artist_popularity"
    assert "artist_popularity" in result.winner.best.model.formula.predictors
    assert "energy" in result.winner.best.model.formula.predictors
    assert result.winner.test_report.rmse < result.variants[0].test_report.rmse
    assert result.failures == []

    for variant in result.variants:
        assert [c.policy for c in variant.candidates] == ["full", "exhaustive", "forward", "backward", "stepwise"]
        assert variant.sizes[2] == len(variant.test_predictions)
        assert variant.test_report.split_label == "test"

    with open(pipeline_config["artifacts"]["metrics_path"]) as f:
        summary = json.load(f)
    assert summary["winner"] == "with_artist_popularity"
    assert len(summary["variants"]) == 2
    assert "pca" in summary
    for path in result.figures:
        assert os.path.exists(path)
    assert len(result.figures) == 5

def test_run_pipeline_is_reproducible(pipeline_config):
    first = driver.run_pipeline(pipeline_config)
    second = driver.run_pipeline(pipeline_config)
    for a, b in zip(first.variants, second.variants):
        assert a.best.model.formula == b.best.model.formula
        assert a.test_report == b.test_report

def test_run_pipeline_missing_tracks_is_fatal(pipeline_config, tmp_path):
    pipeline_config["data_source"]["tracks_path"] = str(tmp_path / "missing.csv")
    with pytest.raises(DataLoadError):
        driver.run_pipeline(pipeline_config)

def test_run_pipeline_missing_feature_column_is_fatal(pipeline_config):
    tracks_path = pipeline_config["data_source"]["tracks_path"]
    pd.read_csv(tracks_path).drop(columns=["loudness"]).to_csv(tracks_path, index=False)
    with pytest.raises(DataLoadError, match="loudness"):
        driver.run_pipeline(pipeline_config)

def test_run_pipeline_records_policy_failures(pipeline_config):
    def flaky_select(policy, *args, **kwargs):
        if policy == "stepwise":
            raise SelectionCycleError("stepwise selection revisited predictor set ['energy']")
        return real_select(policy, *args, **kwargs)

    with patch.object(driver, "select", side_effect=flaky_select):
        result = driver.run_pipeline(pipeline_config)

    assert len(result.failures) == 2
    failure = result.failures[0]
    assert failure.policy == "stepwise"
    assert failure.stage == "select"
    assert "revisited" in failure.message
    assert all(c.policy != "stepwise" for v in result.variants for c in v.candidates)
    with open(pipeline_config["artifacts"]["metrics_path"]) as f:
        summary = json.load(f)
    assert summary["variants"][0]["failures"][0]["policy"] == "stepwise"

def test_run_pipeline_aborts_when_no_candidate_survives(pipeline_config):
    with patch.object(driver, "fit_ols", side_effect=FitError("rank-deficient")):
        with pytest.raises(PipelineError, match="No candidate model survived"):
            driver.run_pipeline(pipeline_config)

def test_run_variant_prunes_constant_predictors(pipeline_config):
    rng = np.random.default_rng(0)
    frame = pd.DataFrame({"x1": rng.normal(size=60), "flat": 1.0})
    frame["y"] = 3 * frame["x1"] + rng.normal(scale=0.2, size=60) + 10
    variant = DatasetVariant("toy", frame, "y", ("x1", "flat"))
    pipeline_config["selection"]["policies"] = ["full", "forward"]
    result = driver.run_variant(variant, pipeline_config)
    assert result.dropped_predictors == ["flat"]
    assert result.universe == ("x1",)
    assert result.best.policy == "full"  # equal validation RMSE, policy order breaks the tie
    assert result.test_report is not None

def test_run_variant_drops_dummies_saturated_on_train(pipeline_config):
    rng = np.random.default_rng(1)
    level_b = rng.integers(0, 2, size=60).astype(float)
    frame = pd.DataFrame({"x1": rng.normal(size=60), "ts_b": level_b, "ts_c": 1.0 - level_b})
    frame["y"] = 3 * frame["x1"] + 2 * frame["ts_b"] + rng.normal(scale=0.2, size=60)
    variant = DatasetVariant("toy", frame, "y", ("x1", "ts_b", "ts_c"))
    pipeline_config["selection"]["policies"] = ["full", "backward", "stepwise"]
    result = driver.run_variant(variant, pipeline_config)
    assert result.dropped_predictors == ["ts_c"]
    assert result.failures == []
    assert [c.policy for c in result.candidates] == ["full", "backward", "stepwise"]

def test_compare_variants_requires_a_test_report():
    with pytest.raises(PipelineError):
        driver.compare_variants([])

def test_validate_pipeline_config_rejects_unknown_policy(pipeline_config):
    pipeline_config["selection"]["policies"] = ["full", "ridge"]
    with pytest.raises(KeyError, match="ridge"):
        driver.validate_pipeline_config(pipeline_config)

def test_validate_pipeline_config_rejects_unknown_metric(pipeline_config):
    pipeline_config["evaluation"]["selection_metric"] = "r2"
    with pytest.raises(KeyError, match="selection_metric"):
        driver.validate_pipeline_config(pipeline_config)
