"""
data_loader.py

Loads the YAML configuration and the two raw CSV datasets (tracks, artists)
the popularity pipeline starts from.
"""

import os
import logging
import pandas as pd
import yaml
from typing import Dict, Any

from src.exceptions import DataLoadError

# Module-level logger. Assumes configuration by the calling script or __main__.
logger = logging.getLogger(__name__)


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Loads the YAML configuration file."""
    if not os.path.isfile(config_path):
        logger.error(f"Configuration file not found: {config_path}")
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with open(config_path, "r") as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration from '{config_path}': {e}", exc_info=True)
            raise ValueError(f"Error parsing YAML configuration from '{config_path}'.") from e
    logger.debug(f"Configuration loaded from {config_path}")
    return config


def _read_csv_data(
    path: str,
    label: str,
    delimiter: str = ",",
    header: int = 0,
    encoding: str = "utf-8"
) -> pd.DataFrame:
    """Helper function to read data from a CSV file, wrapping failures in DataLoadError."""
    if not path or not isinstance(path, str):
        logger.error(f"No valid data path provided for the {label} CSV.")
        raise DataLoadError(f"No valid data path specified for the {label} CSV.")
    if not os.path.isfile(path):
        logger.error(f"{label.capitalize()} file does not exist: {path}")
        raise DataLoadError(f"{label.capitalize()} file not found: {path}")

    try:
        df = pd.read_csv(path, delimiter=delimiter, header=header, encoding=encoding)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        logger.error(f"Failed to load {label} from CSV '{path}': {e}", exc_info=True)
        raise DataLoadError(f"Malformed {label} CSV '{path}': {e}") from e
    except OSError as e:
        logger.error(f"Could not read {label} CSV '{path}': {e}", exc_info=True)
        raise DataLoadError(f"Unreadable {label} CSV '{path}': {e}") from e
    logger.info(f"Loaded {label} from CSV: {path}, shape={df.shape}")
    return df


def _load_source(config: Dict[str, Any], path_key: str, label: str) -> pd.DataFrame:
    data_cfg = config.get("data_source", {})
    path = data_cfg.get(path_key)
    if not path:
        logger.error(f"Config missing 'data_source.{path_key}'.")
        raise DataLoadError(f"Config must specify 'data_source.{path_key}' for the {label} data.")
    return _read_csv_data(
        path=path,
        label=label,
        delimiter=data_cfg.get("delimiter", ","),
        header=data_cfg.get("header", 0),
        encoding=data_cfg.get("encoding", "utf-8"),
    )


def load_tracks(config: Dict[str, Any]) -> pd.DataFrame:
    """Loads the raw tracks table (audio features, popularity, release date, artist ids)."""
    return _load_source(config, "tracks_path", "tracks")


def load_artists(config: Dict[str, Any]) -> pd.DataFrame:
    """Loads the raw artists table (artist id, popularity, genres)."""
    df = _load_source(config, "artists_path", "artists")
    missing = [col for col in ("id", "popularity") if col not in df.columns]
    if missing:
        logger.error(f"Artists table lacks required columns: {missing}")
        raise DataLoadError(f"Artists table lacks required columns: {missing}")
    return df


def check_track_columns(tracks: pd.DataFrame, config: Dict[str, Any]) -> None:
    """Raises DataLoadError unless the tracks table carries every column the pipeline reads from it."""
    feat_cfg = config.get("features", {})
    artist_feature = feat_cfg.get("artist_feature", "artist_popularity")
    required = [feat_cfg.get("response", "popularity"), "release_date", "id_artists"]
    required += [entry.get("name") for entry in feat_cfg.get("columns", [])]
    required += list(config.get("pca", {}).get("columns") or [])
    required += list(config.get("preprocessing", {}).get("outlier_removal", {}).get("features") or [])

    missing = []
    for col in required:
        # artist popularity is joined in from the artists table
        if col and col != artist_feature and col not in tracks.columns and col not in missing:
            missing.append(col)
    if missing:
        logger.error(f"Tracks table lacks required columns: {missing}")
        raise DataLoadError(f"Tracks table lacks required columns: {missing}")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(module)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    logger.info("Running data_loader.py standalone...")

    try:
        cfg = load_config()
        tracks_df = load_tracks(cfg)
        artists_df = load_artists(cfg)
        logger.info(f"Tracks shape: {tracks_df.shape}, artists shape: {artists_df.shape}")
        logger.info("First 5 tracks:\n%s", tracks_df.head().to_string())
    except (FileNotFoundError, ValueError, DataLoadError) as e:
        logger.error(f"__main__: Failed to load data: {e}", exc_info=True)
