"""
Cleaning and merging of the raw tracks and artists tables.

- Parses the release year and filters tracks to the configured year window.
- Drops tracks with zero popularity.
- Resolves each track's primary artist and merges the artist popularity.
- Removes duration outliers with an IQR fence.
"""
import logging
import pandas as pd
from typing import Dict, Any, List, Optional

# Module-level logger
logger = logging.getLogger(__name__)

ARTIST_POPULARITY_COL = "artist_popularity"
PRIMARY_ARTIST_COL = "primary_artist_id"
RELEASE_YEAR_COL = "release_year"


def validate_preprocessing_config(config: Dict[str, Any], logger_param: Optional[logging.Logger] = None) -> None:
    """Validates the presence of essential keys in the preprocessing configuration."""
    effective_logger = logger_param if logger_param else logger
    effective_logger.info("Validating preprocessing configuration.")
    required_top_keys = ["preprocessing", "features"]
    for key in required_top_keys:
        if key not in config:
            raise KeyError(f"Missing required top-level config key: '{key}'")

    pre_cfg = config["preprocessing"]
    if "min_year" not in pre_cfg and "max_year" not in pre_cfg:
        effective_logger.warning("No 'min_year'/'max_year' in 'preprocessing' config. All release years are kept.")
    if "outlier_removal" not in pre_cfg:
        effective_logger.warning("Missing 'outlier_removal' in 'preprocessing' config. Outlier removal will be disabled.")
    elif pre_cfg["outlier_removal"].get("enabled") and not pre_cfg["outlier_removal"].get("features"):
        effective_logger.warning("Outlier removal enabled but no features specified. No outliers will be removed.")

    effective_logger.info("Preprocessing configuration validation successful.")


def add_release_year(df: pd.DataFrame, date_col: str = "release_date") -> pd.DataFrame:
    """Adds a numeric release year parsed from 'YYYY', 'YYYY-MM' or 'YYYY-MM-DD' dates."""
    if date_col not in df.columns:
        raise KeyError(f"Column '{date_col}' not found; cannot derive the release year.")
    years = pd.to_numeric(df[date_col].astype(str).str.slice(0, 4), errors="coerce")
    return df.assign(**{RELEASE_YEAR_COL: years})


def filter_by_year(
    df: pd.DataFrame,
    min_year: Optional[int] = None,
    max_year: Optional[int] = None,
    logger_param: Optional[logging.Logger] = None
) -> pd.DataFrame:
    """Keeps tracks released within [min_year, max_year] (either bound optional)."""
    effective_logger = logger_param if logger_param else logger
    if min_year is None and max_year is None:
        effective_logger.info("No release-year window configured. Skipping year filter.")
        return df

    mask = df[RELEASE_YEAR_COL].notna()
    if min_year is not None:
        mask &= df[RELEASE_YEAR_COL] >= min_year
    if max_year is not None:
        mask &= df[RELEASE_YEAR_COL] <= max_year
    filtered = df.loc[mask]
    effective_logger.info(
        f"Year filter [{min_year}, {max_year}]: {len(df) - len(filtered)} rows removed, {len(filtered)} kept."
    )
    return filtered


def drop_zero_popularity(df: pd.DataFrame, response: str, logger_param: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Drops tracks whose popularity is zero (never streamed in the scoring window)."""
    effective_logger = logger_param if logger_param else logger
    filtered = df.loc[df[response] != 0]
    effective_logger.info(f"Dropped {len(df) - len(filtered)} tracks with zero '{response}'.")
    return filtered


def parse_primary_artist(df: pd.DataFrame, ids_col: str = "id_artists") -> pd.DataFrame:
    """Extracts the first artist id from list literals such as \"['id1', 'id2']\"."""
    if ids_col not in df.columns:
        raise KeyError(f"Column '{ids_col}' not found; cannot resolve the primary artist.")
    first_id = (
        df[ids_col].astype(str)
        .str.strip()
        .str.strip("[]")
        .str.split(",")
        .str[0]
        .str.strip()
        .str.strip("'\"")
    )
    first_id = first_id.where(first_id.str.len() > 0)
    return df.assign(**{PRIMARY_ARTIST_COL: first_id})


def merge_artist_popularity(
    tracks: pd.DataFrame,
    artists: pd.DataFrame,
    logger_param: Optional[logging.Logger] = None
) -> pd.DataFrame:
    """Inner-joins the primary artist's popularity onto every track."""
    effective_logger = logger_param if logger_param else logger
    artist_lookup = (
        artists.loc[:, ["id", "popularity"]]
        .drop_duplicates(subset="id")
        .rename(columns={"id": PRIMARY_ARTIST_COL, "popularity": ARTIST_POPULARITY_COL})
    )
    merged = tracks.merge(artist_lookup, on=PRIMARY_ARTIST_COL, how="inner")
    effective_logger.info(
        f"Merged artist popularity: {len(tracks) - len(merged)} tracks without a known artist removed, "
        f"{len(merged)} kept."
    )
    return merged


def remove_outliers_iqr(df: pd.DataFrame, features: List[str], iqr_multiplier: float, logger_param: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Removes outliers from specified features using the IQR method."""
    effective_logger = logger_param if logger_param else logger

    if not features:
        effective_logger.info("No features specified for outlier removal. Skipping.")
        return df

    df_clean = df.copy()
    effective_logger.info(f"Starting outlier removal for features: {features} with IQR multiplier: {iqr_multiplier}")
    initial_rows = df_clean.shape[0]

    for feature in features:
        if feature not in df_clean.columns:
            effective_logger.warning(f"Feature '{feature}' for outlier removal not found in DataFrame. Skipping this feature.")
            continue
        if not pd.api.types.is_numeric_dtype(df_clean[feature]):
            effective_logger.warning(f"Feature '{feature}' is not numeric. Skipping outlier removal for this feature.")
            continue

        Q1 = df_clean[feature].quantile(0.25)
        Q3 = df_clean[feature].quantile(0.75)
        IQR = Q3 - Q1

        if IQR == 0:
            effective_logger.info(f"IQR is 0 for feature '{feature}'. No outliers will be removed for this feature based on IQR.")
            continue

        lower_bound = Q1 - iqr_multiplier * IQR
        upper_bound = Q3 + iqr_multiplier * IQR

        rows_before_feature_filter = df_clean.shape[0]
        df_clean = df_clean[(df_clean[feature] >= lower_bound) & (df_clean[feature] <= upper_bound)]
        effective_logger.info(
            f"Outlier removal on '{feature}': "
            f"{rows_before_feature_filter - df_clean.shape[0]} rows removed. "
            f"Range: [{lower_bound:.2f}, {upper_bound:.2f}]"
        )

    effective_logger.info(f"Total rows removed after outlier processing: {initial_rows - df_clean.shape[0]}")
    return df_clean


def main_preprocessing(tracks: pd.DataFrame, artists: pd.DataFrame, config: Dict[str, Any]) -> pd.DataFrame:
    """Runs the cleaning chain and returns the merged, analysis-ready tracks table."""
    validate_preprocessing_config(config)
    pre_cfg = config.get("preprocessing", {})
    feat_cfg = config.get("features", {})
    response = feat_cfg.get("response", "popularity")

    current_df = add_release_year(tracks)
    current_df = filter_by_year(current_df, pre_cfg.get("min_year"), pre_cfg.get("max_year"))

    if pre_cfg.get("drop_zero_popularity", True):
        current_df = drop_zero_popularity(current_df, response)

    current_df = parse_primary_artist(current_df)
    current_df = merge_artist_popularity(current_df, artists)

    outlier_cfg = pre_cfg.get("outlier_removal", {})
    if outlier_cfg.get("enabled", False):
        current_df = remove_outliers_iqr(
            current_df,
            outlier_cfg.get("features", []),
            outlier_cfg.get("iqr_multiplier", 1.5),
        )
    else:
        logger.info("Outlier removal is disabled in the configuration.")

    modelled_cols = [response] + [spec["name"] for spec in feat_cfg.get("columns", [])]
    present_cols = [col for col in modelled_cols if col in current_df.columns]
    rows_before = len(current_df)
    current_df = current_df.dropna(subset=present_cols).reset_index(drop=True)
    logger.info(f"Dropped {rows_before - len(current_df)} rows with missing modelled values.")
    logger.info(f"Preprocessing finished. Shape: {current_df.shape}")
    return current_df
