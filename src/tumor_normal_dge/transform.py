"""Log-scale detection and transformation of expression matrices."""

import logging
from typing import Tuple

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)

QUANTILE_PROBS = (0.0, 0.25, 0.5, 0.75, 0.99, 1.0)


def expression_quantiles(expression: pd.DataFrame) -> np.ndarray:
    """Quantiles of all expression values at QUANTILE_PROBS, ignoring NaN."""
    values = expression.to_numpy(dtype=float).ravel()
    values = values[~np.isnan(values)]
    if values.size == 0:
        raise ValueError("Expression matrix has no non-missing values")
    # R's default quantile type 7 is numpy's linear interpolation
    return np.quantile(values, QUANTILE_PROBS)


def needs_log_transform(quantiles: np.ndarray) -> bool:
    """
    Decide whether values look like raw intensities rather than log values.

    Raw when the 99th percentile exceeds 100, when the range exceeds 50 with a
    positive lower quartile, or when the quartiles sit in (0, 1) and (1, 2).
    """
    q0, q25, _, q75, q99, q100 = quantiles
    return bool(
        (q99 > 100)
        or (q100 - q0 > 50 and q25 > 0)
        or (0 < q25 < 1 and 1 < q75 < 2)
    )


def log2_transform(expression: pd.DataFrame) -> pd.DataFrame:
    """log2 of the matrix with non-positive values set to NaN."""
    values = expression.astype(float)
    values = values.where(values > 0)
    return np.log2(values)


def auto_log2(expression: pd.DataFrame) -> Tuple[pd.DataFrame, bool]:
    """
    Log2-transform the matrix only if its distribution calls for it.

    Returns:
        Tuple of (possibly transformed matrix, whether log2 was applied)
    """
    quantiles = expression_quantiles(expression)
    logger.info(
        "Expression quantiles (0, 25, 50, 75, 99, 100%): "
        + ", ".join(f"{q:.3g}" for q in quantiles)
    )
    if needs_log_transform(quantiles):
        n_non_positive = int((expression <= 0).sum().sum())
        if n_non_positive:
            logger.warning(f"{n_non_positive} non-positive values set to NaN before log2")
        logger.info("Applying log2 transform")
        return log2_transform(expression), True

    logger.info("Values already on a log scale, leaving untouched")
    return expression, False


def drop_incomplete(expression: pd.DataFrame) -> pd.DataFrame:
    """Remove features with a missing value in any sample."""
    complete = expression.notna().all(axis=1)
    n_dropped = int((~complete).sum())
    if n_dropped:
        logger.warning(f"Dropping {n_dropped} features with missing values")
    return expression.loc[complete]
