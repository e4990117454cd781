"""Greedy removal of highly correlated predictors from an encoded dataset."""

from __future__ import annotations

from typing import Literal

import numpy as np
import polars as pl
from loguru import logger

from prepkit.dataset import Dataset
from prepkit.exceptions import CutoffOutOfRangeError, InvalidParameterError
from prepkit.logging import STAGE_LEVEL

type CorrelationMethod = Literal["pearson", "spearman"]

DEFAULT_CORRELATION_METHOD: CorrelationMethod = "spearman"
DEFAULT_CORRELATION_CUTOFF: float = 0.9

_CORRELATION_METHODS: tuple[str, ...] = ("pearson", "spearman")
_TIE_TOLERANCE: float = 1e-12


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def correlation_matrix(dataset: Dataset, method: CorrelationMethod = DEFAULT_CORRELATION_METHOD) -> pl.DataFrame:
    """Compute the absolute pairwise correlation of the predictor columns.

    Args:
        dataset (Dataset): All-numeric dataset without missing values.
        method (CorrelationMethod): `"pearson"`, or `"spearman"` for Pearson
            correlation of average ranks.

    Returns:
        pl.DataFrame: Square frame with one column per predictor; row `i`
            belongs to the `i`-th predictor. Undefined correlations, such as
            those involving a constant column, are 0.

    Raises:
        InvalidParameterError: If `method` is unknown, or a predictor is
            categorical or has missing values.
    """
    names = dataset.predictors
    matrix = _absolute_correlations(dataset, names, method)
    return pl.DataFrame({name: matrix[:, index] for index, name in enumerate(names)})


def find_redundant(
    dataset: Dataset,
    correlation_method: CorrelationMethod = DEFAULT_CORRELATION_METHOD,
    cutoff: float = DEFAULT_CORRELATION_CUTOFF,
) -> list[str]:
    """Choose predictors to drop so that no remaining pair is correlated at `cutoff`.

    The most correlated remaining pair is examined first; if its absolute
    correlation reaches `cutoff`, the member with the higher mean absolute
    correlation to the other remaining predictors is dropped. Equal means
    drop the lexicographically later name. This repeats until the most
    correlated pair falls below `cutoff`.

    Args:
        dataset (Dataset): All-numeric encoded dataset without missing values.
            The response column, if designated, is ignored.
        correlation_method (CorrelationMethod): `"pearson"` or `"spearman"`.
        cutoff (float): Correlation in `(0, 1]` at which a pair is redundant.

    Returns:
        list[str]: Dropped predictor names, in the order they were dropped.

    Raises:
        CutoffOutOfRangeError: If `cutoff` is not in `(0, 1]`.
        InvalidParameterError: If the method is unknown, or a predictor is
            categorical or has missing values.

    Examples:
        >>> find_redundant(encoded, "spearman", 0.9)  # doctest: +SKIP
        ['tenure_months_clean']
    """
    logger.log(
        STAGE_LEVEL,
        "Finding redundant predictors",
        rows=len(dataset),
        predictors=len(dataset.predictors),
        method=correlation_method,
        cutoff=cutoff,
    )
    if not (0.0 < cutoff <= 1.0):
        raise CutoffOutOfRangeError(cutoff)

    names = dataset.predictors
    matrix = _absolute_correlations(dataset, names, correlation_method)

    remaining = list(range(len(names)))
    dropped: list[str] = []
    while len(remaining) >= 2:
        sub = matrix[np.ix_(remaining, remaining)]
        rows, cols = np.triu_indices(len(remaining), k=1)
        pair_values = sub[rows, cols]
        best = int(np.argmax(pair_values))  # First maximum: earliest pair in column order.
        if pair_values[best] < cutoff:
            break

        first, second = int(rows[best]), int(cols[best])
        mean_first = _mean_other_correlation(sub, first)
        mean_second = _mean_other_correlation(sub, second)
        if abs(mean_first - mean_second) <= _TIE_TOLERANCE:
            drop = first if names[remaining[first]] > names[remaining[second]] else second
        else:
            drop = first if mean_first > mean_second else second

        dropped_name = names[remaining[drop]]
        logger.debug(
            "Redundant predictor dropped",
            name=dropped_name,
            pair=[names[remaining[first]], names[remaining[second]]],
            correlation=float(pair_values[best]),
        )
        dropped.append(dropped_name)
        del remaining[drop]

    return dropped


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _absolute_correlations(dataset: Dataset, names: list[str], method: str) -> np.ndarray:
    """Validate the predictors and compute their absolute correlation matrix.

    Args:
        dataset (Dataset): The encoded dataset.
        names (list[str]): Predictor names, in matrix order.
        method (str): Correlation method name.

    Returns:
        np.ndarray: `(k, k)` matrix in `[0, 1]` with a unit diagonal.

    Raises:
        InvalidParameterError: If the method is unknown, or a predictor is
            categorical or has missing values.
    """
    if method not in _CORRELATION_METHODS:
        raise InvalidParameterError(f"Unknown correlation method '{method}', expected one of {_CORRELATION_METHODS}")
    categorical = [name for name in names if dataset.schema[name] != "numeric"]
    if categorical:
        raise InvalidParameterError(f"Correlation requires numeric predictors, got categorical: {categorical}")
    with_missing = [name for name in names if dataset.frame[name].null_count() > 0]
    if with_missing:
        raise InvalidParameterError(f"Correlation requires complete predictors, got missing values in: {with_missing}")

    k = len(names)
    if k == 0:
        return np.empty((0, 0), dtype=np.float64)
    if len(dataset) < 2:
        return np.eye(k, dtype=np.float64)

    columns = [pl.col(name).rank("average") if method == "spearman" else pl.col(name) for name in names]
    values = dataset.frame.select(columns).to_numpy().astype(np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        matrix = np.atleast_2d(np.corrcoef(values, rowvar=False))
    matrix = np.clip(np.nan_to_num(np.abs(matrix), nan=0.0), 0.0, 1.0)
    np.fill_diagonal(matrix, 1.0)
    return matrix


def _mean_other_correlation(matrix: np.ndarray, index: int) -> float:
    """Mean absolute correlation of column `index` with every other column of `matrix`.

    Args:
        matrix (np.ndarray): Square absolute correlation matrix.
        index (int): Column position.

    Returns:
        float: The mean over all off-diagonal entries of the row.
    """
    row = np.delete(matrix[index], index)
    return float(row.mean())
