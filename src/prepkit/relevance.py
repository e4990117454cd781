"""Univariate relevance filtering by cross-validated information value.

Each candidate predictor is binned on the fit data: numeric predictors into at
most `max_bins` quantile bins, categorical predictors one bin per observed
category. Missing values always form their own bin. The information value of
the bins against the binary response is the raw score. The same bins are then
counted on the eval data. The cross-validation penalty is the amount by which
the fit statistic exceeds the eval statistic, plus the value each sample would
show by chance alone, so the adjusted score is
`min(raw, eval_value) - noise floors`.

For a predictor independent of the response, `IV * N1 * N0 / N` is
approximately chi-square with `B - 1` degrees of freedom over `B` occupied
bins, so a sample's information value has expectation
`(B - 1) * (1 / N1 + 1 / N0)`. That noise floor is charged once for the fit
sample and once for the eval sample.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
import polars as pl
from loguru import logger

from prepkit.dataset import Dataset, check_binary_response, validate_columns
from prepkit.exceptions import (
    EmptyEvalDataError,
    EmptyFitDataError,
    InvalidParameterError,
    PlanTypeMismatchError,
    UnknownPredictorError,
)
from prepkit.logging import STAGE_LEVEL
from prepkit.models import RelevanceScore

DEFAULT_MAX_BINS: int = 10
DEFAULT_MAX_CATEGORIES: int = 1000
DEFAULT_RELEVANCE_THRESHOLD: float = 0.02

_ZERO_COUNT_ADJUSTMENT: float = 0.5  # Stand-in count for a class absent from an occupied bin.
_CONTRIBUTION_TOLERANCE: float = 1e-15


class ExcludedPredictor(NamedTuple):
    """A predictor that was skipped instead of scored, with the reason.

    Attributes:
        name (str): The predictor name.
        reason (str): Human-readable explanation for the exclusion.
    """

    name: str
    reason: str


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def screen_predictors(
    fit_data: Dataset,
    max_categories: int = DEFAULT_MAX_CATEGORIES,
    *,
    predictors: Sequence[str] | None = None,
) -> tuple[list[str], list[ExcludedPredictor]]:
    """Partition predictors into those that can be scored and those to skip.

    Categorical predictors with more than `max_categories` distinct
    non-missing values behave like record identifiers and are skipped.

    Args:
        fit_data (Dataset): The data whose cardinalities are inspected.
        max_categories (int): Largest accepted categorical cardinality.
        predictors (Sequence[str] | None): Candidate predictor names.
            Defaults to `fit_data.predictors`.

    Returns:
        tuple[list[str], list[ExcludedPredictor]]: `(kept, excluded)`, each
            in the order of `predictors`.
    """
    kept: list[str] = []
    excluded: list[ExcludedPredictor] = []
    for name in fit_data.predictors if predictors is None else predictors:
        if fit_data.schema[name] == "categorical":
            cardinality = fit_data.frame[name].drop_nulls().n_unique()
            if cardinality > max_categories:
                excluded.append(
                    ExcludedPredictor(
                        name=name,
                        reason=f"high cardinality: {cardinality} distinct values exceeds {max_categories}",
                    )
                )
                continue
        kept.append(name)
    return kept, excluded


def score_predictors(
    fit_data: Dataset,
    eval_data: Dataset,
    response_column: str,
    *,
    max_bins: int = DEFAULT_MAX_BINS,
    max_categories: int = DEFAULT_MAX_CATEGORIES,
) -> dict[str, RelevanceScore]:
    """Score every predictor of `fit_data` by cross-validated information value.

    Args:
        fit_data (Dataset): Data used to derive the bins and the raw score.
        eval_data (Dataset): Held-out data with the same predictor schema,
            used for the cross-validation penalty.
        response_column (str): The binary 0/1 response column.
        max_bins (int): Upper bound on the number of non-missing numeric bins.
        max_categories (int): Categorical predictors with more distinct
            values than this are skipped and never appear in the result.

    Returns:
        dict[str, RelevanceScore]: Predictor name to score, in schema order.

    Raises:
        InvalidParameterError: If `max_bins` or `max_categories` is below 1.
        ColumnsNotFoundError: If the response column is absent.
        EmptyFitDataError: If `fit_data` has no records.
        EmptyEvalDataError: If `eval_data` has no records.
        ResponseNotBinaryError: If the response has missing values or values
            outside {0, 1} in either dataset.
        UnknownPredictorError: If `eval_data` lacks a predictor of `fit_data`.
        PlanTypeMismatchError: If a predictor's type differs between the two.
    """
    logger.log(
        STAGE_LEVEL,
        "Scoring predictors",
        fit_rows=len(fit_data),
        eval_rows=len(eval_data),
        response=response_column,
        max_bins=max_bins,
    )
    if max_bins < 1:
        raise InvalidParameterError(f"max_bins must be at least 1, got {max_bins}")
    if max_categories < 1:
        raise InvalidParameterError(f"max_categories must be at least 1, got {max_categories}")

    candidates = [name for name in fit_data.columns if name not in {response_column, fit_data.response}]
    fit_response, eval_response = _validate_scoring_inputs(fit_data, eval_data, response_column, candidates)

    kept, excluded = screen_predictors(fit_data, max_categories, predictors=candidates)
    for excluded_predictor in excluded:
        logger.warning("Predictor skipped", name=excluded_predictor.name, reason=excluded_predictor.reason)

    fit_positive = fit_response.to_numpy() == 1.0
    eval_positive = eval_response.to_numpy() == 1.0

    scores: dict[str, RelevanceScore] = {}
    for name in kept:
        binning = _fit_binning(fit_data.frame[name], fit_data.schema[name] == "numeric", max_bins)
        fit_bins = binning.assign(fit_data.frame[name])
        eval_bins = binning.assign(eval_data.frame[name])
        occupied_bins = int(np.count_nonzero(np.bincount(fit_bins, minlength=binning.n_bins)))

        raw = max(0.0, float(_bin_contributions(fit_bins, fit_positive, binning.n_bins).sum()))
        eval_value = max(0.0, float(_bin_contributions(eval_bins, eval_positive, binning.n_bins).sum()))
        noise_floor = _noise_floor(occupied_bins, fit_positive) + _noise_floor(occupied_bins, eval_positive)
        penalty = max(0.0, raw - eval_value) + noise_floor
        scores[name] = RelevanceScore.from_components(raw=raw, penalty=penalty)
        logger.debug(
            "Predictor scored",
            name=name,
            bins=occupied_bins,
            raw=raw,
            eval_value=eval_value,
            noise_floor=noise_floor,
        )

    return scores


def select_relevant(
    scores: Mapping[str, RelevanceScore],
    threshold: float = DEFAULT_RELEVANCE_THRESHOLD,
) -> set[str]:
    """Return the predictors whose adjusted score is strictly above `threshold`.

    Args:
        scores (Mapping[str, RelevanceScore]): Output of `score_predictors`.
        threshold (float): Minimum adjusted score, exclusive.

    Returns:
        set[str]: Names of the relevant predictors.

    Raises:
        InvalidParameterError: If `threshold` is negative or not finite.
    """
    if not math.isfinite(threshold) or threshold < 0.0:
        raise InvalidParameterError(f"threshold must be a finite non-negative number, got {threshold}")
    selected = {name for name, score in scores.items() if score.adjusted > threshold}
    logger.debug("Predictors selected", threshold=threshold, selected=len(selected), scored=len(scores))
    return selected


# ---------------------------------------------------------------------------
# Private helpers -- Validation
# ---------------------------------------------------------------------------


def _validate_scoring_inputs(
    fit_data: Dataset,
    eval_data: Dataset,
    response_column: str,
    predictors: Sequence[str],
) -> tuple[pl.Series, pl.Series]:
    """Validate the two datasets before any statistic is computed.

    Args:
        fit_data (Dataset): Fit data.
        eval_data (Dataset): Eval data.
        response_column (str): Response column name.
        predictors (Sequence[str]): Predictors that will be scored.

    Returns:
        tuple[pl.Series, pl.Series]: The validated fit and eval responses.
    """
    validate_columns([response_column], fit_data.columns)
    validate_columns([response_column], eval_data.columns)
    if len(fit_data) == 0:
        raise EmptyFitDataError("Fit data has no records.")
    if len(eval_data) == 0:
        raise EmptyEvalDataError("Eval data has no records.")

    fit_response = check_binary_response(fit_data, response_column)
    eval_response = check_binary_response(eval_data, response_column)

    missing = [name for name in predictors if name not in eval_data.schema]
    if missing:
        raise UnknownPredictorError(f"Eval data lacks predictors: {missing}", missing_predictors=missing)
    mismatches = {
        name: (fit_data.schema[name], eval_data.schema[name])
        for name in predictors
        if fit_data.schema[name] != eval_data.schema[name]
    }
    if mismatches:
        raise PlanTypeMismatchError(f"Predictor types differ between fit and eval data: {mismatches}", mismatches=mismatches)
    return fit_response, eval_response


# ---------------------------------------------------------------------------
# Private helpers -- Binning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Binning:
    """Bin layout for one predictor, derived from the fit data only.

    Numeric layouts use `edges`: bin `i` holds values in `(edges[i-1], edges[i]]`
    with open ends, and the final bin holds missing values. Categorical
    layouts use `categories`: one bin per category, then a missing bin, then
    a bin for categories unseen at fit time.

    Attributes:
        edges (np.ndarray | None): Ascending interior edges for numeric predictors.
        categories (dict[str, int] | None): Category to bin index for
            categorical predictors.
    """

    edges: np.ndarray | None = None
    categories: dict[str, int] | None = None

    @property
    def n_bins(self) -> int:
        """Total number of bins, including the missing (and unseen) bins."""
        if self.edges is not None:
            return len(self.edges) + 2
        assert self.categories is not None
        return len(self.categories) + 2

    def assign(self, series: pl.Series) -> np.ndarray:
        """Map each value of `series` to its bin index.

        Args:
            series (pl.Series): A normalized column of the binned predictor.

        Returns:
            np.ndarray: One `int64` bin index per value.
        """
        if self.edges is not None:
            values = series.to_numpy(allow_copy=True).astype(np.float64)
            missing = np.isnan(values)
            bins = np.searchsorted(self.edges, np.where(missing, 0.0, values), side="left")
            return np.where(missing, len(self.edges) + 1, bins).astype(np.int64)

        assert self.categories is not None
        missing_bin = len(self.categories)
        unseen_bin = missing_bin + 1
        return np.fromiter(
            (missing_bin if value is None else self.categories.get(value, unseen_bin) for value in series.to_list()),
            dtype=np.int64,
            count=len(series),
        )


def _fit_binning(series: pl.Series, is_numeric: bool, max_bins: int) -> _Binning:
    """Derive a bin layout from the fit values of one predictor.

    Args:
        series (pl.Series): The predictor's fit values.
        is_numeric (bool): Whether the predictor is numeric.
        max_bins (int): Upper bound on the number of non-missing numeric bins.

    Returns:
        _Binning: Monotonic quantile edges for numeric predictors, or the
            sorted observed categories for categorical predictors.
    """
    observed = series.drop_nulls()
    if not is_numeric:
        categories = sorted(observed.unique().to_list())
        return _Binning(categories={category: index for index, category in enumerate(categories)})

    if observed.len() == 0 or max_bins == 1:
        return _Binning(edges=np.empty(0, dtype=np.float64))
    probabilities = np.linspace(0.0, 1.0, max_bins + 1)[1:-1]
    edges = np.unique(np.quantile(observed.to_numpy().astype(np.float64), probabilities))
    return _Binning(edges=edges)


# ---------------------------------------------------------------------------
# Private helpers -- Information value
# ---------------------------------------------------------------------------


def _bin_contributions(bin_ids: np.ndarray, positive: np.ndarray, n_bins: int) -> np.ndarray:
    """Compute each bin's information value contribution.

    For bin `b` the contribution is `(p1_b - p0_b) * ln(p1_b / p0_b)`, where
    `p1_b` and `p0_b` are the shares of all positive and all negative records
    falling in the bin. It is zero exactly when the bin's class mix equals
    the overall class mix.

    Args:
        bin_ids (np.ndarray): Bin index of every record.
        positive (np.ndarray): Boolean response of every record.
        n_bins (int): Number of bins in the layout.

    Returns:
        np.ndarray: Non-negative contribution per bin. Empty bins, and all
            bins when one class is absent, contribute zero.
    """
    positive_counts = np.bincount(bin_ids[positive], minlength=n_bins).astype(np.float64)
    negative_counts = np.bincount(bin_ids[~positive], minlength=n_bins).astype(np.float64)
    positive_total = positive_counts.sum()
    negative_total = negative_counts.sum()
    if positive_total == 0.0 or negative_total == 0.0:
        return np.zeros(n_bins, dtype=np.float64)

    occupied = (positive_counts + negative_counts) > 0
    positive_share = np.where(positive_counts == 0, _ZERO_COUNT_ADJUSTMENT, positive_counts) / positive_total
    negative_share = np.where(negative_counts == 0, _ZERO_COUNT_ADJUSTMENT, negative_counts) / negative_total
    contributions = (positive_share - negative_share) * np.log(positive_share / negative_share)
    return np.where(occupied & (np.abs(contributions) >= _CONTRIBUTION_TOLERANCE), contributions, 0.0)


def _noise_floor(occupied_bins: int, positive: np.ndarray) -> float:
    """Expected information value of `occupied_bins` bins unrelated to the response.

    Args:
        occupied_bins (int): Number of bins holding fit records.
        positive (np.ndarray): Boolean response of every record in the sample.

    Returns:
        float: `(occupied_bins - 1) * (1 / N1 + 1 / N0)`, or 0.0 when the
            sample has a single class or a single bin.
    """
    positive_total = int(np.count_nonzero(positive))
    negative_total = len(positive) - positive_total
    if occupied_bins < 2 or positive_total == 0 or negative_total == 0:
        return 0.0
    return (occupied_bins - 1) * (1.0 / positive_total + 1.0 / negative_total)
