"""Stratified, seeded partitioning of a dataset into disjoint subsets."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np
import polars as pl
from loguru import logger

from prepkit.dataset import Dataset
from prepkit.exceptions import InvalidFractionsError, StratifyColumnMissingError
from prepkit.logging import STAGE_LEVEL

_FRACTION_SUM_TOLERANCE: float = 1e-9


def partition(
    dataset: Dataset,
    fractions: Sequence[float],
    stratify_by: str,
    seed: int,
) -> list[Dataset]:
    """Split a dataset into disjoint subsets that preserve the stratum balance.

    Rows are grouped by the value of `stratify_by`; each group is shuffled
    and divided so that every subset receives, per group, within one record
    of `fraction * group_size` rows. Within each subset rows keep their
    original relative order.

    Args:
        dataset (Dataset): The dataset to split. It is not modified.
        fractions (Sequence[float]): Positive proportions summing to 1.0, one
            per output subset, e.g. `(0.5, 0.25, 0.25)`.
        stratify_by (str): Column whose values define the strata.
        seed (int): Seed for the shuffle. Equal inputs and seeds yield equal
            partitions.

    Returns:
        list[Dataset]: One dataset per fraction, in the order given.

    Raises:
        InvalidFractionsError: If `fractions` is empty, contains a value
            <= 0, or does not sum to 1.0.
        StratifyColumnMissingError: If `stratify_by` is not a column or has
            missing values.

    Examples:
        >>> train, calibration, test = partition(ds, (0.5, 0.25, 0.25), stratify_by="churn", seed=7)  # doctest: +SKIP
    """
    logger.log(
        STAGE_LEVEL,
        "Partitioning dataset",
        rows=len(dataset),
        fractions=list(fractions),
        stratify_by=stratify_by,
        seed=seed,
    )
    subsets = [dataset.take(indices) for indices in partition_indices(dataset, fractions, stratify_by, seed)]
    logger.debug("Partition sizes", sizes=[len(subset) for subset in subsets])
    return subsets


def partition_indices(
    dataset: Dataset,
    fractions: Sequence[float],
    stratify_by: str,
    seed: int,
) -> list[np.ndarray]:
    """Compute the sorted row positions assigned to each subset by `partition`.

    Args:
        dataset (Dataset): The dataset to split.
        fractions (Sequence[float]): Positive proportions summing to 1.0.
        stratify_by (str): Column whose values define the strata.
        seed (int): Seed for the shuffle.

    Returns:
        list[np.ndarray]: One ascending `int64` array of row positions per
            fraction. Together they cover every row exactly once.

    Raises:
        InvalidFractionsError: If the fractions are invalid.
        StratifyColumnMissingError: If the stratification column is unusable.
    """
    _validate_fractions(fractions)
    strata = _stratum_row_positions(dataset, stratify_by)

    rng = np.random.default_rng(seed)
    assigned: list[list[np.ndarray]] = [[] for _ in fractions]
    for positions in strata:
        shuffled = rng.permutation(positions)
        counts = _apportion(len(shuffled), fractions)
        start = 0
        for subset_index, count in enumerate(counts):
            assigned[subset_index].append(shuffled[start : start + count])
            start += count

    return [np.sort(np.concatenate(chunks)) if chunks else np.empty(0, dtype=np.int64) for chunks in assigned]


def _validate_fractions(fractions: Sequence[float]) -> None:
    """Raise `InvalidFractionsError` unless `fractions` is a valid split.

    Args:
        fractions (Sequence[float]): Proposed subset proportions.

    Raises:
        InvalidFractionsError: If empty, any value is non-finite or <= 0, or
            the sum differs from 1.0 by more than the tolerance.
    """
    if len(fractions) == 0:
        raise InvalidFractionsError("At least one fraction is required.", fractions=fractions)
    non_positive = [f for f in fractions if not math.isfinite(f) or f <= 0.0]
    if non_positive:
        raise InvalidFractionsError(f"Fractions must be positive, got {non_positive}.", fractions=fractions)
    total = math.fsum(fractions)
    if abs(total - 1.0) > _FRACTION_SUM_TOLERANCE:
        raise InvalidFractionsError(f"Fractions must sum to 1.0, got {total}.", fractions=fractions)


def _stratum_row_positions(dataset: Dataset, stratify_by: str) -> list[np.ndarray]:
    """Group row positions by stratum value, with strata in sorted value order.

    Args:
        dataset (Dataset): The dataset to inspect.
        stratify_by (str): Column whose values define the strata.

    Returns:
        list[np.ndarray]: Ascending row positions for each stratum.

    Raises:
        StratifyColumnMissingError: If the column is absent or has missing values.
    """
    if stratify_by not in dataset.schema:
        raise StratifyColumnMissingError(
            f"Stratification column '{stratify_by}' not found. Available columns: {dataset.columns}",
            column=stratify_by,
        )
    series = dataset.frame[stratify_by]
    if series.null_count() > 0:
        raise StratifyColumnMissingError(
            f"Stratification column '{stratify_by}' contains {series.null_count()} missing values.",
            column=stratify_by,
        )

    grouped = (
        pl.DataFrame({"stratum": series, "position": np.arange(len(series), dtype=np.int64)})
        .group_by("stratum", maintain_order=True)
        .agg(pl.col("position"))
        .sort("stratum")
    )
    return [np.asarray(positions, dtype=np.int64) for positions in grouped["position"].to_list()]


def _apportion(total: int, fractions: Sequence[float]) -> list[int]:
    """Split `total` items into integer counts proportional to `fractions`.

    Uses the largest-remainder method; ties go to the earlier subset.

    Args:
        total (int): Number of items to split.
        fractions (Sequence[float]): Proportions summing to 1.0.

    Returns:
        list[int]: Counts summing to `total`, each within one of `fraction * total`.
    """
    exact = [fraction * total for fraction in fractions]
    counts = [math.floor(value) for value in exact]
    remainder = total - sum(counts)
    by_fractional_part = sorted(range(len(fractions)), key=lambda i: (-(exact[i] - counts[i]), i))
    for i in by_fractional_part[:remainder]:
        counts[i] += 1
    return counts
