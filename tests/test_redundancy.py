"""Tests for correlation matrices and greedy redundancy reduction."""

from __future__ import annotations

import numpy as np
import polars as pl
import pytest
from pytest_check import check

from prepkit.dataset import Dataset
from prepkit.exceptions import CutoffOutOfRangeError, InvalidParameterError
from prepkit.redundancy import correlation_matrix, find_redundant


def _encoded(columns: dict[str, object], response: str | None = None) -> Dataset:
    """Build an all-numeric dataset from column arrays.

    Args:
        columns (dict[str, object]): Column name to values.
        response (str | None): Optional response column.

    Returns:
        Dataset: The typed dataset.
    """
    return Dataset.from_polars(pl.DataFrame(columns), response=response)


@pytest.fixture
def correlated_ds() -> Dataset:
    """500 records with a near-copy pair, a moderately related column, and noise.

    Returns:
        Dataset: Columns `base`, `mixed`, `other`, `noise`.
    """
    rng = np.random.default_rng(5)
    base = rng.normal(size=500)
    other = rng.normal(size=500)
    return _encoded({
        "base": base,
        "mixed": base + 0.3 * other,
        "other": other,
        "noise": rng.normal(size=500),
    })


class TestCorrelationMatrix:
    """Tests for correlation_matrix."""

    def test_matrix_is_square_symmetric_and_absolute(self, correlated_ds: Dataset) -> None:
        """The matrix should be square, symmetric, in [0, 1], with a unit diagonal.

        Args:
            correlated_ds (Dataset): Correlated dataset fixture.
        """
        # Act
        matrix = correlation_matrix(correlated_ds, "pearson")

        # Assert
        values = matrix.to_numpy()
        with check:
            assert matrix.columns == ["base", "mixed", "other", "noise"]
        with check:
            assert values.shape == (4, 4)
        with check:
            assert np.allclose(values, values.T)
        with check:
            assert values.min() >= 0.0 and values.max() <= 1.0
        with check:
            assert np.allclose(np.diag(values), 1.0)

    def test_negative_relation_is_reported_as_absolute(self) -> None:
        """A perfectly decreasing relation should have absolute correlation 1."""
        # Arrange
        ds = _encoded({"up": [1.0, 2.0, 3.0, 4.0], "down": [8.0, 6.0, 4.0, 2.0]})

        # Act
        matrix = correlation_matrix(ds, "pearson")

        # Assert
        assert matrix["down"][0] == pytest.approx(1.0)

    def test_spearman_uses_ranks(self) -> None:
        """A monotone but non-linear relation should have Spearman correlation 1."""
        # Arrange
        ds = _encoded({"x": [1.0, 2.0, 3.0, 4.0, 5.0], "x_cubed": [1.0, 8.0, 27.0, 64.0, 125.0]})

        # Act
        spearman = correlation_matrix(ds, "spearman")
        pearson = correlation_matrix(ds, "pearson")

        # Assert
        with check:
            assert spearman["x_cubed"][0] == pytest.approx(1.0)
        with check:
            assert pearson["x_cubed"][0] < 0.99

    def test_constant_column_has_zero_correlation(self) -> None:
        """Correlations involving a constant column are undefined and reported as 0."""
        # Arrange
        ds = _encoded({"x": [1.0, 2.0, 3.0], "flat": [5.0, 5.0, 5.0]})

        # Act
        matrix = correlation_matrix(ds, "spearman")

        # Assert
        assert matrix["flat"][0] == 0.0

    def test_response_is_excluded(self) -> None:
        """The response column should not appear in the matrix."""
        # Arrange
        ds = _encoded({"x": [1.0, 2.0, 3.0], "y": [0.0, 1.0, 1.0]}, response="y")

        # Act
        matrix = correlation_matrix(ds)

        # Assert
        assert matrix.columns == ["x"]


class TestFindRedundant:
    """Tests for find_redundant."""

    def test_exact_duplicate_tie_drops_later_name(self) -> None:
        """Duplicates with equal mean correlation should drop the lexicographically later name."""
        # Arrange
        ds = _encoded({
            "zeta": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
            "alpha": [3.0, 5.0, 7.0, 9.0, 11.0, 13.0],
            "gamma": [2.0, 1.0, 4.0, 3.0, 6.0, 5.0],
        })

        # Act
        dropped = find_redundant(ds, "spearman", 0.9)

        # Assert
        assert dropped == ["zeta"]

    def test_drops_member_with_higher_mean_correlation(self, correlated_ds: Dataset) -> None:
        """Of a redundant pair, the column more related to the rest should go.

        `mixed` correlates with both `base` and `other`, so it is dropped even
        though `base` would lose a name-order tie.

        Args:
            correlated_ds (Dataset): Correlated dataset fixture.
        """
        # Act
        dropped = find_redundant(correlated_ds, "pearson", 0.9)

        # Assert
        assert dropped == ["mixed"]

    def test_small_mean_correlation_margin_decides_over_name_order(self) -> None:
        """A mean correlation higher by about 0.005 should be enough to drop the earlier name.

        With orthogonal zero-mean vectors u, v, w: `a = u + 0.1v` and
        `b = u - 0.1v` correlate at 0.98, and `c = 0.3u + 0.05v + w`
        correlates with `a` at 0.290 and with `b` at 0.281.
        """
        # Arrange
        u = np.array([1.0, 1.0, -1.0, -1.0])
        v = np.array([1.0, -1.0, 1.0, -1.0])
        w = np.array([1.0, -1.0, -1.0, 1.0])
        ds = _encoded({"a": u + 0.1 * v, "b": u - 0.1 * v, "c": 0.3 * u + 0.05 * v + w})

        # Act
        dropped = find_redundant(ds, "pearson", 0.9)

        # Assert
        assert dropped == ["a"]

    def test_tied_pairs_are_processed_in_column_order(self) -> None:
        """Of two pairs tied at the maximum correlation, the pair earlier in column order goes first.

        Both pairs are built from orthogonal integer vectors and correlate at
        exactly 0.8, with 0 across pairs. Column order puts the `z` pair first,
        so its drop comes before the alphabetically earlier `a` pair's.
        """
        # Arrange
        hadamard = np.array([[(-1) ** bin(i & j).count("1") for j in range(8)] for i in range(8)], dtype=np.float64)
        ds = _encoded({
            "z1": 3 * hadamard[1] + hadamard[2],
            "z2": 3 * hadamard[1] - hadamard[2],
            "a1": 3 * hadamard[3] + hadamard[4],
            "a2": 3 * hadamard[3] - hadamard[4],
        })

        # Act
        dropped = find_redundant(ds, "pearson", 0.75)

        # Assert
        assert dropped == ["z2", "a2"]

    def test_survivors_are_below_cutoff(self) -> None:
        """No pair of surviving columns should reach the cutoff.

        Builds several clusters of near-copies and checks the survivors by
        recomputing their correlation.
        """
        # Arrange
        rng = np.random.default_rng(17)
        columns: dict[str, np.ndarray] = {}
        for cluster in range(4):
            center = rng.normal(size=300)
            for member in range(3):
                columns[f"c{cluster}_m{member}"] = center + rng.normal(scale=0.15 * (member + 1), size=300)
        ds = _encoded(columns)
        cutoff = 0.85

        # Act
        dropped = find_redundant(ds, "spearman", cutoff)

        # Assert
        survivors = ds.drop(dropped)
        values = correlation_matrix(survivors, "spearman").to_numpy()
        off_diagonal = values[~np.eye(len(survivors.columns), dtype=bool)]
        with check:
            assert len(dropped) > 0
        with check:
            assert (off_diagonal < cutoff).all()

    def test_drop_order_is_deterministic(self, correlated_ds: Dataset) -> None:
        """Repeated calls on identical input should return the same ordered list.

        Args:
            correlated_ds (Dataset): Correlated dataset fixture.
        """
        # Act
        first = find_redundant(correlated_ds, "spearman", 0.5)
        second = find_redundant(correlated_ds, "spearman", 0.5)

        # Assert
        assert first == second

    def test_uncorrelated_columns_are_kept(self) -> None:
        """Columns below the cutoff should produce no drops."""
        # Arrange
        ds = _encoded({"a": [1.0, 2.0, 3.0, 4.0], "b": [2.0, 1.0, 4.0, 3.0]})

        # Act & Assert
        assert find_redundant(ds, "pearson", 0.9) == []

    def test_fewer_than_two_predictors_returns_empty(self) -> None:
        """A single predictor (plus response) cannot be redundant."""
        # Arrange
        ds = _encoded({"a": [1.0, 2.0, 3.0], "y": [1.0, 2.0, 3.0]}, response="y")

        # Act & Assert
        assert find_redundant(ds) == []


class TestFindRedundantValidation:
    """Tests for the eager checks of find_redundant."""

    @pytest.mark.parametrize("cutoff", [0.0, -0.5, 1.01, float("nan")])
    def test_cutoff_out_of_range_raises(self, cutoff: float) -> None:
        """Cutoffs outside (0, 1] should raise CutoffOutOfRangeError.

        Args:
            cutoff (float): An invalid cutoff.
        """
        # Arrange
        ds = _encoded({"a": [1.0, 2.0], "b": [2.0, 1.0]})

        # Act & Assert
        with pytest.raises(CutoffOutOfRangeError):
            find_redundant(ds, "spearman", cutoff)

    def test_cutoff_of_one_is_accepted(self) -> None:
        """A cutoff of exactly 1.0 is valid."""
        # Arrange
        ds = _encoded({"a": [1.0, 2.0, 3.0], "b": [3.0, 1.0, 2.0]})

        # Act & Assert
        assert find_redundant(ds, "pearson", 1.0) == []

    def test_unknown_method_raises(self) -> None:
        """An unknown correlation method should raise InvalidParameterError."""
        # Arrange
        ds = _encoded({"a": [1.0, 2.0], "b": [2.0, 1.0]})

        # Act & Assert
        with pytest.raises(InvalidParameterError):
            find_redundant(ds, "kendall", 0.9)  # type: ignore[arg-type]

    def test_categorical_predictor_raises(self) -> None:
        """Categorical predictors must be encoded before reduction."""
        # Arrange
        ds = _encoded({"a": [1.0, 2.0], "plan": ["basic", "pro"]})

        # Act & Assert
        with pytest.raises(InvalidParameterError):
            find_redundant(ds, "spearman", 0.9)

    def test_missing_values_raise(self) -> None:
        """Predictors with missing values must be imputed before reduction."""
        # Arrange
        ds = _encoded({"a": [1.0, None, 3.0], "b": [2.0, 1.0, 3.0]})

        # Act & Assert
        with pytest.raises(InvalidParameterError):
            find_redundant(ds, "spearman", 0.9)
