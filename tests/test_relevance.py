"""Tests for cross-validated information value scoring and relevance selection."""

from __future__ import annotations

import math

import numpy as np
import polars as pl
import pytest
from pytest_check import check

from prepkit.dataset import Dataset
from prepkit.exceptions import (
    ColumnsNotFoundError,
    EmptyEvalDataError,
    EmptyFitDataError,
    InvalidParameterError,
    PlanTypeMismatchError,
    ResponseNotBinaryError,
    UnknownPredictorError,
)
from prepkit.models import RelevanceScore
from prepkit.relevance import ExcludedPredictor, score_predictors, screen_predictors, select_relevant


def _make_ds(columns: dict[str, list], response: str = "churn") -> Dataset:
    """Build a dataset from column lists.

    Args:
        columns (dict[str, list]): Column name to values.
        response (str): Response column name.

    Returns:
        Dataset: The typed dataset.
    """
    return Dataset.from_polars(pl.DataFrame(columns), response=response)


@pytest.fixture
def random_pair() -> tuple[Dataset, Dataset]:
    """Fit and eval datasets with one informative, one noise, and one categorical predictor.

    Returns:
        tuple[Dataset, Dataset]: 400 fit records and 400 eval records.
    """
    rng = np.random.default_rng(21)

    def _draw(n: int) -> Dataset:
        signal = rng.normal(size=n)
        churn = (signal + rng.normal(scale=0.5, size=n) > 0).astype(int)
        region = rng.choice(["north", "south", "east"], size=n).tolist()
        return _make_ds({"signal": signal, "noise": rng.normal(size=n), "region": region, "churn": churn})

    return _draw(400), _draw(400)


class TestScorePredictors:
    """Tests for score_predictors."""

    def test_numeric_distribution_equal_to_overall_scores_zero(self) -> None:
        """A numeric predictor whose class mix is identical in every bin scores exactly 0."""
        # Arrange
        ds = _make_ds({"tenure": [1.0, 2.0, 1.0, 1.0, 2.0, 2.0], "churn": [1, 1, 0, 0, 0, 0]})

        # Act
        scores = score_predictors(ds, ds, "churn")

        # Assert - two occupied bins, N1 = 2 and N0 = 4 in each sample
        with check:
            assert scores["tenure"].raw == 0.0
        with check:
            assert scores["tenure"].penalty == pytest.approx(2 * (1 / 2 + 1 / 4))
        with check:
            assert scores["tenure"].adjusted == 0.0

    def test_categorical_distribution_equal_to_overall_scores_zero(self) -> None:
        """A categorical predictor with the overall class mix in every category scores exactly 0."""
        # Arrange
        ds = _make_ds({"plan": ["a", "b", "a", "a", "b", "b"], "churn": [1, 1, 0, 0, 0, 0]})

        # Act
        scores = score_predictors(ds, ds, "churn")

        # Assert
        assert scores["plan"].adjusted == 0.0

    def test_separating_predictor_uses_half_count_adjustment(self) -> None:
        """A predictor that separates the classes uses 0.5 for the empty class in each bin."""
        # Arrange
        ds = _make_ds({"flag": [0.0, 0.0, 1.0, 1.0], "churn": [0, 0, 1, 1]})

        # Act
        score = score_predictors(ds, ds, "churn")["flag"]

        # Assert - two bins, each contributing 0.75 * ln(4)
        with check:
            assert score.raw == pytest.approx(1.5 * math.log(4.0))
        with check:
            assert score.penalty == pytest.approx(2.0), "Only the noise floor (1 / 2 + 1 / 2) per sample"
        with check:
            assert score.adjusted == pytest.approx(1.5 * math.log(4.0) - 2.0)

    def test_penalty_is_statistic_disagreement_plus_noise_floor(self) -> None:
        """The penalty should be fit IV minus eval IV plus (B - 1) * (1 / N1 + 1 / N0) per sample."""
        # Arrange - fit splits 30 / 10 within each flag value, eval splits 20 / 20
        fit = _make_ds({"flag": [0.0] * 40 + [1.0] * 40, "churn": [0] * 30 + [1] * 10 + [0] * 10 + [1] * 30})
        eval_ = _make_ds({"flag": [0.0] * 40 + [1.0] * 40, "churn": ([0] * 20 + [1] * 20) * 2})
        fit_value = 2 * (0.5 * math.log(3.0))

        # Act
        score = score_predictors(fit, eval_, "churn")["flag"]

        # Assert - eval has the overall class mix in both bins, so its statistic is 0
        with check:
            assert score.raw == pytest.approx(fit_value)
        with check:
            assert score.penalty == pytest.approx(fit_value + 2 * (1 / 40 + 1 / 40))
        with check:
            assert score.adjusted == 0.0

    def test_stronger_eval_relation_charges_only_noise_floor(self) -> None:
        """An eval statistic above the fit statistic should leave only the noise floors as penalty."""
        # Arrange - fit splits 30 / 10 within each flag value, eval splits 35 / 5
        fit = _make_ds({"flag": [0.0] * 40 + [1.0] * 40, "churn": [0] * 30 + [1] * 10 + [0] * 10 + [1] * 30})
        eval_ = _make_ds({"flag": [0.0] * 40 + [1.0] * 40, "churn": [0] * 35 + [1] * 5 + [0] * 5 + [1] * 35})

        # Act
        score = score_predictors(fit, eval_, "churn")["flag"]

        # Assert
        with check:
            assert score.penalty == pytest.approx(2 * (1 / 40 + 1 / 40))
        with check:
            assert score.adjusted == pytest.approx(math.log(3.0) - 0.1)

    def test_exact_class_mix_scores_exact_zero_with_uneven_totals(self) -> None:
        """Bins that repeat the overall 1:3 mix should contribute exactly 0.0, not a rounding residue."""
        # Arrange - each region holds one positive and three negatives
        ds = _make_ds({
            "region": ["north"] * 4 + ["south"] * 4 + ["east"] * 4,
            "churn": [1, 0, 0, 0] * 3,
        })

        # Act
        score = score_predictors(ds, ds, "churn")["region"]

        # Assert
        with check:
            assert score.raw == 0.0
        with check:
            assert score.adjusted == 0.0

    def test_unrelated_eval_data_cancels_score(self) -> None:
        """A relation present in fit but absent in eval should be fully penalized."""
        # Arrange
        fit = _make_ds({"flag": [0.0, 0.0, 1.0, 1.0], "churn": [0, 0, 1, 1]})
        eval_ = _make_ds({"flag": [0.0, 1.0, 0.0, 1.0], "churn": [0, 0, 1, 1]})

        # Act
        score = score_predictors(fit, eval_, "churn")["flag"]

        # Assert
        with check:
            assert score.raw > 0.0
        with check:
            assert score.penalty == pytest.approx(score.raw + 2.0), "Eval statistic is 0; floor is 1.0 per sample"
        with check:
            assert score.adjusted == 0.0

    def test_missing_values_form_their_own_bin(self) -> None:
        """Missingness that tracks the response should make a predictor informative."""
        # Arrange
        ds = _make_ds({"income": [10.0, 20.0, 30.0, None, None, None] * 20, "churn": [0, 0, 0, 1, 1, 1] * 20})

        # Act
        score = score_predictors(ds, ds, "churn")["income"]

        # Assert
        assert score.adjusted > 0.0

    def test_unseen_eval_categories_are_scored(self) -> None:
        """Categories present only in eval data should fall into a shared bin, not fail."""
        # Arrange
        fit = _make_ds({"plan": ["a", "a", "b", "b"], "churn": [0, 1, 0, 1]})
        eval_ = _make_ds({"plan": ["a", "zzz", "b", "yyy"], "churn": [0, 1, 0, 1]})

        # Act
        score = score_predictors(fit, eval_, "churn")["plan"]

        # Assert
        with check:
            assert score.raw == 0.0
        with check:
            assert math.isfinite(score.penalty)
        with check:
            assert score.adjusted == 0.0

    def test_single_class_response_scores_zero(self) -> None:
        """A response with only one class yields a zero statistic."""
        # Arrange
        ds = _make_ds({"tenure": [1.0, 2.0, 3.0], "churn": [0, 0, 0]})

        # Act
        score = score_predictors(ds, ds, "churn")["tenure"]

        # Assert
        assert score.raw == 0.0

    def test_scores_respect_adjusted_invariant(self, random_pair: tuple[Dataset, Dataset]) -> None:
        """Every score should satisfy adjusted == max(0, raw - penalty) >= 0.

        Args:
            random_pair (tuple[Dataset, Dataset]): Fit and eval datasets.
        """
        # Arrange
        fit, eval_ = random_pair

        # Act
        scores = score_predictors(fit, eval_, "churn")

        # Assert
        with check:
            assert list(scores) == ["signal", "noise", "region"]
        for score in scores.values():
            with check:
                assert score.adjusted >= 0.0
            with check:
                assert score.adjusted == pytest.approx(max(0.0, score.raw - score.penalty))

    def test_informative_predictor_outscores_noise(self, random_pair: tuple[Dataset, Dataset]) -> None:
        """The informative predictor should keep a clearly positive adjusted score.

        Args:
            random_pair (tuple[Dataset, Dataset]): Fit and eval datasets.
        """
        # Arrange
        fit, eval_ = random_pair

        # Act
        scores = score_predictors(fit, eval_, "churn")

        # Assert
        with check:
            assert scores["signal"].adjusted > 0.1
        with check:
            assert scores["signal"].adjusted > scores["noise"].adjusted

    @pytest.mark.parametrize("seed", [0, 1, 2], ids=lambda seed: f"seed_{seed}")
    def test_independent_noise_stays_below_default_threshold(self, seed: int) -> None:
        """Normal noise on 250-record samples should not pass 0.02, while a one-third-weight signal should.

        Args:
            seed (int): Seed for the generated samples.
        """
        # Arrange - the signal is one of three equal parts of the latent score
        rng = np.random.default_rng(seed)

        def _draw(n: int) -> Dataset:
            latent = rng.normal(size=(3, n))
            churn = (latent.sum(axis=0) + 0.5 * rng.normal(size=n) > 0).astype(int)
            columns = {"signal": latent[0], **{f"noise_{k}": rng.normal(size=n) for k in range(3)}}
            return _make_ds({**columns, "churn": churn})

        fit, eval_ = _draw(250), _draw(250)

        # Act
        scores = score_predictors(fit, eval_, "churn")

        # Assert
        with check:
            assert select_relevant(scores) == {"signal"}
        for k in range(3):
            with check:
                assert scores[f"noise_{k}"].adjusted <= 0.02, f"noise_{k} scored {scores[f'noise_{k}']}"

    def test_scoring_is_deterministic(self, random_pair: tuple[Dataset, Dataset]) -> None:
        """Repeated scoring of the same inputs should give identical scores.

        Args:
            random_pair (tuple[Dataset, Dataset]): Fit and eval datasets.
        """
        # Arrange
        fit, eval_ = random_pair

        # Act & Assert
        assert score_predictors(fit, eval_, "churn") == score_predictors(fit, eval_, "churn")

    def test_high_cardinality_categorical_is_skipped(self) -> None:
        """A categorical with 1,001 distinct values should not be scored."""
        # Arrange
        n = 1001
        ds = _make_ds({
            "customer_id": [f"c{i:05d}" for i in range(n)],
            "tenure": [float(i % 7) for i in range(n)],
            "churn": [i % 2 for i in range(n)],
        })

        # Act
        scores = score_predictors(ds, ds, "churn")

        # Assert
        with check:
            assert "customer_id" not in scores
        with check:
            assert "tenure" in scores

    def test_max_bins_one_scores_only_missingness(self) -> None:
        """With a single non-missing bin, only the missing bin can separate the classes."""
        # Arrange
        ds = _make_ds({"tenure": [1.0, 2.0, 3.0, 4.0], "churn": [0, 0, 1, 1]})

        # Act
        score = score_predictors(ds, ds, "churn", max_bins=1)["tenure"]

        # Assert
        assert score.raw == 0.0


class TestScorePredictorsValidation:
    """Tests for the eager input checks of score_predictors."""

    def test_missing_response_column_raises(self) -> None:
        """A response absent from the data should raise ColumnsNotFoundError."""
        # Arrange
        ds = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 1]})

        # Act & Assert
        with pytest.raises(ColumnsNotFoundError):
            score_predictors(ds, ds, "cancelled")

    def test_empty_fit_data_raises(self) -> None:
        """Fit data without records should raise EmptyFitDataError."""
        # Arrange
        ds = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 1]})

        # Act & Assert
        with pytest.raises(EmptyFitDataError):
            score_predictors(ds.take([]), ds, "churn")

    def test_empty_eval_data_raises(self) -> None:
        """Eval data without records should raise EmptyEvalDataError."""
        # Arrange
        ds = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 1]})

        # Act & Assert
        with pytest.raises(EmptyEvalDataError):
            score_predictors(ds, ds.take([]), "churn")

    def test_non_binary_response_raises(self) -> None:
        """A response with values outside {0, 1} in eval data should be rejected."""
        # Arrange
        fit = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 1]})
        eval_ = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 3]})

        # Act & Assert
        with pytest.raises(ResponseNotBinaryError):
            score_predictors(fit, eval_, "churn")

    def test_eval_missing_predictor_raises(self) -> None:
        """Eval data lacking a fit predictor should raise UnknownPredictorError."""
        # Arrange
        fit = _make_ds({"tenure": [1.0, 2.0], "plan": ["a", "b"], "churn": [0, 1]})
        eval_ = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 1]})

        # Act
        with pytest.raises(UnknownPredictorError) as exc_info:
            score_predictors(fit, eval_, "churn")

        # Assert
        assert exc_info.value.missing_predictors == ["plan"]

    def test_eval_type_mismatch_raises(self) -> None:
        """A predictor with a different type in eval data should raise PlanTypeMismatchError."""
        # Arrange
        fit = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 1]})
        eval_ = _make_ds({"tenure": ["1", "2"], "churn": [0, 1]})

        # Act
        with pytest.raises(PlanTypeMismatchError) as exc_info:
            score_predictors(fit, eval_, "churn")

        # Assert
        assert exc_info.value.mismatches == {"tenure": ("numeric", "categorical")}

    def test_invalid_max_bins_raises(self) -> None:
        """max_bins below 1 should raise InvalidParameterError."""
        # Arrange
        ds = _make_ds({"tenure": [1.0, 2.0], "churn": [0, 1]})

        # Act & Assert
        with pytest.raises(InvalidParameterError):
            score_predictors(ds, ds, "churn", max_bins=0)


class TestScreenPredictors:
    """Tests for screen_predictors."""

    def test_excludes_categoricals_above_limit(self) -> None:
        """Categoricals with more distinct values than the limit should be excluded with a reason."""
        # Arrange
        ds = _make_ds({
            "plan": ["a", "b", "c", None],
            "tenure": [1.0, 2.0, 3.0, 4.0],
            "churn": [0, 1, 0, 1],
        })

        # Act
        kept, excluded = screen_predictors(ds, 2)

        # Assert
        with check:
            assert kept == ["tenure"]
        with check:
            assert [item.name for item in excluded] == ["plan"]
        with check:
            assert isinstance(excluded[0], ExcludedPredictor) and "3 distinct values" in excluded[0].reason

    def test_missing_is_not_counted_as_a_category(self) -> None:
        """Missing values should not count toward the cardinality limit."""
        # Arrange
        ds = _make_ds({"plan": ["a", "b", None, None], "churn": [0, 1, 0, 1]})

        # Act
        kept, excluded = screen_predictors(ds, 2)

        # Assert
        with check:
            assert kept == ["plan"]
        with check:
            assert excluded == []


class TestSelectRelevant:
    """Tests for select_relevant."""

    def test_threshold_is_exclusive(self) -> None:
        """Only predictors with adjusted score strictly above the threshold are selected."""
        # Arrange
        scores = {
            "strong": RelevanceScore.from_components(raw=0.5, penalty=0.1),
            "borderline": RelevanceScore.from_components(raw=0.02, penalty=0.0),
            "overfit": RelevanceScore.from_components(raw=0.1, penalty=0.2),
        }

        # Act
        selected = select_relevant(scores, threshold=0.02)

        # Assert
        assert selected == {"strong"}

    def test_default_threshold(self) -> None:
        """The default threshold should be 0.02."""
        # Arrange
        scores = {
            "weak": RelevanceScore.from_components(raw=0.03, penalty=0.0),
            "none": RelevanceScore.from_components(raw=0.01, penalty=0.0),
        }

        # Act & Assert
        assert select_relevant(scores) == {"weak"}

    def test_negative_threshold_raises(self) -> None:
        """A negative threshold should raise InvalidParameterError."""
        # Act & Assert
        with pytest.raises(InvalidParameterError):
            select_relevant({}, threshold=-0.1)
