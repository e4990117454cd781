"""End-to-end orchestration of the four preprocessing stages.

`run_pipeline` partitions a dataset, filters predictors by cross-validated
relevance, fits and applies a treatment plan, and removes redundant encoded
columns. Every tunable parameter lives in `PipelineSettings`, which can be
overridden from `PREPKIT_*` environment variables or a `.env` file.
"""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, InstanceOf
from pydantic_settings import BaseSettings

from prepkit.dataset import Dataset, check_binary_response
from prepkit.exceptions import CutoffOutOfRangeError, InvalidParameterError
from prepkit.logging import STAGE_LEVEL
from prepkit.models import RelevanceScore, TreatmentPlan
from prepkit.partition import partition
from prepkit.redundancy import (
    DEFAULT_CORRELATION_CUTOFF,
    DEFAULT_CORRELATION_METHOD,
    CorrelationMethod,
    find_redundant,
)
from prepkit.relevance import (
    DEFAULT_MAX_BINS,
    DEFAULT_MAX_CATEGORIES,
    DEFAULT_RELEVANCE_THRESHOLD,
    ExcludedPredictor,
    score_predictors,
    screen_predictors,
    select_relevant,
)
from prepkit.treatment import (
    DEFAULT_OUTLIER_COLLAR_PROBABILITY,
    DEFAULT_RARE_CATEGORY_MIN_FREQUENCY,
    apply_plan,
    fit_plan,
)

# ---------------------------------------------------------------------------
# Settings and result models
# ---------------------------------------------------------------------------


class PipelineSettings(BaseSettings, env_prefix="PREPKIT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"):
    """Parameters of a pipeline run.

    Values are validated by the stage that uses them, so an out-of-range
    setting raises the same error as calling the stage directly.

    Attributes:
        fractions (tuple[float, float, float]): Training, treatment-fit and
            evaluation proportions.
        seed (int): Partition seed.
        relevance_threshold (float): Minimum adjusted relevance score, exclusive.
        max_bins (int): Maximum numeric bins for the relevance statistic.
        max_categories (int): Largest categorical cardinality that is scored.
        outlier_collar_probability (float): Tail probability of the numeric collar.
        rare_category_min_frequency (float): Frequency below which categories collapse.
        correlation_method (CorrelationMethod): `"pearson"` or `"spearman"`.
        correlation_cutoff (float): Absolute correlation at which a pair is redundant.

    Examples:
        >>> PipelineSettings(seed=7, correlation_cutoff=0.95).fractions
        (0.5, 0.25, 0.25)
    """

    fractions: tuple[float, float, float] = Field(
        default=(0.5, 0.25, 0.25),
        description="Training, treatment-fit and evaluation proportions.",
    )
    seed: int = Field(default=42, description="Partition seed.")
    relevance_threshold: float = Field(
        default=DEFAULT_RELEVANCE_THRESHOLD, description="Minimum adjusted relevance score, exclusive."
    )
    max_bins: int = Field(default=DEFAULT_MAX_BINS, description="Maximum numeric bins for the relevance statistic.")
    max_categories: int = Field(
        default=DEFAULT_MAX_CATEGORIES, description="Largest categorical cardinality that is scored."
    )
    outlier_collar_probability: float = Field(
        default=DEFAULT_OUTLIER_COLLAR_PROBABILITY, description="Tail probability of the numeric collar."
    )
    rare_category_min_frequency: float = Field(
        default=DEFAULT_RARE_CATEGORY_MIN_FREQUENCY, description="Frequency below which categories collapse."
    )
    correlation_method: CorrelationMethod = Field(
        default=DEFAULT_CORRELATION_METHOD, description="Correlation used by the redundancy reducer."
    )
    correlation_cutoff: float = Field(
        default=DEFAULT_CORRELATION_CUTOFF, description="Absolute correlation at which a pair is redundant."
    )


class PipelineResult(BaseModel):
    """Everything produced by one pipeline run.

    Attributes:
        scores (dict[str, RelevanceScore]): Relevance score per scored predictor.
        excluded (list[ExcludedPredictor]): Predictors skipped before scoring.
        selected (list[str]): Predictors that passed the relevance threshold, sorted.
        plan (TreatmentPlan): Plan fitted on the treatment-fit subset.
        redundant (list[str]): Encoded columns dropped for redundancy, in drop order.
        training (Dataset): Encoded training subset without redundant columns.
        evaluation (Dataset): Encoded evaluation subset without redundant columns.
        feature_columns (list[str]): Final feature columns of both encoded subsets.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    scores: dict[str, RelevanceScore] = Field(description="Relevance score per scored predictor.")
    excluded: list[ExcludedPredictor] = Field(description="Predictors skipped before scoring.")
    selected: list[str] = Field(description="Predictors that passed the relevance threshold, sorted.")
    plan: TreatmentPlan = Field(description="Plan fitted on the treatment-fit subset.")
    redundant: list[str] = Field(description="Encoded columns dropped for redundancy, in drop order.")
    training: InstanceOf[Dataset] = Field(description="Encoded training subset.")
    evaluation: InstanceOf[Dataset] = Field(description="Encoded evaluation subset.")
    feature_columns: list[str] = Field(description="Final feature columns of both encoded subsets.")


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def run_pipeline(dataset: Dataset, settings: PipelineSettings | None = None) -> PipelineResult:
    """Run partitioning, relevance filtering, treatment and redundancy reduction.

    The dataset is split, stratified on its response, into training,
    treatment-fit and evaluation subsets. Predictors are scored on the
    treatment-fit subset against the evaluation subset; the plan is fitted on
    the treatment-fit subset and applied to the training and evaluation
    subsets; redundancy is decided on the encoded training subset.

    Args:
        dataset (Dataset): Input data with a binary response designated.
        settings (PipelineSettings | None): Run parameters. Defaults to
            `PipelineSettings()`, which reads `PREPKIT_*` environment variables.

    Returns:
        PipelineResult: The scores, plan, dropped columns and encoded subsets.
            When no predictor passes the relevance threshold the plan is empty
            and both encoded subsets hold only the response.

    Raises:
        InvalidParameterError: If the dataset has no response or a setting is invalid.
        CutoffOutOfRangeError: If the correlation cutoff is not in `(0, 1]`.
        ResponseNotBinaryError: If the response is not a fully observed 0/1 column.
        InvalidFractionsError: If the fractions are invalid.
        EmptyFitDataError: If the treatment-fit subset is empty.
        EmptyEvalDataError: If the evaluation subset is empty.

    Examples:
        >>> result = run_pipeline(Dataset.from_polars(df, response="churn"))  # doctest: +SKIP
        >>> result.feature_columns  # doctest: +SKIP
        ['plan_impact', 'plan_prevalence', 'tenure_clean']
    """
    settings = settings if settings is not None else PipelineSettings()
    response = _validate_pipeline_inputs(dataset, settings)
    logger.log(
        STAGE_LEVEL,
        "Running pipeline",
        rows=len(dataset),
        predictors=len(dataset.predictors),
        response=response,
        seed=settings.seed,
    )

    training, fit_subset, evaluation = partition(dataset, settings.fractions, stratify_by=response, seed=settings.seed)

    scores = score_predictors(
        fit_subset,
        evaluation,
        response,
        max_bins=settings.max_bins,
        max_categories=settings.max_categories,
    )
    _, excluded = screen_predictors(fit_subset, settings.max_categories)
    selected = sorted(select_relevant(scores, settings.relevance_threshold))
    if not selected:
        logger.warning("No predictors passed relevance filtering", threshold=settings.relevance_threshold)

    plan = fit_plan(
        fit_subset,
        selected,
        response,
        outlier_collar_probability=settings.outlier_collar_probability,
        rare_category_min_frequency=settings.rare_category_min_frequency,
    )
    encoded_training = apply_plan(plan, training)
    encoded_evaluation = apply_plan(plan, evaluation)

    redundant = find_redundant(encoded_training, settings.correlation_method, settings.correlation_cutoff)
    final_training = encoded_training.drop(redundant)
    final_evaluation = encoded_evaluation.drop(redundant)

    logger.debug(
        "Pipeline finished",
        selected=len(selected),
        redundant=len(redundant),
        features=len(final_training.predictors),
    )
    return PipelineResult(
        scores=scores,
        excluded=excluded,
        selected=selected,
        plan=plan,
        redundant=redundant,
        training=final_training,
        evaluation=final_evaluation,
        feature_columns=final_training.predictors,
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _validate_pipeline_inputs(dataset: Dataset, settings: PipelineSettings) -> str:
    """Check the dataset and the settings that no stage checks before partitioning.

    Args:
        dataset (Dataset): Input data.
        settings (PipelineSettings): Run parameters.

    Returns:
        str: The response column name.

    Raises:
        InvalidParameterError: If the dataset has no response.
        CutoffOutOfRangeError: If the correlation cutoff is not in `(0, 1]`.
        ResponseNotBinaryError: If the response is not a fully observed 0/1 column.
    """
    if dataset.response is None:
        raise InvalidParameterError("run_pipeline requires a dataset with a designated response column.")
    if not (0.0 < settings.correlation_cutoff <= 1.0):
        raise CutoffOutOfRangeError(settings.correlation_cutoff)
    check_binary_response(dataset, dataset.response)
    return dataset.response
