"""Fitting and applying treatment plans.

`fit_plan` learns one frozen treatment per predictor from the fit data;
`apply_plan` replays those treatments on any dataset with the same predictor
schema, using nothing but the statistics stored in the plan.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import polars as pl
from loguru import logger
from sklearn.linear_model import LogisticRegression

from prepkit.dataset import ColumnType, Dataset, check_binary_response
from prepkit.exceptions import (
    DuplicateColumnsError,
    EmptyFitDataError,
    InvalidParameterError,
    PlanTypeMismatchError,
    UnknownPredictorError,
)
from prepkit.logging import STAGE_LEVEL
from prepkit.models import (
    MISSING_LEVEL,
    OTHER_LEVEL,
    CategoricalTreatment,
    NumericTreatment,
    Treatment,
    TreatmentPlan,
)

DEFAULT_OUTLIER_COLLAR_PROBABILITY: float = 0.0
DEFAULT_RARE_CATEGORY_MIN_FREQUENCY: float = 0.02

_MAX_COLLAR_PROBABILITY: float = 0.5
_MAX_IMPACT: float = 10.0
_IMPACT_MAX_ITER: int = 1000


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def fit_plan(
    fit_data: Dataset,
    predictors: Sequence[str],
    response_column: str,
    *,
    outlier_collar_probability: float = DEFAULT_OUTLIER_COLLAR_PROBABILITY,
    rare_category_min_frequency: float = DEFAULT_RARE_CATEGORY_MIN_FREQUENCY,
) -> TreatmentPlan:
    """Fit a treatment plan for `predictors` on `fit_data`.

    Numeric predictors get a mean imputation value and collar bounds at the
    `outlier_collar_probability` and `1 - outlier_collar_probability`
    quantiles. Categorical predictors get their retained levels, with
    categories rarer than `rare_category_min_frequency` collapsed into
    `__other__`, plus prevalence and impact coding tables.

    Args:
        fit_data (Dataset): The data the statistics are learned from.
        predictors (Sequence[str]): Predictors to treat, in output order.
        response_column (str): The binary 0/1 response column.
        outlier_collar_probability (float): Tail probability in `[0, 0.5]`.
            `0.0` keeps the full observed range.
        rare_category_min_frequency (float): Frequency in `[0, 1]` below
            which a category is collapsed.

    Returns:
        TreatmentPlan: The frozen plan.

    Raises:
        InvalidParameterError: If a probability is out of range or the
            response is listed among the predictors.
        EmptyFitDataError: If `fit_data` has no records.
        DuplicateColumnsError: If `predictors` repeats a name.
        UnknownPredictorError: If a predictor is not in the fit schema.
        ColumnsNotFoundError: If the response column is absent.
        ResponseNotBinaryError: If the response is not a fully observed 0/1 column.

    Examples:
        >>> plan = fit_plan(fit_ds, ["age", "plan"], "churn", outlier_collar_probability=0.01)  # doctest: +SKIP
        >>> plan.output_columns  # doctest: +SKIP
        ['age_clean', 'plan_lev_basic', 'plan_lev_pro', 'plan_prevalence', 'plan_impact']
    """
    logger.log(
        STAGE_LEVEL,
        "Fitting treatment plan",
        rows=len(fit_data),
        predictors=len(predictors),
        outlier_collar_probability=outlier_collar_probability,
        rare_category_min_frequency=rare_category_min_frequency,
    )
    if not (0.0 <= outlier_collar_probability <= _MAX_COLLAR_PROBABILITY):
        raise InvalidParameterError(
            f"outlier_collar_probability must be in [0, {_MAX_COLLAR_PROBABILITY}], got {outlier_collar_probability}"
        )
    if not (0.0 <= rare_category_min_frequency <= 1.0):
        raise InvalidParameterError(
            f"rare_category_min_frequency must be in [0, 1], got {rare_category_min_frequency}"
        )
    if len(fit_data) == 0:
        raise EmptyFitDataError("Fit data has no records.")
    if len(predictors) != len(set(predictors)):
        raise DuplicateColumnsError(columns=list(predictors))
    unknown = [name for name in predictors if name not in fit_data.schema]
    if unknown:
        raise UnknownPredictorError(f"Fit data lacks predictors: {unknown}", missing_predictors=unknown)
    if response_column in predictors:
        raise InvalidParameterError(f"Response column '{response_column}' cannot also be a predictor.")
    response = check_binary_response(fit_data, response_column).to_numpy()

    treatments: list[Treatment] = []
    for name in predictors:
        series = fit_data.frame[name]
        if fit_data.schema[name] == "numeric":
            treatment: Treatment = _fit_numeric(name, series, outlier_collar_probability)
        else:
            treatment = _fit_categorical(name, series, response, rare_category_min_frequency)
        logger.debug("Treatment fitted", variable=name, kind=treatment.kind, outputs=treatment.output_columns)
        treatments.append(treatment)

    return TreatmentPlan(
        response=response_column,
        treatments=treatments,
        outlier_collar_probability=outlier_collar_probability,
        rare_category_min_frequency=rare_category_min_frequency,
    )


def apply_plan(plan: TreatmentPlan, dataset: Dataset) -> Dataset:
    """Transform `dataset` with the frozen statistics of `plan`.

    Only the stored statistics are used; nothing is re-estimated from
    `dataset`. Categories not among a treatment's levels, including ones never
    seen while fitting, are coded as `__other__`. The response column is
    passed through unchanged when present.

    Args:
        plan (TreatmentPlan): A fitted plan.
        dataset (Dataset): Data with every predictor of the plan.

    Returns:
        Dataset: All-numeric dataset with the plan's output columns in order,
            followed by the response column when `dataset` has it.

    Raises:
        UnknownPredictorError: If a plan predictor is missing from `dataset`.
        PlanTypeMismatchError: If a predictor's type differs from fit time.
    """
    logger.log(STAGE_LEVEL, "Applying treatment plan", rows=len(dataset), treatments=len(plan.treatments))
    _check_plan_compatibility(plan, dataset)

    expressions: list[pl.Expr] = []
    for treatment in plan.treatments:
        if isinstance(treatment, NumericTreatment):
            expressions.extend(_numeric_expressions(treatment))
        else:
            expressions.extend(_categorical_expressions(treatment))

    schema: dict[str, ColumnType] = dict.fromkeys(plan.output_columns, "numeric")
    response: str | None = None
    if plan.response in dataset.schema:
        expressions.append(pl.col(plan.response))
        schema[plan.response] = dataset.schema[plan.response]
        response = plan.response

    return Dataset(frame=dataset.frame.select(expressions), schema=schema, response=response)


# ---------------------------------------------------------------------------
# Private helpers -- Fitting
# ---------------------------------------------------------------------------


def _fit_numeric(name: str, series: pl.Series, collar_probability: float) -> NumericTreatment:
    """Learn the imputation value and collar bounds of one numeric predictor.

    Args:
        name (str): Predictor name.
        series (pl.Series): Its fit values.
        collar_probability (float): Tail probability for the bounds.

    Returns:
        NumericTreatment: The frozen numeric treatment. A predictor with no
            observed values imputes and bounds at 0.0.
    """
    observed = series.drop_nulls().to_numpy().astype(np.float64)
    if observed.size == 0:
        impute_value = lower_bound = upper_bound = 0.0
    else:
        impute_value = float(observed.mean())
        quantiles = np.quantile(observed, [collar_probability, 1.0 - collar_probability])
        lower_bound = float(quantiles[0])
        upper_bound = max(lower_bound, float(quantiles[1]))
    return NumericTreatment(
        variable=name,
        impute_value=impute_value,
        lower_bound=lower_bound,
        upper_bound=upper_bound,
        has_missing_indicator=series.null_count() > 0,
    )


def _fit_categorical(
    name: str,
    series: pl.Series,
    response: np.ndarray,
    rare_min_frequency: float,
) -> CategoricalTreatment:
    """Learn the levels and coding tables of one categorical predictor.

    Args:
        name (str): Predictor name.
        series (pl.Series): Its fit values.
        response (np.ndarray): The 0/1 response aligned with `series`.
        rare_min_frequency (float): Frequency below which a category collapses.

    Returns:
        CategoricalTreatment: The frozen categorical treatment.
    """
    values = series.fill_null(MISSING_LEVEL)
    total = len(values)
    counts = values.value_counts()
    frequencies = dict(zip(counts[name].to_list(), (c / total for c in counts["count"].to_list()), strict=True))

    retained = sorted(
        level
        for level, frequency in frequencies.items()
        if frequency >= rare_min_frequency or level == MISSING_LEVEL
    )
    collapsed = len(retained) < len(frequencies)
    levels = retained if not collapsed or OTHER_LEVEL in retained else [*retained, OTHER_LEVEL]

    retained_set = set(retained)
    resolved = np.array([value if value in retained_set else OTHER_LEVEL for value in values.to_list()], dtype=object)

    prevalence: dict[str, float] = {}
    impact: dict[str, float] = {}
    for level in [*levels, *([] if OTHER_LEVEL in levels else [OTHER_LEVEL])]:
        indicator = (resolved == level).astype(np.float64)
        prevalence[level] = float(indicator.mean())
        impact[level] = _impact_coefficient(indicator, response)

    return CategoricalTreatment(variable=name, levels=levels, prevalence=prevalence, impact=impact)


def _impact_coefficient(indicator: np.ndarray, response: np.ndarray) -> float:
    """Fit an unpenalized one-variable logistic regression of `response` on `indicator`.

    The coefficient of a 0/1 indicator is the log odds ratio of the response
    between records in the level and records outside it. When one side is
    pure the estimate diverges, and the coefficient is clamped to
    `+/- _MAX_IMPACT` in the direction of the association.

    Args:
        indicator (np.ndarray): 0/1 membership of each record in one level.
        response (np.ndarray): The 0/1 response.

    Returns:
        float: The indicator's coefficient, or 0.0 when either the indicator
            or the response is constant.
    """
    if indicator.min() == indicator.max() or response.min() == response.max():
        return 0.0

    in_level = indicator == 1.0
    in_level_rate = float(response[in_level].mean())
    out_level_rate = float(response[~in_level].mean())
    if in_level_rate in {0.0, 1.0} or out_level_rate in {0.0, 1.0}:
        return _MAX_IMPACT if in_level_rate > out_level_rate else -_MAX_IMPACT

    model = LogisticRegression(penalty=None, max_iter=_IMPACT_MAX_ITER)
    model.fit(indicator.reshape(-1, 1), response)
    return float(np.clip(model.coef_[0, 0], -_MAX_IMPACT, _MAX_IMPACT))


# ---------------------------------------------------------------------------
# Private helpers -- Application
# ---------------------------------------------------------------------------


def _check_plan_compatibility(plan: TreatmentPlan, dataset: Dataset) -> None:
    """Raise unless `dataset` carries every plan predictor with its fit-time type.

    Args:
        plan (TreatmentPlan): The plan to apply.
        dataset (Dataset): The candidate dataset.

    Raises:
        UnknownPredictorError: If predictors are missing.
        PlanTypeMismatchError: If predictor types differ.
    """
    missing = [name for name in plan.predictors if name not in dataset.schema]
    if missing:
        raise UnknownPredictorError(f"Dataset lacks plan predictors: {missing}", missing_predictors=missing)
    mismatches = {
        name: (expected, dataset.schema[name])
        for name, expected in plan.predictor_types.items()
        if dataset.schema[name] != expected
    }
    if mismatches:
        raise PlanTypeMismatchError(f"Predictor types differ from the plan: {mismatches}", mismatches=mismatches)


def _numeric_expressions(treatment: NumericTreatment) -> list[pl.Expr]:
    """Build the output expressions of a numeric treatment.

    Args:
        treatment (NumericTreatment): The treatment to apply.

    Returns:
        list[pl.Expr]: The cleaned column, then the missing indicator if any.
    """
    source = pl.col(treatment.variable)
    expressions = [
        source.fill_null(treatment.impute_value)
        .clip(treatment.lower_bound, treatment.upper_bound)
        .alias(treatment.clean_column)
    ]
    if treatment.has_missing_indicator:
        expressions.append(source.is_null().cast(pl.Float64).alias(treatment.missing_indicator_column))
    return expressions


def _categorical_expressions(treatment: CategoricalTreatment) -> list[pl.Expr]:
    """Build the output expressions of a categorical treatment.

    Args:
        treatment (CategoricalTreatment): The treatment to apply.

    Returns:
        list[pl.Expr]: One indicator per level, then the prevalence and
            impact columns.
    """
    filled = pl.col(treatment.variable).fill_null(MISSING_LEVEL)
    resolved = pl.when(filled.is_in(list(treatment.prevalence))).then(filled).otherwise(pl.lit(OTHER_LEVEL))
    return [
        *((resolved == level).cast(pl.Float64).alias(treatment.indicator_column(level)) for level in treatment.levels),
        resolved.replace_strict(treatment.prevalence, return_dtype=pl.Float64).alias(treatment.prevalence_column),
        resolved.replace_strict(treatment.impact, return_dtype=pl.Float64).alias(treatment.impact_column),
    ]
