"""Pydantic models for relevance scores and treatment plans.

Every model here is frozen: once a stage has produced a score table or a plan,
nothing downstream can alter it. `TreatmentPlan` is also the persistent form
of a fitted plan; it round-trips through JSON without loss.
"""

from __future__ import annotations

import math
from typing import Annotated, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from prepkit.dataset import ColumnType

MISSING_LEVEL: Final[str] = "__missing__"
OTHER_LEVEL: Final[str] = "__other__"

_SCORE_ABS_TOL: float = 1e-12

# ---------------------------------------------------------------------------
# Relevance scores
# ---------------------------------------------------------------------------


class RelevanceScore(BaseModel):
    """Cross-validated information value of one predictor.

    Attributes:
        raw (float): Information value computed on the fit data.
        penalty (float): Excess of the fit statistic over the eval statistic,
            plus the chance-level information value of both samples.
        adjusted (float): `max(0, raw - penalty)`.

    Examples:
        >>> RelevanceScore(raw=0.31, penalty=0.04, adjusted=0.27).adjusted
        0.27
    """

    model_config = ConfigDict(frozen=True)

    raw: float = Field(ge=0.0, description="Information value computed on the fit data.")
    penalty: float = Field(ge=0.0, description="Cross-validation penalty from the eval data.")
    adjusted: float = Field(ge=0.0, description="Raw score minus penalty, floored at zero.")

    @model_validator(mode="after")
    def _validate_adjusted_matches_raw_minus_penalty(self) -> RelevanceScore:
        """Validate that `adjusted` equals `max(0, raw - penalty)`.

        Returns:
            RelevanceScore: The validated model instance.

        Raises:
            ValueError: If `adjusted` is inconsistent with `raw` and `penalty`.
        """
        expected = max(0.0, self.raw - self.penalty)
        if not math.isclose(self.adjusted, expected, rel_tol=1e-9, abs_tol=_SCORE_ABS_TOL):
            raise ValueError(f"adjusted must equal max(0, raw - penalty) = {expected}, got {self.adjusted}")
        return self

    @classmethod
    def from_components(cls, raw: float, penalty: float) -> RelevanceScore:
        """Build a score from its raw value and penalty.

        Args:
            raw (float): Information value on the fit data.
            penalty (float): Cross-validation penalty.

        Returns:
            RelevanceScore: The score with `adjusted` filled in.
        """
        return cls(raw=raw, penalty=penalty, adjusted=max(0.0, raw - penalty))


# ---------------------------------------------------------------------------
# Treatments
# ---------------------------------------------------------------------------


class NumericTreatment(BaseModel):
    """Frozen rule turning one numeric predictor into a cleaned column.

    Missing values are replaced by `impute_value`, then every value is
    clipped to `[lower_bound, upper_bound]`. When the fit data had missing
    values a 0/1 missing indicator is emitted as well.

    Attributes:
        kind (Literal["numeric"]): Discriminator field; always `"numeric"`.
        variable (str): Source predictor name.
        impute_value (float): Mean of the non-missing fit values.
        lower_bound (float): Lower collar bound.
        upper_bound (float): Upper collar bound.
        has_missing_indicator (bool): Whether `<variable>_is_missing` is emitted.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = Field(default="numeric", description='Discriminator field. Always "numeric".')
    variable: str = Field(description="Source predictor name.")
    impute_value: float = Field(description="Replacement for missing values: the mean of non-missing fit values.")
    lower_bound: float = Field(description="Values below this bound are raised to it.")
    upper_bound: float = Field(description="Values above this bound are lowered to it.")
    has_missing_indicator: bool = Field(description="Whether a 0/1 missing-indicator column is emitted.")

    @model_validator(mode="after")
    def _validate_bounds_are_ordered(self) -> NumericTreatment:
        """Validate that the collar bounds are ordered.

        Returns:
            NumericTreatment: The validated model instance.

        Raises:
            ValueError: If `lower_bound` exceeds `upper_bound`.
        """
        if self.lower_bound > self.upper_bound:
            raise ValueError(f"lower_bound ({self.lower_bound}) must not exceed upper_bound ({self.upper_bound})")
        return self

    @property
    def clean_column(self) -> str:
        """Name of the imputed and collared output column."""
        return f"{self.variable}_clean"

    @property
    def missing_indicator_column(self) -> str:
        """Name of the 0/1 missing-indicator output column."""
        return f"{self.variable}_is_missing"

    @property
    def output_columns(self) -> list[str]:
        """Output column names produced by this treatment, in order."""
        if self.has_missing_indicator:
            return [self.clean_column, self.missing_indicator_column]
        return [self.clean_column]


class CategoricalTreatment(BaseModel):
    """Frozen rule turning one categorical predictor into numeric columns.

    Emits one 0/1 indicator per retained level, a prevalence-coded column,
    and an impact-coded column. Values not among `levels` (including
    categories never seen at fit time) resolve to `__other__`.

    Attributes:
        kind (Literal["categorical"]): Discriminator field; always `"categorical"`.
        variable (str): Source predictor name.
        levels (list[str]): Retained levels that receive an indicator column.
            Contains `__missing__` when missing values were observed at fit
            time, and `__other__` when any rare category was collapsed.
        prevalence (dict[str, float]): Level to fit-time frequency. Always has
            an `__other__` entry.
        impact (dict[str, float]): Level to single-variable logistic regression
            coefficient. Always has an `__other__` entry.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["categorical"] = Field(
        default="categorical", description='Discriminator field. Always "categorical".'
    )
    variable: str = Field(description="Source predictor name.")
    levels: list[str] = Field(description="Retained levels, each given a 0/1 indicator column.")
    prevalence: dict[str, float] = Field(description="Level to frequency in the fit data.")
    impact: dict[str, float] = Field(description="Level to logistic regression coefficient of its indicator.")

    @model_validator(mode="after")
    def _validate_tables_cover_levels(self) -> CategoricalTreatment:
        """Validate that the coding tables cover exactly the levels plus `__other__`.

        Returns:
            CategoricalTreatment: The validated model instance.

        Raises:
            ValueError: If levels repeat, or a coding table has missing or
                extra keys.
        """
        if len(self.levels) != len(set(self.levels)):
            raise ValueError(f"levels must be unique, got {self.levels}")
        expected_keys = {*self.levels, OTHER_LEVEL}
        errors: list[str] = []
        for table_name, table in (("prevalence", self.prevalence), ("impact", self.impact)):
            if set(table) != expected_keys:
                errors.append(f"{table_name} keys {sorted(table)} do not match levels {sorted(expected_keys)}")
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def indicator_column(self, level: str) -> str:
        """Return the name of the 0/1 indicator column for `level`.

        Args:
            level (str): A retained level.

        Returns:
            str: The indicator column name.
        """
        return f"{self.variable}_lev_{level}"

    @property
    def prevalence_column(self) -> str:
        """Name of the prevalence-coded output column."""
        return f"{self.variable}_prevalence"

    @property
    def impact_column(self) -> str:
        """Name of the impact-coded output column."""
        return f"{self.variable}_impact"

    @property
    def output_columns(self) -> list[str]:
        """Output column names produced by this treatment, in order."""
        return [
            *(self.indicator_column(level) for level in self.levels),
            self.prevalence_column,
            self.impact_column,
        ]


# Pydantic selects the concrete treatment from the "kind" field.
type Treatment = Annotated[
    NumericTreatment | CategoricalTreatment,
    Field(discriminator="kind"),
]


class TreatmentPlan(BaseModel):
    """An immutable, serializable preprocessing plan fitted on one dataset.

    Attributes:
        response (str): Response column used while fitting.
        treatments (list[Treatment]): One treatment per retained predictor,
            in fit order.
        outlier_collar_probability (float): Tail probability used for the
            numeric collar bounds.
        rare_category_min_frequency (float): Frequency below which categories
            were collapsed into `__other__`.

    Examples:
        >>> plan = TreatmentPlan(
        ...     response="churn",
        ...     treatments=[
        ...         NumericTreatment(
        ...             variable="tenure",
        ...             impute_value=14.2,
        ...             lower_bound=0.0,
        ...             upper_bound=72.0,
        ...             has_missing_indicator=True,
        ...         ),
        ...     ],
        ...     outlier_collar_probability=0.0,
        ...     rare_category_min_frequency=0.02,
        ... )
        >>> plan.output_columns
        ['tenure_clean', 'tenure_is_missing']
    """

    model_config = ConfigDict(frozen=True)

    response: str = Field(description="Response column used while fitting.")
    treatments: list[Treatment] = Field(description="One treatment per retained predictor, in fit order.")
    outlier_collar_probability: float = Field(
        ge=0.0, le=0.5, description="Tail probability used for the numeric collar bounds."
    )
    rare_category_min_frequency: float = Field(
        ge=0.0, le=1.0, description="Frequency below which categories collapse into the other bucket."
    )

    @model_validator(mode="after")
    def _validate_unique_names(self) -> TreatmentPlan:
        """Validate that predictors and output columns are unique.

        Returns:
            TreatmentPlan: The validated model instance.

        Raises:
            ValueError: If two treatments share a predictor, or two output
                columns share a name.
        """
        predictors = self.predictors
        if len(predictors) != len(set(predictors)):
            raise ValueError(f"treatments must have unique variables, got {predictors}")
        outputs = self.output_columns
        if len(outputs) != len(set(outputs)):
            raise ValueError(f"output column names collide: {outputs}")
        return self

    @property
    def predictors(self) -> list[str]:
        """Predictor names the plan expects, in fit order."""
        return [treatment.variable for treatment in self.treatments]

    @property
    def predictor_types(self) -> dict[str, ColumnType]:
        """Predictor name to the semantic type it had at fit time."""
        return {treatment.variable: treatment.kind for treatment in self.treatments}

    @property
    def output_columns(self) -> list[str]:
        """All output column names, in order."""
        return [column for treatment in self.treatments for column in treatment.output_columns]
