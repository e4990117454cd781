"""Custom exceptions for the feature preprocessing pipeline.

This module defines the caller-input validation errors raised by each stage.
Every error is raised eagerly, before any computation begins, so a stage either
returns a complete result or fails without leaving partial state behind.

Column lookup exceptions (subclass ValueError):
- ColumnsNotFoundError: Raised when requested columns do not exist in a dataset.
- DuplicateColumnsError: Raised when duplicate column names are provided.

Pipeline validation exceptions (subclass PrepkitError, itself a ValueError):
- InvalidFractionsError: Partition fractions are empty, non-positive, or do not sum to 1.
- StratifyColumnMissingError: The stratification column is absent or has missing values.
- EmptyFitDataError / EmptyEvalDataError: A required partition has zero records.
- ResponseNotBinaryError: The response column holds values outside {0, 1}.
- UnknownPredictorError: A dataset lacks a predictor that a plan or score expects.
- PlanTypeMismatchError: A predictor's declared type differs from fit time.
- CutoffOutOfRangeError: A correlation cutoff lies outside (0, 1].
- InvalidParameterError: Any other out-of-range numeric or enumerated parameter.
- UnsupportedColumnTypeError: A column dtype has no numeric or categorical reading.
"""

from __future__ import annotations

from collections.abc import Sequence


class ColumnsNotFoundError(ValueError):
    """Raised when requested columns do not exist in a dataset.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names present in the dataset.

    Examples:
        >>> err = ColumnsNotFoundError(
        ...     missing_columns=["x", "y"],
        ...     available_columns=["a", "b", "c"],
        ... )
        >>> err.missing_columns
        ['x', 'y']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(
        self,
        missing_columns: list[str],
        available_columns: list[str],
    ) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names not found in the dataset.
            available_columns (list[str]): Column names present in the dataset.
        """
        super().__init__(f"Columns not found in dataset: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class DuplicateColumnsError(ValueError):
    """Raised when duplicate column names are provided.

    Attributes:
        columns (list[str]): The column list that contains duplicates.
        duplicate_columns (list[str]): The specific column names that are
            duplicated (each listed once).

    Examples:
        >>> err = DuplicateColumnsError(columns=["a", "a", "b"])
        >>> err.duplicate_columns
        ['a']
    """

    columns: list[str]
    duplicate_columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize DuplicateColumnsError.

        Args:
            columns (list[str]): The column list containing duplicates.
        """
        super().__init__("Duplicate column names are not allowed")
        self.columns = columns
        seen: set[str] = set()
        self.duplicate_columns = []
        for col in columns:
            if col in seen and col not in self.duplicate_columns:
                self.duplicate_columns.append(col)
            seen.add(col)


class PrepkitError(ValueError):
    """Base exception for all pipeline validation errors.

    Catching this exception catches every caller-input error raised by the
    partitioner, relevance filter, treatment builder, and redundancy reducer.
    It subclasses `ValueError` because every such failure is a bad argument.
    """

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: The class name and message.
        """
        return f"{self.__class__.__name__}(message={str(self)!r})"


class InvalidFractionsError(PrepkitError):
    """Raised when partition fractions are not a valid split of the whole.

    Attributes:
        fractions (list[float]): The fractions that failed validation.

    Examples:
        >>> err = InvalidFractionsError("Fractions must sum to 1.0", fractions=[0.5, 0.4])
        >>> err.fractions
        [0.5, 0.4]
    """

    fractions: list[float]

    def __init__(self, message: str, *, fractions: Sequence[float]) -> None:
        """Initialize InvalidFractionsError.

        Args:
            message (str): Description of the violated constraint.
            fractions (Sequence[float]): The fractions that failed validation.
        """
        super().__init__(message)
        self.fractions = list(fractions)

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the fractions.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, fractions={self.fractions!r})"


class StratifyColumnMissingError(PrepkitError):
    """Raised when the stratification column is absent or not fully observed.

    Attributes:
        column (str): The requested stratification column.
    """

    column: str

    def __init__(self, message: str, *, column: str) -> None:
        """Initialize StratifyColumnMissingError.

        Args:
            message (str): Description of the problem.
            column (str): The requested stratification column.
        """
        super().__init__(message)
        self.column = column

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the column.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, column={self.column!r})"


class EmptyFitDataError(PrepkitError):
    """Raised when the dataset used to fit scores or a treatment plan has no records."""


class EmptyEvalDataError(PrepkitError):
    """Raised when the held-out evaluation dataset has no records."""


class ResponseNotBinaryError(PrepkitError):
    """Raised when the response column is not a fully observed 0/1 column.

    Attributes:
        column (str): The response column name.
        invalid_values (list[float | str | None]): Up to ten offending distinct
            values; `None` stands for a missing value.

    Examples:
        >>> err = ResponseNotBinaryError("bad response", column="churn", invalid_values=[2.0])
        >>> err.invalid_values
        [2.0]
    """

    column: str
    invalid_values: list[float | str | None]

    def __init__(
        self,
        message: str,
        *,
        column: str,
        invalid_values: Sequence[float | str | None] | None = None,
    ) -> None:
        """Initialize ResponseNotBinaryError.

        Args:
            message (str): Description of the problem.
            column (str): The response column name.
            invalid_values (Sequence[float | str | None] | None): Offending values.
        """
        super().__init__(message)
        self.column = column
        self.invalid_values = list(invalid_values or [])

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the offending values.
        """
        return (
            f"{self.__class__.__name__}("
            f"message={str(self)!r}, column={self.column!r}, "
            f"invalid_values={self.invalid_values!r})"
        )


class UnknownPredictorError(PrepkitError):
    """Raised when a dataset lacks one or more predictors that are expected.

    Attributes:
        missing_predictors (list[str]): Expected predictor names that are absent.
    """

    missing_predictors: list[str]

    def __init__(self, message: str, *, missing_predictors: Sequence[str]) -> None:
        """Initialize UnknownPredictorError.

        Args:
            message (str): Description of the problem.
            missing_predictors (Sequence[str]): Expected predictor names that are absent.
        """
        super().__init__(message)
        self.missing_predictors = list(missing_predictors)

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the missing predictors.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, missing_predictors={self.missing_predictors!r})"


class PlanTypeMismatchError(PrepkitError):
    """Raised when a predictor's declared type differs from the type seen at fit time.

    Attributes:
        mismatches (dict[str, tuple[str, str]]): Mapping of predictor name to
            `(expected_type, actual_type)`.

    Examples:
        >>> err = PlanTypeMismatchError("type mismatch", mismatches={"age": ("numeric", "categorical")})
        >>> err.mismatches["age"]
        ('numeric', 'categorical')
    """

    mismatches: dict[str, tuple[str, str]]

    def __init__(self, message: str, *, mismatches: dict[str, tuple[str, str]]) -> None:
        """Initialize PlanTypeMismatchError.

        Args:
            message (str): Description of the problem.
            mismatches (dict[str, tuple[str, str]]): Predictor name to
                `(expected_type, actual_type)`.
        """
        super().__init__(message)
        self.mismatches = dict(mismatches)

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the mismatches.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, mismatches={self.mismatches!r})"


class CutoffOutOfRangeError(PrepkitError):
    """Raised when a correlation cutoff lies outside the half-open interval (0, 1].

    Attributes:
        cutoff (float): The rejected cutoff.
    """

    cutoff: float

    def __init__(self, cutoff: float) -> None:
        """Initialize CutoffOutOfRangeError.

        Args:
            cutoff (float): The rejected cutoff.
        """
        super().__init__(f"cutoff must be in (0, 1], got {cutoff}")
        self.cutoff = cutoff

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the cutoff.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, cutoff={self.cutoff!r})"


class InvalidParameterError(PrepkitError):
    """Raised when a stage parameter is outside its accepted range or vocabulary."""


class UnsupportedColumnTypeError(PrepkitError):
    """Raised when columns have a dtype that is neither numeric nor categorical.

    Attributes:
        columns (dict[str, str]): Mapping of column name to its string dtype.
    """

    columns: dict[str, str]

    def __init__(self, columns: dict[str, str]) -> None:
        """Initialize UnsupportedColumnTypeError.

        Args:
            columns (dict[str, str]): Mapping of column name to its string dtype.
        """
        super().__init__(f"Columns have unsupported dtypes: {columns}")
        self.columns = dict(columns)

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including the offending columns.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, columns={self.columns!r})"
