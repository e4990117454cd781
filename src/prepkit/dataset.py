"""Typed tabular datasets: column classification, normalization, and validated lookup.

A `Dataset` wraps a Polars DataFrame whose columns have each been assigned one
of two semantic types at construction time:

- `"numeric"` columns are stored as `Float64`; NaN is normalized to null.
- `"categorical"` columns are stored as `String`; null means missing.

One column may be marked as the binary response. Column references are always
resolved against the schema and fail fast with `ColumnsNotFoundError`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal

import numpy as np
import polars as pl

from prepkit.exceptions import (
    ColumnsNotFoundError,
    DuplicateColumnsError,
    ResponseNotBinaryError,
    UnsupportedColumnTypeError,
)

type ColumnType = Literal["numeric", "categorical"]

_COLUMN_TYPE_TO_DTYPE: dict[str, type[pl.DataType]] = {
    "numeric": pl.Float64,
    "categorical": pl.String,
}

_DTYPE_TO_COLUMN_TYPE: dict[type[pl.DataType] | pl.DataType, ColumnType] = {
    pl.Int8: "numeric",
    pl.Int16: "numeric",
    pl.Int32: "numeric",
    pl.Int64: "numeric",
    pl.UInt8: "numeric",
    pl.UInt16: "numeric",
    pl.UInt32: "numeric",
    pl.UInt64: "numeric",
    pl.Float32: "numeric",
    pl.Float64: "numeric",
    pl.Boolean: "numeric",
    pl.String: "categorical",
    pl.Categorical: "categorical",
}

_MAX_REPORTED_VALUES: int = 10


def classify_column(dtype: pl.DataType) -> ColumnType | None:
    """Classify a Polars dtype as numeric or categorical.

    Booleans read as numeric 0/1. Parameterized `Enum` instances hash
    differently from the bare class, so they are matched with `isinstance`.

    Args:
        dtype (pl.DataType): The Polars data type to classify.

    Returns:
        ColumnType | None: `"numeric"`, `"categorical"`, or `None` when the
            dtype has no supported reading (temporal, nested, binary, null).
    """
    result = _DTYPE_TO_COLUMN_TYPE.get(dtype)
    if result is not None:
        return result
    if isinstance(dtype, (pl.Enum, pl.Categorical)):
        return "categorical"
    return None


def validate_columns(columns: Sequence[str], available_columns: Sequence[str]) -> None:
    """Validate that columns exist and contain no duplicates.

    Args:
        columns (Sequence[str]): Column names to validate.
        available_columns (Sequence[str]): Column names that may be referenced.

    Raises:
        DuplicateColumnsError: If columns contain duplicates.
        ColumnsNotFoundError: If any columns are not in `available_columns`.
    """
    if len(columns) != len(set(columns)):
        raise DuplicateColumnsError(columns=list(columns))
    missing = [col for col in columns if col not in set(available_columns)]
    if missing:
        raise ColumnsNotFoundError(missing_columns=missing, available_columns=list(available_columns))


@dataclass(frozen=True, eq=False)
class Dataset:
    """An immutable, typed table of records with an optional binary response.

    Construct through `from_polars` or `from_records` in most cases; the
    direct constructor requires a full schema and normalizes `frame` to it.

    Attributes:
        frame (pl.DataFrame): The normalized data, columns ordered as in `schema`.
        schema (Mapping[str, ColumnType]): Read-only mapping of every column
            name (response included) to its semantic type.
        response (str | None): Name of the response column, if any.

    Examples:
        >>> ds = Dataset.from_polars(
        ...     pl.DataFrame({"age": [31, 45], "plan": ["basic", None], "churn": [0, 1]}),
        ...     response="churn",
        ... )
        >>> ds.predictors
        ['age', 'plan']
        >>> dict(ds.predictor_schema)
        {'age': 'numeric', 'plan': 'categorical'}
    """

    frame: pl.DataFrame
    schema: Mapping[str, ColumnType]
    response: str | None = None

    def __post_init__(self) -> None:
        """Normalize the frame to the declared schema and freeze the schema.

        Raises:
            ColumnsNotFoundError: If the schema or response names a column
                absent from the frame.
            UnsupportedColumnTypeError: If a column cannot be read as its
                declared type.
            ValueError: If the frame has columns with no declared type.
        """
        schema = dict(self.schema)
        validate_columns(list(schema), self.frame.columns)
        undeclared = [col for col in self.frame.columns if col not in schema]
        if undeclared:
            raise ValueError(f"Columns lack a declared type: {undeclared}")
        if self.response is not None and self.response not in schema:
            raise ColumnsNotFoundError(missing_columns=[self.response], available_columns=list(schema))

        object.__setattr__(self, "frame", _normalize_frame(self.frame, schema))
        object.__setattr__(self, "schema", MappingProxyType(schema))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_polars(
        cls,
        df: pl.DataFrame,
        response: str | None = None,
        schema: Mapping[str, ColumnType] | None = None,
    ) -> Dataset:
        """Build a dataset from a Polars DataFrame, inferring column types.

        Args:
            df (pl.DataFrame): Source data.
            response (str | None): Name of the binary response column.
            schema (Mapping[str, ColumnType] | None): Optional per-column type
                overrides, e.g. `{"zip_code": "categorical"}` for an integer code.

        Returns:
            Dataset: The typed dataset.

        Raises:
            UnsupportedColumnTypeError: If any column without an override has
                a dtype with no numeric or categorical reading.
        """
        overrides = dict(schema or {})
        validate_columns(list(overrides), df.columns)

        inferred: dict[str, ColumnType] = {}
        unsupported: dict[str, str] = {}
        for name, dtype in df.schema.items():
            column_type = overrides.get(name) or classify_column(dtype)
            if column_type is None:
                unsupported[name] = str(dtype)
            else:
                inferred[name] = column_type
        if unsupported:
            raise UnsupportedColumnTypeError(unsupported)

        return cls(frame=df, schema=inferred, response=response)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        schema: Mapping[str, ColumnType],
        response: str | None = None,
    ) -> Dataset:
        """Build a dataset from a sequence of record mappings.

        Keys absent from a record are read as missing. Values that cannot be
        cast to their column's type are also read as missing.

        Args:
            records (Iterable[Mapping[str, Any]]): The records, in order.
            schema (Mapping[str, ColumnType]): Column name to semantic type.
            response (str | None): Name of the binary response column.

        Returns:
            Dataset: The typed dataset.
        """
        polars_schema = {name: _COLUMN_TYPE_TO_DTYPE[column_type] for name, column_type in schema.items()}
        frame = pl.from_dicts([dict(record) for record in records], schema=polars_schema, strict=False)
        return cls(frame=frame, schema=schema, response=response)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        """Return the number of records."""
        return self.frame.height

    @property
    def columns(self) -> list[str]:
        """All column names, in schema order."""
        return list(self.schema)

    @property
    def predictors(self) -> list[str]:
        """Predictor column names, in schema order, excluding the response."""
        return [name for name in self.schema if name != self.response]

    @property
    def predictor_schema(self) -> MappingProxyType[str, ColumnType]:
        """Read-only schema restricted to the predictor columns."""
        return MappingProxyType({name: self.schema[name] for name in self.predictors})

    def column(self, name: str) -> pl.Series:
        """Return one column by validated lookup.

        Args:
            name (str): The column name.

        Returns:
            pl.Series: The normalized column.

        Raises:
            ColumnsNotFoundError: If `name` is not a column of this dataset.
        """
        validate_columns([name], self.columns)
        return self.frame[name]

    def to_records(self) -> list[dict[str, Any]]:
        """Return the records as a list of dicts, in row order.

        Returns:
            list[dict[str, Any]]: One dict per record; missing values are `None`.
        """
        return self.frame.to_dicts()

    def equals(self, other: Dataset) -> bool:
        """Return True if both datasets have the same schema, response, and values.

        Args:
            other (Dataset): The dataset to compare with.

        Returns:
            bool: Whether the two datasets are identical.
        """
        return (
            dict(self.schema) == dict(other.schema)
            and self.response == other.response
            and self.frame.equals(other.frame, null_equal=True)
        )

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def with_frame(self, frame: pl.DataFrame) -> Dataset:
        """Return a new dataset holding `frame` under this dataset's schema and response.

        Args:
            frame (pl.DataFrame): Replacement data with exactly this dataset's columns.

        Returns:
            Dataset: The new dataset, normalized to the same schema.

        Raises:
            ColumnsNotFoundError: If `frame` lacks a schema column.
            ValueError: If `frame` has columns outside the schema.
        """
        return Dataset(frame=frame, schema=self.schema, response=self.response)

    def select(self, columns: Sequence[str]) -> Dataset:
        """Return a new dataset with only the given columns.

        The response designation is kept when the response column is selected.

        Args:
            columns (Sequence[str]): Column names to keep, in output order.

        Returns:
            Dataset: The projected dataset.

        Raises:
            DuplicateColumnsError: If columns contain duplicates.
            ColumnsNotFoundError: If any column does not exist.
        """
        validate_columns(columns, self.columns)
        response = self.response if self.response in columns else None
        return Dataset(
            frame=self.frame.select(columns),
            schema={name: self.schema[name] for name in columns},
            response=response,
        )

    def drop(self, columns: Sequence[str]) -> Dataset:
        """Return a new dataset without the given columns.

        Args:
            columns (Sequence[str]): Column names to remove.

        Returns:
            Dataset: The reduced dataset.
        """
        validate_columns(columns, self.columns)
        return self.select([name for name in self.columns if name not in set(columns)])

    def take(self, indices: Sequence[int]) -> Dataset:
        """Return a new dataset holding the rows at `indices`, in the given order.

        Args:
            indices (Sequence[int]): Zero-based row positions.

        Returns:
            Dataset: The row subset, with the same schema and response.
        """
        index_series = pl.Series("index", np.asarray(indices, dtype=np.int64))
        frame = self.frame.select(pl.all().gather(index_series))
        return self.with_frame(frame)


def check_binary_response(dataset: Dataset, column: str) -> pl.Series:
    """Validate that `column` is a fully observed numeric 0/1 column.

    Args:
        dataset (Dataset): The dataset that holds the response.
        column (str): The response column name.

    Returns:
        pl.Series: The validated response as `Float64`.

    Raises:
        ColumnsNotFoundError: If the column does not exist.
        ResponseNotBinaryError: If the column is categorical, has missing
            values, or holds values other than 0 and 1.
    """
    series = dataset.column(column)
    if dataset.schema[column] != "numeric":
        invalid = series.drop_nulls().unique(maintain_order=True).head(_MAX_REPORTED_VALUES).to_list()
        raise ResponseNotBinaryError(
            f"Response column '{column}' must be numeric 0/1, got categorical values.",
            column=column,
            invalid_values=invalid,
        )
    if series.null_count() > 0:
        raise ResponseNotBinaryError(
            f"Response column '{column}' contains {series.null_count()} missing values.",
            column=column,
            invalid_values=[None],
        )
    invalid_mask = ~series.is_in([0.0, 1.0])
    if invalid_mask.any():
        invalid = series.filter(invalid_mask).unique(maintain_order=True).head(_MAX_REPORTED_VALUES).to_list()
        raise ResponseNotBinaryError(
            f"Response column '{column}' contains values outside {{0, 1}}: {invalid}",
            column=column,
            invalid_values=invalid,
        )
    return series


def _normalize_frame(frame: pl.DataFrame, schema: Mapping[str, ColumnType]) -> pl.DataFrame:
    """Cast every column to the storage dtype of its semantic type.

    Args:
        frame (pl.DataFrame): The raw frame.
        schema (Mapping[str, ColumnType]): Column name to semantic type.

    Returns:
        pl.DataFrame: Columns ordered as in `schema`, numeric as `Float64`
            with NaN replaced by null, categorical as `String`.

    Raises:
        UnsupportedColumnTypeError: If a column declared numeric has a
            non-numeric dtype, or any column has an unsupported dtype.
    """
    unsupported: dict[str, str] = {}
    expressions: list[pl.Expr] = []
    for name, column_type in schema.items():
        dtype = frame.schema[name]
        source_type = classify_column(dtype)
        if dtype == pl.Null:
            expressions.append(pl.col(name).cast(_COLUMN_TYPE_TO_DTYPE[column_type]))
        elif column_type == "numeric" and source_type == "numeric":
            expressions.append(pl.col(name).cast(pl.Float64).fill_nan(None))
        elif column_type == "categorical" and source_type is not None:
            expressions.append(pl.col(name).cast(pl.String))
        else:
            unsupported[name] = str(dtype)
    if unsupported:
        raise UnsupportedColumnTypeError(unsupported)
    return frame.select(expressions)
