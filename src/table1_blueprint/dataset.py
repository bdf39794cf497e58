from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd


class VariableKind(str, Enum):
    CONTINUOUS = "continuous"
    CATEGORICAL = "categorical"


Predicate = Union[pd.Series, np.ndarray, Callable[[pd.DataFrame], Any]]


def detect_kind(series: pd.Series) -> VariableKind:
    """Categorical for category/bool/object/string dtypes, continuous for numbers."""
    if isinstance(series.dtype, pd.CategoricalDtype) or pd.api.types.is_bool_dtype(series):
        return VariableKind.CATEGORICAL
    if pd.api.types.is_numeric_dtype(series):
        return VariableKind.CONTINUOUS
    return VariableKind.CATEGORICAL


def observed_levels(series: pd.Series) -> Tuple[Any, ...]:
    """Ordered levels of a column.

    Declared categories win for pandas categoricals so that the level set does
    not depend on which rows happen to be present. Other columns use their
    sorted distinct non-missing values (order of appearance when the values
    are not mutually comparable).
    """
    if isinstance(series.dtype, pd.CategoricalDtype):
        return tuple(series.cat.categories)
    values = list(pd.unique(series.dropna()))
    try:
        return tuple(sorted(values))
    except TypeError:
        return tuple(values)


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    kind: VariableKind
    levels: Tuple[Any, ...] = ()
    numeric: bool = False

    @property
    def n_levels(self) -> int:
        return len(self.levels)


@dataclass(frozen=True)
class DatasetSchema:
    """Static facts about a dataset: column kinds and level sets, no statistics."""

    columns: Dict[str, ColumnInfo] = field(default_factory=dict)
    n_rows: int = 0

    def __contains__(self, name: object) -> bool:
        return name in self.columns

    def __getitem__(self, name: str) -> ColumnInfo:
        return self.columns[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.columns)

    def get(self, name: str) -> Optional[ColumnInfo]:
        return self.columns.get(name)

    @staticmethod
    def from_frame(df: pd.DataFrame, columns: Optional[Iterable[str]] = None) -> "DatasetSchema":
        names = list(df.columns) if columns is None else [c for c in columns if c in df.columns]
        infos: Dict[str, ColumnInfo] = {}
        for name in names:
            s = df[name]
            infos[str(name)] = ColumnInfo(
                name=str(name),
                kind=detect_kind(s),
                levels=observed_levels(s),
                numeric=bool(pd.api.types.is_numeric_dtype(s) and not pd.api.types.is_bool_dtype(s)),
            )
        return DatasetSchema(columns=infos, n_rows=int(len(df)))


class Dataset:
    """In-memory dataset handle used by the planner, builder and cell evaluation.

    Wraps a DataFrame without copying it. Subsetting returns new handles that
    share the underlying column data where pandas allows it.
    """

    def __init__(self, frame: pd.DataFrame) -> None:
        if not isinstance(frame, pd.DataFrame):
            raise TypeError(f"Dataset expects a pandas DataFrame, got {type(frame).__name__}")
        self._frame = frame

    @classmethod
    def coerce(cls, data: Union["Dataset", pd.DataFrame, Mapping[str, Sequence[Any]]]) -> "Dataset":
        if isinstance(data, Dataset):
            return data
        if isinstance(data, pd.DataFrame):
            return cls(data)
        return cls(pd.DataFrame(data))

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame

    @property
    def columns(self) -> list[str]:
        return [str(c) for c in self._frame.columns]

    def __len__(self) -> int:
        return int(len(self._frame))

    def __contains__(self, name: object) -> bool:
        return name in self._frame.columns

    def column(self, name: str) -> pd.Series:
        if name not in self._frame.columns:
            raise KeyError(f"Missing column: {name}")
        return self._frame[name]

    def kind(self, name: str) -> VariableKind:
        return detect_kind(self.column(name))

    def levels(self, name: str) -> Tuple[Any, ...]:
        return observed_levels(self.column(name))

    def subset(self, predicate: Predicate) -> "Dataset":
        """Rows for which `predicate` holds (boolean mask or callable on the frame)."""
        mask = predicate(self._frame) if callable(predicate) else predicate
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(self._frame),):
            raise ValueError(f"Predicate mask has shape {mask.shape}, expected ({len(self._frame)},)")
        return Dataset(self._frame.loc[mask])

    def restrict(self, conditions: Mapping[str, Any]) -> "Dataset":
        """Rows where every named column equals its value."""
        if not conditions:
            return self
        mask = np.ones(len(self._frame), dtype=bool)
        for name, value in conditions.items():
            col = self.column(name)
            mask &= (col == value).fillna(False).to_numpy(dtype=bool)
        return Dataset(self._frame.loc[mask])

    def schema(self, columns: Optional[Iterable[str]] = None) -> DatasetSchema:
        return DatasetSchema.from_frame(self._frame, columns)

    def __repr__(self) -> str:
        return f"Dataset(rows={len(self)}, columns={len(self._frame.columns)})"
