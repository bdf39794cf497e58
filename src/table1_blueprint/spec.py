from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

import yaml

from . import stats
from .dataset import DatasetSchema, VariableKind
from .errors import InvalidSpec

MISSING_POLICIES = ("per_variable", "per_level")

ProviderOption = Union[str, Callable[..., Any]]


@dataclass(frozen=True)
class Footnotes:
    """Footnote registry: per-variable and per-column notes plus unnumbered general notes."""

    variables: Dict[str, str] = field(default_factory=dict)
    columns: Dict[str, str] = field(default_factory=dict)
    general: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.variables or self.columns or self.general)

    def to_dict(self) -> Dict[str, Any]:
        return {"variables": dict(self.variables), "columns": dict(self.columns), "general": list(self.general)}

    @staticmethod
    def from_mapping(raw: Union["Footnotes", Mapping[str, Any], None]) -> "Footnotes":
        if raw is None:
            return Footnotes()
        if isinstance(raw, Footnotes):
            return raw
        if not isinstance(raw, Mapping):
            raise InvalidSpec(f"footnotes must be a mapping, got {type(raw).__name__}")
        unknown = set(raw) - {"variables", "columns", "general"}
        if unknown:
            raise InvalidSpec(f"Unknown footnote sections: {sorted(unknown)}")
        general = raw.get("general") or ()
        if isinstance(general, str):
            general = (general,)
        return Footnotes(
            variables={str(k): str(v) for k, v in (raw.get("variables") or {}).items()},
            columns={str(k): str(v) for k, v in (raw.get("columns") or {}).items()},
            general=tuple(str(g) for g in general),
        )


@dataclass(frozen=True)
class TableOptions:
    show_missing_rows: bool = False
    show_pvalue: bool = True
    show_group_sizes: bool = False
    show_totals_column: bool = False

    numeric_summary: ProviderOption = "mean_sd"
    continuous_test: ProviderOption = "ttest"
    categorical_test: ProviderOption = "fisher"

    footnotes: Footnotes = field(default_factory=Footnotes)
    decimal_digits: int = 2
    percent_digits: int = 1
    missing_policy: str = "per_variable"
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            v = getattr(self, f.name)
            if isinstance(v, Footnotes):
                v = v.to_dict()
            elif callable(v):
                v = getattr(v, "__name__", repr(v))
            out[f.name] = v
        return out

    def validate(self) -> None:
        for name in ("decimal_digits", "percent_digits"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, int) or v < 0:
                raise InvalidSpec(f"{name} must be a non-negative integer, got {v!r}")
        if self.missing_policy not in MISSING_POLICIES:
            raise InvalidSpec(f"missing_policy must be one of {MISSING_POLICIES}, got {self.missing_policy!r}")
        _check_provider("numeric_summary", self.numeric_summary, stats.numeric_summaries())
        _check_provider("continuous_test", self.continuous_test, stats.continuous_tests())
        _check_provider("categorical_test", self.categorical_test, stats.categorical_tests())
        if self.title is not None and not isinstance(self.title, str):
            raise InvalidSpec("title must be a string")

    @staticmethod
    def from_mapping(raw: Optional[Mapping[str, Any]] = None) -> "TableOptions":
        raw = dict(raw or {})
        known = {f.name for f in fields(TableOptions)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise InvalidSpec(f"Unknown option keys: {unknown}")
        if "footnotes" in raw:
            raw["footnotes"] = Footnotes.from_mapping(raw["footnotes"])
        opts = TableOptions(**raw)
        opts.validate()
        return opts


def _check_provider(name: str, value: Any, available: Iterable[str]) -> None:
    if callable(value):
        return
    if not isinstance(value, str) or value not in set(available):
        raise InvalidSpec(f"Unknown {name} {value!r}. Available: {sorted(available)}")


@dataclass(frozen=True)
class VariableSpec:
    name: str
    kind: Optional[VariableKind] = None
    label: Optional[str] = None

    @property
    def display_label(self) -> str:
        return self.label if self.label is not None else self.name

    @property
    def is_categorical(self) -> bool:
        return self.kind is VariableKind.CATEGORICAL

    @staticmethod
    def from_value(value: Union["VariableSpec", str, Mapping[str, Any]]) -> "VariableSpec":
        if isinstance(value, VariableSpec):
            return value
        if isinstance(value, str):
            return VariableSpec(name=value)
        if isinstance(value, Mapping):
            if "name" not in value:
                raise InvalidSpec(f"Variable definition without a name: {dict(value)!r}")
            kind = value.get("kind")
            try:
                kind = VariableKind(str(kind).lower()) if kind is not None else None
            except ValueError as e:
                raise InvalidSpec(f"Unknown variable kind {kind!r} for {value['name']!r}") from e
            label = value.get("label")
            return VariableSpec(name=str(value["name"]), kind=kind, label=str(label) if label is not None else None)
        raise InvalidSpec(f"Cannot interpret variable definition: {value!r}")


@dataclass(frozen=True)
class TableSpec:
    """Declarative table definition: grouping, analysis variables, strata, options."""

    group: Optional[str]
    variables: Tuple[VariableSpec, ...]
    strata: Optional[str] = None
    options: TableOptions = field(default_factory=TableOptions)

    @property
    def variable_names(self) -> Tuple[str, ...]:
        return tuple(v.name for v in self.variables)

    def variable(self, name: str) -> VariableSpec:
        for v in self.variables:
            if v.name == name:
                return v
        raise KeyError(name)

    def validate(self) -> None:
        """Checks that need no dataset."""
        if not self.variables:
            raise InvalidSpec("At least one analysis variable is required")
        names = self.variable_names
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise InvalidSpec(f"Duplicated analysis variables: {dupes}")
        if self.group is not None and self.group in names:
            raise InvalidSpec(f"Grouping variable '{self.group}' is also an analysis variable")
        if self.strata is not None:
            if self.strata in names:
                raise InvalidSpec(f"Stratification variable '{self.strata}' is also an analysis variable")
            if self.strata == self.group:
                raise InvalidSpec(f"Grouping and stratification variable are both '{self.strata}'")
        if self.group is None and (self.options.show_pvalue or not self.options.show_totals_column):
            raise InvalidSpec("A table without grouping variable needs show_totals_column=True and show_pvalue=False")
        self.options.validate()

    def resolve(self, schema: DatasetSchema) -> "TableSpec":
        """Validate against `schema` and fill in variable kinds left unspecified."""
        self.validate()
        if self.group is not None and self.group not in schema:
            raise InvalidSpec(f"Grouping variable '{self.group}' not found in dataset")
        if self.strata is not None and self.strata not in schema:
            raise InvalidSpec(f"Stratification variable '{self.strata}' not found in dataset")
        missing = [n for n in self.variable_names if n not in schema]
        if missing:
            raise InvalidSpec(f"Analysis variables not found in dataset: {missing}")

        resolved = []
        for v in self.variables:
            info = schema[v.name]
            kind = v.kind or info.kind
            if kind is VariableKind.CONTINUOUS and not info.numeric:
                raise InvalidSpec(f"Variable '{v.name}' is tagged continuous but is not numeric")
            resolved.append(replace(v, kind=kind))
        return replace(self, variables=tuple(resolved))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": self.group,
            "strata": self.strata,
            "variables": [
                {k: (val.value if isinstance(val, VariableKind) else val) for k, val in asdict(v).items() if val is not None}
                for v in self.variables
            ],
            "options": self.options.to_dict(),
        }

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> "TableSpec":
        if not isinstance(raw, Mapping):
            raise InvalidSpec("Table spec must be a mapping")
        variables = raw.get("variables")
        if variables is None:
            raise InvalidSpec("Table spec needs a 'variables' list")
        if isinstance(variables, (str, Mapping)):
            variables = [variables]
        group = raw.get("group")
        strata = raw.get("strata")
        return TableSpec(
            group=str(group) if group is not None else None,
            variables=tuple(VariableSpec.from_value(v) for v in variables),
            strata=str(strata) if strata is not None else None,
            options=TableOptions.from_mapping(raw.get("options")),
        )


def load_table_spec(yaml_path: str | Path) -> TableSpec:
    p = Path(yaml_path)
    if not p.exists():
        raise FileNotFoundError(f"Table spec not found: {p}")
    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return TableSpec.from_dict(raw)
