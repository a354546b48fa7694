"""
Filter model and condition evaluation.

A condition is written once as a function of a row accessor `r`:

  - SQL: r is LatestSnapshot.__table__.c, so `r.price > 10` is a clause
  - memory: r is a RecordView over a dict, so `r.price > 10` is a bool

RecordView raises MissingField for absent/None fields, which the caller
turns into "record excluded". In SQL the same case is a NULL comparison,
which also excludes the row. Both modes therefore agree on missing data.
"""
import hashlib
import operator
import re
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

SNAPSHOT_FIELDS = frozenset({
    "price", "open", "high", "low", "volume", "vwap", "change_percent",
})
INDICATOR_FIELDS = frozenset({
    "rsi14", "sma20", "sma50", "sma200", "ema12", "ema26",
    "macd_value", "macd_signal", "macd_histogram",
})
FUNDAMENTAL_FIELDS = frozenset({
    "market_cap", "pe_ratio", "pb_ratio", "dividend_yield", "gross_margin",
    "debt_to_equity", "revenue_growth_yoy", "eps_growth_yoy",
    "week52_high", "week52_low", "target_mean_price",
})
FILTERABLE_FIELDS = SNAPSHOT_FIELDS | INDICATOR_FIELDS | FUNDAMENTAL_FIELDS

Operator = Literal["gt", "gte", "lt", "lte", "eq", "neq", "between"]

_COMPARATORS = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
    "neq": operator.ne,
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_field(name: str) -> str:
    """'changePercent' -> 'change_percent'; snake_case passes through."""
    snake = _CAMEL_BOUNDARY.sub("_", name).lower()
    if snake not in FILTERABLE_FIELDS:
        raise ValueError(f"Unknown filter field: {name}")
    return snake


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FilterCondition(_CamelModel):
    field: str
    operator: Operator
    value: Union[float, Tuple[float, float]]

    @field_validator("field")
    @classmethod
    def _known_field(cls, v: str) -> str:
        return normalize_field(v)

    @model_validator(mode="after")
    def _value_shape(self) -> "FilterCondition":
        if self.operator == "between":
            if not isinstance(self.value, tuple):
                raise ValueError("between needs a [min, max] pair")
            if self.value[0] > self.value[1]:
                raise ValueError("between min must be <= max")
        elif isinstance(self.value, tuple):
            raise ValueError(f"{self.operator} needs a single value")
        return self


class ScreenerFilter(_CamelModel):
    id: str = "custom"
    name: str = "Custom filter"
    conditions: List[FilterCondition] = []
    sort_field: Optional[str] = None
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("sort_field")
    @classmethod
    def _known_sort_field(cls, v: Optional[str]) -> Optional[str]:
        return normalize_field(v) if v is not None else None

    def cache_key(self) -> str:
        digest = hashlib.sha1(self.model_dump_json().encode()).hexdigest()[:16]
        return f"{self.id}:{digest}"

    def referenced_fields(self) -> set:
        fields = {c.field for c in self.conditions}
        if self.sort_field:
            fields.add(self.sort_field)
        return fields


# ─── Evaluation ───────────────────────────────────────────────────────────────

class MissingField(LookupError):
    """A referenced field is absent from an in-memory record."""


class RecordView:
    """Attribute access over a dict that refuses missing values."""

    __slots__ = ("_record",)

    def __init__(self, record: Dict[str, Any]):
        self._record = record

    def __getattr__(self, name: str) -> Any:
        value = self._record.get(name)
        if value is None:
            raise MissingField(name)
        return value


def condition_clauses(cond: FilterCondition, r: Any) -> List[Any]:
    """Clauses for one condition; all of them must hold. `between` is inclusive."""
    value = getattr(r, cond.field)
    if cond.operator == "between":
        low, high = cond.value
        return [value >= low, value <= high]
    return [_COMPARATORS[cond.operator](value, cond.value)]


def filter_clauses(conditions: Iterable[FilterCondition], r: Any) -> List[Any]:
    return [c for cond in conditions for c in condition_clauses(cond, r)]


def record_matches(record: Dict[str, Any], conditions: Iterable[FilterCondition], extra=None) -> bool:
    """
    In-memory AND of every condition (plus `extra(r)` clauses, if given).
    A record missing any referenced field does not match.
    """
    view = RecordView(record)
    try:
        clauses = filter_clauses(conditions, view)
        if extra is not None:
            clauses.extend(extra(view))
    except MissingField:
        return False
    return all(clauses)
