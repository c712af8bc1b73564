"""
Core Pydantic models for the DataVista engine.

All domain types live here so every module shares the same vocabulary.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

# Column value the UI stores for fields computed from a formula
FORMULA_COLUMN = "__formula__"


# ---------------------------------------------------------------------------
# Columns & profile
# ---------------------------------------------------------------------------

class ColumnType(str, Enum):
    date = "date"
    number = "number"
    percentage = "percentage"
    currency = "currency"
    text = "text"


class ColumnDescriptor(BaseModel):
    name: str
    inferred_type: ColumnType = ColumnType.text


class ParsedTable(BaseModel):
    columns: List[str]
    rows: List[Dict[str, Any]]
    sheet_name: Optional[str] = None


class DatasetProfile(BaseModel):
    table: str
    row_count: int
    columns: List[ColumnDescriptor]
    suggested_mapping: Dict[str, str] = Field(default_factory=dict)
    needs_mapping: bool = False


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------

class ColumnSource(BaseModel):
    kind: Literal["column"] = "column"
    column: str


class FormulaSource(BaseModel):
    kind: Literal["formula"] = "formula"
    formula: str


class FieldMappingEntry(BaseModel):
    source: Union[ColumnSource, FormulaSource] = Field(discriminator="kind")
    label: Optional[str] = None
    is_percentage: bool = False
    color: Optional[str] = None

    @property
    def column(self) -> str:
        if isinstance(self.source, ColumnSource):
            return self.source.column
        return FORMULA_COLUMN

    @property
    def formula(self) -> Optional[str]:
        if isinstance(self.source, FormulaSource):
            return self.source.formula
        return None

    @property
    def is_formula(self) -> bool:
        return isinstance(self.source, FormulaSource)


Mapping = Dict[str, FieldMappingEntry]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

class Granularity(str, Enum):
    day = "day"
    month = "month"
    quarter = "quarter"

    @classmethod
    def _missing_(cls, value):
        aliases = {"daily": cls.day, "monthly": cls.month, "quarterly": cls.quarter}
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None


class AggregationType(str, Enum):
    sum = "sum"
    average = "average"
    count = "count"
    min = "min"
    max = "max"


class MetricDescriptor(BaseModel):
    field: str
    aggregation_type: AggregationType = AggregationType.sum
    label: Optional[str] = None
    color: Optional[str] = None
    is_percentage: bool = False
    formula: Optional[str] = None


class AggregatedPeriodRow(BaseModel):
    period_key: str
    label: str
    date: dt.date
    row_count: int
    values: Dict[str, float] = Field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        """Flat dict with metric values beside the period attributes."""
        record: Dict[str, Any] = {
            "period_key": self.period_key,
            "label": self.label,
            "name": self.label,
            "date": self.date.isoformat(),
            "row_count": self.row_count,
        }
        record.update(self.values)
        return record


class MetricRange(BaseModel):
    min: float = 0.0
    max: float = 0.0


# ---------------------------------------------------------------------------
# API request bodies
# ---------------------------------------------------------------------------

class AggregateRequest(BaseModel):
    table: Optional[str] = None
    mapping: Dict[str, Any]
    granularity: Granularity = Granularity.day
    metrics: Optional[List[MetricDescriptor]] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class FormulaPreviewRequest(BaseModel):
    table: Optional[str] = None
    formula: str
    mapping: Optional[Dict[str, Any]] = None
    limit: int = 20
