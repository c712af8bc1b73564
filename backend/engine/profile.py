"""
Dataset profiling: column types plus a suggested field mapping, built once
per uploaded table for the mapping confirmation step.
"""

from __future__ import annotations

from core.models import DatasetProfile, ParsedTable
from engine.detect import detect_column_types
from engine.mapping import auto_detect_mappings, needs_mapping


def build_profile(table: ParsedTable, name: str) -> DatasetProfile:
    columns = detect_column_types(table.columns, table.rows)
    types = {c.name: c.inferred_type for c in columns}
    suggested = auto_detect_mappings(table.columns, types)
    return DatasetProfile(
        table=name,
        row_count=len(table.rows),
        columns=columns,
        suggested_mapping=suggested,
        needs_mapping=needs_mapping(suggested),
    )
