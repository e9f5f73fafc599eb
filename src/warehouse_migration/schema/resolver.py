"""
Schema Resolver

Derives the managed table's column list and the load projection from a
column mapping. Column types are inferred from target column names with a
fixed, ordered set of substring rules; the first matching rule wins.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from ..models.job import ColumnMapping

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_TYPE = "STRING"
SELECT_ALL = "*"

# Order matters: "order_id_date" is STRING because "id" is checked first.
TYPE_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("id",), "STRING"),
    (("number",), "STRING"),
    (("code",), "STRING"),
    (("phone",), "STRING"),
    (("postal",), "STRING"),
    (("date", "time"), "TIMESTAMP"),
    (("amount", "price", "cost"), "NUMERIC"),
    (("count", "qty", "quantity"), "INT64"),
    (("flag", "is_", "has_"), "BOOL"),
)


@dataclass(frozen=True)
class ResolvedSchema:
    """Managed table columns plus the SELECT list used to load it"""

    columns: List[Tuple[str, str]] = field(default_factory=list)
    select_expression: str = SELECT_ALL

    @property
    def ddl(self) -> str:
        """Column list for CREATE TABLE, one column per line."""
        return ",\n".join(f"  {name} {column_type}" for name, column_type in self.columns)

    @property
    def is_empty(self) -> bool:
        return not self.columns


def infer_column_type(column_name: str) -> str:
    """
    Infer a BigQuery column type from a column name.

    Matching is case-insensitive; names that match no rule are STRING.
    """
    lowered = column_name.lower()
    for needles, column_type in TYPE_RULES:
        if any(needle in lowered for needle in needles):
            return column_type
    return DEFAULT_COLUMN_TYPE


def build_select_expression(column_mapping: Sequence[ColumnMapping]) -> str:
    """
    Build the projection used when loading from the external table.

    An empty mapping selects every column. Aliases are omitted when the
    source expression already equals the target name.
    """
    if not column_mapping:
        return SELECT_ALL

    parts = []
    for mapping in column_mapping:
        if mapping.source_expression == mapping.target_name:
            parts.append(mapping.source_expression)
        else:
            parts.append(f"{mapping.source_expression} AS {mapping.target_name}")
    return ", ".join(parts)


def resolve_schema(column_mapping: Sequence[ColumnMapping]) -> ResolvedSchema:
    """
    Resolve the target schema and select expression for a column mapping.

    Args:
        column_mapping: Mapping entries, possibly empty

    Returns:
        ResolvedSchema with typed columns (empty when the mapping is empty)
    """
    columns = [(m.target_name, infer_column_type(m.target_name)) for m in column_mapping]
    resolved = ResolvedSchema(
        columns=columns,
        select_expression=build_select_expression(column_mapping),
    )

    if resolved.is_empty:
        logger.info("Empty column mapping: projecting all columns")
    else:
        logger.info(f"Resolved {len(columns)} target column(s)")
        logger.debug(f"Schema DDL:\n{resolved.ddl}")
    return resolved


def check_schema_compatibility(
    source_columns: Sequence[str],
    expected_columns: Sequence[str],
) -> Tuple[bool, List[str]]:
    """
    Compare the columns present in the staging table with the expected ones.

    Missing columns make the schema incompatible. Extra source columns are
    only reported in the log since they are ignored by the projection.

    Returns:
        Tuple of (is_compatible, issues)
    """
    available = {c.lower() for c in source_columns}
    expected = {c.lower() for c in expected_columns}

    missing = [c for c in expected_columns if c.lower() not in available]
    extra = [c for c in source_columns if c.lower() not in expected]

    issues = []
    if missing:
        issues.append(f"Missing columns in source: {', '.join(missing)}")

    if extra:
        logger.warning(f"Extra columns in source (will be ignored): {', '.join(extra)}")

    return not missing, issues
