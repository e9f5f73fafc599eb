"""
Schema Resolution

Maps column-mapping documents onto managed table schemas and projections.
"""

from .resolver import (
    ResolvedSchema,
    build_select_expression,
    check_schema_compatibility,
    infer_column_type,
    resolve_schema,
)

__all__ = [
    "ResolvedSchema",
    "build_select_expression",
    "check_schema_compatibility",
    "infer_column_type",
    "resolve_schema",
]
