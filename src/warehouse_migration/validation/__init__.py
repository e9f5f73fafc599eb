"""Post-load validation of migrated tables."""

from .validator import TransferValidator, format_validation_summary

__all__ = ["TransferValidator", "format_validation_summary"]
