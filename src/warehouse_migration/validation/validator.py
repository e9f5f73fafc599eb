"""
Transfer Validator

Compares the staging (external) table with the loaded managed table:
row counts, per-column checksums, null counts and duplicate keys.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..errors import MigrationError
from ..models.results import ValidationResult
from ..warehouse.gateway import DUPLICATE_SAMPLE_LIMIT, WarehouseGateway

logger = logging.getLogger(__name__)

SUMMARY_RULE = "=" * 50


def format_validation_summary(result: ValidationResult) -> str:
    """Render a validation result as the multi-line block written to the log."""
    if result.checksums_match is None:
        checksum_text = "N/A"
    else:
        checksum_text = str(result.checksums_match)
    issues_text = "None" if not result.issues else "\n  - " + "\n  - ".join(result.issues)

    return "\n".join([
        SUMMARY_RULE,
        "VALIDATION SUMMARY",
        SUMMARY_RULE,
        f"Valid: {result.is_valid}",
        f"Source Count: {result.source_row_count}",
        f"Target Count: {result.target_row_count}",
        f"Count Match: {result.counts_match}",
        f"Checksum Match: {checksum_text}",
        f"Issues: {issues_text}",
        SUMMARY_RULE,
    ])


class TransferValidator:
    """
    Validates a load by querying both tables through the warehouse gateway.

    Failures of individual probes never raise; they become issues on the
    returned ValidationResult.
    """

    def __init__(self, gateway: WarehouseGateway, duplicate_sample_limit: int = DUPLICATE_SAMPLE_LIMIT):
        self.gateway = gateway
        self.duplicate_sample_limit = duplicate_sample_limit

    def validate_transfer(
        self,
        source_dataset: str,
        source_table: str,
        target_dataset: str,
        target_table: str,
        checksum_columns: Sequence[str] = (),
        key_column: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate data between the external and managed tables.

        Args:
            source_dataset: Dataset of the staging (external) table
            source_table: Staging table name
            target_dataset: Dataset of the managed table
            target_table: Managed table name
            checksum_columns: Columns compared by checksum and checked for nulls
            key_column: Column checked for duplicates (default: first checksum column)

        Returns:
            ValidationResult
        """
        logger.info(
            f"Starting validation: {source_dataset}.{source_table} vs {target_dataset}.{target_table}"
        )
        checksum_columns = list(checksum_columns)
        issues: List[str] = []
        source_count = 0
        target_count = 0

        # 1. Row counts
        try:
            source_count = self.gateway.get_row_count(source_dataset, source_table)
            target_count = self.gateway.get_row_count(target_dataset, target_table)
            counts_match = source_count == target_count
            if not counts_match:
                issues.append(
                    f"Row count mismatch: source={source_count}, target={target_count}, "
                    f"diff={abs(source_count - target_count)}"
                )
        except MigrationError as e:
            logger.error(f"Row count validation failed: {e}")
            issues.append("Failed to get row counts")
            counts_match = False

        checksums_match: Optional[bool] = None

        if checksum_columns and counts_match:
            # 2. Checksums
            checksums_match, checksum_issues = self._validate_checksums(
                source_dataset, source_table, target_dataset, target_table, checksum_columns
            )
            issues.extend(checksum_issues)

            # 3. Data quality on the target
            issues.extend(
                self._validate_sample_data(
                    target_dataset, target_table, checksum_columns,
                    key_column or checksum_columns[0],
                )
            )

        result = ValidationResult(
            source_row_count=source_count,
            target_row_count=target_count,
            counts_match=counts_match,
            checksums_match=checksums_match,
            issues=issues,
        )

        summary = format_validation_summary(result)
        if result.is_valid:
            logger.info(summary)
        else:
            logger.error(summary)

        return result

    def _validate_checksums(
        self,
        source_dataset: str,
        source_table: str,
        target_dataset: str,
        target_table: str,
        columns: Sequence[str],
    ) -> Tuple[bool, List[str]]:
        issues = []
        all_match = True

        for column in columns:
            try:
                source_checksum = self.gateway.calculate_checksum(source_dataset, source_table, column)
            except MigrationError as e:
                issues.append(f"Failed to calculate source checksum for '{column}': {e}")
                all_match = False
                continue

            try:
                target_checksum = self.gateway.calculate_checksum(target_dataset, target_table, column)
            except MigrationError as e:
                issues.append(f"Failed to calculate target checksum for '{column}': {e}")
                all_match = False
                continue

            if source_checksum != target_checksum:
                issues.append(
                    f"Checksum mismatch for column '{column}': "
                    f"source={source_checksum}, target={target_checksum}"
                )
                all_match = False
            else:
                logger.info(f"Checksum match for column '{column}': {source_checksum}")

        return all_match, issues

    def _validate_sample_data(
        self,
        dataset_id: str,
        table_name: str,
        columns: Sequence[str],
        key_column: str,
    ) -> List[str]:
        issues = []

        for column in columns:
            try:
                null_count = self.gateway.count_nulls(dataset_id, table_name, column)
            except MigrationError as e:
                issues.append(f"Null check failed for column '{column}': {e}")
                continue
            if null_count > 0:
                issues.append(f"Found {null_count} NULL values in key column '{column}'")

        try:
            duplicates = self.gateway.find_duplicate_keys(
                dataset_id, table_name, key_column, limit=self.duplicate_sample_limit
            )
        except MigrationError as e:
            issues.append(f"Duplicate check failed for column '{key_column}': {e}")
            return issues

        if duplicates:
            sample = ", ".join(str(key) for key, _ in duplicates)
            logger.warning(f"Duplicate keys in {dataset_id}.{table_name}.{key_column}: {sample}")
            issues.append(
                f"Found {len(duplicates)} duplicate values in primary key column '{key_column}'"
            )

        return issues
