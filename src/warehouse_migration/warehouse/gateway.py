"""
BigQuery Warehouse Gateway

Issues the DDL/DML used by a migration: managed (Iceberg) table creation,
external table refresh, loads, counts and the validation probes. Every
statement is submitted as a query job and waited on with a timeout; any job
error is logged and raised as WarehouseError.
"""

import concurrent.futures
import logging
from typing import Any, List, Optional, Tuple

from google.cloud import bigquery
from google.cloud.exceptions import NotFound

from ..errors import WarehouseError
from ..models.job import LoadMode

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT = 1800.0
DUPLICATE_SAMPLE_LIMIT = 10


class WarehouseGateway:
    """
    Runs migration statements against BigQuery.

    Each operation is idempotent on its own: CREATE ... IF NOT EXISTS,
    CREATE OR REPLACE EXTERNAL TABLE, and TRUNCATE-then-INSERT loads.
    The underlying client is safe to share between worker threads.
    """

    def __init__(
        self,
        project_id: str,
        client: Optional[bigquery.Client] = None,
        query_timeout: float = DEFAULT_QUERY_TIMEOUT,
        location: Optional[str] = None,
    ):
        """
        Initialize the gateway.

        Args:
            project_id: Project holding the datasets (also used for billing)
            client: BigQuery client (created when omitted)
            query_timeout: Seconds to wait for each query job
            location: Optional job location (e.g. asia-southeast1)
        """
        self.project_id = project_id
        self.client = client or bigquery.Client(project=project_id, location=location)
        self.query_timeout = query_timeout

    def _table_ref(self, dataset_id: str, table_name: str) -> str:
        return f"{self.project_id}.{dataset_id}.{table_name}"

    def _quoted(self, dataset_id: str, table_name: str) -> str:
        return f"`{self._table_ref(dataset_id, table_name)}`"

    @staticmethod
    def _connection_ref(connection_id: str, region: str) -> str:
        # Fully qualified ids (project.region.connection) are used as-is.
        if "." in connection_id:
            return connection_id
        return f"{region}.{connection_id}"

    def _execute(self, sql: str, operation: str) -> Tuple[bigquery.QueryJob, Any]:
        """
        Submit a statement and wait for it.

        Returns:
            Tuple of (completed job, row iterator)

        Raises:
            WarehouseError: On API errors, job errors or timeout
        """
        try:
            job = self.client.query(sql)
            rows = job.result(timeout=self.query_timeout)
        except (concurrent.futures.TimeoutError, TimeoutError) as e:
            logger.error(f"{operation} timed out after {self.query_timeout}s")
            raise WarehouseError(operation, f"timed out after {self.query_timeout}s") from e
        except WarehouseError:
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}")
            raise WarehouseError(operation, str(e)) from e

        error_result = getattr(job, "error_result", None)
        if error_result:
            message = error_result.get("message", str(error_result))
            logger.error(f"{operation} failed: {message}")
            raise WarehouseError(operation, message)

        return job, rows

    def _scalar(self, sql: str, operation: str, column: str) -> Any:
        _, rows = self._execute(sql, operation)
        for row in rows:
            return row[column]
        raise WarehouseError(operation, "query returned no rows")

    def table_exists(self, dataset_id: str, table_name: str) -> bool:
        """Check whether a table exists. Lookup errors count as 'does not exist'."""
        try:
            self.client.get_table(self._table_ref(dataset_id, table_name))
            return True
        except NotFound:
            return False
        except Exception as e:
            logger.warning(f"Could not look up {dataset_id}.{table_name}: {e}")
            return False

    def create_managed_table(
        self,
        dataset_id: str,
        table_name: str,
        schema_ddl: str,
        gcs_bucket: str,
        storage_prefix: str,
        connection_id: str,
        region: str,
    ) -> None:
        """
        Create the managed BigLake Iceberg table when it does not exist yet.

        Raises:
            WarehouseError: If the DDL job fails
        """
        storage_uri = f"gs://{gcs_bucket}/{storage_prefix.rstrip('/')}"
        ddl = (
            f"CREATE TABLE IF NOT EXISTS {self._quoted(dataset_id, table_name)} (\n"
            f"{schema_ddl}\n"
            f")\n"
            f"WITH CONNECTION `{self._connection_ref(connection_id, region)}`\n"
            f"OPTIONS (\n"
            f"  file_format = 'PARQUET',\n"
            f"  table_format = 'ICEBERG',\n"
            f"  storage_uri = '{storage_uri}'\n"
            f")"
        )

        logger.info(f"Creating managed table: {dataset_id}.{table_name}")
        logger.info(f"DDL: {ddl}")
        self._execute(ddl, f"create managed table {dataset_id}.{table_name}")
        logger.info("DDL executed successfully")

    def create_or_refresh_external_table(
        self,
        dataset_id: str,
        table_name: str,
        gcs_bucket: str,
        gcs_prefix: str,
        file_format: str = "PARQUET",
        connection_id: Optional[str] = None,
        region: str = "asia-southeast1",
        hive_partition_uri_prefix: Optional[str] = None,
    ) -> None:
        """
        Create or replace the external table over gs://bucket/prefix*.

        Always replaces, so calling it after new objects land refreshes the
        table's file list.

        Raises:
            WarehouseError: If the DDL job fails
        """
        gcs_uri = f"gs://{gcs_bucket}/{gcs_prefix}*"
        clauses = [f"CREATE OR REPLACE EXTERNAL TABLE {self._quoted(dataset_id, table_name)}"]
        options = [f"  format = '{file_format.upper()}'", f"  uris = ['{gcs_uri}']"]

        if hive_partition_uri_prefix:
            clauses.append("WITH PARTITION COLUMNS")
            options.append(f"  hive_partition_uri_prefix = '{hive_partition_uri_prefix}'")
            options.append("  require_hive_partition_filter = false")

        if connection_id:
            clauses.append(f"WITH CONNECTION `{self._connection_ref(connection_id, region)}`")

        ddl = "\n".join(clauses) + "\nOPTIONS (\n" + ",\n".join(options) + "\n)"

        logger.info(f"Creating external table: {dataset_id}.{table_name}")
        logger.info(f"DDL: {ddl}")
        self._execute(ddl, f"refresh external table {dataset_id}.{table_name}")
        logger.info("DDL executed successfully")

    def load_into_managed_table(
        self,
        source_dataset: str,
        source_table: str,
        target_dataset: str,
        target_table: str,
        select_expression: str,
        mode: LoadMode = LoadMode.APPEND,
        merge_key: Optional[str] = None,
    ) -> int:
        """
        Load rows from the external table into the managed table.

        Args:
            source_dataset: Dataset of the external table
            source_table: External table name
            target_dataset: Dataset of the managed table
            target_table: Managed table name
            select_expression: Projection applied to the external table
            mode: APPEND inserts, TRUNCATE empties the target first,
                  MERGE upserts on merge_key
            merge_key: Business key column, required for MERGE

        Returns:
            Number of rows inserted or merged

        Raises:
            WarehouseError: If a statement fails or MERGE has no key
        """
        mode = LoadMode(mode.upper()) if isinstance(mode, str) else mode
        source = self._quoted(source_dataset, source_table)
        target = self._quoted(target_dataset, target_table)
        operation = f"{mode.value} load into {target_dataset}.{target_table}"

        logger.info(
            f"Loading data from {source_dataset}.{source_table} to {target_dataset}.{target_table}"
        )
        logger.info(f"Mode: {mode.value}")

        if mode == LoadMode.MERGE:
            dml = self._merge_statement(
                source, target, target_dataset, target_table, select_expression, merge_key
            )
        else:
            if mode == LoadMode.TRUNCATE:
                truncate = f"TRUNCATE TABLE {target}"
                logger.info(f"DML: {truncate}")
                self._execute(truncate, f"truncate {target_dataset}.{target_table}")
            dml = f"INSERT INTO {target}\nSELECT {select_expression}\nFROM {source}"

        logger.info(f"DML: {dml}")
        job, _ = self._execute(dml, operation)
        rows_affected = job.num_dml_affected_rows or 0
        logger.info(f"DML executed successfully. Rows affected: {rows_affected}")
        return int(rows_affected)

    def _merge_statement(
        self,
        source: str,
        target: str,
        target_dataset: str,
        target_table: str,
        select_expression: str,
        merge_key: Optional[str],
    ) -> str:
        if not merge_key:
            logger.error(f"MERGE into {target_dataset}.{target_table} requested without a merge key")
            raise WarehouseError(
                f"MERGE load into {target_dataset}.{target_table}",
                "a merge key (primary key column) is required",
            )

        columns = self.get_table_columns(target_dataset, target_table)
        update_columns = [c for c in columns if c.lower() != merge_key.lower()]
        column_list = ", ".join(columns)
        values_list = ", ".join(f"S.{c}" for c in columns)

        lines = [
            f"MERGE {target} T",
            "USING (",
            f"  SELECT {select_expression}",
            f"  FROM {source}",
            ") S",
            f"ON T.{merge_key} = S.{merge_key}",
        ]
        if update_columns:
            lines.append("WHEN MATCHED THEN")
            lines.append("  UPDATE SET " + ", ".join(f"{c} = S.{c}" for c in update_columns))
        lines.append("WHEN NOT MATCHED THEN")
        lines.append(f"  INSERT ({column_list}) VALUES ({values_list})")
        return "\n".join(lines)

    def get_row_count(self, dataset_id: str, table_name: str) -> int:
        """
        Count rows in a table.

        Raises:
            WarehouseError: If the count query fails
        """
        query = f"SELECT COUNT(*) AS cnt FROM {self._quoted(dataset_id, table_name)}"
        count = int(self._scalar(query, f"row count of {dataset_id}.{table_name}", "cnt"))
        logger.info(f"Row count for {dataset_id}.{table_name}: {count}")
        return count

    def delete_table_if_exists(self, dataset_id: str, table_name: str) -> None:
        """
        Delete a table; does nothing if it is absent.

        Raises:
            WarehouseError: If the delete call fails
        """
        try:
            self.client.delete_table(self._table_ref(dataset_id, table_name), not_found_ok=True)
        except Exception as e:
            logger.error(f"Failed to delete table {dataset_id}.{table_name}: {e}")
            raise WarehouseError(f"delete table {dataset_id}.{table_name}", str(e)) from e
        logger.info(f"Deleted table (if present): {dataset_id}.{table_name}")

    def get_table_columns(self, dataset_id: str, table_name: str) -> List[str]:
        """
        Return the top-level column names of a table.

        Raises:
            WarehouseError: If the table cannot be read
        """
        try:
            table = self.client.get_table(self._table_ref(dataset_id, table_name))
        except Exception as e:
            logger.error(f"Failed to read schema of {dataset_id}.{table_name}: {e}")
            raise WarehouseError(f"read schema of {dataset_id}.{table_name}", str(e)) from e
        return [field.name for field in table.schema]

    def calculate_checksum(self, dataset_id: str, table_name: str, column: str) -> str:
        """
        Order-independent digest of a column's non-null values.

        Values are cast to STRING, sorted, concatenated and hashed, so the
        same multiset of values yields the same digest in both tables.
        """
        query = (
            f"SELECT\n"
            f"  TO_BASE64(MD5(STRING_AGG(CAST({column} AS STRING), ',' ORDER BY {column}))) AS checksum\n"
            f"FROM {self._quoted(dataset_id, table_name)}\n"
            f"WHERE {column} IS NOT NULL"
        )
        value = self._scalar(query, f"checksum of {dataset_id}.{table_name}.{column}", "checksum")
        return value or ""

    def count_nulls(self, dataset_id: str, table_name: str, column: str) -> int:
        query = (
            f"SELECT COUNT(*) AS null_count\n"
            f"FROM {self._quoted(dataset_id, table_name)}\n"
            f"WHERE {column} IS NULL"
        )
        return int(
            self._scalar(query, f"null count of {dataset_id}.{table_name}.{column}", "null_count")
        )

    def find_duplicate_keys(
        self,
        dataset_id: str,
        table_name: str,
        column: str,
        limit: int = DUPLICATE_SAMPLE_LIMIT,
    ) -> List[Tuple[Any, int]]:
        """Return up to `limit` (key, count) pairs for keys appearing more than once."""
        query = (
            f"SELECT {column} AS key_value, COUNT(*) AS cnt\n"
            f"FROM {self._quoted(dataset_id, table_name)}\n"
            f"GROUP BY {column}\n"
            f"HAVING COUNT(*) > 1\n"
            f"LIMIT {int(limit)}"
        )
        _, rows = self._execute(query, f"duplicate check of {dataset_id}.{table_name}.{column}")
        return [(row["key_value"], int(row["cnt"])) for row in rows]

