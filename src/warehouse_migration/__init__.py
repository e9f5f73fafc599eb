"""
Warehouse Migration

Moves tables from AWS S3 into BigQuery managed Iceberg tables: Storage
Transfer Service copy, BigLake external staging table, load, validation
and a per-table audit log in GCS.
"""

__version__ = "0.1.0"
