"""BigQuery access for migrations."""

from .gateway import WarehouseGateway

__all__ = ["WarehouseGateway"]
