"""
Pipeline registry.

Every sync goes through the same coordinator; a pipeline only differs in
its source path, its target table mapping and its post-sync calls.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

from ingestion.post_sync import PostSyncCall
from models.targets import (
    ORDERS_NEW,
    RETAILER_PRODUCTS,
    RETAILERS,
    SALESMAN_DETAILS,
    TableMapping,
)


@dataclass(frozen=True)
class PipelineDefinition:
    """Name, default source path, target mapping and post-sync calls of one sync pipeline"""
    name: str
    source_path: str
    mapping: TableMapping
    post_sync: Tuple[PostSyncCall, ...] = ()

    @property
    def table_name(self) -> str:
        return self.mapping.table_name


# Refresh agent assignments and group retailers from the new Retailer_Masters rows
RETAILER_POST_SYNC = (
    PostSyncCall(
        "update_assigned_agents",
        "PUT",
        "/api/superzop/admin/retailers/updateretailermasterswithassignedagentandasm"
    ),
    PostSyncCall(
        "sync_group_retailers",
        "POST",
        "/api/superzop/admin/group_retailers/syncgroupretailerstablefromfirebase"
    ),
)

PIPELINES: Dict[str, PipelineDefinition] = {
    p.name: p for p in (
        PipelineDefinition("RetailerProducts", "Retailer_Products", RETAILER_PRODUCTS),
        PipelineDefinition("Retailers", "Retailer_Master", RETAILERS, post_sync=RETAILER_POST_SYNC),
        PipelineDefinition("OrdersNew", "Orders_News", ORDERS_NEW),
        PipelineDefinition("SalesmanDetails", "Salesman_Details", SALESMAN_DETAILS),
    )
}


def get_pipeline(name: str) -> PipelineDefinition:
    """
    Look up a pipeline by name.

    Raises:
        KeyError: If no pipeline is registered under the name
    """
    try:
        return PIPELINES[name]
    except KeyError:
        raise KeyError(f"Unknown pipeline '{name}'. Available: {', '.join(sorted(PIPELINES))}")
