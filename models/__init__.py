"""
SQLAlchemy models and table mappings.

Models:
    base: Base declarative class and shared enums (RunStatus, PipelineStep, CheckpointLabel)
    sync_status: Sync_Status checkpoint record, one row per run
    fetch_cache: Sync_FetchCache record sets carried between steps
    targets: Declarative mappings of the relational target tables

Usage:
    from models.base import Base, RunStatus, CheckpointLabel
    from models.sync_status import SyncStatus
    from models.targets import RETAILER_PRODUCTS, TableMapping

Example:
    # Build the target table of a mapping for statement building
    table = RETAILER_PRODUCTS.to_table(Base.metadata)
    row = RETAILER_PRODUCTS.row_for({"retailer_id": "R1", "item_id": "I1", "price": 10})
"""
