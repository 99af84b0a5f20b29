"""
Sync pipeline components for moving document store records into the relational store.

Modules:
    base: Abstract record source
    pipelines: Registry of pipelines (source path + target mapping)
    runner: PipelineCoordinator, the checkpointed step state machine
    checkpoint_store: Run checkpoint persistence (Sync_Status)
    fetch_cache: Record sets carried between steps (Sync_FetchCache)
    status_reporter: Best-effort status push to the monitoring endpoint
    scheduler: APScheduler integration for recurring syncs

Subpackages:
    extractors: Firebase Realtime Database source
    transformers: Per-pipeline record normalization
    loaders: Chunked bulk writer and dialect-aware upsert builder

Architecture:
    Every run goes through three ordered steps:

    1. Fetch - Snapshot the source path and store it in the fetch cache
    2. Processing - Normalize records and store the resulting rows
    3. Insertion - Upsert rows in chunks with bounded retries

    The run state is saved after every step, so a failed run can be
    resumed from the last completed step without re-fetching.

Usage:
    from ingestion.runner import create_coordinator

    coordinator = create_coordinator("Retailers", settings, engine, session_factory)
    result = await coordinator.run_fresh()

    # After a failure at insertion
    result = await coordinator.resume(result.run_key, CheckpointLabel.INSERTION_FAILED)

Error Handling:
    All components raise exceptions from core.exceptions carrying
    structured context. A failed step is persisted before StepFailedError
    reaches the caller.
"""
