"""
Pydantic schemas for run state persistence and the HTTP API.

Schemas:
    run: RunState, step results, write summaries and run results
    api: Start/resume requests, run listings and health check responses

Features:
    - camelCase JSON keys (step1Completed, fetchResult, runKey, ...)
    - Field-name population, so code can use snake_case
    - Validation of persisted state on resume

Usage:
    from schemas.run import RunState, RunRecord, WriteSummary
    from schemas.api import StartSyncRequest, ResumeSyncResponse

Example:
    state = RunState.from_json(row.workflow_state)
    state.check_step_order()

    if state.step1_completed:
        records = await fetch_cache.load(state.fetch_result.data_key)
"""
