"""
Sync engine components for multi-source game data ingestion.

Modules:
    fetcher: HTTP execution with outcome classification
    rate_limiter: Per-source request spacing
    auth: Client-credentials token cache (IGDB, Twitch)
    clients: Per-source clients with the bounded retry loop
    base: Source driver contract and page result types
    checkpoint_store: Durable cursors and sync attempt bookkeeping
    runner: Sync orchestrator driving one attempt page by page
    sync_service: Entry points used by the API, scheduler and scripts
    scheduler: APScheduler integration for daily and hourly syncs

Subpackages:
    drivers: RAWG, IGDB, CheapShark, Steam and Twitch drivers
    transformers: Field-level parsers shared by the drivers
    loaders: Idempotent, field-preserving upsert sink

Usage:
    from ingestion.sync_service import open_sync_service

    async with open_sync_service() as service:
        summary = await service.perform_full_sync("rawg")
        stats = await service.get_sync_stats("rawg")

Error Handling:
    All components raise exceptions from core.exceptions. Retryable errors
    count toward a run's consecutive-error budget; non-retryable errors end
    the run as failed and propagate to the caller.
"""

__all__ = [
    "SourceDriver",
    "SyncOrchestrator",
    "SyncService",
    "SyncScheduler",
    "CheckpointStore",
    "UpsertSink",
    "RateLimiter",
    "TokenProvider",
]
