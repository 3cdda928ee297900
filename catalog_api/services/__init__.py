# Services package init
"""
Catalog Backend — Services Layer
================================

What:  Regional synchronization, between the routes (HTTP) and the database.

Service Inventory:
    - upstream_client.RegionalFetcher:    GET the upstream snapshot (httpx + tenacity)
    - regional_store.RegionalStore:       local reads and transactional writes
    - sync_planner.build_plan:            pure diff of snapshot vs. active rows
    - sync_applier.SyncApplier:           executes a plan in one transaction
    - regional_sync.RegionalReconciler:   fetch → plan → apply, failures as summaries
    - regional_sync.RegionalSyncService:  periodic loop + single-flight trigger

Each module exposes a module-level singleton wired from settings; tests build
their own instances around an in-memory database and a mock transport.
"""
