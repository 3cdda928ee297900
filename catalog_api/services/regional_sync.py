"""
Catalog Backend — Regional Reconciliation & Scheduling
======================================================

What:  Orchestrates one reconciliation (fetch → plan → apply) and decides
       when it runs: periodically in the background, or on demand from
       POST /api/v1/regionais/sync.
Why:   Both triggers must share one code path and never run concurrently,
       otherwise two plans built from the same active set would both try to
       inactivate the same rows.
How:   RegionalReconciler is a straight pipeline that turns every failure into
       a SyncSummary. RegionalSyncService wraps it in a single-flight gate:
       a running reconciliation is one asyncio task that callers join.

Single-flight:
    on-demand, nothing running   → start a task, await it (shielded, no timeout)
    on-demand, task running      → join it, wait at most lock_wait_timeout,
                                   else return a BUSY summary
    periodic tick, task running  → skip the tick (info log)
    caller disconnects           → shield keeps the task alive; it still commits

State machine (per reconciliation):
    Idle → Fetching → Planning → Applying → Idle
              │          │           │
              └──────────┴───────────┴──→ Idle with a failure summary
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from catalog_api.config import settings
from catalog_api.models.regional import utc_now
from catalog_api.schemas.regional import SyncOutcome, SyncStatus, SyncSummary
from catalog_api.services.regional_store import RegionalStore, regional_store
from catalog_api.services.sync_applier import ApplyFailure, SyncApplier
from catalog_api.services.sync_planner import build_plan
from catalog_api.services.upstream_client import (
    DecodeFailure,
    FetchEmpty,
    RegionalFetcher,
    TransportFailure,
    regional_fetcher,
)

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Reconciler (one run)
# ══════════════════════════════════════════════════════════════════════════


class RegionalReconciler:
    """
    Runs one fetch → plan → apply cycle.

    Never raises for upstream or database trouble; those end up in the
    returned summary. ConfigurationError (no upstream URL) does propagate.
    """

    def __init__(
        self,
        fetcher: RegionalFetcher,
        store: RegionalStore,
        applier: SyncApplier,
    ):
        self.fetcher = fetcher
        self.store = store
        self.applier = applier

    async def reconcile(self) -> SyncSummary:
        logger.info("Regional reconciliation started")

        fetched = await self.fetcher.fetch()

        # ── Safety stops: nothing is planned from a missing snapshot ───────
        if isinstance(fetched, FetchEmpty):
            return self._stopped(
                SyncOutcome.EMPTY_SNAPSHOT,
                "Upstream returned an empty snapshot; local regionais left untouched",
            )
        if isinstance(fetched, TransportFailure):
            return self._stopped(
                SyncOutcome.TRANSPORT_FAILURE,
                f"Upstream transport failure, no changes applied: {fetched.reason}",
            )
        if isinstance(fetched, DecodeFailure):
            return self._stopped(
                SyncOutcome.DECODE_FAILURE,
                f"Upstream payload decode failure, no changes applied: {fetched.reason}",
            )

        try:
            active = await self.store.list_active()
        except Exception as e:
            logger.error("Reading active regionais failed: %s", str(e), exc_info=True)
            return self._stopped(
                SyncOutcome.APPLY_FAILURE,
                f"Could not apply synchronization, reading local regionais failed: "
                f"{type(e).__name__}",
            )

        plan = build_plan(fetched.records, active)
        logger.info(
            "Planned %d action(s) from %d upstream and %d active regionais",
            len(plan.actions),
            len(fetched.records),
            len(active),
        )

        if plan.is_empty:
            summary = SyncSummary(message="Regionais already up to date, no changes applied")
            logger.info(summary.message)
            return summary

        applied = await self.applier.apply(plan)
        if isinstance(applied, ApplyFailure):
            return self._stopped(
                SyncOutcome.APPLY_FAILURE,
                f"Failed to apply synchronization, changes rolled back: {applied.reason}",
            )

        counters = applied.counters
        summary = SyncSummary(
            inserted=counters.inserted,
            inactivated=counters.inactivated,
            updated=counters.updated,
            message=(
                f"Synchronization completed: {counters.inserted} inserted, "
                f"{counters.inactivated} inactivated, {counters.updated} updated"
            ),
        )
        logger.info(summary.message)
        return summary

    @staticmethod
    def _stopped(outcome: SyncOutcome, message: str) -> SyncSummary:
        logger.warning("Regional reconciliation stopped (%s): %s", outcome.value, message)
        return SyncSummary.failure(outcome, message)


# ══════════════════════════════════════════════════════════════════════════
# Sync Service (triggers and single-flight gate)
# ══════════════════════════════════════════════════════════════════════════


class RegionalSyncService:
    """
    Owns the periodic loop and the single in-flight reconciliation.

    Lifecycle:
        await service.start()   # from the FastAPI lifespan
        await service.trigger() # from the sync route, any number of times
        await service.stop()    # on shutdown
    """

    def __init__(
        self,
        reconciler: RegionalReconciler,
        interval: Optional[float] = None,
        lock_wait_timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        self.reconciler = reconciler
        self.interval = settings.sync_interval if interval is None else interval
        self.lock_wait_timeout = (
            settings.lock_wait_timeout if lock_wait_timeout is None else lock_wait_timeout
        )
        self.enabled = settings.sync_enabled if enabled is None else enabled

        self._inflight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        self.last_summary: Optional[SyncSummary] = None
        self.last_started_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None

    # ── Single-flight ─────────────────────────────────────────────────────

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _start_run(self) -> asyncio.Task:
        self._inflight = asyncio.create_task(self._run(), name="regional-reconcile")
        return self._inflight

    async def _run(self) -> SyncSummary:
        try:
            self.last_started_at = utc_now()
            summary = await self.reconciler.reconcile()
            self.last_summary = summary
            return summary
        finally:
            self.last_finished_at = utc_now()
            if self._inflight is asyncio.current_task():
                self._inflight = None

    async def trigger(self) -> SyncSummary:
        """
        Run a reconciliation now, or join the one already running.

        Every caller joining the same run receives the same SyncSummary
        object. A joiner that waits longer than lock_wait_timeout gets a
        BUSY summary instead; the running reconciliation is not affected.

        Raises:
            ConfigurationError: upstream URL not configured.
        """
        if not self.in_progress:
            return await asyncio.shield(self._start_run())

        task = self._inflight
        logger.info("Reconciliation already running, joining it")
        try:
            return await asyncio.wait_for(
                asyncio.shield(task), timeout=self.lock_wait_timeout
            )
        except asyncio.TimeoutError:
            message = (
                f"A reconciliation is already running (busy); gave up waiting "
                f"after {self.lock_wait_timeout:g}s"
            )
            logger.warning(message)
            return SyncSummary.failure(SyncOutcome.BUSY, message)

    async def run_periodic(self) -> Optional[SyncSummary]:
        """
        One scheduled tick. Skipped when a reconciliation is already running.

        Failures are logged and swallowed here so the schedule keeps going;
        the next tick plans again from the committed state.
        """
        if self.in_progress:
            logger.info("Periodic reconciliation skipped: another one is still running")
            return None

        try:
            summary = await asyncio.shield(self._start_run())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Periodic reconciliation failed: %s", str(e), exc_info=True)
            return None

        if summary.succeeded:
            logger.info("Periodic reconciliation finished: %s", summary.message)
        else:
            logger.warning("Periodic reconciliation made no changes: %s", summary.message)
        return summary

    # ── Background loop ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the periodic loop. The first tick fires one interval from now."""
        if not self.enabled:
            logger.info("Periodic regional sync disabled (SYNC_ENABLED=false)")
            return
        if self._loop_task is not None and not self._loop_task.done():
            logger.warning("Regional sync scheduler already running")
            return

        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._main_loop(), name="regional-sync-loop")
        logger.info("Regional sync scheduler started (interval=%gs)", self.interval)

    async def stop(self, timeout: float = 10.0) -> None:
        """
        Stop the loop and wait for a running reconciliation to finish.

        The in-flight wait applies whether or not the loop was ever started:
        an on-demand run must commit or roll back before the engine goes away.
        """
        if self._loop_task is not None:
            logger.info("Stopping regional sync scheduler")
            self._stop_event.set()
            try:
                await asyncio.wait_for(self._loop_task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Regional sync scheduler shutdown timeout, cancelling")
                self._loop_task.cancel()
                try:
                    await self._loop_task
                except asyncio.CancelledError:
                    pass
            self._loop_task = None
            logger.info("Regional sync scheduler stopped")

        if self.in_progress:
            inflight = self._inflight
            logger.info("Waiting for the running reconciliation to finish")
            try:
                await asyncio.wait_for(asyncio.shield(inflight), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Cancelling unfinished reconciliation on shutdown")
                inflight.cancel()
                await asyncio.gather(inflight, return_exceptions=True)
            except Exception as e:
                logger.debug("Unfinished reconciliation ended with %r", e)

    async def _main_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_periodic()

    # ── Status ────────────────────────────────────────────────────────────

    def status(self) -> SyncStatus:
        if not self.enabled:
            scheduler = "disabled"
        elif self._loop_task is not None and not self._loop_task.done():
            scheduler = "running"
        else:
            scheduler = "stopped"

        last = self.last_summary
        return SyncStatus(
            scheduler=scheduler,
            in_progress=self.in_progress,
            last_outcome=last.outcome if last else None,
            last_message=last.message if last else None,
            last_finished_at=self.last_finished_at,
        )


# ── Singleton Instances ───────────────────────────────────────────────────
regional_reconciler = RegionalReconciler(
    fetcher=regional_fetcher,
    store=regional_store,
    applier=SyncApplier(regional_store),
)
regional_sync = RegionalSyncService(regional_reconciler)
