"""
Catalog Backend — Reconciliation & Scheduling Tests
===================================================

What:  End-to-end tests of RegionalReconciler and RegionalSyncService over a
       real in-memory database with a canned upstream (AsyncMock fetcher).
Why:   This is where the mirror's guarantees are observable: one active row
       per key, history preserved, failures never mutate anything, and
       concurrent triggers share one reconciliation.

What we test:
    ✅ Fresh insert, disappearance, rename-by-versioning
    ✅ Safety stops: empty snapshot, transport failure, decode failure
    ✅ Apply failures and store read failures become summaries
    ✅ Idempotence, batching, no-delete, one-active-per-key
    ✅ Single-flight: shared summary, busy after lock wait, periodic skip
    ✅ Background loop: first tick after one interval, clean stop
"""

import asyncio
import logging
from collections import Counter
from unittest.mock import AsyncMock

import pytest

from catalog_api.exceptions import ConfigurationError
from catalog_api.schemas.regional import SyncOutcome
from catalog_api.services.regional_store import RegionalStore
from catalog_api.services.regional_sync import RegionalReconciler, RegionalSyncService
from catalog_api.services.sync_applier import ApplyFailure, SyncApplier
from catalog_api.services.sync_planner import Insert, build_plan
from catalog_api.services.upstream_client import (
    DecodeFailure,
    FetchEmpty,
    RegionalFetcher,
    TransportFailure,
)


# ══════════════════════════════════════════════════════════════════════════
# Helpers
# ══════════════════════════════════════════════════════════════════════════


async def active_pairs(store):
    return [(r.external_id, r.name) for r in await store.list_active()]


async def assert_one_active_per_key(store):
    counts = Counter(r.external_id for r in await store.list_all() if r.active)
    assert all(n == 1 for n in counts.values()), counts


def gate_fetch(fetcher, outcome):
    """Make fetcher.fetch() block until the returned event is set."""
    gate = asyncio.Event()

    async def fetch():
        await gate.wait()
        return outcome

    fetcher.fetch.side_effect = fetch
    return gate


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# ══════════════════════════════════════════════════════════════════════════
# Reconciliation scenarios
# ══════════════════════════════════════════════════════════════════════════


class TestReconcileScenarios:

    @pytest.mark.asyncio
    async def test_fresh_insert(self, sync_service, store, fetcher, snapshot):
        fetcher.fetch.return_value = snapshot((1, "Sul"), (2, "Norte"))

        summary = await sync_service.trigger()

        assert (summary.inserted, summary.inactivated, summary.updated) == (2, 0, 0)
        assert summary.outcome is SyncOutcome.COMPLETED
        assert await active_pairs(store) == [(1, "Sul"), (2, "Norte")]

    @pytest.mark.asyncio
    async def test_disappearance_inactivates(self, sync_service, store, fetcher, seed, snapshot):
        await seed((1, "Sul"), (2, "Norte"))
        fetcher.fetch.return_value = snapshot((1, "Sul"))

        summary = await sync_service.trigger()

        assert (summary.inserted, summary.inactivated, summary.updated) == (0, 1, 0)
        rows = await store.list_all()
        assert [(r.external_id, r.active) for r in rows] == [(1, True), (2, False)]

    @pytest.mark.asyncio
    async def test_rename_by_versioning(self, sync_service, store, fetcher, seed, snapshot):
        await seed((1, "Sul"))
        (seeded,) = await store.list_all()
        fetcher.fetch.return_value = snapshot((1, "Sul - Novo"))
        await asyncio.sleep(0.01)

        summary = await sync_service.trigger()

        assert (summary.inserted, summary.inactivated, summary.updated) == (0, 0, 1)
        old, new = await store.list_all()
        assert [(r.name, r.active) for r in (old, new)] == [("Sul", False), ("Sul - Novo", True)]
        assert new.created_at >= old.created_at
        assert old.created_at == seeded.created_at
        assert old.updated_at > seeded.updated_at

    @pytest.mark.asyncio
    async def test_empty_snapshot_is_a_safety_stop(self, sync_service, fetcher, seed, table_state):
        """An empty upstream must never wipe the local active set."""
        await seed((1, "Sul"))
        before = await table_state()
        fetcher.fetch.return_value = FetchEmpty()

        summary = await sync_service.trigger()

        assert (summary.inserted, summary.inactivated, summary.updated) == (0, 0, 0)
        assert "empty" in summary.message
        assert summary.outcome is SyncOutcome.EMPTY_SNAPSHOT
        assert await table_state() == before

    @pytest.mark.asyncio
    async def test_upstream_outage(self, sync_service, fetcher, seed, table_state):
        await seed((1, "Sul"))
        before = await table_state()
        fetcher.fetch.return_value = TransportFailure(reason="upstream answered HTTP 503")

        summary = await sync_service.trigger()

        assert (summary.inserted, summary.inactivated, summary.updated) == (0, 0, 0)
        assert "transport" in summary.message
        assert "HTTP 503" in summary.message
        assert summary.outcome is SyncOutcome.TRANSPORT_FAILURE
        assert await table_state() == before

    @pytest.mark.asyncio
    async def test_decode_failure(self, sync_service, fetcher, seed, table_state):
        await seed((1, "Sul"))
        before = await table_state()
        fetcher.fetch.return_value = DecodeFailure(reason="first at 0.id: Field required")

        summary = await sync_service.trigger()

        assert "decode" in summary.message
        assert summary.outcome is SyncOutcome.DECODE_FAILURE
        assert await table_state() == before

    @pytest.mark.asyncio
    async def test_duplicate_keys_first_wins(self, sync_service, store, fetcher, snapshot):
        fetcher.fetch.return_value = snapshot((1, "Sul"), (1, "Outro"))

        summary = await sync_service.trigger()

        assert summary.inserted == 1
        assert await active_pairs(store) == [(1, "Sul")]


class TestReconcileFailures:

    @pytest.mark.asyncio
    async def test_apply_failure_is_reported(self, store, fetcher, seed, snapshot, table_state):
        await seed((1, "Sul"))
        before = await table_state()
        fetcher.fetch.return_value = snapshot((1, "Sul"), (2, "Norte"))
        applier = AsyncMock(spec=SyncApplier)
        applier.apply.return_value = ApplyFailure(reason="IntegrityError: UNIQUE constraint failed")

        summary = await RegionalReconciler(fetcher, store, applier).reconcile()

        assert summary.outcome is SyncOutcome.APPLY_FAILURE
        assert "apply" in summary.message
        assert (summary.inserted, summary.inactivated, summary.updated) == (0, 0, 0)
        assert await table_state() == before

    @pytest.mark.asyncio
    async def test_store_read_failure_is_reported(self, fetcher, snapshot):
        fetcher.fetch.return_value = snapshot((1, "Sul"))
        broken_store = AsyncMock(spec=RegionalStore)
        broken_store.list_active.side_effect = RuntimeError("database is locked")
        applier = AsyncMock(spec=SyncApplier)

        summary = await RegionalReconciler(fetcher, broken_store, applier).reconcile()

        assert summary.outcome is SyncOutcome.APPLY_FAILURE
        assert "apply" in summary.message
        applier.apply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_upstream_url_propagates(self, store):
        reconciler = RegionalReconciler(RegionalFetcher(url=""), store, SyncApplier(store))
        service = RegionalSyncService(reconciler, interval=3600, lock_wait_timeout=1)

        with pytest.raises(ConfigurationError):
            await service.trigger()

        assert not service.in_progress

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_skips_applier(self, store, fetcher, seed, snapshot):
        await seed((1, "Sul"))
        fetcher.fetch.return_value = snapshot((1, "Sul"))
        applier = AsyncMock(spec=SyncApplier)

        summary = await RegionalReconciler(fetcher, store, applier).reconcile()

        assert summary.outcome is SyncOutcome.COMPLETED
        assert "up to date" in summary.message
        applier.apply.assert_not_awaited()


# ══════════════════════════════════════════════════════════════════════════
# Properties
# ══════════════════════════════════════════════════════════════════════════


SNAPSHOT_SEQUENCE = [
    [(1, "Sul"), (2, "Norte"), (3, "Leste")],
    [(1, "Sul"), (3, "Leste - Novo")],
    [],
    [(2, "Norte"), (3, "Leste - Novo"), (4, "Oeste")],
    [(1, "Sul"), (1, "Sul duplicado"), (4, "Oeste")],
    [(4, "oeste")],
]


class TestProperties:

    @pytest.mark.asyncio
    async def test_idempotent_second_run(self, sync_service, fetcher, snapshot, table_state):
        fetcher.fetch.return_value = snapshot((1, "Sul"), (2, "Norte"), (3, "Leste"))
        await sync_service.trigger()
        after_first = await table_state()

        summary = await sync_service.trigger()

        assert (summary.inserted, summary.inactivated, summary.updated) == (0, 0, 0)
        assert await table_state() == after_first

    @pytest.mark.asyncio
    async def test_active_set_mirrors_snapshot_and_rows_never_disappear(
        self, sync_service, store, fetcher, snapshot
    ):
        """One active row per key, exactly the snapshot's, and the row count only grows."""
        previous_count = 0
        mirrored = {}
        for pairs in SNAPSHOT_SEQUENCE:
            fetcher.fetch.return_value = snapshot(*pairs) if pairs else FetchEmpty()

            await sync_service.trigger()

            await assert_one_active_per_key(store)
            if pairs:
                mirrored = {}
                for key, name in pairs:
                    mirrored.setdefault(key, name)
            assert await active_pairs(store) == sorted(mirrored.items())

            count = len(await store.list_all())
            assert count >= previous_count
            previous_count = count

    @pytest.mark.asyncio
    async def test_disjoint_snapshots_insert_their_union(self, sync_service, store, fetcher, snapshot):
        first = [(1, "Sul"), (2, "Norte")]
        second = [(3, "Leste"), (4, "Oeste")]

        for pairs in (first, second):
            fetcher.fetch.return_value = snapshot(*pairs)
            await sync_service.trigger()

        union_plan = build_plan(snapshot(*first, *second).records, [])
        expected = {(a.external_id, a.name) for a in union_plan.actions if isinstance(a, Insert)}
        assert {(r.external_id, r.name) for r in await store.list_all()} == expected


# ══════════════════════════════════════════════════════════════════════════
# Single-flight
# ══════════════════════════════════════════════════════════════════════════


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_concurrent_triggers_share_one_run(self, sync_service, fetcher, snapshot):
        async def slow_fetch():
            await asyncio.sleep(0.02)
            return snapshot((1, "Sul"), (2, "Norte"))

        fetcher.fetch.side_effect = slow_fetch

        first, second = await asyncio.gather(sync_service.trigger(), sync_service.trigger())

        assert first is second
        assert first.inserted == 2
        assert fetcher.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_joiner_gets_busy_after_lock_wait(self, make_sync_service, store, fetcher, snapshot):
        service = make_sync_service(lock_wait_timeout=0.05)
        gate = gate_fetch(fetcher, snapshot((1, "Sul")))

        running = asyncio.create_task(service.trigger())
        await wait_until(lambda: service.in_progress)

        busy = await service.trigger()

        assert busy.outcome is SyncOutcome.BUSY
        assert "busy" in busy.message
        assert (busy.inserted, busy.inactivated, busy.updated) == (0, 0, 0)

        gate.set()
        completed = await running
        assert completed.inserted == 1
        assert fetcher.fetch.await_count == 1
        assert await active_pairs(store) == [(1, "Sul")]

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_reconciliation(
        self, sync_service, store, fetcher, snapshot
    ):
        gate = gate_fetch(fetcher, snapshot((1, "Sul")))

        caller = asyncio.create_task(sync_service.trigger())
        await wait_until(lambda: sync_service.in_progress)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        gate.set()
        await wait_until(lambda: not sync_service.in_progress)

        assert await active_pairs(store) == [(1, "Sul")]
        assert sync_service.last_summary.inserted == 1

    @pytest.mark.asyncio
    async def test_periodic_tick_skips_while_running(self, sync_service, fetcher, snapshot, caplog):
        gate = gate_fetch(fetcher, snapshot((1, "Sul")))
        running = asyncio.create_task(sync_service.trigger())
        await wait_until(lambda: sync_service.in_progress)

        with caplog.at_level(logging.INFO, logger="catalog_api.services.regional_sync"):
            skipped = await sync_service.run_periodic()

        assert skipped is None
        assert "skipped" in caplog.text
        gate.set()
        await running
        assert fetcher.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_new_run_after_previous_finished(self, sync_service, fetcher, snapshot):
        fetcher.fetch.return_value = snapshot((1, "Sul"))
        first = await sync_service.trigger()
        second = await sync_service.trigger()

        assert first is not second
        assert fetcher.fetch.await_count == 2


# ══════════════════════════════════════════════════════════════════════════
# Periodic loop & status
# ══════════════════════════════════════════════════════════════════════════


class TestPeriodicLoop:

    @pytest.mark.asyncio
    async def test_failed_tick_is_logged_and_schedule_continues(self, sync_service, fetcher, caplog):
        fetcher.fetch.return_value = TransportFailure(reason="connection refused")

        with caplog.at_level(logging.WARNING):
            first = await sync_service.run_periodic()
            second = await sync_service.run_periodic()

        assert first.outcome is SyncOutcome.TRANSPORT_FAILURE
        assert second.outcome is SyncOutcome.TRANSPORT_FAILURE
        assert "made no changes" in caplog.text

    @pytest.mark.asyncio
    async def test_configuration_error_in_tick_is_logged(self, store, caplog):
        reconciler = RegionalReconciler(RegionalFetcher(url=""), store, SyncApplier(store))
        service = RegionalSyncService(reconciler, interval=3600, lock_wait_timeout=1)

        with caplog.at_level(logging.ERROR):
            result = await service.run_periodic()

        assert result is None
        assert "Periodic reconciliation failed" in caplog.text

    @pytest.mark.asyncio
    async def test_first_tick_after_one_interval(self, make_sync_service, fetcher):
        service = make_sync_service(interval=0.2)

        await service.start()
        try:
            await asyncio.sleep(0.05)
            assert fetcher.fetch.await_count == 0
            await wait_until(lambda: fetcher.fetch.await_count >= 1, timeout=1.0)
        finally:
            await service.stop()

    @pytest.mark.asyncio
    async def test_stop_ends_the_loop(self, make_sync_service, fetcher):
        service = make_sync_service(interval=0.05)

        await service.start()
        assert service.status().scheduler == "running"
        await service.stop()
        calls = fetcher.fetch.await_count
        await asyncio.sleep(0.15)

        assert fetcher.fetch.await_count == calls
        assert service.status().scheduler == "stopped"

    @pytest.mark.asyncio
    async def test_disabled_service_does_not_start(self, make_sync_service):
        service = make_sync_service(enabled=False)

        await service.start()

        assert service.status().scheduler == "disabled"
        await service.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_on_demand_run_when_disabled(
        self, make_sync_service, store, fetcher, snapshot
    ):
        service = make_sync_service(enabled=False)
        gate = gate_fetch(fetcher, snapshot((1, "Sul")))
        running = asyncio.create_task(service.trigger())
        await wait_until(lambda: service.in_progress)

        stopper = asyncio.create_task(service.stop(timeout=5))
        await asyncio.sleep(0.1)

        assert not stopper.done()
        assert service.in_progress

        gate.set()
        await stopper
        assert not service.in_progress
        assert (await running).inserted == 1
        assert await active_pairs(store) == [(1, "Sul")]

    @pytest.mark.asyncio
    async def test_stop_cancels_and_awaits_run_past_timeout(
        self, make_sync_service, fetcher, snapshot, seed, table_state
    ):
        await seed((1, "Sul"))
        before = await table_state()
        service = make_sync_service(enabled=False)
        gate_fetch(fetcher, snapshot((2, "Norte")))
        running = asyncio.create_task(service.trigger())
        await wait_until(lambda: service.in_progress)

        await service.stop(timeout=0.05)

        assert not service.in_progress
        (result,) = await asyncio.gather(running, return_exceptions=True)
        assert isinstance(result, asyncio.CancelledError)
        assert await table_state() == before

    @pytest.mark.asyncio
    async def test_status_reports_last_outcome(self, sync_service, fetcher, snapshot):
        assert sync_service.status().last_outcome is None

        fetcher.fetch.return_value = snapshot((1, "Sul"))
        await sync_service.trigger()
        status = sync_service.status()

        assert status.last_outcome is SyncOutcome.COMPLETED
        assert status.in_progress is False
        assert status.last_finished_at is not None
        assert "1 inserted" in status.last_message
