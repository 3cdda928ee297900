"""
Catalog Backend — Regional Plan Applier
=======================================

What:  Executes a SyncPlan against the local store inside one transaction.
Why:   Partial success is meaningless for a mirror: either the whole plan is
       committed or the table is left exactly as it was.
How:   store.run_in_transaction() around plan.steps(); counters are tallied per
       action, and any exception turns into an ApplyFailure with zero counters.

No per-step retries: a failure rolls everything back, and the next
reconciliation re-plans from the committed state.
"""

import logging
from dataclasses import dataclass
from typing import Union

from catalog_api.services.regional_store import RegionalStore, RegionalTransaction
from catalog_api.services.sync_planner import (
    Inactivate,
    InactivateStep,
    Insert,
    Replace,
    SyncPlan,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SyncCounters:
    inserted: int = 0
    inactivated: int = 0
    updated: int = 0


@dataclass(frozen=True, slots=True)
class Applied:
    counters: SyncCounters


@dataclass(frozen=True, slots=True)
class ApplyFailure:
    reason: str
    counters: SyncCounters = SyncCounters()


ApplyOutcome = Union[Applied, ApplyFailure]


class SyncApplier:
    """Applies plans built by sync_planner.build_plan()."""

    def __init__(self, store: RegionalStore):
        self.store = store

    async def apply(self, plan: SyncPlan) -> ApplyOutcome:
        """
        Execute `plan` atomically.

        Returns:
            Applied(counters) after commit, or ApplyFailure(reason) after rollback.
            Replace counts once as `updated`, never as inserted + inactivated.
        """
        counters = SyncCounters(
            inserted=plan.count(Insert),
            inactivated=plan.count(Inactivate),
            updated=plan.count(Replace),
        )

        async def execute(tx: RegionalTransaction) -> None:
            for step in plan.steps():
                if isinstance(step, InactivateStep):
                    await tx.inactivate(step.local_id)
                else:
                    await tx.insert_active(step.external_id, step.name)

        try:
            await self.store.run_in_transaction(execute)
        except Exception as e:
            logger.error(
                "Applying regional plan failed, transaction rolled back: %s",
                str(e),
                exc_info=True,
            )
            return ApplyFailure(reason=f"{type(e).__name__}: {e}")

        logger.debug(
            "Regional plan committed: %d steps (%d inserted, %d inactivated, %d updated)",
            len(plan.steps()),
            counters.inserted,
            counters.inactivated,
            counters.updated,
        )
        return Applied(counters=counters)
