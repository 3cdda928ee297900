"""
Catalog Backend — Regional Diff Planner
=======================================

What:  Pure functions that turn (upstream snapshot, local active rows) into an
       ordered plan of mutations.
Why:   Keeping planning free of I/O makes the synchronization policy testable
       on plain values, and makes a plan reproducible from its inputs.
Who:   Called by RegionalReconciler between the fetch and the apply.

Policy (per external_id k):
    k upstream, not local            → Insert(k, name)
    k in both, name differs          → Replace(local_id, k, new_name)
    k local, not upstream            → Inactivate(local_id)
    k in both, same name             → nothing

    Names are compared exactly: case and whitespace are significant.

Ordering:
    SyncPlan.actions:  [Inactivate | Replace] by external_id, then [Insert] by external_id
    SyncPlan.steps():  every inactivation (incl. the first half of each Replace)
                       by external_id, then every insertion (incl. the second
                       half of each Replace) by external_id
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple, Union

from catalog_api.models.regional import RegionalRecord


# ══════════════════════════════════════════════════════════════════════════
# Values
# ══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ExternalRegional:
    """One {external_id, name} pair from an upstream snapshot."""

    external_id: int
    name: str


@dataclass(frozen=True, slots=True)
class Insert:
    external_id: int
    name: str


@dataclass(frozen=True, slots=True)
class Inactivate:
    local_id: int
    external_id: int


@dataclass(frozen=True, slots=True)
class Replace:
    """Rename by versioning: inactivate `local_id`, then insert `new_name`."""

    local_id: int
    external_id: int
    new_name: str


PlanAction = Union[Insert, Inactivate, Replace]


@dataclass(frozen=True, slots=True)
class InactivateStep:
    local_id: int
    external_id: int


@dataclass(frozen=True, slots=True)
class InsertStep:
    external_id: int
    name: str


PlanStep = Union[InactivateStep, InsertStep]


@dataclass(frozen=True, slots=True)
class SyncPlan:
    """Ordered, immutable list of actions for one reconciliation."""

    actions: Tuple[PlanAction, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def count(self, kind: type) -> int:
        return sum(1 for action in self.actions if isinstance(action, kind))

    def steps(self) -> List[PlanStep]:
        """
        Expand the plan into primitive store operations.

        All inactivations run before any insertion, so the at-most-one-active
        rule holds after every single statement, not only at commit.
        """
        inactivations = sorted(
            (
                InactivateStep(local_id=a.local_id, external_id=a.external_id)
                for a in self.actions
                if isinstance(a, (Inactivate, Replace))
            ),
            key=lambda step: step.external_id,
        )
        insertions = sorted(
            (
                InsertStep(
                    external_id=a.external_id,
                    name=a.new_name if isinstance(a, Replace) else a.name,
                )
                for a in self.actions
                if isinstance(a, (Insert, Replace))
            ),
            key=lambda step: step.external_id,
        )
        return [*inactivations, *insertions]


# ══════════════════════════════════════════════════════════════════════════
# Planning
# ══════════════════════════════════════════════════════════════════════════


def dedupe_snapshot(records: Iterable[ExternalRegional]) -> List[ExternalRegional]:
    """
    Drop repeated external_ids, keeping the first occurrence.

    Input order is preserved, so the same upstream payload always yields the
    same snapshot.
    """
    seen = set()
    unique: List[ExternalRegional] = []
    for record in records:
        if record.external_id in seen:
            continue
        seen.add(record.external_id)
        unique.append(record)
    return unique


def build_plan(
    snapshot: Sequence[ExternalRegional],
    active: Sequence[RegionalRecord],
) -> SyncPlan:
    """
    Compute the mutations that make the active set mirror `snapshot`.

    Args:
        snapshot: Upstream records. Duplicates are tolerated (first wins).
        active:   Local rows with active=True, at most one per external_id.

    Returns:
        SyncPlan whose application leaves exactly one active row per key of
        `snapshot`, carrying the upstream name, and no other active row.
    """
    upstream: Dict[int, str] = {}
    for record in snapshot:
        upstream.setdefault(record.external_id, record.name)

    local: Dict[int, RegionalRecord] = {row.external_id: row for row in active}

    with_inactivation: List[PlanAction] = []
    inserts: List[PlanAction] = []

    for external_id in sorted(upstream):
        name = upstream[external_id]
        current = local.get(external_id)
        if current is None:
            inserts.append(Insert(external_id=external_id, name=name))
        elif current.name != name:
            with_inactivation.append(
                Replace(local_id=current.id, external_id=external_id, new_name=name)
            )

    for external_id in sorted(local):
        if external_id not in upstream:
            with_inactivation.append(
                Inactivate(local_id=local[external_id].id, external_id=external_id)
            )

    with_inactivation.sort(key=lambda action: action.external_id)
    return SyncPlan(actions=tuple(with_inactivation + inserts))
