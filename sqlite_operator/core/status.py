"""
Status derivation for SQLiteDB.

The phase is recomputed from the live Deployment on every pass:

- Creating: the Deployment cannot be read
- Pending:  the Deployment exists with no ready replicas
- Ready:    at least one replica is ready

No transition history is kept.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlite_operator.models.sqlitedb import Condition, Phase, SQLiteDBStatus

CONDITION_RECONCILED = "Reconciled"

REASON_SUCCEEDED = "ReconcileSucceeded"
REASON_FAILED = "ReconcileFailed"
REASON_INVALID_SPEC = "InvalidSpec"


def derive_phase(workload: Optional[Dict[str, Any]]) -> Phase:
    """Reduce the live Deployment (or its absence) to a phase."""
    if workload is None:
        return Phase.CREATING
    ready_replicas = (workload.get("status") or {}).get("readyReplicas") or 0
    if ready_replicas > 0:
        return Phase.READY
    return Phase.PENDING


def derive_status(
    current: SQLiteDBStatus,
    workload: Optional[Dict[str, Any]],
    condition: Optional[Condition] = None,
) -> SQLiteDBStatus:
    """
    Compute the status to persist.

    Phase and readiness come from ``workload`` alone. databaseSize,
    lastBackup and podName are carried over from ``current`` untouched.
    ``condition``, when given, is merged into the existing conditions.
    """
    phase = derive_phase(workload)
    status = current.model_copy(deep=True)
    status.phase = phase
    status.ready = phase == Phase.READY
    if condition is not None:
        set_condition(status, condition)
    return status


def set_condition(status: SQLiteDBStatus, condition: Condition) -> None:
    """
    Add or update a condition by type.

    lastTransitionTime only moves when the condition's status value changes,
    so re-asserting the same condition leaves the status unchanged.
    """
    for index, existing in enumerate(status.conditions):
        if existing.type != condition.type:
            continue
        updated = condition.model_copy()
        if existing.status == condition.status and existing.last_transition_time:
            updated.last_transition_time = existing.last_transition_time
        elif updated.last_transition_time is None:
            updated.last_transition_time = _now()
        status.conditions[index] = updated
        return

    added = condition.model_copy()
    if added.last_transition_time is None:
        added.last_transition_time = _now()
    status.conditions.append(added)


def reconciled_condition(
    ok: bool, reason: str, message: str = "", generation: Optional[int] = None
) -> Condition:
    return Condition(
        type=CONDITION_RECONCILED,
        status="True" if ok else "False",
        reason=reason,
        message=message,
        observed_generation=generation,
    )


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
