"""
SQLiteDB reconciler.

One call to ``reconcile`` is one pass for one instance:

1. Fetch the SQLiteDB (absent means deleted; nothing to do)
2. Ensure the PersistentVolumeClaim
3. Ensure the init-SQL ConfigMap when initSQL is set
4. Ensure the Deployment
5. Ensure the Service
6. Derive and persist status

Each step aborts the pass on failure. Retrying is left to the caller.
"""
import copy
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from sqlite_operator.config.logging import get_logger
from sqlite_operator.core.status import (
    REASON_FAILED,
    REASON_INVALID_SPEC,
    REASON_SUCCEEDED,
    derive_status,
    reconciled_condition,
)
from sqlite_operator.exceptions import NotFoundError, OperatorException, ValidationError
from sqlite_operator.models.sqlitedb import Condition, SQLiteDB, SQLiteDBStatus, same_quantity
from sqlite_operator.services.cluster_store import ClusterStore, Kind, Mutator, OperationResult
from sqlite_operator.services.desired_state import (
    CONTAINER_NAME,
    DEFAULT_IMAGE,
    INIT_VOLUME,
    build_endpoint,
    build_init_config,
    build_storage_claim,
    build_workload,
    common_labels,
    endpoint_name,
    init_config_name,
    storage_claim_name,
    workload_name,
)
from sqlite_operator.services.merge import deep_merge, remove_named
from sqlite_operator.services.ownership import set_controller_reference

logger = get_logger(__name__)


class ReconcileResult(BaseModel):
    """What a single pass did."""

    found: bool = True
    dependents: Dict[str, OperationResult] = Field(default_factory=dict)
    status_updated: bool = False

    @property
    def writes(self) -> int:
        changed = sum(1 for r in self.dependents.values() if r != OperationResult.UNCHANGED)
        return changed + int(self.status_updated)


class SQLiteDBReconciler:
    """
    Drives the dependents of an SQLiteDB toward its spec.

    Holds no per-instance state, so one reconciler can serve many
    instances concurrently.
    """

    def __init__(self, store: ClusterStore, image: str = DEFAULT_IMAGE):
        self.store = store
        self.image = image

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Args:
            namespace: SQLiteDB namespace
            name: SQLiteDB name

        Returns:
            Per-dependent results and whether status was written

        Raises:
            ValidationError: If the spec is unusable (after reporting it on status)
            OperatorException: On any cluster I/O failure
        """
        try:
            raw = await self.store.get(Kind.SQLITEDB, namespace, name)
        except NotFoundError:
            logger.info("sqlitedb_not_found_ignoring", namespace=namespace, name=name)
            return ReconcileResult(found=False)

        try:
            instance = SQLiteDB.model_validate(raw)
        except PydanticValidationError as e:
            message = format_validation_error(e)
            logger.warning("sqlitedb_spec_invalid", namespace=namespace, name=name, error=message)
            metadata = raw.get("metadata") or {}
            await self.update_status(
                raw,
                reconciled_condition(False, REASON_INVALID_SPEC, message, metadata.get("generation")),
            )
            raise ValidationError(message, details={"namespace": namespace, "name": name}) from e

        if instance.spec.backup_enabled:
            logger.debug(
                "backup_schedule_not_enforced",
                namespace=namespace,
                name=name,
                backup_schedule=instance.spec.backup_schedule,
            )

        result = ReconcileResult()
        try:
            result.dependents["storage_claim"] = await self.ensure_storage_claim(instance)
            if instance.spec.has_init_sql:
                result.dependents["init_config"] = await self.ensure_init_config(instance)
            result.dependents["workload"] = await self.ensure_workload(instance)
            result.dependents["endpoint"] = await self.ensure_endpoint(instance)
        except ValidationError as e:
            await self._record_failure(raw, instance, REASON_INVALID_SPEC, e)
            raise
        except OperatorException as e:
            await self._record_failure(raw, instance, REASON_FAILED, e)
            raise

        result.status_updated = await self.update_status(
            raw,
            reconciled_condition(True, REASON_SUCCEEDED, generation=instance.metadata.generation),
        )

        logger.info(
            "sqlitedb_reconciled",
            namespace=namespace,
            name=name,
            dependents={k: v.value for k, v in result.dependents.items()},
            status_updated=result.status_updated,
        )
        return result

    async def ensure_storage_claim(self, instance: SQLiteDB) -> OperationResult:
        desired = build_storage_claim(instance)

        def mutate(obj: Dict[str, Any]) -> None:
            spec = obj.setdefault("spec", {})
            fragment = copy.deepcopy(desired)
            # The API server stores quantities in canonical form (1024Mi -> 1Gi).
            live_size = ((spec.get("resources") or {}).get("requests") or {}).get("storage")
            if same_quantity(live_size, fragment["resources"]["requests"]["storage"]):
                fragment["resources"]["requests"]["storage"] = live_size
            deep_merge(spec, fragment)
            self._stamp(instance, obj)

        return await self._ensure(Kind.PERSISTENT_VOLUME_CLAIM, instance, storage_claim_name(instance), mutate)

    async def ensure_init_config(self, instance: SQLiteDB) -> OperationResult:
        desired = build_init_config(instance)

        def mutate(obj: Dict[str, Any]) -> None:
            obj.setdefault("data", {}).update(desired)
            self._stamp(instance, obj)

        return await self._ensure(Kind.CONFIG_MAP, instance, init_config_name(instance), mutate)

    async def ensure_workload(self, instance: SQLiteDB) -> OperationResult:
        desired = build_workload(instance, self.image)

        def mutate(obj: Dict[str, Any]) -> None:
            spec = obj.setdefault("spec", {})
            fragment = dict(desired)
            if spec.get("selector"):
                # Immutable once the Deployment exists.
                fragment.pop("selector")
            deep_merge(spec, fragment)

            if not instance.spec.has_init_sql:
                pod_spec = spec["template"]["spec"]
                remove_named(pod_spec.get("volumes", []), INIT_VOLUME)
                for container in pod_spec.get("containers", []):
                    if container.get("name") == CONTAINER_NAME:
                        remove_named(container.get("volumeMounts", []), INIT_VOLUME)
            self._stamp(instance, obj)

        return await self._ensure(Kind.DEPLOYMENT, instance, workload_name(instance), mutate)

    async def ensure_endpoint(self, instance: SQLiteDB) -> OperationResult:
        desired = build_endpoint(instance)

        def mutate(obj: Dict[str, Any]) -> None:
            deep_merge(obj.setdefault("spec", {}), desired)
            self._stamp(instance, obj)

        return await self._ensure(Kind.SERVICE, instance, endpoint_name(instance), mutate)

    async def update_status(self, raw: Dict[str, Any], condition: Optional[Condition] = None) -> bool:
        """
        Derive status from the live Deployment and write it if it changed.

        The stored status is compared as written, so values another actor
        left behind (an unknown phase, extra keys) are overwritten.

        Returns:
            True if a status write was issued
        """
        metadata = raw["metadata"]
        namespace, name = metadata["namespace"], metadata["name"]

        current = SQLiteDBStatus.from_object(raw.get("status"))
        workload = await self._read_workload(namespace, name)
        status = derive_status(current, workload, condition)

        if status.to_object() == (raw.get("status") or {}):
            logger.debug("sqlitedb_status_unchanged", namespace=namespace, name=name)
            return False

        body = copy.deepcopy(raw)
        body["status"] = status.to_object()
        await self.store.update_status(body)
        logger.info(
            "sqlitedb_status_updated",
            namespace=namespace,
            name=name,
            phase=status.phase.value if status.phase else None,
            ready=status.ready,
        )
        return True

    async def _ensure(
        self, kind: Kind, instance: SQLiteDB, name: str, mutate: Mutator
    ) -> OperationResult:
        result = await self.store.create_or_patch(kind, instance.namespace, name, mutate)
        log = logger.debug if result == OperationResult.UNCHANGED else logger.info
        log(
            "dependent_reconciled",
            kind=kind.value,
            namespace=instance.namespace,
            name=name,
            result=result.value,
        )
        return result

    def _stamp(self, instance: SQLiteDB, obj: Dict[str, Any]) -> None:
        metadata = obj.setdefault("metadata", {})
        labels = metadata.get("labels") or {}
        labels.update(common_labels(instance))
        metadata["labels"] = labels
        set_controller_reference(instance, obj)

    async def _read_workload(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.store.get(Kind.DEPLOYMENT, namespace, name)
        except NotFoundError:
            return None
        except OperatorException as e:
            logger.warning(
                "workload_read_failed",
                namespace=namespace,
                name=name,
                error=str(e),
            )
            return None

    async def _record_failure(
        self, raw: Dict[str, Any], instance: SQLiteDB, reason: str, error: OperatorException
    ) -> None:
        logger.error(
            "sqlitedb_reconcile_failed",
            namespace=instance.namespace,
            name=instance.name,
            error=error.message,
            error_type=type(error).__name__,
        )
        condition = reconciled_condition(False, reason, error.message, instance.metadata.generation)
        try:
            await self.update_status(raw, condition)
        except OperatorException as status_error:
            logger.warning(
                "failure_condition_not_recorded",
                namespace=instance.namespace,
                name=instance.name,
                error=str(status_error),
            )


def format_validation_error(error: PydanticValidationError) -> str:
    """Flatten a pydantic error into one line for a status condition."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
