"""
Dispatch adapter between Kubernetes watches and the reconciler.

Watches SQLiteDB objects and the dependents the operator manages, reduces
every event to the identity of the owning SQLiteDB, and feeds those
identities through a de-duplicating work queue to a pool of workers.

Guarantees:
- one identity is never reconciled by two workers at once
- distinct identities are reconciled in parallel
- a retryable failure is requeued with exponential backoff
"""
import asyncio
from typing import Any, Dict, List, NamedTuple, Optional, Set

from tenacity import RetryCallState, retry, retry_if_exception_type, wait_exponential

from sqlite_operator.config.logging import get_logger, reconcile_context
from sqlite_operator.core.reconciler import SQLiteDBReconciler
from sqlite_operator.exceptions import KubernetesError
from sqlite_operator.models.sqlitedb import API_GROUP, KIND
from sqlite_operator.services.cluster_store import DEPENDENT_KINDS, Kind
from sqlite_operator.services.desired_state import MANAGED_BY
from sqlite_operator.services.ownership import controller_of
from sqlite_operator.utils.retry import backoff_delay, is_retryable_error

logger = get_logger(__name__)

MANAGED_BY_SELECTOR = f"app.kubernetes.io/managed-by={MANAGED_BY}"


class ObjectKey(NamedTuple):
    namespace: str
    name: str


def owner_key_for(kind: Kind, obj: Dict[str, Any]) -> Optional[ObjectKey]:
    """
    Map a watched object to the SQLiteDB it belongs to.

    SQLiteDB objects map to themselves; dependents map to their controller
    owner reference when that owner is an SQLiteDB. Anything else is
    ignored.
    """
    metadata = obj.get("metadata") or {}
    namespace = metadata.get("namespace")
    if not namespace:
        return None

    if kind == Kind.SQLITEDB:
        return ObjectKey(namespace, metadata["name"])

    ref = controller_of(obj)
    if ref is None or ref.get("kind") != KIND:
        return None
    if ref.get("apiVersion", "").split("/")[0] != API_GROUP:
        return None
    return ObjectKey(namespace, ref["name"])


class WorkQueue:
    """
    Work queue with set semantics.

    A key waiting in the queue is not queued again. A key added while it is
    being processed is marked dirty and queued again once ``done`` is
    called, so it is never handed to two workers at the same time.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[ObjectKey] = set()
        self._processing: Set[ObjectKey] = set()
        self._dirty: Set[ObjectKey] = set()
        self._timers: Dict[ObjectKey, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._queued)

    def add(self, key: ObjectKey) -> None:
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: ObjectKey, delay: float) -> None:
        """Queue ``key`` after ``delay`` seconds, replacing any pending timer."""
        loop = asyncio.get_running_loop()
        pending = self._timers.pop(key, None)
        if pending:
            pending.cancel()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: ObjectKey) -> None:
        self._timers.pop(key, None)
        self.add(key)

    async def get(self) -> ObjectKey:
        key = await self._queue.get()
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: ObjectKey) -> None:
        self._processing.discard(key)
        self._queue.task_done()
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def is_processing(self, key: ObjectKey) -> bool:
        return key in self._processing

    def shutdown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()


def _log_watch_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "watch_stream_failed_retrying",
        kind=retry_state.args[1].value if len(retry_state.args) > 1 else None,
        attempt=retry_state.attempt_number,
        delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(error),
    )


class ReconcileDispatcher:
    """
    Runs watch tasks and reconcile workers until stopped.

    Features:
    - Watches SQLiteDB plus managed PVCs, ConfigMaps, Deployments, Services
    - De-duplicates identities in a work queue
    - Bounded parallelism across identities
    - Exponential backoff requeue on retryable failures
    - Graceful shutdown
    """

    def __init__(
        self,
        reconciler: SQLiteDBReconciler,
        source: Any = None,
        namespace: Optional[str] = None,
        workers: int = 4,
        requeue_base_delay: float = 0.5,
        requeue_max_delay: float = 300.0,
        watch_timeout_seconds: int = 300,
        watch_restart_delay: float = 5.0,
    ):
        """
        Initialize the dispatcher.

        Args:
            reconciler: Reconciler invoked once per dequeued identity
            source: Object with an async ``watch(kind, ...)`` generator, or None
                to only process identities added with ``enqueue``
            namespace: Restrict watches to one namespace (None for all)
            workers: Number of concurrent reconcile workers
            requeue_base_delay: First backoff delay in seconds
            requeue_max_delay: Backoff ceiling in seconds
            watch_timeout_seconds: Server-side timeout of each watch request
            watch_restart_delay: Pause before reopening a watch after an unexpected error
        """
        self.reconciler = reconciler
        self.source = source
        self.namespace = namespace
        self.workers = workers
        self.requeue_base_delay = requeue_base_delay
        self.requeue_max_delay = requeue_max_delay
        self.watch_timeout_seconds = watch_timeout_seconds
        self.watch_restart_delay = watch_restart_delay

        self.queue = WorkQueue()
        self.failures: Dict[ObjectKey, int] = {}
        self.running = False
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        """Start workers and watches."""
        if self.running:
            return
        self.running = True

        for worker_id in range(1, self.workers + 1):
            self._tasks.append(asyncio.create_task(self._worker(worker_id)))

        if self.source is not None:
            for kind in (Kind.SQLITEDB, *DEPENDENT_KINDS):
                self._tasks.append(asyncio.create_task(self._watch_kind(kind)))

        logger.info(
            "dispatcher_started",
            workers=self.workers,
            namespace=self.namespace or "*",
            watching=self.source is not None,
        )

    async def stop(self) -> None:
        """Stop workers and watches gracefully."""
        logger.info("stopping_dispatcher")
        self.running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.queue.shutdown()
        logger.info("dispatcher_stopped")

    def enqueue(self, namespace: str, name: str) -> None:
        self.queue.add(ObjectKey(namespace, name))

    def handle_event(self, kind: Kind, event_type: str, obj: Dict[str, Any]) -> Optional[ObjectKey]:
        """Enqueue the owning SQLiteDB of a watch event, if there is one."""
        key = owner_key_for(kind, obj)
        if key is None:
            return None
        logger.debug(
            "watch_event",
            kind=kind.value,
            event_type=event_type,
            namespace=key.namespace,
            name=key.name,
        )
        self.queue.add(key)
        return key

    async def process(self, key: ObjectKey) -> None:
        """Run one pass for ``key`` and schedule a retry if it failed."""
        with reconcile_context(key.namespace, key.name):
            await self._process(key)

    async def _process(self, key: ObjectKey) -> None:
        try:
            await self.reconciler.reconcile(key.namespace, key.name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_retryable_error(e):
                failures = self.failures.get(key, 0) + 1
                self.failures[key] = failures
                delay = backoff_delay(
                    failures,
                    initial_delay=self.requeue_base_delay,
                    max_delay=self.requeue_max_delay,
                )
                logger.warning(
                    "reconcile_failed_requeueing",
                    error_type=type(e).__name__,
                    error=str(e),
                    failures=failures,
                    delay_seconds=delay,
                )
                self.queue.add_after(key, delay)
            else:
                self.failures.pop(key, None)
                logger.error(
                    "reconcile_failed_not_retrying",
                    error_type=type(e).__name__,
                    error=str(e),
                )
        else:
            self.failures.pop(key, None)

    async def _worker(self, worker_id: int) -> None:
        logger.debug("reconcile_worker_started", worker_id=worker_id)
        while self.running:
            key = await self.queue.get()
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def _watch_kind(self, kind: Kind) -> None:
        label_selector = None if kind == Kind.SQLITEDB else MANAGED_BY_SELECTOR
        while self.running:
            try:
                await self._watch_once(kind, label_selector)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # API failures are retried inside _watch_once; anything else
                # lands here and the stream is reopened after a pause.
                logger.exception(
                    "watch_stream_crashed_restarting",
                    kind=kind.value,
                    error_type=type(e).__name__,
                    delay_seconds=self.watch_restart_delay,
                )
                await asyncio.sleep(self.watch_restart_delay)
                continue
            logger.debug("watch_stream_ended_restarting", kind=kind.value)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=30),
        retry=retry_if_exception_type(KubernetesError),
        before_sleep=_log_watch_retry,
    )
    async def _watch_once(self, kind: Kind, label_selector: Optional[str]) -> None:
        async for event_type, obj in self.source.watch(
            kind,
            namespace=self.namespace,
            label_selector=label_selector,
            timeout_seconds=self.watch_timeout_seconds,
        ):
            self.handle_event(kind, event_type, obj)
