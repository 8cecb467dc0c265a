"""
In-memory cluster store for tests.

Behaves like the API server in the ways the reconciler depends on:
resourceVersion checks on replace and status writes, a status subresource
that plain replaces cannot touch, and owner-reference garbage collection
when an object is deleted.
"""
import copy
import itertools
import uuid
from typing import Any, Dict, List, Tuple

from sqlite_operator.exceptions import ConflictError, NotFoundError
from sqlite_operator.models.sqlitedb import API_GROUP, API_VERSION, KIND, SQLiteDB
from sqlite_operator.services.cluster_store import ClusterStore, Kind

Key = Tuple[Kind, str, str]


class InMemoryClusterStore(ClusterStore):
    def __init__(self):
        self.objects: Dict[Key, Dict[str, Any]] = {}
        self.writes: List[Tuple[str, Kind, str, str]] = []
        self.deletes: List[Tuple[Kind, str, str]] = []
        self.failures: Dict[Tuple[str, Kind], Exception] = {}
        self._versions = itertools.count(1)

    # helpers -------------------------------------------------------------

    def _key(self, kind: Kind, obj: Dict[str, Any]) -> Key:
        return kind, obj["metadata"]["namespace"], obj["metadata"]["name"]

    def _raise_injected(self, op: str, kind: Kind) -> None:
        error = self.failures.pop((op, kind), None)
        if error is not None:
            raise error

    def fail_next(self, op: str, kind: Kind, error: Exception) -> None:
        """Make the next ``op`` ("get", "create", "replace", "status") on ``kind`` raise."""
        self.failures[(op, kind)] = error

    def put(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Seed an object as if another actor had created it."""
        stored = copy.deepcopy(obj)
        stored.setdefault("apiVersion", kind.api_version)
        stored.setdefault("kind", kind.value)
        metadata = stored.setdefault("metadata", {})
        metadata.setdefault("namespace", "default")
        metadata.setdefault("uid", str(uuid.uuid4()))
        metadata.setdefault("generation", 1)
        metadata["resourceVersion"] = str(next(self._versions))
        self.objects[self._key(kind, stored)] = stored
        return copy.deepcopy(stored)

    def edit(self, kind: Kind, namespace: str, name: str, fn) -> None:
        """Mutate a stored object out of band and bump its resourceVersion."""
        obj = self.objects[(kind, namespace, name)]
        fn(obj)
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def set_ready_replicas(self, namespace: str, name: str, ready: int) -> None:
        self.edit(
            Kind.DEPLOYMENT,
            namespace,
            name,
            lambda obj: obj.setdefault("status", {}).update({"readyReplicas": ready}),
        )

    def exists(self, kind: Kind, namespace: str, name: str) -> bool:
        return (kind, namespace, name) in self.objects

    def delete(self, kind: Kind, namespace: str, name: str) -> None:
        """Delete an object and garbage-collect everything it owns."""
        obj = self.objects.pop((kind, namespace, name))
        self.deletes.append((kind, namespace, name))
        self._collect_garbage(obj["metadata"]["uid"])

    def _collect_garbage(self, owner_uid: str) -> None:
        owned = [
            key
            for key, obj in self.objects.items()
            if any(ref.get("uid") == owner_uid for ref in obj["metadata"].get("ownerReferences", []))
        ]
        for key in owned:
            obj = self.objects.pop(key)
            self._collect_garbage(obj["metadata"]["uid"])

    # ClusterStore --------------------------------------------------------

    async def get(self, kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        self._raise_injected("get", kind)
        try:
            return copy.deepcopy(self.objects[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(kind.value, namespace, name)

    async def _create(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        self._raise_injected("create", kind)
        key = self._key(kind, obj)
        if key in self.objects:
            raise ConflictError(f"{kind.value} {key[1]}/{key[2]} already exists")
        stored = copy.deepcopy(obj)
        stored["metadata"]["uid"] = str(uuid.uuid4())
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        # Server-side defaults the operator never sets
        stored["metadata"]["creationTimestamp"] = "2026-01-01T00:00:00Z"
        self.objects[key] = stored
        self.writes.append(("create", kind, key[1], key[2]))
        return copy.deepcopy(stored)

    async def _replace(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        self._raise_injected("replace", kind)
        key = self._key(kind, obj)
        if key not in self.objects:
            raise NotFoundError(kind.value, key[1], key[2])
        current = self.objects[key]
        if obj["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"{kind.value} {key[1]}/{key[2]} has been modified")
        stored = copy.deepcopy(obj)
        # Status is a subresource; replaces never change it.
        if "status" in current:
            stored["status"] = copy.deepcopy(current["status"])
        else:
            stored.pop("status", None)
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self.objects[key] = stored
        self.writes.append(("replace", kind, key[1], key[2]))
        return copy.deepcopy(stored)

    async def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        self._raise_injected("status", Kind.SQLITEDB)
        key = self._key(Kind.SQLITEDB, obj)
        if key not in self.objects:
            raise NotFoundError(Kind.SQLITEDB.value, key[1], key[2])
        current = self.objects[key]
        if obj["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"SQLiteDB {key[1]}/{key[2]} has been modified")
        current["status"] = copy.deepcopy(obj.get("status") or {})
        current["metadata"]["resourceVersion"] = str(next(self._versions))
        self.writes.append(("status", Kind.SQLITEDB, key[1], key[2]))
        return copy.deepcopy(current)


def sqlitedb_object(name: str = "orders", namespace: str = "default", **spec: Any) -> Dict[str, Any]:
    """Raw SQLiteDB object as the API server would return it."""
    spec.setdefault("databaseName", "orders")
    return {
        "apiVersion": f"{API_GROUP}/{API_VERSION}",
        "kind": KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_instance(name: str = "orders", namespace: str = "default", **spec: Any) -> SQLiteDB:
    obj = sqlitedb_object(name, namespace, **spec)
    obj["metadata"]["uid"] = "uid-" + name
    return SQLiteDB.model_validate(obj)


class CanonicalQuantityStore(InMemoryClusterStore):
    """Stores PVC sizes in canonical form, as the API server does."""

    CANONICAL = {"1024Mi": "1Gi", "0.5Gi": "512Mi", "2048Mi": "2Gi"}

    def _canonicalize(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        obj = copy.deepcopy(obj)
        if kind == Kind.PERSISTENT_VOLUME_CLAIM:
            requests = obj["spec"]["resources"]["requests"]
            requests["storage"] = self.CANONICAL.get(requests["storage"], requests["storage"])
        return obj

    async def _create(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        return await super()._create(kind, self._canonicalize(kind, obj))

    async def _replace(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        return await super()._replace(kind, self._canonicalize(kind, obj))
