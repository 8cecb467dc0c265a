"""
Cluster store client.

The reconciler talks to the cluster only through ``ClusterStore``: get an
object, create-or-patch it through a mutator, and write the status of an
SQLiteDB. ``KubernetesClusterStore`` backs it with kubernetes_asyncio.
"""
import asyncio
import copy
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

import aiohttp
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client import ApiException

from sqlite_operator.config.logging import get_logger
from sqlite_operator.config.settings import Settings
from sqlite_operator.exceptions import ConflictError, KubernetesError, NotFoundError
from sqlite_operator.models.sqlitedb import API_GROUP, API_VERSION, PLURAL

logger = get_logger(__name__)

Mutator = Callable[[Dict[str, Any]], None]


class Kind(str, Enum):
    """Object kinds the operator reads or writes."""

    SQLITEDB = "SQLiteDB"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    CONFIG_MAP = "ConfigMap"
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"

    @property
    def api_version(self) -> str:
        return _API_VERSIONS[self]


_API_VERSIONS = {
    Kind.SQLITEDB: f"{API_GROUP}/{API_VERSION}",
    Kind.PERSISTENT_VOLUME_CLAIM: "v1",
    Kind.CONFIG_MAP: "v1",
    Kind.DEPLOYMENT: "apps/v1",
    Kind.SERVICE: "v1",
}

DEPENDENT_KINDS = (
    Kind.PERSISTENT_VOLUME_CLAIM,
    Kind.CONFIG_MAP,
    Kind.DEPLOYMENT,
    Kind.SERVICE,
)


class OperationResult(str, Enum):
    """Outcome of ``create_or_patch``."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class ClusterStore(ABC):
    """
    Strongly consistent, read-your-writes object store keyed by
    (kind, namespace, name).

    Subclasses provide the primitives; ``create_or_patch`` is shared so every
    backend gets the same ensure semantics.
    """

    @abstractmethod
    async def get(self, kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        """
        Read one object.

        Raises:
            NotFoundError: If the object does not exist
        """

    @abstractmethod
    async def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Write the status subresource of an SQLiteDB.

        The write is conditional on ``metadata.resourceVersion``.

        Raises:
            ConflictError: If the object changed since it was read
        """

    @abstractmethod
    async def _create(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new object."""

    @abstractmethod
    async def _replace(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an existing object, conditional on its resourceVersion."""

    async def close(self) -> None:
        """Release client resources."""

    @staticmethod
    def skeleton(kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        """An empty object of ``kind`` with only its identity set."""
        return {
            "apiVersion": kind.api_version,
            "kind": kind.value,
            "metadata": {"name": name, "namespace": namespace},
        }

    async def create_or_patch(
        self, kind: Kind, namespace: str, name: str, mutate: Mutator
    ) -> OperationResult:
        """
        Ensure an object exists with the fields ``mutate`` sets.

        Fetches the live object (or starts from an empty skeleton), applies
        ``mutate`` to a copy, and writes only when the object is new or the
        mutator changed something. Existing objects are replaced with the
        fetched resourceVersion so a concurrent write surfaces as a conflict.

        Args:
            kind: Object kind
            namespace: Object namespace
            name: Object name
            mutate: Callable that edits the object in place

        Returns:
            Whether the object was created, updated or left unchanged

        Raises:
            ConflictError: If another writer got there first
            KubernetesError: On any other API failure
        """
        try:
            current = await self.get(kind, namespace, name)
            exists = True
        except NotFoundError:
            current = self.skeleton(kind, namespace, name)
            exists = False

        desired = copy.deepcopy(current)
        mutate(desired)

        metadata = desired.get("metadata") or {}
        if metadata.get("name") != name or metadata.get("namespace") != namespace:
            raise ValueError(f"mutator changed the identity of {kind.value} {namespace}/{name}")

        if not exists:
            await self._create(kind, desired)
            return OperationResult.CREATED

        if desired == current:
            return OperationResult.UNCHANGED

        await self._replace(kind, desired)
        return OperationResult.UPDATED


def translate_api_exception(e: ApiException, kind: Kind, namespace: str, name: str) -> Exception:
    """Map a Kubernetes API exception onto the operator's exception types."""
    if e.status == 404:
        return NotFoundError(kind.value, namespace, name)
    if e.status == 409:
        return ConflictError(
            f"{kind.value} '{namespace}/{name}' was modified concurrently: {e.reason}",
            details={"kind": kind.value, "namespace": namespace, "name": name},
        )
    return KubernetesError(
        f"{kind.value} '{namespace}/{name}': {e.reason}",
        status_code=e.status or 500,
        details={"kind": kind.value, "namespace": namespace, "name": name, "body": e.body},
    )


class KubernetesClusterStore(ClusterStore):
    """
    Cluster store backed by the Kubernetes API.

    Core and apps kinds go through the typed APIs and are converted to plain
    camelCase dicts; SQLiteDB goes through CustomObjectsApi.
    """

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core_api = client.CoreV1Api(api_client)
        self.apps_api = client.AppsV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

    @classmethod
    async def connect(cls, settings: Settings) -> "KubernetesClusterStore":
        """
        Build a store from in-cluster credentials or a kubeconfig file.

        Raises:
            KubernetesError: If no usable configuration is found
        """
        configuration = client.Configuration()
        try:
            if settings.k8s_in_cluster:
                config.load_incluster_config(client_configuration=configuration)
            else:
                await config.load_kube_config(
                    config_file=settings.kubeconfig_path,
                    client_configuration=configuration,
                )
        except config.ConfigException as e:
            raise KubernetesError(f"Failed to load Kubernetes configuration: {e}")

        logger.info(
            "kubernetes_configuration_loaded",
            host=configuration.host,
            in_cluster=settings.k8s_in_cluster,
        )
        return cls(client.ApiClient(configuration))

    async def close(self) -> None:
        await self.api_client.close()

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    async def _call(self, kind: Kind, namespace: str, name: str, fn, *args, **kwargs) -> Dict[str, Any]:
        try:
            result = await fn(*args, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, kind, namespace, name) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise KubernetesError(
                f"{kind.value} '{namespace}/{name}': {e}",
                status_code=503,
                details={"kind": kind.value, "namespace": namespace, "name": name},
            ) from e
        return self._to_dict(result)

    async def get(self, kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        if kind == Kind.SQLITEDB:
            fn, args = self.custom_api.get_namespaced_custom_object, (API_GROUP, API_VERSION, namespace, PLURAL, name)
        elif kind == Kind.PERSISTENT_VOLUME_CLAIM:
            fn, args = self.core_api.read_namespaced_persistent_volume_claim, (name, namespace)
        elif kind == Kind.CONFIG_MAP:
            fn, args = self.core_api.read_namespaced_config_map, (name, namespace)
        elif kind == Kind.DEPLOYMENT:
            fn, args = self.apps_api.read_namespaced_deployment, (name, namespace)
        elif kind == Kind.SERVICE:
            fn, args = self.core_api.read_namespaced_service, (name, namespace)
        else:
            raise ValueError(f"Unsupported kind: {kind}")

        obj = await self._call(kind, namespace, name, fn, *args)
        # Typed reads do not always carry apiVersion/kind.
        obj.setdefault("apiVersion", kind.api_version)
        obj.setdefault("kind", kind.value)
        return obj

    async def _create(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        namespace = obj["metadata"]["namespace"]
        name = obj["metadata"]["name"]
        if kind == Kind.PERSISTENT_VOLUME_CLAIM:
            fn = self.core_api.create_namespaced_persistent_volume_claim
        elif kind == Kind.CONFIG_MAP:
            fn = self.core_api.create_namespaced_config_map
        elif kind == Kind.DEPLOYMENT:
            fn = self.apps_api.create_namespaced_deployment
        elif kind == Kind.SERVICE:
            fn = self.core_api.create_namespaced_service
        else:
            raise ValueError(f"Unsupported kind for create: {kind}")

        logger.info("creating_object", kind=kind.value, namespace=namespace, name=name)
        return await self._call(kind, namespace, name, fn, namespace, obj)

    async def _replace(self, kind: Kind, obj: Dict[str, Any]) -> Dict[str, Any]:
        namespace = obj["metadata"]["namespace"]
        name = obj["metadata"]["name"]
        if kind == Kind.PERSISTENT_VOLUME_CLAIM:
            fn = self.core_api.replace_namespaced_persistent_volume_claim
        elif kind == Kind.CONFIG_MAP:
            fn = self.core_api.replace_namespaced_config_map
        elif kind == Kind.DEPLOYMENT:
            fn = self.apps_api.replace_namespaced_deployment
        elif kind == Kind.SERVICE:
            fn = self.core_api.replace_namespaced_service
        else:
            raise ValueError(f"Unsupported kind for replace: {kind}")

        logger.info(
            "replacing_object",
            kind=kind.value,
            namespace=namespace,
            name=name,
            resource_version=obj["metadata"].get("resourceVersion"),
        )
        return await self._call(kind, namespace, name, fn, name, namespace, obj)

    async def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        namespace = obj["metadata"]["namespace"]
        name = obj["metadata"]["name"]
        return await self._call(
            Kind.SQLITEDB,
            namespace,
            name,
            self.custom_api.replace_namespaced_custom_object_status,
            API_GROUP,
            API_VERSION,
            namespace,
            PLURAL,
            name,
            obj,
        )

    def _list_call(self, kind: Kind, namespace: Optional[str]) -> Tuple[Callable, Dict[str, Any]]:
        if kind == Kind.SQLITEDB:
            if namespace:
                return self.custom_api.list_namespaced_custom_object, {
                    "group": API_GROUP, "version": API_VERSION, "namespace": namespace, "plural": PLURAL,
                }
            return self.custom_api.list_cluster_custom_object, {
                "group": API_GROUP, "version": API_VERSION, "plural": PLURAL,
            }

        namespaced = {
            Kind.PERSISTENT_VOLUME_CLAIM: self.core_api.list_namespaced_persistent_volume_claim,
            Kind.CONFIG_MAP: self.core_api.list_namespaced_config_map,
            Kind.DEPLOYMENT: self.apps_api.list_namespaced_deployment,
            Kind.SERVICE: self.core_api.list_namespaced_service,
        }
        cluster_wide = {
            Kind.PERSISTENT_VOLUME_CLAIM: self.core_api.list_persistent_volume_claim_for_all_namespaces,
            Kind.CONFIG_MAP: self.core_api.list_config_map_for_all_namespaces,
            Kind.DEPLOYMENT: self.apps_api.list_deployment_for_all_namespaces,
            Kind.SERVICE: self.core_api.list_service_for_all_namespaces,
        }
        if namespace:
            return namespaced[kind], {"namespace": namespace}
        return cluster_wide[kind], {}

    async def watch(
        self,
        kind: Kind,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        timeout_seconds: int = 300,
    ) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """
        Stream ``(event_type, object)`` pairs for ``kind``.

        The stream starts with an ADDED event for every existing object and
        ends when the server-side timeout expires.

        Raises:
            KubernetesError: On API failure, including 410 Gone
        """
        list_fn, kwargs = self._list_call(kind, namespace)
        if label_selector:
            kwargs["label_selector"] = label_selector

        w = watch.Watch()
        try:
            async with w.stream(list_fn, timeout_seconds=timeout_seconds, **kwargs) as stream:
                async for event in stream:
                    if event["type"] == "ERROR":
                        raw = event.get("raw_object") or {}
                        raise KubernetesError(
                            f"watch {kind.value}: {raw.get('message', 'error event')}",
                            status_code=raw.get("code", 500),
                        )
                    yield event["type"], self._to_dict(event["object"])
        except ApiException as e:
            raise KubernetesError(
                f"watch {kind.value}: {e.reason}", status_code=e.status or 500
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise KubernetesError(f"watch {kind.value}: {e}", status_code=503) from e
