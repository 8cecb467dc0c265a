"""
Desired-state builders for the objects that back an SQLiteDB.

Each builder is a pure function of the instance: it returns the fields the
operator owns on one dependent and performs no cluster I/O. Applying the
result onto a live object is the job of ``sqlite_operator.services.merge``.
"""
from typing import Any, Dict

from sqlite_operator.exceptions import ValidationError
from sqlite_operator.models.sqlitedb import DATABASE_NAME_PATTERN, SQLiteDB

DEFAULT_IMAGE = "keinos/sqlite3:latest"
CONTAINER_NAME = "sqlite"
PORT = 8080

DATA_VOLUME = "storage"
DATA_MOUNT_PATH = "/data"
INIT_VOLUME = "init-sql"
INIT_MOUNT_PATH = "/init"
INIT_SQL_KEY = "init.sql"

DB_FILE_ENV = "DB_FILE"
MANAGED_BY = "sqlite-operator"

# The database path only ever reaches the shell through $DB_FILE.
STARTUP_SCRIPT = (
    f'if [ -f {INIT_MOUNT_PATH}/{INIT_SQL_KEY} ]; then '
    f'sqlite3 "${DB_FILE_ENV}" < {INIT_MOUNT_PATH}/{INIT_SQL_KEY} || true; fi; '
    f'sqlite3 "${DB_FILE_ENV}" \'.timeout 30000\' ".backup ${DB_FILE_ENV}"'
)


def storage_claim_name(instance: SQLiteDB) -> str:
    return f"{instance.name}-storage"


def init_config_name(instance: SQLiteDB) -> str:
    return f"{instance.name}-init"


def workload_name(instance: SQLiteDB) -> str:
    return instance.name


def endpoint_name(instance: SQLiteDB) -> str:
    return f"{instance.name}-service"


def selector_labels(instance: SQLiteDB) -> Dict[str, str]:
    """Labels that tie the workload pods to the endpoint."""
    return {"app": instance.name}


def common_labels(instance: SQLiteDB) -> Dict[str, str]:
    """Labels stamped on every dependent's metadata."""
    return {
        **selector_labels(instance),
        "app.kubernetes.io/managed-by": MANAGED_BY,
    }


def database_file(instance: SQLiteDB) -> str:
    """
    Absolute path of the database file inside the workload.

    Raises:
        ValidationError: If databaseName contains characters outside the allow-list
    """
    name = instance.spec.database_name
    if not DATABASE_NAME_PATTERN.match(name):
        raise ValidationError(
            f"databaseName '{name}' is not safe to pass to the workload",
            details={"field": "spec.databaseName"},
        )
    return f"{DATA_MOUNT_PATH}/{name}.db"


def build_storage_claim(instance: SQLiteDB) -> Dict[str, Any]:
    """Build the PersistentVolumeClaim spec."""
    spec: Dict[str, Any] = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {
            "requests": {"storage": instance.spec.effective_storage_size},
        },
    }
    if instance.spec.storage.storage_class:
        spec["storageClassName"] = instance.spec.storage.storage_class
    return spec


def build_init_config(instance: SQLiteDB) -> Dict[str, str]:
    """Build the ConfigMap data holding the bootstrap SQL."""
    return {INIT_SQL_KEY: instance.spec.init_sql}


def build_container(instance: SQLiteDB, image: str = DEFAULT_IMAGE) -> Dict[str, Any]:
    """Build the single database container."""
    mounts = [{"name": DATA_VOLUME, "mountPath": DATA_MOUNT_PATH}]
    if instance.spec.has_init_sql:
        mounts.append({"name": INIT_VOLUME, "mountPath": INIT_MOUNT_PATH, "readOnly": True})

    return {
        "name": CONTAINER_NAME,
        "image": image,
        "command": ["sh", "-c", STARTUP_SCRIPT],
        "env": [{"name": DB_FILE_ENV, "value": database_file(instance)}],
        "ports": [{"containerPort": PORT, "protocol": "TCP"}],
        "volumeMounts": mounts,
    }


def build_volumes(instance: SQLiteDB) -> list[Dict[str, Any]]:
    volumes: list[Dict[str, Any]] = [
        {
            "name": DATA_VOLUME,
            "persistentVolumeClaim": {"claimName": storage_claim_name(instance)},
        }
    ]
    if instance.spec.has_init_sql:
        volumes.append(
            {
                "name": INIT_VOLUME,
                "configMap": {"name": init_config_name(instance)},
            }
        )
    return volumes


def build_workload(instance: SQLiteDB, image: str = DEFAULT_IMAGE) -> Dict[str, Any]:
    """
    Build the Deployment spec.

    Args:
        instance: The SQLiteDB being reconciled
        image: Container image for the database container

    Returns:
        Deployment spec with replicas, selector and pod template

    Raises:
        ValidationError: If databaseName is unsafe
    """
    return {
        "replicas": instance.spec.effective_replicas,
        "selector": {"matchLabels": selector_labels(instance)},
        "template": {
            "metadata": {"labels": selector_labels(instance)},
            "spec": {
                "containers": [build_container(instance, image)],
                "volumes": build_volumes(instance),
            },
        },
    }


def build_endpoint(instance: SQLiteDB) -> Dict[str, Any]:
    """Build the cluster-internal Service spec."""
    return {
        "type": "ClusterIP",
        "selector": selector_labels(instance),
        "ports": [
            {
                "port": PORT,
                "targetPort": PORT,
                "protocol": "TCP",
            }
        ],
    }
