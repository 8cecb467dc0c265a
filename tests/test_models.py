"""
Tests for SQLiteDB model parsing and validation.
"""
import pytest
from pydantic import ValidationError

from fakes import sqlitedb_object
from sqlite_operator.models.sqlitedb import (
    Phase,
    SQLiteDB,
    SQLiteDBSpec,
    SQLiteDBStatus,
    parse_quantity,
    same_quantity,
)


def test_spec_defaults():
    spec = SQLiteDBSpec.model_validate({"databaseName": "orders"})
    assert spec.effective_storage_size == "1Gi"
    assert spec.effective_replicas == 1
    assert spec.init_sql == ""
    assert not spec.has_init_sql
    assert spec.backup_enabled is False
    assert spec.backup_schedule is None


def test_spec_reads_camel_case_fields():
    spec = SQLiteDBSpec.model_validate(
        {
            "databaseName": "orders",
            "storage": {"size": "10Gi", "storageClass": "standard"},
            "initSQL": "SELECT 1;",
            "replicas": 2,
            "backupEnabled": True,
            "backupSchedule": "0 2 * * *",
        }
    )
    assert spec.storage.size == "10Gi"
    assert spec.storage.storage_class == "standard"
    assert spec.has_init_sql
    assert spec.effective_replicas == 2
    assert spec.backup_schedule == "0 2 * * *"


def test_zero_replicas_is_kept():
    assert SQLiteDBSpec.model_validate({"databaseName": "orders", "replicas": 0}).effective_replicas == 0


@pytest.mark.parametrize(
    "name",
    [
        "x'; rm -rf /data; '",
        'orders"; reboot',
        "orders;ls",
        "$(id)",
        "`id`",
        "a b",
        "../etc/passwd",
        "",
        "-orders",
        "a" * 64,
    ],
)
def test_unsafe_database_names_are_rejected(name):
    with pytest.raises(ValidationError):
        SQLiteDBSpec.model_validate({"databaseName": name})


@pytest.mark.parametrize("name", ["orders", "orders_v2", "orders-2025", "Orders.main", "a" * 63])
def test_safe_database_names_are_accepted(name):
    assert SQLiteDBSpec.model_validate({"databaseName": name}).database_name == name


@pytest.mark.parametrize("size", ["1Gi", "500Mi", "1.5Gi", "1000000", "2e9", "10G"])
def test_valid_quantities(size):
    spec = SQLiteDBSpec.model_validate({"databaseName": "orders", "storage": {"size": size}, "storageSize": size})
    assert spec.effective_storage_size == size


@pytest.mark.parametrize("size", ["big", "1 Gi", "1GiB", "-1Gi", "1Gi; rm"])
def test_invalid_quantities(size):
    with pytest.raises(ValidationError):
        SQLiteDBSpec.model_validate({"databaseName": "orders", "storage": {"size": size}})
    with pytest.raises(ValidationError):
        SQLiteDBSpec.model_validate({"databaseName": "orders", "storageSize": size})


def test_negative_replicas_rejected():
    with pytest.raises(ValidationError):
        SQLiteDBSpec.model_validate({"databaseName": "orders", "replicas": -1})


def test_resource_parses_metadata_and_missing_status():
    obj = sqlitedb_object(name="orders", namespace="shop")
    obj["metadata"].update({"uid": "abc", "generation": 3, "resourceVersion": "42"})
    obj["status"] = None

    db = SQLiteDB.model_validate(obj)

    assert db.name == "orders"
    assert db.namespace == "shop"
    assert db.metadata.uid == "abc"
    assert db.metadata.generation == 3
    assert db.metadata.resource_version == "42"
    assert db.status == SQLiteDBStatus()


def test_status_round_trips_wire_format():
    status = SQLiteDBStatus.model_validate(
        {
            "phase": "Ready",
            "ready": True,
            "podName": "orders-abc",
            "conditions": [
                {
                    "type": "Reconciled",
                    "status": "True",
                    "reason": "ReconcileSucceeded",
                    "lastTransitionTime": "2026-01-01T00:00:00Z",
                }
            ],
        }
    )
    assert status.phase == Phase.READY
    dumped = status.to_object()
    assert dumped["phase"] == "Ready"
    assert dumped["podName"] == "orders-abc"
    assert dumped["conditions"][0]["lastTransitionTime"] == "2026-01-01T00:00:00Z"
    assert "databaseSize" not in dumped


def test_stored_status_with_unknown_phase_is_parsed_leniently():
    status = SQLiteDBStatus.from_object({"phase": "Failed", "podName": "orders-abc"})
    assert status.phase is None
    assert status.pod_name == "orders-abc"


@pytest.mark.parametrize("stored", [None, "Ready", [], {"conditions": [{"reason": "no type"}]}])
def test_unusable_stored_status_parses_to_defaults(stored):
    status = SQLiteDBStatus.from_object(stored)
    assert status.phase is None
    assert status.conditions == []


def test_resource_with_foreign_status_still_parses():
    obj = sqlitedb_object(name="orders")
    obj["status"] = {"phase": "Failed", "ready": True}

    db = SQLiteDB.model_validate(obj)

    assert db.status.phase is None
    assert db.status.ready is True


@pytest.mark.parametrize(
    "a, b",
    [("1Gi", "1024Mi"), ("512Mi", "0.5Gi"), ("1G", "1000M"), ("2e9", "2G"), ("1k", "1000"), ("1500m", "1.5")],
)
def test_equivalent_quantities(a, b):
    assert parse_quantity(a) == parse_quantity(b)
    assert same_quantity(a, b)


@pytest.mark.parametrize("a, b", [("1Gi", "1G"), ("1Gi", "2Gi"), ("1Gi", None)])
def test_different_quantities(a, b):
    assert not same_quantity(a, b)


def test_parse_quantity_rejects_garbage():
    with pytest.raises(ValueError):
        parse_quantity("lots")
