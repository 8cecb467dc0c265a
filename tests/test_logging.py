"""
Tests for operator logging context.
"""
import structlog

from sqlite_operator.config.logging import add_operator_context, reconcile_context
from sqlite_operator.config.settings import settings


def test_reconcile_context_binds_instance_for_the_pass():
    with reconcile_context("shop", "orders"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["namespace"] == "shop"
        assert bound["name"] == "orders"
        assert len(bound["reconcile_id"]) == 8

    assert "name" not in structlog.contextvars.get_contextvars()


def test_each_pass_gets_its_own_id():
    with reconcile_context("shop", "orders"):
        first = structlog.contextvars.get_contextvars()["reconcile_id"]
    with reconcile_context("shop", "orders"):
        second = structlog.contextvars.get_contextvars()["reconcile_id"]
    assert first != second


def test_operator_context_is_added():
    event = add_operator_context(None, "info", {"event": "sqlitedb_reconciled"})
    assert event["operator"] == settings.app_name
    assert event["operator_version"] == settings.app_version
    assert event["watch_namespace"] == (settings.watch_namespace or "*")
