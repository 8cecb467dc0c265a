"""
Reconciliation core for SQLiteDB resources.

Import directly from submodules:
# from sqlite_operator.core.reconciler import SQLiteDBReconciler
# from sqlite_operator.core.status import derive_phase, derive_status
"""

__all__ = [
    "SQLiteDBReconciler",
    "derive_phase",
    "derive_status",
]
