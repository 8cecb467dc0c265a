"""
SQLite operator.

Reconciles SQLiteDB custom resources into a PersistentVolumeClaim, an optional
init-SQL ConfigMap, a Deployment and a Service.
"""

__version__ = "0.1.0"
