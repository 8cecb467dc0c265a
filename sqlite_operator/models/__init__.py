from sqlite_operator.models.sqlitedb import (
    Condition,
    Phase,
    SQLiteDB,
    SQLiteDBSpec,
    SQLiteDBStatus,
    StorageSpec,
)

__all__ = [
    "Condition",
    "Phase",
    "SQLiteDB",
    "SQLiteDBSpec",
    "SQLiteDBStatus",
    "StorageSpec",
]
