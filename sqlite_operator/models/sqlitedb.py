"""
Pydantic models for the SQLiteDB custom resource.

Field names are snake_case in Python and camelCase on the wire; every model
accepts both and dumps camelCase with ``to_object()``.
"""
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

API_GROUP = "database.example.com"
API_VERSION = "v1"
KIND = "SQLiteDB"
PLURAL = "sqlitedbs"

DEFAULT_STORAGE_SIZE = "1Gi"
DEFAULT_REPLICAS = 1

# Characters that are safe inside a file path and a sqlite3 dot-command.
DATABASE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,62}$")

QUANTITY_PATTERN = re.compile(
    r"^(?P<number>[0-9]+(\.[0-9]+)?)"
    r"(?P<suffix>[eE][+-]?[0-9]+|Ki|Mi|Gi|Ti|Pi|Ei|n|u|m|k|M|G|T|P|E)?$"
)

QUANTITY_MULTIPLIERS = {
    "Ki": Decimal(2) ** 10,
    "Mi": Decimal(2) ** 20,
    "Gi": Decimal(2) ** 30,
    "Ti": Decimal(2) ** 40,
    "Pi": Decimal(2) ** 50,
    "Ei": Decimal(2) ** 60,
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}


def validate_database_name(value: str) -> str:
    """Reject database names that are unsafe to place in a path or command."""
    if not DATABASE_NAME_PATTERN.match(value):
        raise ValueError(
            "databaseName must be 1-63 characters of letters, digits, '.', '_' or '-' "
            "and start with a letter or digit"
        )
    return value


def validate_quantity(value: Optional[str]) -> Optional[str]:
    """Accept empty values and Kubernetes resource quantities."""
    if value and not QUANTITY_PATTERN.match(value):
        raise ValueError(f"'{value}' is not a valid resource quantity")
    return value


def parse_quantity(value: str) -> Decimal:
    """
    Convert a resource quantity to its numeric value.

    Example:
        >>> parse_quantity("1Gi") == parse_quantity("1024Mi")
        True
    """
    match = QUANTITY_PATTERN.match(value)
    if not match:
        raise ValueError(f"'{value}' is not a valid resource quantity")
    number, suffix = match.group("number"), match.group("suffix") or ""
    if suffix[:1] in ("e", "E") and len(suffix) > 1:
        return Decimal(number + suffix)
    return Decimal(number) * QUANTITY_MULTIPLIERS[suffix]


def same_quantity(a: Optional[str], b: Optional[str]) -> bool:
    """True if both quantities denote the same amount, however they are written."""
    if a is None or b is None:
        return a == b
    try:
        return parse_quantity(a) == parse_quantity(b)
    except ValueError:
        return a == b


class Phase(str, Enum):
    """Observed lifecycle phase of an instance."""

    CREATING = "Creating"
    PENDING = "Pending"
    READY = "Ready"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_object(self) -> Dict[str, Any]:
        """Dump to the camelCase representation stored in the cluster."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class StorageSpec(_WireModel):
    """Storage configuration for an instance."""

    size: Optional[str] = Field(default=None, description="Requested storage size")
    storage_class: Optional[str] = Field(
        default=None, alias="storageClass", description="Storage class (unset for platform default)"
    )

    @field_validator("size")
    @classmethod
    def check_size(cls, v: Optional[str]) -> Optional[str]:
        return validate_quantity(v)


class SQLiteDBSpec(_WireModel):
    """Desired state of an SQLiteDB."""

    database_name: str = Field(..., alias="databaseName", min_length=1, description="Database file name")
    storage: StorageSpec = Field(default_factory=StorageSpec, description="Storage configuration")
    storage_size: Optional[str] = Field(
        default=None, alias="storageSize", description="Deprecated, use storage.size"
    )
    init_sql: str = Field(default="", alias="initSQL", description="SQL executed on first start")
    replicas: Optional[int] = Field(default=None, ge=0, description="Number of replicas")
    backup_enabled: bool = Field(default=False, alias="backupEnabled", description="Enable automatic backups")
    backup_schedule: Optional[str] = Field(
        default=None, alias="backupSchedule", description="Backup schedule in cron format"
    )

    @field_validator("database_name")
    @classmethod
    def check_database_name(cls, v: str) -> str:
        return validate_database_name(v)

    @field_validator("storage_size")
    @classmethod
    def check_storage_size(cls, v: Optional[str]) -> Optional[str]:
        return validate_quantity(v)

    @field_validator("init_sql", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def effective_storage_size(self) -> str:
        """storage.size, then the deprecated storageSize, then the default."""
        return self.storage.size or self.storage_size or DEFAULT_STORAGE_SIZE

    @property
    def effective_replicas(self) -> int:
        return DEFAULT_REPLICAS if self.replicas is None else self.replicas

    @property
    def has_init_sql(self) -> bool:
        return bool(self.init_sql)


class Condition(_WireModel):
    """A single status condition, mirroring metav1.Condition."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[str] = Field(default=None, alias="lastTransitionTime")
    observed_generation: Optional[int] = Field(default=None, alias="observedGeneration")


class SQLiteDBStatus(_WireModel):
    """Observed state of an SQLiteDB."""

    phase: Optional[Phase] = None
    ready: bool = False
    database_size: Optional[str] = Field(default=None, alias="databaseSize")
    last_backup: Optional[str] = Field(default=None, alias="lastBackup")
    pod_name: Optional[str] = Field(default=None, alias="podName")
    conditions: List[Condition] = Field(default_factory=list)

    @classmethod
    def from_object(cls, data: Any) -> "SQLiteDBStatus":
        """
        Parse a stored status, dropping fields that do not validate.

        Status is output only. A value written by another actor (an unknown
        phase, a malformed condition) must not stop the next pass from
        overwriting it.
        """
        if not isinstance(data, dict):
            return cls()
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            rejected = {err["loc"][0] for err in e.errors() if err.get("loc")}
        try:
            return cls.model_validate({k: v for k, v in data.items() if k not in rejected})
        except PydanticValidationError:
            return cls()


class ObjectMeta(_WireModel):
    """The subset of object metadata the operator reads."""

    name: str
    namespace: str = "default"
    uid: str = ""
    generation: Optional[int] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")


class SQLiteDB(_WireModel):
    """An SQLiteDB resource as read from the cluster."""

    api_version: str = Field(default=f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    kind: str = KIND
    metadata: ObjectMeta
    spec: SQLiteDBSpec
    status: SQLiteDBStatus = Field(default_factory=SQLiteDBStatus)

    @field_validator("status", mode="before")
    @classmethod
    def lenient_status(cls, v: Any) -> SQLiteDBStatus:
        return SQLiteDBStatus.from_object(v)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace
